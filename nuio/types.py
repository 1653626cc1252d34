from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Tuple

from .errors import InputError


class SampleKind(Enum):
    DATA = "data"
    EXT = "ext"
    OVERLAY = "overlay"
    DIRT = "dirt"
    STRANGENESS = "strangeness"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, name: str) -> "SampleKind":
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise InputError(f"Unknown sample kind: '{name}'") from None


class BeamMode(Enum):
    BNB = "bnb"
    NUMI = "numi"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, name: str) -> "BeamMode":
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise InputError(f"Unknown beam mode: '{name}'") from None


class RunSubrun(NamedTuple):
    run: int
    subrun: int


# --- Scan & database results --------------------------------------------------

@dataclass(frozen=True)
class ScanResult:
    """
    Outcome of one scan over a list of files.
    unique_pairs is kept sorted by (run, subrun); pot_sum counts each pair once.
    """
    unique_pairs: Tuple[RunSubrun, ...] = ()
    pot_sum: float = 0.0
    n_entries: int = 0

    def __contains__(self, pair: object) -> bool:
        i = bisect.bisect_left(self.unique_pairs, pair)
        return i < len(self.unique_pairs) and self.unique_pairs[i] == pair

    def __len__(self) -> int:
        return len(self.unique_pairs)


@dataclass(frozen=True)
class ExposureSums:
    tortgt_sum: float = 0.0
    tor101_sum: float = 0.0
    tor860_sum: float = 0.0
    tor875_sum: float = 0.0
    EA9CNT_sum: int = 0
    E1DCNT_sum: int = 0
    EXTTrig_sum: int = 0
    Gate1Trig_sum: int = 0
    Gate2Trig_sum: int = 0


# --- Stages -------------------------------------------------------------------

@dataclass(frozen=True)
class StageConfig:
    stage_name: str
    filelist_path: str


@dataclass(frozen=True)
class StageRecord:
    cfg: StageConfig
    n_input_files: int = 0
    kind: SampleKind = SampleKind.UNKNOWN
    beam: BeamMode = BeamMode.UNKNOWN
    scan: ScanResult = field(default_factory=ScanResult)
    exposure: ExposureSums = field(default_factory=ExposureSums)

    @property
    def stage_name(self) -> str:
        return self.cfg.stage_name


# --- Samples ------------------------------------------------------------------

@dataclass(frozen=True)
class SampleFragment:
    fragment_name: str
    source_path: str
    subrun_pot_sum: float = 0.0
    db_tortgt_pot: float = 0.0
    db_tor101_pot: float = 0.0
    normalization: float = 1.0
    normalized_pot_sum: float = 0.0


@dataclass(frozen=True)
class Sample:
    sample_name: str
    kind: SampleKind = SampleKind.UNKNOWN
    beam: BeamMode = BeamMode.UNKNOWN
    fragments: Tuple[SampleFragment, ...] = ()
    subrun_pot_sum: float = 0.0
    db_tortgt_pot_sum: float = 0.0
    db_tor101_pot_sum: float = 0.0
    normalization: float = 1.0
    normalized_pot_sum: float = 0.0
