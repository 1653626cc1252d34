from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Dict, Iterable, Tuple

import numpy as np
import pytest
import uproot

from nuio.types import (BeamMode, ExposureSums, RunSubrun, SampleKind, ScanResult,
                        StageConfig, StageRecord)

RUNINFO_SCHEMA = """
    CREATE TABLE runinfo (
        run INTEGER, subrun INTEGER, begin_time TEXT, end_time TEXT,
        tortgt REAL, tor101 REAL, tor860 REAL, tor875 REAL,
        EA9CNT INTEGER, E1DCNT INTEGER, EXTTrig INTEGER, Gate1Trig INTEGER, Gate2Trig INTEGER
    );
"""


def subrun_branches(rows: Iterable[Tuple[int, int, float]], with_pot: bool = True) -> Dict[str, np.ndarray]:
    rows = list(rows)
    out = {
        "run": np.array([r for r, _, _ in rows], dtype=np.int32),
        "subrun": np.array([s for _, s, _ in rows], dtype=np.int32),
    }
    if with_pot:
        out["pot"] = np.array([p for _, _, p in rows], dtype=np.float64)
    return out


@pytest.fixture
def write_root(tmp_path: Path):
    """Factory: write {tree_path: {branch: array}} into a fresh ROOT file."""
    def _write(name: str, trees: Dict[str, Dict[str, np.ndarray]]) -> str:
        path = tmp_path / name
        with uproot.recreate(path) as f:
            for tree_path, branches in trees.items():
                f[tree_path] = branches
        return str(path)
    return _write


@pytest.fixture
def subrun_file(write_root):
    def _write(name: str, rows, tree: str = "nuselection/SubRun", with_pot: bool = True) -> str:
        return write_root(name, {tree: subrun_branches(rows, with_pot)})
    return _write


@pytest.fixture
def run_db(tmp_path: Path):
    """Factory: build a run.db whose runinfo rows are (run, subrun, tortgt, tor101, EXTTrig)."""
    def _make(rows, name: str = "run.db") -> str:
        path = tmp_path / name
        conn = sqlite3.connect(path)
        conn.execute(RUNINFO_SCHEMA)
        conn.executemany(
            "INSERT INTO runinfo VALUES (?, ?, '', '', ?, ?, ?, ?, ?, ?, ?, ?, ?);",
            [(run, sub, tortgt, tor101, 0.5 * tortgt, 0.25 * tortgt, 10, 20, ext, 1, 2)
             for run, sub, tortgt, tor101, ext in rows])
        conn.commit()
        conn.close()
        return str(path)
    return _make


def make_stage(name: str,
               pot_sum: float = 0.0,
               tortgt: float = 0.0,
               tor101: float = 0.0,
               kind: SampleKind = SampleKind.DATA,
               beam: BeamMode = BeamMode.NUMI,
               pairs=((1, 1), (1, 2))) -> StageRecord:
    return StageRecord(
        cfg=StageConfig(name, f"/lists/{name}.txt"),
        n_input_files=2,
        kind=kind,
        beam=beam,
        scan=ScanResult(unique_pairs=tuple(RunSubrun(*p) for p in pairs),
                        pot_sum=pot_sum, n_entries=3 * len(pairs)),
        exposure=ExposureSums(tortgt_sum=tortgt, tor101_sum=tor101, tor860_sum=1.5, tor875_sum=2.5,
                              EA9CNT_sum=7, E1DCNT_sum=8, EXTTrig_sum=9, Gate1Trig_sum=10,
                              Gate2Trig_sum=11),
    )
