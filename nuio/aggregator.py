from __future__ import annotations

import logging
from typing import Iterable, List, Sequence, Tuple

from . import manifest, sampleio
from .errors import AggregationError, ConsistencyError
from .types import BeamMode, Sample, SampleFragment, SampleKind, StageRecord


def compute_normalization(observed: float, target: float) -> float:
    """target/observed, or 1.0 (no rescaling) when either side is not positive."""
    if observed <= 0.0 or target <= 0.0:
        return 1.0
    return target / observed


def make_fragment(record: StageRecord, source_path: str = "", pot_scale: float = 1.0) -> SampleFragment:
    subrun_pot_sum = float(record.scan.pot_sum)
    db_tortgt_pot = float(record.exposure.tortgt_sum) * pot_scale
    db_tor101_pot = float(record.exposure.tor101_sum) * pot_scale
    norm = compute_normalization(subrun_pot_sum, db_tortgt_pot)
    return SampleFragment(
        fragment_name=record.cfg.stage_name,
        source_path=str(source_path),
        subrun_pot_sum=subrun_pot_sum,
        db_tortgt_pot=db_tortgt_pot,
        db_tor101_pot=db_tor101_pot,
        normalization=norm,
        normalized_pot_sum=subrun_pot_sum * norm,
    )


def _check_consistent(sample_name: str, what: str,
                      kind: SampleKind, beam: BeamMode,
                      want_kind: SampleKind, want_beam: BeamMode) -> None:
    if kind != want_kind:
        raise ConsistencyError(
            f"Sample kind mismatch in {what} for sample '{sample_name}': "
            f"{kind.value} != {want_kind.value}")
    if beam != want_beam:
        raise ConsistencyError(
            f"Beam mode mismatch in {what} for sample '{sample_name}': "
            f"{beam.value} != {want_beam.value}")


def aggregate_fragments(sample_name: str,
                        kind: SampleKind,
                        beam: BeamMode,
                        fragments: Iterable[SampleFragment]) -> Sample:
    """
    Fold ready-made fragments into a Sample. The sample normalisation is taken
    from the summed POT, never from the per-fragment factors.
    """
    fragments = tuple(fragments)
    if not fragments:
        raise AggregationError(f"Aggregation of sample '{sample_name}' requires at least one stage")
    subrun_pot_sum = sum(f.subrun_pot_sum for f in fragments)
    db_tortgt_pot_sum = sum(f.db_tortgt_pot for f in fragments)
    db_tor101_pot_sum = sum(f.db_tor101_pot for f in fragments)
    norm = compute_normalization(subrun_pot_sum, db_tortgt_pot_sum)
    return Sample(
        sample_name=sample_name,
        kind=kind,
        beam=beam,
        fragments=fragments,
        subrun_pot_sum=subrun_pot_sum,
        db_tortgt_pot_sum=db_tortgt_pot_sum,
        db_tor101_pot_sum=db_tor101_pot_sum,
        normalization=norm,
        normalized_pot_sum=subrun_pot_sum * norm,
    )


def aggregate(sample_name: str,
              stages: Sequence[StageRecord],
              pot_scale: float = 1.0,
              source_path: str = "") -> Sample:
    if not stages:
        raise AggregationError(f"Aggregation of sample '{sample_name}' requires at least one stage")
    kind, beam = stages[0].kind, stages[0].beam
    for rec in stages[1:]:
        _check_consistent(sample_name, f"stage '{rec.stage_name}'", rec.kind, rec.beam, kind, beam)
    fragments = [make_fragment(rec, source_path, pot_scale) for rec in stages]
    return aggregate_fragments(sample_name, kind, beam, fragments)


def _fragments_from_source(sample_name: str, path: str) -> Tuple[SampleKind, BeamMode, List[SampleFragment], str]:
    """Kind, beam and fragments contributed by a manifest or an earlier sample file."""
    if sampleio.is_sample_file(path):
        prior = sampleio.read_sample(path)
        return prior.kind, prior.beam, list(prior.fragments), f"sample file {path}"
    records = manifest.read_stages(path)
    if not records:
        raise AggregationError(f"Manifest {path} has no registered stages")
    meta = manifest.read_metadata(path)
    kind, beam = records[0].kind, records[0].beam
    for rec in records[1:]:
        _check_consistent(sample_name, f"stage '{rec.stage_name}' of {path}",
                          rec.kind, rec.beam, kind, beam)
    fragments = [make_fragment(rec, path, meta.pot_scale) for rec in records]
    return kind, beam, fragments, f"manifest {path}"


def aggregate_sources(sample_name: str, paths: Sequence[str]) -> Sample:
    """
    Build a Sample from manifests and/or previously written sample files.
    Every source must agree on kind and beam with the first one.
    """
    if not paths:
        raise AggregationError(f"Aggregation of sample '{sample_name}' requires at least one stage")
    fragments: List[SampleFragment] = []
    kind = beam = None
    for path in paths:
        src_kind, src_beam, src_fragments, what = _fragments_from_source(sample_name, str(path))
        if kind is None:
            kind, beam = src_kind, src_beam
        else:
            _check_consistent(sample_name, what, src_kind, src_beam, kind, beam)
        logging.debug("%s: %d fragment(s)", what, len(src_fragments))
        fragments.extend(src_fragments)
    return aggregate_fragments(sample_name, kind, beam, fragments)
