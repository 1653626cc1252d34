"""Stage manifests and POT-normalised sample records for MicroBooNE ntuples."""
from __future__ import annotations

from .aggregator import aggregate, aggregate_fragments, aggregate_sources, compute_normalization
from .errors import (AggregationError, ConsistencyError, DatabaseError, InputError,
                     ManifestError, NuIOError, SampleIOError, ScanError)
from .manifest import list_stage_names, read_stages, register_stage
from .rundb import RunInfoDB
from .sampleio import read_sample, write_sample
from .scanner import scan_subrun_tree
from .types import (BeamMode, ExposureSums, RunSubrun, Sample, SampleFragment, SampleKind,
                    ScanResult, StageConfig, StageRecord)

__all__ = [
    "aggregate", "aggregate_fragments", "aggregate_sources", "compute_normalization",
    "AggregationError", "ConsistencyError", "DatabaseError", "InputError",
    "ManifestError", "NuIOError", "SampleIOError", "ScanError",
    "list_stage_names", "read_stages", "register_stage",
    "RunInfoDB",
    "read_sample", "write_sample",
    "scan_subrun_tree",
    "BeamMode", "ExposureSums", "RunSubrun", "Sample", "SampleFragment", "SampleKind",
    "ScanResult", "StageConfig", "StageRecord",
]
