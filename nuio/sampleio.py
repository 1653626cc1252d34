from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict

from .errors import InputError, SampleIOError
from .types import BeamMode, Sample, SampleFragment, SampleKind

SAMPLE_KEY = "nuio_sample"
SCALAR_FIELDS = ("subrun_pot_sum", "db_tortgt_pot_sum", "db_tor101_pot_sum",
                 "normalization", "normalized_pot_sum")
FRAGMENT_STRING_FIELDS = ("fragment_name", "source_path")
FRAGMENT_FLOAT_FIELDS = ("subrun_pot_sum", "db_tortgt_pot", "db_tor101_pot",
                         "normalization", "normalized_pot_sum")
WRITE_MODES = ("recreate", "update")

# --- Encoding -------------------------------------------------------------------

def sample_to_dict(sample: Sample) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "sample_name": sample.sample_name,
        "sample_kind": sample.kind.value,
        "beam_mode": sample.beam.value,
    }
    for name in SCALAR_FIELDS:
        out[name] = float(getattr(sample, name))
    out["fragments"] = [
        {
            **{name: str(getattr(f, name)) for name in FRAGMENT_STRING_FIELDS},
            **{name: float(getattr(f, name)) for name in FRAGMENT_FLOAT_FIELDS},
        }
        for f in sample.fragments
    ]
    return out


def _field(record: Dict[str, Any], name: str, path: str, where: str = SAMPLE_KEY):
    if name not in record:
        raise SampleIOError(f"Missing field '{name}' in {where} of {path}")
    return record[name]


def _float(record: Dict[str, Any], name: str, path: str, where: str = SAMPLE_KEY) -> float:
    value = _field(record, name, path, where)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SampleIOError(f"Field '{name}' in {where} of {path} is not a number: {value!r}")
    return float(value)


def sample_from_dict(record: Dict[str, Any], path: str = "<memory>") -> Sample:
    try:
        kind = SampleKind.parse(str(_field(record, "sample_kind", path)))
        beam = BeamMode.parse(str(_field(record, "beam_mode", path)))
    except InputError as exc:
        raise SampleIOError(f"{path}: {exc}") from exc
    rows = _field(record, "fragments", path)
    if not isinstance(rows, list):
        raise SampleIOError(f"Field 'fragments' in {SAMPLE_KEY} of {path} is not a table")
    fragments = []
    for i, row in enumerate(rows):
        where = f"{SAMPLE_KEY}/fragments[{i}]"
        fragments.append(SampleFragment(
            **{name: str(_field(row, name, path, where)) for name in FRAGMENT_STRING_FIELDS},
            **{name: _float(row, name, path, where) for name in FRAGMENT_FLOAT_FIELDS},
        ))
    return Sample(
        sample_name=str(_field(record, "sample_name", path)),
        kind=kind,
        beam=beam,
        fragments=tuple(fragments),
        **{name: _float(record, name, path) for name in SCALAR_FIELDS},
    )

# --- File IO --------------------------------------------------------------------

def _load_document(path: Path) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8-sig") as f:
            doc = json.load(f)
    except OSError as exc:
        raise SampleIOError(f"Failed to open sample file for READ: {path}: {exc}") from exc
    except ValueError as exc:
        raise SampleIOError(f"Sample file {path} is not valid JSON: {exc}") from exc
    if not isinstance(doc, dict):
        raise SampleIOError(f"Sample file {path} does not hold a JSON object")
    return doc


def write_sample(sample: Sample, out_file: str | Path, mode: str = "recreate") -> None:
    """
    Write the sample under its dedicated key.
    'recreate' replaces the file, 'update' keeps any other top-level keys.
    The new content is written beside the target and renamed over it.
    """
    if mode not in WRITE_MODES:
        raise SampleIOError(f"Unknown write mode '{mode}' (expected one of {', '.join(WRITE_MODES)})")
    path = Path(out_file)
    doc: Dict[str, Any] = {}
    if mode == "update" and path.exists():
        doc = _load_document(path)
    doc[SAMPLE_KEY] = sample_to_dict(sample)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as exc:
        raise SampleIOError(f"Failed to open sample file for WRITE: {path}: {exc}") from exc
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=4)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except OSError as exc:
        raise SampleIOError(f"Failed to write sample file {path}: {exc}") from exc
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
    logging.debug("Wrote sample '%s' to %s (%s)", sample.sample_name, path, mode)


def read_sample(in_file: str | Path) -> Sample:
    path = Path(in_file)
    doc = _load_document(path)
    record = doc.get(SAMPLE_KEY)
    if not isinstance(record, dict):
        raise SampleIOError(f"Missing sample record '{SAMPLE_KEY}' in file: {path}")
    return sample_from_dict(record, str(path))


def is_sample_file(path: str | Path) -> bool:
    """True for a JSON sample document (manifests are SQLite). A .json name is always a sample."""
    p = Path(path)
    if p.suffix.lower() == ".json":
        return True
    try:
        with open(p, "rb") as f:
            head = f.read(16)
    except OSError:
        return False
    if head.startswith(b"SQLite format 3"):
        return False
    return head.lstrip(b"\xef\xbb\xbf \t\r\n")[:1] == b"{"
