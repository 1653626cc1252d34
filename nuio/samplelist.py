from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional

from .errors import InputError
from .types import Sample

HEADER = ("sample_name", "sample_kind", "beam_mode", "output_path")


@dataclass(frozen=True)
class SampleListEntry:
    sample_name: str
    sample_kind: str
    beam_mode: str
    output_path: str


def read_samples(list_path: str | Path,
                 allow_missing: bool = False,
                 require_nonempty: bool = True) -> List[SampleListEntry]:
    path = Path(list_path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        if allow_missing:
            return []
        raise InputError(f"Sample list not found: {path}") from None
    except OSError as exc:
        raise InputError(f"Failed to open sample list: {path} ({exc})") from exc

    entries: List[SampleListEntry] = []
    first = True
    for line in text.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        fields = line.rstrip("\r\n").split("\t")
        if len(fields) < 4:
            raise InputError(f"Malformed sample list entry in {path}: {line}")
        if first and fields[0].strip() == HEADER[0]:
            first = False
            continue
        first = False
        entries.append(SampleListEntry(*(f.strip() for f in fields[:4])))

    if require_nonempty and not entries:
        raise InputError(f"Sample list is empty: {path}")
    return entries


def write_samples(list_path: str | Path, entries: List[SampleListEntry]) -> None:
    path = Path(list_path)
    entries = sorted(entries, key=lambda e: (e.sample_kind, e.beam_mode, e.sample_name))
    lines = ["\t".join(HEADER)]
    lines += ["\t".join((e.sample_name, e.sample_kind, e.beam_mode, e.output_path)) for e in entries]
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)


def update_sample_list(list_path: str | Path, sample: Sample, output_path: str,
                       entries: Optional[List[SampleListEntry]] = None) -> None:
    """
    Insert or refresh the row keyed by (sample_name, kind, beam) and rewrite the list.
    Pass entries already read from list_path to skip reading it again.
    """
    if entries is None:
        entries = read_samples(list_path, allow_missing=True, require_nonempty=False)
    entries = list(entries)
    key = (sample.sample_name, sample.kind.value, sample.beam.value)
    for i, e in enumerate(entries):
        if (e.sample_name, e.sample_kind, e.beam_mode) == key:
            entries[i] = replace(e, output_path=str(output_path))
            break
    else:
        entries.append(SampleListEntry(*key, str(output_path)))
    write_samples(list_path, entries)
