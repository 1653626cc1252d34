from __future__ import annotations

from pathlib import Path
from typing import List, Tuple

from .errors import InputError


def read_file_list(filelist_path: str | Path) -> List[str]:
    """
    Read a newline-delimited list of paths.
    Blank lines and lines starting with '#' are skipped; an empty list is an error.
    """
    try:
        text = Path(filelist_path).read_text(encoding="utf-8")
    except OSError as exc:
        raise InputError(f"Failed to open filelist: {filelist_path} ({exc.strerror or exc})") from exc
    files = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        files.append(line)
    if not files:
        raise InputError(f"Filelist is empty: {filelist_path}")
    return files


def parse_spec(spec: str) -> Tuple[str, str]:
    """Split NAME:FILELIST at the first colon."""
    name, sep, filelist = spec.partition(":")
    if not sep:
        raise InputError(f"Bad specification (expected NAME:FILELIST): {spec}")
    name, filelist = name.strip(), filelist.strip()
    if not name or not filelist:
        raise InputError(f"Bad specification: {spec}")
    return name, filelist
