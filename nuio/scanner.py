from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import uproot

from .errors import InputError, ScanError
from .types import BeamMode, RunSubrun, SampleKind, ScanResult

SUBRUN_TREE_CANDIDATES = (
    "nuselection/SubRun", "nuselection/SubRuns",
    "SubRun", "SubRuns",
    "subrun", "subruns",
)
EVENT_FLAG_TREE_CANDIDATES = (
    "nuselection/EventSelectionFilter",
    "EventSelectionFilter",
)

# --- Tree lookup ----------------------------------------------------------------

def _branch_map(tree) -> Dict[str, str]:
    return {k.lower(): k for k in tree.keys()}


def _has_pair_branches(tree) -> bool:
    bmap = _branch_map(tree)
    return "run" in bmap and "subrun" in bmap


def _find_subrun_tree(rf) -> Optional[uproot.TTree]:
    for name in SUBRUN_TREE_CANDIDATES:
        try:
            t = rf[name]
        except Exception:
            continue
        if isinstance(t, uproot.TTree) and _has_pair_branches(t):
            return t
    for path, cls in (rf.classnames(recursive=True) or {}).items():
        if cls != "TTree":
            continue
        try:
            t = rf[path]
            usable = _has_pair_branches(t)
        except Exception as exc:
            logging.debug("Skipping unreadable tree '%s': %s", path, exc)
            continue
        if usable:
            logging.debug("Using fallback tree '%s' for (run,subrun)", path)
            return t
    return None


def _open(path: str):
    try:
        return uproot.open(path)
    except Exception as exc:
        raise ScanError(f"Failed to open input file: {path}: {exc}") from exc


def _read_rows(path: str) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return run, subrun and pot arrays for one file (empty when no usable tree)."""
    empty = (np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64), np.empty(0, dtype=np.float64))
    with _open(path) as rf:
        try:
            tree = _find_subrun_tree(rf)
        except Exception as exc:
            raise ScanError(f"Failed listing trees in {path}: {exc}") from exc
        if tree is None:
            logging.warning("%s: no tree with (run,subrun) branches; file contributes nothing", path)
            return empty
        if tree.num_entries == 0:
            logging.warning("%s: subrun tree '%s' has no entries", path, tree.object_path)
            return empty
        bmap = _branch_map(tree)
        try:
            run = tree[bmap["run"]].array(library="np").astype(np.int64)
            sub = tree[bmap["subrun"]].array(library="np").astype(np.int64)
            if "pot" in bmap:
                pot = tree[bmap["pot"]].array(library="np").astype(np.float64)
            else:
                pot = np.zeros(len(run), dtype=np.float64)
        except Exception as exc:
            raise ScanError(f"Failed reading subrun tree in {path}: {exc}") from exc
    return run, sub, pot

# --- Scan -----------------------------------------------------------------------

def scan_subrun_tree(files: Sequence[str]) -> ScanResult:
    """
    Collect unique (run,subrun) pairs over files and sum the per-subrun POT.
    The first row seen for a pair supplies its POT; repeated rows are ignored.
    """
    if not files:
        raise InputError("Subrun scan requires at least one input file")

    first_pot: Dict[RunSubrun, float] = {}
    pot_sum = 0.0
    n_entries = 0
    n_inconsistent = 0

    for f in files:
        run, sub, pot = _read_rows(str(f))
        n_entries += len(run)
        for r, s, p in zip(run.tolist(), sub.tolist(), pot.tolist()):
            pair = RunSubrun(r, s)
            seen = first_pot.get(pair)
            if seen is None:
                first_pot[pair] = p
                pot_sum += p
            elif seen != p:
                n_inconsistent += 1
        logging.debug("%s: %d rows, %d unique pairs so far", f, len(run), len(first_pot))

    if n_inconsistent:
        logging.warning(
            "%d duplicate (run,subrun) rows carried a POT value different from the first row; "
            "first value kept", n_inconsistent)

    return ScanResult(
        unique_pairs=tuple(sorted(first_pot)),
        pot_sum=float(pot_sum),
        n_entries=int(n_entries),
    )

# --- Event flags ----------------------------------------------------------------

def peek_event_flags(path: str) -> Tuple[SampleKind, BeamMode]:
    """
    Classify a stage from the first row of its event selection tree.
    Anything that cannot be read is reported as unknown.
    """
    kind, beam = SampleKind.UNKNOWN, BeamMode.UNKNOWN
    try:
        with uproot.open(path) as rf:
            tree = None
            for name in EVENT_FLAG_TREE_CANDIDATES:
                try:
                    tree = rf[name]
                    break
                except Exception:
                    continue
            if tree is None or tree.num_entries <= 0:
                return kind, beam
            keys = set(tree.keys())
            if "is_data" in keys:
                is_data = bool(tree["is_data"].array(library="np", entry_stop=1)[0])
                kind = SampleKind.DATA if is_data else SampleKind.UNKNOWN
            if "is_numi" in keys:
                is_numi = bool(tree["is_numi"].array(library="np", entry_stop=1)[0])
                beam = BeamMode.NUMI if is_numi else BeamMode.BNB
    except Exception as exc:
        logging.warning("Could not peek event flags in %s: %s", path, exc)
        return SampleKind.UNKNOWN, BeamMode.UNKNOWN
    return kind, beam
