"""
ArtIO manifest: the append-only ledger of processed stages.

A manifest is a single SQLite file holding three tables:

- ``Stages``      one row per registered stage (scan sums and runinfo sums)
- ``RunSubruns``  one row per unique (run, subrun) of a stage, keyed by stage_name
- ``ArtIO``       key/value metadata (run database path, POT scale), first writer wins

Registration is insert-if-absent. The existence check is repeated inside a
``BEGIN IMMEDIATE`` transaction so two processes registering into the same file
cannot both insert a stage. SQLite locking relies on the filesystem; on mounts
where file locks are not honoured callers must serialise writers themselves.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Set, Tuple

from . import config
from .errors import InputError, ManifestError
from .types import (BeamMode, ExposureSums, RunSubrun, SampleKind, ScanResult,
                    StageConfig, StageRecord)

STAGE_COLUMNS = (
    ("stage_name", "TEXT PRIMARY KEY"),
    ("filelist_path", "TEXT NOT NULL"),
    ("kind", "TEXT NOT NULL"),
    ("beam", "TEXT NOT NULL"),
    ("n_input_files", "INTEGER NOT NULL"),
    ("subrun_pot_sum", "REAL NOT NULL"),
    ("subrun_entries", "INTEGER NOT NULL"),
    ("n_unique_pairs", "INTEGER NOT NULL"),
    ("tortgt_sum", "REAL NOT NULL"),
    ("tor101_sum", "REAL NOT NULL"),
    ("tor860_sum", "REAL NOT NULL"),
    ("tor875_sum", "REAL NOT NULL"),
    ("EA9CNT_sum", "INTEGER NOT NULL"),
    ("E1DCNT_sum", "INTEGER NOT NULL"),
    ("EXTTrig_sum", "INTEGER NOT NULL"),
    ("Gate1Trig_sum", "INTEGER NOT NULL"),
    ("Gate2Trig_sum", "INTEGER NOT NULL"),
)
PAIR_COLUMNS = ("stage_name", "run", "subrun")
EXPOSURE_FIELDS = tuple(name for name, _ in STAGE_COLUMNS[8:])

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS Stages ("
    + ", ".join(f"{name} {decl}" for name, decl in STAGE_COLUMNS) + ");",
    "CREATE TABLE IF NOT EXISTS RunSubruns ("
    "stage_name TEXT NOT NULL, run INTEGER NOT NULL, subrun INTEGER NOT NULL, "
    "PRIMARY KEY (stage_name, run, subrun));",
    "CREATE TABLE IF NOT EXISTS ArtIO (key TEXT PRIMARY KEY, value TEXT NOT NULL);",
)


@dataclass(frozen=True)
class ManifestMetadata:
    db_path: str = ""
    pot_scale: float = 1.0

# --- Connections ----------------------------------------------------------------

def _connect_ro(path: Path) -> sqlite3.Connection:
    try:
        return sqlite3.connect(path.resolve().as_uri() + "?mode=ro", uri=True,
                               timeout=config.sqlite_timeout())
    except sqlite3.Error as exc:
        raise ManifestError(f"Failed to open manifest for READ: {path}: {exc}") from exc


def _connect_rw(path: Path) -> sqlite3.Connection:
    try:
        return sqlite3.connect(str(path), timeout=config.sqlite_timeout(), isolation_level=None)
    except sqlite3.Error as exc:
        raise ManifestError(f"Failed to open manifest for UPDATE: {path}: {exc}") from exc


def _tables(conn: sqlite3.Connection) -> Set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table';").fetchall()
    return {r[0] for r in rows}


def _check_columns(conn: sqlite3.Connection, path: Path, table: str, required) -> None:
    have = {r[1] for r in conn.execute(f"PRAGMA table_info({table});").fetchall()}
    missing = [c for c in required if c not in have]
    if missing:
        raise ManifestError(f"Manifest {path}: table {table} is missing column(s) {', '.join(missing)}")


def _check_schema(conn: sqlite3.Connection, path: Path) -> Set[str]:
    tables = _tables(conn)
    if "Stages" in tables:
        _check_columns(conn, path, "Stages", [name for name, _ in STAGE_COLUMNS])
    if "RunSubruns" in tables:
        _check_columns(conn, path, "RunSubruns", PAIR_COLUMNS)
    return tables

# --- Reading --------------------------------------------------------------------

def list_stage_names(manifest_path: str | Path) -> Set[str]:
    """Stage names already in the manifest; empty if the file does not exist yet."""
    path = Path(manifest_path)
    if not path.exists():
        return set()
    with closing(_connect_ro(path)) as conn:
        try:
            if "Stages" not in _check_schema(conn, path):
                return set()
            rows = conn.execute("SELECT stage_name FROM Stages;").fetchall()
        except sqlite3.Error as exc:
            raise ManifestError(f"Unreadable manifest {path}: {exc}") from exc
    return {r[0] for r in rows}


def _require(path: Path) -> None:
    if not path.is_file():
        raise ManifestError(f"Manifest not found: {path}")


def _pairs_by_stage(conn: sqlite3.Connection) -> Dict[str, List[RunSubrun]]:
    out: Dict[str, List[RunSubrun]] = {}
    rows = conn.execute(
        "SELECT stage_name, run, subrun FROM RunSubruns ORDER BY stage_name, run, subrun;")
    for name, run, subrun in rows:
        out.setdefault(name, []).append(RunSubrun(int(run), int(subrun)))
    return out


def _record_from_row(row: sqlite3.Row, pairs: List[RunSubrun], path: Path) -> StageRecord:
    try:
        kind = SampleKind.parse(row["kind"])
        beam = BeamMode.parse(row["beam"])
    except InputError as exc:
        raise ManifestError(f"Manifest {path}, stage {row['stage_name']}: {exc}") from exc
    return StageRecord(
        cfg=StageConfig(row["stage_name"], row["filelist_path"]),
        n_input_files=int(row["n_input_files"]),
        kind=kind,
        beam=beam,
        scan=ScanResult(
            unique_pairs=tuple(pairs),
            pot_sum=float(row["subrun_pot_sum"]),
            n_entries=int(row["subrun_entries"]),
        ),
        exposure=ExposureSums(
            tortgt_sum=float(row["tortgt_sum"]),
            tor101_sum=float(row["tor101_sum"]),
            tor860_sum=float(row["tor860_sum"]),
            tor875_sum=float(row["tor875_sum"]),
            EA9CNT_sum=int(row["EA9CNT_sum"]),
            E1DCNT_sum=int(row["E1DCNT_sum"]),
            EXTTrig_sum=int(row["EXTTrig_sum"]),
            Gate1Trig_sum=int(row["Gate1Trig_sum"]),
            Gate2Trig_sum=int(row["Gate2Trig_sum"]),
        ),
    )


def read_stages(manifest_path: str | Path) -> List[StageRecord]:
    """All stage records of a manifest, in registration order."""
    path = Path(manifest_path)
    _require(path)
    with closing(_connect_ro(path)) as conn:
        conn.row_factory = sqlite3.Row
        try:
            tables = _check_schema(conn, path)
            for table in ("Stages", "RunSubruns"):
                if table not in tables:
                    raise ManifestError(f"Manifest {path} has no {table} table")
            pairs = _pairs_by_stage(conn)
            rows = conn.execute("SELECT * FROM Stages ORDER BY rowid;").fetchall()
        except sqlite3.Error as exc:
            raise ManifestError(f"Unreadable manifest {path}: {exc}") from exc
    records = [_record_from_row(r, pairs.get(r["stage_name"], []), path) for r in rows]
    for rec, row in zip(records, rows):
        if len(rec.scan.unique_pairs) != int(row["n_unique_pairs"]):
            logging.warning("Manifest %s: stage %s lists %d pairs but records n_unique_pairs=%d",
                            path, rec.stage_name, len(rec.scan.unique_pairs), row["n_unique_pairs"])
    return records


def read_run_subruns(manifest_path: str | Path, stage_name: str) -> Tuple[RunSubrun, ...]:
    path = Path(manifest_path)
    _require(path)
    with closing(_connect_ro(path)) as conn:
        try:
            if "RunSubruns" not in _check_schema(conn, path):
                return ()
            rows = conn.execute(
                "SELECT run, subrun FROM RunSubruns WHERE stage_name = ? ORDER BY run, subrun;",
                (stage_name,)).fetchall()
        except sqlite3.Error as exc:
            raise ManifestError(f"Unreadable manifest {path}: {exc}") from exc
    return tuple(RunSubrun(int(r), int(s)) for r, s in rows)


def read_metadata(manifest_path: str | Path) -> ManifestMetadata:
    path = Path(manifest_path)
    _require(path)
    with closing(_connect_ro(path)) as conn:
        try:
            if "ArtIO" not in _check_schema(conn, path):
                return ManifestMetadata()
            meta = dict(conn.execute("SELECT key, value FROM ArtIO;").fetchall())
        except sqlite3.Error as exc:
            raise ManifestError(f"Unreadable manifest {path}: {exc}") from exc
    try:
        pot_scale = float(meta.get("pot_scale", 1.0))
    except ValueError:
        raise ManifestError(f"Manifest {path}: bad pot_scale '{meta['pot_scale']}'") from None
    return ManifestMetadata(db_path=meta.get("db_path", ""), pot_scale=pot_scale)

# --- Writing --------------------------------------------------------------------

def _stage_row(record: StageRecord) -> tuple:
    exposure = record.exposure
    return (
        record.cfg.stage_name,
        record.cfg.filelist_path,
        record.kind.value,
        record.beam.value,
        int(record.n_input_files),
        float(record.scan.pot_sum),
        int(record.scan.n_entries),
        len(record.scan.unique_pairs),
        *(getattr(exposure, name) for name in EXPOSURE_FIELDS),
    )


def register_stage(manifest_path: str | Path,
                   record: StageRecord,
                   db_path: str,
                   pot_scale: float) -> bool:
    """
    Append a stage to the manifest unless its name is already registered.
    Returns True when the stage was written, False when it already existed.
    """
    path = Path(manifest_path)
    name = record.cfg.stage_name
    if name in list_stage_names(path):
        logging.info("exists stage=%s manifest=%s", name, path)
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    with closing(_connect_rw(path)) as conn:
        try:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                for stmt in _SCHEMA:
                    conn.execute(stmt)
                _check_schema(conn, path)
                if conn.execute("SELECT 1 FROM Stages WHERE stage_name = ?;", (name,)).fetchone():
                    conn.execute("ROLLBACK;")
                    logging.info("exists stage=%s manifest=%s", name, path)
                    return False
                placeholders = ", ".join("?" for _ in STAGE_COLUMNS)
                conn.execute(f"INSERT INTO Stages VALUES ({placeholders});", _stage_row(record))
                conn.executemany(
                    "INSERT INTO RunSubruns(stage_name, run, subrun) VALUES (?, ?, ?);",
                    [(name, int(p.run), int(p.subrun)) for p in record.scan.unique_pairs])
                conn.executemany(
                    "INSERT OR IGNORE INTO ArtIO(key, value) VALUES (?, ?);",
                    [("db_path", str(db_path)), ("pot_scale", repr(float(pot_scale)))])
                conn.execute("COMMIT;")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK;")
                raise
        except sqlite3.Error as exc:
            raise ManifestError(f"Failed to register stage {name} in {path}: {exc}") from exc
    return True
