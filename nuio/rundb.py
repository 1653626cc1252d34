from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Iterable, List

from .errors import DatabaseError
from .types import ExposureSums, RunSubrun

RUNINFO_TABLE = "runinfo"
# (runinfo column, ExposureSums field, python type)
RUNINFO_COLUMNS = (
    ("tortgt", "tortgt_sum", float),
    ("tor101", "tor101_sum", float),
    ("tor860", "tor860_sum", float),
    ("tor875", "tor875_sum", float),
    ("EA9CNT", "EA9CNT_sum", int),
    ("E1DCNT", "E1DCNT_sum", int),
    ("EXTTrig", "EXTTrig_sum", int),
    ("Gate1Trig", "Gate1Trig_sum", int),
    ("Gate2Trig", "Gate2Trig_sum", int),
)


class RunInfoDB:
    """
    Read-only view of the beam run database.

    The connection is opened once and released by close() or by leaving a
    ``with`` block, whichever comes first.
    """

    def __init__(self, path: str | Path):
        self.path = str(path)
        self._conn = None
        p = Path(path)
        if not p.is_file():
            raise DatabaseError(f"Run database not found: {self.path}")
        try:
            self._conn = sqlite3.connect(p.resolve().as_uri() + "?mode=ro", uri=True)
            self._conn.execute("PRAGMA temp_store=MEMORY;")
        except sqlite3.Error as exc:
            self.close()
            raise DatabaseError(f"Failed to open run database {self.path}: {exc}") from exc

    def __enter__(self) -> "RunInfoDB":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _load_pairs(self, cur: sqlite3.Cursor, pairs: Iterable[RunSubrun]) -> None:
        cur.execute("DROP TABLE IF EXISTS temp.pairs;")
        cur.execute("CREATE TEMP TABLE pairs(run INTEGER, subrun INTEGER);")
        cur.executemany("INSERT INTO pairs(run, subrun) VALUES (?, ?);",
                        [(int(r), int(s)) for r, s in pairs])

    def sum_runinfo(self, pairs: Iterable[RunSubrun]) -> ExposureSums:
        """
        Sum the runinfo counters over the given (run,subrun) pairs in one query.
        Pairs without a runinfo row simply add nothing.
        """
        pairs = list(pairs)
        if not pairs:
            return ExposureSums()
        if self._conn is None:
            raise DatabaseError(f"Run database is closed: {self.path}")
        select = ",\n               ".join(
            f"IFNULL(SUM(r.{col}), 0) AS {col}" for col, _, _ in RUNINFO_COLUMNS)
        cur = self._conn.cursor()
        try:
            self._load_pairs(cur, pairs)
            row = cur.execute(f"""
                SELECT {select}
                FROM {RUNINFO_TABLE} r
                JOIN pairs p ON r.run = p.run AND r.subrun = p.subrun;
            """).fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(f"runinfo query failed on {self.path}: {exc}") from exc
        finally:
            cur.close()
        return ExposureSums(**{field: cast(value or 0)
                               for (_, field, cast), value in zip(RUNINFO_COLUMNS, row)})

    def missing_pairs(self, pairs: Iterable[RunSubrun]) -> List[RunSubrun]:
        pairs = list(pairs)
        if not pairs:
            return []
        if self._conn is None:
            raise DatabaseError(f"Run database is closed: {self.path}")
        cur = self._conn.cursor()
        try:
            self._load_pairs(cur, pairs)
            rows = cur.execute(f"""
                SELECT p.run, p.subrun
                FROM pairs p
                LEFT JOIN {RUNINFO_TABLE} r ON r.run = p.run AND r.subrun = p.subrun
                WHERE r.run IS NULL
                ORDER BY p.run, p.subrun;
            """).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"runinfo query failed on {self.path}: {exc}") from exc
        finally:
            cur.close()
        return [RunSubrun(int(r), int(s)) for r, s in rows]


def sum_runinfo_for_pairs(db_path: str | Path, pairs: Iterable[RunSubrun]) -> ExposureSums:
    pairs = list(pairs)
    with RunInfoDB(db_path) as db:
        sums = db.sum_runinfo(pairs)
        missing = db.missing_pairs(pairs)
    if missing:
        logging.warning("%d (run,subrun) pairs not found in %s (showing up to 5): %s",
                        len(missing), db_path, [tuple(p) for p in missing[:5]])
    return sums
