from __future__ import annotations

import os
from pathlib import Path

from .errors import InputError

# --- Paths & defaults ---------------------------------------------------------
DEFAULT_RUN_DB = "/exp/uboone/data/uboonebeam/beamdb/run.db"
# runinfo toroid columns are stored in units of 1e12 POT
DEFAULT_POT_SCALE = 1e12
DEFAULT_SQLITE_TIMEOUT = 30.0

ARTIO_DIR_ENV = "NUIO_ARTIO_DIR"
SAMPLE_DIR_ENV = "NUIO_SAMPLE_DIR"
SAMPLE_LIST_NAME = "samples.tsv"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise InputError(f"Environment variable {name} is not a number: '{raw}'") from None


def run_db_path() -> str:
    return os.environ.get("NUIO_RUN_DB") or DEFAULT_RUN_DB


def pot_scale() -> float:
    return _env_float("NUIO_POT_SCALE", DEFAULT_POT_SCALE)


def sqlite_timeout() -> float:
    return _env_float("NUIO_SQLITE_TIMEOUT", DEFAULT_SQLITE_TIMEOUT)


def stage_output_dir(env_var: str, default_subdir: str) -> Path:
    """Output directory taken from env_var if set, otherwise ./default_subdir."""
    value = os.environ.get(env_var)
    return Path(value) if value else Path.cwd() / default_subdir


def default_manifest_path(stage_name: str) -> Path:
    return stage_output_dir(ARTIO_DIR_ENV, "artio") / f"artio_{stage_name}.db"


def default_sample_path(sample_name: str) -> Path:
    return stage_output_dir(SAMPLE_DIR_ENV, "sample") / f"sample_{sample_name}.json"


def default_sample_list_path() -> Path:
    return stage_output_dir(SAMPLE_DIR_ENV, "sample") / SAMPLE_LIST_NAME
