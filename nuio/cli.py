from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from . import config
from .aggregator import aggregate_sources
from .errors import NuIOError
from .inputs import parse_spec, read_file_list
from .manifest import list_stage_names, read_metadata, read_stages, register_stage
from .rundb import sum_runinfo_for_pairs
from .sampleio import WRITE_MODES, read_sample, write_sample
from .samplelist import read_samples, update_sample_list
from .scanner import peek_event_flags, scan_subrun_tree
from .types import BeamMode, SampleKind, StageConfig, StageRecord

LOG_FORMAT = "%(levelname)s | %(message)s"

# --- Commands -------------------------------------------------------------------

def cmd_partition(args: argparse.Namespace) -> int:
    stage_name, filelist_path = parse_spec(args.stage)
    manifest_path = Path(args.manifest) if args.manifest else config.default_manifest_path(stage_name)
    run_db = args.run_db or config.run_db_path()
    pot_scale = args.pot_scale if args.pot_scale is not None else config.pot_scale()

    if stage_name in list_stage_names(manifest_path):
        logging.info("exists stage=%s manifest=%s", stage_name, manifest_path)
        return 0

    files = read_file_list(filelist_path)
    kind, beam = peek_event_flags(files[0])
    if args.kind:
        kind = SampleKind.parse(args.kind)
    if args.beam:
        beam = BeamMode.parse(args.beam)

    scan = scan_subrun_tree(files)
    exposure = sum_runinfo_for_pairs(run_db, scan.unique_pairs)
    record = StageRecord(
        cfg=StageConfig(stage_name, filelist_path),
        n_input_files=len(files),
        kind=kind,
        beam=beam,
        scan=scan,
        exposure=exposure,
    )
    logging.info("add stage=%s kind=%s beam=%s files=%d pairs=%d pot_sum=%g tortgt=%g",
                 stage_name, kind.value, beam.value, record.n_input_files,
                 len(scan.unique_pairs), scan.pot_sum, exposure.tortgt_sum * pot_scale)
    register_stage(manifest_path, record, run_db, pot_scale)
    return 0


def cmd_aggregate(args: argparse.Namespace) -> int:
    sample_name, filelist_path = parse_spec(args.sample)
    sources = read_file_list(filelist_path)
    output = Path(args.output) if args.output else config.default_sample_path(sample_name)
    list_path = Path(args.sample_list) if args.sample_list else config.default_sample_list_path()

    logging.info("action=sample_build status=start inputs=%d", len(sources))
    sample = aggregate_sources(sample_name, sources)
    # A malformed list must fail before the sample file is touched.
    entries = read_samples(list_path, allow_missing=True, require_nonempty=False)
    write_sample(sample, output, mode=args.mode)
    update_sample_list(list_path, sample, str(output), entries)
    logging.info("sample=%s kind=%s beam=%s fragments=%d pot_sum=%g db_tortgt_pot_sum=%g "
                 "normalization=%g normalized_pot_sum=%g output=%s",
                 sample.sample_name, sample.kind.value, sample.beam.value, len(sample.fragments),
                 sample.subrun_pot_sum, sample.db_tortgt_pot_sum, sample.normalization,
                 sample.normalized_pot_sum, output)
    return 0


def cmd_stages(args: argparse.Namespace) -> int:
    meta = read_metadata(args.manifest)
    print(f"# db_path={meta.db_path} pot_scale={meta.pot_scale:g}")
    for rec in read_stages(args.manifest):
        print(f"{rec.stage_name}\t{rec.kind.value}\t{rec.beam.value}\tfiles={rec.n_input_files}"
              f"\tpairs={len(rec.scan.unique_pairs)}\tpot_sum={rec.scan.pot_sum:g}"
              f"\ttortgt={rec.exposure.tortgt_sum * meta.pot_scale:g}")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    s = read_sample(args.sample_file)
    print(f"sample={s.sample_name} kind={s.kind.value} beam={s.beam.value}")
    print(f"  pot_sum={s.subrun_pot_sum:g} db_tortgt_pot_sum={s.db_tortgt_pot_sum:g} "
          f"db_tor101_pot_sum={s.db_tor101_pot_sum:g}")
    print(f"  normalization={s.normalization:.6g} normalized_pot_sum={s.normalized_pot_sum:g}")
    for f in s.fragments:
        print(f"  - {f.fragment_name} ({f.source_path}) pot_sum={f.subrun_pot_sum:g} "
              f"tortgt={f.db_tortgt_pot:g} normalization={f.normalization:.6g}")
    return 0

# --- Main -----------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="nuio",
        description="Register art stages into POT manifests and aggregate them into normalised samples.")
    ap.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("partition", help="Scan a stage's files and append it to a manifest.")
    p.add_argument("stage", help="STAGE:FILELIST")
    p.add_argument("--manifest", help=f"Manifest path (default: ${config.ARTIO_DIR_ENV}/artio_<stage>.db).")
    p.add_argument("--run-db", help=f"Path to run.db (default: {config.DEFAULT_RUN_DB}).")
    p.add_argument("--pot-scale", type=float, help="Scale from runinfo toroid units to POT (default: 1e12).")
    p.add_argument("--kind", help="Override the sample kind read from the input files.")
    p.add_argument("--beam", help="Override the beam mode read from the input files.")
    p.set_defaults(func=cmd_partition)

    p = sub.add_parser("aggregate", help="Aggregate manifests or samples into one sample.")
    p.add_argument("sample", help="NAME:FILELIST (manifests and/or sample files)")
    p.add_argument("--output", help=f"Sample output path (default: ${config.SAMPLE_DIR_ENV}/sample_<name>.json).")
    p.add_argument("--sample-list", help="Sample list to update (default: alongside the samples).")
    p.add_argument("--mode", choices=WRITE_MODES, default="recreate", help="Sample file write mode.")
    p.set_defaults(func=cmd_aggregate)

    p = sub.add_parser("stages", help="List the stages registered in a manifest.")
    p.add_argument("manifest")
    p.set_defaults(func=cmd_stages)

    p = sub.add_parser("show", help="Print a sample record.")
    p.add_argument("sample_file")
    p.set_defaults(func=cmd_show)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)
    try:
        return args.func(args)
    except (NuIOError, OSError) as exc:
        print(f"FATAL: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 128 + signal.SIGINT


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
