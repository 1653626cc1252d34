from __future__ import annotations

import numpy as np
import pytest

from conftest import subrun_branches
from nuio import cli
from nuio.manifest import read_metadata, read_stages
from nuio.sampleio import read_sample
from nuio.samplelist import read_samples
from nuio.types import BeamMode, SampleKind


@pytest.fixture
def stage_inputs(tmp_path, write_root, run_db):
    flags = {"is_data": np.array([True, True, True]), "is_numi": np.array([True, True, True])}
    a = write_root("a.root", {
        "nuselection/SubRun": subrun_branches([(5, 1, 2e12), (5, 2, 3e12)]),
        "nuselection/EventSelectionFilter": flags,
    })
    b = write_root("b.root", {
        "nuselection/SubRun": subrun_branches([(5, 2, 3e12), (5, 3, 1e12)]),
        "nuselection/EventSelectionFilter": flags,
    })
    filelist = tmp_path / "beamon.txt"
    filelist.write_text(f"# beam-on run 5\n{a}\n{b}\n")
    # (5, 3) has no runinfo row
    db = run_db([(5, 1, 2.5, 2.4, 0), (5, 2, 3.5, 3.4, 0), (6, 1, 50.0, 50.0, 0)])
    return filelist, db


def _partition(filelist, db, manifest, name: str = "beamon", *extra: str) -> int:
    return cli.main(["partition", f"{name}:{filelist}", "--manifest", str(manifest),
                     "--run-db", db, "--pot-scale", "1e12", *extra])


def test_partition_registers_stage(tmp_path, stage_inputs) -> None:
    filelist, db = stage_inputs
    manifest = tmp_path / "artio" / "run5.db"

    assert _partition(filelist, db, manifest) == 0

    [rec] = read_stages(manifest)
    assert rec.stage_name == "beamon"
    assert rec.cfg.filelist_path == str(filelist)
    assert rec.n_input_files == 2
    assert rec.kind is SampleKind.DATA and rec.beam is BeamMode.NUMI
    assert rec.scan.unique_pairs == ((5, 1), (5, 2), (5, 3))
    assert rec.scan.pot_sum == 6e12
    assert rec.scan.n_entries == 4
    assert rec.exposure.tortgt_sum == 6.0
    assert read_metadata(manifest).db_path == db
    assert read_metadata(manifest).pot_scale == 1e12


def test_partition_is_idempotent(tmp_path, stage_inputs) -> None:
    filelist, db = stage_inputs
    manifest = tmp_path / "run5.db"
    assert _partition(filelist, db, manifest) == 0
    before = manifest.read_bytes()

    assert _partition(filelist, db, manifest) == 0

    assert manifest.read_bytes() == before


def test_partition_overrides(tmp_path, stage_inputs) -> None:
    filelist, db = stage_inputs
    manifest = tmp_path / "run5.db"
    assert _partition(filelist, db, manifest, "ext", "--kind", "EXT", "--beam", "numi") == 0
    [rec] = read_stages(manifest)
    assert rec.kind is SampleKind.EXT


def test_partition_default_manifest_location(tmp_path, stage_inputs, monkeypatch) -> None:
    filelist, db = stage_inputs
    monkeypatch.setenv("NUIO_ARTIO_DIR", str(tmp_path / "artio_out"))
    assert cli.main(["partition", f"beamon:{filelist}", "--run-db", db]) == 0
    assert read_metadata(tmp_path / "artio_out" / "artio_beamon.db").pot_scale == 1e12


def test_aggregate_writes_sample_and_list(tmp_path, stage_inputs) -> None:
    filelist, db = stage_inputs
    manifest = tmp_path / "run5.db"
    assert _partition(filelist, db, manifest) == 0
    sources = tmp_path / "manifests.txt"
    sources.write_text(f"{manifest}\n")
    out = tmp_path / "sample" / "beamon_run5.json"
    tsv = tmp_path / "sample" / "samples.tsv"

    rc = cli.main(["aggregate", f"beamon_run5:{sources}", "--output", str(out), "--sample-list", str(tsv)])

    assert rc == 0
    sample = read_sample(out)
    assert sample.subrun_pot_sum == 6e12
    assert sample.db_tortgt_pot_sum == 6e12
    assert sample.normalization == pytest.approx(1.0)
    assert [f.fragment_name for f in sample.fragments] == ["beamon"]
    [entry] = read_samples(tsv)
    assert (entry.sample_name, entry.sample_kind, entry.beam_mode, entry.output_path) == \
        ("beamon_run5", "data", "numi", str(out))


def test_stages_and_show_print_summaries(tmp_path, stage_inputs, capsys) -> None:
    filelist, db = stage_inputs
    manifest = tmp_path / "run5.db"
    _partition(filelist, db, manifest)
    sources = tmp_path / "manifests.txt"
    sources.write_text(f"{manifest}\n")
    out = tmp_path / "s.json"
    cli.main(["aggregate", f"s:{sources}", "--output", str(out), "--sample-list", str(tmp_path / "l.tsv")])
    capsys.readouterr()

    assert cli.main(["stages", str(manifest)]) == 0
    listed = capsys.readouterr().out
    assert "# db_path=" in listed
    assert "beamon\tdata\tnumi\tfiles=2\tpairs=3" in listed

    assert cli.main(["show", str(out)]) == 0
    shown = capsys.readouterr().out
    assert "sample=s kind=data beam=numi" in shown
    assert "- beamon" in shown


def test_fatal_errors_exit_with_one(tmp_path, capsys) -> None:
    assert cli.main(["partition", "no-colon-here"]) == 1
    err = capsys.readouterr().err
    assert err.startswith("FATAL: ")
    assert len(err.strip().splitlines()) == 1

    empty = tmp_path / "empty.txt"
    empty.write_text("# nothing\n")
    assert cli.main(["aggregate", f"s:{empty}"]) == 1
    assert "empty" in capsys.readouterr().err


def test_keyboard_interrupt_maps_to_signal_exit_code(monkeypatch) -> None:
    def _interrupted(args):
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "cmd_show", _interrupted)
    assert cli.main(["show", "whatever.json"]) == 130


def test_malformed_pot_scale_env_is_fatal(tmp_path, stage_inputs, monkeypatch, capsys) -> None:
    filelist, db = stage_inputs
    manifest = tmp_path / "run5.db"
    monkeypatch.setenv("NUIO_POT_SCALE", "abc")

    assert cli.main(["partition", f"beamon:{filelist}", "--manifest", str(manifest), "--run-db", db]) == 1

    err = capsys.readouterr().err
    assert err.startswith("FATAL: ")
    assert "NUIO_POT_SCALE" in err
    assert not manifest.exists()


def test_unknown_kind_override_is_fatal(tmp_path, stage_inputs, capsys) -> None:
    filelist, db = stage_inputs
    manifest = tmp_path / "run5.db"

    assert _partition(filelist, db, manifest, "ext", "--kind", "bogus") == 1

    assert "Unknown sample kind: 'bogus'" in capsys.readouterr().err
    assert not manifest.exists()


def test_malformed_sample_list_leaves_no_sample_behind(tmp_path, stage_inputs, capsys) -> None:
    filelist, db = stage_inputs
    manifest = tmp_path / "run5.db"
    assert _partition(filelist, db, manifest) == 0
    sources = tmp_path / "manifests.txt"
    sources.write_text(f"{manifest}\n")
    out = tmp_path / "sample" / "beamon_run5.json"
    tsv = tmp_path / "samples.tsv"
    tsv.write_text("sample_name\tsample_kind\tbeam_mode\toutput_path\nbroken\tdata\n")
    capsys.readouterr()

    rc = cli.main(["aggregate", f"beamon_run5:{sources}", "--output", str(out), "--sample-list", str(tsv)])

    assert rc == 1
    assert "Malformed sample list entry" in capsys.readouterr().err
    assert not out.exists()
    assert tsv.read_text().endswith("broken\tdata\n")
