from __future__ import annotations

import pytest

from nuio.errors import InputError
from nuio.inputs import parse_spec, read_file_list


def test_read_file_list_skips_blank_and_comment_lines(tmp_path) -> None:
    path = tmp_path / "files.txt"
    path.write_text("# header\n\n  /data/a.root  \n/data/b.root\n   \n#/data/c.root\n")
    assert read_file_list(path) == ["/data/a.root", "/data/b.root"]


def test_read_file_list_empty_is_an_error(tmp_path) -> None:
    path = tmp_path / "files.txt"
    path.write_text("# nothing here\n\n")
    with pytest.raises(InputError, match="empty"):
        read_file_list(path)


def test_read_file_list_missing_is_an_error(tmp_path) -> None:
    with pytest.raises(InputError, match="nope.txt"):
        read_file_list(tmp_path / "nope.txt")


@pytest.mark.parametrize("spec, expected", [
    ("stage:list.txt", ("stage", "list.txt")),
    ("  stage :  /abs/list.txt ", ("stage", "/abs/list.txt")),
    ("stage:dir/with:colon.txt", ("stage", "dir/with:colon.txt")),
])
def test_parse_spec(spec, expected) -> None:
    assert parse_spec(spec) == expected


@pytest.mark.parametrize("spec", ["stage", ":list.txt", "stage:", "  :  "])
def test_parse_spec_rejects_malformed(spec) -> None:
    with pytest.raises(InputError):
        parse_spec(spec)
