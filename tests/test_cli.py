import importlib.util
import os

import pytest

from zip_builder import UNIX_DIRECTORY, build_archive

SCRIPT = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "zip-salvage.py")


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("zip_salvage_cli", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module.ZipSalvage()


@pytest.fixture
def archive(tmp_path):
    data, _ = build_archive([
        (b"photos/", b"", {"external_attr": UNIX_DIRECTORY}),
        (b"photos/cat.jpg", b"\xff\xd8" + b"meow" * 100, {}),
        (b"notes.txt", b"remember the milk\n" * 10, {"deflate": True}),
    ])
    path = tmp_path / "download.zip"
    path.write_bytes(data)
    return path


def test_list(cli, archive, capsys):
    assert cli.run([str(archive), "list"]) == 0
    assert capsys.readouterr().out.splitlines() == ["photos/", "photos/cat.jpg", "notes.txt"]


def test_ls_long(cli, archive, capsys):
    assert cli.run([str(archive), "-l", "0", "ls", "--long"]) == 0
    out = capsys.readouterr().out
    assert "Permissions" in out
    assert "deflated" in out


def test_extract(cli, archive, tmp_path, capsys):
    out = tmp_path / "out"
    assert cli.run([str(archive), "extract", "-o", str(out)]) == 0
    assert (out / "photos" / "cat.jpg").read_bytes().startswith(b"\xff\xd8meow")
    assert (out / "notes.txt").read_bytes() == b"remember the milk\n" * 10
    assert "Extraction complete: 2 files, 1 directories, 0 failed" in capsys.readouterr().out


def test_missing_file(cli, tmp_path, capsys):
    assert cli.run([str(tmp_path / "nope.zip"), "list"]) == 1
    assert "does not exist" in capsys.readouterr().err


def test_not_a_zip(cli, tmp_path, capsys):
    path = tmp_path / "garbage.zip"
    path.write_bytes(b"\x00" * 100)
    assert cli.run([str(path), "list"]) == 2
    assert "cannot be recovered" in capsys.readouterr().err


def test_unknown_encoding(cli, archive, capsys):
    assert cli.run([str(archive), "-e", "no-such-codec", "list"]) == 1
    assert "Unknown encoding" in capsys.readouterr().err


def test_command_is_required(cli, archive):
    with pytest.raises(SystemExit):
        cli.run([str(archive)])
