"""CLI against local storage and a throwaway SQLite database."""
import json

import pytest

from filestore import cli
from filestore.core.config import get_settings
from filestore.db import get_engine, get_session_factory


def _clear_caches():
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_ROOT_PATH", str(tmp_path / "uploads"))
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'files.db'}")
    _clear_caches()
    yield tmp_path
    _clear_caches()


def run(argv):
    _clear_caches()
    return cli.main(argv)


def test_info(cli_env, capsys):
    assert run(["info"]) == 0
    out = capsys.readouterr().out
    assert "local disk storage" in out
    assert "storage=local" in out


def test_upload_url_delete_restore(cli_env, capsys):
    note = cli_env / "note.txt"
    note.write_bytes(b"hello")
    assert run(["--init-db", "upload", str(note), "--path", "docs", "--uploader", "u1"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert len(payload["files"]) == 1
    file_id = payload["files"][0]["id"]
    key = payload["files"][0]["storage_key"]
    assert (cli_env / "uploads" / key).read_bytes() == b"hello"

    assert run(["url", str(file_id)]) == 0
    assert capsys.readouterr().out.strip() == f"/uploads/{key}"

    assert run(["delete", str(file_id)]) == 0
    assert run(["url", str(file_id)]) == 1
    assert run(["restore", str(file_id)]) == 0
    assert run(["url", str(file_id)]) == 0

    capsys.readouterr()
    assert run(["integrity"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["total_checked"] == 1
    assert report["missing"] == []

    assert run(["delete", "--permanent", str(file_id)]) == 0
    assert not (cli_env / "uploads" / key).exists()


def test_upload_partial_batch_exits_nonzero(cli_env, capsys):
    good = cli_env / "ok.txt"
    good.write_bytes(b"ok")
    bad = cli_env / "payload.exe"
    bad.write_bytes(b"MZ")
    assert run(["--init-db", "upload", str(good), str(bad), "--path", "docs"]) == 1
    payload = json.loads(capsys.readouterr().out)
    assert len(payload["files"]) == 1
    assert payload["errors"][0]["filename"] == "payload.exe"


def test_missing_record_is_reported(cli_env, capsys):
    assert run(["--init-db", "restore", "42"]) == 1
    assert "File not found: 42" in capsys.readouterr().err


def test_missing_upload_path(cli_env, capsys):
    assert run(["--init-db", "upload", str(cli_env / "nope.txt")]) == 1
    assert "Missing files" in capsys.readouterr().err


def test_list_by_uploader(cli_env, capsys):
    mine = cli_env / "mine.txt"
    mine.write_bytes(b"mine")
    theirs = cli_env / "theirs.txt"
    theirs.write_bytes(b"theirs")
    assert run(["--init-db", "upload", str(mine), "--path", "docs", "--uploader", "alice"]) == 0
    assert run(["upload", str(theirs), "--path", "docs", "--uploader", "bob"]) == 0
    capsys.readouterr()

    assert run(["list", "--uploader", "alice"]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert [f["original_name"] for f in listed] == ["mine.txt"]

    assert run(["list", "--keyword", "theirs", "--status", "all"]) == 0
    assert [f["original_name"] for f in json.loads(capsys.readouterr().out)] == ["theirs.txt"]
