from pathlib import Path

import pytest

import fetcher
from completion.completion_store import CompletionStore
from completion.http_client import USER_AGENT, make_session
from tests.test_scheduler import FakeClient


def test_make_session_pool():
    s = make_session(pool=8)
    adapter = s.get_adapter("https://tempus2.xyz/api/v0")
    assert adapter._pool_maxsize == 8
    assert adapter.max_retries.total == 0
    assert s.headers["User-Agent"] == USER_AGENT


def test_parse_args_defaults(monkeypatch):
    monkeypatch.setenv("COMPLETION_DB", "/tmp/x.db")
    args = fetcher.parse_args([])
    assert args.db == "/tmp/x.db"
    assert args.interval == 60
    assert not args.once


def test_player_needs_map():
    with pytest.raises(SystemExit):
        fetcher.parse_args(["--player", "7"])


def test_main_once(tmp_path, monkeypatch):
    db = str(tmp_path / "c.db")
    monkeypatch.setattr(fetcher, "TempusClient", lambda *a, **kw: FakeClient())

    assert fetcher.main(["--db", db, "--initialize", "--once"]) == 0

    store = CompletionStore(db)
    try:
        assert store.get_maps().maps[0].name == "jump_test"
        assert store.get_map_stats(1) is not None
    finally:
        store.close()


def test_only_the_fetcher_script_is_installed():
    tomllib = pytest.importorskip("tomllib")
    with open(Path(__file__).resolve().parents[1] / "pyproject.toml", "rb") as f:
        config = tomllib.load(f)
    assert config["tool"]["setuptools"]["py-modules"] == ["fetcher"]
