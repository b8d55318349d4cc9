import pytest

from xray_exporter import main as entry
from xray_exporter.config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    monkeypatch.chdir("/")  # keep a stray .env out of the picture
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_unknown_log_level_exits_cleanly(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "verbose")
    monkeypatch.setattr(entry.uvicorn, "run", lambda *a, **kw: pytest.fail("server started"))

    with pytest.raises(SystemExit) as exc_info:
        entry.main()
    assert exc_info.value.code == 1


def test_main_runs_uvicorn_with_settings(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("USE_STATS_STUB", "1")
    monkeypatch.setenv("PORT", "9551")
    calls = []
    monkeypatch.setattr(entry.uvicorn, "run", lambda app, **kw: calls.append(kw))

    entry.main()

    assert calls == [{"host": "0.0.0.0", "port": 9551, "log_level": "debug"}]
