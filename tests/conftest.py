import importlib
import sys
from pathlib import Path

import httpx
import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("METASCORE_DB", str(db_path))
    import metascore.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("METASCORE_DB", str(db_path))

    import metascore.config as config
    import metascore.database as database

    importlib.reload(config)
    importlib.reload(database)

    yield database
    database.close_pool()


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_client():
    """
    Build an AsyncClient whose responses come from a {url-substring: (status, body)} map.

    Every request URL is recorded on client.requested. Unmatched URLs get a 404.
    """
    def _make(routes: dict[str, tuple[int, str]]):
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            url = str(request.url)
            requested.append(url)
            for fragment, (status, body) in routes.items():
                if fragment in url:
                    return httpx.Response(status, text=body)
            return httpx.Response(404, text="")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
        client.requested = requested
        return client

    return _make
