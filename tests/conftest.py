from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from musiccabinet.dependencies import reset_cached_dependencies
from musiccabinet.models.webservice_contracts import Artist, Track
from musiccabinet.repositories.database import Database
from musiccabinet.repositories.music_repository import MusicRepository
from musiccabinet.repositories.webservice_history_repository import WebserviceHistoryRepository
from musiccabinet.services.webservice_history_service import WebserviceHistoryService


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> None:
        self.current += timedelta(**delta)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=UTC))


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "musiccabinet.db")
    db.initialize()
    return db


@pytest.fixture
def music_repository(database: Database) -> MusicRepository:
    return MusicRepository(database)


@pytest.fixture
def history_repository(database: Database) -> WebserviceHistoryRepository:
    return WebserviceHistoryRepository(database)


@pytest.fixture
def history_service(
    history_repository: WebserviceHistoryRepository,
    clock: FakeClock,
) -> WebserviceHistoryService:
    return WebserviceHistoryService(history_repository, now=clock)


@pytest.fixture
def add_library_artist(music_repository: MusicRepository) -> Callable[[str], Artist]:
    def _add(name: str) -> Artist:
        artist = Artist(name=name)
        music_repository.add_music_file(
            f"/music/{name}/track.mp3",
            Track(artist=artist, name=f"{name} theme"),
        )
        return artist

    return _add


@pytest.fixture(autouse=True)
def _isolated_settings(  # pyright: ignore[reportUnusedFunction]
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[None]:
    monkeypatch.setenv("MUSICCABINET_DATA_DIR", str(tmp_path / "runtime-data"))
    monkeypatch.delenv("MUSICCABINET_LASTFM_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)
    reset_cached_dependencies()
    yield
    reset_cached_dependencies()
