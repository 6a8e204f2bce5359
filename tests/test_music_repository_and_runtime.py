from __future__ import annotations

import sqlite3

import pytest

from musiccabinet.dependencies import get_stop_event
from musiccabinet.main import runtime
from musiccabinet.models.webservice_contracts import Album, Artist, Track
from musiccabinet.repositories.database import Database
from musiccabinet.repositories.music_repository import MusicRepository


def test_names_are_matched_case_insensitively_and_keep_first_spelling(
    music_repository: MusicRepository,
    database: Database,
) -> None:
    first = music_repository.get_artist_id(Artist(name="Mogwai"))
    second = music_repository.get_artist_id(Artist(name="  MOGWAI "))

    assert first == second
    with database.connection() as conn:
        row = conn.execute(
            "SELECT artist_name, artist_name_capitalization FROM artist WHERE id = ?",
            (first,),
        ).fetchone()
    assert tuple(row) == ("MOGWAI", "Mogwai")


def test_album_and_track_ids_are_scoped_to_artist(music_repository: MusicRepository) -> None:
    low = Artist(name="Low")
    other = Artist(name="Lower")

    assert music_repository.get_album_id(Album(artist=low, name="Things We Lost")) == (
        music_repository.get_album_id(Album(artist=Artist(name="low"), name="things we lost"))
    )
    assert music_repository.get_track_id(Track(artist=low, name="Sunflower")) != (
        music_repository.get_track_id(Track(artist=other, name="Sunflower"))
    )


def test_library_artists_follow_music_files(music_repository: MusicRepository) -> None:
    music_repository.add_music_file("/music/a.flac", Track(artist=Artist(name="Slowdive"), name="Alison"))
    music_repository.add_music_file(
        "/music/b.flac",
        Track(artist=Artist(name="Ride"), name="Vapour Trail"),
        album=Album(artist=Artist(name="Ride"), name="Nowhere"),
    )
    # Re-adding a path points it at the new track instead of duplicating it.
    music_repository.add_music_file("/music/a.flac", Track(artist=Artist(name="Lush"), name="Sweetness"))

    assert [artist.name for artist in music_repository.list_library_artists()] == ["Lush", "Ride"]
    assert music_repository.remove_music_file("/music/b.flac") is True
    assert music_repository.remove_music_file("/music/b.flac") is False
    assert music_repository.find_artist_id(Artist(name="Ride")) is not None
    assert [artist.name for artist in music_repository.list_library_artists()] == ["Lush"]


def test_target_models_reject_blank_names() -> None:
    with pytest.raises(ValueError):
        Artist(name="   ")
    with pytest.raises(ValueError):
        Track(artist=Artist(name="Low"), name="")
    with pytest.raises(ValueError):
        Track(artist=Artist(name="Low"), name="   ")
    with pytest.raises(ValueError):
        Album(artist=Artist(name="Low"), name=" \t ")
    assert Album(artist=Artist(name="Low"), name="  Trust ").name == "Trust"


def test_database_enforces_single_history_row_per_target(database: Database) -> None:
    with database.connection() as conn:
        conn.execute(
            "INSERT INTO webservice_history (calltype_id, target_key, page, invocation_time) "
            "VALUES (7, 'page:1', 1, '2026-01-01T00:00:00.000000+00:00')"
        )
    with pytest.raises(sqlite3.IntegrityError):
        with database.connection() as conn:
            conn.execute(
                "INSERT INTO webservice_history (calltype_id, target_key, page, invocation_time) "
                "VALUES (7, 'page:1', 1, '2026-01-02T00:00:00.000000+00:00')"
            )


def test_runtime_without_refresh_sets_stop_event_on_exit(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("MUSICCABINET_LASTFM_API_KEY", "key")
    monkeypatch.setenv("MUSICCABINET_REFRESH_ENABLED", "false")

    with runtime() as scheduler:
        assert scheduler is None
        assert get_stop_event().is_set() is False

    assert get_stop_event().is_set() is True


def test_runtime_starts_and_stops_refresh_scheduler(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("MUSICCABINET_LASTFM_API_KEY", "key")
    monkeypatch.setenv("MUSICCABINET_REFRESH_ENABLED", "true")
    monkeypatch.setenv("MUSICCABINET_REFRESH_POLL_INTERVAL_SECONDS", "3600")

    with runtime() as scheduler:
        assert scheduler is not None
        assert scheduler.is_running is True

    assert scheduler.is_running is False
    assert get_stop_event().is_set() is True
