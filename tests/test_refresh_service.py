from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import pytest
import structlog

from musiccabinet.models.webservice_contracts import Artist, CallType, WebserviceResponse
from musiccabinet.services.lastfm_client import LastFmConfigurationError
from musiccabinet.services.refresh_service import (
    ArtistRefreshService,
    RefreshSchedulerService,
    RefreshStats,
)
from musiccabinet.services.webservice_history_service import WebserviceHistoryService
from musiccabinet.telemetry import TelemetryClient


class _RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


class _FakeRefreshService:
    def __init__(self) -> None:
        self.calls: list[CallType] = []
        self.tick_ids: list[object] = []

    @property
    def call_types(self) -> tuple[CallType, ...]:
        return (CallType.ARTIST_GET_INFO,)

    def refresh(self, call_type: CallType) -> RefreshStats:
        self.calls.append(call_type)
        self.tick_ids.append(structlog.contextvars.get_contextvars().get("refresh_tick_id"))
        if call_type is CallType.ARTIST_GET_TOP_TAGS:
            raise LastFmConfigurationError("Last.fm API key is not configured.")
        return RefreshStats(call_type=call_type, scheduled=2, succeeded=2)


def _add_artists(add_library_artist: Callable[[str], Artist], count: int) -> None:
    for index in range(count):
        add_library_artist(f"Refresh {index}")


def test_refresh_counts_outcomes_per_artist(
    history_service: WebserviceHistoryService,
    add_library_artist: Callable[[str], Artist],
) -> None:
    _add_artists(add_library_artist, 4)
    outcomes = {
        "Refresh 0": WebserviceResponse.succeeded({"artist": {}}),
        "Refresh 1": WebserviceResponse.not_invoked(),
        "Refresh 2": WebserviceResponse.failed(recoverable=False, status_code=6, message="x"),
    }

    def _fetch(artist: Artist) -> WebserviceResponse:
        if artist.name == "Refresh 3":
            raise RuntimeError("boom")
        return outcomes[artist.name]

    service = ArtistRefreshService(
        history_service,
        {CallType.ARTIST_GET_INFO: _fetch},
        max_workers=2,
    )

    stats = service.refresh(CallType.ARTIST_GET_INFO)

    assert stats == RefreshStats(
        call_type=CallType.ARTIST_GET_INFO,
        scheduled=4,
        succeeded=1,
        skipped=1,
        failed=2,
        cancelled=0,
    )


def test_refresh_never_exceeds_worker_bound(
    history_service: WebserviceHistoryService,
    add_library_artist: Callable[[str], Artist],
) -> None:
    _add_artists(add_library_artist, 12)
    lock = threading.Lock()
    in_flight = 0
    peak = 0

    def _fetch(artist: Artist) -> WebserviceResponse:
        nonlocal in_flight, peak
        with lock:
            in_flight += 1
            peak = max(peak, in_flight)
        time.sleep(0.01)
        with lock:
            in_flight -= 1
        return WebserviceResponse.succeeded({"artist": artist.name})

    service = ArtistRefreshService(
        history_service,
        {CallType.ARTIST_GET_SIMILAR: _fetch},
        max_workers=3,
    )

    stats = service.refresh(CallType.ARTIST_GET_SIMILAR)

    assert stats.succeeded == 12
    assert 1 <= peak <= 3


def test_stop_event_cancels_remaining_artists(
    history_service: WebserviceHistoryService,
    add_library_artist: Callable[[str], Artist],
) -> None:
    _add_artists(add_library_artist, 5)
    stop_event = threading.Event()
    fetched: list[str] = []

    def _fetch(artist: Artist) -> WebserviceResponse:
        fetched.append(artist.name)
        stop_event.set()
        return WebserviceResponse.succeeded({})

    service = ArtistRefreshService(
        history_service,
        {CallType.ARTIST_GET_TOP_TRACKS: _fetch},
        max_workers=1,
        stop_event=stop_event,
    )

    stats = service.refresh(CallType.ARTIST_GET_TOP_TRACKS)

    assert fetched == ["Refresh 0"]
    assert stats.succeeded == 1
    assert stats.cancelled == 4


def test_configuration_error_stops_refresh_and_propagates(
    history_service: WebserviceHistoryService,
    add_library_artist: Callable[[str], Artist],
) -> None:
    _add_artists(add_library_artist, 6)
    fetched: list[str] = []

    def _fetch(artist: Artist) -> WebserviceResponse:
        fetched.append(artist.name)
        raise LastFmConfigurationError("Last.fm API key is not configured.")

    service = ArtistRefreshService(
        history_service,
        {CallType.ARTIST_GET_INFO: _fetch},
        max_workers=1,
    )

    with pytest.raises(LastFmConfigurationError):
        service.refresh(CallType.ARTIST_GET_INFO)

    assert fetched == ["Refresh 0"]


def test_refresh_rejects_call_type_without_fetcher(
    history_service: WebserviceHistoryService,
) -> None:
    service = ArtistRefreshService(history_service, {}, max_workers=1)

    with pytest.raises(ValueError):
        service.refresh(CallType.ALBUM_GET_INFO)


def test_run_once_emits_tick_telemetry_and_survives_failures() -> None:
    sink = _RecordingSink()
    refresh_service = _FakeRefreshService()
    scheduler = RefreshSchedulerService(
        refresh_service,  # type: ignore[arg-type]
        60,
        call_types=[CallType.ARTIST_GET_TOP_TAGS, CallType.ARTIST_GET_INFO],
        telemetry=TelemetryClient(enabled=True, sink=sink),
    )

    results = scheduler.run_once()

    assert [stats.call_type for stats in results] == [CallType.ARTIST_GET_INFO]
    assert refresh_service.calls == [CallType.ARTIST_GET_TOP_TAGS, CallType.ARTIST_GET_INFO]
    assert refresh_service.tick_ids[0] is not None
    assert refresh_service.tick_ids[0] == refresh_service.tick_ids[1]
    assert structlog.contextvars.get_contextvars().get("refresh_tick_id") is None
    assert [name for name, _ in sink.events] == [
        "refresh.tick.start",
        "refresh.tick.error",
        "refresh.tick.start",
        "refresh.tick.finish",
    ]
    assert sink.events[1][1]["error_type"] == "LastFmConfigurationError"
    assert sink.events[3][1]["succeeded"] == 2
    assert sink.events[3][1]["method"] == "artist.getInfo"


def test_scheduler_lock_allows_single_running_instance(tmp_path: Path) -> None:
    lock_path = tmp_path / "locks" / "refresh.lock"
    first = RefreshSchedulerService(
        _FakeRefreshService(),  # type: ignore[arg-type]
        3600,
        lock_path=lock_path,
    )
    second = RefreshSchedulerService(
        _FakeRefreshService(),  # type: ignore[arg-type]
        3600,
        lock_path=lock_path,
    )

    try:
        first.start()
        second.start()

        assert first.is_running is True
        assert second.is_running is False
    finally:
        first.stop()
        second.stop()

    third = RefreshSchedulerService(
        _FakeRefreshService(),  # type: ignore[arg-type]
        3600,
        lock_path=lock_path,
    )
    try:
        third.start()
        assert third.is_running is True
    finally:
        third.stop()
