from __future__ import annotations

from datetime import UTC, datetime

import pytest
from conftest import FakeClock

from musiccabinet.models.webservice_contracts import (
    Album,
    Artist,
    CallType,
    Page,
    Track,
    WebserviceInvocation,
)
from musiccabinet.repositories.database import Database
from musiccabinet.services.webservice_history_service import (
    WebserviceHistoryService,
    add_one_month,
)

_TARGETS = [
    (CallType.ARTIST_GET_SIMILAR, Artist(name="Massive Attack")),
    (CallType.ALBUM_GET_INFO, Album(artist=Artist(name="Massive Attack"), name="Mezzanine")),
    (CallType.TRACK_GET_SIMILAR, Track(artist=Artist(name="Massive Attack"), name="Teardrop")),
    (CallType.CHART_GET_TOP_ARTISTS, Page(number=4)),
]


@pytest.mark.parametrize(("call_type", "target"), _TARGETS)
def test_invocation_without_history_is_allowed(
    history_service: WebserviceHistoryService,
    call_type: CallType,
    target: Artist | Album | Track | Page,
) -> None:
    invocation = WebserviceInvocation(call_type=call_type, target=target)

    assert history_service.is_webservice_invocation_allowed(invocation) is True


@pytest.mark.parametrize(("call_type", "target"), _TARGETS)
def test_logged_invocation_is_denied_until_cache_lifetime_has_passed(
    history_service: WebserviceHistoryService,
    clock: FakeClock,
    call_type: CallType,
    target: Artist | Album | Track | Page,
) -> None:
    invocation = WebserviceInvocation(call_type=call_type, target=target)

    history_service.log_webservice_invocation(invocation)
    assert history_service.is_webservice_invocation_allowed(invocation) is False

    clock.advance(days=call_type.days_to_cache)
    assert history_service.is_webservice_invocation_allowed(invocation) is False

    clock.advance(days=1)
    assert history_service.is_webservice_invocation_allowed(invocation) is True


def test_gate_counts_whole_days_only(
    history_service: WebserviceHistoryService,
    clock: FakeClock,
) -> None:
    invocation = WebserviceInvocation(
        call_type=CallType.CHART_GET_TOP_ARTISTS,
        target=Page(number=1),
    )
    history_service.log_webservice_invocation(invocation)

    clock.advance(days=8, seconds=-1)
    assert history_service.is_webservice_invocation_allowed(invocation) is False

    clock.advance(seconds=1)
    assert history_service.is_webservice_invocation_allowed(invocation) is True


def test_quarantine_outlasts_short_cache_lifetime(
    history_service: WebserviceHistoryService,
    clock: FakeClock,
) -> None:
    invocation = WebserviceInvocation(
        call_type=CallType.CHART_GET_TOP_ARTISTS,
        target=Page(number=2),
    )
    history_service.quarantine_webservice_invocation(invocation)

    clock.advance(days=CallType.CHART_GET_TOP_ARTISTS.days_to_cache + 1)
    assert history_service.is_webservice_invocation_allowed(invocation) is False

    clock.advance(days=28)
    assert history_service.is_webservice_invocation_allowed(invocation) is False

    clock.advance(days=31)
    assert history_service.is_webservice_invocation_allowed(invocation) is True


def test_log_after_quarantine_replaces_future_timestamp(
    history_service: WebserviceHistoryService,
    clock: FakeClock,
) -> None:
    invocation = WebserviceInvocation(
        call_type=CallType.ARTIST_GET_TOP_TRACKS,
        target=Artist(name="Tricky"),
    )
    quarantined = history_service.quarantine_webservice_invocation(invocation)
    logged = history_service.log_webservice_invocation(invocation)

    assert quarantined.invocation_time == datetime(2026, 2, 15, 12, 0, tzinfo=UTC)
    assert logged.invocation_time == clock()
    assert logged.target_key == quarantined.target_key


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (datetime(2026, 1, 31, 8, 0, tzinfo=UTC), datetime(2026, 2, 28, 8, 0, tzinfo=UTC)),
        (datetime(2028, 1, 31, 8, 0, tzinfo=UTC), datetime(2028, 2, 29, 8, 0, tzinfo=UTC)),
        (datetime(2026, 12, 15, 8, 0, tzinfo=UTC), datetime(2027, 1, 15, 8, 0, tzinfo=UTC)),
    ],
)
def test_add_one_month_clamps_to_month_end(value: datetime, expected: datetime) -> None:
    assert add_one_month(value) == expected


def test_unreadable_history_denies_invocation(
    history_service: WebserviceHistoryService,
    database: Database,
) -> None:
    invocation = WebserviceInvocation(
        call_type=CallType.ARTIST_GET_INFO,
        target=Artist(name="Burial"),
    )
    history_service.quarantine_webservice_invocation(invocation)
    with database.connection() as conn:
        conn.execute("UPDATE webservice_history SET invocation_time = 'not-a-timestamp'")

    assert history_service.is_webservice_invocation_allowed(invocation) is False
