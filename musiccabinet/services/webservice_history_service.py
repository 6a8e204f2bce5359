from __future__ import annotations

import calendar
import logging
from collections.abc import Callable
from datetime import datetime

from musiccabinet.models.webservice_contracts import Artist, CallType, WebserviceInvocation
from musiccabinet.repositories.common import utc_now
from musiccabinet.repositories.webservice_history_repository import (
    InvocationRecord,
    WebserviceHistoryRepository,
)

LOGGER = logging.getLogger("musiccabinet.webservice_history")
DEFAULT_SCHEDULE_BUCKET_COUNT = 30


class WebserviceHistoryService:
    """
    Decides whether a Last.fm invocation is allowed and records outcomes.

    Caching cannot be bypassed: Last.fm terms of service require similar
    artist and chart data to be cached for a minimum of one week.
    """

    def __init__(
        self,
        repository: WebserviceHistoryRepository,
        *,
        schedule_bucket_count: int = DEFAULT_SCHEDULE_BUCKET_COUNT,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._schedule_bucket_count = max(1, schedule_bucket_count)
        self._now = now

    def is_webservice_invocation_allowed(self, invocation: WebserviceInvocation) -> bool:
        try:
            last_invocation = self._repository.get_last_invocation_time(
                invocation.call_type,
                invocation.target,
            )
        except ValueError:
            # Unreadable history must not reopen a cached or quarantined call.
            LOGGER.warning(
                "invocation history unreadable; denying invocation=%s",
                invocation,
                exc_info=True,
            )
            return False
        if last_invocation is None:
            return True
        elapsed_days = (self._now() - last_invocation).days
        return elapsed_days > invocation.call_type.days_to_cache

    def log_webservice_invocation(self, invocation: WebserviceInvocation) -> InvocationRecord:
        return self._record(invocation, quarantine=False)

    def quarantine_webservice_invocation(
        self,
        invocation: WebserviceInvocation,
    ) -> InvocationRecord:
        return self._record(invocation, quarantine=True)

    def get_artists_scheduled_for_update(self, call_type: CallType) -> list[Artist]:
        """
        Library artists due for a refresh of `call_type`.

        Artists whose last invocation falls in the oldest bucket come first,
        followed by artists that were never looked up.
        """
        oldest = self._repository.get_artists_with_oldest_invocations(
            call_type,
            bucket_count=self._schedule_bucket_count,
        )
        never_invoked = self._repository.get_artists_with_no_invocations(call_type)
        LOGGER.debug(
            "artists scheduled for update call_type=%s oldest=%s never_invoked=%s",
            call_type.method,
            len(oldest),
            len(never_invoked),
        )
        return [*oldest, *never_invoked]

    def _record(self, invocation: WebserviceInvocation, *, quarantine: bool) -> InvocationRecord:
        now = self._now()
        invocation_time = add_one_month(now) if quarantine else now
        record = self._repository.upsert_invocation(
            invocation.call_type,
            invocation.target,
            invocation_time,
        )
        if quarantine:
            LOGGER.info(
                "webservice invocation quarantined invocation=%s until=%s",
                invocation,
                invocation_time.isoformat(),
            )
        return record


def add_one_month(value: datetime) -> datetime:
    year = value.year + (1 if value.month == 12 else 0)
    month = 1 if value.month == 12 else value.month + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)
