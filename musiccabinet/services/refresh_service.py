from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from musiccabinet.models.webservice_contracts import Artist, CallType, WebserviceResponse
from musiccabinet.services.lastfm_client import LastFmConfigurationError
from musiccabinet.services.process_lock import ProcessLock
from musiccabinet.services.webservice_history_service import WebserviceHistoryService
from musiccabinet.telemetry import TelemetryClient

LOGGER = logging.getLogger("musiccabinet.refresh")

ArtistFetcher = Callable[[Artist], WebserviceResponse]


@dataclass
class RefreshStats:
    call_type: CallType
    scheduled: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: int = 0

    def counts(self) -> dict[str, int]:
        return {
            "scheduled": self.scheduled,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "cancelled": self.cancelled,
        }


class ArtistRefreshService:
    """
    Runs the scheduled artists for a call type through a bounded worker pool.

    At most `max_workers` fetches are in flight; once the stop event is set
    no further artists are submitted and the rest count as cancelled.
    """

    def __init__(
        self,
        history_service: WebserviceHistoryService,
        fetchers: Mapping[CallType, ArtistFetcher],
        *,
        max_workers: int,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._history_service = history_service
        self._fetchers = dict(fetchers)
        self._max_workers = max(1, max_workers)
        self._stop_event = stop_event if stop_event is not None else threading.Event()

    @property
    def call_types(self) -> tuple[CallType, ...]:
        return tuple(self._fetchers)

    def refresh(self, call_type: CallType) -> RefreshStats:
        fetch = self._fetchers.get(call_type)
        if fetch is None:
            raise ValueError(f"No refresh fetcher registered for {call_type.method}.")

        artists = self._history_service.get_artists_scheduled_for_update(call_type)
        stats = RefreshStats(call_type=call_type, scheduled=len(artists))
        fatal: LastFmConfigurationError | None = None
        pending: set[Future[WebserviceResponse]] = set()
        submitted = 0

        with ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="musiccabinet-refresh",
        ) as pool:
            for artist in artists:
                if self._stop_event.is_set() or fatal is not None:
                    break
                if len(pending) >= self._max_workers:
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    fatal = self._collect(done, stats) or fatal
                    if fatal is not None or self._stop_event.is_set():
                        break
                pending.add(pool.submit(fetch, artist))
                submitted += 1

            done, _ = wait(pending)
            fatal = self._collect(done, stats) or fatal

        stats.cancelled = stats.scheduled - submitted
        LOGGER.info(
            "artist refresh finished method=%s scheduled=%s succeeded=%s skipped=%s "
            "failed=%s cancelled=%s",
            call_type.method,
            stats.scheduled,
            stats.succeeded,
            stats.skipped,
            stats.failed,
            stats.cancelled,
        )
        if fatal is not None:
            raise fatal
        return stats

    def _collect(
        self,
        futures: set[Future[WebserviceResponse]],
        stats: RefreshStats,
    ) -> LastFmConfigurationError | None:
        fatal: LastFmConfigurationError | None = None
        for future in futures:
            try:
                response = future.result()
            except LastFmConfigurationError as exc:
                stats.failed += 1
                fatal = exc
                continue
            except Exception:
                stats.failed += 1
                LOGGER.warning("artist refresh fetch raised", exc_info=True)
                continue
            if not response.invoked:
                stats.skipped += 1
            elif response.success:
                stats.succeeded += 1
            else:
                stats.failed += 1
        return fatal


class RefreshSchedulerService:
    def __init__(
        self,
        refresh_service: ArtistRefreshService,
        poll_interval_seconds: int,
        *,
        call_types: Sequence[CallType] | None = None,
        stop_event: threading.Event | None = None,
        telemetry: TelemetryClient | None = None,
        lock_path: Path | None = None,
    ) -> None:
        self._refresh_service = refresh_service
        self._poll_interval_seconds = max(1, poll_interval_seconds)
        self._call_types = (
            tuple(call_types) if call_types is not None else refresh_service.call_types
        )
        self._stop_event = stop_event if stop_event is not None else threading.Event()
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._thread: threading.Thread | None = None
        self._process_lock = ProcessLock(lock_path) if lock_path is not None else None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        if self._process_lock is not None and not self._process_lock.acquire():
            LOGGER.info(
                "refresh scheduler start skipped; another instance holds path=%s",
                self._process_lock.path,
            )
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="musiccabinet-refresh")
        self._thread.daemon = True
        self._thread.start()

    def stop(self) -> None:
        # Shared with the Last.fm client, so pending retry waits end too.
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3)
            self._thread = None
        if self._process_lock is not None:
            self._process_lock.release()

    def run_once(self) -> list[RefreshStats]:
        tick_id = uuid4().hex
        tick_tokens = bind_contextvars(refresh_tick_id=tick_id)
        results: list[RefreshStats] = []
        try:
            for call_type in self._call_types:
                if self._stop_event.is_set():
                    break
                stats = self._run_refresh(tick_id, call_type)
                if stats is not None:
                    results.append(stats)
        finally:
            reset_contextvars(**tick_tokens)
        return results

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self._poll_interval_seconds)

    def _run_refresh(self, tick_id: str, call_type: CallType) -> RefreshStats | None:
        try:
            with self._telemetry.span(
                "refresh.tick",
                tick_id=tick_id,
                method=call_type.method,
            ) as outcome:
                stats = self._refresh_service.refresh(call_type)
                outcome.update(stats.counts())
        except Exception:
            LOGGER.warning("artist refresh failed method=%s", call_type.method, exc_info=True)
            return None
        return stats
