from __future__ import annotations

import threading
from functools import lru_cache

from musiccabinet.config import AppSettings, load_settings
from musiccabinet.models.webservice_contracts import CallType
from musiccabinet.repositories.database import Database
from musiccabinet.repositories.music_repository import MusicRepository
from musiccabinet.repositories.webservice_history_repository import WebserviceHistoryRepository
from musiccabinet.services.lastfm_client import CallPolicy, LastFmClient
from musiccabinet.services.lastfm_method_clients import (
    ArtistInfoClient,
    ArtistSimilarityClient,
    ArtistTopTagsClient,
    ArtistTopTracksClient,
)
from musiccabinet.services.refresh_service import (
    ArtistFetcher,
    ArtistRefreshService,
    RefreshSchedulerService,
)
from musiccabinet.services.throttle_service import Throttle
from musiccabinet.services.webservice_history_service import WebserviceHistoryService
from musiccabinet.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_stop_event() -> threading.Event:
    return threading.Event()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_music_repository() -> MusicRepository:
    return MusicRepository(get_database())


@lru_cache(maxsize=1)
def get_history_service() -> WebserviceHistoryService:
    return WebserviceHistoryService(
        WebserviceHistoryRepository(get_database()),
        schedule_bucket_count=get_settings().refresh_bucket_count,
    )


@lru_cache(maxsize=1)
def get_throttle() -> Throttle:
    settings = get_settings()
    return Throttle(
        max_calls=settings.throttle_max_calls,
        window_seconds=settings.throttle_window_seconds,
    )


@lru_cache(maxsize=1)
def get_lastfm_client() -> LastFmClient:
    settings = get_settings()
    return LastFmClient(
        api_key=settings.lastfm_api_key,
        base_url=settings.lastfm_base_url,
        user_agent=settings.lastfm_user_agent,
        http_timeout_seconds=settings.lastfm_http_timeout_seconds,
        history_service=get_history_service(),
        throttle=get_throttle(),
        policy=CallPolicy(
            log_invocation=settings.lastfm_log_invocations,
            call_attempts=settings.lastfm_call_attempts,
            retry_sleep_seconds=settings.lastfm_retry_sleep_seconds,
        ),
        stop_event=get_stop_event(),
        telemetry=get_telemetry(),
    )


def build_artist_fetchers(client: LastFmClient) -> dict[CallType, ArtistFetcher]:
    return {
        CallType.ARTIST_GET_INFO: ArtistInfoClient(client).get_artist_info,
        CallType.ARTIST_GET_SIMILAR: ArtistSimilarityClient(client).get_artist_similarity,
        CallType.ARTIST_GET_TOP_TRACKS: ArtistTopTracksClient(client).get_top_tracks,
        CallType.ARTIST_GET_TOP_TAGS: ArtistTopTagsClient(client).get_top_tags,
    }


@lru_cache(maxsize=1)
def get_refresh_service() -> ArtistRefreshService:
    settings = get_settings()
    fetchers = build_artist_fetchers(get_lastfm_client())
    return ArtistRefreshService(
        get_history_service(),
        {
            call_type: fetchers[call_type]
            for call_type in settings.refresh_call_types
            if call_type in fetchers
        },
        max_workers=settings.refresh_max_workers,
        stop_event=get_stop_event(),
    )


@lru_cache(maxsize=1)
def get_refresh_scheduler() -> RefreshSchedulerService:
    settings = get_settings()
    return RefreshSchedulerService(
        get_refresh_service(),
        settings.refresh_poll_interval_seconds,
        stop_event=get_stop_event(),
        telemetry=get_telemetry(),
        lock_path=settings.refresh_lock_path,
    )


def reset_cached_dependencies() -> None:
    get_refresh_scheduler.cache_clear()
    get_refresh_service.cache_clear()
    get_lastfm_client.cache_clear()
    get_throttle.cache_clear()
    get_history_service.cache_clear()
    get_music_repository.cache_clear()
    get_telemetry.cache_clear()
    get_stop_event.cache_clear()
    get_database.cache_clear()
    get_settings.cache_clear()
