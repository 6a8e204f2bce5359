from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime

from musiccabinet.models.webservice_contracts import (
    Album,
    Artist,
    CallType,
    InvocationTarget,
    Page,
    Track,
)
from musiccabinet.repositories.common import normalize_name, parse_iso_utc, to_utc_iso
from musiccabinet.repositories.database import Database
from musiccabinet.repositories.music_repository import (
    get_or_create_album_id,
    get_or_create_artist_id,
    get_or_create_track_id,
)

_LIBRARY_ARTIST_IDS_SQL = """
SELECT t.artist_id FROM musicfile mf
INNER JOIN track t ON mf.track_id = t.id
"""


@dataclass(frozen=True)
class InvocationRecord:
    call_type: CallType
    target_key: str
    artist_id: int | None
    album_id: int | None
    track_id: int | None
    page: int | None
    invocation_time: datetime


@dataclass(frozen=True)
class _HistoryKey:
    target_key: str
    artist_id: int | None = None
    album_id: int | None = None
    track_id: int | None = None
    page: int | None = None


class WebserviceHistoryRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get_last_invocation_time(
        self,
        call_type: CallType,
        target: InvocationTarget,
    ) -> datetime | None:
        join_sql, where_sql, params = _lookup_fragment(target)
        sql = (
            "SELECT MAX(h.invocation_time) AS last_invocation"
            " FROM webservice_history h"
            f" {join_sql}"
            f" WHERE h.calltype_id = ? AND {where_sql}"
        )
        with self._db.connection() as conn:
            row = conn.execute(sql, (call_type.database_id, *params)).fetchone()
        if row is None or row["last_invocation"] is None:
            return None
        return parse_iso_utc(str(row["last_invocation"]))

    def upsert_invocation(
        self,
        call_type: CallType,
        target: InvocationTarget,
        invocation_time: datetime,
    ) -> InvocationRecord:
        with self._db.connection() as conn:
            key = _resolve_key(conn, target)
            conn.execute(
                """
                INSERT INTO webservice_history (
                    calltype_id, target_key, artist_id, album_id, track_id, page,
                    invocation_time
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(calltype_id, target_key) DO UPDATE SET
                    invocation_time = excluded.invocation_time
                """,
                (
                    call_type.database_id,
                    key.target_key,
                    key.artist_id,
                    key.album_id,
                    key.track_id,
                    key.page,
                    to_utc_iso(invocation_time),
                ),
            )
        return InvocationRecord(
            call_type=call_type,
            target_key=key.target_key,
            artist_id=key.artist_id,
            album_id=key.album_id,
            track_id=key.track_id,
            page=key.page,
            invocation_time=invocation_time,
        )

    def list_records(self, call_type: CallType) -> list[InvocationRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT target_key, artist_id, album_id, track_id, page, invocation_time
                FROM webservice_history
                WHERE calltype_id = ?
                ORDER BY invocation_time ASC, target_key ASC
                """,
                (call_type.database_id,),
            ).fetchall()
        records: list[InvocationRecord] = []
        for row in rows:
            records.append(
                InvocationRecord(
                    call_type=call_type,
                    target_key=str(row["target_key"]),
                    artist_id=row["artist_id"],
                    album_id=row["album_id"],
                    track_id=row["track_id"],
                    page=row["page"],
                    invocation_time=parse_iso_utc(str(row["invocation_time"])),
                )
            )
        return records

    def get_invoked_artist_ids(self, call_type: CallType) -> set[int]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT artist_id FROM webservice_history
                WHERE calltype_id = ? AND artist_id IS NOT NULL
                """,
                (call_type.database_id,),
            ).fetchall()
        return {int(row["artist_id"]) for row in rows}

    def get_artists_with_oldest_invocations(
        self,
        call_type: CallType,
        *,
        bucket_count: int,
    ) -> list[Artist]:
        """
        Library artists in the oldest of `bucket_count` equal-sized buckets.

        Ranking only covers artists that still back a local music file, so
        stale history for removed artists never crowds out live ones. Each
        bucket holds `max(1, n // bucket_count)` artists.
        """
        buckets = max(1, bucket_count)
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                WITH ranked AS (
                    SELECT
                        h.artist_id,
                        ROW_NUMBER() OVER (
                            ORDER BY h.invocation_time ASC, h.artist_id ASC
                        ) AS position,
                        COUNT(*) OVER () AS total
                    FROM webservice_history h
                    WHERE h.calltype_id = ?
                      AND h.artist_id IN ({_LIBRARY_ARTIST_IDS_SQL})
                )
                SELECT a.artist_name_capitalization
                FROM ranked r
                INNER JOIN artist a ON a.id = r.artist_id
                WHERE r.position <= MAX(1, r.total / ?)
                ORDER BY r.position ASC
                """,
                (call_type.database_id, buckets),
            ).fetchall()
        return [Artist(name=str(row["artist_name_capitalization"])) for row in rows]

    def get_artists_with_no_invocations(self, call_type: CallType) -> list[Artist]:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT a.artist_name_capitalization
                FROM artist a
                WHERE a.id IN ({_LIBRARY_ARTIST_IDS_SQL})
                  AND NOT EXISTS (
                      SELECT 1 FROM webservice_history h
                      WHERE h.artist_id = a.id AND h.calltype_id = ?
                  )
                ORDER BY a.artist_name ASC
                """,
                (call_type.database_id,),
            ).fetchall()
        return [Artist(name=str(row["artist_name_capitalization"])) for row in rows]


def _lookup_fragment(target: InvocationTarget) -> tuple[str, str, tuple[object, ...]]:
    if isinstance(target, Page):
        return "", "h.page = ?", (target.number,)
    if isinstance(target, Track):
        return (
            "INNER JOIN track t ON t.id = h.track_id"
            " INNER JOIN artist a ON a.id = t.artist_id",
            "a.artist_name = ? AND t.track_name = ?",
            (normalize_name(target.artist.name), normalize_name(target.name)),
        )
    if isinstance(target, Album):
        return (
            "INNER JOIN album al ON al.id = h.album_id"
            " INNER JOIN artist a ON a.id = al.artist_id",
            "a.artist_name = ? AND al.album_name = ?",
            (normalize_name(target.artist.name), normalize_name(target.name)),
        )
    return (
        "INNER JOIN artist a ON a.id = h.artist_id",
        "a.artist_name = ?",
        (normalize_name(target.name),),
    )


def _resolve_key(conn: sqlite3.Connection, target: InvocationTarget) -> _HistoryKey:
    if isinstance(target, Page):
        return _HistoryKey(target_key=f"page:{target.number}", page=target.number)
    if isinstance(target, Track):
        track_id = get_or_create_track_id(conn, target)
        return _HistoryKey(target_key=f"track:{track_id}", track_id=track_id)
    if isinstance(target, Album):
        album_id = get_or_create_album_id(conn, target)
        return _HistoryKey(target_key=f"album:{album_id}", album_id=album_id)
    artist_id = get_or_create_artist_id(conn, target)
    return _HistoryKey(target_key=f"artist:{artist_id}", artist_id=artist_id)
