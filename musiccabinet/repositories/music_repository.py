from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from musiccabinet.models.webservice_contracts import Album, Artist, Track
from musiccabinet.repositories.common import normalize_name, to_utc_iso, utc_now
from musiccabinet.repositories.database import Database


@dataclass(frozen=True)
class LibraryFile:
    path: str
    track_id: int
    album_id: int | None


class MusicRepository:
    """
    Stable internal ids for artists, albums and tracks.

    Names are stored upper-cased for lookups, alongside the capitalization
    first seen, since Last.fm distinguishes case for non US-ASCII names.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def get_artist_id(self, artist: Artist) -> int:
        with self._db.connection() as conn:
            return get_or_create_artist_id(conn, artist)

    def get_album_id(self, album: Album) -> int:
        with self._db.connection() as conn:
            return get_or_create_album_id(conn, album)

    def get_track_id(self, track: Track) -> int:
        with self._db.connection() as conn:
            return get_or_create_track_id(conn, track)

    def find_artist_id(self, artist: Artist) -> int | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT id FROM artist WHERE artist_name = ?",
                (normalize_name(artist.name),),
            ).fetchone()
        return int(row["id"]) if row is not None else None

    def add_music_file(self, path: str, track: Track, album: Album | None = None) -> LibraryFile:
        with self._db.connection() as conn:
            track_id = get_or_create_track_id(conn, track)
            album_id = get_or_create_album_id(conn, album) if album is not None else None
            conn.execute(
                """
                INSERT INTO musicfile (path, track_id, album_id, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    track_id = excluded.track_id,
                    album_id = excluded.album_id
                """,
                (path, track_id, album_id, to_utc_iso(utc_now())),
            )
        return LibraryFile(path=path, track_id=track_id, album_id=album_id)

    def remove_music_file(self, path: str) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute("DELETE FROM musicfile WHERE path = ?", (path,))
            return cursor.rowcount > 0

    def list_library_artists(self) -> list[Artist]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT a.artist_name_capitalization
                FROM artist a
                WHERE a.id IN (
                    SELECT t.artist_id FROM musicfile mf
                    INNER JOIN track t ON mf.track_id = t.id
                )
                ORDER BY a.artist_name
                """
            ).fetchall()
        return [Artist(name=str(row["artist_name_capitalization"])) for row in rows]


def get_or_create_artist_id(conn: sqlite3.Connection, artist: Artist) -> int:
    conn.execute(
        """
        INSERT INTO artist (artist_name, artist_name_capitalization)
        VALUES (?, ?)
        ON CONFLICT(artist_name) DO NOTHING
        """,
        (normalize_name(artist.name), artist.name),
    )
    row = conn.execute(
        "SELECT id FROM artist WHERE artist_name = ?",
        (normalize_name(artist.name),),
    ).fetchone()
    return int(row["id"])


def get_or_create_album_id(conn: sqlite3.Connection, album: Album) -> int:
    artist_id = get_or_create_artist_id(conn, album.artist)
    conn.execute(
        """
        INSERT INTO album (artist_id, album_name, album_name_capitalization)
        VALUES (?, ?, ?)
        ON CONFLICT(artist_id, album_name) DO NOTHING
        """,
        (artist_id, normalize_name(album.name), album.name),
    )
    row = conn.execute(
        "SELECT id FROM album WHERE artist_id = ? AND album_name = ?",
        (artist_id, normalize_name(album.name)),
    ).fetchone()
    return int(row["id"])


def get_or_create_track_id(conn: sqlite3.Connection, track: Track) -> int:
    artist_id = get_or_create_artist_id(conn, track.artist)
    conn.execute(
        """
        INSERT INTO track (artist_id, track_name, track_name_capitalization)
        VALUES (?, ?, ?)
        ON CONFLICT(artist_id, track_name) DO NOTHING
        """,
        (artist_id, normalize_name(track.name), track.name),
    )
    row = conn.execute(
        "SELECT id FROM track WHERE artist_id = ? AND track_name = ?",
        (artist_id, normalize_name(track.name)),
    ).fetchone()
    return int(row["id"])
