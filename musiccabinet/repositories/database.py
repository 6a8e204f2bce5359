from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS artist (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    artist_name TEXT NOT NULL UNIQUE,
    artist_name_capitalization TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS album (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    artist_id INTEGER NOT NULL,
    album_name TEXT NOT NULL,
    album_name_capitalization TEXT NOT NULL,
    UNIQUE (artist_id, album_name),
    FOREIGN KEY(artist_id) REFERENCES artist(id)
);

CREATE TABLE IF NOT EXISTS track (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    artist_id INTEGER NOT NULL,
    track_name TEXT NOT NULL,
    track_name_capitalization TEXT NOT NULL,
    UNIQUE (artist_id, track_name),
    FOREIGN KEY(artist_id) REFERENCES artist(id)
);

CREATE TABLE IF NOT EXISTS musicfile (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT NOT NULL UNIQUE,
    track_id INTEGER NOT NULL,
    album_id INTEGER NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY(track_id) REFERENCES track(id),
    FOREIGN KEY(album_id) REFERENCES album(id)
);

CREATE INDEX IF NOT EXISTS idx_musicfile_track ON musicfile(track_id);

CREATE TABLE IF NOT EXISTS webservice_history (
    calltype_id INTEGER NOT NULL,
    target_key TEXT NOT NULL,
    artist_id INTEGER NULL,
    album_id INTEGER NULL,
    track_id INTEGER NULL,
    page INTEGER NULL,
    invocation_time TEXT NOT NULL,
    PRIMARY KEY (calltype_id, target_key),
    FOREIGN KEY(artist_id) REFERENCES artist(id),
    FOREIGN KEY(album_id) REFERENCES album(id),
    FOREIGN KEY(track_id) REFERENCES track(id)
);

CREATE INDEX IF NOT EXISTS idx_webservice_history_calltype_time
ON webservice_history(calltype_id, invocation_time);

CREATE INDEX IF NOT EXISTS idx_webservice_history_artist
ON webservice_history(artist_id, calltype_id);
"""


class Database:
    def __init__(self, path: Path, *, busy_timeout_seconds: float = 30.0) -> None:
        self._path = path
        self._busy_timeout_seconds = busy_timeout_seconds

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        # One connection per unit of work; worker threads never share a connection.
        conn = sqlite3.connect(self._path, timeout=self._busy_timeout_seconds)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA_SQL)
