from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CallType(Enum):
    """
    Last.fm web service methods whose invocations are tracked in history.

    `days_to_cache` is the number of whole days a stored result is trusted
    before a new invocation is allowed. Last.fm terms of service require
    similarity and chart data to be cached for at least a week.
    """

    ARTIST_GET_INFO = (1, "artist.getInfo", 30)
    ARTIST_GET_SIMILAR = (2, "artist.getSimilar", 30)
    ARTIST_GET_TOP_TRACKS = (3, "artist.getTopTracks", 14)
    ARTIST_GET_TOP_TAGS = (4, "artist.getTopTags", 30)
    ALBUM_GET_INFO = (5, "album.getInfo", 90)
    TRACK_GET_SIMILAR = (6, "track.getSimilar", 30)
    CHART_GET_TOP_ARTISTS = (7, "chart.getTopArtists", 7)

    def __init__(self, database_id: int, method: str, days_to_cache: int) -> None:
        self.database_id = database_id
        self.method = method
        self.days_to_cache = days_to_cache

    @classmethod
    def from_database_id(cls, database_id: int) -> CallType:
        for call_type in cls:
            if call_type.database_id == database_id:
                return call_type
        raise ValueError(f"Unknown call type id: {database_id}")


class _Target(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


def _strip_required_name(value: str, *, kind: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{kind} name must not be blank.")
    return stripped


class Artist(_Target):
    name: str = Field(min_length=1)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return _strip_required_name(value, kind="Artist")


class Album(_Target):
    artist: Artist
    name: str = Field(min_length=1)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return _strip_required_name(value, kind="Album")


class Track(_Target):
    artist: Artist
    name: str = Field(min_length=1)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return _strip_required_name(value, kind="Track")


class Page(_Target):
    number: int = Field(ge=1)


InvocationTarget = Artist | Album | Track | Page


class WebserviceInvocation(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    call_type: CallType
    target: InvocationTarget

    def __str__(self) -> str:
        return f"{self.call_type.method}({describe_target(self.target)})"


class WebserviceResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    recoverable: bool = False
    status_code: int = 0
    message: str | None = None
    data: dict[str, Any] | None = None
    invoked: bool = True

    @classmethod
    def succeeded(cls, data: dict[str, Any]) -> WebserviceResponse:
        return cls(success=True, status_code=200, data=data)

    @classmethod
    def failed(cls, *, recoverable: bool, status_code: int, message: str) -> WebserviceResponse:
        return cls(
            success=False,
            recoverable=recoverable,
            status_code=status_code,
            message=message,
        )

    @classmethod
    def not_invoked(cls) -> WebserviceResponse:
        return cls(success=False, recoverable=False, invoked=False)


def describe_target(target: InvocationTarget) -> str:
    if isinstance(target, Page):
        return f"page={target.number}"
    if isinstance(target, Track):
        return f"artist={target.artist.name!r} track={target.name!r}"
    if isinstance(target, Album):
        return f"artist={target.artist.name!r} album={target.name!r}"
    return f"artist={target.name!r}"
