from __future__ import annotations

from musiccabinet.models.webservice_contracts import (
    Album,
    Artist,
    CallType,
    Page,
    Track,
    WebserviceInvocation,
    WebserviceResponse,
)
from musiccabinet.services.lastfm_client import LastFmClient

# Names go out with their original capitalization; Last.fm distinguishes case
# for non US-ASCII characters.


class ArtistInfoClient:
    def __init__(self, client: LastFmClient, *, lang: str | None = None) -> None:
        self._client = client
        self._lang = lang

    def get_artist_info(self, artist: Artist) -> WebserviceResponse:
        params = {"method": CallType.ARTIST_GET_INFO.method, "artist": artist.name}
        if self._lang is not None:
            params["lang"] = self._lang
        return self._client.execute_ws_request(
            WebserviceInvocation(call_type=CallType.ARTIST_GET_INFO, target=artist),
            params,
        )


class ArtistSimilarityClient:
    def __init__(self, client: LastFmClient, *, limit: int = 100) -> None:
        self._client = client
        self._limit = limit

    def get_artist_similarity(self, artist: Artist) -> WebserviceResponse:
        return self._client.execute_ws_request(
            WebserviceInvocation(call_type=CallType.ARTIST_GET_SIMILAR, target=artist),
            {
                "method": CallType.ARTIST_GET_SIMILAR.method,
                "artist": artist.name,
                "limit": str(self._limit),
            },
        )


class ArtistTopTracksClient:
    def __init__(self, client: LastFmClient) -> None:
        self._client = client

    def get_top_tracks(self, artist: Artist) -> WebserviceResponse:
        return self._client.execute_ws_request(
            WebserviceInvocation(call_type=CallType.ARTIST_GET_TOP_TRACKS, target=artist),
            {"method": CallType.ARTIST_GET_TOP_TRACKS.method, "artist": artist.name},
        )


class ArtistTopTagsClient:
    def __init__(self, client: LastFmClient) -> None:
        self._client = client

    def get_top_tags(self, artist: Artist) -> WebserviceResponse:
        return self._client.execute_ws_request(
            WebserviceInvocation(call_type=CallType.ARTIST_GET_TOP_TAGS, target=artist),
            {"method": CallType.ARTIST_GET_TOP_TAGS.method, "artist": artist.name},
        )


class AlbumInfoClient:
    def __init__(self, client: LastFmClient) -> None:
        self._client = client

    def get_album_info(self, album: Album) -> WebserviceResponse:
        return self._client.execute_ws_request(
            WebserviceInvocation(call_type=CallType.ALBUM_GET_INFO, target=album),
            {
                "method": CallType.ALBUM_GET_INFO.method,
                "artist": album.artist.name,
                "album": album.name,
            },
        )


class TrackSimilarityClient:
    def __init__(self, client: LastFmClient, *, limit: int = 100) -> None:
        self._client = client
        self._limit = limit

    def get_track_similarity(self, track: Track) -> WebserviceResponse:
        return self._client.execute_ws_request(
            WebserviceInvocation(call_type=CallType.TRACK_GET_SIMILAR, target=track),
            {
                "method": CallType.TRACK_GET_SIMILAR.method,
                "artist": track.artist.name,
                "track": track.name,
                "limit": str(self._limit),
            },
        )


class ChartTopArtistsClient:
    def __init__(self, client: LastFmClient) -> None:
        self._client = client

    def get_top_artists(self, page: int) -> WebserviceResponse:
        return self._client.execute_ws_request(
            WebserviceInvocation(
                call_type=CallType.CHART_GET_TOP_ARTISTS,
                target=Page(number=page),
            ),
            {"method": CallType.CHART_GET_TOP_ARTISTS.method, "page": str(page)},
        )
