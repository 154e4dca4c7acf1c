# metadata/youtube_client.py
from __future__ import annotations

import html
import logging
import threading
import time
from typing import Any, Optional

import requests

from core.errors import ResolutionFailure, SearchFailure, TrackNotFound
from core.genre import classify_genre
from core.models import CandidateResult, Track
from core.utils import join_terms, parse_iso_duration
from metadata.service import MetadataService

logger = logging.getLogger(__name__)

MUSIC_CATEGORY_ID = "10"

_KIND_BY_ID_FIELD = (
    ("videoId", "track"),
    ("playlistId", "playlist"),
    ("channelId", "channel"),
)


def _thumbnails(snippet: dict[str, Any]) -> dict[str, str]:
    out = {}
    for size, info in (snippet.get("thumbnails") or {}).items():
        if isinstance(info, dict) and info.get("url"):
            out[size] = info["url"]
    return out


def candidate_from_search_item(item: dict[str, Any]) -> Optional[CandidateResult]:
    ids = item.get("id") or {}
    snippet = item.get("snippet") or {}
    for field, kind in _KIND_BY_ID_FIELD:
        if ids.get(field):
            return CandidateResult(
                id=ids[field],
                kind=kind,
                title=html.unescape(snippet.get("title") or ""),
                author=html.unescape(snippet.get("channelTitle") or ""),
                thumbnails=_thumbnails(snippet),
            )
    return None


def track_from_video(video: dict[str, Any]) -> Track:
    snippet = video.get("snippet") or {}
    title = html.unescape(snippet.get("title") or "")
    artist = html.unescape(snippet.get("channelTitle") or "")
    candidate = CandidateResult(
        id=video["id"], kind="track", title=title, author=artist, thumbnails=_thumbnails(snippet)
    )
    return Track(
        id=video["id"],
        title=title,
        artist=artist,
        cover_url=candidate.best_thumbnail(),
        duration_seconds=parse_iso_duration((video.get("contentDetails") or {}).get("duration")),
        genre=classify_genre(title, artist),
    )


class YouTubeClient(MetadataService):
    """
    YouTube Data API v3 lookups.

    Responses are cached in memory for `cache_ttl_s` seconds, keyed by
    endpoint + params, so repeated continuation queries stay cheap.
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://www.googleapis.com/youtube/v3",
        timeout_s: float = 5.0,
        cache_ttl_s: float = 300.0,
        user_agent: str = "meregaane/0.1",
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.cache_ttl_s = cache_ttl_s
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent})

        self._cache: dict[tuple, tuple[float, Any]] = {}
        # continuation queries run on worker threads
        self._cache_lock = threading.Lock()

    # ---- http ----

    def _get(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        key = (endpoint, tuple(sorted(params.items())))
        now = time.monotonic()
        with self._cache_lock:
            hit = self._cache.get(key)
            if hit and now - hit[0] < self.cache_ttl_s:
                logger.debug("Using cached data for %s %s", endpoint, params)
                return hit[1]

        r = self.session.get(
            f"{self.base_url}/{endpoint}",
            params={**params, "key": self.api_key},
            timeout=self.timeout_s,
        )
        r.raise_for_status()
        data = r.json()

        with self._cache_lock:
            stale = [k for k, (ts, _) in self._cache.items() if now - ts >= self.cache_ttl_s]
            for k in stale:
                del self._cache[k]
            self._cache[key] = (now, data)
        return data

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    # ---- MetadataService ----

    def resolve(self, track_id: str) -> Track:
        try:
            data = self._get("videos", {"part": "snippet,contentDetails", "id": track_id})
        except (requests.RequestException, ValueError) as e:
            raise ResolutionFailure(track_id, str(e)) from e

        items = data.get("items") or []
        if not items:
            raise TrackNotFound(track_id)
        return track_from_video(items[0])

    def search(self, query: str, max_results: int = 10) -> list[CandidateResult]:
        params = {
            "part": "snippet",
            "maxResults": int(max_results),
            "q": join_terms(query, "music"),
            "type": "video",
            "videoCategoryId": MUSIC_CATEGORY_ID,
        }
        return self._search(query, params)

    # ---- extras used by the app shell ----

    def search_tracks(self, query: str, max_results: int = 10) -> list[Track]:
        """
        Playable tracks for a free-text query. When no video matches, the
        items of the best matching playlist are used instead.
        """
        tracks = [c.to_track(classify_genre(c.title, c.author)) for c in self.search(query, max_results)
                  if c.kind == "track"]
        if tracks:
            return tracks

        playlists = [c for c in self.search_playlists(query, 1) if c.kind == "playlist"]
        if not playlists:
            return []
        logger.info("No videos for %r; using playlist %s", query, playlists[0].id)
        return self.playlist_items(playlists[0].id)

    def search_playlists(self, query: str, max_results: int = 10) -> list[CandidateResult]:
        params = {
            "part": "snippet",
            "maxResults": int(max_results),
            "q": join_terms(query, "playlist"),
            "type": "playlist",
        }
        return self._search(query, params)

    def playlist_items(self, playlist_id: str, max_results: int = 50) -> list[Track]:
        try:
            data = self._get(
                "playlistItems",
                {"part": "snippet", "maxResults": int(max_results), "playlistId": playlist_id},
            )
        except (requests.RequestException, ValueError) as e:
            raise SearchFailure(playlist_id, str(e)) from e

        tracks = []
        for item in data.get("items") or []:
            snippet = item.get("snippet") or {}
            video_id = (snippet.get("resourceId") or {}).get("videoId")
            if not video_id:
                continue
            candidate = CandidateResult(
                id=video_id,
                kind="track",
                title=html.unescape(snippet.get("title") or ""),
                # playlist items carry the uploader in videoOwnerChannelTitle
                author=html.unescape(snippet.get("videoOwnerChannelTitle") or snippet.get("channelTitle") or ""),
                thumbnails=_thumbnails(snippet),
            )
            tracks.append(candidate.to_track(classify_genre(candidate.title, candidate.author)))
        return tracks

    def _search(self, query: str, params: dict[str, Any]) -> list[CandidateResult]:
        try:
            data = self._get("search", params)
        except (requests.RequestException, ValueError) as e:
            raise SearchFailure(query, str(e)) from e

        results = []
        for item in data.get("items") or []:
            candidate = candidate_from_search_item(item)
            if candidate is not None:
                results.append(candidate)
        return results
