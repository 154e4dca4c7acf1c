# session/similar.py
from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence

from core.genre import classify_genre, known_genre
from core.models import CandidateResult, HistoryItem, Track
from core.utils import join_terms
from metadata.service import MetadataService
from session.history import PlayHistory

logger = logging.getLogger(__name__)

SIMILAR_SUFFIX = "similar songs"

# First matching mood wins.
MOOD_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("romantic", ("love", "pyaar", "pyar", "ishq", "dil", "mohabbat", "romantic", "jaan", "heart")),
    ("dance", ("dance", "party", "club", "nach", "nachle", "dj", "remix", "beat", "groove")),
    ("emotional", ("sad", "dard", "tears", "cry", "alone", "broken", "yaad", "judaai", "bewafa", "miss")),
]

_MOOD_PATTERNS = [
    (mood, re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")\b"))
    for mood, keywords in MOOD_KEYWORDS
]


def mood_token(title: str) -> Optional[str]:
    text = (title or "").lower()
    for mood, pattern in _MOOD_PATTERNS:
        if pattern.search(text):
            return mood
    return None


class SimilarTrackFinder:
    """
    Picks continuation tracks for autoplay.

    Two searches run side by side: one built from the seed track (title,
    artist, genre, mood) and one from the artists the listener plays most.
    Results are merged primary-first, filtered and truncated. With
    prevent_repeat on, anything in the history is dropped; if that leaves
    nothing, the search is retried once without the filter.
    """

    def __init__(self, metadata: MetadataService, top_artist_count: int = 3):
        self.metadata = metadata
        self.top_artist_count = top_artist_count

    def build_queries(self, seed: Track, history: Sequence[HistoryItem]) -> list[str]:
        genre = known_genre(seed.genre or classify_genre(seed.title, seed.artist))

        queries = [join_terms(seed.title, seed.artist, genre, mood_token(seed.title), SIMILAR_SUFFIX)]

        top_artists = PlayHistory(history).top_artists(self.top_artist_count)
        if top_artists:
            queries.append(join_terms(*top_artists, genre))
        return queries

    def find(
        self,
        seed: Track,
        history: Sequence[HistoryItem],
        prevent_repeat: bool,
        limit: int = 5,
    ) -> list[Track]:
        tracks = self._find_once(seed, history, prevent_repeat, limit)

        if not tracks and prevent_repeat and history:
            logger.info("No unheard tracks similar to %s; retrying without prevent-repeat", seed.id)
            tracks = self._find_once(seed, history, False, limit)
        return self._with_details(tracks)

    def _find_once(
        self,
        seed: Track,
        history: Sequence[HistoryItem],
        prevent_repeat: bool,
        limit: int,
    ) -> list[Track]:
        queries = self.build_queries(seed, history)
        # headroom for the seed and, with prevent_repeat, already-heard tracks
        max_results = limit * 3 if prevent_repeat else limit + 1

        result_lists = self._search_all(queries, max_results)

        excluded = {seed.id}
        if prevent_repeat:
            excluded |= {h.track_id for h in history}

        out: list[Track] = []
        for candidate in (c for results in result_lists for c in results):
            if len(out) >= limit:
                break
            if candidate.kind != "track" or candidate.id in excluded:
                continue
            excluded.add(candidate.id)
            out.append(candidate.to_track(classify_genre(candidate.title, candidate.author)))
        return out

    def _with_details(self, tracks: list[Track]) -> list[Track]:
        """Fill in duration and artwork; a track that cannot be resolved is kept as is."""
        if not tracks:
            return tracks
        with ThreadPoolExecutor(max_workers=len(tracks), thread_name_prefix="similar-resolve") as pool:
            futures = [pool.submit(self.metadata.resolve, t.id) for t in tracks]

        out = []
        for track, future in zip(tracks, futures):
            try:
                out.append(track.with_details(future.result()))
            except Exception as e:
                logger.warning("Could not resolve continuation track %s: %s", track.id, e)
                out.append(track)
        return out

    def _search_all(self, queries: list[str], max_results: int) -> list[list[CandidateResult]]:
        with ThreadPoolExecutor(max_workers=len(queries), thread_name_prefix="similar-search") as pool:
            futures = [pool.submit(self.metadata.search, q, max_results) for q in queries]

        results: list[list[CandidateResult]] = []
        errors: list[Exception] = []
        for query, future in zip(queries, futures):
            try:
                results.append(future.result())
            except Exception as e:
                logger.warning("Similar-track query %r failed: %s", query, e)
                errors.append(e)

        if errors and len(errors) == len(queries):
            raise errors[0]
        return results
