# session/history.py
from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Iterable, Optional

from core.models import HistoryItem, Track
from core.utils import now_ms

logger = logging.getLogger(__name__)


class PlayHistory:
    """
    Most recent plays, newest first, one entry per track id.
    Replaying a track moves it back to the front with the new timestamp.
    """

    def __init__(self, items: Iterable[HistoryItem] = (), limit: int = 50):
        self.limit = limit
        self._items: list[HistoryItem] = []
        seen: set[str] = set()
        for item in items:
            if item.track_id in seen:
                continue
            seen.add(item.track_id)
            self._items.append(item)
        del self._items[self.limit:]

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> list[HistoryItem]:
        return list(self._items)

    def record(self, track: Track, played_at_ms: Optional[int] = None) -> HistoryItem:
        item = HistoryItem(
            track_id=track.id,
            title=track.title,
            artist=track.artist,
            played_at_ms=now_ms() if played_at_ms is None else played_at_ms,
        )
        self._items = [i for i in self._items if i.track_id != track.id]
        self._items.insert(0, item)
        del self._items[self.limit:]
        return item

    def track_ids(self) -> set[str]:
        return {i.track_id for i in self._items}

    def top_artists(self, k: int = 3) -> list[str]:
        # Counter keeps first-seen order on ties, so recent artists win
        counts = Counter(i.artist for i in self._items if i.artist)
        return [artist for artist, _ in counts.most_common(k)]

    def to_json(self) -> list[dict[str, Any]]:
        return [i.to_dict() for i in self._items]

    @staticmethod
    def from_json(data: Any, limit: int = 50) -> "PlayHistory":
        return PlayHistory(_parse_list(data, HistoryItem.from_dict), limit=limit)


class RecentTracks:
    """Recently picked search results, newest first, deduplicated by id."""

    def __init__(self, tracks: Iterable[Track] = (), limit: int = 10):
        self.limit = limit
        self._tracks: list[Track] = []
        for t in tracks:
            if all(existing.id != t.id for existing in self._tracks):
                self._tracks.append(t)
        del self._tracks[self.limit:]

    def __len__(self) -> int:
        return len(self._tracks)

    @property
    def tracks(self) -> list[Track]:
        return list(self._tracks)

    def add(self, track: Track) -> None:
        self._tracks = [t for t in self._tracks if t.id != track.id]
        self._tracks.insert(0, track)
        del self._tracks[self.limit:]

    def clear(self) -> None:
        self._tracks.clear()

    def to_json(self) -> list[dict[str, Any]]:
        return [t.to_dict() for t in self._tracks]

    @staticmethod
    def from_json(data: Any, limit: int = 10) -> "RecentTracks":
        return RecentTracks(_parse_list(data, Track.from_dict), limit=limit)


class LikedTracks:
    def __init__(self, tracks: Iterable[Track] = ()):
        self._tracks: dict[str, Track] = {}
        for t in tracks:
            self._tracks.setdefault(t.id, t)

    def __len__(self) -> int:
        return len(self._tracks)

    def __contains__(self, track_id: object) -> bool:
        return track_id in self._tracks

    @property
    def tracks(self) -> list[Track]:
        return list(self._tracks.values())

    def toggle(self, track: Track) -> bool:
        """Flip membership; returns True when the track is now liked."""
        if track.id in self._tracks:
            del self._tracks[track.id]
            return False
        self._tracks[track.id] = track
        return True

    def to_json(self) -> list[dict[str, Any]]:
        return [t.to_dict() for t in self._tracks.values()]

    @staticmethod
    def from_json(data: Any) -> "LikedTracks":
        return LikedTracks(_parse_list(data, Track.from_dict))


def _parse_list(data: Any, parse) -> list:
    if not isinstance(data, list):
        if data is not None:
            logger.warning("Ignoring persisted value of unexpected type %s", type(data).__name__)
        return []

    out = []
    for entry in data:
        try:
            out.append(parse(entry))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Skipping malformed persisted entry %r: %s", entry, e)
    return out
