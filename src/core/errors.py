# core/errors.py
from __future__ import annotations

from enum import Enum


class SessionError(Exception):
    """Base class for everything the playback session can report."""


class ResolutionFailure(SessionError):
    def __init__(self, track_id: str, reason: str = ""):
        self.track_id = track_id
        self.reason = reason
        super().__init__(f"Could not resolve track {track_id}" + (f": {reason}" if reason else ""))


class TrackNotFound(ResolutionFailure):
    def __init__(self, track_id: str):
        super().__init__(track_id, "not found")


class SearchFailure(SessionError):
    def __init__(self, query: str, reason: str = ""):
        self.query = query
        self.reason = reason
        super().__init__(f"Search failed for {query!r}" + (f": {reason}" if reason else ""))


class AdapterInitFailure(SessionError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Audio player failed to start: {reason}")


class PlaybackErrorCategory(Enum):
    INVALID_PARAMETERS = "invalid parameters"
    FORMAT_UNSUPPORTED = "format unsupported"
    NOT_FOUND = "not found"
    EMBEDDING_DISALLOWED = "embedding disallowed"
    UNKNOWN = "unknown"

    @staticmethod
    def from_code(code: int) -> "PlaybackErrorCategory":
        return _CATEGORY_BY_CODE.get(int(code), PlaybackErrorCategory.UNKNOWN)


# Codes reported by the embedded player.
_CATEGORY_BY_CODE = {
    2: PlaybackErrorCategory.INVALID_PARAMETERS,
    5: PlaybackErrorCategory.FORMAT_UNSUPPORTED,
    100: PlaybackErrorCategory.NOT_FOUND,
    101: PlaybackErrorCategory.EMBEDDING_DISALLOWED,
    150: PlaybackErrorCategory.EMBEDDING_DISALLOWED,
}

_CATEGORY_MESSAGES = {
    PlaybackErrorCategory.INVALID_PARAMETERS: "Playback failed: invalid parameters for this track.",
    PlaybackErrorCategory.FORMAT_UNSUPPORTED: "Playback failed: format unsupported by the player.",
    PlaybackErrorCategory.NOT_FOUND: "Playback failed: track not found or removed.",
    PlaybackErrorCategory.EMBEDDING_DISALLOWED: "Playback failed: embedding disallowed by the track owner.",
    PlaybackErrorCategory.UNKNOWN: "Playback failed: unknown player error.",
}


class PlaybackError(SessionError):
    def __init__(self, code: int):
        self.code = int(code)
        self.category = PlaybackErrorCategory.from_code(self.code)
        super().__init__(_CATEGORY_MESSAGES[self.category])


class ContinuationExhausted(SessionError):
    def __init__(self, prevent_repeat: bool):
        self.prevent_repeat = prevent_repeat
        if prevent_repeat:
            msg = "No more songs found. Try turning off Prevent Repeat to hear more."
        else:
            msg = "No more songs found for autoplay. Pick something new to keep listening."
        super().__init__(msg)
