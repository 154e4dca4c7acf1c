# core/models.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional


class PlayerState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    BUFFERING = "buffering"
    ENDED = "ended"
    ERROR = "error"


@dataclass(frozen=True)
class Track:
    id: str
    title: str
    artist: str
    cover_url: str = ""
    duration_seconds: int = 0   # 0 = not resolved yet
    genre: Optional[str] = None

    @property
    def has_duration(self) -> bool:
        return self.duration_seconds > 0

    def with_details(self, resolved: "Track") -> "Track":
        """
        Complete a partially-known track with resolved metadata.
        Identity never changes; fields already known are kept.
        """
        return replace(
            self,
            duration_seconds=self.duration_seconds or max(0, int(resolved.duration_seconds)),
            cover_url=self.cover_url or resolved.cover_url,
            genre=self.genre or resolved.genre,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "cover_url": self.cover_url,
            "duration_seconds": self.duration_seconds,
            "genre": self.genre,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Track":
        return Track(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            artist=str(data.get("artist") or ""),
            cover_url=str(data.get("cover_url") or ""),
            duration_seconds=max(0, int(data.get("duration_seconds") or 0)),
            genre=data.get("genre") or None,
        )


@dataclass(frozen=True)
class HistoryItem:
    track_id: str
    title: str
    artist: str
    played_at_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "track_id": self.track_id,
            "title": self.title,
            "artist": self.artist,
            "played_at_ms": self.played_at_ms,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "HistoryItem":
        return HistoryItem(
            track_id=str(data["track_id"]),
            title=str(data.get("title") or ""),
            artist=str(data.get("artist") or ""),
            played_at_ms=int(data.get("played_at_ms") or 0),
        )


@dataclass(frozen=True)
class Settings:
    shuffle_enabled: bool = False
    prevent_repeat_enabled: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {
            "shuffle_enabled": self.shuffle_enabled,
            "prevent_repeat_enabled": self.prevent_repeat_enabled,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Settings":
        return Settings(
            shuffle_enabled=bool(data.get("shuffle_enabled", False)),
            prevent_repeat_enabled=bool(data.get("prevent_repeat_enabled", False)),
        )


@dataclass(frozen=True)
class CandidateResult:
    id: str
    kind: str           # "track" | "playlist" | "channel"
    title: str
    author: str
    thumbnails: dict[str, str] = field(default_factory=dict)

    def best_thumbnail(self) -> str:
        for size in ("maxres", "standard", "high", "medium", "default"):
            url = self.thumbnails.get(size)
            if url:
                return url
        return ""

    def to_track(self, genre: Optional[str] = None) -> Track:
        return Track(
            id=self.id,
            title=self.title,
            artist=self.author,
            cover_url=self.best_thumbnail(),
            genre=genre,
        )


@dataclass(frozen=True)
class PlaySessionState:
    current_track: Optional[Track] = None
    player_state: PlayerState = PlayerState.IDLE
    volume: int = 70
    position_seconds: int = 0
    duration_seconds: int = 0
    queue: tuple[Track, ...] = ()
    last_error: Optional[str] = None
    shuffle_enabled: bool = False
    prevent_repeat_enabled: bool = False

    @property
    def is_playing(self) -> bool:
        return self.player_state in (PlayerState.PLAYING, PlayerState.BUFFERING)
