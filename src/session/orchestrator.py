# session/orchestrator.py
from __future__ import annotations

import logging
from functools import partial
from typing import Any, Optional, Sequence

from PySide6.QtCore import QObject, QTimer, Signal

from core.errors import AdapterInitFailure, ContinuationExhausted, PlaybackError
from core.models import PlayerState, PlaySessionState, Settings, Track
from db.store import (
    HISTORY_KEY,
    LIKED_KEY,
    SEARCH_HISTORY_KEY,
    SETTINGS_KEY,
    VOLUME_KEY,
    PersistentStore,
)
from metadata.service import MetadataService
from player.adapter import AdapterState, MediaPlayerAdapter
from session.history import LikedTracks, PlayHistory, RecentTracks
from session.similar import SimilarTrackFinder
from session.tasks import QtTaskRunner

logger = logging.getLogger(__name__)

DEFAULT_VOLUME = 70

# States in which an adapter ENDED/error for the current track is meaningful.
_ACTIVE_STATES = (
    PlayerState.READY,
    PlayerState.PLAYING,
    PlayerState.PAUSED,
    PlayerState.BUFFERING,
)


class PlaybackSession(QObject):
    """
    Owns one listening session: current track, queue, history, likes and
    settings, reconciled against an asynchronous media player.

    Every mutation happens on the Qt thread. Background lookups carry the
    generation they were started under; a result whose generation no longer
    matches (the user moved on) is dropped. Only adapter events move the
    player state; commands just ask the adapter.
    """

    stateChanged = Signal(object)       # PlaySessionState
    positionChanged = Signal(int)       # seconds
    likedChanged = Signal(object)       # list[Track]
    searchHistoryChanged = Signal(object)  # list[Track]
    errorRaised = Signal(str)

    def __init__(
        self,
        adapter: MediaPlayerAdapter,
        metadata: MetadataService,
        store: PersistentStore,
        runner=None,
        finder: Optional[SimilarTrackFinder] = None,
        *,
        history_limit: int = 50,
        search_history_limit: int = 10,
        continuation_limit: int = 5,
        poll_interval_ms: int = 1000,
        parent=None,
    ):
        super().__init__(parent)
        self.adapter = adapter
        self.metadata = metadata
        self.store = store
        self.runner = runner if runner is not None else QtTaskRunner(self)
        self.finder = finder or SimilarTrackFinder(metadata)
        self.continuation_limit = continuation_limit

        self._current: Optional[Track] = None
        self._state = PlayerState.IDLE
        self._position = 0
        self._duration = 0
        self._queue: list[Track] = []
        self._last_error: Optional[str] = None

        self._adapter_ready = False
        self._adapter_failure: Optional[str] = None
        self._pending_load: Optional[str] = None
        self._prefetched_id: Optional[str] = None

        self._generation = 0
        self._continuation_in_flight = False

        raw_settings = self._load(SETTINGS_KEY, {})
        self._settings = Settings.from_dict(raw_settings) if isinstance(raw_settings, dict) else Settings()
        self._history = PlayHistory.from_json(self._load(HISTORY_KEY, []), limit=history_limit)
        self._liked = LikedTracks.from_json(self._load(LIKED_KEY, []))
        self._searches = RecentTracks.from_json(self._load(SEARCH_HISTORY_KEY, []), limit=search_history_limit)
        self._volume = self._clamp_volume(self._load(VOLUME_KEY, DEFAULT_VOLUME))

        self._poll_timer = QTimer(self)
        self._poll_timer.setInterval(poll_interval_ms)
        self._poll_timer.timeout.connect(self._poll_position)

        adapter.ready.connect(self._on_adapter_ready)
        adapter.stateChanged.connect(self._on_adapter_state)
        adapter.errorOccurred.connect(self._on_adapter_error)
        adapter.failed.connect(self._on_adapter_failed)

    # ----------------------------
    # Read-only views
    # ----------------------------

    def snapshot(self) -> PlaySessionState:
        return PlaySessionState(
            current_track=self._current,
            player_state=self._state,
            volume=self._volume,
            position_seconds=self._position,
            duration_seconds=self._duration,
            queue=tuple(self._queue),
            last_error=self._last_error,
            shuffle_enabled=self._settings.shuffle_enabled,
            prevent_repeat_enabled=self._settings.prevent_repeat_enabled,
        )

    @property
    def state(self) -> PlayerState:
        return self._state

    @property
    def current_track(self) -> Optional[Track]:
        return self._current

    @property
    def queue(self) -> list[Track]:
        return list(self._queue)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def history(self):
        return self._history.items

    @property
    def liked_tracks(self) -> list[Track]:
        return self._liked.tracks

    @property
    def search_history(self) -> list[Track]:
        return self._searches.tracks

    @property
    def continuation_in_flight(self) -> bool:
        return self._continuation_in_flight

    def is_liked(self, track_id: str) -> bool:
        return track_id in self._liked

    # ----------------------------
    # Commands
    # ----------------------------

    def play_track(self, track: Track) -> None:
        self._generation += 1
        generation = self._generation
        # any running continuation lookup is now stale
        self._continuation_in_flight = False

        self._poll_timer.stop()
        self._current = track
        self._position = 0
        self._duration = track.duration_seconds
        self._last_error = None
        self._set_state(PlayerState.LOADING, notify=False)

        self._history.record(track)
        self._save(HISTORY_KEY, self._history.to_json())

        # load(...) replaces whatever the player had buffered
        self._prefetched_id = None
        if self._adapter_ready:
            self.adapter.load(track.id)
            self._prefetch_next()
        else:
            logger.debug("Adapter not ready; deferring load of %s", track.id)
            self._pending_load = track.id

        if not track.has_duration:
            self.runner.run(
                partial(self.metadata.resolve, track.id),
                partial(self._on_track_resolved, generation, track.id),
                partial(self._on_track_resolve_failed, generation, track.id),
            )

        if self._adapter_failure is not None:
            # the failure stays visible until the restarted player reports ready
            self._last_error = self._adapter_failure
            self._set_state(PlayerState.ERROR, notify=False)
            self._emit_state()
            logger.info("Restarting the audio player for %s", track.id)
            self.adapter.start()
            return

        self._emit_state()

    def toggle_play(self) -> None:
        if self._state == PlayerState.IDLE or self._current is None:
            return
        if not self._adapter_ready:
            logger.debug("toggle_play dropped: adapter not ready")
            return

        if self.snapshot().is_playing:
            self.adapter.pause()
        else:
            self.adapter.play()

    def seek_to(self, seconds: float) -> None:
        if not self._track_loaded():
            return
        target = max(0, int(seconds))
        if self._duration > 0:
            target = min(target, self._duration)
        self.adapter.seek(target)
        self._position = target
        self.positionChanged.emit(target)

    def set_volume(self, volume: float) -> None:
        self._volume = self._clamp_volume(volume)
        self._save(VOLUME_KEY, self._volume)
        # applied on ready() otherwise
        if self._adapter_ready:
            self.adapter.set_volume(self._volume)
        self._emit_state()

    def next_track(self) -> None:
        if self._continuation_in_flight:
            logger.debug("next_track ignored: continuation lookup already running")
            return
        if self._queue:
            self.play_track(self._queue.pop(0))
        elif self._settings.shuffle_enabled and self._current is not None:
            self._start_continuation()

    def prev_track(self) -> None:
        # No history cursor: "previous" restarts the current track.
        if not self._track_loaded():
            return
        self.adapter.seek(0)
        self._position = 0
        self.positionChanged.emit(0)

    def add_to_queue(self, track: Track) -> None:
        self._queue.append(track)
        self._prefetch_next()
        self._emit_state()

    def clear_queue(self) -> None:
        self._queue.clear()
        self._prefetch_next()
        self._emit_state()

    def play_collection(self, tracks: Sequence[Track], start_index: int = 0) -> None:
        if not tracks:
            return
        if not 0 <= start_index < len(tracks):
            raise IndexError(f"start_index {start_index} out of range for {len(tracks)} tracks")

        rotated = list(tracks[start_index:]) + list(tracks[:start_index])
        self._queue = rotated[1:]
        self.play_track(rotated[0])

    def toggle_shuffle_mode(self) -> bool:
        self._settings = Settings(
            shuffle_enabled=not self._settings.shuffle_enabled,
            prevent_repeat_enabled=self._settings.prevent_repeat_enabled,
        )
        self._save(SETTINGS_KEY, self._settings.to_dict())
        self._emit_state()
        return self._settings.shuffle_enabled

    def toggle_prevent_repeat(self) -> bool:
        self._settings = Settings(
            shuffle_enabled=self._settings.shuffle_enabled,
            prevent_repeat_enabled=not self._settings.prevent_repeat_enabled,
        )
        self._save(SETTINGS_KEY, self._settings.to_dict())
        self._emit_state()
        return self._settings.prevent_repeat_enabled

    def toggle_like(self, track: Track) -> bool:
        liked = self._liked.toggle(track)
        self._save(LIKED_KEY, self._liked.to_json())
        self.likedChanged.emit(self._liked.tracks)
        return liked

    def record_search(self, track: Track) -> None:
        if not track.id or not track.title:
            return
        self._searches.add(track)
        self._save(SEARCH_HISTORY_KEY, self._searches.to_json())
        self.searchHistoryChanged.emit(self._searches.tracks)

    def clear_search_history(self) -> None:
        self._searches.clear()
        self._save(SEARCH_HISTORY_KEY, [])
        self.searchHistoryChanged.emit([])

    def shutdown(self) -> None:
        """Stop polling and invalidate every outstanding lookup."""
        self._poll_timer.stop()
        self._generation += 1
        self._continuation_in_flight = False

    # ----------------------------
    # Adapter events
    # ----------------------------

    def _on_adapter_ready(self) -> None:
        self._adapter_ready = True
        recovered = self._adapter_failure is not None
        self._adapter_failure = None
        self.adapter.set_volume(self._volume)

        track_id, self._pending_load = self._pending_load, None
        if self._current is not None and self._current.id == track_id:
            self.adapter.load(track_id)
            self._prefetch_next()
            if self._state == PlayerState.ERROR:
                self._last_error = None
                self._set_state(PlayerState.LOADING)
        elif recovered and self._state == PlayerState.ERROR:
            self._go_idle(None)

    def _on_adapter_state(self, adapter_state: AdapterState) -> None:
        if self._current is None:
            return

        if adapter_state == AdapterState.CUED:
            if self._state in (PlayerState.LOADING, PlayerState.BUFFERING):
                self._set_state(PlayerState.READY)
            self._prefetch_next()

        elif adapter_state == AdapterState.PLAYING:
            self._set_state(PlayerState.PLAYING)
            self._poll_timer.start()

        elif adapter_state == AdapterState.PAUSED:
            if self._state != PlayerState.LOADING:
                self._poll_timer.stop()
                self._set_state(PlayerState.PAUSED)

        elif adapter_state == AdapterState.BUFFERING:
            if self._state in (PlayerState.PLAYING, PlayerState.READY, PlayerState.LOADING):
                self._poll_timer.stop()
                self._set_state(PlayerState.BUFFERING)

        elif adapter_state == AdapterState.ENDED:
            if self._state not in _ACTIVE_STATES:
                # LOADING: end of the track we just replaced
                logger.debug("Ignoring ENDED in state %s", self._state.value)
                return
            self._poll_timer.stop()
            self._set_state(PlayerState.ENDED)
            self._advance()

    def _on_adapter_error(self, code: int) -> None:
        error = PlaybackError(code)
        logger.warning("Player error %s (%s) for %s", code, error.category.value,
                       self._current.id if self._current else None)
        was_idle = self._state == PlayerState.IDLE
        self._poll_timer.stop()
        self._last_error = str(error)
        self._set_state(PlayerState.ERROR)
        self.errorRaised.emit(self._last_error)

        if self._current is not None and not was_idle:
            self._advance(keep_error=True)
        else:
            self._go_idle(self._last_error)

    def _on_adapter_failed(self, reason: str) -> None:
        error = AdapterInitFailure(reason)
        logger.error("%s", error)
        self._adapter_ready = False
        self._adapter_failure = str(error)
        self._prefetched_id = None
        self._poll_timer.stop()
        # lookups stay valid; their tracks wait as pending loads until ready()
        if self._current is not None:
            self._pending_load = self._current.id
        self._last_error = self._adapter_failure
        self._set_state(PlayerState.ERROR)
        self.errorRaised.emit(self._last_error)

    # ----------------------------
    # Forward progress
    # ----------------------------

    def _advance(self, keep_error: bool = False) -> None:
        """Queue first, then autoplay continuation, else go idle."""
        if self._queue:
            self.play_track(self._queue.pop(0))
            return

        if self._settings.shuffle_enabled:
            self._start_continuation()
            return

        self._go_idle(None if not keep_error else self._last_error)

    def _go_idle(self, message: Optional[str]) -> None:
        self._poll_timer.stop()
        self._position = 0
        self._last_error = message
        self._set_state(PlayerState.IDLE)
        self.positionChanged.emit(0)

    def _start_continuation(self) -> None:
        if self._continuation_in_flight:
            logger.debug("Continuation already running; trigger ignored")
            return
        seed = self._current
        if seed is None:
            self._go_idle(None)
            return

        self._continuation_in_flight = True
        generation = self._generation
        history = self._history.items
        prevent_repeat = self._settings.prevent_repeat_enabled

        logger.info("Looking for tracks similar to %s (prevent_repeat=%s)", seed.id, prevent_repeat)
        self.runner.run(
            partial(self.finder.find, seed, history, prevent_repeat, self.continuation_limit),
            partial(self._on_continuation_found, generation, prevent_repeat),
            partial(self._on_continuation_failed, generation),
        )

    def _on_continuation_found(self, generation: int, prevent_repeat: bool, tracks: list[Track]) -> None:
        if generation != self._generation:
            logger.debug("Discarding continuation result from generation %s", generation)
            return
        self._continuation_in_flight = False

        if not tracks:
            message = str(ContinuationExhausted(prevent_repeat))
            self._go_idle(message)
            self.errorRaised.emit(message)
            return

        first, *rest = tracks
        self._queue = list(rest)
        self.play_track(first)

    def _on_continuation_failed(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            logger.debug("Discarding continuation failure from generation %s: %s", generation, error)
            return
        self._continuation_in_flight = False
        logger.warning("Continuation lookup failed: %s", error)

        message = f"Couldn't find more songs: {error}"
        self._go_idle(message)
        self.errorRaised.emit(message)

    # ----------------------------
    # Track resolution
    # ----------------------------

    def _on_track_resolved(self, generation: int, track_id: str, resolved: Track) -> None:
        if generation != self._generation or self._current is None or self._current.id != track_id:
            logger.debug("Discarding stale resolution for %s", track_id)
            return

        self._current = self._current.with_details(resolved)
        self._duration = self._current.duration_seconds
        self._emit_state()

    def _on_track_resolve_failed(self, generation: int, track_id: str, error: Exception) -> None:
        if generation != self._generation:
            return
        # keep playing with a zero-duration placeholder
        logger.warning("Could not resolve details for %s: %s", track_id, error)

    # ----------------------------
    # Helpers
    # ----------------------------

    def _prefetch_next(self) -> None:
        """Let the player buffer the head of the queue while the current track plays."""
        if not self._adapter_ready or self._pending_load is not None or self._current is None:
            return
        if self._state in (PlayerState.IDLE, PlayerState.ERROR, PlayerState.ENDED):
            return
        next_id = self._queue[0].id if self._queue else None
        if next_id == self._prefetched_id:
            return
        self._prefetched_id = next_id
        self.adapter.prefetch(next_id)

    def _track_loaded(self) -> bool:
        return (
            self._current is not None
            and self._adapter_ready
            and self._pending_load is None
            and self._state != PlayerState.IDLE
        )

    def _poll_position(self) -> None:
        if self._state != PlayerState.PLAYING:
            self._poll_timer.stop()
            return
        try:
            position = int(self.adapter.position_seconds())
        except Exception as e:
            logger.error("Error getting current time: %s", e)
            return
        if position != self._position:
            self._position = position
            self.positionChanged.emit(position)

    def _set_state(self, new_state: PlayerState, notify: bool = True) -> None:
        changed = self._state != new_state
        self._state = new_state
        if changed and notify:
            self._emit_state()

    def _emit_state(self) -> None:
        self.stateChanged.emit(self.snapshot())

    @staticmethod
    def _clamp_volume(volume: Any) -> int:
        try:
            v = int(round(float(volume)))
        except (TypeError, ValueError):
            return DEFAULT_VOLUME
        return min(100, max(0, v))

    def _load(self, key: str, default: Any) -> Any:
        try:
            return self.store.get(key, default)
        except Exception:
            logger.exception("Failed to load %s; using defaults", key)
            return default

    def _save(self, key: str, value: Any) -> None:
        try:
            self.store.set(key, value)
        except Exception:
            # in-memory state stays authoritative for the rest of the session
            logger.exception("Failed to persist %s", key)
