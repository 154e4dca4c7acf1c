# src/player/player.py
from __future__ import annotations

import logging
from typing import Any, Optional

from PySide6.QtCore import QTimer

from .adapter import AdapterState, MediaPlayerAdapter
from .mpv_ipc import MpvBackendConfig, MpvIpcBackend

logger = logging.getLogger(__name__)

WATCH_URL = "https://www.youtube.com/watch?v={track_id}"

# mpv end-file "file_error" strings -> embedded-player error codes
_FILE_ERROR_CODES = {
    "unrecognized file format": 5,
    "loading failed": 100,
}
UNKNOWN_ERROR_CODE = -1


class MpvMediaAdapter(MediaPlayerAdapter):
    """
    MediaPlayerAdapter backed by an mpv process.

    mpv resolves watch URLs through its ytdl hook, so a track id is all the
    adapter needs. A short QTimer pumps IPC messages on the Qt thread and
    translates mpv properties/events into adapter signals.
    """

    def __init__(self, config: MpvBackendConfig | None = None, backend=None, poll_interval_ms: int = 30):
        super().__init__()
        self._config = config or MpvBackendConfig()
        self._mpv: Optional[MpvIpcBackend] = backend

        self.state = AdapterState.UNSTARTED
        self._loaded = False
        self._paused = False
        self._buffering = False
        # track queued behind the current one in mpv's playlist
        self._prefetched: Optional[str] = None
        self._advanced = False

        self._pump_timer = QTimer(self)
        self._pump_timer.setInterval(poll_interval_ms)
        self._pump_timer.timeout.connect(self._pump)

    # ----------------------------
    # Lifecycle
    # ----------------------------

    def start(self) -> None:
        self.state = AdapterState.UNSTARTED
        self._loaded = False
        self._prefetched = None
        self._advanced = False
        try:
            if self._mpv is None:
                self._mpv = MpvIpcBackend(self._config)
            self._mpv.start()
            self._mpv.observe_property("pause", self._on_pause)
            self._mpv.observe_property("paused-for-cache", self._on_paused_for_cache)
            self._mpv.on_event(self._on_mpv_event)
        except Exception as e:
            logger.exception("mpv backend failed to start")
            self._mpv = None
            self.failed.emit(str(e))
            return

        self._pump_timer.start()
        self.ready.emit()

    def shutdown(self) -> None:
        self._pump_timer.stop()
        if self._mpv is not None:
            self._mpv.stop()
            self._mpv = None

    # ----------------------------
    # Commands
    # ----------------------------

    def load(self, track_id: str) -> None:
        if not self._mpv:
            return
        prefetched, advanced = self._prefetched, self._advanced
        self._prefetched = None
        self._advanced = False

        if track_id == prefetched:
            # already buffered; mpv may even have moved on to it by itself
            if not advanced:
                self._loaded = False
                self._mpv.playlist_next()
            self._mpv.play()
            return

        self._loaded = False
        self._buffering = False
        self._mpv.load(WATCH_URL.format(track_id=track_id), start_playing=True)

    def prefetch(self, track_id: str | None) -> None:
        if not self._mpv or track_id == self._prefetched:
            return
        self._prefetched = track_id
        self._advanced = False
        if track_id is None:
            self._mpv.playlist_clear()
        else:
            self._mpv.append(WATCH_URL.format(track_id=track_id))

    def play(self) -> None:
        if self._mpv:
            self._mpv.play()

    def pause(self) -> None:
        if self._mpv:
            self._mpv.pause()

    def seek(self, seconds: float) -> None:
        if self._mpv:
            self._mpv.seek_seconds(seconds, exact=True)

    def set_volume(self, volume: int) -> None:
        if self._mpv:
            self._mpv.set_volume(volume)

    def position_seconds(self) -> float:
        if self._mpv:
            return self._mpv.position_s()
        return 0.0

    # ----------------------------
    # mpv -> adapter signals
    # ----------------------------

    def _set_state(self, new_state: AdapterState) -> None:
        if self.state != new_state:
            self.state = new_state
            self.stateChanged.emit(new_state)

    def _playback_state(self) -> AdapterState:
        if self._buffering:
            return AdapterState.BUFFERING
        return AdapterState.PAUSED if self._paused else AdapterState.PLAYING

    def _on_pause(self, value: Any) -> None:
        self._paused = bool(value)
        if self._loaded:
            self._set_state(self._playback_state())

    def _on_paused_for_cache(self, value: Any) -> None:
        self._buffering = bool(value)
        if self._loaded:
            self._set_state(self._playback_state())

    def _on_mpv_event(self, msg: dict[str, Any]) -> None:
        event = msg.get("event")

        if event == "start-file":
            self._loaded = False
            self._set_state(AdapterState.UNSTARTED)

        elif event == "file-loaded":
            self._loaded = True
            self._set_state(AdapterState.CUED)
            self._set_state(self._playback_state())

        elif event == "end-file":
            self._loaded = False
            reason = msg.get("reason")
            if reason in ("eof", "error") and self._prefetched is not None:
                # mpv continues with the prefetched entry on its own
                self._advanced = True
            if reason == "eof":
                self._set_state(AdapterState.ENDED)
            elif reason == "error":
                file_error = str(msg.get("file_error") or "").lower()
                code = _FILE_ERROR_CODES.get(file_error, UNKNOWN_ERROR_CODE)
                logger.warning("mpv could not play file: %s (code %s)", file_error or "?", code)
                self.state = AdapterState.UNSTARTED
                self.errorOccurred.emit(code)
            # "stop" / "redirect" / "quit": replaced or shutting down, nothing to report

    def _pump(self) -> None:
        if not self._mpv:
            return
        try:
            self._mpv.process_messages(max_messages=500)
        except (OSError, ConnectionError) as e:
            logger.error("mpv IPC died: %s", e)
            self._pump_timer.stop()
            mpv, self._mpv = self._mpv, None
            mpv.stop()
            self.failed.emit(f"mpv stopped responding: {e}")
