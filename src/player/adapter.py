# player/adapter.py
from __future__ import annotations

from enum import IntEnum

from PySide6.QtCore import QObject, Signal


class AdapterState(IntEnum):
    # Same numbering the embedded player reports.
    UNSTARTED = -1
    ENDED = 0
    PLAYING = 1
    PAUSED = 2
    BUFFERING = 3
    CUED = 5


class MediaPlayerAdapter(QObject):
    """
    Capability wrapper around one embedded player instance.

    Commands are fire-and-forget. The only trustworthy feedback is the
    signals below, which may arrive in any order relative to the commands
    that caused them:

      ready()                 player initialized, commands are accepted
      stateChanged(state)     AdapterState of the loaded media
      errorOccurred(code)     playback error code for the loaded media
      failed(reason)          the player itself is unusable

    load() replaces the current media and starts playback as soon as the
    media is buffered. prefetch() lets the player buffer the track that
    is expected to follow; None drops whatever was prefetched. Calls made
    before ready() has fired are undefined.
    """

    ready = Signal()
    stateChanged = Signal(object)   # AdapterState
    errorOccurred = Signal(int)
    failed = Signal(str)

    def start(self) -> None:
        raise NotImplementedError

    def load(self, track_id: str) -> None:
        raise NotImplementedError

    def play(self) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def seek(self, seconds: float) -> None:
        raise NotImplementedError

    def set_volume(self, volume: int) -> None:
        raise NotImplementedError

    def position_seconds(self) -> float:
        raise NotImplementedError

    def prefetch(self, track_id: str | None) -> None:
        pass

    def shutdown(self) -> None:
        pass
