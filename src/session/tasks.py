# session/tasks.py
from __future__ import annotations

import logging
from typing import Any, Callable

from PySide6.QtCore import QObject, QThread, Signal, Slot

logger = logging.getLogger(__name__)

DoneCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


class BackgroundTask(QThread):
    # task, result, error (error is None on success)
    completed = Signal(object, object, object)

    def __init__(self, fn: Callable[[], Any], parent=None):
        super().__init__(parent)
        self._fn = fn

    def run(self):
        try:
            result = self._fn()
        except Exception as e:
            self.completed.emit(self, None, e)
            return
        self.completed.emit(self, result, None)


class QtTaskRunner(QObject):
    """
    Runs blocking calls off the Qt thread.

    Each job gets its own QThread; completion is delivered back through a
    queued signal, so on_done / on_error always run on the thread that owns
    the runner.
    """

    def __init__(self, parent=None):
        super().__init__(parent)
        self._callbacks: dict[BackgroundTask, tuple[DoneCallback, ErrorCallback]] = {}

    def run(self, fn: Callable[[], Any], on_done: DoneCallback, on_error: ErrorCallback) -> None:
        task = BackgroundTask(fn, self)
        self._callbacks[task] = (on_done, on_error)
        task.completed.connect(self._on_completed)
        task.finished.connect(task.deleteLater)
        task.start()

    def pending_count(self) -> int:
        return len(self._callbacks)

    @Slot(object, object, object)
    def _on_completed(self, task: BackgroundTask, result: Any, error: Exception | None) -> None:
        callbacks = self._callbacks.pop(task, None)
        if callbacks is None:
            return
        on_done, on_error = callbacks
        if error is None:
            on_done(result)
        else:
            on_error(error)

    def shutdown(self, timeout_ms: int = 3000) -> None:
        """Drop pending callbacks and wait for running threads."""
        tasks = list(self._callbacks)
        self._callbacks.clear()
        for task in tasks:
            if not task.wait(timeout_ms):
                logger.warning("Background task still running at shutdown")
