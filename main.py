import logging
import os
import sys
from pathlib import Path

from PySide6.QtWidgets import QApplication

ROOT = Path(__file__).resolve().parent
SRC_DIR = ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from core.config import load_config
from core.state import AppState, Notify
from db.database import initialize_database
from db.store import SqliteStore
from metadata.youtube_client import YouTubeClient
from player.mpv_ipc import MpvBackendConfig
from player.player import MpvMediaAdapter
from session.orchestrator import PlaybackSession
from session.similar import SimilarTrackFinder
from session.tasks import QtTaskRunner
from ui.player_bar import PlayerBar

logger = logging.getLogger("meregaane")


def setup_logging() -> None:
    level = os.getenv("MEREGAANE_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def init_app_state() -> AppState:
    app_state = AppState()

    config = load_config()
    app_state.config = config
    app_state.db = initialize_database(config.app_data_dir)
    app_state.store = SqliteStore(app_state.db)

    if not config.youtube_api_key:
        app_state.queued_notifications.append(
            Notify(message="Set MEREGAANE_YOUTUBE_API_KEY to enable search and autoplay.", notify_type="warn")
        )

    app_state.metadata = YouTubeClient(
        config.youtube_api_key,
        timeout_s=config.request_timeout_s,
        cache_ttl_s=config.metadata_cache_ttl_s,
    )
    app_state.adapter = MpvMediaAdapter(MpvBackendConfig(mpv_path=config.mpv_path))
    app_state.runner = QtTaskRunner()

    app_state.session = PlaybackSession(
        app_state.adapter,
        app_state.metadata,
        app_state.store,
        runner=app_state.runner,
        finder=SimilarTrackFinder(app_state.metadata, top_artist_count=config.top_artist_count),
        history_limit=config.history_limit,
        search_history_limit=config.search_history_limit,
        continuation_limit=config.continuation_limit,
        poll_interval_ms=config.poll_interval_ms,
    )
    app_state.session.errorRaised.connect(app_state.notify_error)

    # adapter failures arrive as signals, so start after the session is listening
    app_state.adapter.start()

    return app_state


def play_query(app_state: AppState, query: str) -> None:
    """Search and start a collection from the results, off the Qt thread."""

    def on_results(tracks):
        if not tracks:
            app_state.notify(f"Nothing found for {query!r}", "warn")
            return
        app_state.session.record_search(tracks[0])
        app_state.session.play_collection(tracks)

    def on_error(e):
        app_state.notify(f"Search failed: {e}", "error")

    app_state.runner.run(lambda: app_state.metadata.search_tracks(query, 10), on_results, on_error)


def main() -> int:
    setup_logging()
    qt_app = QApplication(sys.argv)
    qt_app.setApplicationName("MereGaane")

    app_state = init_app_state()
    app_state.notification.connect(
        lambda n: logger.log(logging.ERROR if n.notify_type == "error" else logging.INFO, n.message)
    )
    for n in app_state.drain_notifications():
        app_state.notification.emit(n)

    bar = PlayerBar(app_state.session)
    bar.setWindowTitle("Mere Gaane")
    bar.resize(980, 90)
    bar.show()

    query = " ".join(sys.argv[1:]).strip()
    if query:
        play_query(app_state, query)

    def shutdown():
        app_state.session.shutdown()
        app_state.runner.shutdown()
        app_state.adapter.shutdown()
        app_state.db.close()

    qt_app.aboutToQuit.connect(shutdown)
    return qt_app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
