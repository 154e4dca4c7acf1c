# core/config.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from PySide6.QtCore import QStandardPaths

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppConfig:
    app_data_dir: str
    youtube_api_key: Optional[str] = None
    mpv_path: Optional[str] = None

    history_limit: int = 50
    search_history_limit: int = 10
    continuation_limit: int = 5
    top_artist_count: int = 3

    poll_interval_ms: int = 1000
    metadata_cache_ttl_s: float = 300.0
    request_timeout_s: float = 5.0


def get_app_data_dir() -> str:
    base = os.getenv("MEREGAANE_APP_DATA_DIR") or QStandardPaths.writableLocation(
        QStandardPaths.AppDataLocation
    )
    os.makedirs(base, exist_ok=True)
    return base


def load_config(app_data_dir: Optional[str] = None) -> AppConfig:
    api_key = os.getenv("MEREGAANE_YOUTUBE_API_KEY") or os.getenv("YOUTUBE_API_KEY")
    if not api_key:
        logger.warning("No YouTube API key configured; searches and lookups will fail.")

    return AppConfig(
        app_data_dir=app_data_dir or get_app_data_dir(),
        youtube_api_key=api_key or None,
        mpv_path=os.getenv("MEREGAANE_MPV_PATH") or None,
    )
