# ui/player_bar.py
from __future__ import annotations

from PySide6.QtCore import Qt, QSize, QByteArray
from PySide6.QtGui import QIcon, QPixmap, QPainter
from PySide6.QtSvg import QSvgRenderer
from PySide6.QtWidgets import QWidget, QHBoxLayout, QVBoxLayout, QLabel, QToolButton, QSlider

from core.genre import known_genre
from core.models import PlaySessionState
from core.utils import format_time

def _svg_icon(path_d: str, size: int = 20, color: str = "#e5e7eb") -> QIcon:
    svg = f"""
    <svg xmlns="http://www.w3.org/2000/svg" width="{size}" height="{size}" viewBox="0 0 24 24">
      <path d="{path_d}" fill="{color}"/>
    </svg>
    """.strip()

    renderer = QSvgRenderer(QByteArray(svg.encode("utf-8")))
    pm = QPixmap(size, size)
    pm.fill(Qt.transparent)

    p = QPainter(pm)
    renderer.render(p)
    p.end()

    return QIcon(pm)


# Material icons
SVG_PREV = "M6 18V6h2v12H6zm3.5-6L18 6v12l-8.5-6z"
SVG_NEXT = "M16 6v12h2V6h-2zM6 18l8.5-6L6 6v12z"
SVG_PLAY = "M8 5v14l11-7L8 5z"
SVG_PAUSE = "M6 5h4v14H6V5zm8 0h4v14h-4V5z"
SVG_SHUFFLE = ("M10.59 9.17L5.41 4 4 5.41l5.17 5.17 1.42-1.41zM14.5 4l2.04 2.04L4 18.59 5.41 20 "
               "17.96 7.46 20 9.5V4h-5.5zm.33 9.41l-1.41 1.41 3.13 3.13L14.5 20H20v-5.5l-2.04 2.04-3.13-3.13z")
SVG_BLOCK = ("M12 2C6.48 2 2 6.48 2 12s4.48 10 10 10 10-4.48 10-10S17.52 2 12 2zM4 12c0-4.42 3.58-8 "
             "8-8 1.85 0 3.55.63 4.9 1.69L5.69 16.9C4.63 15.55 4 13.85 4 12zm8 8c-1.85 0-3.55-.63-4.9-1.69"
             "L18.31 7.1C19.37 8.45 20 10.15 20 12c0 4.42-3.58 8-8 8z")
SVG_HEART = ("M12 21.35l-1.45-1.32C5.4 15.36 2 12.28 2 8.5 2 5.42 4.42 3 7.5 3c1.74 0 3.41.81 4.5 2.09"
             "C13.09 3.81 14.76 3 16.5 3 19.58 3 22 5.42 22 8.5c0 3.78-3.4 6.86-8.55 11.54L12 21.35z")

IDLE_COLOR = "#e5e7eb"
ACTIVE_COLOR = "#1DB954"


class PlayerBar(QWidget):
    """Now-playing strip. Renders session snapshots and forwards clicks as commands."""

    def __init__(self, session, parent=None):
        super().__init__(parent)
        self.session = session

        self._dragging = False
        self._state: PlaySessionState | None = None

        root = QVBoxLayout(self)
        root.setContentsMargins(8, 6, 8, 6)
        root.setSpacing(4)

        row = QHBoxLayout()
        row.setSpacing(10)

        self.btn_like = self._tool_button("BtnLike", "Like")
        self.btn_shuffle = self._tool_button("BtnShuffle", "Shuffle")
        self.btn_prev = self._tool_button("BtnPrev", "Previous")
        self.btn_play = self._tool_button("BtnPlay", "Play")
        self.btn_next = self._tool_button("BtnNext", "Next")
        self.btn_repeat = self._tool_button("BtnPreventRepeat", "Prevent repeat")

        self.btn_prev.setIcon(_svg_icon(SVG_PREV, 20))
        self.btn_next.setIcon(_svg_icon(SVG_NEXT, 20))
        self.btn_play.setIcon(_svg_icon(SVG_PLAY, 22))
        self.btn_play.setIconSize(QSize(22, 22))

        # --- labels ---
        self.lbl_title = QLabel("Nothing playing")
        self.lbl_title.setMinimumWidth(220)
        self.lbl_title.setTextInteractionFlags(Qt.TextSelectableByMouse)
        self.lbl_title.setObjectName("NowPlaying")

        self.lbl_genre = QLabel("")
        self.lbl_time = QLabel("0:00")
        self.lbl_dur = QLabel("0:00")

        # --- sliders ---
        self.slider = QSlider(Qt.Orientation.Horizontal)
        self.slider.setRange(0, 0)
        self.slider.setSingleStep(1)
        self.slider.setPageStep(5)

        self.volume = QSlider(Qt.Orientation.Horizontal)
        self.volume.setRange(0, 100)
        self.volume.setMaximumWidth(110)
        self.volume.setToolTip("Volume")

        row.addWidget(self.btn_like)
        row.addWidget(self.lbl_title, 1)
        row.addWidget(self.lbl_genre)
        row.addWidget(self.btn_shuffle)
        row.addWidget(self.btn_prev)
        row.addWidget(self.btn_play)
        row.addWidget(self.btn_next)
        row.addWidget(self.btn_repeat)
        row.addWidget(self.lbl_time)
        row.addWidget(self.slider, 3)
        row.addWidget(self.lbl_dur)
        row.addWidget(self.volume)
        root.addLayout(row)

        self.lbl_error = QLabel("")
        self.lbl_error.setObjectName("SessionError")
        self.lbl_error.setVisible(False)
        root.addWidget(self.lbl_error)

        # --- commands ---
        self.btn_play.clicked.connect(session.toggle_play)
        self.btn_prev.clicked.connect(session.prev_track)
        self.btn_next.clicked.connect(session.next_track)
        self.btn_shuffle.clicked.connect(session.toggle_shuffle_mode)
        self.btn_repeat.clicked.connect(session.toggle_prevent_repeat)
        self.btn_like.clicked.connect(self._on_like_clicked)

        self.slider.sliderPressed.connect(self._on_slider_pressed)
        self.slider.sliderReleased.connect(self._on_slider_released)
        self.slider.sliderMoved.connect(self._on_slider_moved)
        self.volume.valueChanged.connect(session.set_volume)

        # --- session updates ---
        session.stateChanged.connect(self._on_state)
        session.positionChanged.connect(self._on_position)
        session.likedChanged.connect(lambda _tracks: self._refresh_like())

        self.setObjectName("PlayerBar")
        self._apply_styles()
        self._on_state(session.snapshot())

    def _tool_button(self, name: str, tooltip: str) -> QToolButton:
        btn = QToolButton()
        btn.setObjectName(name)
        btn.setIconSize(QSize(20, 20))
        btn.setToolTip(tooltip)
        return btn

    # --- commands ---
    def _on_like_clicked(self):
        if self._state and self._state.current_track:
            self.session.toggle_like(self._state.current_track)

    def _on_slider_pressed(self):
        self._dragging = True

    def _on_slider_moved(self, value: int):
        # show preview time while dragging
        self.lbl_time.setText(format_time(value))

    def _on_slider_released(self):
        self._dragging = False
        self.session.seek_to(int(self.slider.value()))

    # --- session updates ---
    def _on_state(self, state: PlaySessionState):
        self._state = state
        track = state.current_track

        if track:
            self.lbl_title.setText(f"{track.artist or 'Unknown Artist'} — {track.title or 'Unknown'}")
            genre = known_genre(track.genre)
            self.lbl_genre.setText(genre.title() if genre else "")
        else:
            self.lbl_title.setText("Nothing playing")
            self.lbl_genre.setText("")

        self.slider.setRange(0, max(0, state.duration_seconds))
        self.lbl_dur.setText(format_time(state.duration_seconds))
        self._on_position(state.position_seconds)

        if self.volume.value() != state.volume:
            self.volume.blockSignals(True)
            self.volume.setValue(state.volume)
            self.volume.blockSignals(False)

        playing = state.is_playing
        self.btn_play.setIcon(_svg_icon(SVG_PAUSE if playing else SVG_PLAY, 22))
        self.btn_play.setToolTip("Pause" if playing else "Play")

        self._set_toggle(self.btn_shuffle, SVG_SHUFFLE, state.shuffle_enabled, "Shuffle")
        self._set_toggle(self.btn_repeat, SVG_BLOCK, state.prevent_repeat_enabled, "Prevent repeat")
        self.btn_next.setEnabled(bool(state.queue) or state.shuffle_enabled)
        self._refresh_like()

        self.lbl_error.setText(state.last_error or "")
        self.lbl_error.setVisible(bool(state.last_error))

    def _set_toggle(self, btn: QToolButton, svg: str, on: bool, name: str):
        btn.setIcon(_svg_icon(svg, 20, ACTIVE_COLOR if on else IDLE_COLOR))
        btn.setToolTip(f"{name} is {'ON' if on else 'OFF'}")

    def _refresh_like(self):
        track = self._state.current_track if self._state else None
        liked = bool(track) and self.session.is_liked(track.id)
        self.btn_like.setEnabled(bool(track))
        self.btn_like.setIcon(_svg_icon(SVG_HEART, 18, ACTIVE_COLOR if liked else IDLE_COLOR))

    def _on_position(self, seconds: int):
        if self._dragging:
            return
        self.lbl_time.setText(format_time(seconds))
        self.slider.setValue(int(seconds))

    def _apply_styles(self):
        self.setStyleSheet("""
        QWidget#PlayerBar {
            background-color: #121212;
            border-top: 1px solid #282828;
        }

        QToolButton {
            border: 1px solid transparent;
            background: transparent;
            padding: 6px;
            border-radius: 10px;
        }
        QToolButton:hover {
            background: #1f1f1f;
            border-color: #282828;
        }

        QToolButton#BtnPlay {
            background: #ffffff22;
            border: 1px solid #333333;
            border-radius: 999px;
            padding: 8px;
        }
        QToolButton#BtnPlay:hover { border-color: #1DB954; }

        QSlider::groove:horizontal {
            height: 4px;
            background: #404040;
            border-radius: 2px;
        }
        QSlider::handle:horizontal {
            width: 12px;
            height: 12px;
            margin: -4px 0;
            border-radius: 6px;
            background: #ffffff;
        }
        QSlider::sub-page:horizontal {
            background: #1DB954;
            border-radius: 2px;
        }

        QLabel {
            color: #b3b3b3;
            font-size: 11px;
        }
        QLabel#NowPlaying {
            color: #ffffff;
            font-size: 12px;
        }
        QLabel#SessionError { color: #f87171; }
        """)
