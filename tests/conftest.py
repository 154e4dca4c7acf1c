from __future__ import annotations

import pytest
from PySide6.QtCore import QCoreApplication

from core.errors import SearchFailure, TrackNotFound
from core.models import CandidateResult, Track
from db.store import MemoryStore
from metadata.service import MetadataService
from player.adapter import MediaPlayerAdapter


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


class FakeAdapter(MediaPlayerAdapter):
    """Records commands; tests emit the adapter signals by hand."""

    def __init__(self):
        super().__init__()
        self.calls: list[tuple] = []
        self.position = 0.0

    def start(self):
        self.calls.append(("start",))

    def load(self, track_id):
        self.calls.append(("load", track_id))

    def play(self):
        self.calls.append(("play",))

    def pause(self):
        self.calls.append(("pause",))

    def seek(self, seconds):
        self.calls.append(("seek", seconds))

    def set_volume(self, volume):
        self.calls.append(("set_volume", volume))

    def position_seconds(self):
        return self.position

    def prefetch(self, track_id):
        self.calls.append(("prefetch", track_id))

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]


class FakeMetadata(MetadataService):
    def __init__(self, tracks: dict[str, Track] | None = None, results: dict[str, list[CandidateResult]] | None = None):
        self.tracks = tracks or {}
        # substring of query -> results
        self.results = results or {}
        self.queries: list[tuple[str, int]] = []
        self.fail_queries: set[str] = set()

    def resolve(self, track_id):
        if track_id not in self.tracks:
            raise TrackNotFound(track_id)
        return self.tracks[track_id]

    def search(self, query, max_results=10):
        self.queries.append((query, max_results))
        for needle in self.fail_queries:
            if needle in query:
                raise SearchFailure(query, "boom")
        for needle, results in self.results.items():
            if needle in query:
                return list(results)[:max_results]
        return []


class ManualTaskRunner:
    """Holds background jobs until the test completes them, in any order."""

    def __init__(self):
        self.pending: list[tuple] = []

    def run(self, fn, on_done, on_error):
        self.pending.append((fn, on_done, on_error))

    def complete(self, index: int = 0):
        fn, on_done, on_error = self.pending.pop(index)
        try:
            result = fn()
        except Exception as e:
            on_error(e)
        else:
            on_done(result)

    def complete_all(self):
        while self.pending:
            self.complete(0)


def make_track(track_id: str, title: str | None = None, artist: str = "Artist", duration: int = 200) -> Track:
    return Track(id=track_id, title=title or f"Song {track_id}", artist=artist, duration_seconds=duration)


def candidate(track_id: str, title: str | None = None, author: str = "Artist", kind: str = "track") -> CandidateResult:
    return CandidateResult(
        id=track_id,
        kind=kind,
        title=title or f"Song {track_id}",
        author=author,
        thumbnails={"high": f"https://img/{track_id}.jpg"},
    )


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def metadata():
    return FakeMetadata()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def runner():
    return ManualTaskRunner()
