"""
Playback session behaviour against a fake player, fake metadata service
and a manual task runner (background jobs finish only when a test says so).
"""

import pytest

from conftest import FakeMetadata, candidate, make_track
from core.models import PlayerState, Track
from db.store import HISTORY_KEY, LIKED_KEY, SETTINGS_KEY, VOLUME_KEY, MemoryStore
from player.adapter import AdapterState
from session.orchestrator import PlaybackSession


class BrokenStore(MemoryStore):
    def set(self, key, value):
        raise OSError("disk full")


def make_session(adapter, metadata, store, runner, ready=True, **kwargs):
    session = PlaybackSession(adapter, metadata, store, runner=runner, **kwargs)
    if ready:
        adapter.ready.emit()
    return session


def start_playing(session, adapter, track):
    session.play_track(track)
    adapter.stateChanged.emit(AdapterState.PLAYING)


class TestPlayTrack:
    def test_initial_state_is_idle(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        snap = session.snapshot()
        assert snap.player_state == PlayerState.IDLE
        assert snap.current_track is None
        assert snap.volume == 70

    def test_play_track_loads_and_waits_for_adapter(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        session.play_track(make_track("A"))

        assert ("load", "A") in adapter.calls
        assert session.state == PlayerState.LOADING

        adapter.stateChanged.emit(AdapterState.CUED)
        assert session.state == PlayerState.READY

        adapter.stateChanged.emit(AdapterState.PLAYING)
        assert session.state == PlayerState.PLAYING
        assert session.snapshot().is_playing

    def test_unknown_duration_is_resolved(self, adapter, store, runner):
        metadata = FakeMetadata(tracks={"A": Track("A", "Song A", "Artist", "https://img/a", 245, "pop")})
        session = make_session(adapter, metadata, store, runner)

        session.play_track(Track("A", "Song A", "Artist"))
        assert session.snapshot().duration_seconds == 0
        assert len(runner.pending) == 1

        runner.complete()
        snap = session.snapshot()
        assert snap.duration_seconds == 245
        assert snap.current_track.duration_seconds == 245
        assert snap.current_track.cover_url == "https://img/a"

    def test_superseded_resolution_is_discarded(self, adapter, store, runner):
        metadata = FakeMetadata(tracks={
            "A": Track("A", "Song A", "Artist", duration_seconds=111),
            "B": Track("B", "Song B", "Artist", duration_seconds=222),
        })
        session = make_session(adapter, metadata, store, runner)

        session.play_track(Track("A", "Song A", "Artist"))
        session.play_track(Track("B", "Song B", "Artist"))

        # B finishes first, then the overtaken A lookup lands
        runner.complete(1)
        runner.complete(0)

        snap = session.snapshot()
        assert snap.current_track.id == "B"
        assert snap.duration_seconds == 222

    def test_resolution_failure_keeps_placeholder(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        session.play_track(Track("missing", "Song", "Artist"))
        runner.complete()

        snap = session.snapshot()
        assert snap.current_track.id == "missing"
        assert snap.duration_seconds == 0
        assert snap.last_error is None
        assert snap.player_state == PlayerState.LOADING

    def test_load_is_deferred_until_ready(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner, ready=False)
        session.play_track(make_track("A"))
        assert "load" not in adapter.names()

        adapter.ready.emit()
        assert ("load", "A") in adapter.calls
        assert ("set_volume", 70) in adapter.calls

    def test_only_latest_pending_load_is_issued(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner, ready=False)
        session.play_track(make_track("A"))
        session.play_track(make_track("B"))
        adapter.ready.emit()

        loads = [c for c in adapter.calls if c[0] == "load"]
        assert loads == [("load", "B")]


class TestHistory:
    def test_replay_keeps_single_entry_at_front(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        for track_id in ("A", "B", "A"):
            session.play_track(make_track(track_id))

        ids = [h.track_id for h in session.history]
        assert ids == ["A", "B"]
        assert session.history[0].played_at_ms >= session.history[1].played_at_ms

    def test_history_capped_at_fifty(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        for i in range(60):
            session.play_track(make_track(f"T{i}"))

        assert len(session.history) == 50
        assert session.history[0].track_id == "T59"
        assert len(store.get(HISTORY_KEY)) == 50

    def test_history_restored_from_store(self, adapter, metadata, store, runner):
        first = make_session(adapter, metadata, store, runner)
        first.play_track(make_track("A", artist="X"))

        second = PlaybackSession(adapter, metadata, store, runner=runner)
        assert [h.track_id for h in second.history] == ["A"]


class TestTransport:
    def test_toggle_play_is_noop_when_idle(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        session.toggle_play()
        assert "pause" not in adapter.names()
        assert "play" not in adapter.names()

    def test_toggle_play_waits_for_adapter_confirmation(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))

        session.toggle_play()
        assert adapter.calls[-1] == ("pause",)
        assert session.state == PlayerState.PLAYING

        adapter.stateChanged.emit(AdapterState.PAUSED)
        assert session.state == PlayerState.PAUSED

        session.toggle_play()
        assert adapter.calls[-1] == ("play",)

    @pytest.mark.parametrize("requested, expected", [(150, 100), (-5, 0), (42.4, 42)])
    def test_set_volume_clamps(self, adapter, metadata, store, runner, requested, expected):
        session = make_session(adapter, metadata, store, runner)
        session.set_volume(requested)

        assert session.snapshot().volume == expected
        assert adapter.calls[-1] == ("set_volume", expected)
        assert store.get(VOLUME_KEY) == expected

    def test_seek_ignored_without_loaded_track(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        session.seek_to(30)
        assert "seek" not in adapter.names()

    def test_seek_clamps_to_duration(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A", duration=100))

        session.seek_to(500)
        assert adapter.calls[-1] == ("seek", 100)
        assert session.snapshot().position_seconds == 100

    def test_prev_track_restarts_current(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))
        adapter.position = 73
        session._poll_position()
        assert session.snapshot().position_seconds == 73

        session.prev_track()
        assert adapter.calls[-1] == ("seek", 0)
        assert session.snapshot().position_seconds == 0
        assert session.current_track.id == "A"


class TestPositionPolling:
    def test_polling_runs_only_while_playing(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        session.play_track(make_track("A"))
        assert not session._poll_timer.isActive()

        adapter.stateChanged.emit(AdapterState.PLAYING)
        assert session._poll_timer.isActive()

        adapter.stateChanged.emit(AdapterState.BUFFERING)
        assert session.state == PlayerState.BUFFERING
        assert not session._poll_timer.isActive()

        adapter.stateChanged.emit(AdapterState.PLAYING)
        assert session._poll_timer.isActive()

        session.play_track(make_track("B"))
        assert not session._poll_timer.isActive()

    def test_shutdown_stops_polling(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))
        session.shutdown()
        assert not session._poll_timer.isActive()

    def test_position_updates_emit_signal(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))
        seen = []
        session.positionChanged.connect(seen.append)

        adapter.position = 12.7
        session._poll_position()
        assert seen == [12]


class TestQueue:
    def test_play_collection_rotates_to_start_index(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        s1, s2, s3 = make_track("S1"), make_track("S2"), make_track("S3")

        session.play_collection([s1, s2, s3], start_index=1)

        assert session.current_track.id == "S2"
        assert [t.id for t in session.queue] == ["S3", "S1"]

    def test_play_collection_rejects_bad_index(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        with pytest.raises(IndexError):
            session.play_collection([make_track("S1")], start_index=3)

    def test_ended_plays_next_from_queue(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))
        session.add_to_queue(make_track("B"))
        session.add_to_queue(make_track("C"))

        adapter.stateChanged.emit(AdapterState.ENDED)

        assert session.current_track.id == "B"
        assert [t.id for t in session.queue] == ["C"]
        assert adapter.calls[-2:] == [("load", "B"), ("prefetch", "C")]

    def test_ended_with_empty_queue_goes_idle(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))
        adapter.position = 150
        session._poll_position()

        adapter.stateChanged.emit(AdapterState.ENDED)

        snap = session.snapshot()
        assert snap.player_state == PlayerState.IDLE
        assert snap.position_seconds == 0
        assert snap.last_error is None
        assert runner.pending == []

    def test_stale_ended_while_loading_is_ignored(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))
        session.add_to_queue(make_track("C"))
        session.play_track(make_track("B"))

        adapter.stateChanged.emit(AdapterState.ENDED)

        assert session.current_track.id == "B"
        assert [t.id for t in session.queue] == ["C"]

    def test_next_track_pops_queue(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))
        session.add_to_queue(make_track("B"))

        session.next_track()
        assert session.current_track.id == "B"
        assert session.queue == []

    def test_next_track_without_queue_or_shuffle_is_noop(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))

        session.next_track()
        assert session.current_track.id == "A"
        assert session.state == PlayerState.PLAYING

    def test_clear_queue(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        session.add_to_queue(make_track("A"))
        session.clear_queue()
        assert session.snapshot().queue == ()


class TestErrors:
    def test_embedding_error_without_fallback_goes_idle(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))
        errors = []
        session.errorRaised.connect(errors.append)

        adapter.errorOccurred.emit(101)

        snap = session.snapshot()
        assert snap.player_state == PlayerState.IDLE
        assert "embedding disallowed" in snap.last_error
        assert metadata.queries == []
        assert runner.pending == []
        assert errors and "embedding disallowed" in errors[0]

    def test_error_skips_to_queued_track(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))
        session.add_to_queue(make_track("B"))

        adapter.errorOccurred.emit(100)

        snap = session.snapshot()
        assert snap.current_track.id == "B"
        assert snap.player_state == PlayerState.LOADING
        assert snap.last_error is None

    def test_adapter_failure_halts_playback(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner, ready=False)
        session.play_track(make_track("A"))

        adapter.failed.emit("mpv binary not found")

        snap = session.snapshot()
        assert snap.player_state == PlayerState.ERROR
        assert "mpv binary not found" in snap.last_error
        session.toggle_play()
        assert "play" not in adapter.names()

    def test_play_after_adapter_failure_keeps_error_and_restarts_player(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))
        adapter.failed.emit("ipc died")

        session.play_track(make_track("B"))

        snap = session.snapshot()
        assert snap.current_track.id == "B"
        assert snap.player_state == PlayerState.ERROR
        assert "ipc died" in snap.last_error
        assert adapter.calls[-1] == ("start",)
        assert ("load", "B") not in adapter.calls

        adapter.ready.emit()

        snap = session.snapshot()
        assert ("load", "B") in adapter.calls
        assert snap.player_state == PlayerState.LOADING
        assert snap.last_error is None

    def test_player_failing_again_keeps_error(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        adapter.failed.emit("ipc died")
        session.play_track(make_track("B"))
        adapter.failed.emit("mpv binary not found")

        snap = session.snapshot()
        assert snap.player_state == PlayerState.ERROR
        assert "mpv binary not found" in snap.last_error

    def test_duration_lookup_survives_adapter_failure(self, adapter, store, runner):
        metadata = FakeMetadata(tracks={"A": Track("A", "Song A", "Artist", duration_seconds=240)})
        session = make_session(adapter, metadata, store, runner)
        session.play_track(Track("A", "Song A", "Artist"))

        adapter.failed.emit("ipc died")
        adapter.ready.emit()
        runner.complete_all()

        snap = session.snapshot()
        assert snap.duration_seconds == 240
        assert snap.player_state == PlayerState.LOADING

    def test_error_while_idle_leaves_session_idle(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        errors = []
        session.errorRaised.connect(errors.append)

        adapter.errorOccurred.emit(5)

        snap = session.snapshot()
        assert snap.player_state == PlayerState.IDLE
        assert "format unsupported" in snap.last_error
        assert len(errors) == 1

        session.play_track(make_track("A"))
        assert session.snapshot().last_error is None

    def test_store_failures_do_not_escape_commands(self, adapter, metadata, runner):
        session = make_session(adapter, metadata, BrokenStore(), runner)

        session.play_track(make_track("A"))
        assert session.toggle_shuffle_mode() is True
        assert session.toggle_like(make_track("A")) is True
        assert session.settings.shuffle_enabled
        assert session.is_liked("A")

    def test_malformed_persisted_state_loads_defaults(self, adapter, metadata, runner):
        store = MemoryStore({
            SETTINGS_KEY: ["not", "a", "dict"],
            HISTORY_KEY: [{"title": "no id"}, {"track_id": "A", "title": "ok", "artist": "X", "played_at_ms": 1}],
            LIKED_KEY: "garbage",
            VOLUME_KEY: "loud",
        })
        session = make_session(adapter, metadata, store, runner)

        assert not session.settings.shuffle_enabled
        assert [h.track_id for h in session.history] == ["A"]
        assert session.liked_tracks == []
        assert session.snapshot().volume == 70


class TestContinuation:
    def _session(self, adapter, store, runner, results, prevent_repeat=False):
        metadata = FakeMetadata(results=results)
        session = make_session(adapter, metadata, store, runner)
        session.toggle_shuffle_mode()
        if prevent_repeat:
            session.toggle_prevent_repeat()
        return session, metadata

    def test_ended_with_shuffle_plays_continuation(self, adapter, store, runner):
        results = {"similar songs": [candidate("N1"), candidate("N2"), candidate("N3")]}
        session, _ = self._session(adapter, store, runner, results)
        start_playing(session, adapter, make_track("A"))

        adapter.stateChanged.emit(AdapterState.ENDED)
        assert session.continuation_in_flight
        assert session.state == PlayerState.ENDED

        runner.complete()

        assert session.current_track.id == "N1"
        assert [t.id for t in session.queue] == ["N2", "N3"]
        assert not session.continuation_in_flight

    def test_continuation_is_single_flight(self, adapter, store, runner):
        results = {"similar songs": [candidate("N1")]}
        session, _ = self._session(adapter, store, runner, results)
        start_playing(session, adapter, make_track("A"))

        adapter.stateChanged.emit(AdapterState.ENDED)
        session.next_track()
        adapter.stateChanged.emit(AdapterState.ENDED)

        assert len(runner.pending) == 1

    def test_empty_continuation_reports_exhaustion(self, adapter, store, runner):
        session, _ = self._session(adapter, store, runner, results={}, prevent_repeat=True)
        start_playing(session, adapter, make_track("A"))

        adapter.stateChanged.emit(AdapterState.ENDED)
        runner.complete()

        snap = session.snapshot()
        assert snap.player_state == PlayerState.IDLE
        assert "Prevent Repeat" in snap.last_error
        assert not session.continuation_in_flight

    def test_continuation_result_dropped_after_user_picks_track(self, adapter, store, runner):
        results = {"similar songs": [candidate("N1"), candidate("N2")]}
        session, _ = self._session(adapter, store, runner, results)
        start_playing(session, adapter, make_track("A"))

        adapter.stateChanged.emit(AdapterState.ENDED)
        session.play_track(make_track("U"))
        runner.complete()

        assert session.current_track.id == "U"
        assert session.queue == []
        assert not session.continuation_in_flight

    def test_continuation_failure_goes_idle_with_message(self, adapter, store, runner):
        session, metadata = self._session(adapter, store, runner, results={})
        # "Artist" appears in both the seed query and the top-artist query
        metadata.fail_queries.add("Artist")
        start_playing(session, adapter, make_track("A"))

        adapter.stateChanged.emit(AdapterState.ENDED)
        runner.complete()

        snap = session.snapshot()
        assert snap.player_state == PlayerState.IDLE
        assert snap.last_error.startswith("Couldn't find more songs")

    def test_next_track_with_shuffle_starts_continuation(self, adapter, store, runner):
        results = {"similar songs": [candidate("N1")]}
        session, _ = self._session(adapter, store, runner, results)
        start_playing(session, adapter, make_track("A"))

        session.next_track()
        runner.complete()
        assert session.current_track.id == "N1"


class TestSettingsAndLikes:
    def test_toggles_persist_both_flags_together(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)

        session.toggle_shuffle_mode()
        assert store.get(SETTINGS_KEY) == {"shuffle_enabled": True, "prevent_repeat_enabled": False}

        session.toggle_prevent_repeat()
        assert store.get(SETTINGS_KEY) == {"shuffle_enabled": True, "prevent_repeat_enabled": True}

        reloaded = PlaybackSession(adapter, metadata, store, runner=runner)
        assert reloaded.snapshot().shuffle_enabled
        assert reloaded.snapshot().prevent_repeat_enabled

    def test_toggle_like_is_an_involution(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        track = make_track("A")
        session.toggle_like(make_track("Z"))
        before = [t.id for t in session.liked_tracks]

        assert session.toggle_like(track) is True
        assert session.is_liked("A")
        assert session.toggle_like(track) is False

        assert [t.id for t in session.liked_tracks] == before
        assert [t["id"] for t in store.get(LIKED_KEY)] == before

    def test_likes_keep_insertion_order(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        for track_id in ("C", "A", "B"):
            session.toggle_like(make_track(track_id))

        reloaded = PlaybackSession(adapter, metadata, store, runner=runner)
        assert [t.id for t in reloaded.liked_tracks] == ["C", "A", "B"]

    def test_search_history_is_recent_first_and_capped(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        for i in range(12):
            session.record_search(make_track(f"Q{i}"))
        session.record_search(make_track("Q5"))

        ids = [t.id for t in session.search_history]
        assert len(ids) == 10
        assert ids[0] == "Q5"
        assert ids.count("Q5") == 1

        session.clear_search_history()
        assert session.search_history == []


class TestPrefetch:
    def prefetches(self, adapter):
        return [c[1] for c in adapter.calls if c[0] == "prefetch"]

    def test_queue_head_is_prefetched_after_load(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        session.play_collection([make_track("S1"), make_track("S2"), make_track("S3")])

        assert adapter.calls[-2:] == [("load", "S1"), ("prefetch", "S2")]

        adapter.stateChanged.emit(AdapterState.CUED)
        adapter.stateChanged.emit(AdapterState.PLAYING)
        assert self.prefetches(adapter) == ["S2"]

    def test_queue_changes_update_prefetch(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner)
        start_playing(session, adapter, make_track("A"))

        session.add_to_queue(make_track("B"))
        session.add_to_queue(make_track("C"))
        session.clear_queue()

        assert self.prefetches(adapter) == ["B", None]

    def test_cued_prefetches_continuation_queue(self, adapter, store, runner):
        metadata = FakeMetadata(results={"similar songs": [candidate("N1"), candidate("N2")]})
        session = make_session(adapter, metadata, store, runner)
        session.toggle_shuffle_mode()
        start_playing(session, adapter, make_track("A"))

        adapter.stateChanged.emit(AdapterState.ENDED)
        runner.complete()
        adapter.stateChanged.emit(AdapterState.CUED)

        assert session.current_track.id == "N1"
        assert self.prefetches(adapter) == ["N2"]

    def test_nothing_prefetched_before_ready(self, adapter, metadata, store, runner):
        session = make_session(adapter, metadata, store, runner, ready=False)
        session.play_collection([make_track("S1"), make_track("S2")])
        assert self.prefetches(adapter) == []

        adapter.ready.emit()
        assert adapter.calls[-2:] == [("load", "S1"), ("prefetch", "S2")]
