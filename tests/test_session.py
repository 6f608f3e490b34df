"""Tests for SyncSession wiring."""

from unittest.mock import MagicMock, Mock

import pytest

from anglesync.audio.estimator import AudioAnalysisResult
from anglesync.errors import USER_SYNC_FAILURE_MESSAGE, AudioSyncError
from anglesync.notifications import NotificationSink
from anglesync.playback.clock import TickSource
from anglesync.playback.session import SyncSession
from anglesync.sync.state import SyncState, SyncStateManager


@pytest.fixture
def manager(memory_store):
    return SyncStateManager(memory_store, "package-1")


@pytest.fixture
def sink():
    return MagicMock(spec=NotificationSink)


@pytest.fixture
def session(players, manager, scheduler, sink):
    with SyncSession(players, manager, scheduler, sink=sink) as session:
        yield session


class TestSessionLifecycle:
    """Tests for start and close."""

    def test_subscribes_to_state_changes(self, players, manager, scheduler):
        session = SyncSession(players, manager, scheduler).start()
        assert len(manager.changes) == 1
        session.close()
        assert len(manager.changes) == 0
        assert session.clock is None

    def test_close_stops_ticks(self, players, manager, scheduler):
        session = SyncSession(players, manager, scheduler).start()
        received = []
        session.snapshots.subscribe(received.append)
        session.play()
        session.close()
        scheduler.advance(2.0)
        assert received == []

    def test_transport_requires_start(self, players, manager, scheduler):
        session = SyncSession(players, manager, scheduler)
        with pytest.raises(RuntimeError):
            session.play()

    def test_requires_players(self, manager, scheduler):
        with pytest.raises(ValueError):
            SyncSession([], manager, scheduler)

    def test_uses_current_state(self, players, scheduler):
        manager = SyncStateManager(initial=SyncState(3.0, True))
        with SyncSession(players, manager, scheduler) as session:
            players[0].time = 4.0
            assert session.clock.tick(TickSource.POLL).targets == (4.0, 7.0)


class TestSessionTransport:
    """Tests for play, pause and seek through the session."""

    def test_play_and_pause(self, session, players):
        session.play()
        assert session.playing
        assert not players[0].paused
        session.pause()
        assert not session.playing
        assert players[0].paused

    def test_seek_is_debounced(self, session, players, scheduler):
        session.seek(12.0)
        assert players[0].seeks == []
        scheduler.advance(0.05)
        assert players[0].seeks == [12.0]
        assert session.global_time == 12.0

    def test_skip(self, session, players):
        players[0].time = 10.0
        assert session.skip(-30.0) == 0.0

    def test_playback_rate(self, session, players):
        session.set_playback_rate(2.0)
        assert players[1].rate == 2.0


class TestStateChanges:
    """Tests for re-alignment when the sync state is replaced."""

    def test_manual_offset_realigns_paused_players(self, session, players, memory_store):
        players[0].time = 20.0
        state = session.apply_manual_offset(1.5)

        assert state.offset_seconds == 1.5
        assert players[1].seeks[-1] == pytest.approx(21.5)
        assert memory_store.states["package-1"] == state
        assert session.clock.state == state
        assert session.seeker.state == state

    def test_playback_resumes_after_delay(self, session, players, scheduler):
        session.play()
        players[0].time = 20.0
        session.apply_manual_offset(2.0)

        assert players[0].paused and players[1].paused
        scheduler.advance(0.29)
        assert players[0].paused

        scheduler.advance(0.02)
        assert not players[0].paused
        assert session.playing

    def test_paused_session_stays_paused(self, session, players, scheduler):
        session.apply_manual_offset(2.0)
        scheduler.advance(1.0)
        assert players[0].paused
        assert not session.playing

    def test_pause_cancels_pending_resume(self, session, players, scheduler):
        session.play()
        session.apply_manual_offset(2.0)
        session.pause()
        scheduler.advance(1.0)
        assert players[0].paused

    def test_snapshots_survive_rebuild(self, session, players, scheduler):
        received = []
        session.snapshots.subscribe(received.append)
        session.apply_manual_offset(2.0)
        received.clear()

        players[0].time = 5.0
        scheduler.advance(0.25)

        assert received
        assert received[-1].targets == (5.0, 7.0)

    def test_invalid_manual_offset(self, session, sink, manager):
        assert session.apply_manual_offset(float("nan")) is None
        sink.warning.assert_called_once()
        assert manager.state == SyncState()

    def test_sync_from_players(self, session, players, manager):
        players[0].time = 10.0
        players[1].time = 12.5

        state = session.sync_from_players()

        assert state.offset_seconds == pytest.approx(2.5)
        assert state.is_analyzed
        assert state.confidence is None
        assert manager.state == state

    def test_sync_from_players_requires_ready_players(self, session, players, sink):
        players[1].dispose()
        assert session.sync_from_players() is None
        sink.warning.assert_called_once()

    def test_reset_sync(self, session, manager):
        session.apply_manual_offset(4.0)
        state = session.reset_sync()
        assert state == SyncState(0.0, False, 0.0)
        assert session.clock.state == state


class TestResyncAudio:
    """Tests for running analysis from a session."""

    def test_applies_analysis_result(self, session, sink, manager):
        analyzer = Mock()
        analyzer.analyze.return_value = AudioAnalysisResult(2.37, 0.93, 0.86, 8000)

        state = session.resync_audio(analyzer, "a.mp4", "b.mp4")

        analyzer.analyze.assert_called_once_with("a.mp4", "b.mp4", progress=sink.progress)
        assert state == SyncState(2.37, True, 0.93)
        assert manager.state == state
        sink.info.assert_called_once()

    def test_failure_keeps_state(self, session, sink, manager):
        manager.from_manual_offset(1.0)
        before = manager.state
        analyzer = Mock()
        analyzer.analyze.side_effect = AudioSyncError("decode failed")

        assert session.resync_audio(analyzer, "a.mp4", "b.mp4") is None

        sink.warning.assert_called_once_with(USER_SYNC_FAILURE_MESSAGE)
        assert manager.state == before

    def test_requires_two_sources(self, session, sink):
        analyzer = Mock()
        assert session.resync_audio(analyzer, "a.mp4", None) is None
        analyzer.analyze.assert_not_called()
        sink.warning.assert_called_once()
