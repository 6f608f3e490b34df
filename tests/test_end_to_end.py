"""Analysis through synchronized playback on synthetic angles."""
from unittest.mock import Mock

import pytest

from anglesync.analyzer import AudioSyncAnalyzer
from anglesync.playback.clock import StreamPhase
from anglesync.playback.session import SyncSession
from anglesync.sync.state import SyncStateManager

from conftest import FakePlayer, make_angle_pair

FRAME = 1.0 / 60.0


def run_playback(players, scheduler, seconds):
    """Advance players and scheduler together in frame-sized steps."""
    for _ in range(int(round(seconds / FRAME))):
        for player in players:
            player.advance(FRAME)
        scheduler.advance(FRAME)


def make_analyzer(config, offset):
    waveform_a, waveform_b = make_angle_pair(offset, duration=60.0)
    extractor = Mock()
    extractor.extract.side_effect = lambda source: {"a.mp4": waveform_a, "b.mp4": waveform_b}[source]
    return AudioSyncAnalyzer(config, extractor=extractor)


@pytest.fixture
def long_players():
    return [FakePlayer(duration=60.0), FakePlayer(duration=60.0)]


@pytest.mark.slow
class TestEndToEnd:
    """Estimate an offset, then play both angles in sync."""

    def test_positive_offset(self, analysis_config, long_players, scheduler, memory_store):
        players = long_players
        manager = SyncStateManager(memory_store, "match")
        analyzer = make_analyzer(analysis_config, 2.37)

        with SyncSession(players, manager, scheduler) as session:
            state = session.resync_audio(analyzer, "a.mp4", "b.mp4")
            assert state.offset_seconds == pytest.approx(2.37, abs=0.02)
            assert state.confidence > 0.7
            assert memory_store.states["match"] == state

            received = []
            session.snapshots.subscribe(received.append)
            session.play()
            seeks_after_start = len(players[1].seeks)

            run_playback(players, scheduler, 10.0)

            assert received
            assert received[-1].global_time == pytest.approx(10.0, abs=0.05)
            for snapshot in received:
                assert snapshot.target(1) - snapshot.global_time == pytest.approx(state.offset_seconds)
                assert not any(snapshot.blocked)
            assert len(players[1].seeks) == seeks_after_start
            assert players[1].time - players[0].time == pytest.approx(state.offset_seconds)

    def test_negative_offset_prerolls_secondary(
        self, analysis_config, long_players, scheduler, memory_store
    ):
        players = long_players
        manager = SyncStateManager(memory_store, "match")
        analyzer = make_analyzer(analysis_config, -2.0)

        with SyncSession(players, manager, scheduler) as session:
            state = session.resync_audio(analyzer, "a.mp4", "b.mp4")
            assert state.offset_seconds == pytest.approx(-2.0, abs=0.02)

            session.play()
            run_playback(players, scheduler, 1.0)

            assert players[1].paused
            assert players[1].time == 0.0
            assert session.clock.last_snapshot.blocked == (False, True)

            run_playback(players, scheduler, 5.0)

            assert not players[1].paused
            assert session.clock.phases[1] is StreamPhase.ACTIVE
            assert players[1].time - players[0].time == pytest.approx(state.offset_seconds, abs=1e-6)
