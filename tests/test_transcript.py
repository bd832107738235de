"""Unit tests for Turn and SessionTranscript."""

from datetime import datetime, timezone

import pytest

from pipeline.transcript import (
    Clean,
    Failed,
    Flagged,
    Pending,
    SessionTranscript,
    TurnAlreadyResolved,
)


class TestTurn:
    def test_new_turn_is_pending(self):
        transcript = SessionTranscript("s1")
        turn = transcript.append("hello")
        assert isinstance(turn.classification, Pending)
        assert not turn.is_resolved

    def test_resolve_is_allowed_once(self):
        turn = SessionTranscript("s1").append("hello")
        turn.resolve(Clean())
        assert turn.is_resolved

        with pytest.raises(TurnAlreadyResolved):
            turn.resolve(Flagged("Straw Man", "..."))
        assert isinstance(turn.classification, Clean)

    def test_failed_is_terminal(self):
        turn = SessionTranscript("s1").append("hello")
        turn.resolve(Failed("timeout"))
        with pytest.raises(TurnAlreadyResolved):
            turn.resolve(Clean())


class TestSessionTranscript:
    def test_sequences_start_at_one_and_are_gapless(self):
        transcript = SessionTranscript("s1")
        turns = [transcript.append(f"utterance {i}") for i in range(5)]
        assert [t.sequence for t in turns] == [1, 2, 3, 4, 5]
        assert len(transcript) == 5

    def test_explicit_timestamp_is_kept(self):
        ts = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        turn = SessionTranscript("s1").append("hello", timestamp=ts)
        assert turn.timestamp == ts

    def test_snapshot_is_a_copy(self):
        """Mutating the live turn must not leak into an earlier snapshot."""
        transcript = SessionTranscript("s1")
        live = transcript.append("hello")
        snap = transcript.snapshot()

        live.resolve(Flagged("Red Herring", "Changes the subject."))

        assert isinstance(snap[0].classification, Pending)
        assert snap[0] is not live
        assert isinstance(transcript.snapshot()[0].classification, Flagged)

    def test_stats_count_only_flagged(self):
        transcript = SessionTranscript("s1")
        transcript.append("a").resolve(Flagged("Ad Hominem", "Attacks the person."))
        transcript.append("b").resolve(Clean())
        transcript.append("c").resolve(Failed("timeout"))
        transcript.append("d")

        stats = transcript.stats()
        assert stats.total_turns == 4
        assert stats.fallacy_count == 1
