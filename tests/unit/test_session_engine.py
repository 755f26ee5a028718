"""
Unit tests for SessionEngine.

Tests:
- Timed challenge flow: clock, scoring, expiry, auto-advance
- Untimed review flow: ratings, skipping, scheduling
- Rejected transitions leave state untouched
- Cancellation and clock races
"""

from datetime import timedelta

import pytest

from src.review.engine import SessionEngine
from src.review.errors import InvalidSessionError, InvalidTransition
from src.review.models import ItemStatus, SessionMode, SessionPhase
from src.review.scoring import ScoringPolicy


@pytest.fixture
def timed(sample_items, ticks, fake_now):
    """A started timed session over the three sample items."""
    engine = SessionEngine(sample_items, SessionMode.TIMED, tick_source=ticks, now=fake_now)
    engine.start()
    return engine


@pytest.fixture
def untimed(sample_items, fake_now):
    """A started untimed session over the three sample items."""
    engine = SessionEngine(sample_items, SessionMode.UNTIMED, now=fake_now)
    engine.start()
    return engine


def answer_correctly(engine):
    item = engine.current_item
    return engine.submit_answer(item.id, item.correct_option)


def answer_wrong(engine):
    item = engine.current_item
    wrong = next(option for option in item.options if option != item.correct_option)
    return engine.submit_answer(item.id, wrong)


def snapshot(engine):
    return (
        engine.phase,
        engine.cursor,
        engine.answers,
        engine.ratings,
        engine.score,
        engine.items,
        engine.deferred_item_ids,
    )


class TestConstruction:
    """Tests for building a session."""

    def test_starts_pending(self, sample_items, ticks):
        engine = SessionEngine(sample_items, tick_source=ticks)

        assert engine.phase is SessionPhase.PENDING
        assert engine.current_item is None
        assert engine.mode is SessionMode.TIMED

    def test_accepts_raw_mappings(self, ticks):
        engine = SessionEngine(
            [{"_id": "a", "question": "2 + 2?", "options": ["3", "4"], "answer": "4"}],
            "untimed",
        )
        assert engine.items[0].correct_option == "4"
        assert engine.mode is SessionMode.UNTIMED

    def test_rejects_empty_items(self):
        with pytest.raises(InvalidSessionError):
            SessionEngine([], SessionMode.UNTIMED)

    def test_rejects_duplicate_ids(self, sample_items):
        with pytest.raises(InvalidSessionError):
            SessionEngine([sample_items[0], sample_items[0]], SessionMode.UNTIMED)

    def test_rejects_bad_stage(self, sample_items):
        with pytest.raises(InvalidSessionError):
            SessionEngine(sample_items, SessionMode.UNTIMED, stage=0)

    def test_rejects_unknown_mode(self, sample_items):
        with pytest.raises(ValueError):
            SessionEngine(sample_items, "speedrun")

    def test_start_twice_is_rejected(self, timed):
        with pytest.raises(InvalidTransition):
            timed.start()

    def test_operations_before_start_are_rejected(self, sample_items, ticks):
        engine = SessionEngine(sample_items, tick_source=ticks)
        with pytest.raises(InvalidTransition):
            engine.submit_answer("item1", sample_items[0].correct_option)
        with pytest.raises(InvalidTransition):
            engine.advance()
        assert engine.phase is SessionPhase.PENDING


class TestTimedSession:
    """Tests for timed (challenge) mode."""

    def test_start_runs_clock(self, timed, ticks):
        assert timed.phase is SessionPhase.ACTIVE
        assert timed.cursor == 0
        assert timed.time_remaining == 30

        ticks.advance(4)
        assert timed.time_remaining == 26

    def test_all_correct_instant_answers(self, timed):
        totals = []
        for _ in range(3):
            answer_correctly(timed)
            totals.append(timed.score.total_score)
            timed.advance()

        assert totals == [200, 420, 650]
        assert timed.phase is SessionPhase.COMPLETED
        assert timed.score.max_combo == 3
        assert timed.report.total_score == 650

    def test_answer_records_time_remaining(self, timed, ticks):
        ticks.advance(12)
        answer = answer_correctly(timed)

        assert answer.time_remaining_at_answer == 18
        assert answer.time_taken == 12
        assert timed.score.time_bonus == 60

    def test_answer_cancels_clock(self, timed, ticks):
        answer_correctly(timed)
        ticks.advance(60)

        # Still on the first item: answered items never expire
        assert timed.cursor == 0
        assert timed.score.total_answered == 1
        assert timed.item_status is ItemStatus.RESOLVED

    def test_advance_restarts_clock(self, timed, ticks):
        ticks.advance(10)
        answer_correctly(timed)
        timed.advance()

        assert timed.time_remaining == 30
        ticks.advance(1)
        assert timed.time_remaining == 29

    def test_expiry_records_no_answer(self, ticks, fake_now, item_factory):
        engine = SessionEngine(item_factory(1), tick_source=ticks, now=fake_now)
        engine.start()

        ticks.advance(30)

        answer = engine.answers["q1"]
        assert answer.chosen_option is None
        assert answer.time_remaining_at_answer == 0
        assert answer.is_correct is False
        assert engine.score.current_combo == 0
        assert engine.score.total_answered == 1
        assert engine.phase is SessionPhase.COMPLETED
        assert engine.report.breakdown[0].chosen_option is None
        assert engine.report.unanswered_count == 1

    def test_expiry_auto_advances(self, timed, ticks):
        answer_correctly(timed)
        timed.advance()

        ticks.advance(30)

        assert timed.cursor == 2
        assert timed.score.current_combo == 0
        assert timed.score.max_combo == 1
        assert timed.time_remaining == 30

    def test_expired_item_cannot_be_answered(self, timed, ticks, sample_items):
        ticks.advance(30)
        with pytest.raises(InvalidTransition):
            timed.submit_answer("item1", sample_items[0].correct_option)

    def test_manual_expiry_after_answer_is_noop(self, timed):
        answer_correctly(timed)
        score = timed.score

        assert timed.on_clock_expire() is None
        assert timed.score == score
        assert timed.cursor == 0

    def test_racing_tick_after_answer_is_noop(self, timed, ticks):
        """A tick already queued when the answer lands must not score again."""
        ticks.advance(29)
        answer_correctly(timed)
        ticks.fire_pending()

        assert timed.score.total_answered == 1
        assert timed.score.correct_count == 1
        assert timed.cursor == 0

    def test_on_tick_observer(self, sample_items, ticks):
        seen = []
        engine = SessionEngine(
            sample_items, tick_source=ticks, on_tick=lambda item_id, left: seen.append((item_id, left))
        )
        engine.start()
        ticks.advance(3)

        assert seen == [("item1", 29), ("item1", 28), ("item1", 27)]

    def test_on_expire_and_on_complete_observers(self, ticks, item_factory):
        expired = []
        completed = []
        engine = SessionEngine(
            item_factory(2),
            tick_source=ticks,
            on_expire=expired.append,
            on_complete=completed.append,
        )
        engine.start()

        ticks.advance(60)

        assert [answer.item_id for answer in expired] == ["q1", "q2"]
        assert len(completed) == 1
        assert completed[0] is engine.report

    def test_custom_time_limit(self, item_factory, ticks):
        engine = SessionEngine(
            item_factory(1), tick_source=ticks, scoring=ScoringPolicy(question_time_limit=10)
        )
        engine.start()
        assert engine.time_remaining == 10

        ticks.advance(5)
        answer = answer_correctly(engine)

        assert answer.time_taken == 5
        assert engine.score.time_bonus == 50

    def test_rating_rejected_in_timed_mode(self, timed):
        answer_correctly(timed)
        with pytest.raises(InvalidTransition):
            timed.submit_difficulty_rating("item1", 3)

    def test_skip_rejected_in_timed_mode(self, timed):
        with pytest.raises(InvalidTransition):
            timed.skip()


class TestRejectedTransitions:
    """Invalid operations raise InvalidTransition and change nothing."""

    def test_double_answer_is_rejected(self, timed):
        answer_correctly(timed)
        before = snapshot(timed)

        with pytest.raises(InvalidTransition):
            answer_wrong(timed)

        assert snapshot(timed) == before
        assert timed.answers["item1"].is_correct

    def test_answer_for_other_item(self, timed, sample_items):
        before = snapshot(timed)
        with pytest.raises(InvalidTransition):
            timed.submit_answer("item2", sample_items[1].correct_option)
        assert snapshot(timed) == before

    def test_unknown_option(self, timed):
        before = snapshot(timed)
        with pytest.raises(InvalidTransition):
            timed.submit_answer("item1", "Not an option")
        assert snapshot(timed) == before
        assert timed.time_remaining == 30  # Clock untouched

    def test_advance_unresolved_item(self, timed):
        before = snapshot(timed)
        with pytest.raises(InvalidTransition):
            timed.advance()
        assert snapshot(timed) == before

    def test_operations_after_completion(self, ticks, item_factory):
        engine = SessionEngine(item_factory(1), tick_source=ticks)
        engine.start()
        answer_correctly(engine)
        engine.advance()
        report = engine.report

        with pytest.raises(InvalidTransition):
            engine.advance()
        with pytest.raises(InvalidTransition):
            engine.submit_answer("q1", "yes")
        assert engine.on_clock_expire() is None
        assert engine.report is report
        assert engine.current_item is None


class TestUntimedSession:
    """Tests for untimed (review) mode."""

    def test_needs_answer_and_rating(self, untimed):
        answer_correctly(untimed)
        assert untimed.item_status is ItemStatus.ANSWERED
        with pytest.raises(InvalidTransition):
            untimed.advance()

        untimed.submit_difficulty_rating("item1", 2)
        assert untimed.item_status is ItemStatus.RESOLVED
        untimed.advance()
        assert untimed.cursor == 1

    def test_rating_before_answer(self, untimed):
        untimed.submit_difficulty_rating("item1", 4)
        assert untimed.item_status is ItemStatus.RATED
        with pytest.raises(InvalidTransition):
            untimed.advance()

        answer_wrong(untimed)
        untimed.advance()
        assert untimed.cursor == 1

    @pytest.mark.parametrize("rating", [0, 6, -1, 2.5, True, "3"])
    def test_invalid_ratings(self, untimed, rating):
        with pytest.raises(InvalidTransition):
            untimed.submit_difficulty_rating("item1", rating)
        assert untimed.ratings == {}

    def test_second_rating_is_rejected(self, untimed):
        untimed.submit_difficulty_rating("item1", 2)
        with pytest.raises(InvalidTransition):
            untimed.submit_difficulty_rating("item1", 5)
        assert untimed.ratings == {"item1": 2}

    def test_rating_for_other_item(self, untimed):
        with pytest.raises(InvalidTransition):
            untimed.submit_difficulty_rating("item2", 3)

    def test_no_score_and_no_clock(self, untimed):
        assert untimed.score is None
        assert untimed.time_remaining == 0
        with pytest.raises(InvalidTransition):
            untimed.on_clock_expire()

    def test_answer_records_elapsed_time(self, untimed, fake_now):
        fake_now.tick(42)
        answer = answer_correctly(untimed)

        assert answer.time_taken == 42
        assert answer.time_remaining_at_answer == 0

    def test_completion_schedules_review(self, sample_items, fake_now):
        engine = SessionEngine(sample_items, SessionMode.UNTIMED, stage=2, now=fake_now)
        engine.start()
        for _ in range(3):
            answer_correctly(engine)
            engine.submit_difficulty_rating(engine.current_item.id, 3)
            report = engine.advance()

        assert engine.phase is SessionPhase.COMPLETED
        assert report is engine.report
        assert report.schedule.stage == 3
        assert report.schedule.next_review_at == fake_now() + timedelta(days=7)
        assert report.total_score is None
        assert report.percentage == 100

    def test_weak_session_resets_stage(self, sample_items, fake_now):
        engine = SessionEngine(sample_items, SessionMode.UNTIMED, stage=3, now=fake_now)
        engine.start()
        answer_correctly(engine)
        engine.submit_difficulty_rating("item1", 1)
        engine.advance()
        for _ in range(2):
            answer_wrong(engine)
            engine.submit_difficulty_rating(engine.current_item.id, 5)
            engine.advance()

        schedule = engine.report.schedule
        assert schedule.stage == 1
        assert schedule.next_review_at == fake_now() + timedelta(hours=12)

    def test_advance_returns_none_mid_session(self, untimed):
        answer_correctly(untimed)
        untimed.submit_difficulty_rating("item1", 3)
        assert untimed.advance() is None


class TestSkip:
    """Tests for deferring items in untimed mode."""

    def test_skip_moves_item_to_end(self, untimed):
        untimed.skip()

        assert untimed.cursor == 0
        assert untimed.current_item.id == "item2"
        assert [item.id for item in untimed.items] == ["item2", "item3", "item1"]
        assert untimed.deferred_item_ids == {"item1"}

    def test_item_can_only_be_skipped_once(self, untimed):
        untimed.skip()  # item1 to the end
        for _ in range(2):
            answer_correctly(untimed)
            untimed.submit_difficulty_rating(untimed.current_item.id, 3)
            untimed.advance()

        assert untimed.current_item.id == "item1"
        with pytest.raises(InvalidTransition):
            untimed.skip()

    def test_cannot_skip_last_item(self, untimed):
        for _ in range(2):
            answer_correctly(untimed)
            untimed.submit_difficulty_rating(untimed.current_item.id, 3)
            untimed.advance()

        before = snapshot(untimed)
        with pytest.raises(InvalidTransition):
            untimed.skip()
        assert snapshot(untimed) == before

    def test_cannot_skip_answered_item(self, untimed):
        answer_correctly(untimed)
        with pytest.raises(InvalidTransition):
            untimed.skip()

    def test_cannot_skip_rated_item(self, untimed):
        item = untimed.current_item
        untimed.submit_difficulty_rating(item.id, 3)
        before = snapshot(untimed)

        with pytest.raises(InvalidTransition):
            untimed.skip()
        assert snapshot(untimed) == before
        assert untimed.ratings == {item.id: 3}

    def test_deferred_items_flagged_in_report(self, untimed):
        untimed.skip()
        for _ in range(3):
            answer_correctly(untimed)
            untimed.submit_difficulty_rating(untimed.current_item.id, 3)
            untimed.advance()

        report = untimed.report
        assert [entry.item_id for entry in report.breakdown] == ["item2", "item3", "item1"]
        assert [entry.deferred for entry in report.breakdown] == [False, False, True]
        assert report.correct_count == 3


class TestCancellation:
    """Tests for abandoning a session."""

    def test_cancel_stops_clock_and_callbacks(self, sample_items, ticks):
        seen = []
        engine = SessionEngine(
            sample_items,
            tick_source=ticks,
            on_tick=lambda item_id, left: seen.append(left),
            on_expire=seen.append,
            on_complete=seen.append,
        )
        engine.start()
        ticks.advance(2)

        engine.cancel()
        ticks.advance(120)
        ticks.fire_pending()

        assert seen == [29, 28]
        assert engine.phase is SessionPhase.CANCELLED
        assert engine.answers == {}
        assert engine.report is None

    def test_cancel_is_idempotent(self, timed):
        timed.cancel()
        timed.cancel()
        assert timed.phase is SessionPhase.CANCELLED

    def test_operations_after_cancel_are_rejected(self, timed, sample_items):
        timed.cancel()
        with pytest.raises(InvalidTransition):
            timed.submit_answer("item1", sample_items[0].correct_option)
        with pytest.raises(InvalidTransition):
            timed.advance()
        assert timed.on_clock_expire() is None

    def test_cancel_after_completion_is_noop(self, ticks, item_factory):
        engine = SessionEngine(item_factory(1), tick_source=ticks)
        engine.start()
        answer_correctly(engine)
        engine.advance()

        engine.cancel()
        assert engine.phase is SessionPhase.COMPLETED

    def test_cancel_from_expire_observer(self, ticks, item_factory):
        holder = {}
        engine = SessionEngine(
            item_factory(3), tick_source=ticks, on_expire=lambda answer: holder["engine"].cancel()
        )
        holder["engine"] = engine
        engine.start()

        ticks.advance(90)

        assert engine.phase is SessionPhase.CANCELLED
        assert engine.cursor == 0
        assert list(engine.answers) == ["q1"]


class TestSessionInvariants:
    """Counts stay consistent across a mixed session."""

    def test_counts_through_mixed_session(self, ticks, item_factory):
        engine = SessionEngine(item_factory(6), tick_source=ticks)
        engine.start()
        plan = ["right", "right", "expire", "wrong", "right", "right"]

        for step in plan:
            if step == "right":
                answer_correctly(engine)
                engine.advance()
            elif step == "wrong":
                answer_wrong(engine)
                engine.advance()
            else:
                ticks.advance(30)

            score = engine.score
            assert score.correct_count <= score.total_answered <= len(engine.items)
            assert score.total_score == score.base_points + score.time_bonus + score.combo_bonus
            assert score.max_combo >= score.current_combo

        assert engine.phase is SessionPhase.COMPLETED
        assert engine.score.total_answered == 6
        assert engine.score.correct_count == 4
        assert engine.score.max_combo == 2
