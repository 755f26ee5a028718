"""
Session Engine - state machine for timed challenges and untimed reviews.

Drives a learner through an ordered list of SessionItems:

Timed (challenge) mode:
1. Each item gets a countdown (30s by default)
2. submit_answer() stops the clock and scores the answer
3. If the clock runs out first, the item is recorded as "no answer",
   scored as incorrect, and the session moves on by itself

Untimed (review) mode:
1. Each item needs an answer and a 1-5 difficulty rating
2. An unanswered item can be skipped once; it moves to the end of the queue
3. Completing the last item schedules the next review from the accuracy

Every operation validates its precondition before touching any state. A
rejected call raises InvalidTransition and leaves the session unchanged.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from loguru import logger

from .clock import Clock, TickSource
from .errors import InvalidSessionError, InvalidTransition
from .models import (
    MAX_DIFFICULTY_RATING,
    MIN_DIFFICULTY_RATING,
    Answer,
    ItemStatus,
    SessionItem,
    SessionMode,
    SessionPhase,
)
from .report import ResultReport, build_report
from .scheduler import ReviewScheduler, SchedulePolicy
from .scoring import ScoreState, ScoringPolicy, apply_outcome


class SessionEngine:
    """
    Owns one review session: item cursor, answers, ratings, score and clock.

    Not thread-safe. A session belongs to exactly one caller, and all
    operations (including clock callbacks) run on that caller's event loop.
    """

    def __init__(
        self,
        items: Iterable[SessionItem | Mapping[str, Any]],
        mode: SessionMode | str = SessionMode.TIMED,
        *,
        scoring: ScoringPolicy | None = None,
        schedule_policy: SchedulePolicy | None = None,
        stage: int = 1,
        tick_source: TickSource | None = None,
        tick_interval: float = 1.0,
        now: Callable[[], datetime] = datetime.now,
        on_tick: Callable[[str, int], None] | None = None,
        on_expire: Callable[[Answer], None] | None = None,
        on_complete: Callable[[ResultReport], None] | None = None,
    ):
        """
        Build a session. Items are validated here and never again.

        Args:
            items: SessionItems (or raw mappings to validate into them)
            mode: "timed" or "untimed"
            scoring: Scoring constants, including the per-question time limit
            schedule_policy: Scheduler thresholds and intervals (untimed)
            stage: Spaced-repetition stage the session starts from (untimed)
            tick_source: Timer backend for the clock (defaults to the running
                asyncio loop)
            tick_interval: Seconds between clock ticks
            now: Wall-clock provider for timings and scheduling
            on_tick: Observer called with (item_id, remaining) every tick
            on_expire: Observer called with the synthesized answer on expiry
            on_complete: Observer called with the final report
        """
        validated = tuple(
            item if isinstance(item, SessionItem) else SessionItem.model_validate(item)
            for item in items
        )
        if not validated:
            raise InvalidSessionError("a session needs at least one item")
        ids = [item.id for item in validated]
        if len(set(ids)) != len(ids):
            raise InvalidSessionError("item ids must be unique within a session")
        if isinstance(stage, bool) or not isinstance(stage, int) or stage < 1:
            raise InvalidSessionError(f"stage must be an integer >= 1, got {stage!r}")

        self.mode = SessionMode(mode)
        self.scoring = scoring or ScoringPolicy()
        self.scheduler = ReviewScheduler(schedule_policy)
        self.stage = stage

        self._queue: list[SessionItem] = list(validated)
        self._cursor = 0
        self._answers: dict[str, Answer] = {}
        self._ratings: dict[str, int] = {}
        self._deferred: set[str] = set()
        self._score: ScoreState | None = ScoreState() if self.mode is SessionMode.TIMED else None
        self._phase = SessionPhase.PENDING
        self._report: ResultReport | None = None
        self._item_started_at: datetime | None = None

        self._now = now
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._on_complete = on_complete
        self._clock = (
            Clock(tick_source, tick_interval) if self.mode is SessionMode.TIMED else None
        )

    # =========================================================================
    # Read-only views
    # =========================================================================

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def items(self) -> tuple[SessionItem, ...]:
        """Items in presentation order (deferred items at the end)."""
        return tuple(self._queue)

    @property
    def current_item(self) -> SessionItem | None:
        if self._phase is not SessionPhase.ACTIVE:
            return None
        return self._queue[self._cursor]

    @property
    def answers(self) -> dict[str, Answer]:
        return dict(self._answers)

    @property
    def ratings(self) -> dict[str, int]:
        return dict(self._ratings)

    @property
    def deferred_item_ids(self) -> frozenset[str]:
        return frozenset(self._deferred)

    @property
    def score(self) -> ScoreState | None:
        return self._score

    @property
    def report(self) -> ResultReport | None:
        return self._report

    @property
    def time_limit(self) -> int:
        return self.scoring.question_time_limit

    @property
    def time_remaining(self) -> int:
        """Seconds left on the current question (0 when untimed or idle)."""
        return self._clock.remaining if self._clock else 0

    @property
    def item_status(self) -> ItemStatus | None:
        item = self.current_item
        if item is None:
            return None

        answer = self._answers.get(item.id)
        if self.mode is SessionMode.TIMED:
            if answer is None:
                return ItemStatus.ANSWERING
            return ItemStatus.EXPIRED if answer.expired else ItemStatus.RESOLVED

        rated = item.id in self._ratings
        if answer is not None and rated:
            return ItemStatus.RESOLVED
        if answer is not None:
            return ItemStatus.ANSWERED
        if rated:
            return ItemStatus.RATED
        return ItemStatus.ANSWERING

    # =========================================================================
    # Transitions
    # =========================================================================

    def start(self) -> None:
        """Begin the session at the first item."""
        self._require(
            self._phase is SessionPhase.PENDING, f"cannot start a {self._phase.value} session"
        )

        if self._clock is not None:
            self._start_clock()
        self._phase = SessionPhase.ACTIVE
        self._cursor = 0
        self._item_started_at = self._now()
        logger.debug(f"Session started: {len(self._queue)} items, mode={self.mode.value}")

    def submit_answer(self, item_id: str, option: str) -> Answer:
        """
        Record the answer for the current item.

        In timed mode the clock is cancelled before scoring, so a tick that
        was already queued can no longer expire this item.

        Raises:
            InvalidTransition: Not the current item, already answered, not
                an option of the item, or the session is not active
        """
        item = self._require_current(item_id)
        self._require(item.id not in self._answers, f"item {item.id} is already answered")
        self._require(option in item.options, f"{option!r} is not an option of item {item.id}")

        if self._clock is not None:
            remaining = self._clock.remaining
            self._clock.cancel()
            time_taken = self.time_limit - remaining
        else:
            remaining = 0
            time_taken = self._elapsed_seconds()

        answer = Answer(
            item_id=item.id,
            chosen_option=option,
            time_remaining_at_answer=remaining,
            time_taken=time_taken,
            is_correct=item.is_correct(option),
        )
        self._answers[item.id] = answer
        if self._score is not None:
            self._score = apply_outcome(
                self._score, answer.is_correct, remaining, self.time_limit, self.scoring
            )

        logger.debug(
            f"Answer recorded for {item.id}: correct={answer.is_correct}, "
            f"remaining={remaining}s"
        )
        return answer

    def submit_difficulty_rating(self, item_id: str, rating: int) -> int:
        """Record a 1-5 difficulty rating for the current item (untimed only)."""
        self._require(
            self.mode is SessionMode.UNTIMED, "difficulty ratings only apply to untimed sessions"
        )
        item = self._require_current(item_id)
        self._require(item.id not in self._ratings, f"item {item.id} is already rated")
        self._require(
            isinstance(rating, int)
            and not isinstance(rating, bool)
            and MIN_DIFFICULTY_RATING <= rating <= MAX_DIFFICULTY_RATING,
            f"rating must be an integer from {MIN_DIFFICULTY_RATING} to {MAX_DIFFICULTY_RATING}",
        )

        self._ratings[item.id] = rating
        logger.debug(f"Difficulty rating for {item.id}: {rating}")
        return rating

    def on_clock_expire(self) -> Answer | None:
        """
        Handle the countdown running out on the current item.

        No-op when the item is already answered or the session is no longer
        active. Otherwise records "no answer", scores it as incorrect and
        advances.

        Returns:
            The synthesized Answer, or None when nothing happened
        """
        self._require(self.mode is SessionMode.TIMED, "untimed sessions have no clock")
        if self._phase is not SessionPhase.ACTIVE:
            return None
        item = self._queue[self._cursor]
        if item.id in self._answers:
            return None

        if self._clock is not None:
            self._clock.cancel()

        answer = Answer(
            item_id=item.id,
            chosen_option=None,
            time_remaining_at_answer=0,
            time_taken=self.time_limit,
            is_correct=False,
        )
        self._answers[item.id] = answer
        self._score = apply_outcome(self._score, False, 0, self.time_limit, self.scoring)
        logger.debug(f"Time expired on {item.id}")

        if self._on_expire is not None:
            self._on_expire(answer)
        # The observer may have cancelled the session
        if self._phase is SessionPhase.ACTIVE:
            self.advance()
        return answer

    def skip(self) -> None:
        """
        Defer the current unanswered, unrated item to the end of the queue (untimed only).

        Each item can be deferred once, and only while other items remain
        after it. The cursor stays put; the next item slides into place.
        """
        self._require(self.mode is SessionMode.UNTIMED, "only untimed sessions can skip items")
        self._require_active()
        item = self._queue[self._cursor]
        self._require(item.id not in self._answers, f"item {item.id} is already answered")
        self._require(item.id not in self._ratings, f"item {item.id} is already rated")
        self._require(item.id not in self._deferred, f"item {item.id} was already skipped")
        self._require(self._cursor < len(self._queue) - 1, "no items left to skip ahead to")

        self._queue.pop(self._cursor)
        self._queue.append(item)
        self._deferred.add(item.id)
        self._item_started_at = self._now()
        logger.debug(f"Item {item.id} deferred to the end of the session")

    def advance(self) -> ResultReport | None:
        """
        Move past the current (resolved) item.

        Returns:
            The ResultReport when the last item was completed, else None
        """
        self._require_active()
        item = self._queue[self._cursor]
        self._require(self._is_resolved(item), f"item {item.id} is not resolved yet")

        if self._cursor == len(self._queue) - 1:
            return self._complete()

        if self._clock is not None:
            self._start_clock()
        self._cursor += 1
        self._item_started_at = self._now()
        logger.debug(f"Advanced to item {self._cursor + 1}/{len(self._queue)}")
        return None

    def cancel(self) -> None:
        """Abandon the session. Stops the clock; no callback fires afterwards."""
        if self._phase in (SessionPhase.COMPLETED, SessionPhase.CANCELLED):
            return
        if self._clock is not None:
            self._clock.cancel()
        self._phase = SessionPhase.CANCELLED
        logger.info(f"Session cancelled at item {self._cursor + 1}/{len(self._queue)}")

    # =========================================================================
    # Internals
    # =========================================================================

    def _complete(self) -> ResultReport:
        if self._clock is not None:
            self._clock.cancel()

        completed_at = self._now()
        schedule = None
        if self.mode is SessionMode.UNTIMED:
            correct = sum(1 for answer in self._answers.values() if answer.is_correct)
            schedule = self.scheduler.schedule(
                correct, len(self._queue), completed_at, prior_stage=self.stage
            )

        report = build_report(
            mode=self.mode,
            items=self._queue,
            answers=self._answers,
            ratings=self._ratings,
            deferred=self._deferred,
            completed_at=completed_at,
            score=self._score,
            schedule=schedule,
            time_limit=self.time_limit if self.mode is SessionMode.TIMED else None,
            scoring=self.scoring if self.mode is SessionMode.TIMED else None,
        )
        self._report = report
        self._phase = SessionPhase.COMPLETED
        logger.info(
            f"Session completed: {report.correct_count}/{report.total_items} correct"
            + (f", score {report.total_score}" if report.total_score is not None else "")
            + (f", next review {schedule.next_review_at:%Y-%m-%d %H:%M}" if schedule else "")
        )

        if self._on_complete is not None:
            self._on_complete(report)
        return report

    def _start_clock(self) -> None:
        self._clock.start(
            self.time_limit,
            on_tick=self._handle_tick,
            on_expire=self._handle_expire,
        )

    def _handle_tick(self, remaining: int) -> None:
        if self._phase is not SessionPhase.ACTIVE or self._on_tick is None:
            return
        self._on_tick(self._queue[self._cursor].id, remaining)

    def _handle_expire(self) -> None:
        self.on_clock_expire()

    def _is_resolved(self, item: SessionItem) -> bool:
        if item.id not in self._answers:
            return False
        if self.mode is SessionMode.UNTIMED:
            return item.id in self._ratings
        return True

    def _elapsed_seconds(self) -> int:
        if self._item_started_at is None:
            return 0
        return max(0, int((self._now() - self._item_started_at).total_seconds()))

    def _require_active(self) -> None:
        self._require(
            self._phase is SessionPhase.ACTIVE, f"session is {self._phase.value}, not active"
        )

    def _require_current(self, item_id: str) -> SessionItem:
        self._require_active()
        item = self._queue[self._cursor]
        self._require(item_id == item.id, f"item {item_id} is not the current item ({item.id})")
        return item

    @staticmethod
    def _require(condition: bool, message: str) -> None:
        if not condition:
            raise InvalidTransition(message)
