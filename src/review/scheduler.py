"""
Review Scheduler - next review date from session accuracy.

A simplified spaced-repetition policy for untimed review sessions:

    accuracy >= 0.8        -> advance a stage (at least 2), review in 7 days
    0.6 <= accuracy < 0.8  -> keep the stage (at least 1), review in 1 day
    accuracy < 0.6         -> back to stage 1, review in 12 hours
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger

from .errors import DivisionByZeroError


@dataclass(frozen=True)
class SchedulePolicy:
    """Thresholds and intervals for the review scheduler."""

    advance_threshold: float = 0.8
    hold_threshold: float = 0.6
    advance_interval: timedelta = timedelta(days=7)
    hold_interval: timedelta = timedelta(days=1)
    reset_interval: timedelta = timedelta(hours=12)

    def __post_init__(self) -> None:
        if not 0.0 <= self.hold_threshold <= self.advance_threshold <= 1.0:
            raise ValueError("thresholds must satisfy 0 <= hold <= advance <= 1")


@dataclass(frozen=True)
class ReviewSchedule:
    """When the session should be reviewed again, and at which stage."""

    next_review_at: datetime
    stage: int
    accuracy: float
    interval: timedelta


class ReviewScheduler:
    """Maps a completed session's accuracy to a ReviewSchedule."""

    def __init__(self, policy: SchedulePolicy | None = None):
        self.policy = policy or SchedulePolicy()

    def schedule(
        self,
        correct_count: int,
        total_questions: int,
        now: datetime,
        prior_stage: int = 1,
    ) -> ReviewSchedule:
        """
        Calculate the next review.

        Args:
            correct_count: Correctly answered questions
            total_questions: Questions in the session (must be > 0)
            now: Reference time the interval is added to
            prior_stage: Stage the session was at before this review

        Returns:
            ReviewSchedule with next_review_at and the new stage

        Raises:
            DivisionByZeroError: total_questions is 0
        """
        if total_questions == 0:
            raise DivisionByZeroError("cannot schedule a review for a session with no questions")
        if total_questions < 0 or not 0 <= correct_count <= total_questions:
            raise ValueError(
                f"correct_count must be within [0, {total_questions}], got {correct_count}"
            )

        accuracy = correct_count / total_questions
        policy = self.policy

        if accuracy >= policy.advance_threshold:
            stage = max(prior_stage + 1, 2)
            interval = policy.advance_interval
        elif accuracy >= policy.hold_threshold:
            stage = max(prior_stage, 1)
            interval = policy.hold_interval
        else:
            stage = 1
            interval = policy.reset_interval

        logger.debug(
            f"Scheduled review: accuracy={accuracy:.2f} stage {prior_stage} -> {stage}, "
            f"next in {interval}"
        )
        return ReviewSchedule(
            next_review_at=now + interval,
            stage=stage,
            accuracy=accuracy,
            interval=interval,
        )
