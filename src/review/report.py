"""
Result Report - read-only summary of a completed session.

Built once, when a SessionEngine transitions to COMPLETED. The report is a
pydantic model so callers can hand ``report.model_dump(mode="json")`` to
whatever submission layer they use.
"""

from __future__ import annotations

from datetime import datetime
from typing import Mapping, Sequence

from pydantic import BaseModel, ConfigDict

from .models import Answer, SessionItem, SessionMode
from .scheduler import ReviewSchedule
from .scoring import DEFAULT_SCORING, ScoreState, ScoringPolicy, replay_score, round_half_up

GRADE_BANDS = [
    (90, "A"),
    (80, "B"),
    (70, "C"),
    (60, "D"),
]


def letter_grade(percentage: int) -> str:
    """Letter grade for a percentage score."""
    for floor, grade in GRADE_BANDS:
        if percentage >= floor:
            return grade
    return "F"


class ItemResult(BaseModel):
    """Per-item line of the report."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    question: str
    chosen_option: str | None  # None means "no answer" (timer expired)
    correct_option: str
    is_correct: bool
    time_taken: int
    time_remaining: int
    difficulty_rating: int | None = None
    deferred: bool = False
    explanation: str | None = None
    topic: str | None = None


class ResultReport(BaseModel):
    """Final summary of a review or challenge session."""

    model_config = ConfigDict(frozen=True)

    mode: SessionMode
    total_items: int
    answered_count: int
    correct_count: int
    unanswered_count: int
    percentage: int
    grade: str
    total_score: int | None = None
    max_combo: int | None = None
    score: ScoreState | None = None
    schedule: ReviewSchedule | None = None
    time_limit: int | None = None
    scoring: ScoringPolicy | None = None
    average_time_per_item: float
    incorrect_item_ids: list[str]
    breakdown: list[ItemResult]
    completed_at: datetime

    def replayed_total(self, policy: ScoringPolicy | None = None) -> int:
        """
        Re-derive total_score by folding the breakdown through a fresh ScoreState.

        Args:
            policy: Scoring constants to replay with. Defaults to the policy
                the session was scored with.
        """
        if self.mode is not SessionMode.TIMED or self.time_limit is None:
            raise ValueError("only timed reports carry a score to replay")
        state = replay_score(
            ((entry.is_correct, entry.time_remaining) for entry in self.breakdown),
            self.time_limit,
            policy or self.scoring or DEFAULT_SCORING,
        )
        return state.total_score


def build_report(
    mode: SessionMode,
    items: Sequence[SessionItem],
    answers: Mapping[str, Answer],
    ratings: Mapping[str, int],
    deferred: set[str],
    completed_at: datetime,
    score: ScoreState | None = None,
    schedule: ReviewSchedule | None = None,
    time_limit: int | None = None,
    scoring: ScoringPolicy | None = None,
) -> ResultReport:
    """
    Project final session state into a ResultReport.

    Args:
        items: Items in the order they were presented
        answers: Recorded answers keyed by item id
        ratings: Difficulty ratings keyed by item id (untimed only)
        deferred: Ids of items that were skipped once and revisited
    """
    breakdown = []
    for item in items:
        answer = answers.get(item.id)
        breakdown.append(
            ItemResult(
                item_id=item.id,
                question=item.prompt,
                chosen_option=answer.chosen_option if answer else None,
                correct_option=item.correct_option,
                is_correct=answer.is_correct if answer else False,
                time_taken=answer.time_taken if answer else 0,
                time_remaining=answer.time_remaining_at_answer if answer else 0,
                difficulty_rating=ratings.get(item.id),
                deferred=item.id in deferred,
                explanation=item.explanation,
                topic=item.topic,
            )
        )

    total = len(items)
    correct = sum(1 for entry in breakdown if entry.is_correct)
    unanswered = sum(1 for entry in breakdown if entry.chosen_option is None)
    percentage = round_half_up(correct / total * 100) if total else 0
    times = [entry.time_taken for entry in breakdown]
    average_time = round_half_up(sum(times) / len(times) * 10) / 10 if times else 0.0

    return ResultReport(
        mode=mode,
        total_items=total,
        answered_count=total - unanswered,
        correct_count=correct,
        unanswered_count=unanswered,
        percentage=percentage,
        grade=letter_grade(percentage),
        total_score=score.total_score if score else None,
        max_combo=score.max_combo if score else None,
        score=score,
        schedule=schedule,
        time_limit=time_limit,
        scoring=scoring,
        average_time_per_item=average_time,
        incorrect_item_ids=[entry.item_id for entry in breakdown if not entry.is_correct],
        breakdown=breakdown,
        completed_at=completed_at,
    )
