"""
Challenge Scoring - pure score accumulation for timed sessions.

Each answered question contributes:
- Base points for a correct answer
- A time bonus proportional to the unused share of the time limit
- A combo bonus once a streak of correct answers reaches 2

Bonuses are rounded half-up per question before they are added to the
running totals, so every total stays integral. This double-rounds
(per-question bonus rounded, then summed); a running total is never
re-rounded.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Iterable


@dataclass(frozen=True)
class ScoringPolicy:
    """Scoring constants for timed sessions."""

    base_points: int = 100
    max_time_bonus: int = 100
    combo_multiplier: float = 0.1
    question_time_limit: int = 30  # Seconds per question

    def __post_init__(self) -> None:
        if self.question_time_limit <= 0:
            raise ValueError("question_time_limit must be positive")


DEFAULT_SCORING = ScoringPolicy()


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class ScoreState:
    """Running score totals. Immutable; apply_outcome returns a new state."""

    base_points: int = 0
    time_bonus: int = 0
    combo_bonus: int = 0
    total_score: int = 0
    current_combo: int = 0
    max_combo: int = 0
    correct_count: int = 0
    total_answered: int = 0

    @property
    def accuracy(self) -> float:
        """Share of answered questions that were correct (0.0 if none)."""
        if self.total_answered == 0:
            return 0.0
        return self.correct_count / self.total_answered


def apply_outcome(
    state: ScoreState,
    is_correct: bool,
    time_remaining: float,
    time_limit: int,
    policy: ScoringPolicy = DEFAULT_SCORING,
) -> ScoreState:
    """
    Fold one question outcome into the score.

    An expired timer is scored as an incorrect answer with no time left.

    Args:
        state: Score before this question
        is_correct: Whether the chosen option was the correct one
        time_remaining: Seconds left on the clock when answered
        time_limit: Seconds the question was allowed
        policy: Point values and multipliers

    Returns:
        New ScoreState with all totals updated
    """
    if time_limit <= 0:
        raise ValueError("time_limit must be positive")

    remaining = min(max(time_remaining, 0), time_limit)

    base = policy.base_points if is_correct else 0
    time_bonus = round_half_up(policy.max_time_bonus * remaining / time_limit) if is_correct else 0
    new_combo = state.current_combo + 1 if is_correct else 0
    combo_bonus = (
        round_half_up(base * (new_combo * policy.combo_multiplier))
        if is_correct and new_combo > 1
        else 0
    )

    base_points = state.base_points + base
    time_bonus_total = state.time_bonus + time_bonus
    combo_bonus_total = state.combo_bonus + combo_bonus

    return replace(
        state,
        base_points=base_points,
        time_bonus=time_bonus_total,
        combo_bonus=combo_bonus_total,
        total_score=base_points + time_bonus_total + combo_bonus_total,
        current_combo=new_combo,
        max_combo=max(state.max_combo, new_combo),
        correct_count=state.correct_count + (1 if is_correct else 0),
        total_answered=state.total_answered + 1,
    )


def replay_score(
    outcomes: Iterable[tuple[bool, float]],
    time_limit: int,
    policy: ScoringPolicy = DEFAULT_SCORING,
) -> ScoreState:
    """Accumulate (is_correct, time_remaining) pairs from a fresh ScoreState."""
    state = ScoreState()
    for is_correct, time_remaining in outcomes:
        state = apply_outcome(state, is_correct, time_remaining, time_limit, policy)
    return state
