"""
Core data model for review sessions.

SessionItem is the single validated contract for questions entering the
engine. Validation happens once, at construction; the engine never
re-checks item shape afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class SessionMode(str, Enum):
    """How a session is driven."""

    TIMED = "timed"  # Challenge mode: per-question countdown + score
    UNTIMED = "untimed"  # Review mode: answer + difficulty rating, then scheduling


class SessionPhase(str, Enum):
    """Lifecycle phase of a SessionEngine."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ItemStatus(str, Enum):
    """Sub-state of the item under the cursor."""

    ANSWERING = "answering"  # Waiting for input
    ANSWERED = "answered"  # Untimed: answer recorded, rating still missing
    RATED = "rated"  # Untimed: rating recorded, answer still missing
    RESOLVED = "resolved"  # All required inputs recorded
    EXPIRED = "expired"  # Timed: clock ran out before an answer


MIN_DIFFICULTY_RATING = 1
MAX_DIFFICULTY_RATING = 5


class SessionItem(BaseModel):
    """A single multiple-choice question. Immutable once built."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, str_strip_whitespace=True)

    id: str = Field(validation_alias=AliasChoices("id", "_id", "item_id"), min_length=1)
    prompt: str = Field(validation_alias=AliasChoices("prompt", "question"), min_length=1)
    options: tuple[str, ...]
    correct_option: str = Field(
        validation_alias=AliasChoices("correct_option", "correctOption", "answer")
    )
    explanation: str | None = None
    topic: str | None = None

    @field_validator("options")
    @classmethod
    def _check_options(cls, options: tuple[str, ...]) -> tuple[str, ...]:
        if len(options) < 2:
            raise ValueError("an item needs at least two options")
        if any(not option for option in options):
            raise ValueError("options must be non-empty strings")
        if len(set(options)) != len(options):
            raise ValueError("options must be unique")
        return options

    @model_validator(mode="after")
    def _check_correct_option(self) -> SessionItem:
        if self.correct_option not in self.options:
            raise ValueError(f"correct option {self.correct_option!r} is not one of the options")
        return self

    def is_correct(self, option: str | None) -> bool:
        """Check a chosen option against the key. None (no answer) is never correct."""
        return option is not None and option == self.correct_option


@dataclass(frozen=True)
class Answer:
    """A recorded answer. Written once per item, never overwritten."""

    item_id: str
    chosen_option: str | None  # None when the clock expired
    time_remaining_at_answer: int  # 0 when untimed or expired
    time_taken: int  # Seconds spent on the item
    is_correct: bool

    @property
    def expired(self) -> bool:
        return self.chosen_option is None
