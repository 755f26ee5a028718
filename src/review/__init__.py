"""
Review Session Module.

Provides the engine behind challenge and review sessions:
- Countdown clock for timed questions
- Challenge scoring (base points, time bonus, combo bonus)
- Spaced review scheduling from session accuracy
- Session state machine and result reports
"""

from src.review.clock import Clock
from src.review.engine import SessionEngine
from src.review.errors import (
    DivisionByZeroError,
    InvalidSessionError,
    InvalidTransition,
    ReviewEngineError,
)
from src.review.loader import load_session_items, parse_session_items
from src.review.models import Answer, ItemStatus, SessionItem, SessionMode, SessionPhase
from src.review.report import ItemResult, ResultReport
from src.review.scheduler import ReviewSchedule, ReviewScheduler, SchedulePolicy
from src.review.scoring import ScoreState, ScoringPolicy, apply_outcome, replay_score

__all__ = [
    "Answer",
    "Clock",
    "DivisionByZeroError",
    "InvalidSessionError",
    "InvalidTransition",
    "ItemResult",
    "ItemStatus",
    "ResultReport",
    "ReviewEngineError",
    "ReviewSchedule",
    "ReviewScheduler",
    "SchedulePolicy",
    "ScoreState",
    "ScoringPolicy",
    "SessionEngine",
    "SessionItem",
    "SessionMode",
    "SessionPhase",
    "apply_outcome",
    "load_session_items",
    "parse_session_items",
    "replay_score",
]
