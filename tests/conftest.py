"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import heapq
import itertools
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.review.models import SessionItem  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


class FakeHandle:
    """Handle returned by FakeTickSource.call_later."""

    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeTickSource:
    """
    Deterministic stand-in for an event loop's call_later.

    Time only moves when advance() is called; due callbacks run in order.
    """

    def __init__(self):
        self.now = 0.0
        self._queue = []
        self._counter = itertools.count()

    def call_later(self, delay, callback):
        handle = FakeHandle()
        heapq.heappush(self._queue, (self.now + delay, next(self._counter), handle, callback))
        return handle

    @property
    def pending(self):
        """Number of scheduled, not-cancelled callbacks."""
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    def advance(self, seconds):
        """Run every callback due within the next `seconds`."""
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target + 1e-9:
            when, _, handle, callback = heapq.heappop(self._queue)
            self.now = when
            if not handle.cancelled:
                callback()
        self.now = target

    def fire_pending(self):
        """Run every queued callback regardless of cancellation (simulates a racing tick)."""
        queued, self._queue = self._queue, []
        for _, _, _, callback in sorted(queued, key=lambda entry: (entry[0], entry[1])):
            callback()


class FakeNow:
    """Controllable wall clock."""

    def __init__(self, start=datetime(2024, 3, 1, 9, 0, 0)):
        self.current = start

    def __call__(self):
        return self.current

    def tick(self, seconds):
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def ticks():
    """Provide a deterministic tick source."""
    return FakeTickSource()


@pytest.fixture
def fake_now():
    """Provide a controllable wall clock."""
    return FakeNow()


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def sample_items():
    """Provide three sample review items."""
    return [
        SessionItem(
            id="item1",
            prompt="What is the primary function of hemoglobin?",
            options=[
                "To transport oxygen from the lungs to the tissues",
                "To fight infections in the bloodstream",
                "To regulate blood glucose levels",
                "To maintain blood pressure",
            ],
            correct_option="To transport oxygen from the lungs to the tissues",
            explanation="Hemoglobin binds oxygen in the lungs and releases it in tissues.",
            topic="physiology",
        ),
        SessionItem(
            id="item2",
            prompt="Which of the following is NOT a symptom of myocardial infarction?",
            options=["Chest pain", "Shortness of breath", "Increased urination", "Nausea and vomiting"],
            correct_option="Increased urination",
        ),
        SessionItem(
            id="item3",
            prompt="Severe headache, stiff neck and photophobia suggest which diagnosis?",
            options=["Migraine", "Meningitis", "Tension headache", "Cluster headache"],
            correct_option="Meningitis",
        ),
    ]


def make_items(count):
    """Build `count` simple two-option items (correct answer is always 'yes')."""
    return [
        SessionItem(id=f"q{n}", prompt=f"Question {n}?", options=["yes", "no"], correct_option="yes")
        for n in range(1, count + 1)
    ]


@pytest.fixture
def item_factory():
    """Provide the make_items helper."""
    return make_items
