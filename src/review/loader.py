"""
Load session items from JSON files.

Accepts either a bare list of items or an object with an ``items`` key (the
shape review sessions come back in from the backend). Field names from the
backend (``_id``, ``question``, ``answer``) are accepted alongside the
engine's own names.
"""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger
from pydantic import TypeAdapter

from .errors import InvalidSessionError
from .models import SessionItem

_ITEMS_ADAPTER = TypeAdapter(list[SessionItem])


def parse_session_items(data: object) -> list[SessionItem]:
    """Validate already-decoded JSON into SessionItems."""
    if isinstance(data, dict):
        if "items" not in data:
            raise InvalidSessionError("expected a list of items or an object with an 'items' key")
        data = data["items"]
    return _ITEMS_ADAPTER.validate_python(data)


def load_session_items(path: Path | str) -> list[SessionItem]:
    """
    Read and validate session items from a JSON file.

    Raises:
        InvalidSessionError: The file does not hold an item list
        pydantic.ValidationError: An item is malformed
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    items = parse_session_items(data)
    logger.debug(f"Loaded {len(items)} items from {path.name}")
    return items
