"""
History window construction.

Turns a persisted, time-ordered turn log into the bounded, role-normalized
window (oldest first) that every scorer reads.
"""

from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Union

from loguru import logger
from pydantic import ValidationError

from escalation_engine.models import Turn, TurnRole
from escalation_engine.utils import EngineInputError, get_config, get_utc_datetime


# Storage sender labels mapped onto the engine's role model
CUSTOMER_LABELS = {"customer", "user"}
ASSISTANT_LABELS = {"ai", "assistant", "bot"}

TurnLogEntry = Union[Turn, Mapping[str, Any]]


def normalize_role(label: Optional[str]) -> TurnRole:
    """Map a storage sender label to a TurnRole; unknown labels become human-agent."""
    text = (label or "").strip().lower()
    if text in CUSTOMER_LABELS:
        return TurnRole.CUSTOMER
    if text in ASSISTANT_LABELS:
        return TurnRole.ASSISTANT
    return TurnRole.HUMAN_AGENT


def _first(entry: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in entry and entry[key] is not None:
            return entry[key]
    return None


def _to_turn(entry: TurnLogEntry) -> Turn:
    if isinstance(entry, Turn):
        return entry
    if not isinstance(entry, Mapping):
        raise EngineInputError(f"turn log entries must be Turn or mapping, got {type(entry).__name__}")

    label = _first(entry, "senderType", "sender_type", "role")
    if isinstance(label, TurnRole):
        label = label.value
    if label is not None and not isinstance(label, str):
        raise EngineInputError(f"turn sender label must be a string, got {type(label).__name__}")
    content = _first(entry, "content", "message", "text")
    if content is not None and not isinstance(content, str):
        raise EngineInputError(f"turn content must be a string, got {type(content).__name__}")
    timestamp = _first(entry, "timestamp", "createdAt", "created_at")
    if timestamp is not None and not isinstance(timestamp, (datetime, str)):
        raise EngineInputError(f"turn timestamp must be datetime or ISO string, got {type(timestamp).__name__}")

    try:
        return Turn(
            role=normalize_role(label),
            content=content or "",
            timestamp=timestamp or get_utc_datetime(),
            sender_label=label,
        )
    except ValidationError as e:
        raise EngineInputError(f"Invalid turn log entry: {e}") from e


def build_history_window(turn_log: Optional[Iterable[TurnLogEntry]], limit: Optional[int] = None) -> List[Turn]:
    """
    Build the most-recent-last history window for a session.

    Args:
        turn_log: Full time-ordered turn log (oldest first); None or empty means no context
        limit: Maximum number of turns to keep (defaults to HISTORY_WINDOW_LIMIT)

    Returns:
        List of at most `limit` Turns, oldest first

    Raises:
        EngineInputError: If the limit or a log entry has the wrong shape
    """
    if limit is None:
        limit = get_config()["HISTORY_WINDOW_LIMIT"]
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
        raise EngineInputError(f"history limit must be a non-negative integer, got {limit!r}")

    if turn_log is None:
        return []
    if isinstance(turn_log, (str, bytes, Mapping)):
        raise EngineInputError("turn log must be a sequence of turns")

    entries = list(turn_log)
    if limit == 0 or not entries:
        return []

    window = [_to_turn(entry) for entry in entries[-limit:]]
    logger.debug("History window built", log_length=len(entries), window_length=len(window), limit=limit)
    return window


def count_role(history: List[Turn], role: TurnRole) -> int:
    """Number of turns in the window sent by the given role."""
    return sum(1 for turn in history if turn.role == role)


def assistant_contents(history: List[Turn]) -> List[str]:
    """Lower-cased assistant turn texts, with typographic apostrophes normalized."""
    return [
        turn.content.lower().replace("’", "'")
        for turn in history
        if turn.role == TurnRole.ASSISTANT
    ]
