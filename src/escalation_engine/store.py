"""
Collaborator interfaces and in-memory chat history storage.

The engine itself performs no I/O. The turn service talks to the outside world
only through the protocols defined here:

- ChatHistoryStore: per-session turn log and session counters
- KnowledgeRetriever: candidate knowledge items for a query
- LLMClient: text generation from a rendered prompt
- EscalationCaseSink: opens a human-escalation case

InMemoryChatHistoryStore keeps turn logs in the storage shape the history
window builder accepts (senderType/content/timestamp records), guarded by an
asyncio lock. It is meant for tests and local runs; durable storage is the
deployment's concern.
"""

import asyncio
import uuid
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from loguru import logger

from escalation_engine.models import (
    EscalationDecision,
    KnowledgeItem,
    SessionCounters,
    Turn,
    TurnRole,
    utc_now,
)


StoredTurn = Dict[str, Any]


class ChatHistoryStore(Protocol):
    """Durable per-session turn log and counters."""

    async def get_turn_log(self, session_id: str) -> List[StoredTurn]:
        ...

    async def append_turns(self, session_id: str, turns: Sequence[Tuple[str, str]]) -> List[StoredTurn]:
        ...

    async def get_counters(self, session_id: str) -> SessionCounters:
        ...

    async def save_counters(self, session_id: str, counters: SessionCounters) -> None:
        ...


class KnowledgeRetriever(Protocol):
    """Retrieves candidate knowledge for a query."""

    async def retrieve(self, query: str, business_name: str) -> Sequence[Union[KnowledgeItem, Mapping[str, Any]]]:
        ...


class LLMClient(Protocol):
    """Generates response text from a rendered prompt."""

    async def generate(self, prompt: str, history: List[Turn]) -> str:
        ...


class EscalationCaseSink(Protocol):
    """Opens a human-escalation case and returns its case number."""

    async def open_case(self, session_id: str, query: str, decision: EscalationDecision) -> str:
        ...


# Storage sender labels written for each role
SENDER_LABELS = {
    TurnRole.CUSTOMER: "customer",
    TurnRole.ASSISTANT: "ai",
    TurnRole.HUMAN_AGENT: "agent",
}


class InMemoryChatHistoryStore:
    """Asyncio-locked in-memory turn logs and counters, keyed by session."""

    def __init__(self):
        self._turn_logs: Dict[str, List[StoredTurn]] = {}
        self._counters: Dict[str, SessionCounters] = {}
        self._lock = asyncio.Lock()

    async def get_turn_log(self, session_id: str) -> List[StoredTurn]:
        """
        Get a copy of the session's turn log, oldest first.

        Args:
            session_id: Session identifier

        Returns:
            List of stored turn records (empty for an unknown session)
        """
        async with self._lock:
            return [dict(turn) for turn in self._turn_logs.get(session_id, [])]

    async def append_turns(
        self,
        session_id: str,
        turns: Sequence[Tuple[Union[TurnRole, str], str]]
    ) -> List[StoredTurn]:
        """
        Append turns to the session's log in one step, creating the session if needed.

        Either every turn is stored or none is, so a customer message is never
        left without its reply.

        Args:
            session_id: Session identifier
            turns: (sender, content) pairs, oldest first; sender is a storage
                label or a TurnRole to map to one

        Returns:
            The stored turn records
        """
        records = []
        for sender_type, content in turns:
            if isinstance(sender_type, TurnRole):
                sender_type = SENDER_LABELS[sender_type]
            records.append({
                "id": uuid.uuid4().hex[:16],
                "senderType": sender_type,
                "content": content,
                "timestamp": utc_now(),
            })

        async with self._lock:
            self._turn_logs.setdefault(session_id, []).extend(records)
            total = len(self._turn_logs[session_id])

        logger.debug("Turns stored", session_id=session_id, added=len(records), total_turns=total)
        return [dict(record) for record in records]

    async def get_counters(self, session_id: str) -> SessionCounters:
        async with self._lock:
            return self._counters.get(session_id, SessionCounters())

    async def save_counters(self, session_id: str, counters: SessionCounters) -> None:
        async with self._lock:
            self._counters[session_id] = counters


# Global store instance
_store_instance: Optional[InMemoryChatHistoryStore] = None


def get_history_store() -> InMemoryChatHistoryStore:
    """
    Get the global in-memory chat history store.

    Returns:
        InMemoryChatHistoryStore instance
    """
    global _store_instance
    if _store_instance is None:
        _store_instance = InMemoryChatHistoryStore()
    return _store_instance
