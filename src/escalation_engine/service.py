"""
Async turn service wiring the escalation engine to its collaborators.

This is the caller side of the engine: for one customer message it loads the
session, retrieves knowledge, evaluates the turn, acts on the decision and
persists the exchange. The engine stays pure; everything with side effects
lives here.

Pipeline per turn:
1. Load the session turn log and counters (under a per-session lock)
2. Retrieve knowledge for the query
3. Evaluate the turn with the engine
4. On immediate escalation: open a case, then save the bumped escalation_attempts
5. Render the prompt (escalation, fallback template or grounded answer)
6. Generate the answer with the LLM; failures degrade to an apology text
7. Append any proactive escalation offer
8. Persist the customer and assistant turns together, assess response quality

Usage:
    service = SupportTurnService(
        history_store=InMemoryChatHistoryStore(),
        retriever=my_retriever,
        llm_client=my_llm,
        case_sink=my_case_sink,
    )
    outcome = await service.handle_turn("session_123", "Do you ship abroad?", "Acme")
"""

import asyncio
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from escalation_engine.confidence import rank_knowledge_items
from escalation_engine.engine import EscalationEngine, coerce_knowledge_item
from escalation_engine.models import (
    KnowledgeItem,
    ProactiveOffer,
    ResponseQualityReport,
    SessionCounters,
    TurnEvaluation,
    TurnRole,
)
from escalation_engine.quality import assess_response_quality
from escalation_engine.store import (
    ChatHistoryStore,
    EscalationCaseSink,
    KnowledgeRetriever,
    LLMClient,
)
from escalation_engine.utils import EngineInputError, Timer, ensure_text, get_config, sanitize_for_logging


class TurnServiceError(Exception):
    """Raised when a collaborator other than the LLM fails during a turn."""
    pass


LLM_FAILURE_RESPONSE = (
    "I'm sorry, I'm having trouble putting an answer together right now. "
    "Please try again in a moment, or ask to speak with a member of our team."
)

PROACTIVE_OFFER_TEXT = {
    ProactiveOffer.OFFER_ESCALATION: (
        " If you'd prefer, I can connect you with a member of our team."
    ),
    ProactiveOffer.PRICING_DETAILS: (
        " If you need exact pricing details, feel free to ask to speak with someone on our team."
    ),
    ProactiveOffer.COMPLEX_TOPIC: (
        " This can be a detailed topic, so let me know if you'd like a member of our team to help directly."
    ),
}

ESCALATION_PROMPT = """
Customer requested: "{query}"
Business: {business_name}
Case number: {case_number}

The customer needs a human. Generate a warm, helpful response that:
1. Acknowledges their request positively
2. Lets them know a member of the {business_name} team will follow up
3. Gives them their case number so they can check on it later

Keep it natural and friendly, like a real person would respond."""

GROUNDED_ANSWER_PROMPT = """
You are the customer support assistant for {business_name}.

Relevant information:
{knowledge}

Customer asked: "{query}"

Answer using only the information above. Be concise and friendly; if the
information does not fully answer the question, say what you can and ask a
clarifying question."""


class TurnOutcome(BaseModel):
    """Result of handling one customer message."""
    session_id: str
    response_text: str
    evaluation: TurnEvaluation
    session_counters: SessionCounters = Field(..., description="Counters after this turn was applied")
    escalation_case_number: Optional[str] = None
    llm_failed: bool = False
    quality: ResponseQualityReport


def format_knowledge(items: List[KnowledgeItem]) -> str:
    """Render knowledge items as a bulleted context block."""
    if not items:
        return "- (none)"
    lines = []
    for item in items:
        if item.secondary_text:
            lines.append(f"- [{item.category.value}] {item.primary_text}: {item.secondary_text}")
        else:
            lines.append(f"- [{item.category.value}] {item.primary_text}")
    return "\n".join(lines)


class SupportTurnService:
    """Per-turn orchestration of the engine and its collaborators."""

    def __init__(
        self,
        history_store: ChatHistoryStore,
        retriever: KnowledgeRetriever,
        llm_client: LLMClient,
        case_sink: EscalationCaseSink,
        engine: Optional[EscalationEngine] = None,
        confidence_threshold: Optional[float] = None
    ):
        """
        Args:
            history_store: Session turn log and counters
            retriever: Knowledge lookup for queries
            llm_client: Text generation
            case_sink: Human-escalation case creation
            engine: Decision engine (a fresh one by default)
            confidence_threshold: Fallback threshold (defaults to LOW_CONFIDENCE_THRESHOLD)
        """
        self.history_store = history_store
        self.retriever = retriever
        self.llm_client = llm_client
        self.case_sink = case_sink
        self.engine = engine or EscalationEngine()
        self.confidence_threshold = (
            get_config()["LOW_CONFIDENCE_THRESHOLD"] if confidence_threshold is None else confidence_threshold
        )
        # Per-session locks, dropped once no turn holds or waits on them
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._session_waiters: Dict[str, int] = {}

    def _claim_session_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = self._session_locks[session_id] = asyncio.Lock()
        self._session_waiters[session_id] = self._session_waiters.get(session_id, 0) + 1
        return lock

    def _release_session_lock(self, session_id: str) -> None:
        remaining = self._session_waiters[session_id] - 1
        if remaining:
            self._session_waiters[session_id] = remaining
        else:
            del self._session_waiters[session_id]
            del self._session_locks[session_id]

    async def handle_turn(self, session_id: str, query: str, business_name: str) -> TurnOutcome:
        """
        Handle one customer message end to end.

        Turns for the same session are serialized, so each sees the counters
        and history left by the previous one.

        Args:
            session_id: Session identifier
            query: Raw customer message
            business_name: Business the session belongs to

        Returns:
            TurnOutcome with the answer, the engine evaluation and updated counters

        Raises:
            EngineInputError: If the query or business name is malformed
            TurnServiceError: If storage, retrieval or case creation fails, or
                the retriever returns malformed knowledge records
        """
        lock = self._claim_session_lock(session_id)
        try:
            async with lock:
                with Timer("handle_turn"):
                    return await self._handle_turn_locked(session_id, query, business_name)
        finally:
            self._release_session_lock(session_id)

    async def _handle_turn_locked(self, session_id: str, query: str, business_name: str) -> TurnOutcome:
        ensure_text(query, max_length=self.engine.max_query_length)
        ensure_text(business_name, field="business_name")

        logger.info(
            "Handling customer turn",
            session_id=session_id,
            query=sanitize_for_logging(query, 100)
        )

        try:
            turn_log = await self.history_store.get_turn_log(session_id)
            counters = await self.history_store.get_counters(session_id)
        except Exception as e:
            logger.error("Loading session failed", session_id=session_id, error=str(e))
            raise TurnServiceError(f"Failed to load session {session_id}: {e}") from e

        try:
            raw_items = await self.retriever.retrieve(query, business_name)
        except Exception as e:
            logger.error("Knowledge retrieval failed", session_id=session_id, error=str(e))
            raise TurnServiceError(f"Knowledge retrieval failed: {e}") from e

        try:
            items = [coerce_knowledge_item(item) for item in (raw_items or [])]
        except EngineInputError as e:
            logger.error("Retrieved knowledge is malformed", session_id=session_id, error=str(e))
            raise TurnServiceError(f"Knowledge retrieval returned malformed records: {e}") from e
        ranked = rank_knowledge_items(query, items)

        evaluation = self.engine.evaluate_turn(
            query,
            session_history=turn_log,
            session_counters=counters,
            knowledge_items=ranked,
            business_name=business_name,
            confidence_threshold=self.confidence_threshold,
        )
        decision = evaluation.escalation_decision

        case_number = None
        if decision.should_escalate_now:
            try:
                case_number = await self.case_sink.open_case(session_id, query, decision)
            except Exception as e:
                logger.error("Opening escalation case failed", session_id=session_id, error=str(e))
                raise TurnServiceError(f"Failed to open escalation case: {e}") from e

            counters = SessionCounters(
                escalation_attempts=counters.escalation_attempts + evaluation.recommended_attempt_increment
            )
            try:
                await self.history_store.save_counters(session_id, counters)
            except Exception as e:
                logger.error(
                    "Saving escalation attempts failed",
                    session_id=session_id,
                    case_number=case_number,
                    error=str(e)
                )
                raise TurnServiceError(f"Failed to save counters for session {session_id}: {e}") from e
            logger.info(
                "Escalation case opened",
                session_id=session_id,
                case_number=case_number,
                escalation_score=decision.escalation_score,
                escalation_attempts=counters.escalation_attempts
            )

        prompt = self.build_prompt(query, business_name, evaluation, ranked, case_number)

        llm_failed = False
        try:
            response_text = await self.llm_client.generate(prompt, evaluation.history_window)
        except Exception as e:
            logger.error("LLM generation failed", session_id=session_id, error=str(e))
            response_text = LLM_FAILURE_RESPONSE
            llm_failed = True

        if not decision.should_escalate_now and evaluation.proactive_offer != ProactiveOffer.NONE:
            response_text = response_text.rstrip() + PROACTIVE_OFFER_TEXT[evaluation.proactive_offer]

        try:
            await self.history_store.append_turns(
                session_id,
                [(TurnRole.CUSTOMER, query), (TurnRole.ASSISTANT, response_text)],
            )
        except Exception as e:
            logger.error("Persisting turn failed", session_id=session_id, error=str(e))
            raise TurnServiceError(f"Failed to persist turn for session {session_id}: {e}") from e

        quality = assess_response_quality(response_text, knowledge_count=len(ranked))

        logger.info(
            "Customer turn handled",
            session_id=session_id,
            intent=evaluation.intent.value,
            escalated=decision.should_escalate_now,
            confidence_score=evaluation.confidence_result.confidence_score,
            fallback=evaluation.fallback_strategy.name.value if evaluation.fallback_strategy else None,
            llm_failed=llm_failed,
            quality_score=quality.quality_score
        )

        return TurnOutcome(
            session_id=session_id,
            response_text=response_text,
            evaluation=evaluation,
            session_counters=counters,
            escalation_case_number=case_number,
            llm_failed=llm_failed,
            quality=quality,
        )

    @staticmethod
    def build_prompt(
        query: str,
        business_name: str,
        evaluation: TurnEvaluation,
        knowledge_items: List[KnowledgeItem],
        case_number: Optional[str] = None
    ) -> str:
        """
        Choose and render the LLM prompt for a turn.

        Escalations get the escalation prompt, low-confidence turns get the
        selected fallback template, everything else a grounded answer prompt.
        """
        name = business_name or "our business"
        if evaluation.escalation_decision.should_escalate_now:
            return ESCALATION_PROMPT.format(
                query=query,
                business_name=name,
                case_number=case_number or "pending"
            )
        if evaluation.fallback_strategy is not None:
            return evaluation.fallback_strategy.prompt
        return GROUNDED_ANSWER_PROMPT.format(
            query=query,
            business_name=name,
            knowledge=format_knowledge(knowledge_items)
        )


__all__ = [
    "LLM_FAILURE_RESPONSE",
    "SupportTurnService",
    "TurnOutcome",
    "TurnServiceError",
    "format_knowledge",
]
