"""
Escalation decision dispatcher.

Composes the history window builder, intent classifier, escalation and
confidence scorers, state deriver and fallback selector into one decision
record per customer message. The engine is pure: it reads its inputs, returns
a TurnEvaluation and performs no I/O. Session counters come in by value and
are never modified; the evaluation carries a recommended increment that the
caller applies after it has acted on the decision.

Usage:
    engine = EscalationEngine()
    evaluation = engine.evaluate_turn(
        query="I want to talk to a manager",
        session_history=[],
        session_counters=SessionCounters(escalation_attempts=0),
        knowledge_items=[],
        business_name="Acme Dental",
    )
    if evaluation.escalation_decision.should_escalate_now:
        ...  # open an escalation case, then bump escalation_attempts
"""

from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from loguru import logger
from pydantic import ValidationError

from escalation_engine.confidence import ConfidenceScorer
from escalation_engine.escalation import EscalationScorer, tier_for_score
from escalation_engine.fallback import CategoryLike, FallbackStrategySelector
from escalation_engine.history import TurnLogEntry, build_history_window
from escalation_engine.intent import IntentClassifier
from escalation_engine.models import (
    ConfidenceResult,
    EscalationDecision,
    EscalationTier,
    KnowledgeCategory,
    KnowledgeItem,
    SessionCounters,
    TurnEvaluation,
)
from escalation_engine.state import derive_conversation_state
from escalation_engine.utils import (
    EngineInputError,
    Timer,
    clamp_score,
    ensure_text,
    get_config,
    sanitize_for_logging,
)


# Storage field names accepted when knowledge arrives as plain records
PRIMARY_KEYS = ("primary_text", "question", "name", "title")
SECONDARY_KEYS = ("secondary_text", "answer", "description", "content")
CATEGORY_KEYS = ("category", "type")

KnowledgeLike = Union[KnowledgeItem, Mapping[str, Any]]
CountersLike = Union[SessionCounters, Mapping[str, Any]]


def coerce_knowledge_item(record: KnowledgeLike) -> KnowledgeItem:
    """
    Build a KnowledgeItem from an item or a storage record.

    Records may use FAQ (question/answer), product/service (name/description)
    or policy/knowledge (title/content) field names.

    Raises:
        EngineInputError: If the record is not a mapping or has non-text fields
    """
    if isinstance(record, KnowledgeItem):
        return record
    if not isinstance(record, Mapping):
        raise EngineInputError(f"knowledge items must be KnowledgeItem or mapping, got {type(record).__name__}")

    def pick(keys):
        for key in keys:
            if record.get(key):
                return record[key]
        return None

    category = pick(CATEGORY_KEYS) or KnowledgeCategory.KNOWLEDGE
    try:
        category = KnowledgeCategory(category)
    except ValueError:
        category = KnowledgeCategory.KNOWLEDGE

    try:
        return KnowledgeItem(
            primary_text=pick(PRIMARY_KEYS),
            secondary_text=pick(SECONDARY_KEYS),
            category=category,
        )
    except ValidationError as e:
        raise EngineInputError(f"Invalid knowledge item: {e}") from e


def coerce_counters(counters: Optional[CountersLike]) -> SessionCounters:
    """Accept SessionCounters, a mapping, or None (fresh session)."""
    if counters is None:
        return SessionCounters()
    if isinstance(counters, SessionCounters):
        return counters
    if not isinstance(counters, Mapping):
        raise EngineInputError(f"session counters must be SessionCounters or mapping, got {type(counters).__name__}")
    attempts = counters.get("escalation_attempts", counters.get("escalationAttempts", 0))
    try:
        return SessionCounters(escalation_attempts=attempts)
    except ValidationError as e:
        raise EngineInputError(f"Invalid session counters: {e}") from e


class EscalationEngine:
    """Per-turn escalation and confidence decision engine."""

    def __init__(self, history_limit: Optional[int] = None, max_query_length: Optional[int] = None):
        """
        Args:
            history_limit: History window size (defaults to HISTORY_WINDOW_LIMIT)
            max_query_length: Longest accepted query (defaults to MAX_QUERY_LENGTH)
        """
        config = get_config()
        self.history_limit = config["HISTORY_WINDOW_LIMIT"] if history_limit is None else history_limit
        self.max_query_length = config["MAX_QUERY_LENGTH"] if max_query_length is None else max_query_length

        self.classifier = IntentClassifier()
        self.escalation_scorer = EscalationScorer()
        self.confidence_scorer = ConfidenceScorer()
        self.fallback_selector = FallbackStrategySelector()

        logger.info(
            "EscalationEngine initialized",
            history_limit=self.history_limit,
            max_query_length=self.max_query_length
        )

    def _validate_inputs(
        self,
        query: Any,
        session_history: Any,
        knowledge_items: Any,
        business_name: Any,
        confidence_threshold: Any
    ) -> None:
        ensure_text(query, max_length=self.max_query_length)
        ensure_text(business_name, field="business_name")
        for name, value in (("session_history", session_history), ("knowledge_items", knowledge_items)):
            if value is not None and (isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable)):
                raise EngineInputError(f"{name} must be a sequence, got {type(value).__name__}")
        if confidence_threshold is not None:
            if isinstance(confidence_threshold, bool) or not isinstance(confidence_threshold, (int, float)):
                raise EngineInputError("confidence_threshold must be a number")
            if not 0 <= confidence_threshold <= 100:
                raise EngineInputError("confidence_threshold must be within 0-100")

    def evaluate_turn(
        self,
        query: str,
        session_history: Optional[Iterable[TurnLogEntry]] = None,
        session_counters: Optional[CountersLike] = None,
        knowledge_items: Optional[Sequence[KnowledgeLike]] = None,
        business_name: str = "",
        confidence_threshold: Optional[float] = None,
        available_categories: Optional[Iterable[CategoryLike]] = None
    ) -> TurnEvaluation:
        """
        Evaluate one incoming customer message.

        Args:
            query: Raw customer message
            session_history: Full time-ordered turn log of the session (oldest first)
            session_counters: Caller-owned counters; returned unchanged
            knowledge_items: Knowledge retrieved for this query
            business_name: Used when rendering the fallback prompt
            confidence_threshold: Caller policy; a fallback strategy is selected
                only when given and the confidence score is below it
            available_categories: Knowledge categories the business has content for
                (defaults to the categories of knowledge_items)

        Returns:
            TurnEvaluation with intent, escalation decision, confidence,
            conversation state and, when requested, a fallback strategy

        Raises:
            EngineInputError: If any input has the wrong shape; nothing is scored
        """
        with Timer("turn_evaluation"):
            try:
                self._validate_inputs(query, session_history, knowledge_items, business_name, confidence_threshold)
                counters = coerce_counters(session_counters)
                items: List[KnowledgeItem] = [coerce_knowledge_item(item) for item in (knowledge_items or [])]
                window = build_history_window(session_history, self.history_limit)
            except EngineInputError as e:
                logger.warning("Turn evaluation rejected", error=str(e))
                raise

            intent = self.classifier.classify(query, window)

            escalation_signals = self.escalation_scorer.score_breakdown(query, window, counters)
            escalation_score = clamp_score(sum(escalation_signals.values()))
            tier = tier_for_score(escalation_score)
            should_escalate_now = escalation_score >= EscalationTier.TIER_4.threshold

            conversation_state = derive_conversation_state(window, intent, escalation_score)

            decision = EscalationDecision(
                escalation_score=escalation_score,
                tier=tier,
                intent=intent,
                conversation_state=conversation_state,
                should_escalate_now=should_escalate_now,
                signals=escalation_signals,
            )

            confidence_signals = self.confidence_scorer.score_breakdown(query, items, window)
            confidence = ConfidenceResult(
                confidence_score=clamp_score(sum(confidence_signals.values())),
                signals=confidence_signals,
            )

            fallback_strategy = None
            if confidence_threshold is not None and confidence.confidence_score < confidence_threshold:
                if available_categories is None:
                    available_categories = {item.category for item in items}
                fallback_strategy = self.fallback_selector.select(
                    query, intent, business_name, available_categories
                )

            proactive_offer = self.escalation_scorer.select_proactive_offer(escalation_score, intent, query)

            evaluation = TurnEvaluation(
                intent=intent,
                escalation_decision=decision,
                confidence_result=confidence,
                conversation_state=conversation_state,
                fallback_strategy=fallback_strategy,
                proactive_offer=proactive_offer,
                case_number=self.classifier.extract_case_number(query),
                session_counters=counters,
                recommended_attempt_increment=1 if should_escalate_now else 0,
                history_window=window,
            )

            logger.info(
                "Turn evaluated",
                intent=intent.value,
                escalation_score=escalation_score,
                tier=tier.value if tier else None,
                action=decision.recommended_action,
                state=conversation_state.value,
                confidence_score=confidence.confidence_score,
                fallback=fallback_strategy.name.value if fallback_strategy else None,
                proactive_offer=proactive_offer.value,
                window_length=len(window),
                query_preview=sanitize_for_logging(query, 100)
            )
            return evaluation


# Global engine instance
_engine_instance: Optional[EscalationEngine] = None


def get_engine() -> EscalationEngine:
    """
    Get the global engine instance built from configuration.

    Returns:
        EscalationEngine instance
    """
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = EscalationEngine()
    return _engine_instance


def evaluate_turn(
    query: str,
    session_history: Optional[Iterable[TurnLogEntry]] = None,
    session_counters: Optional[CountersLike] = None,
    knowledge_items: Optional[Sequence[KnowledgeLike]] = None,
    business_name: str = "",
    confidence_threshold: Optional[float] = None,
    available_categories: Optional[Iterable[CategoryLike]] = None
) -> TurnEvaluation:
    """Module-level shortcut for get_engine().evaluate_turn(...)."""
    return get_engine().evaluate_turn(
        query,
        session_history=session_history,
        session_counters=session_counters,
        knowledge_items=knowledge_items,
        business_name=business_name,
        confidence_threshold=confidence_threshold,
        available_categories=available_categories,
    )
