"""Conversation state derivation from history, intent and escalation score."""

from typing import List, Optional

from escalation_engine.models import ConversationState, EscalationTier, Intent, Turn


def derive_conversation_state(
    history: Optional[List[Turn]],
    intent: Intent,
    escalation_score: int
) -> ConversationState:
    """
    Derive where the dialogue stands; the first matching rule wins.

    ISSUE_RESOLVED is never derived here, only set by the caller (e.g. an
    agent closing the session).

    Args:
        history: Recent conversation window (oldest first)
        intent: Classified intent of the current query
        escalation_score: Clamped escalation score of the current query

    Returns:
        ConversationState for the current turn
    """
    if not history:
        return ConversationState.INITIAL_CONTACT

    # Case follow-ups share the information-seeking state
    if intent == Intent.CASE_FOLLOWUP:
        return ConversationState.SEEKING_INFO

    if intent == Intent.ESCALATION_REQUEST or escalation_score >= EscalationTier.TIER_4.threshold:
        return ConversationState.ESCALATION_ACTIVE

    if escalation_score >= EscalationTier.TIER_3.threshold:
        return ConversationState.CONSIDERING_ESCALATION

    if intent == Intent.COMPLAINT:
        return ConversationState.SOLVING_ISSUE

    return ConversationState.SEEKING_INFO
