"""
Pydantic data models for the escalation engine.

This module defines the closed vocabularies (roles, intents, states, tiers,
strategies) and the immutable value objects exchanged between the engine and
its caller.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, validator


# UTC datetime factory function
def utc_now():
    """Factory function to get current UTC datetime."""
    return datetime.now(timezone.utc)


# Enums for controlled vocabulary
class TurnRole(str, Enum):
    """Who sent a turn, in the engine's three-way role model."""
    CUSTOMER = "customer"
    ASSISTANT = "assistant"
    HUMAN_AGENT = "human-agent"


class Intent(str, Enum):
    """What the customer is trying to do with the current message."""
    INFORMATION_REQUEST = "information_request"
    COMPLAINT = "complaint"
    PRICING_INQUIRY = "pricing_inquiry"
    ESCALATION_REQUEST = "escalation_request"
    CASE_FOLLOWUP = "case_followup"
    GREETING = "greeting"


class ConversationState(str, Enum):
    """Where the dialogue currently stands."""
    INITIAL_CONTACT = "initial_contact"
    SEEKING_INFO = "seeking_info"
    SOLVING_ISSUE = "solving_issue"
    CONSIDERING_ESCALATION = "considering_escalation"
    ESCALATION_ACTIVE = "escalation_active"
    ISSUE_RESOLVED = "issue_resolved"  # set by caller action only


class EscalationTier(str, Enum):
    """Escalation-urgency bands with their threshold and recommended action."""
    TIER_1 = "TIER_1"
    TIER_2 = "TIER_2"
    TIER_3 = "TIER_3"
    TIER_4 = "TIER_4"

    @property
    def threshold(self) -> int:
        return _TIER_THRESHOLDS[self]

    @property
    def action(self) -> str:
        return _TIER_ACTIONS[self]


_TIER_THRESHOLDS = {
    EscalationTier.TIER_1: 25,   # Missing information
    EscalationTier.TIER_2: 50,   # Complex request
    EscalationTier.TIER_3: 75,   # Frustrated customer
    EscalationTier.TIER_4: 100,  # Explicit human request
}

_TIER_ACTIONS = {
    EscalationTier.TIER_1: "handle_gracefully",
    EscalationTier.TIER_2: "suggest_alternatives",
    EscalationTier.TIER_3: "offer_escalation",
    EscalationTier.TIER_4: "immediate_escalation",
}

HANDLE_NORMALLY = "handle_normally"


class KnowledgeCategory(str, Enum):
    """Kinds of business knowledge a retrieved item can come from."""
    FAQ = "faq"
    PRODUCT = "product"
    SERVICE = "service"
    POLICY = "policy"
    KNOWLEDGE = "knowledge"


class FallbackStrategyName(str, Enum):
    """Response-generation approaches used when confidence is low."""
    PRICING_AVAILABLE = "pricing_available"
    SERVICE_INQUIRY = "service_inquiry"
    CHECK_FAQ_POLICY = "check_faq_policy"
    GENERAL_INFO_AVAILABLE = "general_info_available"
    CASE_FOLLOWUP_FALLBACK = "case_followup_fallback"
    SUGGEST_AVAILABLE_TOPICS = "suggest_available_topics"
    GENERAL_FALLBACK = "general_fallback"


class ProactiveOffer(str, Enum):
    """Escalation hint the caller may append to an automated answer."""
    NONE = "none"
    OFFER_ESCALATION = "offer_escalation"
    PRICING_DETAILS = "pricing_details"
    COMPLEX_TOPIC = "complex_topic"


# Conversation inputs
class Turn(BaseModel):
    """One message exchanged in a session."""
    role: TurnRole = Field(..., description="Normalized sender role")
    content: str = Field("", description="Message text")
    timestamp: datetime = Field(default_factory=utc_now, description="When the turn was created")
    sender_label: Optional[str] = Field(None, description="Storage-specific sender label, kept for audit")

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "role": "customer",
                "content": "Do you deliver on weekends?",
                "timestamp": "2025-08-27T10:30:45.123Z",
                "sender_label": "customer"
            }
        }


class KnowledgeItem(BaseModel):
    """A retrieved candidate fact, treated as opaque text."""
    primary_text: str = Field("", description="Question, name or title")
    secondary_text: str = Field("", description="Answer, description or content")
    category: KnowledgeCategory = Field(KnowledgeCategory.KNOWLEDGE, description="Source kind of the item")

    @validator('primary_text', 'secondary_text', pre=True)
    def none_to_empty(cls, v):
        return "" if v is None else v

    @property
    def combined_text(self) -> str:
        return f"{self.primary_text} {self.secondary_text}"

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "primary_text": "What is your return policy?",
                "secondary_text": "Items can be returned within 30 days with the original receipt.",
                "category": "faq"
            }
        }


class SessionCounters(BaseModel):
    """Per-session counters owned and persisted by the caller."""
    escalation_attempts: int = Field(0, ge=0, description="Prior immediate-escalation decisions in this session")

    class Config:
        frozen = True


# Engine outputs
class EscalationDecision(BaseModel):
    """Urgency verdict for one turn."""
    escalation_score: int = Field(..., ge=0, le=100, description="Clamped urgency score")
    tier: Optional[EscalationTier] = Field(None, description="Highest tier whose threshold the score reaches")
    intent: Intent = Field(..., description="Classified intent of the query")
    conversation_state: ConversationState = Field(..., description="Derived conversation state")
    should_escalate_now: bool = Field(..., description="True iff the score reached the TIER_4 threshold")
    signals: Dict[str, int] = Field(default_factory=dict, description="Per-signal contributions before clamping")

    @property
    def recommended_action(self) -> str:
        return self.tier.action if self.tier else HANDLE_NORMALLY

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "escalation_score": 100,
                "tier": "TIER_4",
                "intent": "escalation_request",
                "conversation_state": "initial_contact",
                "should_escalate_now": True,
                "signals": {"explicit_request": 100, "frustration": 0, "repeated_attempts": 0,
                            "urgency": 0, "history_pressure": 0, "critical_topic": 0}
            }
        }


class ConfidenceResult(BaseModel):
    """How well an automated answer is expected to satisfy the query."""
    confidence_score: int = Field(..., ge=0, le=100, description="Clamped confidence score")
    signals: Dict[str, int] = Field(default_factory=dict, description="Per-signal contributions before clamping")

    class Config:
        frozen = True


class FallbackStrategy(BaseModel):
    """Selected low-confidence response approach and its rendered prompt."""
    name: FallbackStrategyName = Field(..., description="Strategy identifier")
    template_id: str = Field(..., description="Prompt template to hand to the LLM collaborator")
    priority: int = Field(..., ge=1, description="Position in the selection order, 1 is checked first")
    prompt: str = Field("", description="Template rendered with the query and business name")

    class Config:
        frozen = True


class TurnEvaluation(BaseModel):
    """Everything the engine decided about one incoming message."""
    intent: Intent
    escalation_decision: EscalationDecision
    confidence_result: ConfidenceResult
    conversation_state: ConversationState
    fallback_strategy: Optional[FallbackStrategy] = None
    proactive_offer: ProactiveOffer = ProactiveOffer.NONE
    case_number: Optional[str] = None
    session_counters: SessionCounters = Field(default_factory=SessionCounters)
    recommended_attempt_increment: int = Field(0, ge=0, le=1)
    history_window: List[Turn] = Field(default_factory=list)

    class Config:
        frozen = True


class ResponseQualityReport(BaseModel):
    """Heuristic checks on a generated answer."""
    has_content: bool
    appropriate_length: bool
    no_errors: bool
    helpful: bool
    quality_score: float = Field(..., ge=0.0, le=100.0)

    @property
    def failed_checks(self) -> List[str]:
        checks = {
            "has_content": self.has_content,
            "appropriate_length": self.appropriate_length,
            "no_errors": self.no_errors,
            "helpful": self.helpful,
        }
        return [name for name, passed in checks.items() if not passed]
