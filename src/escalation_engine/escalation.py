"""
Escalation urgency scoring.

The escalation score is the sum of six independent signals over the query, the
history window and the session counters, clamped to [0, 100] only after every
contribution has been added:

- explicit_request: +100 for a "talk to a human" phrase
- frustration: single strongest band of the frustration lexicon (+30 to +60)
- repeated_attempts: +20 per prior immediate escalation in the session
- urgency: single strongest band of the urgency lexicon (+15 to +40)
- history_pressure: +15 for >2 customer turns, +25 for >1 assistant admission
- critical_topic: +10 for concrete information-seeking (price, booking, ...)

Banded lexicons are ordered (keywords, weight) lists evaluated top to bottom
with early exit, so at most one band of each lexicon contributes.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from escalation_engine.history import assistant_contents, count_role
from escalation_engine.models import (
    EscalationTier,
    Intent,
    ProactiveOffer,
    SessionCounters,
    Turn,
    TurnRole,
)
from escalation_engine.utils import clamp_score, ensure_text, sanitize_for_logging


Band = Tuple[Tuple[str, ...], int]


@dataclass
class EscalationLexicon:
    """Keyword sets and weights used by the escalation signals."""

    EXPLICIT_REQUEST = (
        'speak to human', 'talk to person', 'escalate', 'supervisor',
        'manager', 'representative', 'agent', 'support team',
        'talk to someone', 'human help', 'real person', 'human representative',
        'talk to a human', 'speak to a human', 'talk to a person', 'speak to a person',
        'talk to a real person'
    )
    EXPLICIT_REQUEST_WEIGHT = 100

    # Strongest first
    FRUSTRATION_BANDS = (
        (('angry', 'furious', 'outraged'), 60),
        (('useless', 'pointless', 'waste of time'), 55),
        (('terrible', 'awful', 'horrible', 'worst'), 50),
        (('frustrated', 'annoyed', 'upset'), 45),
        (('disappointed', 'unsatisfied', 'unhappy'), 30),
    )

    URGENCY_BANDS = (
        (('urgent', 'emergency', 'asap', 'immediately'), 40),
        (('important', 'critical', 'serious'), 25),
        (('complex', 'complicated', 'difficult'), 15),
    )

    ATTEMPT_WEIGHT = 20

    CUSTOMER_TURNS_THRESHOLD = 2
    CUSTOMER_TURNS_WEIGHT = 15
    ADMISSION_PHRASES = ("don't have", "don't know", "not available")
    ADMISSIONS_THRESHOLD = 1
    ADMISSIONS_WEIGHT = 25

    CRITICAL_TOPICS = (
        'price', 'cost', 'appointment', 'booking', 'schedule',
        'availability', 'order', 'delivery', 'contact', 'phone', 'email'
    )
    CRITICAL_TOPIC_WEIGHT = 10

    # Topics that need human judgement; used for proactive offers
    COMPLEX_TOPICS = (
        'return', 'refund', 'money back', 'cancel order', 'change order',
        'dispute', 'complaint', 'billing issue', 'payment problem',
        'account locked', 'technical issue', 'warranty', 'guarantee',
        'defective', 'lost package', 'damaged', 'not working', 'broken'
    )


@dataclass(frozen=True)
class SignalContext:
    """Inputs shared by every escalation signal."""
    query: str
    history: List[Turn]
    counters: SessionCounters


def first_band_weight(text: str, bands: Tuple[Band, ...]) -> int:
    """Weight of the first band with any keyword contained in text, else 0."""
    for keywords, weight in bands:
        if any(keyword in text for keyword in keywords):
            return weight
    return 0


def tier_for_score(score: int) -> Optional[EscalationTier]:
    """Highest tier whose threshold the score reaches, or None below TIER_1."""
    for tier in (EscalationTier.TIER_4, EscalationTier.TIER_3, EscalationTier.TIER_2, EscalationTier.TIER_1):
        if score >= tier.threshold:
            return tier
    return None


class EscalationScorer:
    """Computes the 0-100 escalation urgency score."""

    def __init__(self):
        self.lexicon = EscalationLexicon()
        self.signals: List[Tuple[str, Callable[[SignalContext], int]]] = [
            ("explicit_request", self._explicit_request),
            ("frustration", self._frustration),
            ("repeated_attempts", self._repeated_attempts),
            ("urgency", self._urgency),
            ("history_pressure", self._history_pressure),
            ("critical_topic", self._critical_topic),
        ]

    def _explicit_request(self, ctx: SignalContext) -> int:
        if any(phrase in ctx.query for phrase in self.lexicon.EXPLICIT_REQUEST):
            return self.lexicon.EXPLICIT_REQUEST_WEIGHT
        return 0

    def _frustration(self, ctx: SignalContext) -> int:
        return first_band_weight(ctx.query, self.lexicon.FRUSTRATION_BANDS)

    def _repeated_attempts(self, ctx: SignalContext) -> int:
        return self.lexicon.ATTEMPT_WEIGHT * ctx.counters.escalation_attempts

    def _urgency(self, ctx: SignalContext) -> int:
        return first_band_weight(ctx.query, self.lexicon.URGENCY_BANDS)

    def _history_pressure(self, ctx: SignalContext) -> int:
        if not ctx.history:
            return 0
        pressure = 0
        if count_role(ctx.history, TurnRole.CUSTOMER) > self.lexicon.CUSTOMER_TURNS_THRESHOLD:
            pressure += self.lexicon.CUSTOMER_TURNS_WEIGHT
        admissions = [
            text for text in assistant_contents(ctx.history)
            if any(phrase in text for phrase in self.lexicon.ADMISSION_PHRASES)
        ]
        if len(admissions) > self.lexicon.ADMISSIONS_THRESHOLD:
            pressure += self.lexicon.ADMISSIONS_WEIGHT
        return pressure

    def _critical_topic(self, ctx: SignalContext) -> int:
        if any(topic in ctx.query for topic in self.lexicon.CRITICAL_TOPICS):
            return self.lexicon.CRITICAL_TOPIC_WEIGHT
        return 0

    def score_breakdown(
        self,
        query: str,
        history: Optional[List[Turn]] = None,
        counters: Optional[SessionCounters] = None
    ) -> Dict[str, int]:
        """
        Evaluate every signal without clamping.

        Args:
            query: Raw customer message
            history: Recent conversation window (oldest first)
            counters: Session counters supplied by the caller

        Returns:
            Ordered mapping of signal name to signed contribution
        """
        ctx = SignalContext(
            query=ensure_text(query).lower().replace("’", "'"),
            history=list(history or []),
            counters=counters or SessionCounters(),
        )
        return {name: signal(ctx) for name, signal in self.signals}

    def score(
        self,
        query: str,
        history: Optional[List[Turn]] = None,
        counters: Optional[SessionCounters] = None
    ) -> int:
        """
        Compute the clamped escalation score.

        Args:
            query: Raw customer message
            history: Recent conversation window (oldest first)
            counters: Session counters supplied by the caller

        Returns:
            Escalation score in [0, 100]
        """
        breakdown = self.score_breakdown(query, history, counters)
        total = clamp_score(sum(breakdown.values()))
        logger.debug(
            "Escalation score computed",
            score=total,
            raw_total=sum(breakdown.values()),
            signals=breakdown,
            query_preview=sanitize_for_logging(query, 80)
        )
        return total

    def mentions_complex_topic(self, query: str) -> bool:
        lowered = ensure_text(query).lower()
        return any(topic in lowered for topic in self.lexicon.COMPLEX_TOPICS)

    def select_proactive_offer(self, score: int, intent: Intent, query: str) -> ProactiveOffer:
        """
        Decide whether an automated answer should carry an escalation hint.

        Args:
            score: Clamped escalation score for the turn
            intent: Classified intent
            query: Raw customer message

        Returns:
            ProactiveOffer; NONE when the turn escalates immediately or no rule applies
        """
        tier = tier_for_score(score)
        if tier == EscalationTier.TIER_4:
            return ProactiveOffer.NONE
        if tier == EscalationTier.TIER_3:
            return ProactiveOffer.OFFER_ESCALATION
        if tier == EscalationTier.TIER_2 and intent == Intent.PRICING_INQUIRY:
            return ProactiveOffer.PRICING_DETAILS
        if score >= EscalationTier.TIER_2.threshold and self.mentions_complex_topic(query):
            return ProactiveOffer.COMPLEX_TOPIC
        return ProactiveOffer.NONE
