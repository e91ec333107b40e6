"""
Automated-answer confidence scoring.

Confidence is independent of escalation urgency: a turn can be urgent and
easy to answer, or calm and unanswerable. The score sums six signals and is
clamped to [0, 100] at the end:

- data_relevance (0..40): query-word coverage of each knowledge item, x10, summed
- query_complexity (+20/+15/+10): shorter queries are easier to answer well
- context_availability (0..25): +5 per turn in the history window
- data_quality (0/8/15): whether retrieved items carry substantive text
- complex_topic (-30): topics that need human judgement regardless of matches
- repeated_failure (0/-15/-30): assistant turns that admitted not knowing
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from escalation_engine.escalation import EscalationLexicon
from escalation_engine.history import assistant_contents
from escalation_engine.models import KnowledgeItem, Turn
from escalation_engine.utils import clamp_score, ensure_text, sanitize_for_logging


@dataclass
class ConfidenceWeights:
    """Thresholds, weights and lexicons used by the confidence signals."""

    MIN_WORD_LENGTH = 3
    RELEVANCE_PER_ITEM = 10
    RELEVANCE_CAP = 40

    # (max word count, contribution), checked in order
    COMPLEXITY_BANDS = ((5, 20), (10, 15))
    COMPLEXITY_DEFAULT = 10

    CONTEXT_PER_TURN = 5
    CONTEXT_CAP = 25

    SUBSTANTIVE_TEXT_LENGTH = 50
    QUALITY_SUBSTANTIVE = 15
    QUALITY_PRESENT = 8

    COMPLEX_TOPICS = EscalationLexicon.COMPLEX_TOPICS + ('locked out', 'technical failure')
    COMPLEX_TOPIC_PENALTY = -30

    ADMISSION_PATTERNS = (
        re.compile(r"i don't have"),
        re.compile(r"i don't know"),
        re.compile(r"not available"),
        re.compile(r"wish i had more"),
        re.compile(r"i'd love to help\b.*\bbut\b"),
    )
    REPEATED_FAILURE_PENALTY = -30
    SINGLE_FAILURE_PENALTY = -15


@dataclass(frozen=True)
class ConfidenceContext:
    """Inputs shared by every confidence signal."""
    query: str
    words: List[str]
    items: List[KnowledgeItem]
    history: List[Turn]


def rank_knowledge_items(query: str, items: Sequence[KnowledgeItem], limit: int = 8) -> List[KnowledgeItem]:
    """
    Order knowledge items by keyword overlap with the query.

    A query word (longer than two characters) found in the primary text is
    worth 3, found in the secondary text worth 1. Items with no overlap are
    dropped; ties keep their original order.

    Args:
        query: Raw customer message
        items: Candidate knowledge items
        limit: Maximum number of items to return

    Returns:
        Up to `limit` items, most relevant first
    """
    words = [word for word in ensure_text(query).lower().split() if len(word) > 2]
    scored: List[Tuple[int, int, KnowledgeItem]] = []
    for position, item in enumerate(items):
        primary = item.primary_text.lower()
        secondary = item.secondary_text.lower()
        relevance = sum(
            (3 if word in primary else 0) + (1 if word in secondary else 0)
            for word in words
        )
        if relevance > 0:
            scored.append((relevance, position, item))

    scored.sort(key=lambda entry: (-entry[0], entry[1]))
    return [item for _, _, item in scored[:limit]]


class ConfidenceScorer:
    """Computes the 0-100 automated-answer confidence score."""

    def __init__(self):
        self.weights = ConfidenceWeights()
        self.signals: List[Tuple[str, Callable[[ConfidenceContext], int]]] = [
            ("data_relevance", self._data_relevance),
            ("query_complexity", self._query_complexity),
            ("context_availability", self._context_availability),
            ("data_quality", self._data_quality),
            ("complex_topic", self._complex_topic),
            ("repeated_failure", self._repeated_failure),
        ]

    def _data_relevance(self, ctx: ConfidenceContext) -> int:
        if not ctx.items or not ctx.words:
            return 0
        relevance = 0.0
        for item in ctx.items:
            item_text = item.combined_text.lower()
            matching = [
                word for word in ctx.words
                if len(word) >= self.weights.MIN_WORD_LENGTH and word in item_text
            ]
            relevance += len(matching) / len(ctx.words) * self.weights.RELEVANCE_PER_ITEM
        return clamp_score(relevance, high=self.weights.RELEVANCE_CAP)

    def _query_complexity(self, ctx: ConfidenceContext) -> int:
        for max_words, contribution in self.weights.COMPLEXITY_BANDS:
            if len(ctx.words) <= max_words:
                return contribution
        return self.weights.COMPLEXITY_DEFAULT

    def _context_availability(self, ctx: ConfidenceContext) -> int:
        return min(len(ctx.history) * self.weights.CONTEXT_PER_TURN, self.weights.CONTEXT_CAP)

    def _data_quality(self, ctx: ConfidenceContext) -> int:
        if not ctx.items:
            return 0
        if any(len(item.secondary_text) > self.weights.SUBSTANTIVE_TEXT_LENGTH for item in ctx.items):
            return self.weights.QUALITY_SUBSTANTIVE
        return self.weights.QUALITY_PRESENT

    def _complex_topic(self, ctx: ConfidenceContext) -> int:
        if any(topic in ctx.query for topic in self.weights.COMPLEX_TOPICS):
            return self.weights.COMPLEX_TOPIC_PENALTY
        return 0

    def _repeated_failure(self, ctx: ConfidenceContext) -> int:
        failures = sum(
            1 for text in assistant_contents(ctx.history)
            if any(pattern.search(text) for pattern in self.weights.ADMISSION_PATTERNS)
        )
        if failures >= 2:
            return self.weights.REPEATED_FAILURE_PENALTY
        if failures == 1:
            return self.weights.SINGLE_FAILURE_PENALTY
        return 0

    def score_breakdown(
        self,
        query: str,
        knowledge_items: Optional[Sequence[KnowledgeItem]] = None,
        history: Optional[List[Turn]] = None
    ) -> Dict[str, int]:
        """
        Evaluate every signal without clamping the total.

        Args:
            query: Raw customer message
            knowledge_items: Items retrieved for this query
            history: Recent conversation window (oldest first)

        Returns:
            Ordered mapping of signal name to signed contribution
        """
        lowered = ensure_text(query).lower().replace("’", "'")
        ctx = ConfidenceContext(
            query=lowered,
            words=lowered.split(),
            items=list(knowledge_items or []),
            history=list(history or []),
        )
        return {name: signal(ctx) for name, signal in self.signals}

    def score(
        self,
        query: str,
        knowledge_items: Optional[Sequence[KnowledgeItem]] = None,
        history: Optional[List[Turn]] = None
    ) -> int:
        """
        Compute the clamped confidence score.

        Args:
            query: Raw customer message
            knowledge_items: Items retrieved for this query
            history: Recent conversation window (oldest first)

        Returns:
            Confidence score in [0, 100]
        """
        breakdown = self.score_breakdown(query, knowledge_items, history)
        total = clamp_score(sum(breakdown.values()))
        logger.debug(
            "Confidence score computed",
            score=total,
            raw_total=sum(breakdown.values()),
            signals=breakdown,
            knowledge_items=len(knowledge_items or []),
            query_preview=sanitize_for_logging(query, 80)
        )
        return total
