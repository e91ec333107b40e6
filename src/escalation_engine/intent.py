"""
Rule-based customer intent classification.

Intent is decided by an ordered decision list: the first rule whose predicate
matches the lower-cased query wins and later rules are never evaluated. Rule
order therefore encodes precedence, e.g. a returning customer who asks for a
human while quoting a case number is an escalation request, not a case
follow-up.

Usage:
    classifier = IntentClassifier()
    intent = classifier.classify("I want to speak to a manager about case 123456", [])
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from loguru import logger

from escalation_engine.models import Intent, Turn
from escalation_engine.utils import ensure_text, sanitize_for_logging


@dataclass
class IntentPatterns:
    """Pattern definitions for intent classification."""

    HUMAN_REQUEST = re.compile(r'speak to|talk to|human|agent|representative|manager|supervisor')

    # Case mention that upgrades a human request to a returning-customer escalation
    EXISTING_CASE = re.compile(r'\b(?:case|ticket|reference|escalation)')

    CASE_FOLLOWUP = re.compile(
        r'\b(?:case|ticket|reference)'
        r'|follow.*up'
        r'|status.*case|case.*status'
        r'|escalation.*number|case.*number'
    )

    GREETING = re.compile(r'^(?:hi|hello|hey|good morning|good afternoon|good evening)\b')

    COMPLAINT = re.compile(r'complaint|problem|issue|wrong|error|broken|not working|disappointed')

    PRICING = re.compile(r'price|cost|how much|fee|charge|payment')

    # Ordered most specific first; a captured reference must contain a digit
    CASE_NUMBER_PATTERNS = [
        re.compile(r'\bcase\s*#?\s*((?=[A-Z]*[0-9])[A-Z0-9]{6,})', re.IGNORECASE),
        re.compile(r'\bticket\s*#?\s*((?=[A-Z]*[0-9])[A-Z0-9]{6,})', re.IGNORECASE),
        re.compile(r'\breference\s*#?\s*((?=[A-Z]*[0-9])[A-Z0-9]{6,})', re.IGNORECASE),
        re.compile(r'\bescalation\s*#?\s*((?=[A-Z]*[0-9])[A-Z0-9]{6,})', re.IGNORECASE),
        re.compile(r'#((?=[A-Z]*[0-9])[A-Z0-9]{6,})', re.IGNORECASE),
        re.compile(r'\b((?=[A-Z]*[0-9])[A-Z0-9]{8,})\b', re.IGNORECASE),
    ]


@dataclass(frozen=True)
class IntentRule:
    """One entry of the ordered decision list."""
    name: str
    intent: Intent
    matches: Callable[[str], bool]


def _build_rules(patterns: IntentPatterns) -> List[IntentRule]:
    def human(q: str) -> bool:
        return bool(patterns.HUMAN_REQUEST.search(q))

    return [
        IntentRule(
            "human_request_with_case",
            Intent.ESCALATION_REQUEST,
            lambda q: human(q) and bool(patterns.EXISTING_CASE.search(q)),
        ),
        IntentRule(
            "case_followup",
            Intent.CASE_FOLLOWUP,
            lambda q: bool(patterns.CASE_FOLLOWUP.search(q)) and not human(q),
        ),
        IntentRule("greeting", Intent.GREETING, lambda q: bool(patterns.GREETING.search(q))),
        IntentRule("human_request", Intent.ESCALATION_REQUEST, human),
        IntentRule("complaint", Intent.COMPLAINT, lambda q: bool(patterns.COMPLAINT.search(q))),
        IntentRule("pricing", Intent.PRICING_INQUIRY, lambda q: bool(patterns.PRICING.search(q))),
    ]


class IntentClassifier:
    """Maps a query to exactly one Intent using ordered pattern precedence."""

    default_intent = Intent.INFORMATION_REQUEST

    def __init__(self):
        self.patterns = IntentPatterns()
        self.rules = _build_rules(self.patterns)

    def match(self, query: str) -> Tuple[Intent, str]:
        """
        Run the decision list and report which rule fired.

        Args:
            query: Raw customer message

        Returns:
            Tuple of (intent, rule_name); rule_name is "default" when nothing matched
        """
        lowered = ensure_text(query).strip().lower()
        for rule in self.rules:
            if rule.matches(lowered):
                return rule.intent, rule.name
        return self.default_intent, "default"

    def classify(self, query: str, history: Optional[List[Turn]] = None) -> Intent:
        """
        Classify the customer's intent.

        The history window is accepted for interface symmetry with the scorers;
        the current rules look at the query only.

        Args:
            query: Raw customer message
            history: Recent conversation window (oldest first)

        Returns:
            The Intent of the first matching rule, or INFORMATION_REQUEST
        """
        intent, rule_name = self.match(query)
        logger.debug(
            "Intent classified",
            intent=intent.value,
            rule=rule_name,
            query_preview=sanitize_for_logging(query, 80)
        )
        return intent

    def extract_case_number(self, query: str) -> Optional[str]:
        """
        Pull a case/ticket reference out of the query.

        Args:
            query: Raw customer message

        Returns:
            Upper-cased case number, or None when no reference is present
        """
        text = ensure_text(query)
        for pattern in self.patterns.CASE_NUMBER_PATTERNS:
            found = pattern.search(text)
            if found:
                return found.group(1).upper()
        return None
