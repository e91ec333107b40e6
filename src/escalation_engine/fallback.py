"""
Low-confidence fallback strategy selection and prompt templates.

When the caller decides an automated answer is not confident enough, the
selector picks one response strategy by walking a fixed priority order; the
first strategy whose condition holds wins. Each strategy names a prompt
template that the LLM collaborator fills in. Templates acknowledge the
customer and redirect them; they never describe how the assistant works
internally.

Priority order:
1. pricing_available        pricing-shaped query, services or products known
2. service_inquiry          booking / appointment-shaped query
3. check_faq_policy         technical-support query, FAQs or policies known
4. general_info_available   generic query, any knowledge known
5. case_followup_fallback   intent is case_followup
6. suggest_available_topics some knowledge known
7. general_fallback         nothing known
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Set, Union

from loguru import logger

from escalation_engine.intent import IntentPatterns
from escalation_engine.models import (
    FallbackStrategy,
    FallbackStrategyName,
    Intent,
    KnowledgeCategory,
)
from escalation_engine.utils import EngineInputError, ensure_text, sanitize_for_logging


FALLBACK_TEMPLATES = {
    FallbackStrategyName.PRICING_AVAILABLE: """
Customer asked about pricing: "{query}"
Business: {business_name}

Generate a CONCISE response (1-2 sentences) that:
1. Acknowledges their pricing question
2. Points them to the services or products they may be interested in
3. Suggests contacting {business_name} directly for an exact quote
4. Skip greetings and filler phrases - be direct

Only describe how {business_name} can help; never explain how this assistant works.

Example: "Happy to help with pricing! Let me know which service or product you're looking at, or reach out to us directly for an exact quote.\"""",

    FallbackStrategyName.SERVICE_INQUIRY: """
Customer asked about booking/appointments: "{query}"
Business: {business_name}

Generate a helpful response that:
1. Acknowledges their interest in our services
2. Offers to share details about the service they're interested in
3. Explains that bookings and scheduling are arranged directly with {business_name}
4. Keep it warm and helpful

Only describe how {business_name} can help; never explain how this assistant works.

Example: "I'd be glad to tell you more about our services! Which one interests you? For booking a time, please contact us directly and we'll get you scheduled.\"""",

    FallbackStrategyName.CHECK_FAQ_POLICY: """
Customer asked for technical help: "{query}"
Business: {business_name}

Generate a helpful response that:
1. Acknowledges their technical question
2. Mentions our FAQs and policies may cover this
3. Asks them to describe the specific issue in a bit more detail
4. Keep it supportive and solution-oriented

Only describe how {business_name} can help; never explain how this assistant works.

Example: "Let's get this sorted! Our FAQs and policies may cover it. Could you tell me a bit more about what you're seeing?\"""",

    FallbackStrategyName.GENERAL_INFO_AVAILABLE: """
Customer asked: "{query}"
Business: {business_name}

Generate a CONCISE response (1-2 sentences) that:
1. Acknowledges their question
2. Asks them to be more specific or try a related question
3. Skip greetings and filler phrases - be direct

Only describe how {business_name} can help; never explain how this assistant works.

Example: "Could you tell me a little more about what you're looking for? I'm happy to help with anything about {business_name}.\"""",

    FallbackStrategyName.CASE_FOLLOWUP_FALLBACK: """
Customer is asking about case status: "{query}"
Business: {business_name}

Generate a helpful response that:
1. Acknowledges their request to check on a case
2. Asks for their case number if they haven't provided one
3. Explains case numbers are usually 6 or more characters
4. Assures them you'll help once you have the case number
5. Keep it professional and supportive

Only describe how {business_name} can help; never explain how this assistant works.""",

    FallbackStrategyName.SUGGEST_AVAILABLE_TOPICS: """
Customer asked: "{query}"
Business: {business_name}

Generate a helpful response that:
1. Acknowledges their question
2. Suggests topics you can help with:
   - Our services and pricing
   - Our products and costs
   - Company policies and procedures
   - Frequently asked questions
3. Asks what they'd like to know more about
4. Keep it positive and solution-focused

Only describe how {business_name} can help; never explain how this assistant works.

Example: "I can help with our services, products, company policies or common questions. What would you like to know more about?\"""",

    FallbackStrategyName.GENERAL_FALLBACK: """
Customer asked: "{query}"
Business: {business_name}

Generate a CONCISE response (1-2 sentences) that:
1. Briefly asks for a little more detail
2. Ask a direct clarifying question
3. Skip greetings and filler phrases - be direct

Only describe how {business_name} can help; never explain how this assistant works.

Example: "Could you tell me a bit more so I can point you in the right direction?\"""",
}


@dataclass
class TopicPatterns:
    """Query shapes the selector recognizes."""

    PRICING = re.compile(IntentPatterns.PRICING.pattern + r'|quote|\brates?\b')
    BOOKING = re.compile(r'\bbook|appointment|schedul|reserv|availability|available slot')
    TECHNICAL = re.compile(
        r'technical|not working|broken|error|bug|crash|troubleshoot|log ?in|password'
        r'|install|set ?up|doesn\'t work|won\'t'
    )


@dataclass(frozen=True)
class StrategyRule:
    """A strategy with its priority and selection condition."""
    name: FallbackStrategyName
    priority: int
    applies: Callable[[str, Intent, Set[KnowledgeCategory]], bool]


NON_GENERIC_INTENTS = {Intent.CASE_FOLLOWUP, Intent.COMPLAINT, Intent.ESCALATION_REQUEST}

CategoryLike = Union[KnowledgeCategory, str]


def _coerce_categories(available_categories: Optional[Iterable[CategoryLike]]) -> Set[KnowledgeCategory]:
    if available_categories is None:
        return set()
    if isinstance(available_categories, (str, bytes)):
        raise EngineInputError("available_categories must be an iterable of categories, not a string")
    categories = set()
    for category in available_categories:
        try:
            categories.add(KnowledgeCategory(category))
        except ValueError as e:
            raise EngineInputError(f"Unknown knowledge category: {category!r}") from e
    return categories


def render_template(name: FallbackStrategyName, query: str, business_name: str) -> str:
    """Fill a fallback template with the customer's query and the business name."""
    return FALLBACK_TEMPLATES[name].format(query=query, business_name=business_name or "our business")


class FallbackStrategySelector:
    """Chooses the response strategy for a low-confidence turn."""

    def __init__(self):
        self.topics = TopicPatterns()
        self.rules: List[StrategyRule] = [
            StrategyRule(
                FallbackStrategyName.PRICING_AVAILABLE, 1,
                lambda q, intent, cats: bool(self.topics.PRICING.search(q))
                and bool(cats & {KnowledgeCategory.SERVICE, KnowledgeCategory.PRODUCT}),
            ),
            StrategyRule(
                FallbackStrategyName.SERVICE_INQUIRY, 2,
                lambda q, intent, cats: bool(self.topics.BOOKING.search(q)),
            ),
            StrategyRule(
                FallbackStrategyName.CHECK_FAQ_POLICY, 3,
                lambda q, intent, cats: bool(self.topics.TECHNICAL.search(q))
                and bool(cats & {KnowledgeCategory.FAQ, KnowledgeCategory.POLICY}),
            ),
            StrategyRule(
                FallbackStrategyName.GENERAL_INFO_AVAILABLE, 4,
                lambda q, intent, cats: intent not in NON_GENERIC_INTENTS and bool(cats),
            ),
            StrategyRule(
                FallbackStrategyName.CASE_FOLLOWUP_FALLBACK, 5,
                lambda q, intent, cats: intent == Intent.CASE_FOLLOWUP,
            ),
            StrategyRule(
                FallbackStrategyName.SUGGEST_AVAILABLE_TOPICS, 6,
                lambda q, intent, cats: bool(cats),
            ),
            StrategyRule(
                FallbackStrategyName.GENERAL_FALLBACK, 7,
                lambda q, intent, cats: True,
            ),
        ]

    def select(
        self,
        query: str,
        intent: Intent,
        business_name: str,
        available_categories: Optional[Iterable[CategoryLike]] = None
    ) -> FallbackStrategy:
        """
        Select the fallback strategy for a low-confidence turn.

        Args:
            query: Raw customer message
            intent: Classified intent of the query
            business_name: Name used when rendering the template
            available_categories: Knowledge categories the business has content for

        Returns:
            FallbackStrategy with its template id, priority and rendered prompt
        """
        ensure_text(query)
        ensure_text(business_name, field="business_name")
        categories = _coerce_categories(available_categories)
        lowered = query.lower().replace("’", "'")

        for rule in self.rules:
            if rule.applies(lowered, intent, categories):
                strategy = FallbackStrategy(
                    name=rule.name,
                    template_id=rule.name.value,
                    priority=rule.priority,
                    prompt=render_template(rule.name, query, business_name),
                )
                logger.info(
                    "Fallback strategy selected",
                    strategy=rule.name.value,
                    priority=rule.priority,
                    intent=intent.value,
                    categories=sorted(c.value for c in categories),
                    query_preview=sanitize_for_logging(query, 80)
                )
                return strategy

        # Unreachable: general_fallback always applies
        raise RuntimeError("No fallback strategy applied")
