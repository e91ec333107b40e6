import pytest

from escalation_engine.engine import EscalationEngine, coerce_counters, coerce_knowledge_item, evaluate_turn
from escalation_engine.models import (
    ConversationState,
    EscalationTier,
    FallbackStrategyName,
    Intent,
    KnowledgeCategory,
    ProactiveOffer,
    SessionCounters,
)
from escalation_engine.utils import EngineInputError


@pytest.fixture
def engine():
    return EscalationEngine()


QUERIES = [
    "",
    "hello",
    "I want to talk to a manager",
    "I am furious, this is urgent, get me a supervisor right now, it is the worst",
    "What is your return policy?",
    "my refund for the damaged defective broken item " * 20,
    "How much does delivery cost?",
]


@pytest.mark.parametrize("query", QUERIES)
def test_scores_are_always_within_bounds(engine, query, admission_history, return_policy_faq):
    evaluation = engine.evaluate_turn(
        query,
        session_history=admission_history,
        session_counters=SessionCounters(escalation_attempts=7),
        knowledge_items=[return_policy_faq] * 10,
    )

    assert 0 <= evaluation.escalation_decision.escalation_score <= 100
    assert 0 <= evaluation.confidence_result.confidence_score <= 100


def test_explicit_human_request_escalates_immediately(engine):
    evaluation = engine.evaluate_turn("I want to talk to a manager", [], SessionCounters(), [])
    decision = evaluation.escalation_decision

    assert decision.escalation_score == 100
    assert decision.should_escalate_now
    assert decision.tier == EscalationTier.TIER_4
    assert decision.recommended_action == "immediate_escalation"
    assert evaluation.intent == Intent.ESCALATION_REQUEST
    assert evaluation.recommended_attempt_increment == 1
    assert evaluation.proactive_offer == ProactiveOffer.NONE


def test_hello_is_initial_contact_greeting(engine):
    evaluation = engine.evaluate_turn("hello", [], SessionCounters(), [])

    assert evaluation.intent == Intent.GREETING
    assert evaluation.conversation_state == ConversationState.INITIAL_CONTACT
    assert evaluation.escalation_decision.tier is None
    assert evaluation.escalation_decision.recommended_action == "handle_normally"
    assert evaluation.recommended_attempt_increment == 0


def test_human_request_with_case_number(engine):
    evaluation = engine.evaluate_turn("I want to speak to a manager about case 123456")

    assert evaluation.intent == Intent.ESCALATION_REQUEST
    assert evaluation.case_number == "123456"
    assert evaluation.escalation_decision.should_escalate_now


def test_greeting_with_human_request_still_escalates(engine):
    evaluation = engine.evaluate_turn("hi, can I talk to a real person")

    assert evaluation.intent == Intent.GREETING
    assert evaluation.escalation_decision.should_escalate_now


def test_talk_to_a_human_escalates_immediately(engine):
    decision = engine.evaluate_turn("I want to talk to a human").escalation_decision

    assert decision.signals["explicit_request"] == 100
    assert decision.should_escalate_now


def test_complex_topic_lowers_confidence(engine, return_policy_faq, shipping_policy_faq):
    returns = engine.evaluate_turn("What is your return policy?", knowledge_items=[return_policy_faq])
    shipping = engine.evaluate_turn("What is your shipping policy?", knowledge_items=[shipping_policy_faq])

    assert returns.confidence_result.signals["complex_topic"] == -30
    assert returns.confidence_result.confidence_score == 13
    assert shipping.confidence_result.confidence_score == 43
    assert shipping.confidence_result.confidence_score - returns.confidence_result.confidence_score == 30


def test_admissions_move_scores_in_opposite_directions(engine, admission_history):
    evaluation = engine.evaluate_turn("ok", session_history=admission_history)

    assert evaluation.confidence_result.signals["repeated_failure"] == -30
    assert evaluation.escalation_decision.signals["history_pressure"] == 25


def test_prior_attempts_add_linearly(engine):
    evaluation = engine.evaluate_turn(
        "Tell me about your opening hours", session_counters=SessionCounters(escalation_attempts=4)
    )
    decision = evaluation.escalation_decision

    assert decision.signals["repeated_attempts"] == 80
    assert decision.escalation_score == 80
    assert decision.tier == EscalationTier.TIER_3
    assert evaluation.proactive_offer == ProactiveOffer.OFFER_ESCALATION


def test_counters_are_returned_unchanged(engine):
    counters = SessionCounters(escalation_attempts=2)
    evaluation = engine.evaluate_turn("I want to talk to a manager", session_counters=counters)

    assert evaluation.session_counters == counters
    assert counters.escalation_attempts == 2


def test_signal_breakdown_sums_to_unclamped_total(engine):
    evaluation = engine.evaluate_turn("I am upset, this is important")
    decision = evaluation.escalation_decision

    assert decision.signals["frustration"] == 45
    assert decision.signals["urgency"] == 25
    assert sum(decision.signals.values()) == decision.escalation_score == 70


def test_history_window_is_bounded(engine):
    log = [{"senderType": "customer", "content": f"message {i}"} for i in range(20)]
    evaluation = engine.evaluate_turn("hello", session_history=log)

    assert len(evaluation.history_window) == 6
    assert evaluation.history_window[-1].content == "message 19"


def test_state_follows_history(engine):
    log = [
        {"senderType": "customer", "content": "My order arrived broken"},
        {"senderType": "ai", "content": "I'm sorry to hear that. Could you share your order number?"},
    ]
    evaluation = engine.evaluate_turn("It is still broken", session_history=log)

    assert evaluation.intent == Intent.COMPLAINT
    assert evaluation.conversation_state == ConversationState.SOLVING_ISSUE


def test_fallback_only_when_threshold_given_and_missed(engine):
    without = engine.evaluate_turn("Do you sell gift cards?")
    below = engine.evaluate_turn("Do you sell gift cards?", confidence_threshold=50)
    above = engine.evaluate_turn("Do you sell gift cards?", confidence_threshold=10)

    assert without.fallback_strategy is None
    assert below.fallback_strategy.name == FallbackStrategyName.GENERAL_FALLBACK
    assert above.fallback_strategy is None


def test_fallback_categories_default_to_retrieved_items(engine):
    items = [{"name": "Teeth whitening", "description": "Professional whitening", "category": "service"}]
    evaluation = engine.evaluate_turn(
        "How much is it?", knowledge_items=items, business_name="Acme Dental", confidence_threshold=90
    )

    assert evaluation.fallback_strategy.name == FallbackStrategyName.PRICING_AVAILABLE
    assert "Acme Dental" in evaluation.fallback_strategy.prompt


def test_explicit_available_categories_override_items(engine):
    evaluation = engine.evaluate_turn(
        "How much is it?", knowledge_items=[], confidence_threshold=90, available_categories=["product"]
    )

    assert evaluation.fallback_strategy.name == FallbackStrategyName.PRICING_AVAILABLE


def test_empty_inputs_are_valid(engine):
    evaluation = engine.evaluate_turn("", [], SessionCounters(), [])

    assert evaluation.intent == Intent.INFORMATION_REQUEST
    assert evaluation.conversation_state == ConversationState.INITIAL_CONTACT
    assert evaluation.escalation_decision.escalation_score == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"query": None},
        {"query": 42},
        {"query": "x" * 5001},
        {"query": "hi", "session_history": "not a list"},
        {"query": "hi", "session_history": [{"senderType": 1, "content": "hello"}]},
        {"query": "hi", "session_history": [{"senderType": "customer", "timestamp": "not a date"}]},
        {"query": "hi", "knowledge_items": {"question": "q"}},
        {"query": "hi", "knowledge_items": ["plain text"]},
        {"query": "hi", "session_counters": 3},
        {"query": "hi", "session_counters": {"escalation_attempts": -1}},
        {"query": "hi", "business_name": None},
        {"query": "hi", "confidence_threshold": "50"},
        {"query": "hi", "confidence_threshold": 150},
    ],
)
def test_malformed_inputs_are_rejected(engine, kwargs):
    with pytest.raises(EngineInputError):
        engine.evaluate_turn(**kwargs)


def test_coerce_knowledge_item_accepts_storage_records():
    faq = coerce_knowledge_item({"question": "Do you ship?", "answer": "Yes, worldwide.", "type": "faq"})
    policy = coerce_knowledge_item({"title": "Privacy", "content": None, "category": "policy"})
    unknown = coerce_knowledge_item({"name": "Widget", "category": "gadget"})

    assert (faq.primary_text, faq.secondary_text, faq.category) == ("Do you ship?", "Yes, worldwide.", KnowledgeCategory.FAQ)
    assert policy.secondary_text == ""
    assert policy.category == KnowledgeCategory.POLICY
    assert unknown.category == KnowledgeCategory.KNOWLEDGE


def test_coerce_counters():
    assert coerce_counters(None).escalation_attempts == 0
    assert coerce_counters({"escalationAttempts": 3}).escalation_attempts == 3
    assert coerce_counters({"escalation_attempts": 2}).escalation_attempts == 2


def test_module_level_shortcut_uses_shared_engine():
    evaluation = evaluate_turn("hello")

    assert evaluation.intent == Intent.GREETING


def test_custom_history_limit():
    engine = EscalationEngine(history_limit=2)
    log = [{"senderType": "customer", "content": f"message {i}"} for i in range(5)]

    assert len(engine.evaluate_turn("hello", session_history=log).history_window) == 2
