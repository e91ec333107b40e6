import pytest

from escalation_engine.confidence import ConfidenceScorer, rank_knowledge_items
from escalation_engine.models import KnowledgeCategory, KnowledgeItem, Turn, TurnRole


@pytest.fixture
def scorer():
    return ConfidenceScorer()


def test_return_query_is_penalized_despite_strong_match(scorer, return_policy_faq, shipping_policy_faq):
    returns = scorer.score_breakdown("What is your return policy?", [return_policy_faq])
    shipping = scorer.score_breakdown("What is your shipping policy?", [shipping_policy_faq])

    assert returns["data_relevance"] == shipping["data_relevance"] == 8
    assert returns["data_quality"] == shipping["data_quality"] == 15
    assert returns["complex_topic"] == -30
    assert shipping["complex_topic"] == 0
    assert scorer.score("What is your return policy?", [return_policy_faq]) == 13
    assert scorer.score("What is your shipping policy?", [shipping_policy_faq]) == 43


def test_no_knowledge_scores_only_query_shape(scorer):
    breakdown = scorer.score_breakdown("Do you sell gift cards?")

    assert breakdown["data_relevance"] == 0
    assert breakdown["data_quality"] == 0
    assert breakdown["query_complexity"] == 20


@pytest.mark.parametrize(
    "query,expected",
    [
        ("one two three four five", 20),
        ("one two three four five six", 15),
        ("one two three four five six seven eight nine ten", 15),
        ("one two three four five six seven eight nine ten eleven", 10),
    ],
)
def test_query_complexity_bands(scorer, query, expected):
    assert scorer.score_breakdown(query)["query_complexity"] == expected


def test_context_availability_is_capped(scorer):
    history = [Turn(role=TurnRole.CUSTOMER, content="hi")] * 8

    assert scorer.score_breakdown("ok", [], history[:2])["context_availability"] == 10
    assert scorer.score_breakdown("ok", [], history)["context_availability"] == 25


def test_data_relevance_is_capped(scorer):
    item = KnowledgeItem(primary_text="gift cards", secondary_text="gift cards are sold in store")

    assert scorer.score_breakdown("gift cards", [item] * 6)["data_relevance"] == 40


def test_short_words_do_not_count_towards_relevance(scorer):
    item = KnowledgeItem(primary_text="an of to", secondary_text="")

    assert scorer.score_breakdown("to an of", [item])["data_relevance"] == 0


def test_data_quality_without_substantive_text(scorer):
    item = KnowledgeItem(primary_text="Gift cards", secondary_text="Sold in store.")

    assert scorer.score_breakdown("gift cards", [item])["data_quality"] == 8


def test_repeated_failure_penalties(scorer, admission_history):
    assert scorer.score_breakdown("ok", [], admission_history)["repeated_failure"] == -30
    assert scorer.score_breakdown("ok", [], admission_history[:1])["repeated_failure"] == -15
    assert scorer.score_breakdown("ok", [], [])["repeated_failure"] == 0


def test_apologetic_hedge_counts_as_failure(scorer):
    history = [Turn(role=TurnRole.ASSISTANT, content="I'd love to help with that, but I can't say.")]

    assert scorer.score_breakdown("ok", [], history)["repeated_failure"] == -15


def test_score_never_negative(scorer, admission_history):
    query = "my refund for the damaged, defective and broken item that is not working and " * 3

    assert sum(scorer.score_breakdown(query, [], admission_history).values()) < 0
    assert scorer.score(query, [], admission_history) == 0


def test_empty_query_is_valid(scorer, return_policy_faq):
    breakdown = scorer.score_breakdown("", [return_policy_faq])

    assert breakdown["data_relevance"] == 0
    assert 0 <= scorer.score("", [return_policy_faq]) <= 100


def test_rank_knowledge_items_orders_by_overlap():
    title_hit = KnowledgeItem(primary_text="Delivery times", secondary_text="Two to five days.")
    body_hit = KnowledgeItem(primary_text="Shipping", secondary_text="Delivery is free over fifty.")
    miss = KnowledgeItem(primary_text="Gift cards", secondary_text="Sold in store.")

    ranked = rank_knowledge_items("delivery times please", [miss, body_hit, title_hit])

    assert ranked == [title_hit, body_hit]


def test_rank_knowledge_items_respects_limit():
    items = [
        KnowledgeItem(primary_text=f"hours {i}", category=KnowledgeCategory.POLICY)
        for i in range(12)
    ]

    ranked = rank_knowledge_items("opening hours", items)

    assert len(ranked) == 8
    assert ranked == items[:8]
