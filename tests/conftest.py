import pytest

from escalation_engine import engine, store, utils
from escalation_engine.models import KnowledgeCategory, KnowledgeItem, Turn, TurnRole


CONFIG_VARS = (
    "HISTORY_WINDOW_LIMIT",
    "MAX_QUERY_LENGTH",
    "LOW_CONFIDENCE_THRESHOLD",
    "LOG_LEVEL",
    "LOG_SERIALIZE",
)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Start every test from default configuration and fresh singletons."""
    for var in CONFIG_VARS:
        monkeypatch.delenv(var, raising=False)
    utils.reset_config()
    engine._engine_instance = None
    store._store_instance = None
    yield
    utils.reset_config()
    engine._engine_instance = None
    store._store_instance = None


def assistant(content):
    return Turn(role=TurnRole.ASSISTANT, content=content, sender_label="ai")


@pytest.fixture
def admission_history():
    return [
        assistant("I don't have that information right now."),
        assistant("Sorry, I don't have that information either."),
    ]


@pytest.fixture
def return_policy_faq():
    return KnowledgeItem(
        primary_text="What is your return policy?",
        secondary_text="Items may be sent back within thirty days for store credit with the receipt.",
        category=KnowledgeCategory.FAQ,
    )


@pytest.fixture
def shipping_policy_faq():
    return KnowledgeItem(
        primary_text="What is your shipping policy?",
        secondary_text="Items may be sent out within three days for free with orders above fifty.",
        category=KnowledgeCategory.FAQ,
    )
