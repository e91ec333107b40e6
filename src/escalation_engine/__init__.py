"""
Support Escalation Engine
Deterministic intent, escalation and confidence decisions for customer-support chat
"""

__version__ = "1.0.0"

# Decision engine entry point
from .engine import (
    EscalationEngine,
    evaluate_turn,
    get_engine,
)

# Components
from .history import build_history_window, normalize_role
from .intent import IntentClassifier
from .escalation import EscalationScorer, tier_for_score
from .confidence import ConfidenceScorer, rank_knowledge_items
from .state import derive_conversation_state
from .fallback import FallbackStrategySelector, FALLBACK_TEMPLATES
from .quality import assess_response_quality

# Turn service and collaborators
from .service import SupportTurnService, TurnOutcome, TurnServiceError
from .store import (
    ChatHistoryStore,
    EscalationCaseSink,
    InMemoryChatHistoryStore,
    KnowledgeRetriever,
    LLMClient,
    get_history_store,
)

# Models
from .models import (
    ConfidenceResult,
    ConversationState,
    EscalationDecision,
    EscalationTier,
    FallbackStrategy,
    FallbackStrategyName,
    Intent,
    KnowledgeCategory,
    KnowledgeItem,
    ProactiveOffer,
    ResponseQualityReport,
    SessionCounters,
    Turn,
    TurnEvaluation,
    TurnRole,
)

# Configuration and errors
from .utils import (
    ConfigurationError,
    EngineInputError,
    get_config,
    reset_config,
    setup_logging,
)

__all__ = [
    # Engine
    'EscalationEngine',
    'evaluate_turn',
    'get_engine',

    # Components
    'build_history_window',
    'normalize_role',
    'IntentClassifier',
    'EscalationScorer',
    'tier_for_score',
    'ConfidenceScorer',
    'rank_knowledge_items',
    'derive_conversation_state',
    'FallbackStrategySelector',
    'FALLBACK_TEMPLATES',
    'assess_response_quality',

    # Service
    'SupportTurnService',
    'TurnOutcome',
    'TurnServiceError',
    'ChatHistoryStore',
    'EscalationCaseSink',
    'InMemoryChatHistoryStore',
    'KnowledgeRetriever',
    'LLMClient',
    'get_history_store',

    # Models
    'ConfidenceResult',
    'ConversationState',
    'EscalationDecision',
    'EscalationTier',
    'FallbackStrategy',
    'FallbackStrategyName',
    'Intent',
    'KnowledgeCategory',
    'KnowledgeItem',
    'ProactiveOffer',
    'ResponseQualityReport',
    'SessionCounters',
    'Turn',
    'TurnEvaluation',
    'TurnRole',

    # Configuration
    'ConfigurationError',
    'EngineInputError',
    'get_config',
    'reset_config',
    'setup_logging',
]
