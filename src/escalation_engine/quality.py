"""Heuristic quality checks for generated answers."""

from loguru import logger

from escalation_engine.models import ResponseQualityReport
from escalation_engine.utils import ensure_text


MIN_RESPONSE_LENGTH = 20
MAX_RESPONSE_LENGTH = 1500
ERROR_MARKERS = ("error", "failed")
HELPFUL_MARKERS = ("help", "assist")


def assess_response_quality(response_text: str, knowledge_count: int = 0) -> ResponseQualityReport:
    """
    Score a generated answer on four pass/fail checks.

    Args:
        response_text: Text produced for the customer
        knowledge_count: Number of knowledge items the answer was grounded on

    Returns:
        ResponseQualityReport with each check and the share passed, as 0-100
    """
    text = ensure_text(response_text, field="response_text")
    lowered = text.lower()

    checks = {
        "has_content": bool(text.strip()),
        "appropriate_length": MIN_RESPONSE_LENGTH < len(text) < MAX_RESPONSE_LENGTH,
        "no_errors": not any(marker in lowered for marker in ERROR_MARKERS),
        "helpful": (
            any(marker in lowered for marker in HELPFUL_MARKERS)
            or "?" in text
            or knowledge_count > 0
        ),
    }
    quality_score = sum(checks.values()) / len(checks) * 100

    report = ResponseQualityReport(quality_score=quality_score, **checks)
    if report.failed_checks:
        logger.info("Response quality checks failed", failed=report.failed_checks, quality_score=quality_score)
    return report
