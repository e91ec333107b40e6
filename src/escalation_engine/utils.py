"""
Utility functions for the escalation engine.

This module provides:
- Environment variable loading with typed defaults
- Logging configuration with structured JSON output
- Timing utilities for performance measurement
- Input sanitization for logs
- Input shape validation shared by every engine component
"""

import os
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from loguru import logger


class ConfigurationError(Exception):
    """Raised when configuration is present but out of its allowed range."""
    pass


class EngineInputError(ValueError):
    """Raised when an engine input has the wrong shape."""
    pass


def setup_logging(level: Optional[str] = None, serialize: Optional[bool] = None) -> None:
    """
    Configure structured logging with Loguru.

    Args:
        level: Minimum log level (defaults to LOG_LEVEL from config)
        serialize: Emit JSON records (defaults to LOG_SERIALIZE from config)
    """
    config = get_config()
    if level is None:
        level = config["LOG_LEVEL"]
    if serialize is None:
        serialize = config["LOG_SERIALIZE"]

    # Remove default handler
    logger.remove()

    logger.add(
        sys.stdout,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}",
        level=level,
        serialize=serialize
    )

    logger.info("Logging configuration complete", level=level, serialize=serialize)


def _parse_bool(value: Any) -> Optional[bool]:
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return None


def load_and_validate_env() -> Dict[str, Any]:
    """
    Load engine settings from the environment (and a .env file if present).

    Returns:
        Dict[str, Any]: Configuration dictionary with typed values

    Raises:
        ConfigurationError: If a numeric setting is outside its allowed range
    """
    load_dotenv()

    # Optional environment variables with defaults
    optional_vars = {
        "HISTORY_WINDOW_LIMIT": 6,
        "MAX_QUERY_LENGTH": 5000,
        "LOW_CONFIDENCE_THRESHOLD": 50,
        "LOG_LEVEL": "INFO",
        "LOG_SERIALIZE": True,
    }

    config: Dict[str, Any] = {}

    for var, default in optional_vars.items():
        value = os.getenv(var, default)
        if var in ["HISTORY_WINDOW_LIMIT", "MAX_QUERY_LENGTH", "LOW_CONFIDENCE_THRESHOLD"]:
            try:
                config[var] = int(value)
            except ValueError:
                logger.warning(f"Invalid value for {var}: {value}, using default: {default}")
                config[var] = default
        elif var == "LOG_SERIALIZE":
            parsed = _parse_bool(value)
            if parsed is None:
                logger.warning(f"Invalid value for {var}: {value}, using default: {default}")
                parsed = default
            config[var] = parsed
        else:
            config[var] = str(value).upper()

    if config["HISTORY_WINDOW_LIMIT"] < 0:
        raise ConfigurationError("HISTORY_WINDOW_LIMIT must be zero or positive")
    if config["MAX_QUERY_LENGTH"] < 1:
        raise ConfigurationError("MAX_QUERY_LENGTH must be positive")
    if not 0 <= config["LOW_CONFIDENCE_THRESHOLD"] <= 100:
        raise ConfigurationError("LOW_CONFIDENCE_THRESHOLD must be within 0-100")

    logger.debug("Environment configuration loaded", **config)
    return config


def sanitize_for_logging(text: str, max_length: int = 200) -> str:
    """
    Sanitize user input for safe logging by masking secrets and truncating.

    Args:
        text: Input text to sanitize
        max_length: Maximum length of sanitized text

    Returns:
        str: Sanitized text safe for logging
    """
    if not text:
        return ""

    sensitive_patterns = [
        r'sk-[a-zA-Z0-9]+',  # API keys starting with sk-
        r'Bearer\s+[a-zA-Z0-9]+',  # Bearer tokens
        r'\b[\w.+-]+@[\w-]+\.[\w.]+\b',  # Email addresses
        r'\b[A-Za-z0-9]{20,}\b'  # Long alphanumeric strings (potential tokens)
    ]

    sanitized = text
    for pattern in sensitive_patterns:
        sanitized = re.sub(pattern, '[REDACTED]', sanitized, flags=re.IGNORECASE)

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    return sanitized


def ensure_text(value: Any, field: str = "query", max_length: Optional[int] = None) -> str:
    """
    Reject anything that is not a string before scoring begins.

    Empty strings are valid and treated as degenerate queries.

    Raises:
        EngineInputError: If the value is not text or exceeds max_length
    """
    if not isinstance(value, str):
        logger.warning("Rejected non-text input", field=field, received_type=type(value).__name__)
        raise EngineInputError(f"{field} must be a string, got {type(value).__name__}")
    if max_length is not None and len(value) > max_length:
        logger.warning("Rejected oversized input", field=field, length=len(value), max_length=max_length)
        raise EngineInputError(f"{field} too long: {len(value)} characters (max {max_length})")
    return value


def clamp_score(value: float, low: int = 0, high: int = 100) -> int:
    """Clamp a summed score into [low, high] and round to an int."""
    return int(round(max(low, min(high, value))))


class Timer:
    """Context manager for timing operations."""

    def __init__(self, operation_name: str = "operation"):
        self.operation_name = operation_name
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        self.start_time = datetime.now(timezone.utc)
        logger.debug(f"Starting {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = datetime.now(timezone.utc)
        duration_ms = (self.end_time - self.start_time).total_seconds() * 1000

        if exc_type is None:
            logger.debug(f"Completed {self.operation_name}", duration_ms=duration_ms)
        else:
            logger.error(f"Failed {self.operation_name}", duration_ms=duration_ms, error=str(exc_val))

    @property
    def duration_ms(self) -> float:
        """Get duration in milliseconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds() * 1000
        return 0.0


def get_utc_datetime() -> datetime:
    """
    Get current datetime object in UTC timezone.

    Returns:
        datetime: Current UTC datetime object with timezone info
    """
    return datetime.now(timezone.utc)


# Global configuration instance
_config: Optional[Dict[str, Any]] = None


def get_config() -> Dict[str, Any]:
    """
    Get the global configuration, loading it if not already loaded.

    Returns:
        Dict[str, Any]: Configuration dictionary
    """
    global _config
    if _config is None:
        _config = load_and_validate_env()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() re-reads the environment."""
    global _config
    _config = None
