import sys

import pytest

from escalation_engine.utils import (
    ConfigurationError,
    EngineInputError,
    Timer,
    clamp_score,
    ensure_text,
    get_config,
    reset_config,
    sanitize_for_logging,
)


def test_default_config():
    config = get_config()

    assert config["HISTORY_WINDOW_LIMIT"] == 6
    assert config["MAX_QUERY_LENGTH"] == 5000
    assert config["LOW_CONFIDENCE_THRESHOLD"] == 50
    assert config["LOG_LEVEL"] == "INFO"
    assert config["LOG_SERIALIZE"] is True


def test_config_is_cached_until_reset(monkeypatch):
    first = get_config()
    monkeypatch.setenv("HISTORY_WINDOW_LIMIT", "4")

    assert get_config() is first

    reset_config()
    assert get_config()["HISTORY_WINDOW_LIMIT"] == 4


def test_unparseable_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("MAX_QUERY_LENGTH", "lots")
    monkeypatch.setenv("LOG_SERIALIZE", "maybe")
    reset_config()

    config = get_config()
    assert config["MAX_QUERY_LENGTH"] == 5000
    assert config["LOG_SERIALIZE"] is True


def test_log_settings_are_normalized(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("LOG_SERIALIZE", "off")
    reset_config()

    config = get_config()
    assert config["LOG_LEVEL"] == "DEBUG"
    assert config["LOG_SERIALIZE"] is False


@pytest.mark.parametrize(
    "var,value",
    [
        ("HISTORY_WINDOW_LIMIT", "-1"),
        ("MAX_QUERY_LENGTH", "0"),
        ("LOW_CONFIDENCE_THRESHOLD", "101"),
    ],
)
def test_out_of_range_values_raise(monkeypatch, var, value):
    monkeypatch.setenv(var, value)
    reset_config()

    with pytest.raises(ConfigurationError):
        get_config()


def test_sanitize_for_logging_masks_secrets():
    text = "my key is sk-abc123 and my email is jane@example.com"
    sanitized = sanitize_for_logging(text)

    assert "sk-abc123" not in sanitized
    assert "jane@example.com" not in sanitized
    assert sanitized.count("[REDACTED]") == 2


def test_sanitize_for_logging_truncates():
    assert sanitize_for_logging("a b " * 100, max_length=10) == "a b a b a ..."
    assert sanitize_for_logging("") == ""


def test_ensure_text():
    assert ensure_text("") == ""
    with pytest.raises(EngineInputError):
        ensure_text(b"bytes")
    with pytest.raises(EngineInputError):
        ensure_text("x" * 11, max_length=10)


def test_engine_input_error_is_value_error():
    assert issubclass(EngineInputError, ValueError)


@pytest.mark.parametrize(
    "value,expected",
    [(-40, 0), (0, 0), (42.4, 42), (42.6, 43), (100, 100), (260, 100)],
)
def test_clamp_score(value, expected):
    assert clamp_score(value) == expected


def test_timer_measures_duration():
    with Timer("unit") as timer:
        pass

    assert timer.duration_ms >= 0.0
    assert timer.end_time is not None


def test_setup_logging_emits_structured_records(capsys):
    from loguru import logger

    from escalation_engine.utils import setup_logging

    setup_logging(level="INFO", serialize=True)
    logger.info("Turn evaluated", intent="greeting")

    out = capsys.readouterr().out
    assert '"intent": "greeting"' in out
    logger.remove()
    logger.add(sys.stderr)
