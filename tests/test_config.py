"""Configuration resolution tests: per-field precedence user > env > default."""
from __future__ import annotations

import logging

import pytest

from ocrgate.core.config import (
    AUTO,
    DEFAULT_OPTIONS,
    PRIORITY_BY_RUNTIME,
    OCRSettings,
    UserConfig,
    resolve_config,
)
from ocrgate.ocr.base_ocr import OutputFormat, RecognitionOptions


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

def test_defaults_without_env_or_user() -> None:
    config = resolve_config(env=OCRSettings())
    assert config.provider == AUTO
    assert config.is_auto
    assert config.runtime == "server"
    assert config.fallback_chain == PRIORITY_BY_RUNTIME["server"]
    assert config.fallback_enabled is True
    assert config.default_options == DEFAULT_OPTIONS


def test_runtime_selects_priority_list() -> None:
    config = resolve_config(UserConfig(runtime="offline"), env=OCRSettings())
    assert config.fallback_chain == ("paddleocr", "tesseract")


def test_unknown_runtime_falls_back_to_server(monkeypatch, caplog) -> None:
    monkeypatch.setenv("HAVE_OCR_RUNTIME", "mainframe")
    with caplog.at_level(logging.WARNING):
        config = resolve_config(env=OCRSettings())
    assert config.runtime == "server"
    assert "unknown_runtime_target" in caplog.text


# ---------------------------------------------------------------------------
# Environment parsing
# ---------------------------------------------------------------------------

def test_env_provider_is_used(monkeypatch) -> None:
    monkeypatch.setenv("HAVE_OCR_PROVIDER", "tesseract")
    assert resolve_config(env=OCRSettings()).provider == "tesseract"


@pytest.mark.parametrize("value", ["", "   "])
def test_empty_env_provider_means_auto(monkeypatch, value: str) -> None:
    monkeypatch.setenv("HAVE_OCR_PROVIDER", value)
    assert resolve_config(env=OCRSettings()).provider == AUTO


def test_empty_env_language_is_kept(monkeypatch) -> None:
    monkeypatch.setenv("HAVE_OCR_LANGUAGE", "")
    assert resolve_config(env=OCRSettings()).default_options.language == ""


def test_non_numeric_threshold_is_unset(monkeypatch, caplog) -> None:
    monkeypatch.setenv("HAVE_OCR_CONFIDENCE_THRESHOLD", "not-a-number")
    with caplog.at_level(logging.WARNING):
        settings = OCRSettings()
    assert settings.confidence_threshold is None
    assert resolve_config(env=settings).default_options.confidence_threshold is None
    assert "invalid_env_value_ignored" in caplog.text


def test_non_numeric_timeout_falls_back_to_default(monkeypatch) -> None:
    monkeypatch.setenv("HAVE_OCR_TIMEOUT", "soon")
    options = resolve_config(env=OCRSettings()).default_options
    assert options.timeout_ms == DEFAULT_OPTIONS.timeout_ms


@pytest.mark.parametrize(
    "raw, expected",
    [("0", 0.0), ("100", 100.0), ("-10", -10.0), ("150", 150.0), ("72.5", 72.5)],
)
def test_threshold_edge_values_kept_as_parsed(monkeypatch, raw: str, expected: float) -> None:
    monkeypatch.setenv("HAVE_OCR_CONFIDENCE_THRESHOLD", raw)
    assert resolve_config(env=OCRSettings()).default_options.confidence_threshold == expected


def test_large_timeout_accepted(monkeypatch) -> None:
    monkeypatch.setenv("HAVE_OCR_TIMEOUT", "999999999")
    assert resolve_config(env=OCRSettings()).default_options.timeout_ms == 999_999_999


@pytest.mark.parametrize("raw", ["0", "-500"])
def test_non_positive_timeout_falls_back_to_default(monkeypatch, caplog, raw: str) -> None:
    monkeypatch.setenv("HAVE_OCR_TIMEOUT", raw)
    monkeypatch.setenv("HAVE_OCR_LITELLM_TIMEOUT", raw)
    with caplog.at_level(logging.WARNING):
        settings = OCRSettings()
    assert settings.timeout is None
    assert settings.litellm_timeout is None
    assert resolve_config(env=settings).default_options.timeout_ms == DEFAULT_OPTIONS.timeout_ms
    assert "invalid_env_value_ignored" in caplog.text


def test_malformed_fallback_flag_is_unset(monkeypatch, caplog) -> None:
    monkeypatch.setenv("HAVE_OCR_FALLBACK", "maybe")
    with caplog.at_level(logging.WARNING):
        settings = OCRSettings()
    assert settings.fallback is None
    assert resolve_config(env=settings).fallback_enabled is True
    assert "HAVE_OCR_FALLBACK" in [getattr(r, "env", None) for r in caplog.records]


def test_malformed_gpu_flag_defaults_to_cpu(monkeypatch, caplog) -> None:
    monkeypatch.setenv("HAVE_OCR_PADDLE_USE_GPU", "maybe")
    with caplog.at_level(logging.WARNING):
        settings = OCRSettings()
    assert settings.paddle_use_gpu is False
    assert "invalid_env_value_ignored" in caplog.text


@pytest.mark.parametrize(
    "raw, expected",
    [("yes", True), ("ON", True), ("1", True), ("no", False), ("Off", False), ("0", False)],
)
def test_flag_spellings(monkeypatch, raw: str, expected: bool) -> None:
    monkeypatch.setenv("HAVE_OCR_FALLBACK", raw)
    monkeypatch.setenv("HAVE_OCR_PADDLE_USE_GPU", raw)
    settings = OCRSettings()
    assert settings.fallback is expected
    assert settings.paddle_use_gpu is expected


def test_multi_language_tag_preserved(monkeypatch) -> None:
    monkeypatch.setenv("HAVE_OCR_LANGUAGE", "eng+jpn+chi_sim")
    options = resolve_config(env=OCRSettings()).default_options
    assert options.languages == ["eng", "jpn", "chi_sim"]


def test_env_fallback_chain_is_split(monkeypatch) -> None:
    monkeypatch.setenv("HAVE_OCR_FALLBACK_CHAIN", "tesseract, litellm,,")
    assert resolve_config(env=OCRSettings()).fallback_chain == ("tesseract", "litellm")


def test_env_can_disable_fallback(monkeypatch) -> None:
    monkeypatch.setenv("HAVE_OCR_FALLBACK", "false")
    assert resolve_config(env=OCRSettings()).fallback_enabled is False


def test_aws_region_reads_standard_variable(monkeypatch) -> None:
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    assert OCRSettings().aws_region == "eu-west-1"


# ---------------------------------------------------------------------------
# Per-field precedence
# ---------------------------------------------------------------------------

_OPTION_FIELDS = [
    # (option field, env var, env value, parsed env value, user value)
    ("language", "HAVE_OCR_LANGUAGE", "eng", "eng", "jpn"),
    ("confidence_threshold", "HAVE_OCR_CONFIDENCE_THRESHOLD", "40", 40.0, 85.0),
    ("timeout_ms", "HAVE_OCR_TIMEOUT", "5000", 5000, 1500),
]


@pytest.mark.parametrize("field, env_var, env_value, parsed, user_value", _OPTION_FIELDS)
def test_user_value_beats_env(monkeypatch, field, env_var, env_value, parsed, user_value) -> None:
    monkeypatch.setenv(env_var, env_value)
    user = UserConfig(default_options=RecognitionOptions(**{field: user_value}))
    assert getattr(resolve_config(user, OCRSettings()).default_options, field) == user_value


@pytest.mark.parametrize("field, env_var, env_value, parsed, user_value", _OPTION_FIELDS)
def test_env_value_beats_default(monkeypatch, field, env_var, env_value, parsed, user_value) -> None:
    monkeypatch.setenv(env_var, env_value)
    assert getattr(resolve_config(env=OCRSettings()).default_options, field) == parsed


@pytest.mark.parametrize("field, env_var, env_value, parsed, user_value", _OPTION_FIELDS)
def test_other_fields_survive_partial_user_options(
    monkeypatch, field, env_var, env_value, parsed, user_value
) -> None:
    # Every env field is set; the user overrides only one of them
    for _, var, value, _, _ in _OPTION_FIELDS:
        monkeypatch.setenv(var, value)
    user = UserConfig(default_options=RecognitionOptions(**{field: user_value}))
    options = resolve_config(user, OCRSettings()).default_options
    for other, _, _, other_parsed, _ in _OPTION_FIELDS:
        expected = user_value if other == field else other_parsed
        assert getattr(options, other) == expected


def test_user_language_jpn_over_env_eng(monkeypatch) -> None:
    monkeypatch.setenv("HAVE_OCR_LANGUAGE", "eng")
    env = OCRSettings()
    with_user = resolve_config(UserConfig(default_options=RecognitionOptions(language="jpn")), env)
    without_user = resolve_config(UserConfig(), env)
    assert with_user.default_options.language == "jpn"
    assert without_user.default_options.language == "eng"


def test_user_provider_beats_env(monkeypatch) -> None:
    monkeypatch.setenv("HAVE_OCR_PROVIDER", "tesseract")
    assert resolve_config(UserConfig(provider="litellm"), OCRSettings()).provider == "litellm"


def test_blank_user_provider_defers_to_env(monkeypatch) -> None:
    monkeypatch.setenv("HAVE_OCR_PROVIDER", "tesseract")
    assert resolve_config(UserConfig(provider=""), OCRSettings()).provider == "tesseract"


def test_user_chain_beats_env_chain(monkeypatch) -> None:
    monkeypatch.setenv("HAVE_OCR_FALLBACK_CHAIN", "tesseract")
    config = resolve_config(UserConfig(fallback_chain=["mock"]), OCRSettings())
    assert config.fallback_chain == ("mock",)


def test_user_output_format_beats_default() -> None:
    user = UserConfig(default_options=RecognitionOptions(output_format=OutputFormat.TEXT))
    config = resolve_config(user, OCRSettings())
    assert config.default_options.output_format is OutputFormat.TEXT
    assert config.default_options.timeout_ms == DEFAULT_OPTIONS.timeout_ms
