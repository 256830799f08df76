"""Configuration.

Three layers, merged field by field:

    user-supplied  >  environment (HAVE_OCR_*)  >  built-in defaults

A caller that only sets ``language`` still inherits an environment ``timeout``.
Malformed numeric or boolean environment values are logged and treated as
absent; timeouts must be positive.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Sequence

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ocrgate.ocr.base_ocr import OutputFormat, RecognitionOptions

logger = logging.getLogger(__name__)

AUTO = "auto"

DEFAULT_RUNTIME = "server"

# Provider priority per runtime target, tried in order when selection is automatic.
PRIORITY_BY_RUNTIME: dict[str, tuple[str, ...]] = {
    "server": ("paddleocr", "tesseract", "litellm", "textract"),
    "offline": ("paddleocr", "tesseract"),
    "hosted": ("litellm", "textract"),
}

DEFAULT_OPTIONS = RecognitionOptions(
    language="eng",
    confidence_threshold=None,
    output_format=OutputFormat.STRUCTURED,
    timeout_ms=60_000,
    enhance_resolution=False,
)


def _parse_number(value: Any, env_name: str, cast: type) -> Any:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return cast(value) if math.isfinite(value) else None
    text = str(value).strip()
    try:
        number = float(text)
        if not math.isfinite(number):
            raise ValueError(text)
        return cast(number)
    except (ValueError, OverflowError):
        logger.warning(
            "invalid_env_value_ignored",
            extra={"env": env_name, "value": text},
        )
        return None


def _parse_positive(value: Any, env_name: str, cast: type) -> Any:
    number = _parse_number(value, env_name, cast)
    if number is not None and number <= 0:
        logger.warning(
            "invalid_env_value_ignored",
            extra={"env": env_name, "value": str(value).strip()},
        )
        return None
    return number


_TRUE = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE = frozenset({"0", "false", "f", "no", "n", "off"})


def _parse_flag(value: Any, env_name: str) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if not text:
        return None
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    logger.warning(
        "invalid_env_value_ignored",
        extra={"env": env_name, "value": str(value).strip()},
    )
    return None


class OCRSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="HAVE_OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Selection: explicit provider name | auto
    provider: str | None = None
    fallback_chain: str | None = None        # comma-separated provider names
    fallback: bool | None = None
    runtime: str | None = None

    # Default recognition options
    language: str | None = None
    confidence_threshold: float | None = None
    timeout: int | None = None               # milliseconds

    log_level: str = "INFO"

    # LiteLLM / OpenAI-compatible vision endpoint
    litellm_base_url: str | None = None
    litellm_api_key: str | None = None
    litellm_model: str | None = None
    litellm_output_mode: str | None = None   # simple | structured
    litellm_timeout: int | None = None

    # Local engines
    paddle_use_gpu: bool = False
    tesseract_cmd: str | None = None

    # AWS Textract (boto3 also reads the standard AWS_* credentials itself)
    aws_region: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HAVE_OCR_AWS_REGION", "AWS_REGION"),
    )

    @field_validator("provider", "runtime", "fallback_chain", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("confidence_threshold", mode="before")
    @classmethod
    def _parse_threshold(cls, value: Any) -> float | None:
        return _parse_number(value, "HAVE_OCR_CONFIDENCE_THRESHOLD", float)

    @field_validator("timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> int | None:
        return _parse_positive(value, "HAVE_OCR_TIMEOUT", int)

    @field_validator("litellm_timeout", mode="before")
    @classmethod
    def _parse_litellm_timeout(cls, value: Any) -> int | None:
        return _parse_positive(value, "HAVE_OCR_LITELLM_TIMEOUT", int)

    @field_validator("fallback", mode="before")
    @classmethod
    def _parse_fallback(cls, value: Any) -> bool | None:
        return _parse_flag(value, "HAVE_OCR_FALLBACK")

    @field_validator("paddle_use_gpu", mode="before")
    @classmethod
    def _parse_paddle_use_gpu(cls, value: Any) -> bool:
        return bool(_parse_flag(value, "HAVE_OCR_PADDLE_USE_GPU"))

    def recognition_options(self) -> RecognitionOptions:
        return RecognitionOptions(
            language=self.language,
            confidence_threshold=self.confidence_threshold,
            timeout_ms=self.timeout,
        )

    def chain(self) -> tuple[str, ...] | None:
        if not self.fallback_chain:
            return None
        names = tuple(n.strip() for n in self.fallback_chain.split(",") if n.strip())
        return names or None


@dataclass(frozen=True)
class UserConfig:
    """Caller-supplied configuration; every field is optional."""

    provider: str | None = None
    fallback_chain: Sequence[str] | None = None
    fallback: bool | None = None
    runtime: str | None = None
    default_options: RecognitionOptions | None = None


@dataclass(frozen=True)
class EffectiveConfig:
    provider: str                      # explicit provider name or "auto"
    fallback_chain: tuple[str, ...]
    fallback_enabled: bool
    runtime: str
    default_options: RecognitionOptions

    @property
    def is_auto(self) -> bool:
        return self.provider == AUTO


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def resolve_config(
    user: UserConfig | None = None,
    env: OCRSettings | None = None,
) -> EffectiveConfig:
    user = user or UserConfig()
    env = env if env is not None else OCRSettings()

    user_provider = user.provider.strip() if user.provider and user.provider.strip() else None
    provider = _first(user_provider, env.provider, AUTO)

    runtime = _first(user.runtime, env.runtime, DEFAULT_RUNTIME)
    if runtime not in PRIORITY_BY_RUNTIME:
        logger.warning(
            "unknown_runtime_target",
            extra={"runtime": runtime, "using": DEFAULT_RUNTIME},
        )
        runtime = DEFAULT_RUNTIME

    chain = _first(
        tuple(user.fallback_chain) if user.fallback_chain is not None else None,
        env.chain(),
        PRIORITY_BY_RUNTIME[runtime],
    )

    options = (user.default_options or RecognitionOptions()).merged_over(
        env.recognition_options().merged_over(DEFAULT_OPTIONS)
    )

    config = EffectiveConfig(
        provider=provider,
        fallback_chain=tuple(chain),
        fallback_enabled=bool(_first(user.fallback, env.fallback, True)),
        runtime=runtime,
        default_options=options,
    )
    logger.debug(
        "config_resolved",
        extra={
            "provider": config.provider,
            "chain": ",".join(config.fallback_chain),
            "language": options.language,
        },
    )
    return config
