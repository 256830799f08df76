"""LiteLLM provider: OCR through an OpenAI-compatible vision-LLM endpoint.

Works with a LiteLLM proxy or any other server speaking the chat-completions
API (DeepSeek, OpenAI, ...). Two output modes:

    simple      the model returns plain text; confidence is a fixed estimate
    structured  the model returns JSON segments with self-reported 0–1 scores

Config (via .env, constructor arguments take precedence):
    HAVE_OCR_LITELLM_BASE_URL=http://localhost:4000/v1
    HAVE_OCR_LITELLM_API_KEY=...
    HAVE_OCR_LITELLM_MODEL=deepseek-chat
    HAVE_OCR_LITELLM_OUTPUT_MODE=simple      # simple | structured
    HAVE_OCR_LITELLM_TIMEOUT=60000           # milliseconds
"""
from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Sequence

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ocrgate.confidence.confidence import compose_result, to_percent
from ocrgate.core.config import OCRSettings
from ocrgate.core.errors import OCRDependencyError, OCRProcessingError
from ocrgate.ocr.base_ocr import (
    DependencyCheckResult,
    Detection,
    OCRCapabilities,
    OCRMetadata,
    OCRProvider,
    OCRResult,
    RecognitionOptions,
)
from ocrgate.ocr.content import ContentPart, ImagePart, TextPart, to_openai_content
from ocrgate.ocr.handles import HandleCache
from ocrgate.ocr.images import NormalizedImage, to_data_url

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:4000/v1"
DEFAULT_MODEL = "deepseek-chat"
DEFAULT_TIMEOUT_MS = 60_000
OUTPUT_MODES = ("simple", "structured")

# Placeholder scores; the model gives no measured confidence in these cases
SIMPLE_MODE_ESTIMATE = 100.0
UNSEGMENTED_ESTIMATE = 80.0
UNPARSEABLE_ESTIMATE = 75.0
DEFAULT_SEGMENT_CONFIDENCE = 0.5

LITELLM_LANGUAGES = [
    "eng", "chi_sim", "chi_tra", "jpn", "kor", "fra", "deu", "spa", "ita",
    "por", "rus", "ara", "hin", "ben", "vie", "tha", "pol", "nld", "swe",
    "dan", "nor", "fin", "tur", "heb", "ukr", "ces", "ell", "hun", "ron",
    "ind", "msa",
]

# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

SYSTEM_PROMPT_SIMPLE = """\
You are an OCR assistant. Extract all visible text from the provided image(s).
Return ONLY the extracted text, preserving the original layout as much as possible.
Do not add any commentary, explanations, or formatting beyond what is in the image.
If there is no text in the image, return an empty string.
"""

SYSTEM_PROMPT_STRUCTURED = """\
You are an OCR assistant. Extract all visible text from the provided image(s).

Return your response as a JSON object with the following structure:
{
  "text": "the full extracted text preserving layout",
  "segments": [
    {
      "text": "segment text",
      "confidence": 0.95,
      "type": "paragraph"
    }
  ]
}

For confidence scores, estimate based on text clarity:
- 0.95+ for clear, high-contrast text
- 0.80-0.95 for moderately clear text
- 0.60-0.80 for blurry or partially obscured text
- Below 0.60 for very unclear text

Valid segment types: "heading", "paragraph", "list", "table", "caption", "other"

Return ONLY valid JSON, no markdown code blocks or additional text.
"""

_CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


def strip_code_fence(content: str) -> str:
    match = _CODE_FENCE.match(content)
    return match.group(1) if match else content.strip()


def parse_structured(content: str) -> tuple[str, list[Detection], float]:
    """Parse a structured-mode reply into (text, detections, estimate).

    Segments become scored detections. A reply with text but no segments
    becomes one unscored detection; an unparseable reply is kept verbatim.
    """
    raw = strip_code_fence(content)
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("litellm_structured_parse_failed", extra={"chars": len(raw)})
        return raw, ([Detection(text=raw)] if raw else []), UNPARSEABLE_ESTIMATE

    if not isinstance(parsed, dict):
        return raw, ([Detection(text=raw)] if raw else []), UNPARSEABLE_ESTIMATE

    segments = parsed.get("segments")
    detections: list[Detection] = []
    if isinstance(segments, list):
        for segment in segments:
            if not isinstance(segment, dict) or not segment.get("text"):
                continue
            score = segment.get("confidence")
            if score is None:
                score = DEFAULT_SEGMENT_CONFIDENCE
            detections.append(
                Detection(
                    text=str(segment["text"]),
                    confidence=to_percent(score),
                    kind=segment.get("type"),
                )
            )

    text = parsed.get("text")
    if not isinstance(text, str):
        text = "\n".join(d.text for d in detections)
    if not detections and text:
        detections.append(Detection(text=text))
    return text, detections, UNSEGMENTED_ESTIMATE


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

def _is_transient(exc: BaseException) -> bool:
    try:
        import openai  # type: ignore[import]
    except ModuleNotFoundError:
        return False
    return isinstance(
        exc, (openai.APIConnectionError, openai.APITimeoutError, openai.RateLimitError)
    )


class LiteLLMOCRProvider(OCRProvider):
    name = "litellm"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        output_mode: str | None = None,
        timeout_ms: int | None = None,
        system_prompt: str | None = None,
        settings: OCRSettings | None = None,
    ) -> None:
        env = settings if settings is not None else OCRSettings()
        self.base_url = base_url or env.litellm_base_url or DEFAULT_BASE_URL
        self.api_key = api_key or env.litellm_api_key
        self.model = model or env.litellm_model or DEFAULT_MODEL

        mode = (output_mode or env.litellm_output_mode or "simple").lower()
        if mode not in OUTPUT_MODES:
            logger.warning("litellm_unknown_output_mode", extra={"mode": mode, "using": "simple"})
            mode = "simple"
        self.output_mode = mode

        self.timeout_ms = timeout_ms or env.litellm_timeout or DEFAULT_TIMEOUT_MS
        self.system_prompt = system_prompt or (
            SYSTEM_PROMPT_STRUCTURED if mode == "structured" else SYSTEM_PROMPT_SIMPLE
        )
        self._clients = HandleCache("litellm")

    def _build_client(self):
        try:
            from openai import AsyncOpenAI  # type: ignore[import]
        except ModuleNotFoundError as exc:
            raise OCRDependencyError(
                self.name, "openai package is not installed. Run: pip install openai"
            ) from exc
        return AsyncOpenAI(
            base_url=self.base_url,
            api_key=self.api_key,
            timeout=self.timeout_ms / 1000,
            max_retries=0,
        )

    async def _get_client(self):
        if not self.api_key:
            raise OCRDependencyError(self.name, "LiteLLM API key not configured")
        return await self._clients.get_or_create("client", self._build_client)

    @staticmethod
    def instruction(options: RecognitionOptions) -> str:
        language = ", ".join(options.languages) if options.languages else "eng"
        return (
            f"Extract text in {language} language(s). "
            "Extract all text from the image(s)."
        )

    def build_messages(
        self,
        images: Sequence[NormalizedImage],
        options: RecognitionOptions,
    ) -> list[dict[str, Any]]:
        parts: list[ContentPart] = [TextPart(self.instruction(options))]
        parts.extend(ImagePart(url=to_data_url(image)) for image in images)
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": to_openai_content(parts)},
        ]

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _chat(self, client: Any, messages: list[dict[str, Any]]) -> str:
        response = await client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=0.1,
            max_tokens=4096,
        )
        return response.choices[0].message.content or ""

    async def perform_ocr(
        self,
        images: Sequence[NormalizedImage],
        options: RecognitionOptions,
    ) -> OCRResult:
        if not images:
            return OCRResult(
                text="",
                confidence=0.0,
                metadata=OCRMetadata(provider=self.name, language=options.language),
            )

        client = await self._get_client()
        messages = self.build_messages(images, options)

        t0 = time.monotonic()
        try:
            content = await self._chat(client, messages)
        except Exception as exc:
            raise OCRProcessingError(
                self.name,
                f"LiteLLM request failed: {exc}",
                {"model": self.model, "base_url": self.base_url, "error": repr(exc)},
            ) from exc
        elapsed = int((time.monotonic() - t0) * 1000)

        if self.output_mode == "structured":
            text, detections, estimate = parse_structured(content)
        else:
            text = content.strip()
            detections = [Detection(text=text)] if text else []
            estimate = SIMPLE_MODE_ESTIMATE

        logger.info(
            "litellm_complete",
            extra={
                "model": self.model,
                "output_mode": self.output_mode,
                "images": len(images),
                "segments": len(detections),
            },
        )
        return compose_result(
            self.name,
            detections,
            options,
            text=text,
            estimate=estimate,
            processing_time_ms=elapsed,
            details={"model": self.model, "output_mode": self.output_mode},
        )

    async def check_dependencies(self) -> DependencyCheckResult:
        details = {
            "apiKey": bool(self.api_key),
            "baseUrl": self.base_url,
            "model": self.model,
        }
        if not self.api_key:
            return DependencyCheckResult(
                available=False,
                reason=(
                    "LiteLLM API key not configured. Set HAVE_OCR_LITELLM_API_KEY "
                    "or pass api_key to the provider."
                ),
                details=details,
            )
        try:
            await self._get_client()
        except OCRDependencyError as exc:
            return DependencyCheckResult(available=False, reason=exc.message, details=details)
        return DependencyCheckResult(available=True, details=details)

    async def check_capabilities(self) -> OCRCapabilities:
        return OCRCapabilities(
            can_perform_ocr=True,
            supported_languages=tuple(self.get_supported_languages()),
            supported_formats=("png", "jpg", "jpeg", "gif", "webp", "bmp"),
            max_image_size=4096 * 4096,
            has_bounding_boxes=False,
            has_confidence_scores=self.output_mode == "structured",
            provider_specific={
                "llmBased": True,
                "model": self.model,
                "outputMode": self.output_mode,
            },
        )

    def get_supported_languages(self) -> list[str]:
        return list(LITELLM_LANGUAGES)

    async def cleanup(self) -> None:
        await self._clients.clear(release=lambda client: client.close())
