"""OCR orchestrator.

``OCRFactory`` picks a backend for each call and falls back along the
configured chain when one fails:

    selecting → invoking → succeeded
                invoking → failed → selecting (next candidate) → ... → exhausted

Provider selection (``HAVE_OCR_PROVIDER`` or ``provider=``):
    auto        : runtime priority list (or HAVE_OCR_FALLBACK_CHAIN), filtered
                  to the backends that probe as available
    paddleocr   : PaddleOCRProvider (pip install paddlepaddle paddleocr)
    tesseract   : TesseractOCRProvider (pip install pytesseract + binary)
    litellm     : LiteLLMOCRProvider (OpenAI-compatible vision endpoint)
    textract    : TextractOCRProvider (pip install boto3 + AWS credentials)
    mock        : synthetic text (dev/test, no deps required)
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Sequence

from ocrgate.core.config import OCRSettings, UserConfig, resolve_config
from ocrgate.core.errors import (
    OCRDependencyError,
    OCRError,
    OCRProcessingError,
    OCRUnsupportedError,
)
from ocrgate.ocr.base_ocr import (
    OCRCapabilities,
    OCRImage,
    OCRProvider,
    OCRResult,
    RecognitionOptions,
)
from ocrgate.ocr.images import NormalizedImage, normalize_images
from ocrgate.ocr.probe import DEFAULT_PROBE_TIMEOUT_S
from ocrgate.ocr.registry import (
    ProviderDescriptor,
    ProviderRegistry,
    default_provider_factories,
)

logger = logging.getLogger(__name__)


class OCRFactory:
    def __init__(
        self,
        provider: str | None = None,
        fallback_chain: Sequence[str] | None = None,
        fallback: bool | None = None,
        runtime: str | None = None,
        default_options: RecognitionOptions | None = None,
        registry: ProviderRegistry | None = None,
        env: OCRSettings | None = None,
        probe_timeout: float | None = DEFAULT_PROBE_TIMEOUT_S,
    ) -> None:
        env = env if env is not None else OCRSettings()
        self.config = resolve_config(
            UserConfig(
                provider=provider,
                fallback_chain=fallback_chain,
                fallback=fallback,
                runtime=runtime,
                default_options=default_options,
            ),
            env,
        )
        self.registry = registry or ProviderRegistry(default_provider_factories(env))
        self._probe_timeout = probe_timeout

    # ------------------------------------------------------------------
    # Candidate selection
    # ------------------------------------------------------------------

    def candidates(self, provider: str | None = None) -> tuple[list[str], str | None]:
        """Return (ordered candidate names, pinned name or None)."""
        pinned = provider or (None if self.config.is_auto else self.config.provider)
        if pinned is None:
            return list(dict.fromkeys(self.config.fallback_chain)), None
        if not self.config.fallback_enabled:
            return [pinned], pinned
        return list(dict.fromkeys((pinned, *self.config.fallback_chain))), pinned

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------

    async def _invoke(
        self,
        name: str,
        provider: OCRProvider,
        images: Sequence[NormalizedImage],
        options: RecognitionOptions,
    ) -> OCRResult:
        timeout = options.timeout_ms / 1000 if options.timeout_ms is not None else None
        try:
            result = await asyncio.wait_for(
                provider.perform_ocr(images, options), timeout=timeout
            )
        except asyncio.TimeoutError as exc:
            raise OCRProcessingError(
                name,
                f"OCR timed out after {options.timeout_ms} ms",
                {"timeout_ms": options.timeout_ms},
            ) from exc
        except OCRError:
            raise
        except Exception as exc:
            raise OCRProcessingError(
                name,
                f"Provider failed unexpectedly: {exc}",
                {"error_type": type(exc).__name__},
            ) from exc

        if not isinstance(result, OCRResult):
            raise OCRProcessingError(
                name,
                "Provider returned an invalid result",
                {"result_type": type(result).__name__},
            )
        return result

    async def perform_ocr(
        self,
        images: Sequence[OCRImage],
        options: RecognitionOptions | None = None,
        *,
        provider: str | None = None,
    ) -> OCRResult:
        """Recognize text in *images*, falling back across backends on failure.

        Raises the last candidate's ``OCRError`` once every candidate has been
        tried. ``OCRUnsupportedError`` from a pinned provider with fallback
        disabled is raised immediately. A ``timeout_ms`` that is not positive
        raises ``ValueError``.
        """
        t0 = time.monotonic()
        opts = (options or RecognitionOptions()).merged_over(self.config.default_options)
        if opts.timeout_ms is not None and opts.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {opts.timeout_ms}")
        batch = normalize_images(images)

        names, pinned = self.candidates(provider)
        if not names:
            raise OCRDependencyError(None, "No OCR providers configured")

        gated = await self.registry.probe_statuses(names, timeout=self._probe_timeout)

        first_failed: str | None = None
        last_error: OCRError | None = None
        skipped_error: OCRError | None = None

        for name, (backend, status) in zip(names, gated):
            is_pinned = name == pinned
            if not status.available:
                error = OCRDependencyError(
                    name, status.reason or "Provider unavailable", dict(status.details)
                )
                if not is_pinned:
                    logger.info(
                        "ocr_candidate_skipped",
                        extra={"provider": name, "reason": status.reason},
                    )
                    skipped_error = error
                    continue
                logger.warning(
                    "ocr_attempt_failed",
                    extra={"provider": name, "kind": error.kind, "error": error.message},
                )
                first_failed = first_failed or name
                last_error = error
                continue

            logger.info(
                "ocr_attempt",
                extra={"provider": name, "images": len(batch.images), "language": opts.language},
            )
            try:
                result = await self._invoke(name, backend, batch.images, opts)
            except OCRError as exc:
                if (
                    isinstance(exc, OCRUnsupportedError)
                    and is_pinned
                    and not self.config.fallback_enabled
                ):
                    raise
                logger.warning(
                    "ocr_attempt_failed",
                    extra={"provider": name, "kind": exc.kind, "error": exc.message},
                )
                first_failed = first_failed or name
                last_error = exc
                continue

            return self._finalize(name, result, opts, first_failed, batch.skipped, t0)

        error = last_error or skipped_error
        logger.error(
            "ocr_exhausted",
            extra={"candidates": ",".join(names), "error": str(error)},
        )
        raise error

    def _finalize(
        self,
        name: str,
        result: OCRResult,
        options: RecognitionOptions,
        first_failed: str | None,
        skipped: Sequence[Any],
        t0: float,
    ) -> OCRResult:
        details = dict(result.metadata.details)
        if skipped:
            details["skipped_images"] = [s.index for s in skipped]
        elapsed = int((time.monotonic() - t0) * 1000)
        metadata = dataclasses.replace(
            result.metadata,
            provider=result.metadata.provider or name,
            processing_time_ms=elapsed,
            language=result.metadata.language or options.language,
            first_failed_provider=first_failed,
            details=details,
        )
        logger.info(
            "ocr_complete",
            extra={
                "provider": name,
                "confidence": result.confidence,
                "first_failed_provider": first_failed,
                "duration_ms": elapsed,
            },
        )
        return dataclasses.replace(result, metadata=metadata)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def list_providers(self) -> list[ProviderDescriptor]:
        return await self.registry.list(timeout=self._probe_timeout)

    async def get_provider(self, name: str | None = None) -> OCRProvider:
        """Return the backend for *name*, or the first available candidate."""
        if name is not None:
            [(provider, status)] = await self.registry.probe_statuses(
                [name], timeout=self._probe_timeout
            )
            if provider is None:
                raise OCRDependencyError(name, status.reason or "Provider unavailable")
            return provider

        names, _ = self.candidates()
        gated = await self.registry.probe_statuses(names, timeout=self._probe_timeout)
        for n, (provider, status) in zip(names, gated):
            if provider is not None and status.available:
                return provider
        raise OCRDependencyError(None, "No OCR provider available", {"candidates": names})

    async def check_capabilities(self, name: str | None = None) -> OCRCapabilities:
        provider = await self.get_provider(name)
        return await provider.check_capabilities()

    async def get_supported_languages(self, name: str | None = None) -> list[str]:
        provider = await self.get_provider(name)
        return provider.get_supported_languages()

    async def cleanup(self) -> None:
        """Release every cached backend. Calling it again is a no-op."""
        await self.registry.clear()


# ---------------------------------------------------------------------------
# Process-scoped instance
# ---------------------------------------------------------------------------

_shared: OCRFactory | None = None


def get_ocr(**options: Any) -> OCRFactory:
    """Return the shared orchestrator, or a fresh one when *options* are given."""
    global _shared
    if options:
        return OCRFactory(**options)
    if _shared is None:
        _shared = OCRFactory()
    return _shared


async def reset_ocr() -> None:
    global _shared
    shared, _shared = _shared, None
    if shared is not None:
        await shared.cleanup()
