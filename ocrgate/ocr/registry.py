"""Provider registry.

Maps backend names to factories and builds each backend lazily on first use.
A backend that cannot be constructed (its SDK is missing, its configuration
is invalid) is reported as unavailable; partial availability is the normal
case, not an error.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Sequence

from ocrgate.core.config import OCRSettings
from ocrgate.ocr.base_ocr import DependencyCheckResult, OCRCapabilities, OCRProvider
from ocrgate.ocr.probe import DEFAULT_PROBE_TIMEOUT_S, probe_all

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], OCRProvider]


@dataclass(frozen=True)
class ProviderDescriptor:
    name: str
    status: DependencyCheckResult
    capabilities: OCRCapabilities | None = None

    @property
    def available(self) -> bool:
        return self.status.available


class ProviderRegistry:
    def __init__(self, factories: Mapping[str, ProviderFactory]) -> None:
        self._factories = dict(factories)
        self._instances: dict[str, OCRProvider] = {}
        self._failures: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def names(self) -> list[str]:
        return list(self._factories)

    def __contains__(self, name: str) -> bool:
        return name in self._factories

    def failure(self, name: str) -> str | None:
        """Why the last attempt to construct *name* failed, if it did."""
        return self._failures.get(name)

    def constructed(self) -> list[str]:
        return list(self._instances)

    async def resolve(self, name: str) -> OCRProvider | None:
        if name in self._instances:
            return self._instances[name]

        factory = self._factories.get(name)
        if factory is None:
            logger.warning("provider_unknown", extra={"provider": name})
            return None

        lock = self._locks.setdefault(name, asyncio.Lock())
        async with lock:
            if name in self._instances:
                return self._instances[name]
            try:
                instance = factory()
            except Exception as exc:
                self._failures[name] = f"Failed to construct provider: {exc}"
                logger.warning(
                    "provider_construct_failed",
                    extra={"provider": name, "error": str(exc)},
                )
                return None
            self._failures.pop(name, None)
            self._instances[name] = instance
            logger.debug("provider_constructed", extra={"provider": name})
            return instance

    def _unresolved(self, name: str) -> DependencyCheckResult:
        if name not in self._factories:
            reason = f"Unknown OCR provider: {name}"
        else:
            reason = self.failure(name) or "Provider could not be constructed"
        return DependencyCheckResult(
            available=False, reason=reason, details={"error_type": "construction"}
        )

    async def probe_statuses(
        self,
        names: Sequence[str],
        timeout: float | None = DEFAULT_PROBE_TIMEOUT_S,
    ) -> list[tuple[OCRProvider | None, DependencyCheckResult]]:
        """Resolve *names* and probe the ones that exist, concurrently.

        Results keep the order of *names*; an unknown or unconstructible
        backend is paired with ``None`` and an unavailable status.
        """
        providers = [await self.resolve(name) for name in names]
        statuses = iter(
            await probe_all([p for p in providers if p is not None], timeout=timeout)
        )
        return [
            (provider, next(statuses) if provider is not None else self._unresolved(name))
            for name, provider in zip(names, providers)
        ]

    async def _describe(
        self,
        name: str,
        provider: OCRProvider | None,
        status: DependencyCheckResult,
    ) -> ProviderDescriptor:
        capabilities = None
        if provider is not None and status.available:
            try:
                capabilities = await provider.check_capabilities()
            except Exception as exc:
                logger.warning(
                    "capabilities_query_failed",
                    extra={"provider": name, "error": str(exc)},
                )
        return ProviderDescriptor(name=name, status=status, capabilities=capabilities)

    async def describe(
        self,
        name: str,
        timeout: float | None = DEFAULT_PROBE_TIMEOUT_S,
    ) -> ProviderDescriptor:
        [(provider, status)] = await self.probe_statuses([name], timeout=timeout)
        return await self._describe(name, provider, status)

    async def list(
        self,
        timeout: float | None = DEFAULT_PROBE_TIMEOUT_S,
    ) -> list[ProviderDescriptor]:
        """Describe every registered backend; probes run concurrently."""
        names = self.names()
        gated = await self.probe_statuses(names, timeout=timeout)
        return list(
            await asyncio.gather(
                *(self._describe(n, p, s) for n, (p, s) in zip(names, gated))
            )
        )

    async def clear(self) -> None:
        """Clean up every constructed backend and forget it. Safe to repeat."""
        instances = list(self._instances.items())
        self._instances.clear()
        self._failures.clear()
        self._locks.clear()
        for name, provider in instances:
            try:
                await provider.cleanup()
            except Exception as exc:
                logger.warning(
                    "provider_cleanup_failed",
                    extra={"provider": name, "error": str(exc)},
                )


def default_provider_factories(
    settings: OCRSettings | None = None,
) -> dict[str, ProviderFactory]:
    """Factories for the built-in backends, keyed by provider name.

    Backend modules are imported inside each factory so an environment that
    lacks an optional SDK only loses that one backend.
    """
    env = settings if settings is not None else OCRSettings()

    def paddleocr() -> OCRProvider:
        from ocrgate.ocr.engines import PaddleOCRProvider
        return PaddleOCRProvider(use_gpu=env.paddle_use_gpu)

    def tesseract() -> OCRProvider:
        from ocrgate.ocr.tesseract_ocr import TesseractOCRProvider
        return TesseractOCRProvider(tesseract_cmd=env.tesseract_cmd)

    def litellm() -> OCRProvider:
        from ocrgate.ocr.litellm_ocr import LiteLLMOCRProvider
        return LiteLLMOCRProvider(settings=env)

    def textract() -> OCRProvider:
        from ocrgate.ocr.engines import TextractOCRProvider
        return TextractOCRProvider(region=env.aws_region)

    def mock() -> OCRProvider:
        from ocrgate.ocr.mock_ocr import MockOCRProvider
        return MockOCRProvider()

    return {
        "paddleocr": paddleocr,
        "tesseract": tesseract,
        "litellm": litellm,
        "textract": textract,
        "mock": mock,
    }
