"""Capability probing.

``probe_provider`` answers "can this provider run right now?" and never
raises: import errors, missing credentials, failed handshakes and probe
timeouts all fold into ``available=False`` with a human-readable reason.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from ocrgate.ocr.base_ocr import DependencyCheckResult, OCRProvider

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_S = 10.0


async def probe_provider(
    provider: OCRProvider,
    timeout: float | None = DEFAULT_PROBE_TIMEOUT_S,
) -> DependencyCheckResult:
    name = getattr(provider, "name", type(provider).__name__)
    try:
        result = await asyncio.wait_for(provider.check_dependencies(), timeout=timeout)
    except asyncio.TimeoutError:
        return DependencyCheckResult(
            available=False,
            reason=f"Dependency check timed out after {timeout}s",
            details={"error_type": "timeout"},
        )
    except Exception as exc:
        logger.warning("probe_failed", extra={"provider": name, "error": str(exc)})
        return DependencyCheckResult(
            available=False,
            reason=f"Dependency check failed: {exc}",
            details={"error_type": type(exc).__name__},
        )

    if not isinstance(result, DependencyCheckResult):
        return DependencyCheckResult(
            available=False,
            reason="Dependency check returned an invalid result",
            details={"error_type": type(result).__name__},
        )
    return result


async def probe_all(
    providers: Sequence[OCRProvider],
    timeout: float | None = DEFAULT_PROBE_TIMEOUT_S,
) -> list[DependencyCheckResult]:
    """Probe every provider concurrently; results keep the input order."""
    return list(
        await asyncio.gather(*(probe_provider(p, timeout=timeout) for p in providers))
    )
