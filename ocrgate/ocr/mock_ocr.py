from __future__ import annotations

import time
from typing import Sequence

from ocrgate.confidence.confidence import compose_result
from ocrgate.ocr.base_ocr import (
    BoundingBox,
    DependencyCheckResult,
    Detection,
    OCRCapabilities,
    OCRProvider,
    OCRResult,
    RecognitionOptions,
)
from ocrgate.ocr.images import NormalizedImage

_SAMPLE_LINES = (
    ("INVOICE", 97.0, "heading"),
    ("Vendor: Acme Corp", 91.5, "paragraph"),
    ("Invoice #: INV-2024-001", 88.0, "paragraph"),
    ("Total: $300.00", 63.5, "paragraph"),
)


class MockOCRProvider(OCRProvider):
    """Deterministic provider for development and tests; no dependencies."""

    name = "mock"

    async def perform_ocr(
        self,
        images: Sequence[NormalizedImage],
        options: RecognitionOptions,
    ) -> OCRResult:
        t0 = time.monotonic()
        detections: list[Detection] = []
        for page, _ in enumerate(images):
            for row, (text, conf, kind) in enumerate(_SAMPLE_LINES):
                detections.append(
                    Detection(
                        text=text,
                        confidence=conf,
                        bbox=BoundingBox(x=10, y=10 + 30 * row + 1000 * page, width=200, height=24),
                        kind=kind,
                    )
                )
        return compose_result(
            self.name,
            detections,
            options,
            processing_time_ms=int((time.monotonic() - t0) * 1000),
            details={"pages": len(images)},
        )

    async def check_dependencies(self) -> DependencyCheckResult:
        return DependencyCheckResult(available=True, details={"synthetic": True})

    async def check_capabilities(self) -> OCRCapabilities:
        return OCRCapabilities(
            can_perform_ocr=True,
            supported_languages=tuple(self.get_supported_languages()),
            supported_formats=("png", "jpeg", "gif", "webp", "bmp", "raw"),
            has_bounding_boxes=True,
            has_confidence_scores=True,
            provider_specific={"synthetic": True},
        )

    def get_supported_languages(self) -> list[str]:
        return ["eng"]
