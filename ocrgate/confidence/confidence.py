"""Confidence scoring module.

Folds per-detection scores into one overall score (0 – 100):

- no detections                          → 0
- detections, but none carries a score   → the provider's fixed estimate
- otherwise                              → mean of the scored detections

The mean is taken over ALL detections before the caller's threshold is
applied; the threshold only decides which detections are emitted.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from ocrgate.ocr.base_ocr import (
    Detection,
    OCRMetadata,
    OCRResult,
    OutputFormat,
    RecognitionOptions,
)


@dataclass(frozen=True)
class ConfidenceResult:
    overall: float                      # 0 – 100
    scored: int                         # detections with a usable score
    estimated: bool                     # True when `overall` is a placeholder


def to_percent(score: float | None, scale: float = 1.0) -> float | None:
    """Convert a native score on a 0..scale range to 0 – 100, clamped."""
    if score is None:
        return None
    try:
        value = float(score)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or scale <= 0:
        return None
    return max(0.0, min(100.0, value * (100.0 / scale)))


def _usable(score: float | None) -> bool:
    return score is not None and math.isfinite(score)


def aggregate_confidence(
    detections: Sequence[Detection],
    estimate: float = 0.0,
) -> ConfidenceResult:
    if not detections:
        return ConfidenceResult(overall=0.0, scored=0, estimated=False)

    scores = [d.confidence for d in detections if _usable(d.confidence)]
    if not scores:
        return ConfidenceResult(overall=float(estimate), scored=0, estimated=True)

    return ConfidenceResult(
        overall=sum(scores) / len(scores),
        scored=len(scores),
        estimated=False,
    )


def filter_detections(
    detections: Iterable[Detection],
    threshold: float | None,
) -> tuple[Detection, ...]:
    """Drop scored detections below *threshold*; unscored ones are kept."""
    if threshold is None:
        return tuple(detections)
    return tuple(
        d for d in detections
        if not _usable(d.confidence) or d.confidence >= threshold
    )


def compose_result(
    provider: str,
    detections: Sequence[Detection],
    options: RecognitionOptions,
    *,
    text: str | None = None,
    estimate: float = 0.0,
    processing_time_ms: int = 0,
    details: Mapping[str, Any] | None = None,
) -> OCRResult:
    """Build the canonical ``OCRResult`` from a backend's raw detections."""
    score = aggregate_confidence(detections, estimate=estimate)
    emitted = filter_detections(detections, options.confidence_threshold)
    if options.output_format is OutputFormat.TEXT:
        emitted = ()

    full_text = text if text is not None else "\n".join(d.text for d in detections)
    meta_details = dict(details or {})
    if score.estimated:
        meta_details["confidence_estimated"] = True

    return OCRResult(
        text=full_text,
        confidence=round(score.overall, 4),
        detections=emitted,
        metadata=OCRMetadata(
            provider=provider,
            processing_time_ms=processing_time_ms,
            language=options.language,
            details=meta_details,
        ),
    )
