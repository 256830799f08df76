"""Confidence aggregation tests."""
from __future__ import annotations

import math

import pytest

from ocrgate.confidence.confidence import (
    aggregate_confidence,
    compose_result,
    filter_detections,
    to_percent,
)
from ocrgate.ocr.base_ocr import Detection, OutputFormat, RecognitionOptions


def _dets(*scores: float | None) -> list[Detection]:
    return [Detection(text=f"line {i}", confidence=s) for i, s in enumerate(scores)]


@pytest.mark.parametrize(
    "score, scale, expected",
    [
        (0.95, 1.0, 95.0),
        (87.0, 100.0, 87.0),
        (1.7, 1.0, 100.0),
        (-3.0, 100.0, 0.0),
        (None, 1.0, None),
        ("n/a", 1.0, None),
        (math.nan, 1.0, None),
    ],
)
def test_to_percent(score, scale, expected) -> None:
    assert to_percent(score, scale=scale) == (pytest.approx(expected) if expected is not None else None)


def test_no_detections_scores_zero() -> None:
    result = aggregate_confidence([], estimate=80.0)
    assert result.overall == 0.0
    assert result.estimated is False


def test_unscored_detections_use_estimate() -> None:
    result = aggregate_confidence(_dets(None, None), estimate=80.0)
    assert result.overall == 80.0
    assert result.estimated is True


def test_mean_of_scored_detections_ignores_unscored() -> None:
    result = aggregate_confidence(_dets(90.0, None, 60.0))
    assert result.overall == pytest.approx(75.0)
    assert result.scored == 2


def test_filter_keeps_unscored_and_drops_low() -> None:
    kept = filter_detections(_dets(90.0, None, 40.0), threshold=50.0)
    assert [d.text for d in kept] == ["line 0", "line 1"]


def test_filter_without_threshold_keeps_all() -> None:
    assert len(filter_detections(_dets(1.0, 2.0), threshold=None)) == 2


@pytest.mark.parametrize("threshold", [None, 0.0, 50.0, 95.0, 150.0, -10.0])
def test_threshold_never_changes_aggregate(threshold) -> None:
    detections = _dets(97.0, 91.5, 88.0, 40.0)
    result = compose_result(
        "fake", detections, RecognitionOptions(confidence_threshold=threshold)
    )
    assert result.confidence == pytest.approx((97.0 + 91.5 + 88.0 + 40.0) / 4)
    if threshold is not None:
        assert all(d.confidence >= threshold for d in result.detections)


def test_text_output_drops_detections_but_keeps_text() -> None:
    result = compose_result(
        "fake", _dets(90.0, 80.0), RecognitionOptions(output_format=OutputFormat.TEXT)
    )
    assert result.detections == ()
    assert result.text == "line 0\nline 1"
    assert result.confidence == pytest.approx(85.0)


def test_estimated_score_is_flagged_in_metadata() -> None:
    result = compose_result(
        "fake", _dets(None), RecognitionOptions(language="eng"), estimate=75.0
    )
    assert result.confidence == 75.0
    assert result.metadata.details["confidence_estimated"] is True
    assert result.metadata.language == "eng"
    assert result.metadata.provider == "fake"


def test_explicit_text_is_kept_unfiltered() -> None:
    result = compose_result(
        "fake",
        _dets(90.0, 10.0),
        RecognitionOptions(confidence_threshold=50.0),
        text="full page",
    )
    assert result.text == "full page"
    assert len(result.detections) == 1
