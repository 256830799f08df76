"""Image normalizer tests: signatures, size floor, string decoding, raw pixels."""
from __future__ import annotations

import base64

import pytest

from ocrgate.core.errors import OCRProcessingError
from ocrgate.ocr.base_ocr import OCRImage
from ocrgate.ocr.images import (
    MIN_IMAGE_BYTES,
    NORMALIZER,
    EncodedImage,
    ImageFormat,
    RawImage,
    SkippedImage,
    detect_format,
    image_size,
    normalize_image,
    normalize_images,
    to_data_url,
    to_png_bytes,
)

_HEADERS = {
    ImageFormat.PNG: b"\x89PNG\r\n\x1a\n",
    ImageFormat.JPEG: b"\xff\xd8\xff\xe0",
    ImageFormat.GIF: b"GIF89a",
    ImageFormat.WEBP: b"RIFF\x00\x00\x00\x00WEBP",
    ImageFormat.BMP: b"BM",
}


def _padded(header: bytes, length: int) -> bytes:
    return header + b"\x00" * (length - len(header))


# ---------------------------------------------------------------------------
# Signature detection
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("fmt", list(_HEADERS))
def test_detect_format_recognises_signatures(fmt: ImageFormat) -> None:
    assert detect_format(_padded(_HEADERS[fmt], 32)) is fmt


def test_detect_format_gif87a() -> None:
    assert detect_format(_padded(b"GIF87a", 32)) is ImageFormat.GIF


def test_detect_format_rejects_riff_without_webp_tag() -> None:
    assert detect_format(_padded(b"RIFF\x00\x00\x00\x00WAVE", 32)) is None


def test_detect_format_unknown_bytes() -> None:
    assert detect_format(b"%PDF-1.7" + b"\x00" * 200) is None


# ---------------------------------------------------------------------------
# normalize_image
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("fmt", list(_HEADERS))
def test_accepts_known_signature_at_size_floor(fmt: ImageFormat) -> None:
    outcome = normalize_image(OCRImage(data=_padded(_HEADERS[fmt], MIN_IMAGE_BYTES)))
    assert isinstance(outcome, EncodedImage)
    assert outcome.format is fmt


@pytest.mark.parametrize("fmt", list(_HEADERS))
def test_rejects_known_signature_below_size_floor(fmt: ImageFormat) -> None:
    outcome = normalize_image(OCRImage(data=_padded(_HEADERS[fmt], MIN_IMAGE_BYTES - 1)), index=3)
    assert isinstance(outcome, SkippedImage)
    assert outcome.index == 3
    assert "too small" in outcome.reason


def test_rejects_unknown_signature() -> None:
    outcome = normalize_image(OCRImage(data=b"hello world" * 20))
    assert isinstance(outcome, SkippedImage)
    assert outcome.reason == "unsupported image format"


def test_decodes_data_url(png_bytes: bytes) -> None:
    url = "data:image/png;base64," + base64.b64encode(png_bytes).decode()
    outcome = normalize_image(OCRImage(data=url))
    assert isinstance(outcome, EncodedImage)
    assert outcome.data == png_bytes


def test_decodes_bare_base64(png_bytes: bytes) -> None:
    outcome = normalize_image(OCRImage(data=base64.b64encode(png_bytes).decode()))
    assert isinstance(outcome, EncodedImage)
    assert outcome.format is ImageFormat.PNG


@pytest.mark.parametrize(
    "payload",
    ["not base64 at all!!", "data:image/png,rawtext", "data:image/png;base64"],
)
def test_bad_string_payload_is_skipped(payload: str) -> None:
    assert isinstance(normalize_image(OCRImage(data=payload)), SkippedImage)


def test_mismatched_format_hint_is_ignored(png_bytes: bytes) -> None:
    outcome = normalize_image(OCRImage(data=png_bytes, format="jpg"))
    assert isinstance(outcome, EncodedImage)
    assert outcome.format is ImageFormat.PNG


def test_mutable_buffer_is_copied(png_bytes: bytes) -> None:
    buf = bytearray(png_bytes)
    image = OCRImage(data=buf)
    buf[:8] = b"\x00" * 8
    assert isinstance(image.data, bytes)
    assert isinstance(normalize_image(image), EncodedImage)


def test_raw_pixels_accepted() -> None:
    outcome = normalize_image(OCRImage(pixels=b"\xff" * 12, width=2, height=2, channels=3))
    assert isinstance(outcome, RawImage)
    assert (outcome.width, outcome.height, outcome.channels) == (2, 2, 3)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"width": 2, "height": 2},
        {"width": 2, "channels": 3},
        {"width": 0, "height": 2, "channels": 3},
        {"width": "wide", "height": 2, "channels": 3},
    ],
)
def test_raw_pixels_require_valid_dimensions(kwargs: dict) -> None:
    assert isinstance(normalize_image(OCRImage(pixels=b"\xff" * 12, **kwargs)), SkippedImage)


def test_both_payloads_rejected(png_bytes: bytes) -> None:
    outcome = normalize_image(
        OCRImage(data=png_bytes, pixels=b"\xff" * 12, width=2, height=2, channels=3)
    )
    assert isinstance(outcome, SkippedImage)


def test_no_payload_rejected() -> None:
    assert isinstance(normalize_image(OCRImage()), SkippedImage)


# ---------------------------------------------------------------------------
# normalize_images
# ---------------------------------------------------------------------------

def test_batch_keeps_order_and_reports_skips(png_bytes: bytes) -> None:
    raw = OCRImage(pixels=b"\x00" * 4, width=2, height=2, channels=1)
    batch = normalize_images([OCRImage(data=png_bytes), OCRImage(data=b"tiny"), raw])
    assert [type(i) for i in batch.images] == [EncodedImage, RawImage]
    assert [s.index for s in batch.skipped] == [1]


def test_batch_with_nothing_usable_raises() -> None:
    with pytest.raises(OCRProcessingError) as exc_info:
        normalize_images([OCRImage(data=b"tiny"), OCRImage()])
    assert exc_info.value.provider == NORMALIZER
    assert exc_info.value.message == "No valid images to process"
    assert exc_info.value.details["received"] == 2


def test_empty_batch_raises() -> None:
    with pytest.raises(OCRProcessingError, match="No valid images"):
        normalize_images([])


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------

def test_raw_image_converts_to_png() -> None:
    raw = RawImage(pixels=b"\x80" * (4 * 3 * 3), width=4, height=3, channels=3)
    assert to_png_bytes(raw).startswith(b"\x89PNG\r\n\x1a\n")
    assert to_data_url(raw).startswith("data:image/png;base64,")
    assert image_size(raw) == (4, 3)


def test_encoded_image_size_and_data_url(png_bytes: bytes) -> None:
    encoded = normalize_image(OCRImage(data=png_bytes))
    assert image_size(encoded) == (32, 24)
    assert encoded.data_url().startswith("data:image/png;base64,")
