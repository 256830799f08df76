"""Image normalization.

Every backend consumes the same normalized representation:

- ``EncodedImage``: validated file bytes with a signature-detected format
- ``RawImage``    : raw interleaved pixels with width / height / channels
- ``SkippedImage``: an input that was rejected; the batch carries on without it

Format detection looks at magic bytes only; file extensions and declared
format hints are never trusted over the signature.
"""
from __future__ import annotations

import base64
import binascii
import enum
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Union

from ocrgate.core.errors import OCRProcessingError
from ocrgate.ocr.base_ocr import OCRImage

logger = logging.getLogger(__name__)

MIN_IMAGE_BYTES = 100

NORMALIZER = "image-normalizer"


class ImageFormat(str, enum.Enum):
    PNG = "png"
    JPEG = "jpeg"
    GIF = "gif"
    WEBP = "webp"
    BMP = "bmp"

    @property
    def mime_type(self) -> str:
        return f"image/{self.value}"


_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
_JPEG_SOI = b"\xff\xd8\xff"
_GIF_HEADERS = (b"GIF87a", b"GIF89a")

_PIL_MODES = {1: "L", 3: "RGB", 4: "RGBA"}
_HINT_ALIASES = {"jpg": "jpeg", "tif": "tiff"}


def detect_format(data: bytes) -> ImageFormat | None:
    if data.startswith(_PNG_SIGNATURE):
        return ImageFormat.PNG
    if data.startswith(_JPEG_SOI):
        return ImageFormat.JPEG
    if data[:6] in _GIF_HEADERS:
        return ImageFormat.GIF
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return ImageFormat.WEBP
    if data[:2] == b"BM":
        return ImageFormat.BMP
    return None


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    format: ImageFormat
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def mime_type(self) -> str:
        return self.format.mime_type

    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64()}"


@dataclass(frozen=True)
class RawImage:
    pixels: bytes
    width: int
    height: int
    channels: int
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SkippedImage:
    index: int
    reason: str


NormalizedImage = Union[EncodedImage, RawImage]


@dataclass(frozen=True)
class NormalizedBatch:
    images: tuple[NormalizedImage, ...]
    skipped: tuple[SkippedImage, ...] = ()


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def _decode_string(value: str) -> bytes | None:
    text = value.strip()
    if text.startswith("data:"):
        header, sep, payload = text.partition(",")
        if not sep or ";base64" not in header:
            return None
        text = payload
    try:
        return base64.b64decode("".join(text.split()), validate=True)
    except (binascii.Error, ValueError):
        return None


def normalize_image(image: OCRImage, index: int = 0) -> EncodedImage | RawImage | SkippedImage:
    """Validate one input. Never raises; rejected inputs become ``SkippedImage``."""
    has_data = image.data is not None
    has_pixels = image.pixels is not None

    if has_data and has_pixels:
        return SkippedImage(index, "both encoded data and raw pixels supplied")

    if has_pixels:
        dims = (image.width, image.height, image.channels)
        if any(d is None for d in dims):
            return SkippedImage(index, "raw pixels require width, height and channels")
        try:
            width, height, channels = (int(d) for d in dims)
        except (TypeError, ValueError):
            return SkippedImage(index, "raw pixel dimensions must be integers")
        if min(width, height, channels) <= 0:
            return SkippedImage(index, "raw pixel dimensions must be positive")
        return RawImage(
            pixels=image.pixels,
            width=width,
            height=height,
            channels=channels,
            metadata=image.metadata,
        )

    if not has_data:
        return SkippedImage(index, "no image payload")

    if isinstance(image.data, str):
        data = _decode_string(image.data)
        if data is None:
            return SkippedImage(index, "string payload is not valid base64 or data URL")
    else:
        data = bytes(image.data)

    if len(data) < MIN_IMAGE_BYTES:
        return SkippedImage(index, f"image too small ({len(data)} bytes)")

    fmt = detect_format(data)
    if fmt is None:
        return SkippedImage(index, "unsupported image format")

    hint = (image.format or "").lower().lstrip(".")
    if hint and _HINT_ALIASES.get(hint, hint) != fmt.value:
        logger.debug(
            "image_format_hint_ignored",
            extra={"index": index, "hint": image.format, "detected": fmt.value},
        )
    return EncodedImage(data=data, format=fmt, metadata=image.metadata)


def normalize_images(images: Sequence[OCRImage]) -> NormalizedBatch:
    usable: list[NormalizedImage] = []
    skipped: list[SkippedImage] = []
    for index, image in enumerate(images):
        outcome = normalize_image(image, index)
        if isinstance(outcome, SkippedImage):
            logger.warning(
                "image_skipped",
                extra={"index": outcome.index, "reason": outcome.reason},
            )
            skipped.append(outcome)
        else:
            usable.append(outcome)

    if not usable:
        raise OCRProcessingError(
            NORMALIZER,
            "No valid images to process",
            {"received": len(images), "skipped": [s.reason for s in skipped]},
        )
    return NormalizedBatch(images=tuple(usable), skipped=tuple(skipped))


# ---------------------------------------------------------------------------
# Conversion helpers for backends (Pillow)
# ---------------------------------------------------------------------------

def to_pil_image(image: NormalizedImage):
    from PIL import Image  # type: ignore[import]

    if isinstance(image, RawImage):
        mode = _PIL_MODES.get(image.channels)
        if mode is None:
            raise ValueError(f"Unsupported channel count: {image.channels}")
        return Image.frombytes(mode, (image.width, image.height), image.pixels)
    img = Image.open(io.BytesIO(image.data))
    img.load()
    return img


def to_png_bytes(image: NormalizedImage) -> bytes:
    if isinstance(image, EncodedImage) and image.format is ImageFormat.PNG:
        return image.data
    buf = io.BytesIO()
    to_pil_image(image).save(buf, format="PNG")
    return buf.getvalue()


def to_data_url(image: NormalizedImage) -> str:
    if isinstance(image, EncodedImage):
        return image.data_url()
    encoded = base64.b64encode(to_png_bytes(image)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def image_size(image: NormalizedImage) -> tuple[int, int]:
    if isinstance(image, RawImage):
        return image.width, image.height
    return to_pil_image(image).size
