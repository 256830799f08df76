from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, Mapping, Sequence

if TYPE_CHECKING:
    from ocrgate.ocr.images import NormalizedImage


class OutputFormat(str, enum.Enum):
    TEXT = "text"
    STRUCTURED = "structured"


@dataclass(frozen=True)
class OCRImage:
    """One unit of OCR input, as handed in by the caller.

    Either ``data`` (encoded file bytes, a data URL, or bare base64 text) or
    ``pixels`` + ``width`` / ``height`` / ``channels`` (raw interleaved pixels).
    Validation happens in the normalizer, which skips bad images instead of
    failing the whole batch.
    """

    data: bytes | str | None = None
    pixels: bytes | None = None
    width: int | None = None
    height: int | None = None
    channels: int | None = None
    format: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Take ownership of mutable buffers
        if isinstance(self.data, (bytearray, memoryview)):
            object.__setattr__(self, "data", bytes(self.data))
        if isinstance(self.pixels, (bytearray, memoryview)):
            object.__setattr__(self, "pixels", bytes(self.pixels))
        object.__setattr__(self, "metadata", dict(self.metadata))


@dataclass(frozen=True)
class RecognitionOptions:
    language: str | None = None             # '+'-joined, e.g. "eng+jpn"
    confidence_threshold: float | None = None  # 0 – 100
    output_format: OutputFormat | None = None
    timeout_ms: int | None = None
    enhance_resolution: bool | None = None  # advisory

    def merged_over(self, base: RecognitionOptions | None) -> RecognitionOptions:
        """Field-wise merge: values set here win, unset ones come from *base*."""
        if base is None:
            return self
        values = {}
        for f in fields(self):
            mine = getattr(self, f.name)
            values[f.name] = mine if mine is not None else getattr(base, f.name)
        return RecognitionOptions(**values)

    @property
    def languages(self) -> list[str]:
        if not self.language:
            return []
        return [code.strip() for code in self.language.split("+") if code.strip()]


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class Detection:
    text: str
    confidence: float | None = None  # 0 – 100, None when the engine gives no score
    bbox: BoundingBox | None = None
    kind: str | None = None          # heading | paragraph | list | table | ...


@dataclass(frozen=True)
class OCRMetadata:
    provider: str
    processing_time_ms: int = 0
    language: str | None = None
    first_failed_provider: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OCRResult:
    text: str
    confidence: float  # 0 – 100
    detections: tuple[Detection, ...] = ()
    metadata: OCRMetadata = field(default_factory=lambda: OCRMetadata(provider="unknown"))


@dataclass(frozen=True)
class DependencyCheckResult:
    available: bool
    reason: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OCRCapabilities:
    can_perform_ocr: bool
    supported_languages: tuple[str, ...] = ()
    supported_formats: tuple[str, ...] = ()
    max_image_size: int | None = None
    has_bounding_boxes: bool = False
    has_confidence_scores: bool = False   # True only for native, measured scores
    provider_specific: Mapping[str, Any] = field(default_factory=dict)


class OCRProvider:
    """Contract every OCR backend implements."""

    name: str = "base"

    async def perform_ocr(
        self,
        images: Sequence[NormalizedImage],
        options: RecognitionOptions,
    ) -> OCRResult:
        raise NotImplementedError

    async def check_dependencies(self) -> DependencyCheckResult:
        raise NotImplementedError

    async def check_capabilities(self) -> OCRCapabilities:
        raise NotImplementedError

    def get_supported_languages(self) -> list[str]:
        raise NotImplementedError

    async def cleanup(self) -> None:
        return None
