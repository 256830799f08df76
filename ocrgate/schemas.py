from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from ocrgate.ocr.base_ocr import OCRCapabilities, OCRResult
from ocrgate.ocr.registry import ProviderDescriptor


class BoundingBoxOut(BaseModel):
    x: float
    y: float
    width: float
    height: float


class DetectionOut(BaseModel):
    text: str
    confidence: float | None
    bbox: BoundingBoxOut | None = None
    kind: str | None = None


class OCRMetadataOut(BaseModel):
    provider: str
    processing_time_ms: int
    language: str | None
    first_failed_provider: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class OCRResponse(BaseModel):
    text: str
    confidence: float
    detections: list[DetectionOut] = Field(default_factory=list)
    metadata: OCRMetadataOut

    @classmethod
    def from_result(cls, result: OCRResult) -> OCRResponse:
        return cls(
            text=result.text,
            confidence=result.confidence,
            detections=[
                DetectionOut(
                    text=d.text,
                    confidence=d.confidence,
                    bbox=BoundingBoxOut(**vars(d.bbox)) if d.bbox else None,
                    kind=d.kind,
                )
                for d in result.detections
            ],
            metadata=OCRMetadataOut(
                provider=result.metadata.provider,
                processing_time_ms=result.metadata.processing_time_ms,
                language=result.metadata.language,
                first_failed_provider=result.metadata.first_failed_provider,
                details=dict(result.metadata.details),
            ),
        )


class CapabilitiesOut(BaseModel):
    can_perform_ocr: bool
    supported_languages: list[str]
    supported_formats: list[str]
    max_image_size: int | None
    has_bounding_boxes: bool
    has_confidence_scores: bool
    provider_specific: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_capabilities(cls, caps: OCRCapabilities) -> CapabilitiesOut:
        return cls(
            can_perform_ocr=caps.can_perform_ocr,
            supported_languages=list(caps.supported_languages),
            supported_formats=list(caps.supported_formats),
            max_image_size=caps.max_image_size,
            has_bounding_boxes=caps.has_bounding_boxes,
            has_confidence_scores=caps.has_confidence_scores,
            provider_specific=dict(caps.provider_specific),
        )


class ProviderOut(BaseModel):
    """One registered backend and whether it can run right now."""
    name: str
    available: bool
    reason: str | None
    details: dict[str, Any] = Field(default_factory=dict)
    capabilities: CapabilitiesOut | None = None

    @classmethod
    def from_descriptor(cls, descriptor: ProviderDescriptor) -> ProviderOut:
        return cls(
            name=descriptor.name,
            available=descriptor.status.available,
            reason=descriptor.status.reason,
            details=dict(descriptor.status.details),
            capabilities=CapabilitiesOut.from_capabilities(descriptor.capabilities)
            if descriptor.capabilities
            else None,
        )


class ErrorOut(BaseModel):
    kind: str
    provider: str | None
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Body of a failed ``POST /ocr``."""
    detail: ErrorOut
