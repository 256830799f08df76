from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from ocrgate.core.errors import (
    OCRDependencyError,
    OCRError,
    OCRUnsupportedError,
)
from ocrgate.ocr.base_ocr import OCRImage, OutputFormat, RecognitionOptions
from ocrgate.ocr.factory import OCRFactory, get_ocr
from ocrgate.ocr.images import NORMALIZER
from ocrgate.schemas import ErrorOut, ErrorResponse, OCRResponse, ProviderOut

logger = logging.getLogger(__name__)
router = APIRouter()


def get_factory() -> OCRFactory:
    return get_ocr()


def _status_for(error: OCRError) -> int:
    if isinstance(error, OCRUnsupportedError) or error.provider == NORMALIZER:
        return 422
    if isinstance(error, OCRDependencyError):
        return 503
    return 502


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/providers", response_model=list[ProviderOut])
async def list_providers(
    factory: OCRFactory = Depends(get_factory),
) -> list[ProviderOut]:
    descriptors = await factory.list_providers()
    return [ProviderOut.from_descriptor(d) for d in descriptors]


_ERROR_RESPONSES = {
    422: {"model": ErrorResponse, "description": "No usable images or unsupported request"},
    502: {"model": ErrorResponse, "description": "Every provider failed to process the images"},
    503: {"model": ErrorResponse, "description": "No provider is available"},
}


@router.post("/ocr", response_model=OCRResponse, responses=_ERROR_RESPONSES)
async def perform_ocr(
    factory: OCRFactory = Depends(get_factory),
    files: list[UploadFile] = File(...),
    language: str | None = Form(None),
    confidence_threshold: float | None = Form(None),
    output_format: OutputFormat | None = Form(None),
    timeout_ms: int | None = Form(None, gt=0),
    provider: str | None = Form(None),
) -> OCRResponse:
    images = [
        OCRImage(
            data=await upload.read(),
            format=(upload.content_type or "").split("/")[-1] or None,
            metadata={"filename": upload.filename},
        )
        for upload in files
    ]
    options = RecognitionOptions(
        language=language,
        confidence_threshold=confidence_threshold,
        output_format=output_format,
        timeout_ms=timeout_ms,
    )

    try:
        result = await factory.perform_ocr(images, options, provider=provider or None)
    except OCRError as exc:
        status = _status_for(exc)
        logger.warning(
            "ocr_request_failed",
            extra={"status": status, "kind": exc.kind, "provider": exc.provider},
        )
        detail = ErrorOut(**exc.to_dict()).model_dump()
        raise HTTPException(status_code=status, detail=detail) from exc

    logger.info(
        "ocr_request_complete",
        extra={"provider": result.metadata.provider, "files": len(images)},
    )
    return OCRResponse.from_result(result)
