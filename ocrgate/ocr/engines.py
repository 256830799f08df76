"""PaddleOCRProvider (local neural-network runtime) and TextractOCRProvider (AWS)."""
from __future__ import annotations

import asyncio
import importlib.util
import logging
import time
from typing import Any, Sequence

from ocrgate.confidence.confidence import compose_result, to_percent
from ocrgate.core.errors import (
    OCRDependencyError,
    OCRProcessingError,
    OCRUnsupportedError,
)
from ocrgate.ocr.base_ocr import (
    BoundingBox,
    DependencyCheckResult,
    Detection,
    OCRCapabilities,
    OCRProvider,
    OCRResult,
    RecognitionOptions,
)
from ocrgate.ocr.handles import HandleCache
from ocrgate.ocr.images import (
    EncodedImage,
    ImageFormat,
    NormalizedImage,
    image_size,
    to_pil_image,
    to_png_bytes,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# PaddleOCRProvider: PaddleOCR
# ---------------------------------------------------------------------------

# Tesseract-style language codes → PaddleOCR model language names
PADDLE_LANGUAGES: dict[str, str] = {
    "eng": "en",
    "chi_sim": "ch",
    "chi_tra": "chinese_cht",
    "jpn": "japan",
    "kor": "korean",
    "fra": "fr",
    "deu": "german",
    "spa": "es",
    "ita": "it",
    "por": "pt",
    "rus": "ru",
    "ara": "ar",
    "hin": "hi",
    "vie": "vi",
    "tur": "tr",
    "ukr": "uk",
    "pol": "pl",
    "nld": "nl",
}


def _paddle_rows(result: Any) -> list[tuple[str, float | None, list[float] | None]]:
    """Flatten PaddleOCR output into (text, score 0–1, [x0, y0, x1, y1]) rows.

    Handles both the 3.x ``predict`` result objects (dict-like with
    ``rec_texts`` / ``rec_scores`` / ``rec_boxes``) and the 2.x ``ocr`` nested
    lists of ``[points, (text, score)]``.
    """
    rows: list[tuple[str, float | None, list[float] | None]] = []
    for page in result or []:
        if page is None:
            continue
        if hasattr(page, "get") or isinstance(page, dict):
            texts = list(page.get("rec_texts") or [])
            scores = list(page.get("rec_scores") or [])
            boxes = page.get("rec_boxes")
            boxes = [list(map(float, b)) for b in boxes] if boxes is not None else []
            for i, text in enumerate(texts):
                score = float(scores[i]) if i < len(scores) else None
                box = boxes[i] if i < len(boxes) else None
                rows.append((str(text), score, box))
            continue
        for line in page:
            points, (text, score) = line[0], line[1]
            xs = [float(p[0]) for p in points]
            ys = [float(p[1]) for p in points]
            rows.append((str(text), float(score), [min(xs), min(ys), max(xs), max(ys)]))
    return rows


class PaddleOCRProvider(OCRProvider):
    """OCR provider backed by PaddleOCR (runs 100% locally, no cloud calls).

    One engine is built per model language and cached until ``cleanup()``.

    Install dependency:
        pip install paddlepaddle paddleocr

    Config (via .env):
        HAVE_OCR_PADDLE_USE_GPU=false
    """

    name = "paddleocr"

    def __init__(self, use_gpu: bool = False) -> None:
        self._use_gpu = use_gpu
        self._engines = HandleCache("paddleocr")

    def _build_engine(self, lang: str):
        try:
            from paddleocr import PaddleOCR  # type: ignore[import]
        except ModuleNotFoundError as exc:
            raise OCRDependencyError(
                self.name,
                "PaddleOCR is not installed. Run: pip install paddlepaddle paddleocr",
            ) from exc
        return PaddleOCR(
            lang=lang,
            use_textline_orientation=True,
            device="gpu" if self._use_gpu else "cpu",
        )

    async def _get_engine(self, lang: str):
        async def build():
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._build_engine, lang)
        return await self._engines.get_or_create(lang, build)

    def _model_language(self, options: RecognitionOptions) -> str:
        requested = options.languages or ["eng"]
        code = requested[0]
        if code not in PADDLE_LANGUAGES:
            raise OCRUnsupportedError(
                self.name,
                f"Language not supported by PaddleOCR: {code}",
                {"requested": requested},
            )
        if len(requested) > 1:
            logger.info(
                "paddleocr_single_language_model",
                extra={"requested": "+".join(requested), "using": code},
            )
        return PADDLE_LANGUAGES[code]

    async def perform_ocr(
        self,
        images: Sequence[NormalizedImage],
        options: RecognitionOptions,
    ) -> OCRResult:
        """Run PaddleOCR on every image and return line detections + confidence."""
        import numpy as np  # type: ignore[import]

        lang = self._model_language(options)
        engine = await self._get_engine(lang)

        t0 = time.monotonic()
        loop = asyncio.get_running_loop()
        detections: list[Detection] = []
        try:
            for image in images:
                img_array = np.array(to_pil_image(image).convert("RGB"))
                result = await loop.run_in_executor(None, engine.predict, img_array)
                for text, score, box in _paddle_rows(result):
                    bbox = None
                    if box is not None:
                        bbox = BoundingBox(x=box[0], y=box[1], width=box[2] - box[0], height=box[3] - box[1])
                    detections.append(Detection(text=text, confidence=to_percent(score), bbox=bbox))
        except Exception as exc:
            raise OCRProcessingError(
                self.name, f"PaddleOCR inference failed: {exc}", {"error": repr(exc)}
            ) from exc

        elapsed = int((time.monotonic() - t0) * 1000)
        logger.info(
            "paddleocr_complete",
            extra={"lines": len(detections), "pages": len(images), "lang": lang},
        )
        return compose_result(
            self.name,
            detections,
            options,
            processing_time_ms=elapsed,
            details={"model_language": lang, "device": "gpu" if self._use_gpu else "cpu"},
        )

    async def check_dependencies(self) -> DependencyCheckResult:
        # Importing paddle is expensive; locating the package is enough here.
        if importlib.util.find_spec("paddleocr") is None:
            return DependencyCheckResult(
                available=False,
                reason="PaddleOCR is not installed. Run: pip install paddlepaddle paddleocr",
                details={"paddleocr": False},
            )
        return DependencyCheckResult(
            available=True,
            details={
                "paddleocr": True,
                "use_gpu": self._use_gpu,
                "loaded_models": [str(k) for k in self._engines.keys()],
            },
        )

    async def check_capabilities(self) -> OCRCapabilities:
        return OCRCapabilities(
            can_perform_ocr=True,
            supported_languages=tuple(self.get_supported_languages()),
            supported_formats=("png", "jpeg", "gif", "webp", "bmp", "raw"),
            has_bounding_boxes=True,
            has_confidence_scores=True,
            provider_specific={"runtime": "paddle", "single_language_models": True},
        )

    def get_supported_languages(self) -> list[str]:
        return list(PADDLE_LANGUAGES)

    async def cleanup(self) -> None:
        await self._engines.clear()


# ---------------------------------------------------------------------------
# TextractOCRProvider: AWS Textract
# ---------------------------------------------------------------------------

TEXTRACT_LANGUAGES = ["eng", "spa", "deu", "ita", "fra", "por"]
TEXTRACT_MAX_BYTES = 10 * 1024 * 1024


class TextractOCRProvider(OCRProvider):
    """OCR provider backed by AWS Textract ``DetectDocumentText``.

    Config (via .env):
        HAVE_OCR_AWS_REGION=us-east-1   (or AWS_REGION)
        AWS_ACCESS_KEY_ID=...           (or use an IAM role / profile)
        AWS_SECRET_ACCESS_KEY=...

    Install dependency:
        pip install boto3
    """

    name = "textract"

    def __init__(
        self,
        region: str | None = None,
        aws_access_key_id: str | None = None,
        aws_secret_access_key: str | None = None,
    ) -> None:
        self._region = region or "us-east-1"
        self._access_key = aws_access_key_id
        self._secret_key = aws_secret_access_key
        self._clients = HandleCache("textract")

    def _session(self):
        try:
            import boto3  # type: ignore[import]
        except ModuleNotFoundError as exc:
            raise OCRDependencyError(
                self.name, "boto3 is not installed. Run: pip install boto3"
            ) from exc
        kwargs: dict[str, Any] = {"region_name": self._region}
        if self._access_key:
            kwargs["aws_access_key_id"] = self._access_key
            kwargs["aws_secret_access_key"] = self._secret_key
        return boto3.Session(**kwargs)

    async def _get_client(self):
        return await self._clients.get_or_create(
            "client", lambda: self._session().client("textract")
        )

    @staticmethod
    def _payload(image: NormalizedImage) -> bytes:
        if isinstance(image, EncodedImage) and image.format in (ImageFormat.PNG, ImageFormat.JPEG):
            return image.data
        return to_png_bytes(image)

    def _call_textract(self, client: Any, image: NormalizedImage) -> list[Detection]:
        payload = self._payload(image)
        if len(payload) > TEXTRACT_MAX_BYTES:
            raise OCRProcessingError(
                self.name, "Image exceeds the Textract size limit", {"bytes": len(payload)}
            )
        width, height = image_size(image)
        response = client.detect_document_text(Document={"Bytes": payload})

        detections: list[Detection] = []
        for block in response.get("Blocks", []):
            if block.get("BlockType") != "LINE":
                continue
            box = (block.get("Geometry") or {}).get("BoundingBox") or {}
            bbox = None
            if box:
                bbox = BoundingBox(
                    x=float(box.get("Left", 0.0)) * width,
                    y=float(box.get("Top", 0.0)) * height,
                    width=float(box.get("Width", 0.0)) * width,
                    height=float(box.get("Height", 0.0)) * height,
                )
            detections.append(
                Detection(
                    text=block.get("Text", ""),
                    confidence=to_percent(block.get("Confidence"), scale=100.0),
                    bbox=bbox,
                )
            )
        return detections

    async def perform_ocr(
        self,
        images: Sequence[NormalizedImage],
        options: RecognitionOptions,
    ) -> OCRResult:
        """Call AWS Textract DetectDocumentText and return line detections."""
        unsupported = [code for code in options.languages if code not in TEXTRACT_LANGUAGES]
        if unsupported:
            raise OCRUnsupportedError(
                self.name,
                f"Language(s) not supported by Textract: {', '.join(unsupported)}",
                {"supported": TEXTRACT_LANGUAGES},
            )

        client = await self._get_client()
        t0 = time.monotonic()
        loop = asyncio.get_running_loop()
        detections: list[Detection] = []
        try:
            for image in images:
                detections.extend(
                    await loop.run_in_executor(None, self._call_textract, client, image)
                )
        except OCRProcessingError:
            raise
        except Exception as exc:
            raise OCRProcessingError(
                self.name, f"Textract request failed: {exc}", {"error": repr(exc)}
            ) from exc

        elapsed = int((time.monotonic() - t0) * 1000)
        logger.info(
            "textract_complete",
            extra={"lines": len(detections), "pages": len(images), "region": self._region},
        )
        return compose_result(
            self.name,
            detections,
            options,
            processing_time_ms=elapsed,
            details={"region": self._region},
        )

    async def check_dependencies(self) -> DependencyCheckResult:
        try:
            session = self._session()
        except OCRDependencyError as exc:
            return DependencyCheckResult(available=False, reason=exc.message, details={"boto3": False})
        loop = asyncio.get_running_loop()
        credentials = await loop.run_in_executor(None, session.get_credentials)
        if credentials is None:
            return DependencyCheckResult(
                available=False,
                reason="AWS credentials not configured",
                details={"boto3": True, "credentials": False, "region": self._region},
            )
        return DependencyCheckResult(
            available=True,
            details={"boto3": True, "credentials": True, "region": self._region},
        )

    async def check_capabilities(self) -> OCRCapabilities:
        return OCRCapabilities(
            can_perform_ocr=True,
            supported_languages=tuple(self.get_supported_languages()),
            supported_formats=("png", "jpeg", "gif", "webp", "bmp", "raw"),
            max_image_size=TEXTRACT_MAX_BYTES,
            has_bounding_boxes=True,
            has_confidence_scores=True,
            provider_specific={"hosted": True, "region": self._region},
        )

    def get_supported_languages(self) -> list[str]:
        return list(TEXTRACT_LANGUAGES)

    async def cleanup(self) -> None:
        await self._clients.clear(release=lambda client: client.close())
