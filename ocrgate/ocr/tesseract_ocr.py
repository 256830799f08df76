"""Tesseract provider.

Runs the Tesseract engine through ``pytesseract``, which drives the
``tesseract`` binary as a worker process per page. Word-level output is
grouped into lines; each line carries a pixel bounding box and the mean of
its word confidences (Tesseract reports 0 – 100 natively).

Install:
    apt-get install tesseract-ocr   (plus tesseract-ocr-<lang> packs)
    pip install pytesseract
"""
from __future__ import annotations

import asyncio
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
from ocrgate.ocr.images import NormalizedImage, to_pil_image

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "eng"

# Languages shipped by the common tesseract-ocr language packs; the installed
# set is read from the binary at runtime.
_KNOWN_LANGUAGES = [
    "eng", "chi_sim", "chi_tra", "jpn", "kor", "fra", "deu", "spa", "ita",
    "por", "rus", "ara", "hin", "nld", "pol", "tur", "vie", "tha", "heb",
    "ukr", "ces", "ell", "swe", "dan", "fin", "nor", "hun", "ron", "ind",
]


def _load_pytesseract():
    try:
        import pytesseract  # type: ignore[import]
    except ModuleNotFoundError as exc:
        raise OCRDependencyError(
            "tesseract",
            "pytesseract is not installed. Run: pip install pytesseract",
        ) from exc
    return pytesseract


def _group_lines(data: dict[str, list[Any]]) -> list[Detection]:
    """Fold pytesseract ``image_to_data`` word rows into line detections."""
    lines: dict[tuple[int, int, int], dict[str, Any]] = {}
    order: list[tuple[int, int, int]] = []
    for i, word in enumerate(data.get("text", [])):
        word = (word or "").strip()
        conf = float(data["conf"][i])
        if not word or conf < 0:
            continue
        key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
        left, top = int(data["left"][i]), int(data["top"][i])
        right, bottom = left + int(data["width"][i]), top + int(data["height"][i])
        line = lines.get(key)
        if line is None:
            line = {"words": [], "confs": [], "box": [left, top, right, bottom]}
            lines[key] = line
            order.append(key)
        line["words"].append(word)
        line["confs"].append(conf)
        box = line["box"]
        box[0], box[1] = min(box[0], left), min(box[1], top)
        box[2], box[3] = max(box[2], right), max(box[3], bottom)

    detections: list[Detection] = []
    for key in order:
        line = lines[key]
        x0, y0, x1, y1 = line["box"]
        detections.append(
            Detection(
                text=" ".join(line["words"]),
                confidence=to_percent(sum(line["confs"]) / len(line["confs"]), scale=100.0),
                bbox=BoundingBox(x=x0, y=y0, width=x1 - x0, height=y1 - y0),
            )
        )
    return detections


class TesseractOCRProvider(OCRProvider):
    name = "tesseract"

    def __init__(self, tesseract_cmd: str | None = None) -> None:
        self._cmd = tesseract_cmd
        self._handles = HandleCache("tesseract")

    async def _module(self):
        def build():
            module = _load_pytesseract()
            if self._cmd:
                module.pytesseract.tesseract_cmd = self._cmd
            return module
        return await self._handles.get_or_create("module", build)

    async def _installed_languages(self) -> list[str]:
        pytesseract = await self._module()

        async def build() -> list[str]:
            loop = asyncio.get_running_loop()
            try:
                return list(await loop.run_in_executor(None, pytesseract.get_languages))
            except Exception as exc:
                raise OCRDependencyError(
                    self.name, f"tesseract binary not usable: {exc}"
                ) from exc

        return await self._handles.get_or_create("languages", build)

    async def perform_ocr(
        self,
        images: Sequence[NormalizedImage],
        options: RecognitionOptions,
    ) -> OCRResult:
        pytesseract = await self._module()
        requested = options.languages or [DEFAULT_LANGUAGE]
        installed = await self._installed_languages()
        missing = [code for code in requested if code not in installed]
        if missing:
            raise OCRUnsupportedError(
                self.name,
                f"Language(s) not installed: {', '.join(missing)}",
                {"requested": requested, "installed": installed},
            )
        lang = "+".join(requested)

        t0 = time.monotonic()
        loop = asyncio.get_running_loop()
        detections: list[Detection] = []
        try:
            for image in images:
                pil = to_pil_image(image)
                data = await loop.run_in_executor(
                    None,
                    lambda: pytesseract.image_to_data(
                        pil, lang=lang, output_type=pytesseract.Output.DICT
                    ),
                )
                detections.extend(_group_lines(data))
        except Exception as exc:
            raise OCRProcessingError(
                self.name, f"Tesseract failed: {exc}", {"error": repr(exc)}
            ) from exc

        elapsed = int((time.monotonic() - t0) * 1000)
        logger.info(
            "tesseract_complete",
            extra={"lines": len(detections), "pages": len(images), "lang": lang},
        )
        return compose_result(
            self.name,
            detections,
            options,
            processing_time_ms=elapsed,
            details={"pages": len(images)},
        )

    async def check_dependencies(self) -> DependencyCheckResult:
        try:
            pytesseract = await self._module()
            loop = asyncio.get_running_loop()
            version = await loop.run_in_executor(None, pytesseract.get_tesseract_version)
        except OCRDependencyError as exc:
            return DependencyCheckResult(available=False, reason=exc.message, details={"pytesseract": False})
        except Exception as exc:
            return DependencyCheckResult(
                available=False,
                reason=f"tesseract binary not usable: {exc}",
                details={"pytesseract": True, "binary": False},
            )
        return DependencyCheckResult(
            available=True,
            details={"pytesseract": True, "binary": True, "version": str(version)},
        )

    async def check_capabilities(self) -> OCRCapabilities:
        return OCRCapabilities(
            can_perform_ocr=True,
            supported_languages=tuple(self.get_supported_languages()),
            supported_formats=("png", "jpeg", "gif", "webp", "bmp", "raw"),
            has_bounding_boxes=True,
            has_confidence_scores=True,
            provider_specific={"engine": "tesseract", "worker": "subprocess"},
        )

    def get_supported_languages(self) -> list[str]:
        installed = self._handles.peek("languages")
        return list(installed) if installed else list(_KNOWN_LANGUAGES)

    async def cleanup(self) -> None:
        await self._handles.clear()
