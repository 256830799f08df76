from __future__ import annotations

import logging

from fastapi import FastAPI

from ocrgate.api.routes import router
from ocrgate.core.config import OCRSettings
from ocrgate.core.logging import configure_logging
from ocrgate.ocr.factory import reset_ocr


def create_app() -> FastAPI:
    configure_logging(OCRSettings().log_level)
    app = FastAPI(title="ocrgate", version="0.1.0")
    app.include_router(router)

    @app.get("/")
    async def root():
        return {
            "message": "ocrgate OCR provider gateway",
            "docs": "/docs",
            "health": "/health",
            "providers": "/providers",
        }

    @app.on_event("startup")
    async def _startup() -> None:
        logging.getLogger(__name__).info("startup")

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await reset_ocr()
        logging.getLogger(__name__).info("shutdown")

    return app


app = create_app()
