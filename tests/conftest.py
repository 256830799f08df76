"""Shared pytest configuration and fixtures for ocrgate tests."""
from __future__ import annotations

import io
import os

import pytest

import ocrgate.ocr.factory as factory_module


def make_png(size: tuple[int, int] = (32, 24)) -> bytes:
    from PIL import Image

    buf = io.BytesIO()
    # Uncompressed so even a blank image clears the minimum-size floor
    Image.new("RGB", size, "white").save(buf, format="PNG", compress_level=0)
    return buf.getvalue()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep HAVE_OCR_* / AWS settings and any local .env out of the tests."""
    for key in list(os.environ):
        if key.startswith("HAVE_OCR_") or key == "AWS_REGION":
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(factory_module, "_shared", None)


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()
