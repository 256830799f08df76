"""OCR error taxonomy.

Dependency : the provider cannot be used at all (missing SDK, credential, binary)
Processing : the provider attempted this call and failed (timeout, bad output)
Unsupported: the provider declines a requested feature (e.g. a language)
"""
from __future__ import annotations

from typing import Any


class OCRError(Exception):
    kind = "error"

    def __init__(
        self,
        provider: str | None,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.details: dict[str, Any] = dict(details or {})

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "provider": self.provider,
            "message": self.message,
            "details": {k: v for k, v in self.details.items() if _is_plain(v)},
        }


class OCRDependencyError(OCRError):
    kind = "dependency"


class OCRProcessingError(OCRError):
    kind = "processing"


class OCRUnsupportedError(OCRError):
    kind = "unsupported"


def _is_plain(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool, list, dict))
