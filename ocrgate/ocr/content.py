"""Chat message content parts for vision-capable LLM endpoints."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Sequence, Union


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    url: str  # data URL or http(s) URL
    detail: Literal["auto", "low", "high"] = "high"


ContentPart = Union[TextPart, ImagePart]


def to_openai_content(parts: Sequence[ContentPart]) -> list[dict[str, Any]]:
    """Render parts in the OpenAI chat-completions multimodal format."""
    rendered: list[dict[str, Any]] = []
    for part in parts:
        if isinstance(part, TextPart):
            rendered.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            rendered.append(
                {"type": "image_url", "image_url": {"url": part.url, "detail": part.detail}}
            )
        else:
            raise TypeError(f"Unknown content part: {type(part).__name__}")
    return rendered
