from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal

DATA_URL_PATTERN = re.compile(r"^data:(?P<media>[\w/+.-]+);base64,(?P<data>.*)$", re.DOTALL)


@dataclass(slots=True)
class MessagePart:
    """Either a text chunk or a base64 image."""

    text: str | None = None
    media_type: str | None = None
    data: str | None = None

    @property
    def is_image(self) -> bool:
        return self.data is not None


@dataclass(slots=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    parts: list[MessagePart] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(part.text for part in self.parts if part.text)


def text_part(text: str) -> MessagePart:
    return MessagePart(text=text)


def image_part(image: str, media_type: str = "image/png") -> MessagePart:
    """Accepts raw base64 or a data URL and returns an image part."""

    match = DATA_URL_PATTERN.match(image.strip())
    if match:
        return MessagePart(media_type=match.group("media"), data=match.group("data"))
    return MessagePart(media_type=media_type, data=image.strip())


def system_message(text: str) -> ChatMessage:
    return ChatMessage(role="system", parts=[text_part(text)])


def user_message(*parts: MessagePart | str) -> ChatMessage:
    return ChatMessage(
        role="user",
        parts=[text_part(part) if isinstance(part, str) else part for part in parts],
    )
