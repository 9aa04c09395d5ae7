from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from research_chat.config import settings


class MessageOrigin(str, Enum):
    USER = "user"
    SYSTEM_AUTHORITATIVE = "system_authoritative"
    LOCAL_PLACEHOLDER = "local_placeholder"


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    text: str
    is_user: bool
    origin: MessageOrigin
    # Client-side echo not yet confirmed by an authoritative fetch.
    local: bool = False
    # Local creation order; 0 for fetched messages.
    seq: int = 0
    # Producer key, set on placeholders only.
    producer: str | None = None

    @property
    def is_placeholder(self) -> bool:
        return self.origin == MessageOrigin.LOCAL_PLACEHOLDER

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "is_user": self.is_user,
            "origin": self.origin.value,
            "local": self.local,
        }


@dataclass(frozen=True, slots=True)
class Producer:
    """An independent report producer, recognized by the leading marker of its result."""

    key: str
    label: str
    marker: str
    placeholder_text: str

    def tags(self, message: Message) -> bool:
        if message.is_user or message.is_placeholder:
            return False
        return (message.text or "").startswith(self.marker)

    def placeholder(self) -> Message:
        return Message(
            id=f"{self.key}-placeholder",
            text=self.placeholder_text,
            is_user=False,
            origin=MessageOrigin.LOCAL_PLACEHOLDER,
            local=True,
            producer=self.key,
        )


def default_producers() -> tuple[Producer, ...]:
    """Producers in arrival-expectation order: the primary report, then the secondary one."""
    return (
        Producer(
            key="openai",
            label="ChatGPT (OpenAI)",
            marker=settings.primary_producer_marker,
            placeholder_text=f"{settings.primary_producer_marker}\n\n{settings.placeholder_body}",
        ),
        Producer(
            key="gemini",
            label="Gemini (Google)",
            marker=settings.secondary_producer_marker,
            placeholder_text=f"{settings.secondary_producer_marker}\n\n{settings.placeholder_body}",
        ),
    )


def authoritative_message(message_id: Any, text: str | None, is_user: bool) -> Message:
    return Message(
        id=str(message_id),
        text=text or "",
        is_user=bool(is_user),
        origin=MessageOrigin.USER if is_user else MessageOrigin.SYSTEM_AUTHORITATIVE,
    )


QUESTION_PREFIX = "**Question "


def format_question(index: int, total: int, question: str) -> str:
    return f"{QUESTION_PREFIX}{index + 1} of {total}:**\n\n{question}"


def is_question_prompt(message: Message) -> bool:
    """Whether ``message`` is a clarifying question prompt built by ``format_question``."""
    return not message.is_user and message.text.startswith(QUESTION_PREFIX)
