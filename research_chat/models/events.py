from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from research_chat.models.messages import Message
from research_chat.models.session import Session


class EventType(str, Enum):
    STATE_CHANGED = "state_changed"
    MESSAGES_UPDATED = "messages_updated"
    POLL_FAILED = "poll_failed"
    AUTHENTICATION_REQUIRED = "authentication_required"
    EMAIL_SENT = "email_sent"


@dataclass
class SessionEvent:
    event: EventType
    session: Session
    messages: list[Message] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.value,
            "session": self.session.to_dict(),
            "messages": [m.to_dict() for m in self.messages],
            "data": self.data,
        }
