from __future__ import annotations

from typing import Any

from research_chat.models.events import EventType, SessionEvent
from research_chat.models.messages import Message
from research_chat.models.session import Session


def state_changed(
    session: Session,
    messages: list[Message],
    *,
    previous: Session,
    reason: str,
) -> SessionEvent:
    return SessionEvent(
        event=EventType.STATE_CHANGED,
        session=session,
        messages=list(messages),
        data={
            "previous_status": previous.status.value,
            "status": session.status.value,
            "reason": reason,
        },
    )


def messages_updated(session: Session, messages: list[Message], **kwargs: Any) -> SessionEvent:
    return SessionEvent(
        event=EventType.MESSAGES_UPDATED,
        session=session,
        messages=list(messages),
        data=kwargs,
    )


def poll_failed(session: Session, messages: list[Message], error: str) -> SessionEvent:
    return SessionEvent(
        event=EventType.POLL_FAILED,
        session=session,
        messages=list(messages),
        data={"error": error},
    )


def authentication_required(session: Session, messages: list[Message], message: str) -> SessionEvent:
    return SessionEvent(
        event=EventType.AUTHENTICATION_REQUIRED,
        session=session,
        messages=list(messages),
        data={"message": message},
    )


def email_sent(session: Session, messages: list[Message], summary: str | None) -> SessionEvent:
    return SessionEvent(
        event=EventType.EMAIL_SENT,
        session=session,
        messages=list(messages),
        data={"summary": summary},
    )
