"""Pure state transitions for a research session.

``reduce(session, event)`` never performs I/O. Events that do not apply to
the session's current status return the very same ``Session`` object, so
callers can detect a no-op with ``is``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Union

from research_chat.models.session import Session, SessionStatus


@dataclass(frozen=True, slots=True)
class ChatAssigned:
    chat_id: str


@dataclass(frozen=True, slots=True)
class QuestionsReceived:
    topic: str
    questions: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class DirectReportReceived:
    topic: str


@dataclass(frozen=True, slots=True)
class AnswerRecorded:
    answer: str
    # Set when the backend already started the report for this answer.
    report_started: bool = False


@dataclass(frozen=True, slots=True)
class MutationFailed:
    error: str
    topic: str | None = None


@dataclass(frozen=True, slots=True)
class ReportCompleted:
    pass


@dataclass(frozen=True, slots=True)
class ReportFailed:
    error: str = "Report generation failed"


TransitionEvent = Union[
    ChatAssigned,
    QuestionsReceived,
    DirectReportReceived,
    AnswerRecorded,
    MutationFailed,
    ReportCompleted,
    ReportFailed,
]


def reduce(session: Session, event: TransitionEvent) -> Session:
    status = session.status

    if isinstance(event, ChatAssigned):
        if session.id is not None or session.is_terminal:
            return session
        return replace(session, id=event.chat_id)

    if isinstance(event, QuestionsReceived):
        if status != SessionStatus.NOT_STARTED:
            return session
        if not event.questions:
            return replace(session, topic=event.topic, status=SessionStatus.AWAITING_REPORT)
        return replace(
            session,
            topic=event.topic,
            status=SessionStatus.AWAITING_CLARIFICATION,
            questions=tuple(event.questions),
            answers=(),
            current_question_index=0,
        )

    if isinstance(event, DirectReportReceived):
        if status != SessionStatus.NOT_STARTED:
            return session
        return replace(session, topic=event.topic, status=SessionStatus.AWAITING_REPORT)

    if isinstance(event, AnswerRecorded):
        if status != SessionStatus.AWAITING_CLARIFICATION:
            return session
        index = min(session.current_question_index + 1, len(session.questions))
        answers = session.answers + (event.answer,)
        finished = index >= len(session.questions) or event.report_started
        return replace(
            session,
            answers=answers,
            current_question_index=index,
            status=SessionStatus.AWAITING_REPORT if finished else SessionStatus.AWAITING_CLARIFICATION,
        )

    if isinstance(event, MutationFailed):
        if status not in (SessionStatus.NOT_STARTED, SessionStatus.AWAITING_CLARIFICATION):
            return session
        return replace(
            session,
            topic=session.topic if session.topic is not None else event.topic,
            status=SessionStatus.ERRORED,
            error=event.error,
        )

    if isinstance(event, ReportCompleted):
        if status != SessionStatus.AWAITING_REPORT:
            return session
        return replace(session, status=SessionStatus.COMPLETED, error=None)

    if isinstance(event, ReportFailed):
        if status != SessionStatus.AWAITING_REPORT:
            return session
        return replace(session, status=SessionStatus.ERRORED, error=event.error)

    raise TypeError(f"Unknown transition event: {event!r}")


def restore(chat_id: str, status: SessionStatus, *, error: str | None = None) -> Session:
    """Session for a chat loaded from the store, whose clarification history is not persisted."""
    return Session(id=chat_id, status=status, error=error)
