from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    AWAITING_REPORT = "awaiting_report"
    COMPLETED = "completed"
    ERRORED = "errored"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.ERRORED})


@dataclass(frozen=True, slots=True)
class Session:
    """Authoritative client-side state of one research conversation.

    Instances are immutable; every transition produces a new value through
    ``research_chat.research_core.state.reducer.reduce``.
    """

    id: str | None = None
    topic: str | None = None
    status: SessionStatus = SessionStatus.NOT_STARTED
    questions: tuple[str, ...] = field(default_factory=tuple)
    answers: tuple[str, ...] = field(default_factory=tuple)
    current_question_index: int = 0
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_waiting_for_answer(self) -> bool:
        return self.status == SessionStatus.AWAITING_CLARIFICATION

    @property
    def awaiting_report(self) -> bool:
        return self.status == SessionStatus.AWAITING_REPORT

    @property
    def is_completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    @property
    def has_error(self) -> bool:
        return self.status == SessionStatus.ERRORED

    @property
    def current_question(self) -> str | None:
        if not self.is_waiting_for_answer:
            return None
        if self.current_question_index >= len(self.questions):
            return None
        return self.questions[self.current_question_index]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "status": self.status.value,
            "questions": list(self.questions),
            "answers": list(self.answers),
            "current_question_index": self.current_question_index,
            "error": self.error,
        }
