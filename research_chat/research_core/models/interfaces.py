from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from research_chat.models.messages import Message
from research_chat.models.schemas import ChatQuota, ChatSummary


@dataclass(frozen=True, slots=True)
class ReportSection:
    producer: str
    text: str


@dataclass(frozen=True, slots=True)
class ReportBundle:
    """Report sections returned inline by a mutating call, in producer order."""

    sections: tuple[ReportSection, ...] = ()

    @property
    def producers(self) -> set[str]:
        return {section.producer for section in self.sections}

    def __bool__(self) -> bool:
        return bool(self.sections)


@dataclass(slots=True)
class TopicOutcome:
    questions: list[str] = field(default_factory=list)
    intro: str | None = None
    direct_report: ReportBundle | None = None
    title: str | None = None


@dataclass(slots=True)
class AnswerOutcome:
    acknowledgment: str | None = None
    report_bundle: ReportBundle | None = None


@dataclass(slots=True)
class ReportSnapshot:
    """One authoritative read of a chat: its message log and completion flags."""

    chat_id: str
    messages: list[Message] = field(default_factory=list)
    is_completed: bool = False
    has_error: bool = False


@dataclass(slots=True)
class EmailReceipt:
    success: bool
    summary: str | None = None


class ResearchBackend(Protocol):
    async def create_chat(self, title: str = "New Chat") -> ChatSummary: ...
    async def generate_questions(self, chat_id: str, topic: str) -> TopicOutcome: ...
    async def submit_answer(
        self,
        chat_id: str,
        topic: str,
        questions: list[str],
        answers: list[str],
        answer_index: int,
    ) -> AnswerOutcome: ...
    async def fetch_report_state(self, chat_id: str) -> ReportSnapshot: ...
    async def send_report_by_email(self, chat_id: str) -> EmailReceipt: ...
    async def list_chats(self) -> list[ChatSummary]: ...
    async def chat_count(self) -> ChatQuota: ...
