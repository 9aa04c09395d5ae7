from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from research_chat.agents.orchestrator import ResearchOrchestrator
from research_chat.models.messages import Message, authoritative_message, default_producers
from research_chat.models.schemas import ChatQuota, ChatSummary
from research_chat.research_core.models.interfaces import (
    AnswerOutcome,
    EmailReceipt,
    ReportSnapshot,
    TopicOutcome,
)

OPENAI_REPORT = "## ChatGPT (OpenAI) Research\n\nFindings from the first provider."
GEMINI_REPORT = "## Gemini (Google) Research\n\nFindings from the second provider."


def msg(message_id, text: str, is_user: bool = False) -> Message:
    return authoritative_message(message_id, text, is_user)


class FakeBackend:
    """In-memory ResearchBackend with scripted replies."""

    def __init__(self):
        self.chat_id = "chat-1"
        self.topic_outcome = TopicOutcome(
            questions=["Which regions?", "Which time horizon?", "Which sectors?"],
            intro="Great topic. A few questions first.",
            title=None,
        )
        self.topic_error: Exception | None = None
        self.answer_error: Exception | None = None
        self.answer_outcomes: dict[int, AnswerOutcome] = {}
        # Consumed one per fetch; an Exception entry is raised instead.
        self.snapshots: list[ReportSnapshot | Exception] = []
        self.email_receipt = EmailReceipt(success=True, summary="user@example.com")
        self.email_error: Exception | None = None
        self.chats = [ChatSummary(id="chat-1", title="climate policy")]
        self.quota = ChatQuota(today_count=1, max_chats=5, is_premium=False)
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple] = []

    async def _wait_gate(self) -> None:
        if self.gate is not None:
            await self.gate.wait()

    async def create_chat(self, title: str = "New Chat") -> ChatSummary:
        self.calls.append(("create_chat", title))
        return ChatSummary(id=self.chat_id, title=title)

    async def generate_questions(self, chat_id: str, topic: str) -> TopicOutcome:
        self.calls.append(("generate_questions", chat_id, topic))
        await self._wait_gate()
        if self.topic_error is not None:
            raise self.topic_error
        return self.topic_outcome

    async def submit_answer(self, chat_id, topic, questions, answers, answer_index) -> AnswerOutcome:
        self.calls.append(("submit_answer", chat_id, topic, list(questions), list(answers), answer_index))
        await self._wait_gate()
        if self.answer_error is not None:
            raise self.answer_error
        if answer_index in self.answer_outcomes:
            return self.answer_outcomes[answer_index]
        if answer_index + 1 < len(questions):
            return AnswerOutcome(acknowledgment="Thanks, noted.")
        return AnswerOutcome()

    async def fetch_report_state(self, chat_id: str) -> ReportSnapshot:
        self.calls.append(("fetch_report_state", chat_id))
        if not self.snapshots:
            return ReportSnapshot(chat_id=chat_id)
        entry = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        if isinstance(entry, Exception):
            raise entry
        return entry

    async def send_report_by_email(self, chat_id: str) -> EmailReceipt:
        self.calls.append(("send_report_by_email", chat_id))
        if self.email_error is not None:
            raise self.email_error
        return self.email_receipt

    async def list_chats(self) -> list[ChatSummary]:
        self.calls.append(("list_chats",))
        return list(self.chats)

    async def chat_count(self) -> ChatQuota:
        self.calls.append(("chat_count",))
        return self.quota

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def producers():
    return default_producers()


@pytest_asyncio.fixture
async def orchestrator(backend):
    # Long interval: tests drive poll cycles explicitly unless they override it.
    orch = ResearchOrchestrator(backend, poll_interval=3600)
    yield orch
    await orch.aclose()
