from __future__ import annotations

from typing import Sequence

from research_chat.errors import TransportError
from research_chat.models.messages import Producer, authoritative_message, default_producers
from research_chat.models.schemas import ChatQuota, ChatSummary, ResearchReplyResponse
from research_chat.research_core.models.interfaces import (
    AnswerOutcome,
    EmailReceipt,
    ReportBundle,
    ReportSection,
    ReportSnapshot,
    TopicOutcome,
)
from research_chat.tools.chat_api import ChatAPIClient

MESSAGE_TYPE_QUESTIONS = "clarifying_questions"
MESSAGE_TYPE_REPORT = "research_pages"
MESSAGE_TYPE_ACKNOWLEDGMENT = "acknowledgment"


def report_bundle_from_reply(
    reply: ResearchReplyResponse,
    producers: Sequence[Producer],
) -> ReportBundle:
    """Order the inline report sections of a reply by producer."""
    texts = {
        "openai": reply.openai_research,
        "gemini": reply.gemini_research,
    }
    sections: list[ReportSection] = []
    for producer in producers:
        text = texts.get(producer.key)
        if text:
            sections.append(ReportSection(producer=producer.key, text=text))
    return ReportBundle(sections=tuple(sections))


class HttpResearchBackend:
    """``ResearchBackend`` over the research chat REST API."""

    def __init__(self, api: ChatAPIClient, *, producers: Sequence[Producer] | None = None):
        self.api = api
        self.producers = tuple(producers or default_producers())

    async def create_chat(self, title: str = "New Chat") -> ChatSummary:
        created = await self.api.create_chat(title)
        if created.chat is None:
            raise TransportError("Chat creation returned no chat")
        return created.chat

    async def generate_questions(self, chat_id: str, topic: str) -> TopicOutcome:
        reply = await self.api.send_research_topic(chat_id, topic)
        if reply.message_type == MESSAGE_TYPE_QUESTIONS and reply.questions:
            return TopicOutcome(
                questions=[q for q in reply.questions if q and q.strip()],
                intro=reply.response,
                title=reply.title,
            )
        if reply.message_type == MESSAGE_TYPE_REPORT:
            return TopicOutcome(
                direct_report=report_bundle_from_reply(reply, self.producers),
                title=reply.title,
            )
        # No questions: the server went straight to generating the report.
        return TopicOutcome(intro=reply.response, title=reply.title)

    async def submit_answer(
        self,
        chat_id: str,
        topic: str,
        questions: list[str],
        answers: list[str],
        answer_index: int,
    ) -> AnswerOutcome:
        reply = await self.api.send_clarification_answer(
            chat_id,
            answers[-1] if answers else "",
            answer_index,
            len(questions),
            topic,
            questions,
            answers,
        )
        if reply.message_type == MESSAGE_TYPE_REPORT:
            return AnswerOutcome(report_bundle=report_bundle_from_reply(reply, self.producers))
        if reply.message_type == MESSAGE_TYPE_ACKNOWLEDGMENT:
            return AnswerOutcome(acknowledgment=reply.response)
        raise TransportError(f"Unexpected clarification reply type: {reply.message_type!r}")

    async def fetch_report_state(self, chat_id: str) -> ReportSnapshot:
        messages = await self.api.get_chat_messages(chat_id)
        info = await self.api.get_chat_info(chat_id)
        chat = info.chat
        return ReportSnapshot(
            chat_id=chat_id,
            messages=[
                authoritative_message(m.id, m.content, m.is_user) for m in messages.messages
            ],
            is_completed=bool(chat and chat.is_completed),
            has_error=bool(chat and chat.has_error),
        )

    async def send_report_by_email(self, chat_id: str) -> EmailReceipt:
        result = await self.api.send_research_report(chat_id)
        return EmailReceipt(success=result.success, summary=result.summary)

    async def list_chats(self) -> list[ChatSummary]:
        return (await self.api.get_chats()).chats

    async def chat_count(self) -> ChatQuota:
        return (await self.api.get_chat_count()).quota()
