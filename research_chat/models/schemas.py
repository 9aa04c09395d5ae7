from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# --- Chats ---


class ChatSummary(_WireModel):
    id: str
    title: str | None = None
    created_at: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)


class ChatInfo(ChatSummary):
    is_completed: bool = False
    has_error: bool = False

    @field_validator("is_completed", "has_error", mode="before")
    @classmethod
    def none_is_false(cls, value: Any) -> Any:
        return False if value is None else value


class ChatQuota(_WireModel):
    today_count: int = Field(default=0, alias="todayCount")
    max_chats: int = Field(default=5, alias="maxChats")
    is_premium: bool = Field(default=False, alias="isPremium")

    @property
    def remaining(self) -> int:
        return max(self.max_chats - self.today_count, 0)


class ChatMessagePayload(_WireModel):
    id: str
    content: str | None = None
    is_user: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("is_user", mode="before")
    @classmethod
    def none_is_false(cls, value: Any) -> Any:
        return False if value is None else value


# --- Responses ---


class ApiResponse(_WireModel):
    success: bool = False
    error: str | None = None


class ChatListResponse(ApiResponse):
    chats: list[ChatSummary] = Field(default_factory=list)


class ChatCreatedResponse(ApiResponse):
    chat: ChatSummary | None = None


class ChatInfoResponse(ApiResponse):
    chat: ChatInfo | None = None


class ChatMessagesResponse(ApiResponse):
    messages: list[ChatMessagePayload] = Field(default_factory=list)


class ResearchReplyResponse(ApiResponse):
    """Reply to a research topic or clarification answer."""

    message_type: str | None = Field(default=None, alias="messageType")
    response: str | None = None
    questions: list[str] | None = None
    openai_research: str | None = Field(default=None, alias="openaiResearch")
    gemini_research: str | None = Field(default=None, alias="geminiResearch")
    title: str | None = None


class ChatCountResponse(ApiResponse):
    today_count: int = Field(default=0, alias="todayCount")
    max_chats: int = Field(default=5, alias="maxChats")
    is_premium: bool = Field(default=False, alias="isPremium")

    def quota(self) -> ChatQuota:
        return ChatQuota(
            today_count=self.today_count,
            max_chats=self.max_chats,
            is_premium=self.is_premium,
        )


class EmailReportResponse(ApiResponse):
    summary: str | None = None


class AuthResponse(ApiResponse):
    authenticated: bool | None = None
    user: dict[str, Any] | None = None
    message: str | None = None
