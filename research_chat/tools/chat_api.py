from __future__ import annotations

import time
from typing import Any, TypeVar

import httpx
import pydantic

from research_chat.config import settings
from research_chat.errors import AuthenticationRequired, ChatLimitReached, TransportError
from research_chat.models.schemas import (
    ApiResponse,
    AuthResponse,
    ChatCountResponse,
    ChatCreatedResponse,
    ChatInfoResponse,
    ChatListResponse,
    ChatMessagesResponse,
    EmailReportResponse,
    ResearchReplyResponse,
)
from research_chat.services import logger as log_service

ResponseModel = TypeVar("ResponseModel", bound=ApiResponse)


class ChatAPIClient:
    """Async client for the research chat REST API.

    The session cookie set by ``login`` is kept in the underlying
    ``httpx.AsyncClient`` cookie jar. HTTP 401 always surfaces as
    ``AuthenticationRequired``; other failures as ``TransportError``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.api_root).rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.request_timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "ChatAPIClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # --- Authentication ---

    async def check_auth_status(self) -> AuthResponse:
        return await self._request("GET", "/api/auth/status", AuthResponse, require_success=False)

    async def login(self, username: str, password: str) -> AuthResponse:
        return await self._request(
            "POST", "/api/login", AuthResponse, json={"username": username, "password": password}
        )

    async def register(self, username: str, email: str, password: str) -> AuthResponse:
        return await self._request(
            "POST",
            "/api/register",
            AuthResponse,
            json={"username": username, "email": email, "password": password},
        )

    async def logout(self) -> AuthResponse:
        return await self._request("POST", "/api/logout", AuthResponse, require_success=False)

    # --- Chats ---

    async def get_chats(self) -> ChatListResponse:
        return await self._request("GET", "/api/chats", ChatListResponse)

    async def create_chat(self, title: str = "New Chat") -> ChatCreatedResponse:
        return await self._request(
            "POST", "/api/chats", ChatCreatedResponse, json={"title": title}, quota_guarded=True
        )

    async def get_chat_messages(self, chat_id: str) -> ChatMessagesResponse:
        return await self._request("GET", f"/api/chats/{chat_id}/messages", ChatMessagesResponse)

    async def get_chat_info(self, chat_id: str) -> ChatInfoResponse:
        return await self._request("GET", f"/api/chats/{chat_id}", ChatInfoResponse)

    async def send_research_topic(self, chat_id: str, message: str) -> ResearchReplyResponse:
        return await self._request(
            "POST",
            f"/api/chats/{chat_id}/research-topic",
            ResearchReplyResponse,
            json={"message": message},
        )

    async def send_clarification_answer(
        self,
        chat_id: str,
        message: str,
        question_index: int,
        total_questions: int,
        original_topic: str,
        questions: list[str],
        answers: list[str],
    ) -> ResearchReplyResponse:
        return await self._request(
            "POST",
            f"/api/chats/{chat_id}/clarification-answer",
            ResearchReplyResponse,
            json={
                "message": message,
                "questionIndex": question_index,
                "totalQuestions": total_questions,
                "originalTopic": original_topic,
                "questions": questions,
                "answers": answers,
            },
        )

    async def get_chat_count(self) -> ChatCountResponse:
        return await self._request("GET", "/api/user/chat-count", ChatCountResponse)

    async def send_research_report(self, chat_id: str) -> EmailReportResponse:
        return await self._request("POST", f"/api/chats/{chat_id}/send-email", EmailReportResponse)

    # --- Transport ---

    async def _request(
        self,
        method: str,
        path: str,
        model: type[ResponseModel],
        *,
        json: dict[str, Any] | None = None,
        require_success: bool = True,
        quota_guarded: bool = False,
    ) -> ResponseModel:
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            log_service.log_api_call(method, path, status="network_error", duration_ms=elapsed_ms(), error=str(exc))
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        status_code = response.status_code
        if status_code == 401:
            log_service.log_api_call(method, path, status="unauthorized", status_code=401, duration_ms=elapsed_ms(), error="401")
            raise AuthenticationRequired()

        payload = _json_body(response)
        if quota_guarded and status_code == 403:
            message = _error_message(payload) or "Daily chat limit reached"
            log_service.log_api_call(method, path, status="forbidden", status_code=403, duration_ms=elapsed_ms(), error=message)
            raise ChatLimitReached(message, status_code=403)

        if status_code >= 400:
            message = _error_message(payload) or response.reason_phrase or "request failed"
            log_service.log_api_call(method, path, status="http_error", status_code=status_code, duration_ms=elapsed_ms(), error=message)
            raise TransportError(f"{method} {path} returned {status_code}: {message}", status_code=status_code)

        try:
            parsed = model.model_validate(payload if isinstance(payload, dict) else {})
        except pydantic.ValidationError as exc:
            log_service.log_api_call(method, path, status="invalid_body", status_code=status_code, duration_ms=elapsed_ms(), error=str(exc))
            raise TransportError(f"{method} {path} returned an unexpected body", status_code=status_code) from exc

        if require_success and not parsed.success:
            message = parsed.error or "request was not successful"
            log_service.log_api_call(method, path, status="unsuccessful", status_code=status_code, duration_ms=elapsed_ms(), error=message)
            raise TransportError(f"{method} {path}: {message}", status_code=status_code)

        log_service.log_api_call(method, path, status_code=status_code, duration_ms=elapsed_ms())
        return parsed


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_message(payload: Any) -> str | None:
    if isinstance(payload, dict):
        error = payload.get("error") or payload.get("message")
        if isinstance(error, str) and error.strip():
            return error.strip()
    return None
