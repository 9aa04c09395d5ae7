from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Sequence

from loguru import logger

from research_chat.config import settings
from research_chat.errors import (
    AuthenticationRequired,
    PollError,
    SessionClosed,
    SessionNotCompleted,
    SubmissionInFlight,
    TransportError,
    ValidationError,
)
from research_chat.models.events import SessionEvent
from research_chat.models.messages import (
    Message,
    MessageOrigin,
    Producer,
    default_producers,
    format_question,
    is_question_prompt,
)
from research_chat.models.schemas import ChatQuota, ChatSummary
from research_chat.models.session import Session, SessionStatus
from research_chat.research_core.models.interfaces import (
    AnswerOutcome,
    EmailReceipt,
    ReportBundle,
    ReportSnapshot,
    ResearchBackend,
    TopicOutcome,
)
from research_chat.research_core.state import reducer
from research_chat.research_core.state.reducer import (
    AnswerRecorded,
    ChatAssigned,
    DirectReportReceived,
    MutationFailed,
    QuestionsReceived,
    ReportCompleted,
    ReportFailed,
    TransitionEvent,
)
from research_chat.research_core.sync.merger import (
    arrived_producers,
    authoritative_only,
    merge_message_log,
)
from research_chat.research_core.sync.synchronizer import ResultSynchronizer
from research_chat.services import logger as log_service
from research_chat.services import session_events

StateListener = Callable[[SessionEvent], None]


@dataclass(eq=False)
class _SessionSlot:
    """The active session with its message view and single-slot mutation lock.

    Every switch of the active chat creates a new slot; late results are
    applied only when their slot is still the active one.
    """

    session: Session = field(default_factory=Session)
    messages: list[Message] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # Local echoes with a lower seq belong to settled mutations.
    settled_seq: int = 0


class ResearchOrchestrator:
    """Drives one research conversation at a time.

    Flow:
      1. ``submit_topic``: create the chat if needed, ask the backend for
         clarifying questions (or a direct report)
      2. ``submit_answer``: one call per answer; the last one starts the report
      3. While awaiting the report, the ``ResultSynchronizer`` polls the chat
         until the store flags it completed or errored

    Only one mutating call per session may be in flight; concurrent
    submissions are rejected with ``SubmissionInFlight``.
    """

    def __init__(
        self,
        backend: ResearchBackend,
        *,
        producers: Sequence[Producer] | None = None,
        poll_interval: float | None = None,
    ):
        self.backend = backend
        self.producers: tuple[Producer, ...] = tuple(producers or default_producers())
        self.synchronizer = ResultSynchronizer(
            backend,
            self._apply_snapshot,
            interval=poll_interval,
            on_poll_error=self._on_poll_error,
            on_auth_required=self._on_auth_required,
        )
        self.chats: list[ChatSummary] = []
        self.chat_quota = ChatQuota()
        self._slot = _SessionSlot()
        self._listeners: list[StateListener] = []
        self._seq = 0

    # --- Read side ---

    def get_state(self) -> Session:
        return self._slot.session

    def get_merged_log(self) -> list[Message]:
        return list(self._slot.messages)

    @property
    def is_loading(self) -> bool:
        return self._slot.lock.locked()

    @property
    def is_polling(self) -> bool:
        return self.synchronizer.is_polling

    def input_hint(self) -> str:
        session = self._slot.session
        if session.status == SessionStatus.AWAITING_REPORT:
            return "Generating research report... Please wait"
        if session.status == SessionStatus.AWAITING_CLARIFICATION and session.current_question:
            return f"Answer: {session.current_question}"
        if session.status == SessionStatus.COMPLETED:
            return "Research completed"
        if session.status == SessionStatus.ERRORED:
            return "Start a new chat to research another topic"
        return "Enter your research topic or question..."

    def on_state_change(self, callback: StateListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    # --- Submissions ---

    async def send_message(self, text: str) -> Session:
        """Route free text by session status, like a single chat input box."""
        self._validate(text)
        session = self._slot.session
        if session.is_terminal:
            raise SessionClosed(f"Session is {session.status.value}")
        if session.status == SessionStatus.AWAITING_CLARIFICATION:
            return await self.submit_answer(text)
        if session.status == SessionStatus.AWAITING_REPORT:
            logger.info("Ignoring message while the research report is being generated")
            return session
        return await self.submit_topic(text)

    async def submit_topic(self, text: str) -> Session:
        topic = self._validate(text)
        slot = self._slot
        session = self._check_open(slot)
        if session.status != SessionStatus.NOT_STARTED:
            logger.warning(f"Topic ignored: session is {session.status.value}")
            return session

        async with slot.lock:
            self._echo(slot, [self._user_echo(topic)])
            try:
                chat_id = slot.session.id or await self._create_chat(slot)
                outcome = await self.backend.generate_questions(chat_id, topic)
            except TransportError as exc:
                self._fail(slot, exc, topic=topic)
                return slot.session
            finally:
                self._settle(slot)

            self._apply_topic_outcome(slot, topic, outcome)
            self._settle(slot)

        if outcome.title:
            await self._refresh_chats()
        return slot.session

    async def submit_answer(self, text: str) -> Session:
        answer = self._validate(text)
        slot = self._slot
        session = self._check_open(slot)
        if session.status != SessionStatus.AWAITING_CLARIFICATION:
            logger.warning(f"Answer ignored: session is {session.status.value}")
            return session

        async with slot.lock:
            session = slot.session
            answer_index = session.current_question_index
            answers = [*session.answers, answer]
            logger.info(
                f"Answering clarifying question {answer_index + 1} of {len(session.questions)}"
            )
            self._echo(slot, [self._user_echo(answer)])
            try:
                outcome = await self.backend.submit_answer(
                    session.id or "",
                    session.topic or "",
                    list(session.questions),
                    answers,
                    answer_index,
                )
            except TransportError as exc:
                self._fail(slot, exc)
                return slot.session
            finally:
                self._settle(slot)

            self._apply_answer_outcome(slot, answer, outcome)
            self._settle(slot)

        return slot.session

    async def send_report_by_email(self) -> EmailReceipt:
        slot = self._slot
        session = slot.session
        if session.id is None or session.status != SessionStatus.COMPLETED:
            raise SessionNotCompleted("The research report is not completed yet")
        if slot.lock.locked():
            raise SubmissionInFlight("Another request for this chat is still running")

        async with slot.lock:
            log_service.log_event("email_requested", "Sending research report via email", chat_id=session.id)
            try:
                receipt = await self.backend.send_report_by_email(session.id)
                if not receipt.success:
                    raise TransportError("Email delivery was not accepted")
            except TransportError:
                self._echo(slot, [self._system_echo(settings.email_failure_text)])
                raise
            finally:
                self._settle(slot)

            summary = receipt.summary or "report delivered"
            self._echo(
                slot,
                [self._system_echo(f"Report successfully sent to your registered email: {summary}.")],
            )
            self._settle(slot)
            if slot is self._slot:
                self._notify(session_events.email_sent(slot.session, slot.messages, receipt.summary))
            return receipt

    async def wait_for_report(self) -> Session:
        """Wait until polling stops; re-raises AuthenticationRequired from the poll loop."""
        await self.synchronizer.wait()
        return self._slot.session

    def resume_polling(self) -> bool:
        """Restart polling for a session still awaiting its report, e.g. after re-authenticating.

        Returns whether a poll loop is running afterwards.
        """
        slot = self._slot
        session = slot.session
        if session.status != SessionStatus.AWAITING_REPORT or not session.id:
            return False
        if not self.synchronizer.is_polling:
            self.synchronizer.start(slot, session.id)
        return True

    # --- Chat management ---

    async def load_chats(self, *, select_first: bool = False) -> list[ChatSummary]:
        self.chats = await self.backend.list_chats()
        slot = self._slot
        if (
            select_first
            and self.chats
            and slot.session.id is None
            and slot.session.status == SessionStatus.NOT_STARTED
        ):
            await self.select_chat(self.chats[0].id)
        return self.chats

    async def load_chat_count(self) -> ChatQuota:
        self.chat_quota = await self.backend.chat_count()
        return self.chat_quota

    async def select_chat(self, chat_id: str) -> Session:
        """Make an existing chat active, loading its log and completion flags."""
        self.synchronizer.stop()
        slot = self._activate(_SessionSlot(session=Session(id=chat_id)), reason="chat_selected")

        try:
            snapshot = await self.backend.fetch_report_state(chat_id)
        except AuthenticationRequired:
            if slot is self._slot:
                self.clear_active_chat()
            raise
        except TransportError as exc:
            if slot is self._slot:
                logger.error(f"Failed to load chat {chat_id}: {exc}")
                previous = slot.session
                slot.session = reducer.restore(chat_id, SessionStatus.ERRORED, error=str(exc))
                self._after_transition(slot, previous, reason="chat_load_failed")
            raise

        if slot is not self._slot:
            logger.debug(f"Discarding load of chat {chat_id}: active chat changed")
            return self._slot.session

        previous = slot.session
        slot.messages = merge_message_log(snapshot.messages, [], producers=self.producers)
        status, error = self._restored_status(snapshot, slot.messages)
        slot.session = reducer.restore(chat_id, status, error=error)
        self._settle(slot)
        self._after_transition(slot, previous, reason="chat_loaded")
        return slot.session

    def new_chat(self) -> Session:
        """Start over with an empty, not yet persisted chat."""
        return self.clear_active_chat()

    def clear_active_chat(self) -> Session:
        self.synchronizer.stop()
        slot = self._activate(_SessionSlot(), reason="chat_cleared")
        return slot.session

    async def aclose(self) -> None:
        self.synchronizer.stop()
        try:
            await self.synchronizer.wait()
        except AuthenticationRequired:
            pass

    # --- Outcomes ---

    def _apply_topic_outcome(self, slot: _SessionSlot, topic: str, outcome: TopicOutcome) -> None:
        echoes: list[Message] = []
        if outcome.intro and outcome.intro.strip():
            echoes.append(self._system_echo(outcome.intro))

        event: TransitionEvent
        if outcome.questions:
            questions = tuple(outcome.questions)
            echoes.append(self._system_echo(format_question(0, len(questions), questions[0])))
            event = QuestionsReceived(topic=topic, questions=questions)
        else:
            echoes.extend(self._report_echoes(outcome.direct_report))
            event = DirectReportReceived(topic=topic)

        self._commit(slot, event, echoes, reason="topic_submitted")

    def _apply_answer_outcome(self, slot: _SessionSlot, answer: str, outcome: AnswerOutcome) -> None:
        session = slot.session
        echoes: list[Message] = []
        if outcome.acknowledgment and outcome.acknowledgment.strip():
            echoes.append(self._system_echo(outcome.acknowledgment))

        bundle = outcome.report_bundle
        next_index = session.current_question_index + 1
        if bundle:
            echoes.extend(self._report_echoes(bundle))
        elif next_index < len(session.questions):
            echoes.append(
                self._system_echo(
                    format_question(next_index, len(session.questions), session.questions[next_index])
                )
            )

        self._commit(
            slot,
            AnswerRecorded(answer=answer, report_started=bool(bundle)),
            echoes,
            reason="answer_submitted",
        )

    def _report_echoes(self, bundle: ReportBundle | None) -> list[Message]:
        if not bundle:
            return []
        return [self._system_echo(section.text) for section in bundle.sections if section.text]

    def _fail(self, slot: _SessionSlot, exc: Exception, *, topic: str | None = None) -> None:
        logger.error(f"Research chat call failed: {exc}")
        self._commit(
            slot,
            MutationFailed(error=str(exc), topic=topic),
            [self._system_echo(settings.mutation_error_text)],
            reason="call_failed",
        )

    async def _create_chat(self, slot: _SessionSlot) -> str:
        chat = await self.backend.create_chat()
        logger.info(f"New chat created: {chat.id}")
        self._commit(slot, ChatAssigned(chat_id=chat.id), reason="chat_created")
        await self._refresh_chats()
        return chat.id

    async def _refresh_chats(self) -> None:
        try:
            await self.load_chats()
            await self.load_chat_count()
        except TransportError as exc:
            logger.warning(f"Failed to refresh chat list: {exc}")

    # --- Polling ---

    def _apply_snapshot(self, token: object, snapshot: ReportSnapshot) -> bool:
        slot = token
        if not isinstance(slot, _SessionSlot) or slot is not self._slot:
            logger.debug(f"Discarding poll result for chat {snapshot.chat_id}: chat no longer active")
            return False
        if slot.session.id != snapshot.chat_id or slot.session.status != SessionStatus.AWAITING_REPORT:
            return False

        merged = merge_message_log(
            snapshot.messages,
            slot.messages,
            producers=self.producers,
            settled_seq=slot.settled_seq,
        )
        changed = merged != slot.messages
        slot.messages = merged

        if snapshot.has_error:
            self._commit(slot, ReportFailed(error="Report generation failed"), reason="poll_error_flag")
        elif snapshot.is_completed:
            self._commit(slot, ReportCompleted(), reason="poll_completed")
        elif changed:
            arrived = sorted(arrived_producers(merged, self.producers))
            self._notify(session_events.messages_updated(slot.session, merged, arrived=arrived))
        return slot.session.status == SessionStatus.AWAITING_REPORT

    def _on_poll_error(self, token: object, error: PollError) -> None:
        if token is self._slot:
            self._notify(session_events.poll_failed(self._slot.session, self._slot.messages, str(error)))

    def _on_auth_required(self, token: object, error: AuthenticationRequired) -> None:
        if token is self._slot:
            self._notify(
                session_events.authentication_required(self._slot.session, self._slot.messages, str(error))
            )

    # --- Internals ---

    def _validate(self, text: str | None) -> str:
        if text is None or not str(text).strip():
            raise ValidationError("Message must not be empty")
        return str(text).strip()

    def _check_open(self, slot: _SessionSlot) -> Session:
        session = slot.session
        if session.is_terminal:
            raise SessionClosed(f"Session is {session.status.value}; start a new chat")
        if slot.lock.locked():
            raise SubmissionInFlight("A previous message for this chat is still being processed")
        return session

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _settle(self, slot: _SessionSlot) -> None:
        slot.settled_seq = self._seq + 1

    def _user_echo(self, text: str) -> Message:
        seq = self._next_seq()
        return Message(id=f"local-{seq}", text=text, is_user=True, origin=MessageOrigin.USER, local=True, seq=seq)

    def _system_echo(self, text: str) -> Message:
        seq = self._next_seq()
        return Message(
            id=f"local-{seq}",
            text=text,
            is_user=False,
            origin=MessageOrigin.SYSTEM_AUTHORITATIVE,
            local=True,
            seq=seq,
        )

    def _echo(self, slot: _SessionSlot, echoes: list[Message]) -> None:
        slot.messages = self._with_echoes(slot.messages, echoes)
        if slot is self._slot:
            self._notify(session_events.messages_updated(slot.session, slot.messages))

    def _with_echoes(self, messages: list[Message], echoes: list[Message]) -> list[Message]:
        return merge_message_log(
            authoritative_only(messages),
            [*messages, *echoes],
            producers=self.producers,
        )

    def _commit(
        self,
        slot: _SessionSlot,
        event: TransitionEvent,
        echoes: list[Message] | None = None,
        *,
        reason: str,
    ) -> None:
        previous = slot.session
        slot.session = reducer.reduce(previous, event)
        if echoes:
            slot.messages = self._with_echoes(slot.messages, echoes)
        if slot is not self._slot:
            logger.debug(f"Result for inactive chat {previous.id} applied off-screen ({reason})")
            return
        self._after_transition(slot, previous, reason=reason, messages_changed=bool(echoes))

    def _after_transition(
        self,
        slot: _SessionSlot,
        previous: Session,
        *,
        reason: str,
        messages_changed: bool = True,
    ) -> None:
        session = slot.session
        if session.status == SessionStatus.AWAITING_REPORT and session.id:
            if self.synchronizer.chat_id != session.id:
                self.synchronizer.start(slot, session.id)
        else:
            self.synchronizer.stop()

        if session.status != previous.status:
            log_service.log_session_transition(
                session.id, previous.status.value, session.status.value, reason
            )
            self._notify(session_events.state_changed(session, slot.messages, previous=previous, reason=reason))
        elif session != previous or messages_changed:
            self._notify(session_events.messages_updated(session, slot.messages, reason=reason))

    def _activate(self, slot: _SessionSlot, *, reason: str) -> _SessionSlot:
        previous = self._slot.session
        self._slot = slot
        self._settle(slot)
        log_service.log_event(reason, "Active chat changed", chat_id=slot.session.id)
        self._notify(session_events.state_changed(slot.session, slot.messages, previous=previous, reason=reason))
        return slot

    def _restored_status(
        self,
        snapshot: ReportSnapshot,
        messages: list[Message],
    ) -> tuple[SessionStatus, str | None]:
        if snapshot.has_error:
            return SessionStatus.ERRORED, "Report generation failed"
        if snapshot.is_completed:
            return SessionStatus.COMPLETED, None
        if not messages:
            return SessionStatus.NOT_STARTED, None
        if arrived_producers(messages, self.producers):
            return SessionStatus.AWAITING_REPORT, None
        if is_question_prompt(messages[-1]):
            # Questions and answers are not persisted, so clarification cannot resume.
            return SessionStatus.ERRORED, "Clarification was interrupted; start a new chat"
        return SessionStatus.AWAITING_REPORT, None

    def _notify(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"State listener failed on {event.event.value}")
