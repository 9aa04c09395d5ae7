"""Research Chat - guided deep research from the terminal.

Simple CLI for running one research conversation against the chat API.
"""

import argparse
import asyncio
import sys

from research_chat.agents.orchestrator import ResearchOrchestrator
from research_chat.errors import AuthenticationRequired, ResearchChatError, ValidationError
from research_chat.models.events import EventType, SessionEvent
from research_chat.models.session import SessionStatus
from research_chat.tools.chat_api import ChatAPIClient
from research_chat.tools.http_backend import HttpResearchBackend


class TranscriptPrinter:
    """Prints each message of the merged log once, as it appears."""

    def __init__(self):
        self.printed: set[str] = set()

    def __call__(self, event: SessionEvent) -> None:
        if event.event == EventType.POLL_FAILED:
            print("  [!] Update failed, retrying...")
            return
        if event.event == EventType.AUTHENTICATION_REQUIRED:
            print("\n[!] Authentication required")
            return

        for message in event.messages:
            if message.is_user or message.id in self.printed:
                continue
            self.printed.add(message.id)
            if message.is_placeholder:
                print(f"\n[~] {message.text.splitlines()[0]} - still generating...")
            else:
                print(f"\n{message.text}")

        if event.event == EventType.STATE_CHANGED:
            status = event.session.status
            if status == SessionStatus.AWAITING_REPORT:
                print("\n[+] Generating research report...")
            elif status == SessionStatus.COMPLETED:
                print("\n[*] Research Complete!")


async def prompt(text: str) -> str:
    return await asyncio.to_thread(input, f"\n{text}\n> ")


async def run_research(
    topic: str | None,
    base_url: str | None = None,
    username: str | None = None,
    password: str | None = None,
    chat_id: str | None = None,
    email: bool = False,
) -> int:
    """Run one research conversation."""
    async with ChatAPIClient(base_url) as api:
        if username:
            await api.login(username, password or "")

        orchestrator = ResearchOrchestrator(HttpResearchBackend(api))
        orchestrator.on_state_change(TranscriptPrinter())

        try:
            if chat_id:
                await orchestrator.select_chat(chat_id)
            else:
                quota = await orchestrator.load_chat_count()
                print(f"[*] {quota.today_count}/{quota.max_chats} chats today")

            if orchestrator.get_state().status == SessionStatus.NOT_STARTED:
                text = topic or await prompt(orchestrator.input_hint())
                print("-" * 50)
                await orchestrator.submit_topic(text)

            while orchestrator.get_state().status == SessionStatus.AWAITING_CLARIFICATION:
                answer = await prompt(orchestrator.input_hint())
                try:
                    await orchestrator.submit_answer(answer)
                except ValidationError as exc:
                    print(f"[!] {exc}")

            if orchestrator.get_state().status == SessionStatus.AWAITING_REPORT:
                await orchestrator.wait_for_report()

            session = orchestrator.get_state()
            if session.status == SessionStatus.ERRORED:
                print(f"\n[!] Error: {session.error or 'Unknown error'}")
                return 1

            if email and session.status == SessionStatus.COMPLETED:
                receipt = await orchestrator.send_report_by_email()
                print(f"\n[*] Report sent: {receipt.summary}")
            return 0
        except AuthenticationRequired:
            print("\n[!] Authentication required: pass --username and --password")
            return 2
        finally:
            await orchestrator.aclose()


def main():
    parser = argparse.ArgumentParser(description="Research Chat CLI")
    parser.add_argument("--topic", "-t", help="Research topic (prompted when omitted)")
    parser.add_argument("--base-url", "-u", help="API base URL (default: from config)")
    parser.add_argument("--username", help="Log in with this username")
    parser.add_argument("--password", help="Password for --username")
    parser.add_argument("--chat", help="Resume an existing chat by id")
    parser.add_argument("--email", action="store_true", help="Email the completed report")

    args = parser.parse_args()

    try:
        code = asyncio.run(
            run_research(
                args.topic,
                base_url=args.base_url,
                username=args.username,
                password=args.password,
                chat_id=args.chat,
                email=args.email,
            )
        )
    except ResearchChatError as exc:
        print(f"\n[!] Error: {exc}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
