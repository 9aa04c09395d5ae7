"""Tests for merging the authoritative message log with local echoes and placeholders."""

from conftest import GEMINI_REPORT, OPENAI_REPORT, msg

from research_chat.models.messages import Message, MessageOrigin
from research_chat.research_core.sync.merger import (
    arrived_producers,
    merge_message_log,
    pending_producers,
)


def echo(seq: int, text: str, is_user: bool = True) -> Message:
    return Message(
        id=f"local-{seq}",
        text=text,
        is_user=is_user,
        origin=MessageOrigin.USER if is_user else MessageOrigin.SYSTEM_AUTHORITATIVE,
        local=True,
        seq=seq,
    )


def placeholders(messages: list[Message]) -> list[Message]:
    return [m for m in messages if m.is_placeholder]


def test_primary_result_alone_adds_one_secondary_placeholder(producers):
    fetched = [msg(1, "climate policy", True), msg(2, OPENAI_REPORT)]

    merged = merge_message_log(fetched, [], producers=producers)

    assert merged[:2] == fetched
    assert len(placeholders(merged)) == 1
    assert merged[-1].producer == "gemini"
    assert merged[-1].text.startswith("## Gemini (Google) Research")


def test_merge_is_idempotent(producers):
    fetched = [msg(1, "climate policy", True), msg(2, OPENAI_REPORT)]

    once = merge_message_log(fetched, [], producers=producers)
    twice = merge_message_log(fetched, once, producers=producers)

    assert twice == once
    assert len(placeholders(twice)) == 1


def test_placeholder_superseded_by_real_result(producers):
    first = merge_message_log([msg(1, OPENAI_REPORT)], [], producers=producers)

    merged = merge_message_log([msg(1, OPENAI_REPORT), msg(2, GEMINI_REPORT)], first, producers=producers)

    assert placeholders(merged) == []
    assert [m.id for m in merged] == ["1", "2"]


def test_placeholder_is_never_treated_as_an_arrival(producers):
    placeholder = producers[1].placeholder()
    assert arrived_producers([placeholder], producers) == set()


def test_no_placeholder_before_any_result_or_for_the_primary(producers):
    assert placeholders(merge_message_log([msg(1, "topic", True)], [], producers=producers)) == []
    # Secondary first: nothing is shown for the primary provider.
    assert placeholders(merge_message_log([msg(1, GEMINI_REPORT)], [], producers=producers)) == []


def test_user_message_with_marker_is_not_a_result(producers):
    assert arrived_producers([msg(1, OPENAI_REPORT, True)], producers) == set()


def test_authoritative_duplicates_are_dropped(producers):
    merged = merge_message_log([msg(1, "a"), msg(1, "a"), msg(2, "b")], [], producers=producers)
    assert [m.id for m in merged] == ["1", "2"]


def test_settled_echoes_are_replaced_by_fetch(producers):
    local = [echo(1, "climate policy"), echo(2, "**Question 1 of 1:**\n\nWhich regions?", False)]
    fetched = [msg(10, "climate policy", True), msg(11, "**Question 1 of 1:**\n\nWhich regions?")]

    merged = merge_message_log(fetched, local, producers=producers, settled_seq=3)

    assert merged == fetched


def test_unsettled_echo_kept_after_authoritative_and_before_placeholder(producers):
    pending = echo(5, "still sending")
    fetched = [msg(1, OPENAI_REPORT)]

    merged = merge_message_log(fetched, [pending], producers=producers, settled_seq=5)

    assert merged[0] == fetched[0]
    assert merged[1] == pending
    assert merged[2].is_placeholder


def test_local_report_echo_counts_as_arrival(producers):
    local = [echo(1, OPENAI_REPORT, False)]
    merged = merge_message_log([], local, producers=producers)
    assert [m.producer for m in placeholders(merged)] == ["gemini"]


def test_pending_producers_follow_declared_order(producers):
    assert [p.key for p in pending_producers({"openai"}, producers)] == ["gemini"]
    assert pending_producers({"openai", "gemini"}, producers) == []
    assert pending_producers(set(), producers) == []
