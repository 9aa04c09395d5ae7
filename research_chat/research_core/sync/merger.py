"""Reconcile the authoritative message log with locally-held ephemeral messages.

The merged view is, in order:

1. authoritative messages, in fetch order, deduplicated by id;
2. local echoes whose mutating call had not settled when the fetch was
   issued (``seq >= settled_seq``);
3. one placeholder per producer that is still pending while an earlier
   producer has already delivered.

The function is pure: merging the same fetch into its own output yields the
same list again.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from research_chat.models.messages import Message, Producer


def arrived_producers(messages: Iterable[Message], producers: Sequence[Producer]) -> set[str]:
    """Keys of producers with a real (non-placeholder) result among ``messages``."""
    arrived: set[str] = set()
    for message in messages:
        for producer in producers:
            if producer.key not in arrived and producer.tags(message):
                arrived.add(producer.key)
    return arrived


def pending_producers(arrived: set[str], producers: Sequence[Producer]) -> list[Producer]:
    """Producers that need a placeholder: not arrived, with an earlier producer arrived."""
    pending: list[Producer] = []
    earlier_arrived = False
    for producer in producers:
        if producer.key in arrived:
            earlier_arrived = True
        elif earlier_arrived:
            pending.append(producer)
    return pending


def merge_message_log(
    authoritative: Sequence[Message],
    local: Sequence[Message],
    *,
    producers: Sequence[Producer],
    settled_seq: int = 0,
) -> list[Message]:
    merged: list[Message] = []
    seen_ids: set[str] = set()
    for message in authoritative:
        if message.local or message.is_placeholder:
            continue
        if message.id in seen_ids:
            continue
        seen_ids.add(message.id)
        merged.append(message)

    existing_placeholders: dict[str, Message] = {}
    for message in local:
        if message.is_placeholder:
            if message.producer and message.producer not in existing_placeholders:
                existing_placeholders[message.producer] = message
            continue
        if not message.local or message.seq < settled_seq:
            continue
        if message.id in seen_ids:
            continue
        seen_ids.add(message.id)
        merged.append(message)

    arrived = arrived_producers(merged, producers)
    for producer in pending_producers(arrived, producers):
        merged.append(existing_placeholders.get(producer.key) or producer.placeholder())
    return merged


def authoritative_only(messages: Iterable[Message]) -> list[Message]:
    return [m for m in messages if not m.local]
