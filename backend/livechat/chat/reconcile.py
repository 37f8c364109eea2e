"""
Transcript reconciliation shared by the customer widget and the admin console.
"""

from typing import Dict, Iterable, List

from ..models import ChatMessage


def reconcile(*message_sets: Iterable[ChatMessage]) -> List[ChatMessage]:
    """
    Merge message sets into one deduplicated, chronological transcript.

    Messages are keyed by id; a later set overwrites an earlier entry with the
    same id. The result is sorted by created_at, ties broken by id, so applying
    the same messages in any grouping or order yields the same transcript.

    Args:
        *message_sets: Known transcript followed by newly received messages

    Returns:
        List[ChatMessage]: Ordered transcript
    """
    merged: Dict[str, ChatMessage] = {}
    for messages in message_sets:
        for message in messages:
            merged[message.id] = message
    return sorted(merged.values(), key=lambda m: (m.created_at, m.id))
