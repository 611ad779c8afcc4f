"""Conversation mutations.

Pure functions over a loaded ``Conversation``. Callers hold the
conversation's lock (row lock or in-process lock) for the whole
read-check-mutate-write cycle, which is what makes the duplicate check and
the status regression guard atomic.

Ordering rules that make the operations tolerate reordered delivery:
- lastMessage follows the newest message by timestamp, not arrival order.
- The messaging window follows the most recent inbound message.
- Delivery status only moves forward: sent < delivered < read < failed,
  and failed is terminal.
- A reaction entry is replaced only by a reaction at least as recent.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from convoy.whatsapp.content import Content

from .models import (
    WINDOW_DURATION,
    Contact,
    Conversation,
    Direction,
    LastMessage,
    Message,
    Outcome,
    ProfileChange,
    ReactionEntry,
)

STATUS_RANK: dict[str, int] = {"sent": 1, "delivered": 2, "read": 3, "failed": 4}

PROFILE_FIELDS: tuple[str, ...] = ("name", "photo", "about")


def new_conversation(
    tenant_id: str,
    address: str,
    now: datetime,
    *,
    conversation_id: str | None = None,
) -> Conversation:
    """Create an empty active conversation."""
    return Conversation(
        id=conversation_id or str(uuid.uuid4()),
        tenant_id=tenant_id,
        contact=Contact(address=address),
        created_at=now,
        updated_at=now,
    )


def build_message(
    external_id: str,
    direction: Direction,
    content: Content,
    timestamp: datetime,
) -> Message:
    status = "delivered" if direction == "incoming" else "sent"
    return Message(
        external_id=external_id,
        direction=direction,
        type=content.type,
        content=content,
        timestamp=timestamp,
        status=status,
        status_timestamps={status: timestamp.isoformat()},
    )


def append_message(conversation: Conversation, message: Message, now: datetime) -> Outcome:
    """Append message unless its external id is already present.

    Inbound messages open or refresh the window and reactivate archived or
    closed conversations; outbound echoes do neither.

    Returns:
        DUPLICATE with no mutation at all, or APPLIED.
    """
    if conversation.has_message(message.external_id):
        return Outcome.DUPLICATE

    conversation.messages.append(message)
    _refresh_last_message(conversation, message)

    metrics = conversation.metrics
    metrics.total_messages += 1
    if message.direction == "incoming":
        metrics.incoming_messages += 1
        metrics.unread_count += 1
        _open_window(conversation, message.timestamp)
        if conversation.status in ("archived", "closed"):
            conversation.status = "active"
    else:
        metrics.outgoing_messages += 1

    conversation.updated_at = now
    return Outcome.APPLIED


def _refresh_last_message(conversation: Conversation, message: Message) -> None:
    if conversation.last_message_at is not None and message.timestamp < conversation.last_message_at:
        return
    conversation.last_message = LastMessage(
        external_id=message.external_id,
        text=message.text,
        type=message.type,
        direction=message.direction,
    )
    conversation.last_message_at = message.timestamp


def _open_window(conversation: Conversation, inbound_at: datetime) -> None:
    window = conversation.window
    if window.opened_at is not None and inbound_at < window.opened_at:
        # An older message arriving late does not pull the window back
        return
    if not window.is_open_at(inbound_at):
        conversation.metrics.windows_opened += 1
    window.is_open = True
    window.opened_at = inbound_at
    window.expires_at = inbound_at + WINDOW_DURATION


def apply_reaction(
    conversation: Conversation,
    target_external_id: str,
    reactor: str,
    emoji: str,
    timestamp: datetime,
    now: datetime,
) -> Outcome:
    """Insert, replace or remove reactor's single reaction on the target.

    Returns:
        TARGET_NOT_FOUND when the target is not in this conversation,
        UNCHANGED for stale or no-op reactions, APPLIED otherwise.
    """
    message = conversation.find_message(target_external_id)
    if message is None:
        return Outcome.TARGET_NOT_FOUND

    existing = message.reaction_by(reactor)
    if existing is not None and timestamp < existing.timestamp:
        return Outcome.UNCHANGED

    if not emoji:
        if existing is None:
            return Outcome.UNCHANGED
        message.reactions.remove(existing)
    elif existing is None:
        message.reactions.append(ReactionEntry(reactor=reactor, emoji=emoji, timestamp=timestamp))
    elif existing.emoji == emoji and existing.timestamp == timestamp:
        return Outcome.UNCHANGED
    else:
        existing.emoji = emoji
        existing.timestamp = timestamp

    conversation.updated_at = now
    return Outcome.APPLIED


def apply_status(
    conversation: Conversation,
    external_id: str,
    status: str,
    timestamp: datetime,
    now: datetime,
    *,
    error: dict | None = None,
    category: str | None = None,
) -> Outcome:
    """Advance a message's delivery status if it moves forward.

    Returns:
        NOT_FOUND when the message is not in this conversation, UNCHANGED on
        a regression or repeat, APPLIED otherwise.
    """
    message = conversation.find_message(external_id)
    if message is None:
        return Outcome.NOT_FOUND

    if category and conversation.window.category != category:
        conversation.window.category = category

    if STATUS_RANK.get(status, 0) <= STATUS_RANK.get(message.status, 0):
        return Outcome.UNCHANGED

    message.status = status
    message.status_timestamps[status] = timestamp.isoformat()
    if status == "failed" and error:
        message.error = error
    conversation.updated_at = now
    return Outcome.APPLIED


def apply_profile(
    conversation: Conversation,
    profile: dict[str, str | None],
    now: datetime,
    history_limit: int,
) -> set[str]:
    """Write changed profile fields and append them to the bounded history.

    Args:
        profile: Subset of name/photo/about; None values are ignored.

    Returns:
        Names of the fields that changed (possibly empty).
    """
    contact = conversation.contact
    changed: set[str] = set()
    for name in PROFILE_FIELDS:
        new = profile.get(name)
        if new is None:
            continue
        old = getattr(contact, name)
        if old == new:
            continue
        setattr(contact, name, new)
        contact.history.append(ProfileChange(field=name, old=old, new=new, changed_at=now))
        changed.add(name)

    if history_limit >= 0 and len(contact.history) > history_limit:
        del contact.history[: len(contact.history) - history_limit]
    if changed:
        conversation.updated_at = now
    return changed
