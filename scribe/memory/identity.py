"""Stable identifiers for chat messages and memory collections."""

from __future__ import annotations

from scribe.memory.models import ChatContext, ChatMessage
from scribe.utils.hashing import HashCache, rolling_hash
from scribe.utils.helpers import now_ms


def _hash(text: str, cache: HashCache | None) -> str:
    return cache.hash(text) if cache is not None else rolling_hash(text)


def normalize_message_id(
    message: ChatMessage,
    fallback_index: int | None = None,
    *,
    hash_cache: HashCache | None = None,
) -> str:
    """Derive a message identifier.

    Precedence: the message timestamp, then its position in the chat, then a
    hash of its text, then the current time. The hash fallback can collide for
    equal texts and the time fallback is not reproducible.
    """
    send_date = message.send_date
    if isinstance(send_date, bool):
        send_date = None
    if isinstance(send_date, (int, float)):
        if isinstance(send_date, float) and send_date.is_integer():
            return str(int(send_date))
        return str(send_date)
    if isinstance(send_date, str) and send_date.strip():
        return send_date.strip()
    if fallback_index is not None:
        return f"idx_{fallback_index}"
    if message.text:
        return f"h_{_hash(message.text, hash_cache)}"
    return f"t_{now_ms()}"


def content_hash(text: str, *, hash_cache: HashCache | None = None) -> str:
    """Hash of the original message text, used to detect edits."""
    return _hash(text or "", hash_cache)


def collection_id(
    context: ChatContext,
    *,
    prefix: str,
    hash_cache: HashCache | None = None,
) -> str:
    """Collection for a chat: ``prefix + scope + "_" + hash(chat_id)``.

    Group chats are scoped by a ``g`` token, single-character chats by ``c``.
    """
    if context.group_id is not None and str(context.group_id) != "":
        scope = f"g{context.group_id}"
    else:
        scope = f"c{context.character_id if context.character_id is not None else ''}"
    return f"{prefix}{scope}_{_hash(str(context.chat_id), hash_cache)}"
