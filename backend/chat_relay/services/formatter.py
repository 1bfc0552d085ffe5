"""
Conversation formatter.

Normalizes whatever the browser sent as ``messages`` into Message records
the model relay can forward. Total function: it never raises, and output
has the same length and order as the input.
"""

from typing import Any, List, Sequence

from chat_relay.models.chat import Message, Role

_KNOWN_ROLES = {role.value for role in Role}


def _coerce_content(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    # Content-block lists ([{"type": "text", "text": "..."}]) are flattened
    if isinstance(value, list):
        parts = []
        for block in value:
            if isinstance(block, dict):
                parts.append(str(block.get("text") or ""))
            else:
                parts.append(str(block))
        return "".join(parts)
    return str(value)


def format_message(raw: Any) -> Message:
    """Coerce one client record. Unknown or missing roles become "user"."""
    if isinstance(raw, Message):
        return raw

    if isinstance(raw, dict):
        role = raw.get("role")
        content = raw.get("content")
    else:
        role = None
        content = raw

    if not isinstance(role, str) or role not in _KNOWN_ROLES:
        role = Role.USER.value

    return Message(role=Role(role), content=_coerce_content(content))


def format_conversation(raw_messages: Sequence[Any]) -> List[Message]:
    return [format_message(raw) for raw in raw_messages]
