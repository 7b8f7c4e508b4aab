"""Instagram Messaging (Graph API) webhook normalization."""

from typing import Iterator, Optional

from atendimento.models.message import MessageDirection, MessageType
from atendimento.services.providers.base import InboundMessage, ProviderEvent, parse_epoch, placeholder_for

OBJECT_INSTAGRAM = "instagram"

_ATTACHMENT_TYPES = {
    "image": MessageType.IMAGE,
    "audio": MessageType.AUDIO,
    "video": MessageType.VIDEO,
    "file": MessageType.DOCUMENT,
    "sticker": MessageType.STICKER,
}


def iter_instagram_entries(payload: dict) -> Iterator[tuple[str, dict]]:
    """Yield (instagram account id, entry)."""
    for entry in payload.get("entry") or []:
        account_id = (entry or {}).get("id")
        if account_id:
            yield str(account_id), entry


def normalize_instagram_entry(entry: dict) -> list[ProviderEvent]:
    account_id = str(entry.get("id") or "")
    events: list[ProviderEvent] = []
    for item in entry.get("messaging") or []:
        normalized = _normalize_messaging(item, account_id)
        if normalized is not None:
            events.append(normalized)
    return events


def _normalize_messaging(item: dict, account_id: str) -> Optional[InboundMessage]:
    message = item.get("message")
    if not isinstance(message, dict) or message.get("is_deleted"):
        return None

    sender_id = str((item.get("sender") or {}).get("id") or "")
    recipient_id = str((item.get("recipient") or {}).get("id") or "")
    echo = bool(message.get("is_echo")) or sender_id == account_id
    # the customer is always the side that is not our account
    customer_id = recipient_id if echo else sender_id
    if not customer_id:
        return None

    message_type = MessageType.TEXT
    media_url = None
    content = message.get("text") or ""
    attachments = message.get("attachments") or []
    if attachments:
        first = attachments[0] or {}
        message_type = _ATTACHMENT_TYPES.get(first.get("type"), MessageType.TEXT)
        media_url = (first.get("payload") or {}).get("url")
        if not content:
            content = placeholder_for(message_type)
    if not content:
        return None

    return InboundMessage(
        external_conversation_key=customer_id,
        content=content,
        message_type=message_type,
        direction=MessageDirection.OUTBOUND if echo else MessageDirection.INBOUND,
        media_url=media_url,
        external_message_id=message.get("mid"),
        timestamp=parse_epoch(item.get("timestamp"), milliseconds=True),
        raw_metadata={"instagram_account_id": account_id},
    )
