"""Meta WhatsApp Cloud API webhook normalization."""

from typing import Any, Iterator, Optional

from atendimento.logging_config import get_logger
from atendimento.models.message import MessageType
from atendimento.services.providers.base import InboundMessage, ProviderEvent, parse_epoch, placeholder_for

logger = get_logger("providers.meta")

OBJECT_WHATSAPP = "whatsapp_business_account"

_MEDIA_TYPES = {
    "image": MessageType.IMAGE,
    "audio": MessageType.AUDIO,
    "voice": MessageType.AUDIO,
    "video": MessageType.VIDEO,
    "document": MessageType.DOCUMENT,
    "sticker": MessageType.STICKER,
}


def iter_meta_changes(payload: dict) -> Iterator[tuple[str, dict]]:
    """Yield (phone_number_id, change value) for every messages change."""
    for entry in payload.get("entry") or []:
        for change in (entry or {}).get("changes") or []:
            if (change or {}).get("field") != "messages":
                continue
            value = change.get("value") or {}
            phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
            if phone_number_id:
                yield str(phone_number_id), value


def normalize_meta_change(value: dict) -> list[ProviderEvent]:
    """One `messages` change value -> inbound messages. Status callbacks are dropped."""
    names = {}
    for contact in value.get("contacts") or []:
        wa_id = contact.get("wa_id")
        if wa_id:
            names[wa_id] = (contact.get("profile") or {}).get("name")

    events: list[ProviderEvent] = []
    for message in value.get("messages") or []:
        normalized = _normalize_message(message, names)
        if normalized is not None:
            events.append(normalized)

    if value.get("statuses") and not events:
        logger.debug("Ignoring Meta status callback", extra={"context": {"count": len(value["statuses"])}})
    return events


def _normalize_message(message: dict, names: dict[str, Optional[str]]) -> Optional[InboundMessage]:
    sender = message.get("from")
    kind = message.get("type") or "text"
    if not sender or kind == "reaction":
        return None

    content, message_type, media = _extract(message, kind)
    if not content:
        return None

    raw_metadata: dict[str, Any] = {"meta_type": kind}
    if media:
        if media.get("id"):
            raw_metadata["media_id"] = media["id"]
        if media.get("mime_type"):
            raw_metadata["mime_type"] = media["mime_type"]
    context = message.get("context") or {}
    if context.get("id"):
        raw_metadata["reply_to"] = context["id"]

    return InboundMessage(
        external_conversation_key=str(sender),
        content=content,
        message_type=message_type,
        external_sender_name=names.get(sender),
        media_url=(media or {}).get("link"),
        external_message_id=message.get("id"),
        timestamp=parse_epoch(message.get("timestamp")),
        raw_metadata=raw_metadata,
    )


def _extract(message: dict, kind: str) -> tuple[str, MessageType, Optional[dict]]:
    if kind == "text":
        return (message.get("text") or {}).get("body") or "", MessageType.TEXT, None

    if kind in _MEDIA_TYPES:
        message_type = _MEDIA_TYPES[kind]
        media = message.get(kind) or {}
        text = media.get("caption") or media.get("filename")
        return text or placeholder_for(message_type), message_type, media

    if kind == "button":
        return (message.get("button") or {}).get("text") or "", MessageType.TEXT, None

    if kind == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return reply.get("title") or "", MessageType.TEXT, None

    if kind == "location":
        location = message.get("location") or {}
        label = location.get("name") or location.get("address")
        coords = f"{location.get('latitude')},{location.get('longitude')}"
        return f"📍 {label or coords}", MessageType.TEXT, None

    return placeholder_for(MessageType.TEXT), MessageType.TEXT, None
