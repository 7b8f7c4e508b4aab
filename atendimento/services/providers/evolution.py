"""Evolution API (WhatsApp bridge) webhook normalization."""

from typing import Any, Optional

from atendimento.logging_config import get_logger
from atendimento.models.connection import ConnectionStatus
from atendimento.models.message import MessageDirection, MessageType
from atendimento.services.providers.base import (
    ConnectionStateChanged,
    InboundMessage,
    PairingCodeUpdated,
    ProviderEvent,
    parse_epoch,
    placeholder_for,
)

logger = get_logger("providers.evolution")

EVENT_MESSAGES_UPSERT = "messages.upsert"
EVENT_CONNECTION_UPDATE = "connection.update"
EVENT_QRCODE_UPDATED = "qrcode.updated"

JID_SUFFIXES = ("@s.whatsapp.net", "@c.us")
GROUP_SUFFIX = "@g.us"

CONNECTION_STATES = {
    "open": ConnectionStatus.CONNECTED,
    "connected": ConnectionStatus.CONNECTED,
    "connecting": ConnectionStatus.AWAITING,
    "qr": ConnectionStatus.AWAITING,
    "close": ConnectionStatus.DISCONNECTED,
    "disconnected": ConnectionStatus.DISCONNECTED,
}

# (message key, type, field used instead of the placeholder)
_MEDIA_FIELDS = (
    ("imageMessage", MessageType.IMAGE, "caption"),
    ("audioMessage", MessageType.AUDIO, None),
    ("videoMessage", MessageType.VIDEO, "caption"),
    ("documentMessage", MessageType.DOCUMENT, "fileName"),
    ("documentWithCaptionMessage", MessageType.DOCUMENT, None),
    ("stickerMessage", MessageType.STICKER, None),
)


def normalize_event_name(event: Optional[str]) -> str:
    """MESSAGES_UPSERT and messages.upsert are the same event."""
    return (event or "").replace("_", ".").lower()


def get_instance_name(payload: dict) -> Optional[str]:
    instance = payload.get("instance")
    if isinstance(instance, dict):
        instance = instance.get("instanceName") or instance.get("name")
    if isinstance(instance, str) and instance.strip():
        return instance.strip()
    return None


def phone_from_jid(jid: str) -> str:
    phone = jid
    for suffix in JID_SUFFIXES:
        phone = phone.replace(suffix, "")
    return phone.split(":")[0]


def normalize_evolution_event(payload: dict) -> list[ProviderEvent]:
    """Map one Evolution webhook event to normalized provider events.

    Connection and QR events never produce InboundMessage values, so they cannot
    leak into the message pipeline.
    """
    event = normalize_event_name(payload.get("event"))
    data = payload.get("data")

    if event == EVENT_CONNECTION_UPDATE:
        return _connection_events(data if isinstance(data, dict) else {})
    if event == EVENT_QRCODE_UPDATED:
        return _qrcode_events(data if isinstance(data, dict) else {})
    if event != EVENT_MESSAGES_UPSERT:
        logger.debug("Ignoring Evolution event", extra={"context": {"event": event}})
        return []

    items = data if isinstance(data, list) else [data]
    events: list[ProviderEvent] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        message = _normalize_message(item)
        if message is not None:
            events.append(message)
    return events


def _connection_events(data: dict) -> list[ProviderEvent]:
    state = str(data.get("state") or data.get("status") or "").lower()
    status = CONNECTION_STATES.get(state)
    if status is None:
        logger.info("Unknown Evolution connection state", extra={"context": {"state": state}})
        return []

    number = None
    instance = data.get("instance")
    owner = None
    if isinstance(instance, dict):
        owner = instance.get("owner")
    owner = owner or data.get("ownerJid") or data.get("wuid")
    if isinstance(owner, str) and owner:
        number = owner.split("@")[0].split(":")[0]

    return [ConnectionStateChanged(status=status, number=number)]


def _qrcode_events(data: dict) -> list[ProviderEvent]:
    qrcode = data.get("qrcode")
    if isinstance(qrcode, dict):
        qrcode = qrcode.get("base64")
    qrcode = qrcode or data.get("base64")
    if not isinstance(qrcode, str) or not qrcode:
        return []
    return [PairingCodeUpdated(qrcode=qrcode)]


def _normalize_message(data: dict) -> Optional[InboundMessage]:
    key = data.get("key") or {}
    remote_jid = key.get("remoteJid") or ""
    if not remote_jid:
        return None
    if remote_jid.endswith(GROUP_SUFFIX):
        logger.debug("Ignoring group message", extra={"context": {"remote_jid": remote_jid}})
        return None

    content, message_type = extract_content(data)
    if not content:
        return None

    from_me = bool(key.get("fromMe"))
    raw_metadata: dict[str, Any] = {"remote_jid": remote_jid}
    message_body = data.get("message")
    if isinstance(message_body, dict):
        inline_base64 = message_body.get("base64")
        if inline_base64 and message_type != MessageType.TEXT:
            raw_metadata["has_inline_media"] = True
        media = _media_block(message_body, message_type)
        if media and media.get("mimetype"):
            raw_metadata["mime_type"] = media["mimetype"]

    return InboundMessage(
        external_conversation_key=phone_from_jid(remote_jid),
        content=content,
        message_type=message_type,
        direction=MessageDirection.OUTBOUND if from_me else MessageDirection.INBOUND,
        external_sender_name=None if from_me else data.get("pushName"),
        media_url=data.get("mediaUrl"),
        external_message_id=key.get("id"),
        timestamp=parse_epoch(data.get("messageTimestamp")),
        raw_metadata=raw_metadata,
    )


def extract_content(data: dict) -> tuple[str, MessageType]:
    """Text of a message, or a readable placeholder for media and unknown subtypes."""
    message = data.get("message")
    if isinstance(message, str):
        return message, MessageType.TEXT
    message = message or {}

    if message.get("conversation"):
        return message["conversation"], MessageType.TEXT
    extended = message.get("extendedTextMessage") or {}
    if extended.get("text"):
        return extended["text"], MessageType.TEXT

    for field_name, message_type, text_field in _MEDIA_FIELDS:
        block = message.get(field_name)
        if not block:
            continue
        if field_name == "documentWithCaptionMessage":
            inner = (block.get("message") or {}).get("documentMessage") or {}
            return inner.get("caption") or inner.get("fileName") or placeholder_for(message_type), message_type
        text = block.get(text_field) if text_field else None
        return text or placeholder_for(message_type), message_type

    if data.get("body"):
        return str(data["body"]), MessageType.TEXT

    # reactions, protocol messages, edits... are not customer content
    if any(k in message for k in ("reactionMessage", "protocolMessage", "senderKeyDistributionMessage")):
        return "", MessageType.TEXT
    if message:
        return placeholder_for(MessageType.TEXT), MessageType.TEXT
    return "", MessageType.TEXT


def _media_block(message: dict, message_type: MessageType) -> Optional[dict]:
    for field_name, candidate_type, _ in _MEDIA_FIELDS:
        if candidate_type == message_type and isinstance(message.get(field_name), dict):
            return message[field_name]
    return None
