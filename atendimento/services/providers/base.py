"""Normalized shapes shared by every provider adapter."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from atendimento.models.connection import ConnectionStatus
from atendimento.models.message import MessageDirection, MessageType

PLACEHOLDERS = {
    MessageType.IMAGE: "📷 Imagem",
    MessageType.AUDIO: "🎵 Áudio",
    MessageType.VIDEO: "🎬 Vídeo",
    MessageType.DOCUMENT: "📄 Documento",
    MessageType.STICKER: "🎨 Sticker",
}
UNSUPPORTED_PLACEHOLDER = "📎 Mensagem não suportada"


class ProviderError(Exception):
    """A provider API answered with a non-2xx status or an unusable body."""

    def __init__(self, provider: str, status_code: Optional[int], detail: str):
        self.provider = provider
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{provider} error: {status_code} - {detail}")


@dataclass
class InboundMessage:
    external_conversation_key: str
    content: str
    message_type: MessageType = MessageType.TEXT
    direction: MessageDirection = MessageDirection.INBOUND
    external_sender_name: Optional[str] = None
    media_url: Optional[str] = None
    external_message_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    raw_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def from_device(self) -> bool:
        """Outbound echo: sent by the tenant from the paired phone or app."""
        return self.direction == MessageDirection.OUTBOUND


@dataclass
class ConnectionStateChanged:
    status: ConnectionStatus
    number: Optional[str] = None


@dataclass
class PairingCodeUpdated:
    qrcode: str


ProviderEvent = Union[InboundMessage, ConnectionStateChanged, PairingCodeUpdated]


def placeholder_for(message_type: MessageType) -> str:
    return PLACEHOLDERS.get(message_type, UNSUPPORTED_PLACEHOLDER)


def parse_epoch(value: Any, *, milliseconds: bool = False) -> Optional[datetime]:
    """Provider timestamps arrive as int/str epochs; anything else is dropped."""
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        # protobuf Long serialized by some bridge versions
        value = value.get("low")
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if milliseconds:
        seconds = seconds / 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
