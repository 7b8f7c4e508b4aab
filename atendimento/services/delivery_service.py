from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from atendimento.logging_config import get_logger
from atendimento.models import ChannelConnection, Contact, Conversation, Message, MessageType, ProviderType
from atendimento.models.connection import resolve_provider_type
from atendimento.services.alert_service import alert_warning
from atendimento.services.message_service import persist_outbound
from atendimento.services.providers.base import ProviderError, placeholder_for
from atendimento.services.providers.evolution_client import EvolutionClient, extract_message_id
from atendimento.services.providers.meta_client import InstagramClient, MetaCloudClient, extract_graph_message_id
from atendimento.services.result import Result

logger = get_logger("delivery_service")

# MessageType -> wire media type per provider
EVOLUTION_MEDIA = {MessageType.IMAGE: "image", MessageType.VIDEO: "video", MessageType.DOCUMENT: "document"}
META_MEDIA = {
    MessageType.IMAGE: "image",
    MessageType.AUDIO: "audio",
    MessageType.VIDEO: "video",
    MessageType.DOCUMENT: "document",
    MessageType.STICKER: "sticker",
}
INSTAGRAM_MEDIA = {
    MessageType.IMAGE: "image",
    MessageType.AUDIO: "audio",
    MessageType.VIDEO: "video",
    MessageType.DOCUMENT: "file",
}


@dataclass
class OutboundContent:
    """What to send. Media types need media_url; templates only exist on Meta Cloud."""

    text: str = ""
    message_type: MessageType = MessageType.TEXT
    media_url: Optional[str] = None
    file_name: Optional[str] = None
    template_name: Optional[str] = None
    template_parameters: List[str] = field(default_factory=list)

    @property
    def is_template(self) -> bool:
        return bool(self.template_name)

    def stored_content(self) -> str:
        if self.is_template:
            return self.text or f"📋 Template: {self.template_name}"
        if self.message_type == MessageType.TEXT:
            return self.text
        return self.text or self.file_name or placeholder_for(self.message_type)


class DeliveryError(Exception):
    def __init__(self, message: str, code: str):
        self.code = code
        super().__init__(message)


def resolve_connection(db: Session, conversation: Conversation) -> Optional[ChannelConnection]:
    """Conversation's own channel, else the tenant's first registered one."""
    if conversation.connection_id:
        connection = db.query(ChannelConnection).filter(ChannelConnection.id == conversation.connection_id).first()
        if connection:
            return connection
    return (
        db.query(ChannelConnection)
        .filter(ChannelConnection.account_id == conversation.account_id)
        .order_by(ChannelConnection.created_at)
        .first()
    )


def _send_evolution(connection: ChannelConnection, contact: Contact, content: OutboundContent) -> Optional[str]:
    if content.is_template:
        raise DeliveryError("Templates só são suportados na API oficial da Meta", "unsupported_content")
    if not connection.instance_name:
        raise DeliveryError("Conexão sem instância configurada", "connection_misconfigured")

    client = EvolutionClient.for_connection(connection)
    if content.message_type == MessageType.TEXT:
        response = client.send_text(contact.phone, content.text)
    elif content.message_type == MessageType.AUDIO:
        response = client.send_audio(contact.phone, content.media_url)
    elif content.message_type in EVOLUTION_MEDIA:
        response = client.send_media(
            contact.phone,
            EVOLUTION_MEDIA[content.message_type],
            content.media_url,
            caption=content.text or None,
            file_name=content.file_name,
        )
    else:
        raise DeliveryError(f"Tipo não suportado: {content.message_type.value}", "unsupported_content")
    return extract_message_id(response)


def _send_meta(connection: ChannelConnection, contact: Contact, content: OutboundContent) -> Optional[str]:
    if not connection.meta_phone_number_id or not connection.meta_access_token:
        raise DeliveryError("Conexão Meta sem credenciais", "connection_misconfigured")

    client = MetaCloudClient.for_connection(connection)
    if content.is_template:
        response = client.send_template(contact.phone, content.template_name, content.template_parameters)
    elif content.message_type == MessageType.TEXT:
        response = client.send_text(contact.phone, content.text)
    elif content.message_type in META_MEDIA:
        response = client.send_media(
            contact.phone,
            META_MEDIA[content.message_type],
            content.media_url,
            caption=content.text or None,
            filename=content.file_name,
        )
    else:
        raise DeliveryError(f"Tipo não suportado: {content.message_type.value}", "unsupported_content")
    return extract_graph_message_id(response)


def _send_instagram(connection: ChannelConnection, contact: Contact, content: OutboundContent) -> Optional[str]:
    if content.is_template:
        raise DeliveryError("Templates não existem no Instagram", "unsupported_content")
    if not connection.meta_phone_number_id or not connection.meta_access_token:
        raise DeliveryError("Conexão Instagram sem credenciais", "connection_misconfigured")

    client = InstagramClient.for_connection(connection)
    if content.message_type == MessageType.TEXT:
        return extract_graph_message_id(client.send_text(contact.phone, content.text))
    if content.message_type not in INSTAGRAM_MEDIA:
        raise DeliveryError(f"Tipo não suportado: {content.message_type.value}", "unsupported_content")

    message_id = extract_graph_message_id(
        client.send_attachment(contact.phone, INSTAGRAM_MEDIA[content.message_type], content.media_url)
    )
    if content.text:
        # attachments carry no caption on Instagram
        client.send_text(contact.phone, content.text)
    return message_id


SENDERS = {
    ProviderType.EVOLUTION: _send_evolution,
    ProviderType.META: _send_meta,
    ProviderType.INSTAGRAM: _send_instagram,
}


def deliver(
    db: Session,
    conversation: Conversation,
    content: OutboundContent,
    *,
    sent_by_ai: bool = False,
    operator_id: Optional[UUID] = None,
) -> Result[Message]:
    """Send through the conversation's channel and record the message on success.

    A failed send leaves no outbound row behind and never raises: the caller
    gets a failed Result and the failure is logged and alerted.
    """
    context = {"conversation_id": conversation.id, "account_id": conversation.account_id}

    if not content.is_template and content.message_type == MessageType.TEXT and not (content.text or "").strip():
        return Result.failure("Mensagem vazia", "empty_message")
    if content.message_type != MessageType.TEXT and not content.media_url and not content.is_template:
        return Result.failure("Mídia sem URL", "missing_media")

    connection = resolve_connection(db, conversation)
    if connection is None:
        logger.warning("No channel connection for conversation", extra={"context": context})
        return Result.failure("Conexão não encontrada", "connection_not_found")

    contact = db.query(Contact).filter(Contact.id == conversation.contact_id).first()
    if contact is None:
        logger.warning("Conversation without contact", extra={"context": context})
        return Result.failure("Contato não encontrado", "contact_not_found")

    provider = resolve_provider_type(connection)
    context["provider"] = provider.value
    try:
        external_id = SENDERS[provider](connection, contact, content)
    except DeliveryError as exc:
        logger.warning(f"Delivery rejected: {exc}", extra={"context": context})
        return Result.failure(str(exc), exc.code)
    except (ProviderError, httpx.HTTPError) as exc:
        logger.error(f"Send failed: {exc}", extra={"context": context})
        alert_warning("Message send failed", {**context, "error": str(exc)[:300]})
        return Result.failure(str(exc), "send_failed")

    message = persist_outbound(
        db,
        conversation,
        content.stored_content(),
        message_type=content.message_type,
        media_url=content.media_url,
        external_id=external_id,
        sent_by_ai=sent_by_ai,
        operator_id=operator_id,
        metadata={"template": content.template_name} if content.is_template else None,
    )
    logger.info("Message delivered", extra={"context": {**context, "external_id": external_id}})
    return Result.success(message)
