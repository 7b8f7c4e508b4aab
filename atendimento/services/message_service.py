import os
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import httpx
import redis
from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from atendimento.config import settings
from atendimento.logging_config import get_logger
from atendimento.models import Contact, Conversation, Message, MessageDirection, MessageType, ProviderType
from atendimento.models.connection import ConnectionStatus, resolve_provider_type
from atendimento.services.providers.base import InboundMessage, ProviderError
from atendimento.services.providers.evolution_client import EvolutionClient
from atendimento.services.result import Result
from atendimento.services.state_machine import on_inbound, on_outbound

logger = get_logger("message_service")

DEDUP_PREFIX = "atendimento:dedup"
DEDUP_SOCKET_TIMEOUT_SECONDS = 0.3
SUMMARY_MAX_CHARS = 500

_dedup_client = None
_dedup_url = None


def _get_dedup_client():
    global _dedup_client, _dedup_url
    if not settings.redis_url or os.environ.get("PYTEST_CURRENT_TEST"):
        return None
    if _dedup_client is None or _dedup_url != settings.redis_url:
        _dedup_url = settings.redis_url
        _dedup_client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=DEDUP_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=DEDUP_SOCKET_TIMEOUT_SECONDS,
        )
    return _dedup_client


def _dedup_key(conversation_id: UUID, external_id: str) -> str:
    return f"{DEDUP_PREFIX}:{conversation_id}:{external_id}"


def _claim_dedup(conversation_id: UUID, external_id: str) -> bool:
    """Fast-path claim. True means "not seen yet" (or Redis unavailable)."""
    client = _get_dedup_client()
    if client is None:
        return True
    try:
        return bool(client.set(_dedup_key(conversation_id, external_id), "1", nx=True, ex=settings.dedup_ttl_seconds))
    except redis.RedisError as exc:
        logger.warning(f"Dedup claim failed, falling back to database: {exc}")
        return True


def _release_dedup(conversation_id: UUID, external_id: str) -> None:
    client = _get_dedup_client()
    if client is None:
        return
    try:
        client.delete(_dedup_key(conversation_id, external_id))
    except redis.RedisError as exc:
        logger.warning(f"Dedup release failed: {exc}")


def build_external_id(inbound: InboundMessage) -> Optional[str]:
    """Provider message id, or a stable stand-in when the provider omits it."""
    if inbound.external_message_id:
        return inbound.external_message_id.strip()
    if inbound.timestamp is not None:
        return f"{inbound.external_conversation_key}:{int(inbound.timestamp.timestamp())}"
    return None


def summarize(content: str) -> str:
    content = (content or "").strip()
    if len(content) <= SUMMARY_MAX_CHARS:
        return content
    return content[: SUMMARY_MAX_CHARS - 1].rstrip() + "…"


def persist_inbound(
    db: Session,
    conversation: Conversation,
    contact: Contact,
    inbound: InboundMessage,
) -> Optional[Message]:
    """Write a provider event exactly once.

    Returns the new Message, or None when the same external id was already
    stored for this conversation (provider retry). Device echoes (messages the
    tenant typed on the paired phone) are stored as outbound.
    """
    external_id = build_external_id(inbound)
    if external_id and not _claim_dedup(conversation.id, external_id):
        logger.info(
            "Duplicate inbound event (cache)",
            extra={"context": {"conversation_id": conversation.id, "external_id": external_id}},
        )
        return None

    metadata = dict(inbound.raw_metadata or {})
    now = datetime.now(timezone.utc)
    created_at = inbound.timestamp if inbound.from_device and inbound.timestamp else now
    message_id = uuid4()

    stmt = insert(Message).values(
        {
            Message.id: message_id,
            Message.conversation_id: conversation.id,
            Message.contact_id: contact.id,
            Message.content: inbound.content,
            Message.direction: inbound.direction.value,
            Message.message_type: inbound.message_type.value,
            Message.media_url: inbound.media_url,
            Message.external_id: external_id,
            Message.message_metadata: metadata,
            Message.read: inbound.from_device,
            Message.sent_by_ai: False,
            Message.sent_by_device: inbound.from_device,
            Message.deleted: False,
            Message.created_at: created_at,
        }
    )
    if external_id:
        stmt = stmt.on_conflict_do_nothing(index_elements=["conversa_id", "external_id"])

    try:
        inserted = db.execute(stmt).rowcount > 0
    except Exception:
        if external_id:
            _release_dedup(conversation.id, external_id)
        raise

    if not inserted:
        logger.info(
            "Duplicate inbound event",
            extra={"context": {"conversation_id": conversation.id, "external_id": external_id}},
        )
        return None

    _touch_summary(db, conversation, inbound.content, created_at, outbound=inbound.from_device)

    return db.query(Message).filter(Message.id == message_id).first()


def _touch_summary(db: Session, conversation: Conversation, content: str, at: datetime, *, outbound: bool) -> None:
    values = {
        Conversation.last_message: summarize(content),
        Conversation.last_message_at: at,
        Conversation.updated_at: datetime.now(timezone.utc),
    }
    if outbound:
        values[Conversation.unread_count] = 0
        values[Conversation.status] = on_outbound(conversation.status).value
    else:
        values[Conversation.unread_count] = Conversation.unread_count + 1
        values[Conversation.status] = on_inbound(conversation.status).value

    db.execute(update(Conversation).where(Conversation.id == conversation.id).values(values))


def persist_outbound(
    db: Session,
    conversation: Conversation,
    content: str,
    *,
    message_type: MessageType = MessageType.TEXT,
    media_url: Optional[str] = None,
    external_id: Optional[str] = None,
    sent_by_ai: bool = False,
    operator_id: Optional[UUID] = None,
    metadata: Optional[dict] = None,
) -> Message:
    """Record a message that the provider accepted for delivery.

    Evolution echoes API sends back as fromMe webhooks with the same id. When
    the echo was stored first it is claimed as this send instead of clashing
    on the (conversa_id, external_id) constraint.
    """
    now = datetime.now(timezone.utc)
    if not external_id:
        message = Message(
            id=uuid4(),
            conversation_id=conversation.id,
            contact_id=conversation.contact_id,
            operator_id=operator_id,
            content=content,
            direction=MessageDirection.OUTBOUND.value,
            message_type=message_type.value,
            media_url=media_url,
            external_id=None,
            message_metadata=metadata or {},
            read=True,
            sent_by_ai=sent_by_ai,
            sent_by_device=False,
            deleted=False,
            created_at=now,
        )
        db.add(message)
        db.flush()
        _touch_summary(db, conversation, content, now, outbound=True)
        return message

    stmt = (
        insert(Message)
        .values(
            {
                Message.id: uuid4(),
                Message.conversation_id: conversation.id,
                Message.contact_id: conversation.contact_id,
                Message.operator_id: operator_id,
                Message.content: content,
                Message.direction: MessageDirection.OUTBOUND.value,
                Message.message_type: message_type.value,
                Message.media_url: media_url,
                Message.external_id: external_id,
                Message.message_metadata: metadata or {},
                Message.read: True,
                Message.sent_by_ai: sent_by_ai,
                Message.sent_by_device: False,
                Message.deleted: False,
                Message.created_at: now,
            }
        )
        .on_conflict_do_update(
            index_elements=["conversa_id", "external_id"],
            set_={
                "enviada_por_ia": sent_by_ai,
                "usuario_id": operator_id,
                "enviada_por_dispositivo": False,
                "lida": True,
            },
        )
        .returning(Message.id)
    )
    message_id = db.execute(stmt).scalar_one()
    _touch_summary(db, conversation, content, now, outbound=True)
    return db.query(Message).filter(Message.id == message_id).first()


def persist_system_message(
    db: Session,
    conversation: Conversation,
    content: str,
    metadata: Optional[dict] = None,
) -> Message:
    """Internal note shown to operators only: never sent, never part of model history."""
    message = Message(
        id=uuid4(),
        conversation_id=conversation.id,
        contact_id=conversation.contact_id,
        content=content,
        direction=MessageDirection.OUTBOUND.value,
        message_type=MessageType.SYSTEM.value,
        message_metadata={"interno": True, **(metadata or {})},
        read=True,
        sent_by_ai=False,
        sent_by_device=False,
        deleted=False,
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    return message


def get_latest_inbound(db: Session, conversation_id: UUID) -> Optional[Message]:
    return (
        db.query(Message)
        .filter(
            Message.conversation_id == conversation_id,
            Message.direction == MessageDirection.INBOUND.value,
            Message.deleted == False,  # noqa: E712
        )
        .order_by(Message.created_at.desc())
        .first()
    )


def soft_delete_message(db: Session, message_id: UUID, operator_id: Optional[UUID] = None) -> Result[Message]:
    """Mark an outbound message deleted and, where the channel allows it, delete it for everyone.

    A failed remote delete is logged; the local marker still applies.
    """
    message = db.query(Message).filter(Message.id == message_id).first()
    if not message:
        return Result.failure("Mensagem não encontrada", "message_not_found")
    if message.direction != MessageDirection.OUTBOUND.value or message.message_type == MessageType.SYSTEM.value:
        return Result.failure("Apenas mensagens enviadas podem ser apagadas", "not_outbound")
    if message.deleted:
        return Result.success(message)

    conversation = db.query(Conversation).filter(Conversation.id == message.conversation_id).first()
    connection = conversation.connection if conversation else None

    remote_deleted = False
    if (
        connection is not None
        and message.external_id
        and resolve_provider_type(connection) == ProviderType.EVOLUTION
        and connection.status == ConnectionStatus.CONNECTED.value
    ):
        remote_jid = (message.message_metadata or {}).get("remote_jid")
        if not remote_jid and conversation.contact is not None:
            remote_jid = f"{conversation.contact.phone}@s.whatsapp.net"
        try:
            EvolutionClient.for_connection(connection).delete_message_for_everyone(message.external_id, remote_jid)
            remote_deleted = True
        except (ProviderError, httpx.HTTPError) as exc:
            logger.warning(
                "Remote delete failed",
                extra={"context": {"message_id": message.id, "error": str(exc)}},
            )

    message.deleted = True
    message.deleted_at = datetime.now(timezone.utc)
    message.deleted_by = operator_id
    metadata = dict(message.message_metadata or {})
    metadata["deletada_para_todos"] = remote_deleted
    message.message_metadata = metadata
    db.flush()
    return Result.success(message)
