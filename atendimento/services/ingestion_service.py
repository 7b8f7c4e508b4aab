"""Webhook events -> contacts, conversations, messages and reply timers.

One provider event becomes at most one stored message. Inbound customer
messages on an AI-active conversation (re)arm the debounced reply; device
echoes are stored as outbound and never trigger the AI.
"""

from dataclasses import dataclass, field
from typing import Optional

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from atendimento.logging_config import get_logger
from atendimento.models import ChannelConnection, ConnectionStatus, MessageType, ProviderType
from atendimento.models.connection import resolve_provider_type
from atendimento.services.agent_service import get_conversation_agent
from atendimento.services.conversation_service import resolve_contact, resolve_conversation
from atendimento.services.enrichment_service import describe_image, refresh_contact_avatar, transcribe_message
from atendimento.services.message_service import persist_inbound
from atendimento.services.providers import (
    ConnectionStateChanged,
    InboundMessage,
    PairingCodeUpdated,
    ProviderEvent,
    normalize,
)
from atendimento.services.providers.evolution import get_instance_name
from atendimento.services.providers.instagram import OBJECT_INSTAGRAM, iter_instagram_entries
from atendimento.services.providers.meta import iter_meta_changes
from atendimento.services.scheduler_service import arm_response

logger = get_logger("ingestion_service")


@dataclass
class IngestSummary:
    stored: int = 0
    duplicates: int = 0
    armed: int = 0
    connection_updates: int = 0
    unknown_channels: list[str] = field(default_factory=list)

    def merge(self, other: "IngestSummary") -> "IngestSummary":
        self.stored += other.stored
        self.duplicates += other.duplicates
        self.armed += other.armed
        self.connection_updates += other.connection_updates
        self.unknown_channels.extend(other.unknown_channels)
        return self

    def describe(self) -> str:
        if self.unknown_channels and not (self.stored or self.duplicates or self.connection_updates):
            return "Channel not registered"
        return (
            f"stored={self.stored} duplicates={self.duplicates} "
            f"armed={self.armed} connection_updates={self.connection_updates}"
        )


def find_connection_by_instance(db: Session, instance_name: str) -> Optional[ChannelConnection]:
    return db.query(ChannelConnection).filter(ChannelConnection.instance_name == instance_name).first()


def find_connection_by_graph_id(db: Session, object_id: str, provider: ProviderType) -> Optional[ChannelConnection]:
    """Meta phone_number_id or Instagram business account id, both kept in meta_phone_number_id."""
    return (
        db.query(ChannelConnection)
        .filter(
            ChannelConnection.meta_phone_number_id == object_id,
            ChannelConnection.provider == provider.value,
        )
        .first()
    )


def apply_connection_event(db: Session, connection: ChannelConnection, event: ProviderEvent) -> None:
    """Pairing state and QR code updates. These never enter the message pipeline."""
    context = {"connection_id": connection.id, "instance": connection.instance_name}
    if isinstance(event, ConnectionStateChanged):
        connection.status = event.status.value
        if event.number:
            connection.number = event.number
        if event.status == ConnectionStatus.CONNECTED:
            connection.qrcode = None
        logger.info("Connection state changed", extra={"context": {**context, "status": event.status.value}})
    elif isinstance(event, PairingCodeUpdated):
        connection.qrcode = event.qrcode
        connection.status = ConnectionStatus.AWAITING.value
        logger.info("Pairing QR code updated", extra={"context": context})
    db.flush()


def ingest_message(
    db: Session,
    connection: ChannelConnection,
    inbound: InboundMessage,
    background_tasks: Optional[BackgroundTasks] = None,
) -> IngestSummary:
    summary = IngestSummary()
    context = {
        "connection_id": connection.id,
        "account_id": connection.account_id,
        "external_id": inbound.external_message_id,
    }

    sender_name = None if inbound.from_device else inbound.external_sender_name
    contact, contact_created = resolve_contact(
        db,
        connection.account_id,
        inbound.external_conversation_key,
        sender_name,
        channel=connection.channel,
    )
    conversation, _ = resolve_conversation(db, connection.account_id, contact.id, connection)
    context["conversation_id"] = conversation.id

    message = persist_inbound(db, conversation, contact, inbound)
    if message is None:
        summary.duplicates += 1
        db.commit()
        return summary
    summary.stored += 1

    if inbound.from_device:
        db.commit()
        logger.info("Device echo stored", extra={"context": context})
        return summary

    if message.message_type == MessageType.AUDIO.value:
        transcribe_message(db, connection, message)
    elif message.message_type == MessageType.IMAGE.value:
        describe_image(db, connection, message)

    db.refresh(conversation)
    agent = get_conversation_agent(db, conversation) if conversation.ai_active else None
    fire_at = arm_response(db, conversation, agent)
    if fire_at is not None:
        summary.armed += 1
    db.commit()

    if background_tasks is not None and not contact.avatar_url:
        background_tasks.add_task(refresh_contact_avatar, connection.id, contact.id)

    logger.info(
        "Inbound message stored",
        extra={"context": {**context, "contact_created": contact_created, "fire_at": fire_at}},
    )
    return summary


def ingest_events(
    db: Session,
    connection: ChannelConnection,
    events: list[ProviderEvent],
    background_tasks: Optional[BackgroundTasks] = None,
) -> IngestSummary:
    summary = IngestSummary()
    for event in events:
        if isinstance(event, InboundMessage):
            summary.merge(ingest_message(db, connection, event, background_tasks))
        else:
            apply_connection_event(db, connection, event)
            db.commit()
            summary.connection_updates += 1
    return summary


def _wire_protocol(connection: ChannelConnection, endpoint: ProviderType) -> Optional[ProviderType]:
    """Normalizer for a connection, or None when its record speaks another protocol than the endpoint."""
    provider = resolve_provider_type(connection)
    if provider != endpoint:
        logger.warning(
            "Webhook protocol does not match the channel record",
            extra={
                "context": {"connection_id": connection.id, "endpoint": endpoint.value, "provider": provider.value}
            },
        )
        return None
    return provider


def handle_evolution_payload(
    db: Session,
    payload: dict,
    background_tasks: Optional[BackgroundTasks] = None,
) -> IngestSummary:
    instance_name = get_instance_name(payload)
    if not instance_name:
        logger.info("Evolution event without instance")
        return IngestSummary()

    connection = find_connection_by_instance(db, instance_name)
    if connection is None:
        logger.info("Evolution event for unknown instance", extra={"context": {"instance": instance_name}})
        return IngestSummary(unknown_channels=[instance_name])

    # Evolution-paired Instagram accounts still speak the Evolution wire format
    provider = _wire_protocol(connection, ProviderType.EVOLUTION)
    if provider is None:
        return IngestSummary(unknown_channels=[instance_name])
    events = normalize(provider, payload)
    return ingest_events(db, connection, events, background_tasks)


def handle_meta_payload(
    db: Session,
    payload: dict,
    background_tasks: Optional[BackgroundTasks] = None,
) -> IngestSummary:
    """WhatsApp Cloud and Instagram Graph share the endpoint; `object` tells them apart."""
    summary = IngestSummary()

    if payload.get("object") == OBJECT_INSTAGRAM:
        slices = [(account_id, entry, ProviderType.INSTAGRAM) for account_id, entry in iter_instagram_entries(payload)]
    else:
        slices = [(phone_id, value, ProviderType.META) for phone_id, value in iter_meta_changes(payload)]

    for object_id, raw, provider in slices:
        connection = find_connection_by_graph_id(db, object_id, provider)
        if connection is None:
            logger.info(
                "Graph event for unknown channel",
                extra={"context": {"object_id": object_id, "provider": provider.value}},
            )
            summary.unknown_channels.append(object_id)
            continue
        wire = _wire_protocol(connection, provider)
        if wire is None:
            summary.unknown_channels.append(object_id)
            continue
        summary.merge(ingest_events(db, connection, normalize(wire, raw), background_tasks))
    return summary
