from datetime import datetime, timezone
from typing import Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from atendimento.logging_config import get_logger
from atendimento.models import ChannelConnection, Contact, Conversation
from atendimento.services.agent_service import get_principal_agent
from atendimento.services.state_machine import ConversationStatus

logger = get_logger("conversation_service")


def get_conversation(db: Session, conversation_id: UUID) -> Optional[Conversation]:
    return db.query(Conversation).filter(Conversation.id == conversation_id).first()


def get_contact(db: Session, contact_id: UUID) -> Optional[Contact]:
    return db.query(Contact).filter(Contact.id == contact_id).first()


def resolve_contact(
    db: Session,
    account_id: UUID,
    external_key: str,
    display_name: Optional[str] = None,
    channel: Optional[str] = None,
) -> Tuple[Contact, bool]:
    """Find or create the contact for (tenant, phone/platform id).

    Concurrent first-contact webhooks race on the unique (conta_id, telefone)
    key; the loser's insert is a no-op and both read the same row.
    Returns (contact, created).
    """
    display_name = (display_name or "").strip() or None
    now = datetime.now(timezone.utc)
    stmt = (
        insert(Contact)
        .values(
            {
                Contact.id: uuid4(),
                Contact.account_id: account_id,
                Contact.name: display_name or external_key,
                Contact.phone: external_key,
                Contact.tags: [],
                Contact.channel: channel,
                Contact.contact_metadata: {},
                Contact.created_at: now,
                Contact.updated_at: now,
            }
        )
        .on_conflict_do_nothing(index_elements=["conta_id", "telefone"])
    )
    created = db.execute(stmt).rowcount > 0

    contact = (
        db.query(Contact).filter(Contact.account_id == account_id, Contact.phone == external_key).first()
    )

    if not created and display_name and contact.name == contact.phone:
        # first push name for a contact that was created from a bare number
        contact.name = display_name
        contact.updated_at = now
        db.flush()

    if created:
        logger.info(
            "Contact created",
            extra={"context": {"account_id": account_id, "contact_id": contact.id, "channel": channel}},
        )
    return contact, created


def find_open_conversation(db: Session, account_id: UUID, contact_id: UUID) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(
            Conversation.account_id == account_id,
            Conversation.contact_id == contact_id,
            Conversation.archived == False,  # noqa: E712
        )
        .first()
    )


def resolve_conversation(
    db: Session,
    account_id: UUID,
    contact_id: UUID,
    connection: Optional[ChannelConnection] = None,
) -> Tuple[Conversation, bool]:
    """Find or create the single open conversation for a contact.

    The partial unique index on (conta_id, contato_id) WHERE arquivada = false
    makes the insert atomic; a concurrent duplicate is swallowed by
    ON CONFLICT DO NOTHING and the existing row is read back.
    Returns (conversation, created).
    """
    conversation = find_open_conversation(db, account_id, contact_id)
    if conversation:
        if connection is not None and conversation.connection_id is None:
            conversation.connection_id = connection.id
            db.flush()
        return conversation, False

    agent = get_principal_agent(db, account_id)
    now = datetime.now(timezone.utc)
    stmt = (
        insert(Conversation)
        .values(
            {
                Conversation.id: uuid4(),
                Conversation.account_id: account_id,
                Conversation.contact_id: contact_id,
                Conversation.connection_id: connection.id if connection is not None else None,
                Conversation.agent_id: agent.id if agent else None,
                Conversation.ai_active: True,
                Conversation.status: ConversationStatus.IN_PROGRESS.value,
                Conversation.unread_count: 0,
                Conversation.archived: False,
                Conversation.channel: connection.channel if connection is not None else None,
                Conversation.created_at: now,
                Conversation.updated_at: now,
            }
        )
        .on_conflict_do_nothing(
            index_elements=["conta_id", "contato_id"],
            index_where=text("arquivada = false"),
        )
    )
    created = db.execute(stmt).rowcount > 0

    conversation = find_open_conversation(db, account_id, contact_id)
    if created:
        logger.info(
            "Conversation created",
            extra={
                "context": {
                    "account_id": account_id,
                    "conversation_id": conversation.id,
                    "agent_id": agent.id if agent else None,
                }
            },
        )
    return conversation, created
