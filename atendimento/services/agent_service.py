from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from atendimento.models import AIAgent, Conversation

PRINCIPAL = "principal"


def parse_uuid(value) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def get_principal_agent(db: Session, account_id: UUID) -> Optional[AIAgent]:
    """Tenant's active principal agent, falling back to any active agent."""
    agent = (
        db.query(AIAgent)
        .filter(AIAgent.account_id == account_id, AIAgent.is_active == True, AIAgent.kind == PRINCIPAL)  # noqa: E712
        .order_by(AIAgent.created_at)
        .first()
    )
    if agent:
        return agent
    return (
        db.query(AIAgent)
        .filter(AIAgent.account_id == account_id, AIAgent.is_active == True)  # noqa: E712
        .order_by(AIAgent.created_at)
        .first()
    )


def get_conversation_agent(db: Session, conversation: Conversation) -> Optional[AIAgent]:
    """Agent that answers a conversation: its own if active, else the tenant default."""
    if conversation.agent_id:
        agent = (
            db.query(AIAgent)
            .filter(
                AIAgent.id == conversation.agent_id,
                AIAgent.account_id == conversation.account_id,
                AIAgent.is_active == True,  # noqa: E712
            )
            .first()
        )
        if agent:
            return agent
    return get_principal_agent(db, conversation.account_id)


def find_agent_by_reference(db: Session, account_id: UUID, reference: str) -> Optional[AIAgent]:
    """Agent by id, or by case-insensitive name (hyphens stand for spaces)."""
    agent_id = parse_uuid(reference)
    if agent_id:
        return db.query(AIAgent).filter(AIAgent.id == agent_id, AIAgent.account_id == account_id).first()

    name = (reference or "").replace("-", " ").strip().lower()
    if not name:
        return None
    return (
        db.query(AIAgent)
        .filter(AIAgent.account_id == account_id, func.lower(AIAgent.name) == name)
        .first()
    )
