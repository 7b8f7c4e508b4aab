"""Hand a conversation to a human operator or to an AI agent."""

import os
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from atendimento.logging_config import get_logger
from atendimento.models import AIAgent, Conversation, Operator, ServiceTransfer
from atendimento.services.agent_service import find_agent_by_reference, get_principal_agent, parse_uuid
from atendimento.services.message_service import get_latest_inbound, persist_system_message
from atendimento.services.result import Result
from atendimento.services.scheduler_service import cancel_response

logger = get_logger("transfer_service")


def max_transfer_depth() -> int:
    return int(os.environ.get("AI_TRANSFER_MAX_DEPTH", "2"))


@dataclass
class TransferOutcome:
    transfer: ServiceTransfer
    to_ai: bool
    target_name: Optional[str] = None


def find_operator_by_reference(db: Session, account_id: UUID, reference: str) -> Optional[Operator]:
    operator_id = parse_uuid(reference)
    if operator_id:
        return db.query(Operator).filter(Operator.id == operator_id, Operator.account_id == account_id).first()
    name = (reference or "").replace("-", " ").strip().lower()
    if not name:
        return None
    return db.query(Operator).filter(Operator.account_id == account_id, func.lower(Operator.name) == name).first()


def _log_transfer(
    db: Session,
    conversation: Conversation,
    *,
    to_operator_id: Optional[UUID],
    to_ai: bool,
    reason: Optional[str],
    by_operator_id: Optional[UUID],
) -> ServiceTransfer:
    transfer = ServiceTransfer(
        conversation_id=conversation.id,
        from_operator_id=by_operator_id or conversation.operator_id,
        to_operator_id=to_operator_id,
        to_ai=to_ai,
        reason=reason,
    )
    db.add(transfer)
    return transfer


def transfer_to_human(
    db: Session,
    conversation: Conversation,
    operator: Optional[Operator] = None,
    *,
    reason: Optional[str] = None,
    by_operator_id: Optional[UUID] = None,
    note: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> TransferOutcome:
    """AI off, optional operator assignment. Pending AI replies are dropped."""
    transfer = _log_transfer(
        db,
        conversation,
        to_operator_id=operator.id if operator else None,
        to_ai=False,
        reason=reason,
        by_operator_id=by_operator_id,
    )
    conversation.ai_active = False
    if operator is not None:
        conversation.operator_id = operator.id
    cancel_response(db, conversation.id)

    if note is None:
        note = (
            f"👤 Conversa transferida para {operator.name}"
            if operator is not None
            else "👤 Conversa transferida para atendente humano"
        )
    persist_system_message(db, conversation, note, metadata)
    db.flush()

    logger.info(
        "Conversation transferred to human",
        extra={"context": {"conversation_id": conversation.id, "operator_id": operator.id if operator else None}},
    )
    return TransferOutcome(transfer=transfer, to_ai=False, target_name=operator.name if operator else None)


def transfer_to_ai(
    db: Session,
    conversation: Conversation,
    agent: Optional[AIAgent] = None,
    *,
    reason: Optional[str] = None,
    by_operator_id: Optional[UUID] = None,
    note: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> TransferOutcome:
    """AI on; without an explicit agent the tenant's principal agent takes over."""
    explicit = agent is not None
    if agent is None:
        agent = get_principal_agent(db, conversation.account_id)

    transfer = _log_transfer(
        db,
        conversation,
        to_operator_id=None,
        to_ai=True,
        reason=reason,
        by_operator_id=by_operator_id,
    )
    conversation.ai_active = True
    conversation.operator_id = None
    if agent is not None:
        conversation.agent_id = agent.id

    if note is None:
        note = (
            f'🤖 Conversa transferida para agente "{agent.name}"'
            if explicit
            else "🤖 Conversa retornada para agente IA principal"
        )
    persist_system_message(db, conversation, note, metadata)
    db.flush()

    logger.info(
        "Conversation transferred to AI",
        extra={"context": {"conversation_id": conversation.id, "agent_id": agent.id if agent else None}},
    )
    return TransferOutcome(transfer=transfer, to_ai=True, target_name=agent.name if agent else None)


def retrigger_ai(db: Session, conversation: Conversation, depth: int = 0):
    """Answer the latest customer message right away after a hand-off to AI.

    Bounded by AI_TRANSFER_MAX_DEPTH so two agents handing a conversation back
    and forth cannot loop.
    """
    if depth >= max_transfer_depth():
        logger.warning(
            "Transfer retrigger depth reached",
            extra={"context": {"conversation_id": conversation.id, "depth": depth}},
        )
        return None

    trigger = get_latest_inbound(db, conversation.id)
    if trigger is None:
        logger.info("No inbound message to answer after transfer", extra={"context": {"conversation_id": conversation.id}})
        return None

    from atendimento.services.response_service import run_response_cycle

    return run_response_cycle(db, conversation, trigger=trigger, depth=depth + 1)


def manual_transfer(
    db: Session,
    conversation_id: UUID,
    *,
    to_operator_id: Optional[UUID] = None,
    to_agent_id: Optional[UUID] = None,
    to_ai: bool = False,
    reason: Optional[str] = None,
    by_operator_id: Optional[UUID] = None,
    stage_id: Optional[UUID] = None,
) -> Result[TransferOutcome]:
    """Operator-initiated transfer from the dashboard."""
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if conversation is None:
        return Result.failure("Conversa não encontrada", "conversation_not_found")

    by_name = None
    if by_operator_id:
        by_operator = find_operator_by_reference(db, conversation.account_id, str(by_operator_id))
        by_name = by_operator.name if by_operator else None
    suffix = f" por {by_name}" if by_name else ""
    metadata = {"motivo": reason} if reason else None

    if to_agent_id or to_ai:
        agent = None
        if to_agent_id:
            agent = find_agent_by_reference(db, conversation.account_id, str(to_agent_id))
            if agent is None:
                return Result.failure("Agente IA não encontrado", "agent_not_found")
        target = f'agente "{agent.name}"' if agent else "agente IA principal"
        outcome = transfer_to_ai(
            db,
            conversation,
            agent,
            reason=reason,
            by_operator_id=by_operator_id,
            note=f"🤖 Conversa transferida para {target}{suffix}",
            metadata=metadata,
        )
    elif to_operator_id:
        operator = find_operator_by_reference(db, conversation.account_id, str(to_operator_id))
        if operator is None:
            return Result.failure("Atendente não encontrado", "operator_not_found")
        outcome = transfer_to_human(
            db,
            conversation,
            operator,
            reason=reason,
            by_operator_id=by_operator_id,
            note=f"👤 Conversa transferida para {operator.name}{suffix}",
            metadata=metadata,
        )
    else:
        return Result.failure("Destino da transferência não informado", "invalid_transfer")

    if stage_id:
        from atendimento.services.action_service import move_contact_to_stage

        moved = move_contact_to_stage(db, conversation, str(stage_id), operator_id=by_operator_id)
        if not moved.ok:
            logger.warning(
                "Stage move after transfer failed",
                extra={"context": {"conversation_id": conversation.id, "error": moved.error}},
            )

    return Result.success(outcome)
