"""Directive execution: the side effects behind `@tag:vip`, `@etapa:...` and friends.

Each directive runs inside its own SAVEPOINT. A failing directive rolls back
only its own writes and the rest of the batch carries on.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from atendimento.logging_config import get_logger
from atendimento.models import Contact, Conversation, Deal, DealHistory, Funnel, Notification, PipelineStage
from atendimento.services.agent_service import find_agent_by_reference, parse_uuid
from atendimento.services.alert_service import send_alert_in_background
from atendimento.services.directives import Directive, DirectiveKind
from atendimento.services.message_service import persist_system_message
from atendimento.services.result import Result
from atendimento.services.scheduler_service import cancel_response
from atendimento.services.state_machine import close
from atendimento.services.transfer_service import (
    find_operator_by_reference,
    retrigger_ai,
    transfer_to_ai,
    transfer_to_human,
)

logger = get_logger("action_service")

ORIGIN_AI = "ia"
ORIGIN_OPERATOR = "usuario"
OPEN_DEAL_STATUS = "aberto"


@dataclass
class DirectiveOutcome:
    directive: Directive
    ok: bool
    message: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "acao": self.directive.token,
            "tipo": self.directive.kind.value,
            "valor": self.directive.value,
            "sucesso": self.ok,
            "mensagem": self.message,
            "codigo_erro": self.error_code,
        }


@dataclass
class ActionContext:
    db: Session
    conversation: Conversation
    contact: Contact
    origin: str
    operator_id: Optional[UUID] = None
    retrigger: bool = False


def _note(ctx: ActionContext, directive: Directive, text: str) -> None:
    persist_system_message(
        ctx.db,
        ctx.conversation,
        text,
        {"acao_tipo": directive.kind.value, "acao_valor": directive.value, "origem": ctx.origin},
    )


def _readable(value: str) -> str:
    return value.replace("-", " ").strip()


def _rename(ctx: ActionContext, directive: Directive) -> Result[str]:
    name = _readable(directive.value or "")
    if not name:
        return Result.failure("Nome não informado", "missing_value")
    ctx.contact.name = name
    _note(ctx, directive, f'✏️ Nome do contato alterado para "{name}"')
    return Result.success(name)


def _tag(ctx: ActionContext, directive: Directive) -> Result[str]:
    tag = directive.value
    # array_append guarded by ANY keeps tags a set under concurrent writers
    result = ctx.db.execute(
        update(Contact)
        .where(Contact.id == ctx.contact.id, ~Contact.tags.any(tag))
        .values({Contact.tags: func.array_append(Contact.tags, tag), Contact.updated_at: func.now()})
    )
    if result.rowcount:
        _note(ctx, directive, f'🏷️ Tag "{tag}" adicionada ao contato')
    return Result.success(tag)


def _normalize_name(value: str) -> str:
    return _readable(value).lower()


def find_stage(db: Session, account_id: UUID, reference: str) -> Optional[PipelineStage]:
    """Stage by UUID, or by name across the tenant's funnels.

    Names match case-insensitively with hyphens read as spaces; an exact match
    wins over a partial one. `funil/etapa` narrows the search to one funnel.
    """
    base = db.query(PipelineStage).join(Funnel, PipelineStage.funnel_id == Funnel.id).filter(
        Funnel.account_id == account_id
    )

    stage_id = parse_uuid(reference)
    if stage_id:
        return base.filter(PipelineStage.id == stage_id).first()

    funnel_name, _, stage_name = reference.rpartition("/")
    stage_name = _normalize_name(stage_name)
    if not stage_name:
        return None
    if funnel_name:
        base = base.filter(func.lower(Funnel.name) == _normalize_name(funnel_name))

    stages = base.order_by(Funnel.position, PipelineStage.position).all()
    for stage in stages:
        if _normalize_name(stage.name) == stage_name:
            return stage
    for stage in stages:
        if stage_name in _normalize_name(stage.name):
            return stage
    return None


def find_open_deal(db: Session, account_id: UUID, contact_id: UUID) -> Optional[Deal]:
    return (
        db.query(Deal)
        .filter(Deal.account_id == account_id, Deal.contact_id == contact_id, Deal.status == OPEN_DEAL_STATUS)
        .order_by(Deal.created_at.desc())
        .first()
    )


def move_contact_to_stage(
    db: Session,
    conversation: Conversation,
    reference: str,
    operator_id: Optional[UUID] = None,
) -> Result[PipelineStage]:
    """Move the contact's open deal to a stage, creating the deal when there is none."""
    stage = find_stage(db, conversation.account_id, reference)
    if stage is None:
        return Result.failure(f"Etapa não encontrada: {reference}", "stage_not_found")

    contact = db.query(Contact).filter(Contact.id == conversation.contact_id).first()
    deal = find_open_deal(db, conversation.account_id, conversation.contact_id)
    if deal is not None:
        previous = deal.stage_id
        if previous == stage.id:
            return Result.success(stage)
        deal.stage_id = stage.id
        deal.updated_at = func.now()
        db.add(
            DealHistory(
                deal_id=deal.id,
                operator_id=operator_id,
                previous_stage_id=previous,
                new_stage_id=stage.id,
                kind="mudanca_estagio",
                description=f"Movido para {stage.name}",
            )
        )
    else:
        contact_name = contact.name if contact else "Contato"
        deal = Deal(
            account_id=conversation.account_id,
            contact_id=conversation.contact_id,
            stage_id=stage.id,
            title=f"Negociação - {contact_name}",
            status=OPEN_DEAL_STATUS,
        )
        db.add(deal)
        db.flush()
        db.add(
            DealHistory(
                deal_id=deal.id,
                operator_id=operator_id,
                new_stage_id=stage.id,
                kind="criacao",
                description=f"Negociação criada em {stage.name}",
            )
        )
    db.flush()
    logger.info(
        "Deal moved to stage",
        extra={"context": {"conversation_id": conversation.id, "deal_id": deal.id, "stage_id": stage.id}},
    )
    return Result.success(stage)


def _stage(ctx: ActionContext, directive: Directive) -> Result[str]:
    moved = move_contact_to_stage(ctx.db, ctx.conversation, directive.value, ctx.operator_id)
    if not moved.ok:
        return Result.failure(moved.error, moved.error_code)
    _note(ctx, directive, f'📊 Lead movido para etapa "{moved.value.name}"')
    return Result.success(moved.value.name)


def _transfer_to_human(ctx: ActionContext, directive: Directive) -> Result[str]:
    operator = None
    if directive.value:
        operator = find_operator_by_reference(ctx.db, ctx.conversation.account_id, directive.value)
        if operator is None:
            logger.warning(
                "Transfer target operator not found, sending to queue",
                extra={"context": {"conversation_id": ctx.conversation.id, "reference": directive.value}},
            )
    outcome = transfer_to_human(
        ctx.db,
        ctx.conversation,
        operator,
        reason=f"Transferência via {ctx.origin}",
        by_operator_id=ctx.operator_id,
        note="👤 Conversa transferida para atendente humano",
        metadata={"acao_tipo": directive.kind.value, "acao_valor": directive.value, "origem": ctx.origin},
    )
    return Result.success(outcome.target_name or "humano")


def _transfer_to_agent(ctx: ActionContext, directive: Directive) -> Result[str]:
    agent = None
    if directive.value:
        agent = find_agent_by_reference(ctx.db, ctx.conversation.account_id, directive.value)
        if agent is None:
            return Result.failure(f"Agente IA não encontrado: {directive.value}", "agent_not_found")
    metadata = {"acao_tipo": directive.kind.value, "acao_valor": directive.value, "origem": ctx.origin}
    outcome = transfer_to_ai(
        ctx.db,
        ctx.conversation,
        agent,
        reason=f"Transferência via {ctx.origin}",
        by_operator_id=ctx.operator_id,
        metadata=metadata,
    )
    ctx.retrigger = True
    return Result.success(outcome.target_name or "ia")


def _source(ctx: ActionContext, directive: Directive) -> Result[str]:
    ctx.contact.contact_metadata = {**(ctx.contact.contact_metadata or {}), "fonte": directive.value}
    _note(ctx, directive, f'📣 Origem do lead definida: "{directive.value}"')
    return Result.success(directive.value)


def _notify(ctx: ActionContext, directive: Directive) -> Result[str]:
    body = directive.value or "O agente IA solicitou atenção da equipe"
    contact_name = ctx.contact.name
    ctx.db.add(
        Notification(
            account_id=ctx.conversation.account_id,
            operator_id=ctx.conversation.operator_id,
            kind="agente_ia",
            title=f"Atenção necessária: {contact_name}",
            body=body,
            link=f"/conversas/{ctx.conversation.id}",
        )
    )
    send_alert_in_background(
        "NOTIFY",
        body,
        {"contact": contact_name, "phone": ctx.contact.phone, "conversation_id": str(ctx.conversation.id)},
    )
    _note(ctx, directive, f"🔔 Notificação: {body}")
    return Result.success(body)


def _assign_product(ctx: ActionContext, directive: Directive) -> Result[str]:
    product = directive.value
    metadata = dict(ctx.contact.contact_metadata or {})
    products = list(metadata.get("produtos") or [])
    if product not in products:
        products.append(product)
    metadata["produtos"] = products
    ctx.contact.contact_metadata = metadata

    deal = find_open_deal(ctx.db, ctx.conversation.account_id, ctx.contact.id)
    if deal is not None:
        line = f"Produto: {product}"
        if line not in (deal.notes or ""):
            deal.notes = f"{deal.notes}\n{line}" if deal.notes else line
    _note(ctx, directive, f'📦 Produto "{product}" associado')
    return Result.success(product)


def _terminate(ctx: ActionContext, directive: Directive) -> Result[str]:
    ctx.conversation.status = close(ctx.conversation.status).value
    ctx.conversation.ai_active = False
    cancel_response(ctx.db, ctx.conversation.id)
    text = "🔒 Conversa encerrada pelo agente IA" if ctx.origin == ORIGIN_AI else "🔒 Conversa encerrada"
    _note(ctx, directive, text)
    return Result.success(ctx.conversation.status)


HANDLERS: Dict[DirectiveKind, Callable[[ActionContext, Directive], Result[str]]] = {
    DirectiveKind.RENAME: _rename,
    DirectiveKind.TAG: _tag,
    DirectiveKind.STAGE: _stage,
    DirectiveKind.TRANSFER_TO_HUMAN: _transfer_to_human,
    DirectiveKind.TRANSFER_TO_AGENT: _transfer_to_agent,
    DirectiveKind.SOURCE: _source,
    DirectiveKind.NOTIFY: _notify,
    DirectiveKind.ASSIGN_PRODUCT: _assign_product,
    DirectiveKind.TERMINATE: _terminate,
}


class _DirectiveFailed(Exception):
    def __init__(self, result: Result):
        self.result = result
        super().__init__(result.error)


def _run_one(ctx: ActionContext, directive: Directive) -> DirectiveOutcome:
    handler = HANDLERS[directive.kind]
    context = {"conversation_id": ctx.conversation.id, "directive": directive.token, "origin": ctx.origin}
    try:
        with ctx.db.begin_nested():
            result = handler(ctx, directive)
            if not result.ok:
                # leave the savepoint through an exception so partial writes roll back
                raise _DirectiveFailed(result)
    except _DirectiveFailed as failed:
        logger.warning(f"Directive rejected: {failed.result.error}", extra={"context": context})
        return DirectiveOutcome(directive, ok=False, message=failed.result.error, error_code=failed.result.error_code)
    except Exception as exc:
        logger.error(f"Directive failed: {exc}", extra={"context": context}, exc_info=True)
        return DirectiveOutcome(directive, ok=False, message=str(exc), error_code="execution_error")

    logger.info("Directive executed", extra={"context": context})
    return DirectiveOutcome(directive, ok=True, message=result.value)


def execute_directives(
    db: Session,
    conversation: Conversation,
    directives: List[Directive],
    origin: str = ORIGIN_AI,
    operator_id: Optional[UUID] = None,
    depth: int = 0,
) -> List[DirectiveOutcome]:
    """Apply directives in order. The caller owns the outer transaction.

    A successful hand-off to an AI agent answers the latest customer message
    right away, once the whole batch has been applied.
    """
    if not directives:
        return []

    contact = db.query(Contact).filter(Contact.id == conversation.contact_id).first()
    if contact is None:
        logger.warning("Directives for conversation without contact", extra={"context": {"conversation_id": conversation.id}})
        return [
            DirectiveOutcome(directive, ok=False, message="Contato não encontrado", error_code="contact_not_found")
            for directive in directives
        ]

    ctx = ActionContext(db=db, conversation=conversation, contact=contact, origin=origin, operator_id=operator_id)
    outcomes = [_run_one(ctx, directive) for directive in directives]

    if ctx.retrigger and conversation.ai_active:
        db.commit()
        retrigger_ai(db, conversation, depth=depth)
    return outcomes
