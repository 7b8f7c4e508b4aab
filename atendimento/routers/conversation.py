from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from atendimento.database import get_db
from atendimento.logging_config import get_logger
from atendimento.routers.message import raise_for_failure
from atendimento.schemas.conversation import ActionsRequest, ActionsResponse, TransferRequest, TransferResponse
from atendimento.schemas.message import ActionResult
from atendimento.services.action_service import ORIGIN_OPERATOR, execute_directives
from atendimento.services.conversation_service import get_conversation
from atendimento.services.directives import extract_directives
from atendimento.services.transfer_service import manual_transfer, retrigger_ai

logger = get_logger("conversation_router")

router = APIRouter(prefix="/conversas")


@router.post("/{conversa_id}/transferir", response_model=TransferResponse)
def transfer_conversation(conversa_id: UUID, request: TransferRequest, db: Session = Depends(get_db)):
    """Manual hand-off to an operator or to an AI agent."""
    result = manual_transfer(
        db,
        conversa_id,
        to_operator_id=request.para_usuario_id,
        to_agent_id=request.para_agente_ia_id,
        to_ai=request.para_ia,
        reason=request.motivo,
        by_operator_id=request.usuario_id,
        stage_id=request.estagio_id,
    )
    raise_for_failure(result)
    db.commit()

    outcome = result.value
    responded = False
    if outcome.to_ai:
        conversation = get_conversation(db, conversa_id)
        cycle = retrigger_ai(db, conversation)
        responded = bool(cycle and cycle.responded)

    return TransferResponse(
        success=True,
        conversa_id=conversa_id,
        transferencia_id=outcome.transfer.id,
        para_ia=outcome.to_ai,
        destino=outcome.target_name,
        resposta_ia=responded,
        message="Conversa transferida",
    )


@router.post("/{conversa_id}/acoes", response_model=ActionsResponse)
def run_actions(conversa_id: UUID, request: ActionsRequest, db: Session = Depends(get_db)):
    """Execute a list of `@keyword:value` directives and report each result."""
    conversation = get_conversation(db, conversa_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversa não encontrada")

    directives = []
    ignored = []
    for raw in request.acoes:
        parsed = extract_directives(raw)
        if parsed.directives:
            directives.extend(parsed.directives)
        else:
            ignored.append(raw)

    outcomes = execute_directives(db, conversation, directives, origin=ORIGIN_OPERATOR, operator_id=request.usuario_id)
    db.commit()

    if ignored:
        logger.info("Unparseable directives ignored", extra={"context": {"conversation_id": conversa_id, "ignored": ignored}})
    return ActionsResponse(
        success=all(outcome.ok for outcome in outcomes) and not ignored,
        conversa_id=conversa_id,
        resultados=[ActionResult(**outcome.to_dict()) for outcome in outcomes],
        ignoradas=ignored,
    )
