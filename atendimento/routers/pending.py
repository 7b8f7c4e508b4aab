from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from atendimento.database import get_db
from atendimento.schemas.pending import ProcessPendingResponse
from atendimento.services.scheduler_service import FireOutcome, fire_response

router = APIRouter(prefix="/respostas-pendentes")


@router.post("/{conversa_id}/processar", response_model=ProcessPendingResponse)
def process_pending_response(conversa_id: UUID, db: Session = Depends(get_db)):
    """Fire a conversation's pending reply now. Early or duplicate calls are no-ops."""
    result = fire_response(db, conversa_id)
    return ProcessPendingResponse(
        success=result.outcome != FireOutcome.FAILED,
        conversa_id=conversa_id,
        resultado=result.outcome,
        detalhe=result.detail,
    )
