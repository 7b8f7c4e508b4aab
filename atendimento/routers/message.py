from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from atendimento.database import get_db
from atendimento.logging_config import get_logger
from atendimento.schemas.message import ActionResult, DeleteMessageResponse, SendMessageRequest, SendMessageResponse
from atendimento.services.action_service import ORIGIN_OPERATOR, execute_directives
from atendimento.services.conversation_service import get_conversation
from atendimento.services.delivery_service import OutboundContent, deliver
from atendimento.services.directives import extract_directives
from atendimento.services.message_service import soft_delete_message
from atendimento.services.result import Result

logger = get_logger("message_router")

router = APIRouter(prefix="/mensagens")


def raise_for_failure(result: Result) -> None:
    if result.ok:
        return
    status_code = 404 if (result.error_code or "").endswith("_not_found") else 400
    raise HTTPException(status_code=status_code, detail=result.error)


@router.post("/enviar", response_model=SendMessageResponse)
def send_message(request: SendMessageRequest, db: Session = Depends(get_db)):
    """Operator message: directives run first, the remaining text goes to the customer."""
    conversation = get_conversation(db, request.conversa_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversa não encontrada")

    parsed = extract_directives(request.conteudo)
    content = OutboundContent(
        text=parsed.clean_text,
        message_type=request.tipo,
        media_url=request.media_url,
        file_name=request.nome_arquivo,
        template_name=request.template_nome,
        template_parameters=request.template_parametros,
    )
    has_payload = bool(content.text) or content.is_template or bool(content.media_url)
    if not parsed.directives and not has_payload:
        raise HTTPException(status_code=400, detail="Mensagem vazia")

    outcomes = execute_directives(
        db, conversation, parsed.directives, origin=ORIGIN_OPERATOR, operator_id=request.usuario_id
    )
    db.commit()
    actions = [ActionResult(**outcome.to_dict()) for outcome in outcomes]

    if not has_payload:
        return SendMessageResponse(success=True, acoes=actions, message="Ações executadas")

    sent = deliver(db, conversation, content, operator_id=request.usuario_id)
    raise_for_failure(sent)
    db.commit()

    message = sent.value
    return SendMessageResponse(
        success=True,
        mensagem_id=message.id,
        external_id=message.external_id,
        conteudo=message.content,
        acoes=actions,
        message="Mensagem enviada",
    )


@router.delete("/{mensagem_id}", response_model=DeleteMessageResponse)
def delete_message(mensagem_id: UUID, usuario_id: Optional[UUID] = None, db: Session = Depends(get_db)):
    """Soft delete, plus delete-for-everyone where the channel supports it."""
    result = soft_delete_message(db, mensagem_id, usuario_id)
    raise_for_failure(result)
    db.commit()
    return DeleteMessageResponse(success=True, mensagem_id=mensagem_id, message="Mensagem apagada")
