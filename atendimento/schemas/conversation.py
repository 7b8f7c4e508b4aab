from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from atendimento.schemas.message import ActionResult


class TransferRequest(BaseModel):
    para_usuario_id: Optional[UUID] = None
    para_agente_ia_id: Optional[UUID] = None
    para_ia: bool = False
    motivo: Optional[str] = None
    usuario_id: Optional[UUID] = None
    estagio_id: Optional[UUID] = None


class TransferResponse(BaseModel):
    success: bool
    conversa_id: UUID
    transferencia_id: UUID
    para_ia: bool
    destino: Optional[str] = None
    resposta_ia: bool = False
    message: Optional[str] = None


class ActionsRequest(BaseModel):
    acoes: List[str] = Field(min_length=1)
    usuario_id: Optional[UUID] = None


class ActionsResponse(BaseModel):
    success: bool
    conversa_id: UUID
    resultados: List[ActionResult]
    ignoradas: List[str] = Field(default_factory=list)
