from typing import List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from atendimento.models.message import MessageType


class SendMessageRequest(BaseModel):
    conversa_id: UUID
    conteudo: str = ""
    tipo: MessageType = MessageType.TEXT
    media_url: Optional[str] = None
    nome_arquivo: Optional[str] = Field(default=None, validation_alias=AliasChoices("nome_arquivo", "file_name"))
    template_nome: Optional[str] = None
    template_parametros: List[str] = Field(default_factory=list)
    usuario_id: Optional[UUID] = None


class ActionResult(BaseModel):
    acao: str
    tipo: str
    valor: Optional[str] = None
    sucesso: bool
    mensagem: Optional[str] = None
    codigo_erro: Optional[str] = None


class SendMessageResponse(BaseModel):
    success: bool
    mensagem_id: Optional[UUID] = None
    external_id: Optional[str] = None
    conteudo: Optional[str] = None
    acoes: List[ActionResult] = Field(default_factory=list)
    message: Optional[str] = None


class DeleteMessageResponse(BaseModel):
    success: bool
    mensagem_id: UUID
    message: Optional[str] = None
