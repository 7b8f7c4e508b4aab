import uuid

from sqlalchemy import Column, ForeignKey, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from atendimento.database import Base


class Deal(Base):
    __tablename__ = "negociacoes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column("conta_id", UUID(as_uuid=True), ForeignKey("contas.id"), nullable=False)
    contact_id = Column("contato_id", UUID(as_uuid=True), ForeignKey("contatos.id"), nullable=False)
    stage_id = Column("estagio_id", UUID(as_uuid=True), ForeignKey("estagios.id"))
    owner_id = Column("responsavel_id", UUID(as_uuid=True), ForeignKey("usuarios.id"))
    title = Column("titulo", Text, nullable=False)
    value = Column("valor", Numeric(12, 2), default=0)
    status = Column(Text, nullable=False, default="aberto")  # aberto, ganho, perdido
    probability = Column("probabilidade", Integer, default=50)
    notes = Column("notas", Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())


class DealHistory(Base):
    __tablename__ = "negociacao_historico"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    deal_id = Column("negociacao_id", UUID(as_uuid=True), ForeignKey("negociacoes.id"), nullable=False)
    operator_id = Column("usuario_id", UUID(as_uuid=True), ForeignKey("usuarios.id"))
    previous_stage_id = Column("estagio_anterior_id", UUID(as_uuid=True))
    new_stage_id = Column("estagio_novo_id", UUID(as_uuid=True))
    kind = Column("tipo", Text, nullable=False)  # mudanca_estagio, criacao
    description = Column("descricao", Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
