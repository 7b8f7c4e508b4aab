import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from atendimento.database import Base


class ServiceTransfer(Base):
    __tablename__ = "transferencias_atendimento"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column("conversa_id", UUID(as_uuid=True), ForeignKey("conversas.id"), nullable=False)
    from_operator_id = Column("de_usuario_id", UUID(as_uuid=True), ForeignKey("usuarios.id"))
    to_operator_id = Column("para_usuario_id", UUID(as_uuid=True), ForeignKey("usuarios.id"))
    to_ai = Column("para_agente_ia", Boolean, nullable=False, default=False)
    reason = Column("motivo", Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
