import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from atendimento.database import Base


class Notification(Base):
    __tablename__ = "notificacoes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column("conta_id", UUID(as_uuid=True), ForeignKey("contas.id"), nullable=False)
    operator_id = Column("usuario_id", UUID(as_uuid=True), ForeignKey("usuarios.id"))
    kind = Column("tipo", Text, nullable=False)
    title = Column("titulo", Text, nullable=False)
    body = Column("mensagem", Text)
    link = Column(Text)
    read = Column("lida", Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
