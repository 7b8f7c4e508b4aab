import uuid

from sqlalchemy import Boolean, Column, ForeignKey
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from atendimento.database import Base


class PendingResponse(Base):
    """Durable debounce timer: one row per conversation awaiting an AI reply."""

    __tablename__ = "respostas_pendentes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column("conversa_id", UUID(as_uuid=True), ForeignKey("conversas.id"), nullable=False, unique=True)
    fire_at = Column("responder_em", TIMESTAMP(timezone=True), nullable=False)
    processing = Column("processando", Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
