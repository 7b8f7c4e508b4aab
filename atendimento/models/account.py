import uuid

from sqlalchemy import Boolean, Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from atendimento.database import Base


class Account(Base):
    """Tenant. Every other row hangs off an account."""

    __tablename__ = "contas"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column("nome", Text, nullable=False)
    openai_api_key = Column(Text)
    timezone = Column("fuso_horario", Text)  # IANA name, settings.default_timezone when empty
    is_active = Column("ativo", Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
