import uuid

from sqlalchemy import Column, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, TIMESTAMP, UUID
from sqlalchemy.sql import func

from atendimento.database import Base


class Contact(Base):
    __tablename__ = "contatos"
    __table_args__ = (UniqueConstraint("conta_id", "telefone", name="uq_contatos_conta_telefone"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column("conta_id", UUID(as_uuid=True), ForeignKey("contas.id"), nullable=False)
    name = Column("nome", Text, nullable=False)
    phone = Column("telefone", Text, nullable=False)  # phone number or platform user id
    email = Column(Text)
    avatar_url = Column(Text)
    tags = Column(ARRAY(Text), nullable=False, default=list)
    channel = Column("canal", Text)
    contact_metadata = Column("metadata", JSONB, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
