import uuid
from enum import Enum

from sqlalchemy import Boolean, Column, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from atendimento.database import Base


class MessageDirection(str, Enum):
    INBOUND = "entrada"
    OUTBOUND = "saida"


class MessageType(str, Enum):
    TEXT = "texto"
    IMAGE = "imagem"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "documento"
    STICKER = "sticker"
    SYSTEM = "sistema"


class Message(Base):
    __tablename__ = "mensagens"
    __table_args__ = (UniqueConstraint("conversa_id", "external_id", name="uq_mensagens_conversa_external_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column("conversa_id", UUID(as_uuid=True), ForeignKey("conversas.id"), nullable=False)
    contact_id = Column("contato_id", UUID(as_uuid=True), ForeignKey("contatos.id"))
    operator_id = Column("usuario_id", UUID(as_uuid=True), ForeignKey("usuarios.id"))
    content = Column("conteudo", Text, nullable=False)
    direction = Column("direcao", Text, nullable=False)
    message_type = Column("tipo", Text, nullable=False, default=MessageType.TEXT.value)
    media_url = Column(Text)
    external_id = Column(Text)  # provider message id
    message_metadata = Column("metadata", JSONB, nullable=False, default=dict)
    read = Column("lida", Boolean, nullable=False, default=False)
    sent_by_ai = Column("enviada_por_ia", Boolean, nullable=False, default=False)
    sent_by_device = Column("enviada_por_dispositivo", Boolean, nullable=False, default=False)
    deleted = Column("deletada", Boolean, nullable=False, default=False)
    deleted_at = Column("deletada_em", TIMESTAMP(timezone=True))
    deleted_by = Column("deletada_por", UUID(as_uuid=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    conversation = relationship("Conversation", back_populates="messages")
