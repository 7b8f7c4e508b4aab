import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from atendimento.database import Base


class Conversation(Base):
    __tablename__ = "conversas"
    __table_args__ = (
        # one open conversation per contact
        Index(
            "uq_conversas_conta_contato_aberta",
            "conta_id",
            "contato_id",
            unique=True,
            postgresql_where=text("arquivada = false"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column("conta_id", UUID(as_uuid=True), ForeignKey("contas.id"), nullable=False)
    contact_id = Column("contato_id", UUID(as_uuid=True), ForeignKey("contatos.id"), nullable=False)
    connection_id = Column("conexao_id", UUID(as_uuid=True), ForeignKey("conexoes_whatsapp.id"))
    operator_id = Column("atendente_id", UUID(as_uuid=True), ForeignKey("usuarios.id"))
    agent_id = Column("agente_ia_id", UUID(as_uuid=True), ForeignKey("agent_ia.id"))
    ai_active = Column("agente_ia_ativo", Boolean, nullable=False, default=True)
    current_agent_stage = Column("etapa_ia_atual", UUID(as_uuid=True))
    status = Column(Text, nullable=False, default="em_atendimento")  # em_atendimento, aguardando_cliente, encerrado
    last_message = Column("ultima_mensagem", Text)
    last_message_at = Column("ultima_mensagem_at", TIMESTAMP(timezone=True))
    unread_count = Column("nao_lidas", Integer, nullable=False, default=0)
    archived = Column("arquivada", Boolean, nullable=False, default=False)
    channel = Column("canal", Text)
    memory_cleared_at = Column("memoria_limpa_em", TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    contact = relationship("Contact")
    connection = relationship("ChannelConnection")
    messages = relationship("Message", back_populates="conversation")
