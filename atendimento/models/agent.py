import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import ARRAY, TIMESTAMP, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from atendimento.database import Base


class AIAgent(Base):
    __tablename__ = "agent_ia"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column("conta_id", UUID(as_uuid=True), ForeignKey("contas.id"), nullable=False)
    name = Column("nome", Text, nullable=False)
    kind = Column("tipo", Text, nullable=False, default="principal")  # principal, secundario
    system_prompt = Column("prompt_sistema", Text)
    is_active = Column("ativo", Boolean, nullable=False, default=True)
    model = Column("modelo", Text)
    temperature = Column("temperatura", Numeric(3, 2))
    max_tokens = Column(Integer)
    wait_seconds = Column("tempo_espera_segundos", Integer)
    always_on = Column("atender_24h", Boolean, nullable=False, default=True)
    hours_start = Column("horario_inicio", Text)  # HH:MM
    hours_end = Column("horario_fim", Text)  # HH:MM
    active_days = Column("dias_ativos", ARRAY(Integer))  # 0 = Sunday
    out_of_hours_message = Column("mensagem_fora_horario", Text)
    out_of_hours_policy = Column("politica_fora_horario", Text)  # skip, canned_message, generate_anyway
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    stages = relationship("AgentStage", order_by="AgentStage.number", back_populates="agent")
    faqs = relationship("AgentFAQ", order_by="AgentFAQ.position", back_populates="agent")


class AgentStage(Base):
    __tablename__ = "agent_ia_etapas"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_id = Column("agent_ia_id", UUID(as_uuid=True), ForeignKey("agent_ia.id"), nullable=False)
    name = Column("nome", Text, nullable=False)
    number = Column("numero", Integer, nullable=False)
    kind = Column("tipo", Text)
    description = Column("descricao", Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    agent = relationship("AIAgent", back_populates="stages")


class AgentFAQ(Base):
    __tablename__ = "agent_ia_perguntas"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_id = Column("agent_ia_id", UUID(as_uuid=True), ForeignKey("agent_ia.id"), nullable=False)
    question = Column("pergunta", Text, nullable=False)
    answer = Column("resposta", Text, nullable=False)
    position = Column("ordem", Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    agent = relationship("AIAgent", back_populates="faqs")
