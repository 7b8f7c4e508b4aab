import uuid

from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from atendimento.database import Base


class Funnel(Base):
    __tablename__ = "funis"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column("conta_id", UUID(as_uuid=True), ForeignKey("contas.id"), nullable=False)
    name = Column("nome", Text, nullable=False)
    position = Column("ordem", Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    stages = relationship("PipelineStage", order_by="PipelineStage.position", back_populates="funnel")


class PipelineStage(Base):
    __tablename__ = "estagios"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    funnel_id = Column("funil_id", UUID(as_uuid=True), ForeignKey("funis.id"), nullable=False)
    name = Column("nome", Text, nullable=False)
    position = Column("ordem", Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    funnel = relationship("Funnel", back_populates="stages")
