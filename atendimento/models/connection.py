import uuid
from enum import Enum

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from atendimento.database import Base


class ProviderType(str, Enum):
    EVOLUTION = "evolution"
    META = "meta"
    INSTAGRAM = "instagram"


class ConnectionStatus(str, Enum):
    CONNECTED = "conectado"
    AWAITING = "aguardando"
    DISCONNECTED = "desconectado"


class ChannelConnection(Base):
    __tablename__ = "conexoes_whatsapp"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column("conta_id", UUID(as_uuid=True), ForeignKey("contas.id"), nullable=False)
    name = Column("nome", Text)
    instance_name = Column(Text, index=True)
    token = Column(Text)
    number = Column("numero", Text)
    qrcode = Column(Text)
    status = Column(Text, nullable=False, default=ConnectionStatus.DISCONNECTED.value)
    provider = Column("tipo_provedor", Text, nullable=False, default=ProviderType.EVOLUTION.value)
    channel = Column("tipo_canal", Text, nullable=False, default="whatsapp")  # whatsapp, instagram
    meta_access_token = Column(Text)
    meta_phone_number_id = Column(Text, index=True)  # Instagram business account id for instagram
    meta_business_account_id = Column(Text)
    meta_webhook_verify_token = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    @property
    def provider_type(self) -> ProviderType:
        return resolve_provider_type(self)


def resolve_provider_type(connection) -> ProviderType:
    """Wire protocol spoken by a connection.

    Instagram accounts paired through an Evolution instance are stored as
    tipo_provedor=instagram but talk the Evolution protocol; only accounts
    connected through the Graph API (access token, no instance) speak Instagram.
    """
    try:
        provider = ProviderType(connection.provider or ProviderType.EVOLUTION.value)
    except ValueError:
        return ProviderType.EVOLUTION
    if provider == ProviderType.INSTAGRAM and connection.instance_name and not connection.meta_access_token:
        return ProviderType.EVOLUTION
    return provider
