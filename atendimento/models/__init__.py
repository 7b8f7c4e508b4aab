from atendimento.models.account import Account
from atendimento.models.agent import AgentFAQ, AgentStage, AIAgent
from atendimento.models.connection import ChannelConnection, ConnectionStatus, ProviderType
from atendimento.models.contact import Contact
from atendimento.models.conversation import Conversation
from atendimento.models.deal import Deal, DealHistory
from atendimento.models.message import Message, MessageDirection, MessageType
from atendimento.models.notification import Notification
from atendimento.models.pending_response import PendingResponse
from atendimento.models.pipeline import Funnel, PipelineStage
from atendimento.models.transfer import ServiceTransfer
from atendimento.models.user import Operator

__all__ = [
    "Account",
    "AIAgent",
    "AgentStage",
    "AgentFAQ",
    "ChannelConnection",
    "ConnectionStatus",
    "ProviderType",
    "Contact",
    "Conversation",
    "Message",
    "MessageDirection",
    "MessageType",
    "PendingResponse",
    "Deal",
    "DealHistory",
    "ServiceTransfer",
    "Operator",
    "Notification",
    "Funnel",
    "PipelineStage",
]
