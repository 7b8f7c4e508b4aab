from atendimento.services.conversation_service import (
    resolve_contact,
    resolve_conversation,
)
from atendimento.services.message_service import (
    persist_inbound,
    persist_outbound,
    persist_system_message,
)
from atendimento.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    close,
    on_inbound,
    on_outbound,
    transition,
)

__all__ = [
    "resolve_contact",
    "resolve_conversation",
    "persist_inbound",
    "persist_outbound",
    "persist_system_message",
    "ConversationStatus",
    "InvalidTransitionError",
    "can_transition",
    "close",
    "on_inbound",
    "on_outbound",
    "transition",
]
