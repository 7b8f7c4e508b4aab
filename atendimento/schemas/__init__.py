from atendimento.schemas.conversation import ActionsRequest, ActionsResponse, TransferRequest, TransferResponse
from atendimento.schemas.message import (
    ActionResult,
    DeleteMessageResponse,
    SendMessageRequest,
    SendMessageResponse,
)
from atendimento.schemas.pending import ProcessPendingResponse
from atendimento.schemas.webhook import WebhookResponse

__all__ = [
    "ActionResult",
    "ActionsRequest",
    "ActionsResponse",
    "DeleteMessageResponse",
    "ProcessPendingResponse",
    "SendMessageRequest",
    "SendMessageResponse",
    "TransferRequest",
    "TransferResponse",
    "WebhookResponse",
]
