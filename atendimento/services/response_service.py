"""One AI reply cycle: generate, deliver, then apply the directives."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from atendimento.logging_config import get_logger
from atendimento.models import Conversation, Message
from atendimento.services.action_service import ORIGIN_AI, DirectiveOutcome, execute_directives
from atendimento.services.ai_service import generate_response
from atendimento.services.delivery_service import OutboundContent, deliver
from atendimento.services.message_service import get_latest_inbound

logger = get_logger("response_service")


class CycleReason:
    NO_TRIGGER = "no_trigger"
    DELIVERY_FAILED = "delivery_failed"


@dataclass
class CycleResult:
    reason: str
    delivered: Optional[Message] = None
    outcomes: List[DirectiveOutcome] = field(default_factory=list)

    @property
    def responded(self) -> bool:
        return self.delivered is not None


def run_response_cycle(
    db: Session,
    conversation: Conversation,
    *,
    trigger: Optional[Message] = None,
    now: Optional[datetime] = None,
    depth: int = 0,
) -> CycleResult:
    """Answer the conversation's latest customer message.

    The reply text goes out before the directives run, so a farewell is sent
    before a transfer hands the conversation to someone else. Commits once the
    message left, since it cannot be unsent.
    """
    now = now or datetime.now(timezone.utc)
    context = {"conversation_id": conversation.id, "depth": depth}

    trigger = trigger or get_latest_inbound(db, conversation.id)
    if trigger is None:
        logger.info("Nothing to answer", extra={"context": context})
        return CycleResult(reason=CycleReason.NO_TRIGGER)

    generated = generate_response(db, conversation, trigger, now)
    if not generated.ok:
        logger.warning(
            f"No AI reply: {generated.error}",
            extra={"context": {**context, "error_code": generated.error_code}},
        )
        return CycleResult(reason=generated.error_code)

    reply = generated.value
    result = CycleResult(reason=reply.reason)

    if reply.should_respond and reply.text:
        sent = deliver(db, conversation, OutboundContent(text=reply.text), sent_by_ai=True)
        if sent.ok:
            result.delivered = sent.value
            db.commit()
        else:
            result.reason = CycleReason.DELIVERY_FAILED
            logger.warning(
                f"AI reply not delivered: {sent.error}",
                extra={"context": {**context, "error_code": sent.error_code}},
            )

    if reply.directives:
        result.outcomes = execute_directives(db, conversation, reply.directives, origin=ORIGIN_AI, depth=depth)
        db.commit()

    logger.info(
        "Response cycle finished",
        extra={
            "context": {
                **context,
                "reason": result.reason,
                "delivered": result.responded,
                "directives": len(result.outcomes),
            }
        },
    )
    return result
