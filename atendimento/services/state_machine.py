from enum import Enum


class ConversationStatus(str, Enum):
    IN_PROGRESS = "em_atendimento"
    AWAITING_CUSTOMER = "aguardando_cliente"
    CLOSED = "encerrado"


VALID_TRANSITIONS = {
    ConversationStatus.IN_PROGRESS: [ConversationStatus.AWAITING_CUSTOMER, ConversationStatus.CLOSED],
    ConversationStatus.AWAITING_CUSTOMER: [ConversationStatus.IN_PROGRESS, ConversationStatus.CLOSED],
    # a customer writing again reopens a closed (but not archived) conversation
    ConversationStatus.CLOSED: [ConversationStatus.IN_PROGRESS],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_status: ConversationStatus, to_status: ConversationStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def parse_status(value: str | None) -> ConversationStatus:
    try:
        return ConversationStatus(value)
    except ValueError:
        return ConversationStatus.IN_PROGRESS


def can_transition(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    """Check if transition is valid. Staying in the same status is always allowed."""
    if from_status == to_status:
        return True
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def transition(from_status: ConversationStatus, to_status: ConversationStatus) -> ConversationStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def on_inbound(current: str | None) -> ConversationStatus:
    """Customer wrote: the conversation needs attention."""
    return transition(parse_status(current), ConversationStatus.IN_PROGRESS)


def on_outbound(current: str | None) -> ConversationStatus:
    """We replied: waiting on the customer. A closed conversation stays closed."""
    status = parse_status(current)
    if status == ConversationStatus.CLOSED:
        return status
    return transition(status, ConversationStatus.AWAITING_CUSTOMER)


def close(current: str | None) -> ConversationStatus:
    return transition(parse_status(current), ConversationStatus.CLOSED)
