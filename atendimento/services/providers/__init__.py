"""Provider adapters.

Each wire protocol is one member of ProviderType with exactly one normalizer.
The webhook endpoint (and, on the shared Graph endpoint, the payload `object`)
names the protocol a payload is in. The normalizer is then chosen from the
channel record through resolve_provider_type, and a record that speaks another
protocol drops the event instead of being parsed in the wrong shape.
"""

from typing import Callable

from atendimento.models.connection import ProviderType
from atendimento.services.providers.base import (
    ConnectionStateChanged,
    InboundMessage,
    PairingCodeUpdated,
    ProviderError,
    ProviderEvent,
)
from atendimento.services.providers.evolution import normalize_evolution_event
from atendimento.services.providers.instagram import normalize_instagram_entry
from atendimento.services.providers.meta import normalize_meta_change

Normalizer = Callable[[dict], list[ProviderEvent]]

NORMALIZERS: dict[ProviderType, Normalizer] = {
    ProviderType.EVOLUTION: normalize_evolution_event,
    ProviderType.META: normalize_meta_change,
    ProviderType.INSTAGRAM: normalize_instagram_entry,
}


def normalize(provider: ProviderType, raw: dict) -> list[ProviderEvent]:
    """Normalize the slice of a webhook payload that belongs to one channel."""
    return NORMALIZERS[provider](raw)


__all__ = [
    "ConnectionStateChanged",
    "InboundMessage",
    "NORMALIZERS",
    "PairingCodeUpdated",
    "ProviderError",
    "ProviderEvent",
    "normalize",
]
