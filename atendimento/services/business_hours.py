from dataclasses import dataclass
from datetime import datetime, time, timezone
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from atendimento.config import settings
from atendimento.logging_config import get_logger
from atendimento.models import AIAgent

logger = get_logger("business_hours")


class OutOfHoursPolicy(str, Enum):
    SKIP = "skip"
    CANNED_MESSAGE = "canned_message"
    GENERATE_ANYWAY = "generate_anyway"


@dataclass
class HoursDecision:
    within_hours: bool
    policy: OutOfHoursPolicy = OutOfHoursPolicy.GENERATE_ANYWAY
    message: Optional[str] = None


def tenant_zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or settings.default_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, using {settings.default_timezone}")
        return ZoneInfo(settings.default_timezone)


def local_time(now: datetime, zone_name: Optional[str]) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tenant_zone(zone_name))


def _parse_hhmm(value: Optional[str]) -> Optional[time]:
    if not value:
        return None
    hours, _, minutes = str(value).strip().partition(":")
    return time(int(hours), int(minutes[:2] or 0))


def resolve_policy(agent: AIAgent) -> OutOfHoursPolicy:
    """Configured policy; legacy agents answer with the canned message when they have one."""
    if agent.out_of_hours_policy:
        try:
            return OutOfHoursPolicy(agent.out_of_hours_policy)
        except ValueError:
            logger.warning(f"Unknown out-of-hours policy {agent.out_of_hours_policy!r}")
    if (agent.out_of_hours_message or "").strip():
        return OutOfHoursPolicy.CANNED_MESSAGE
    return OutOfHoursPolicy.GENERATE_ANYWAY


def is_within_hours(agent: AIAgent, local_now: datetime) -> bool:
    """Active day and inside [horario_inicio, horario_fim]. Agents without a calendar are always open."""
    if agent.always_on:
        return True

    weekday = (local_now.weekday() + 1) % 7  # 0 = Sunday
    if agent.active_days is not None and weekday not in agent.active_days:
        return False

    start = _parse_hhmm(agent.hours_start)
    end = _parse_hhmm(agent.hours_end)
    if start is None or end is None:
        return True
    current = local_now.time().replace(second=0, microsecond=0)
    if start <= end:
        return start <= current <= end
    # window crossing midnight, e.g. 22:00-06:00
    return current >= start or current <= end


def evaluate(agent: AIAgent, local_now: datetime) -> HoursDecision:
    """Fails open: a calendar that cannot be evaluated counts as inside hours."""
    try:
        within = is_within_hours(agent, local_now)
    except (TypeError, ValueError) as exc:
        logger.warning(f"Business hours check failed, proceeding: {exc}")
        return HoursDecision(within_hours=True)

    if within:
        return HoursDecision(within_hours=True)

    policy = resolve_policy(agent)
    message = (agent.out_of_hours_message or "").strip() or None
    if policy == OutOfHoursPolicy.CANNED_MESSAGE and not message:
        policy = OutOfHoursPolicy.SKIP
    return HoursDecision(within_hours=False, policy=policy, message=message)
