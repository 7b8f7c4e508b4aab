"""Debounced AI replies.

Every inbound message on an AI-active conversation (re)arms one row in
respostas_pendentes with `responder_em = now + wait`. A later message
overwrites the row, so a burst collapses into a single reply cycle. The
table is the timer: the worker in main.py claims due rows, and the
/respostas-pendentes/{id}/processar endpoint fires one on demand. Firing is
at-least-once; fire_response re-reads the row and aborts when it is gone or
not due yet, which makes duplicate or early fires harmless.
"""

from __future__ import annotations

import os
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Optional
from uuid import UUID

from sqlalchemy import delete, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from atendimento.logging_config import get_logger
from atendimento.models import AIAgent, Conversation, PendingResponse
from atendimento.services.alert_service import alert_critical

logger = get_logger("scheduler_service")

DEFAULT_WAIT_SECONDS = 5


class FireOutcome:
    NO_PENDING = "no_pending"
    NOT_DUE = "not_due"
    CONVERSATION_NOT_FOUND = "conversation_not_found"
    AI_INACTIVE = "ai_inactive"
    LOCKED = "locked"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class FireResult:
    conversation_id: UUID
    outcome: str
    detail: Optional[str] = None

    @property
    def fired(self) -> bool:
        return self.outcome in (FireOutcome.COMPLETED, FireOutcome.FAILED)


def _is_env_enabled(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def wait_seconds_for(agent: Optional[AIAgent]) -> int:
    if agent is None or agent.wait_seconds is None:
        return DEFAULT_WAIT_SECONDS
    return max(int(agent.wait_seconds), 0)


def arm_response(
    db: Session,
    conversation: Conversation,
    agent: Optional[AIAgent],
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Schedule (or push back) the reply for a conversation.

    Single atomic upsert keyed by conversa_id: two racing messages cannot lose
    each other's update, the later fire_at wins. Returns fire_at, or None when
    the conversation is not AI-active.
    """
    if not conversation.ai_active:
        return None

    now = now or datetime.now(timezone.utc)
    fire_at = now + timedelta(seconds=wait_seconds_for(agent))
    stmt = insert(PendingResponse).values(
        {
            PendingResponse.id: uuid.uuid4(),
            PendingResponse.conversation_id: conversation.id,
            PendingResponse.fire_at: fire_at,
            PendingResponse.processing: False,
            PendingResponse.created_at: now,
            PendingResponse.updated_at: now,
        }
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["conversa_id"],
        set_={"responder_em": fire_at, "processando": False, "updated_at": now},
    )
    db.execute(stmt)
    logger.info(
        "Response armed",
        extra={"context": {"conversation_id": conversation.id, "fire_at": fire_at}},
    )
    return fire_at


def cancel_response(db: Session, conversation_id: UUID) -> bool:
    result = db.execute(delete(PendingResponse).where(PendingResponse.conversation_id == conversation_id))
    return result.rowcount > 0


def get_pending(db: Session, conversation_id: UUID) -> Optional[PendingResponse]:
    return db.query(PendingResponse).filter(PendingResponse.conversation_id == conversation_id).first()


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def claim_due_responses(db: Session, *, limit: int = 10, stale_seconds: int = 120) -> list[dict[str, Any]]:
    """Mark due rows as processing and return them.

    Rows left in `processando` by a crashed worker become claimable again
    after `stale_seconds`.
    """
    rows = (
        db.execute(
            text(
                """
                WITH cte AS (
                    SELECT id
                    FROM respostas_pendentes
                    WHERE responder_em <= NOW()
                      AND (processando = false
                           OR updated_at <= NOW() - make_interval(secs => :stale_seconds))
                    ORDER BY responder_em
                    LIMIT :limit
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE respostas_pendentes
                SET processando = true,
                    updated_at = NOW()
                FROM cte
                WHERE respostas_pendentes.id = cte.id
                RETURNING respostas_pendentes.id,
                          respostas_pendentes.conversa_id,
                          respostas_pendentes.responder_em
                """
            ),
            {"limit": limit, "stale_seconds": stale_seconds},
        )
        .mappings()
        .all()
    )
    db.commit()
    return rows


@contextmanager
def conversation_lock(db: Session, conversation_id: UUID) -> Iterator[bool]:
    """Session-level advisory lock held on its own connection for a whole cycle.

    A cycle commits after delivery and again after directives, so a
    transaction-scoped lock would end at the first commit. Yields whether the
    lock was acquired; it is always released on exit.
    """
    params = {"key": str(conversation_id)}
    connection = db.get_bind().connect()
    try:
        acquired = bool(
            connection.execute(text("SELECT pg_try_advisory_lock(hashtextextended(:key, 0))"), params).scalar()
        )
        try:
            yield acquired
        finally:
            if acquired:
                connection.execute(text("SELECT pg_advisory_unlock(hashtextextended(:key, 0))"), params)
    finally:
        connection.close()


def _release_claim(db: Session, conversation_id: UUID) -> None:
    """Hand a worker-claimed row back so the next tick can pick it up."""
    db.execute(
        update(PendingResponse)
        .where(PendingResponse.conversation_id == conversation_id, PendingResponse.processing.is_(True))
        .values({PendingResponse.processing: False})
    )
    db.commit()


def fire_response(
    db: Session,
    conversation_id: UUID,
    now: Optional[datetime] = None,
    *,
    claimed: bool = False,
) -> FireResult:
    """Run one reply cycle if, and only if, the pending row is still due.

    The pending row is deleted once the cycle ran, whatever its outcome, so a
    failure never leaves a stale timer behind. An early or superseded fire
    leaves the row alone for the timer that owns it. With `claimed` (worker
    path) an aborted fire also clears `processando`, otherwise the row would
    wait for the stale window before being claimed again.
    """
    now = now or datetime.now(timezone.utc)
    pending = get_pending(db, conversation_id)
    if pending is None:
        logger.info("No pending response", extra={"context": {"conversation_id": conversation_id}})
        return FireResult(conversation_id, FireOutcome.NO_PENDING)

    if _as_aware(pending.fire_at) > now:
        logger.info(
            "Pending response superseded or not due yet",
            extra={"context": {"conversation_id": conversation_id, "fire_at": pending.fire_at}},
        )
        if claimed:
            _release_claim(db, conversation_id)
        return FireResult(conversation_id, FireOutcome.NOT_DUE)

    from atendimento.services.conversation_service import get_conversation

    conversation = get_conversation(db, conversation_id)
    if conversation is None:
        cancel_response(db, conversation_id)
        db.commit()
        logger.warning("Pending response for missing conversation", extra={"context": {"conversation_id": conversation_id}})
        return FireResult(conversation_id, FireOutcome.CONVERSATION_NOT_FOUND)

    if not conversation.ai_active:
        cancel_response(db, conversation_id)
        db.commit()
        return FireResult(conversation_id, FireOutcome.AI_INACTIVE)

    if not _is_env_enabled(os.environ.get("AI_CONVERSATION_LOCK_ENABLED")):
        return _run_cycle(db, conversation, now)

    with conversation_lock(db, conversation_id) as acquired:
        if not acquired:
            logger.info("Conversation locked by another cycle", extra={"context": {"conversation_id": conversation_id}})
            if claimed:
                _release_claim(db, conversation_id)
            return FireResult(conversation_id, FireOutcome.LOCKED)
        return _run_cycle(db, conversation, now)


def _run_cycle(db: Session, conversation: Conversation, now: datetime) -> FireResult:
    from atendimento.services.response_service import run_response_cycle

    conversation_id = conversation.id
    try:
        cycle = run_response_cycle(db, conversation, now=now)
        outcome = FireResult(conversation_id, FireOutcome.COMPLETED, cycle.reason)
    except Exception as exc:
        db.rollback()
        logger.error(
            "Response cycle failed",
            extra={"context": {"conversation_id": conversation_id, "error": str(exc)}},
            exc_info=True,
        )
        alert_critical(
            "Reply cycle failed, customer left without answer",
            {"conversation_id": str(conversation_id), "error": str(exc)[:300]},
        )
        outcome = FireResult(conversation_id, FireOutcome.FAILED, str(exc))

    # only the row this fire claimed; a message that re-armed it meanwhile keeps its own
    db.execute(
        delete(PendingResponse).where(
            PendingResponse.conversation_id == conversation_id,
            PendingResponse.fire_at <= now,
        )
    )
    db.commit()
    return outcome


def process_due_responses(db: Session, *, limit: int = 10, stale_seconds: int = 120) -> dict[str, int]:
    """One worker tick: claim due rows and fire each of them.

    Rows were picked against the database clock, so each fire is judged at
    no earlier than the claimed responder_em even when this host lags behind.
    """
    rows = claim_due_responses(db, limit=limit, stale_seconds=stale_seconds)
    results: dict[str, int] = {"claimed": len(rows)}
    for row in rows:
        now = datetime.now(timezone.utc)
        if row.get("responder_em") is not None:
            now = max(now, _as_aware(row["responder_em"]))
        result = fire_response(db, row["conversa_id"], now, claimed=True)
        results[result.outcome] = results.get(result.outcome, 0) + 1
    return results
