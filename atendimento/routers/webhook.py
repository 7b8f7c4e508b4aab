import hashlib
import hmac
import json
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session
from starlette.requests import ClientDisconnect

from atendimento.config import settings
from atendimento.database import get_db
from atendimento.logging_config import get_logger
from atendimento.models import ChannelConnection
from atendimento.schemas.webhook import WebhookResponse
from atendimento.services.ingestion_service import IngestSummary, handle_evolution_payload, handle_meta_payload
from atendimento.services.providers.evolution import normalize_event_name

logger = get_logger("webhook")

router = APIRouter(prefix="/webhooks")

SIGNATURE_PREFIX = "sha256="


def verify_signature(raw_body: bytes, signature: Optional[str], app_secret: str) -> bool:
    """X-Hub-Signature-256: HMAC-SHA256 of the raw body keyed with the app secret."""
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len(SIGNATURE_PREFIX) :])


def _evolution_secret_ok(request: Request) -> bool:
    secret = settings.evolution_webhook_secret
    if not secret:
        return True
    provided = request.headers.get("x-webhook-secret") or request.query_params.get("webhook_secret")
    return bool(provided) and hmac.compare_digest(provided, secret)


async def _read_payload(request: Request, source: str) -> tuple[Optional[bytes], Optional[dict], Optional[WebhookResponse]]:
    """(raw body, JSON object) or a ready response for unusable requests."""
    try:
        raw = await request.body()
    except ClientDisconnect:
        logger.info("Webhook client disconnected during read", extra={"context": {"source": source}})
        return None, None, WebhookResponse(success=True, message="Client disconnected")

    if not raw or not raw.strip():
        logger.info("Webhook ping with empty body", extra={"context": {"source": source}})
        return raw, None, WebhookResponse(success=True, message="Empty payload")

    try:
        payload = json.loads(raw)
    except ValueError as exc:
        logger.warning(
            "Webhook payload is not valid JSON",
            extra={"context": {"source": source, "error": str(exc), "body_preview": raw[:200].decode("utf-8", "ignore")}},
        )
        return raw, None, WebhookResponse(success=True, message="Invalid JSON payload")

    if not isinstance(payload, dict):
        return raw, None, WebhookResponse(success=True, message="Invalid payload format")
    return raw, payload, None


def _respond(summary: IngestSummary) -> WebhookResponse:
    return WebhookResponse(
        success=True,
        message=summary.describe(),
        stored=summary.stored,
        duplicates=summary.duplicates,
    )


@router.post("/evolution", response_model=WebhookResponse)
async def evolution_webhook(request: Request, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    """Evolution API events: messages plus the connection/QR sub-protocol."""
    _, payload, early = await _read_payload(request, "evolution")
    if early is not None:
        return early

    if not _evolution_secret_ok(request):
        logger.warning("Evolution webhook secret mismatch", extra={"context": {"instance": payload.get("instance")}})
        return WebhookResponse(success=True, message="Ignored")

    event = normalize_event_name(payload.get("event"))
    try:
        summary = handle_evolution_payload(db, payload, background_tasks)
    except Exception as exc:
        db.rollback()
        logger.error(
            f"Evolution webhook processing failed: {exc}",
            extra={"context": {"event": event, "instance": payload.get("instance")}},
            exc_info=True,
        )
        return WebhookResponse(success=True, message="Accepted")

    return _respond(summary)


@router.get("/meta")
def verify_meta_webhook(request: Request, db: Session = Depends(get_db)):
    """Subscription handshake: echo hub.challenge when the verify token is known."""
    params = request.query_params
    mode = params.get("hub.mode")
    token = params.get("hub.verify_token")
    challenge = params.get("hub.challenge") or ""

    if mode == "subscribe" and token:
        if settings.meta_verify_token and hmac.compare_digest(token, settings.meta_verify_token):
            return PlainTextResponse(challenge)
        known = (
            db.query(ChannelConnection.id)
            .filter(ChannelConnection.meta_webhook_verify_token == token)
            .first()
        )
        if known is not None:
            return PlainTextResponse(challenge)

    logger.warning("Meta webhook verification rejected", extra={"context": {"mode": mode}})
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/meta", response_model=WebhookResponse)
async def meta_webhook(request: Request, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    """WhatsApp Cloud API and Instagram Graph events."""
    raw, payload, early = await _read_payload(request, "meta")
    if early is not None:
        return early

    if settings.meta_app_secret and not verify_signature(
        raw, request.headers.get("x-hub-signature-256"), settings.meta_app_secret
    ):
        logger.warning("Meta webhook signature mismatch", extra={"context": {"object": payload.get("object")}})
        return WebhookResponse(success=True, message="Ignored")

    try:
        summary = handle_meta_payload(db, payload, background_tasks)
    except Exception as exc:
        db.rollback()
        logger.error(
            f"Meta webhook processing failed: {exc}",
            extra={"context": {"object": payload.get("object")}},
            exc_info=True,
        )
        return WebhookResponse(success=True, message="Accepted")

    return _respond(summary)
