"""Best-effort extras around an inbound message: audio transcription, image
description and contact avatar.

Nothing here may fail ingestion. Every provider error is logged and dropped.
"""

import base64
from typing import Optional
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from atendimento.config import settings
from atendimento.database import SessionLocal
from atendimento.logging_config import get_logger
from atendimento.models import Account, ChannelConnection, Contact, Message, MessageType, ProviderType
from atendimento.models.connection import resolve_provider_type
from atendimento.services.ai_service import get_api_key, get_llm_provider
from atendimento.services.llm import LLMError
from atendimento.services.providers.base import ProviderError
from atendimento.services.providers.evolution_client import EvolutionClient
from atendimento.services.providers.meta_client import MetaCloudClient

logger = get_logger("enrichment_service")

MAX_AUDIO_BYTES = 25 * 1024 * 1024  # OpenAI transcription upload limit
TRANSCRIPTION_TIMEOUT_SECONDS = 60.0
MAX_IMAGE_BYTES = 20 * 1024 * 1024  # OpenAI vision inline image limit
IMAGE_ANALYSIS_TIMEOUT_SECONDS = 60.0

IMAGE_ANALYSIS_PROMPT = (
    "Analise esta imagem enviada por um cliente em uma conversa de atendimento. "
    "Descreva objetivamente o que ela mostra. Se for um comprovante de pagamento, "
    "informe valor, data, pagador e recebedor visíveis. Se for um produto, identifique-o. "
    "Transcreva textos, valores, datas e nomes importantes. Se for uma captura de tela de erro, "
    "descreva o erro. Responda em português, em no máximo um parágrafo."
)

_EXTENSIONS = {
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "audio/aac": ".aac",
    "audio/wav": ".wav",
    "audio/webm": ".webm",
}


def guess_audio_filename(mime_type: Optional[str]) -> str:
    base = (mime_type or "").split(";")[0].strip().lower()
    return f"audio{_EXTENSIONS.get(base, '.ogg')}"


def _download_url(url: str) -> tuple[bytes, Optional[str]]:
    with httpx.Client(timeout=settings.http_timeout_seconds, follow_redirects=True) as client:
        response = client.get(url)
    response.raise_for_status()
    return response.content, response.headers.get("content-type")


def fetch_media(connection: ChannelConnection, message: Message) -> tuple[Optional[bytes], Optional[str]]:
    """Raw bytes of a stored inbound media message, from wherever its provider keeps it."""
    metadata = message.message_metadata or {}
    mime_type = metadata.get("mime_type")
    provider = resolve_provider_type(connection)

    if provider == ProviderType.EVOLUTION:
        if not message.external_id:
            return None, mime_type
        encoded, evolution_mime = EvolutionClient.for_connection(connection).get_media_base64(message.external_id)
        if not encoded:
            return None, mime_type
        return base64.b64decode(encoded), evolution_mime or mime_type

    if provider == ProviderType.META and metadata.get("media_id"):
        return MetaCloudClient.for_connection(connection).download_media(metadata["media_id"])

    if message.media_url:
        content, header_mime = _download_url(message.media_url)
        return content, mime_type or header_mime
    return None, mime_type


def transcribe_message(db: Session, connection: ChannelConnection, message: Message) -> Optional[str]:
    """Store the transcript of an inbound audio in metadata.transcricao.

    Uses the tenant's own OpenAI key; without one the audio stays a placeholder.
    """
    if message.message_type != MessageType.AUDIO.value:
        return None
    existing = (message.message_metadata or {}).get("transcricao")
    if existing:
        return existing

    account = db.query(Account).filter(Account.id == connection.account_id).first()
    api_key = get_api_key(account)
    if not api_key:
        return None

    context = {"message_id": message.id, "conversation_id": message.conversation_id}
    try:
        audio, mime_type = fetch_media(connection, message)
        if not audio:
            logger.info("Audio not available for transcription", extra={"context": context})
            return None
        if len(audio) > MAX_AUDIO_BYTES:
            logger.info("Audio too large for transcription", extra={"context": {**context, "bytes": len(audio)}})
            return None
        transcript = get_llm_provider(api_key).transcribe_audio(
            audio_bytes=audio,
            filename=guess_audio_filename(mime_type),
            mime_type=mime_type,
            timeout_seconds=TRANSCRIPTION_TIMEOUT_SECONDS,
        )
    except (ProviderError, LLMError, httpx.HTTPError, ValueError) as exc:
        logger.warning(f"Audio transcription failed: {exc}", extra={"context": context})
        return None

    if not transcript:
        return None
    message.message_metadata = {**(message.message_metadata or {}), "transcricao": transcript}
    db.flush()
    logger.info("Audio transcribed", extra={"context": {**context, "chars": len(transcript)}})
    return transcript


def describe_image(db: Session, connection: ChannelConnection, message: Message) -> Optional[str]:
    """Store a vision-model description of an inbound image in metadata.descricao_imagem."""
    if message.message_type != MessageType.IMAGE.value:
        return None
    existing = (message.message_metadata or {}).get("descricao_imagem")
    if existing:
        return existing

    account = db.query(Account).filter(Account.id == connection.account_id).first()
    api_key = get_api_key(account)
    if not api_key:
        return None

    context = {"message_id": message.id, "conversation_id": message.conversation_id}
    try:
        image, mime_type = fetch_media(connection, message)
        if not image:
            logger.info("Image not available for analysis", extra={"context": context})
            return None
        if len(image) > MAX_IMAGE_BYTES:
            logger.info("Image too large for analysis", extra={"context": {**context, "bytes": len(image)}})
            return None
        description = get_llm_provider(api_key).describe_image(
            image_bytes=image,
            prompt=IMAGE_ANALYSIS_PROMPT,
            mime_type=(mime_type or "").split(";")[0].strip() or None,
            timeout_seconds=IMAGE_ANALYSIS_TIMEOUT_SECONDS,
        )
    except (ProviderError, LLMError, httpx.HTTPError, ValueError) as exc:
        logger.warning(f"Image analysis failed: {exc}", extra={"context": context})
        return None

    if not description:
        return None
    message.message_metadata = {**(message.message_metadata or {}), "descricao_imagem": description}
    db.flush()
    logger.info("Image described", extra={"context": {**context, "chars": len(description)}})
    return description



def refresh_contact_avatar(connection_id: UUID, contact_id: UUID) -> None:
    """Background task: fill contatos.avatar_url from the WhatsApp profile picture."""
    db = SessionLocal()
    try:
        connection = db.query(ChannelConnection).filter(ChannelConnection.id == connection_id).first()
        contact = db.query(Contact).filter(Contact.id == contact_id).first()
        if connection is None or contact is None or contact.avatar_url:
            return
        if resolve_provider_type(connection) != ProviderType.EVOLUTION or not connection.instance_name:
            return

        try:
            url = EvolutionClient.for_connection(connection).fetch_profile_picture_url(contact.phone)
        except (ProviderError, httpx.HTTPError) as exc:
            logger.info(f"Profile picture unavailable: {exc}", extra={"context": {"contact_id": contact_id}})
            return

        if url:
            contact.avatar_url = url
            db.commit()
            logger.info("Contact avatar stored", extra={"context": {"contact_id": contact_id}})
    except Exception as exc:
        db.rollback()
        logger.error(f"Avatar refresh failed: {exc}", extra={"context": {"contact_id": contact_id}}, exc_info=True)
    finally:
        db.close()
