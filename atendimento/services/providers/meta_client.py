from typing import Any, Optional

import httpx

from atendimento.config import settings
from atendimento.logging_config import get_logger
from atendimento.services.providers.base import ProviderError

logger = get_logger("providers.meta_client")

DEFAULT_TEMPLATE_LANGUAGE = "pt_BR"


class GraphClient:
    """Shared Graph API plumbing: bearer auth, JSON, ProviderError on non-2xx."""

    provider_name = "meta"

    def __init__(
        self,
        object_id: str,
        access_token: str,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.object_id = object_id
        self.access_token = access_token
        self.base_url = (base_url or settings.meta_graph_url).rstrip("/")
        self.timeout = timeout_seconds if timeout_seconds is not None else settings.http_timeout_seconds
        self.transport = transport

    def _post_messages(self, payload: dict) -> dict:
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.post(
                f"{self.base_url}/{self.object_id}/messages",
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )

        logger.debug(f"{self.provider_name} send: status={response.status_code}")
        if response.status_code >= 300:
            raise ProviderError(self.provider_name, response.status_code, response.text[:500])
        try:
            return response.json()
        except ValueError:
            return {}

    def download_media(self, media_id: str) -> tuple[bytes, Optional[str]]:
        """Media id -> (content, mime type). Graph hands out a short-lived URL first."""
        headers = {"Authorization": f"Bearer {self.access_token}"}
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            lookup = client.get(f"{self.base_url}/{media_id}", headers=headers)
            if lookup.status_code >= 300:
                raise ProviderError(self.provider_name, lookup.status_code, lookup.text[:500])
            info = lookup.json()
            url = info.get("url")
            if not url:
                raise ProviderError(self.provider_name, lookup.status_code, "media without url")
            media = client.get(url, headers=headers)

        if media.status_code >= 300:
            raise ProviderError(self.provider_name, media.status_code, media.text[:500])
        return media.content, info.get("mime_type") or media.headers.get("content-type")


class MetaCloudClient(GraphClient):
    """WhatsApp Cloud API sender bound to one phone number id."""

    @classmethod
    def for_connection(cls, connection, **kwargs) -> "MetaCloudClient":
        return cls(connection.meta_phone_number_id, connection.meta_access_token, **kwargs)

    def _send(self, to: str, message_type: str, body: dict[str, Any]) -> dict:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": message_type,
            message_type: body,
        }
        return self._post_messages(payload)

    def send_text(self, to: str, text: str) -> dict:
        return self._send(to, "text", {"preview_url": False, "body": text})

    def send_media(
        self,
        to: str,
        media_type: str,
        link: str,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> dict:
        body: dict[str, Any] = {"link": link}
        if caption and media_type in ("image", "video", "document"):
            body["caption"] = caption
        if media_type == "document":
            body["filename"] = filename or caption or "documento"
        return self._send(to, media_type, body)

    def send_template(
        self,
        to: str,
        name: str,
        parameters: Optional[list[str]] = None,
        language: str = DEFAULT_TEMPLATE_LANGUAGE,
    ) -> dict:
        template: dict[str, Any] = {"name": name, "language": {"code": language}}
        if parameters:
            template["components"] = [
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": value} for value in parameters],
                }
            ]
        return self._send(to, "template", template)


class InstagramClient(GraphClient):
    """Instagram Messaging sender bound to one Instagram business account."""

    provider_name = "instagram"

    @classmethod
    def for_connection(cls, connection, **kwargs) -> "InstagramClient":
        return cls(connection.meta_phone_number_id, connection.meta_access_token, **kwargs)

    def send_text(self, recipient_id: str, text: str) -> dict:
        return self._post_messages({"recipient": {"id": recipient_id}, "message": {"text": text}})

    def send_attachment(self, recipient_id: str, attachment_type: str, url: str) -> dict:
        return self._post_messages(
            {
                "recipient": {"id": recipient_id},
                "message": {"attachment": {"type": attachment_type, "payload": {"url": url}}},
            }
        )


def extract_graph_message_id(response: dict) -> Optional[str]:
    """Cloud API answers {messages: [{id}]}, Instagram answers {message_id}."""
    messages = response.get("messages") if isinstance(response, dict) else None
    if messages and isinstance(messages, list) and messages[0].get("id"):
        return messages[0]["id"]
    if isinstance(response, dict):
        return response.get("message_id")
    return None
