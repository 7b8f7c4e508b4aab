from typing import Any, Optional

import httpx

from atendimento.config import settings
from atendimento.logging_config import get_logger
from atendimento.services.providers.base import ProviderError

logger = get_logger("providers.evolution_client")


class EvolutionClient:
    """Evolution API client for one instance.

    Every call raises ProviderError on a non-2xx answer; callers decide
    whether that is fatal.
    """

    def __init__(
        self,
        instance_name: str,
        api_key: str,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.instance_name = instance_name
        self.api_key = api_key
        self.base_url = (base_url or settings.evolution_api_url).rstrip("/")
        self.timeout = timeout_seconds if timeout_seconds is not None else settings.http_timeout_seconds
        self.transport = transport

    @classmethod
    def for_connection(cls, connection, **kwargs) -> "EvolutionClient":
        api_key = settings.evolution_api_key or connection.token
        return cls(connection.instance_name, api_key, **kwargs)

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}/{self.instance_name}"
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.request(
                method,
                url,
                headers={"apikey": self.api_key, "Content-Type": "application/json"},
                json=payload,
            )

        logger.debug(f"Evolution {method} {path}: status={response.status_code}")
        if response.status_code >= 300:
            raise ProviderError("evolution", response.status_code, response.text[:500])
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {"data": data}

    def send_text(self, number: str, text: str) -> dict:
        return self._request("POST", "/message/sendText", {"number": number, "text": text})

    def send_media(
        self,
        number: str,
        mediatype: str,
        media: str,
        caption: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> dict:
        payload: dict[str, Any] = {"number": number, "mediatype": mediatype, "media": media}
        if mediatype == "document":
            payload["fileName"] = file_name or caption or "documento"
        else:
            payload["caption"] = caption or ""
        return self._request("POST", "/message/sendMedia", payload)

    def send_audio(self, number: str, audio: str) -> dict:
        return self._request("POST", "/message/sendWhatsAppAudio", {"number": number, "audio": audio})

    def delete_message_for_everyone(self, message_id: str, remote_jid: str) -> dict:
        return self._request(
            "DELETE",
            "/chat/deleteMessageForEveryone",
            {"id": message_id, "remoteJid": remote_jid, "fromMe": True},
        )

    def fetch_profile_picture_url(self, number: str) -> Optional[str]:
        data = self._request("POST", "/chat/fetchProfilePictureUrl", {"number": number})
        return data.get("profilePictureUrl") or data.get("profilePicUrl")

    def get_media_base64(self, message_id: str) -> tuple[Optional[str], Optional[str]]:
        """Decrypted media of a received message as (base64, mimetype)."""
        data = self._request(
            "POST",
            "/chat/getBase64FromMediaMessage",
            {"message": {"key": {"id": message_id}}, "convertToMp4": False},
        )
        return data.get("base64"), data.get("mimetype")


def extract_message_id(response: dict) -> Optional[str]:
    key = response.get("key") if isinstance(response, dict) else None
    if isinstance(key, dict) and key.get("id"):
        return key["id"]
    return None
