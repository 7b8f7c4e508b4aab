import base64
from typing import List, Optional

import httpx

from atendimento.logging_config import get_logger
from atendimento.services.llm.base import LLMError, LLMProvider, LLMResponse, ToolCall

logger = get_logger("llm.openai")

DEFAULT_MODEL = "gpt-4o-mini"

# Families that reject `temperature` and want `max_completion_tokens`.
COMPLETION_TOKEN_MODEL_MARKERS = ("gpt-5", "gpt-4.1", "o3", "o4")


def uses_completion_tokens(model: str) -> bool:
    """Substring match on the model name, the only signal the API gives us."""
    name = (model or "").lower()
    return any(marker in name for marker in COMPLETION_TOKEN_MODEL_MARKERS)


def build_completion_payload(
    messages: List[dict],
    model: str,
    temperature: float,
    max_tokens: int,
    tools: Optional[List[dict]] = None,
) -> dict:
    payload: dict = {"model": model, "messages": messages}
    if tools:
        payload["tools"] = tools
        payload["tool_choice"] = "auto"
    if uses_completion_tokens(model):
        payload["max_completion_tokens"] = max_tokens
    else:
        payload["max_tokens"] = max_tokens
        payload["temperature"] = temperature
    return payload


class OpenAIProvider(LLMProvider):
    """OpenAI API provider."""

    def __init__(
        self,
        api_key: str,
        default_model: str = DEFAULT_MODEL,
        base_url: str = "https://api.openai.com/v1",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = f"{base_url.rstrip('/')}/chat/completions"
        self.audio_url = f"{base_url.rstrip('/')}/audio/transcriptions"
        self.transport = transport

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        tools: Optional[List[dict]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        """Generate response from OpenAI. Raises LLMError on transport or non-2xx."""

        model = model or self.default_model
        payload = build_completion_payload(messages, model, temperature, max_tokens, tools)
        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}, tools={bool(tools)}")

        timeout = timeout_seconds if timeout_seconds is not None else 60.0
        try:
            with httpx.Client(timeout=timeout, transport=self.transport) as client:
                response = client.post(
                    self.base_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as exc:
            raise LLMError(f"OpenAI request failed: {exc}") from exc

        logger.debug(f"OpenAI response status: {response.status_code}")

        if response.status_code >= 300:
            logger.error(f"OpenAI error: {response.text[:500]}")
            raise LLMError(f"OpenAI API error: {response.status_code} - {response.text[:500]}", response.status_code)

        data = response.json()

        content = ""
        tool_calls: List[ToolCall] = []
        message: dict = {}
        if data.get("choices"):
            message = data["choices"][0].get("message") or {}
            content = message.get("content") or ""
            for call in message.get("tool_calls") or []:
                function = call.get("function") or {}
                tool_calls.append(
                    ToolCall(
                        id=call.get("id") or "",
                        name=function.get("name") or "",
                        arguments=function.get("arguments") or "{}",
                    )
                )
        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}, tool_calls={len(tool_calls)}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
            tool_calls=tool_calls,
            raw_message=message or None,
        )

    def transcribe_audio(
        self,
        *,
        audio_bytes: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        model: Optional[str] = None,
        language: Optional[str] = "pt",
        timeout_seconds: Optional[float] = None,
    ) -> str:
        """Transcribe audio using OpenAI speech-to-text."""
        model = model or "whisper-1"
        if not audio_bytes:
            raise ValueError("audio_bytes is empty")

        files = {"file": (filename or "audio", audio_bytes, mime_type or "application/octet-stream")}
        data = {"model": model, "response_format": "text"}
        if language:
            data["language"] = language

        timeout = timeout_seconds if timeout_seconds is not None else 30.0
        try:
            with httpx.Client(timeout=timeout, transport=self.transport) as client:
                response = client.post(
                    self.audio_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    files=files,
                    data=data,
                )
        except httpx.HTTPError as exc:
            raise LLMError(f"OpenAI transcription failed: {exc}") from exc

        logger.debug(f"OpenAI transcription status: {response.status_code}")
        if response.status_code >= 300:
            logger.error(f"OpenAI transcription error: {response.text[:500]}")
            raise LLMError(
                f"OpenAI transcription error: {response.status_code} - {response.text[:500]}",
                response.status_code,
            )

        transcript = (response.text or "").strip()
        if not transcript:
            logger.warning("OpenAI transcription returned empty text")
        return transcript

    def describe_image(
        self,
        *,
        image_bytes: bytes,
        prompt: str,
        mime_type: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 500,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        """Describe an image with a vision-capable chat model (inline data URL)."""
        if not image_bytes:
            raise ValueError("image_bytes is empty")

        data_url = f"data:{mime_type or 'image/jpeg'};base64,{base64.b64encode(image_bytes).decode()}"
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            }
        ]
        response = self.generate(
            messages,
            model=model,
            temperature=0.2,
            max_tokens=max_tokens,
            timeout_seconds=timeout_seconds,
        )
        description = (response.content or "").strip()
        if not description:
            logger.warning("OpenAI image description returned empty text")
        return description
