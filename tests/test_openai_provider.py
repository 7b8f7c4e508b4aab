import json

import httpx
import pytest

from atendimento.services.llm import LLMError, OpenAIProvider
from atendimento.services.llm.openai_provider import build_completion_payload, uses_completion_tokens

MESSAGES = [{"role": "system", "content": "Você é a Sofia."}, {"role": "user", "content": "Oi"}]


class TestModelFamilyRule:
    @pytest.mark.parametrize("model", ["gpt-5", "gpt-5-mini", "gpt-4.1-nano", "o3-mini", "o4-mini"])
    def test_completion_token_families(self, model):
        payload = build_completion_payload(MESSAGES, model, 0.7, 500)

        assert uses_completion_tokens(model) is True
        assert payload["max_completion_tokens"] == 500
        assert "max_tokens" not in payload
        assert "temperature" not in payload

    @pytest.mark.parametrize("model", ["gpt-4o-mini", "gpt-4o", "gpt-3.5-turbo"])
    def test_classic_families(self, model):
        payload = build_completion_payload(MESSAGES, model, 0.3, 800)

        assert uses_completion_tokens(model) is False
        assert payload["max_tokens"] == 800
        assert payload["temperature"] == 0.3
        assert "max_completion_tokens" not in payload

    def test_tools_enable_auto_choice(self):
        payload = build_completion_payload(MESSAGES, "gpt-4o-mini", 0.7, 100, tools=[{"type": "function"}])
        assert payload["tool_choice"] == "auto"


class TestGenerate:
    def _provider(self, handler):
        return OpenAIProvider(api_key="sk-test", transport=httpx.MockTransport(handler))

    def test_parses_content_and_tool_calls(self):
        captured = {}

        def handler(request):
            captured["auth"] = request.headers["authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "model": "gpt-4o-mini-2024",
                    "choices": [
                        {
                            "message": {
                                "role": "assistant",
                                "content": "Claro!",
                                "tool_calls": [
                                    {
                                        "id": "call_1",
                                        "type": "function",
                                        "function": {"name": "executar_acao", "arguments": '{"tipo": "tag", "valor": "vip"}'},
                                    }
                                ],
                            }
                        }
                    ],
                    "usage": {"total_tokens": 42},
                },
            )

        response = self._provider(handler).generate(MESSAGES, model="gpt-4o-mini")

        assert captured["auth"] == "Bearer sk-test"
        assert captured["body"]["max_tokens"] == 1000
        assert response.content == "Claro!"
        assert response.model == "gpt-4o-mini-2024"
        assert response.tool_calls[0].name == "executar_acao"
        assert response.raw_message["role"] == "assistant"

    def test_non_2xx_raises(self):
        provider = self._provider(lambda request: httpx.Response(429, text="rate limited"))

        with pytest.raises(LLMError) as exc_info:
            provider.generate(MESSAGES)
        assert exc_info.value.status_code == 429

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("down")

        with pytest.raises(LLMError):
            self._provider(handler).generate(MESSAGES)


class TestTranscription:
    def test_sends_portuguese_by_default(self):
        captured = {}

        def handler(request):
            captured["body"] = request.content
            return httpx.Response(200, text="quero saber o preço\n")

        provider = OpenAIProvider(api_key="sk-test", transport=httpx.MockTransport(handler))
        text = provider.transcribe_audio(audio_bytes=b"OggS", filename="audio.ogg", mime_type="audio/ogg")

        assert text == "quero saber o preço"
        assert b'name="language"' in captured["body"]
        assert b"pt" in captured["body"]

    def test_empty_audio_is_rejected(self):
        with pytest.raises(ValueError):
            OpenAIProvider(api_key="sk-test").transcribe_audio(audio_bytes=b"", filename="a.ogg")


class TestImageDescription:
    def test_image_sent_as_data_url_part(self):
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": " Comprovante Pix de R$ 150,00 "}}]})

        provider = OpenAIProvider(api_key="sk-test", transport=httpx.MockTransport(handler))
        text = provider.describe_image(image_bytes=b"\xff\xd8", prompt="Descreva", mime_type="image/jpeg")

        assert text == "Comprovante Pix de R$ 150,00"
        parts = captured["body"]["messages"][0]["content"]
        assert parts[0] == {"type": "text", "text": "Descreva"}
        assert parts[1]["type"] == "image_url"
        assert parts[1]["image_url"]["url"] == "data:image/jpeg;base64,/9g="
        assert captured["body"]["model"] == "gpt-4o-mini"

    def test_api_error_raises(self):
        provider = OpenAIProvider(
            api_key="sk-test", transport=httpx.MockTransport(lambda request: httpx.Response(400, text="bad image"))
        )
        with pytest.raises(LLMError):
            provider.describe_image(image_bytes=b"\xff\xd8", prompt="Descreva")

    def test_empty_image_is_rejected(self):
        with pytest.raises(ValueError):
            OpenAIProvider(api_key="sk-test").describe_image(image_bytes=b"", prompt="Descreva")
