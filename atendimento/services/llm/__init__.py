from atendimento.services.llm.base import LLMError, LLMProvider, LLMResponse, ToolCall
from atendimento.services.llm.openai_provider import OpenAIProvider, build_completion_payload, uses_completion_tokens

__all__ = [
    "LLMError",
    "LLMProvider",
    "LLMResponse",
    "OpenAIProvider",
    "ToolCall",
    "build_completion_payload",
    "uses_completion_tokens",
]
