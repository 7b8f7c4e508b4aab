import json
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from atendimento.config import settings
from atendimento.logging_config import get_logger
from atendimento.models import Account, AIAgent, Conversation, Message
from atendimento.services.agent_service import get_conversation_agent
from atendimento.services.alert_service import alert_error
from atendimento.services.business_hours import OutOfHoursPolicy, evaluate, local_time
from atendimento.services.directives import Directive, directives_from_tool_arguments, extract_directives
from atendimento.services.llm import LLMError, LLMResponse, OpenAIProvider
from atendimento.services.prompt_service import assemble_prompt
from atendimento.services.result import Result

logger = get_logger("ai_service")

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.7
LLM_TIMEOUT_SECONDS = float(os.environ.get("LLM_TIMEOUT_SECONDS", "60"))
TOOL_FOLLOWUP_FALLBACK = "Entendido! Estou processando sua solicitação."


class ReplyReason:
    GENERATED = "generated"
    NO_CREDENTIAL = "no_credential"
    NO_AGENT = "no_agent"
    OUT_OF_HOURS = "out_of_hours"
    ACTIONS_ONLY = "actions_only"


@dataclass
class AIReply:
    should_respond: bool
    text: str = ""
    directives: List[Directive] = field(default_factory=list)
    out_of_hours: bool = False
    reason: str = ReplyReason.GENERATED
    agent_id: Optional[UUID] = None
    model: Optional[str] = None


def get_llm_provider(api_key: str) -> OpenAIProvider:
    """Provider bound to the tenant's own key."""
    return OpenAIProvider(api_key=api_key, default_model=DEFAULT_MODEL)


def get_api_key(account: Optional[Account]) -> Optional[str]:
    key = (account.openai_api_key if account else None) or settings.openai_api_key
    return key.strip() if key and key.strip() else None


def model_parameters(agent: AIAgent) -> tuple[str, int, float]:
    model = agent.model or DEFAULT_MODEL
    max_tokens = int(agent.max_tokens or DEFAULT_MAX_TOKENS)
    temperature = float(agent.temperature) if agent.temperature is not None else DEFAULT_TEMPERATURE
    return model, max_tokens, temperature


def generate_response(
    db: Session,
    conversation: Conversation,
    trigger: Optional[Message],
    now: Optional[datetime] = None,
) -> Result[AIReply]:
    """Decide whether and what the AI agent answers.

    Missing configuration and business-hours gating come back as a successful
    Result carrying should_respond=False (or the canned out-of-hours text) and
    a reason. Only provider trouble is a failed Result; nothing is retried here.
    """
    now = now or datetime.now(timezone.utc)
    context = {"conversation_id": conversation.id, "account_id": conversation.account_id}

    account = db.query(Account).filter(Account.id == conversation.account_id).first()
    api_key = get_api_key(account)
    if not api_key:
        logger.info("No model credential configured", extra={"context": context})
        return Result.success(AIReply(should_respond=False, reason=ReplyReason.NO_CREDENTIAL))

    agent = get_conversation_agent(db, conversation)
    if agent is None:
        logger.info("No active AI agent", extra={"context": context})
        return Result.success(AIReply(should_respond=False, reason=ReplyReason.NO_AGENT))

    local_now = local_time(now, account.timezone if account else None)
    hours = evaluate(agent, local_now)
    if not hours.within_hours:
        logger.info(
            "Outside business hours",
            extra={"context": {**context, "agent_id": agent.id, "policy": hours.policy.value}},
        )
        if hours.policy == OutOfHoursPolicy.CANNED_MESSAGE:
            return Result.success(
                AIReply(
                    should_respond=True,
                    text=hours.message,
                    out_of_hours=True,
                    reason=ReplyReason.OUT_OF_HOURS,
                    agent_id=agent.id,
                )
            )
        if hours.policy == OutOfHoursPolicy.SKIP:
            return Result.success(
                AIReply(should_respond=False, out_of_hours=True, reason=ReplyReason.OUT_OF_HOURS, agent_id=agent.id)
            )

    prompt = assemble_prompt(db, conversation, agent, trigger, local_now)
    model, max_tokens, temperature = model_parameters(agent)
    llm = get_llm_provider(api_key)

    started = time.monotonic()
    try:
        response = llm.generate(
            prompt.messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            tools=prompt.tools,
            timeout_seconds=LLM_TIMEOUT_SECONDS,
        )
    except LLMError as exc:
        logger.error("AI generation failed", extra={"context": {**context, "model": model, "error": str(exc)}})
        alert_error("AI generation failed", {"conversation_id": str(conversation.id), "error": str(exc)[:300]})
        return Result.failure(str(exc), "provider_error")

    tool_directives = _tool_directives(response)
    content = response.content or ""
    if tool_directives and not content.strip():
        content = _follow_up_after_tools(llm, prompt.messages, response, model, temperature, max_tokens)

    logger.info(
        "AI response generated",
        extra={
            "context": {
                **context,
                "model": response.model,
                "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
                "tool_calls": len(response.tool_calls),
            }
        },
    )

    parsed = extract_directives(content)
    directives = tool_directives + parsed.directives
    if not parsed.clean_text and not directives:
        logger.warning("Empty completion", extra={"context": {**context, "model": model}})
        return Result.failure("Resposta vazia do modelo", "empty_completion")

    return Result.success(
        AIReply(
            should_respond=bool(parsed.clean_text),
            text=parsed.clean_text,
            directives=directives,
            reason=ReplyReason.GENERATED if parsed.clean_text else ReplyReason.ACTIONS_ONLY,
            agent_id=agent.id,
            model=response.model,
        )
    )


def _tool_directives(response: LLMResponse) -> List[Directive]:
    directives: List[Directive] = []
    for call in response.tool_calls:
        if call.name != "executar_acao":
            continue
        try:
            arguments = json.loads(call.arguments or "{}")
        except ValueError:
            logger.warning(f"Unparseable tool arguments: {call.arguments[:200]}")
            continue
        directives.extend(directives_from_tool_arguments(arguments))
    return directives


def _follow_up_after_tools(
    llm: OpenAIProvider,
    messages: List[dict],
    response: LLMResponse,
    model: str,
    temperature: float,
    max_tokens: int,
) -> str:
    """Second call that turns the tool acknowledgements into customer-facing text."""
    followup = list(messages)
    followup.append(response.raw_message or {"role": "assistant", "content": response.content or ""})
    ack = json.dumps({"sucesso": True, "mensagem": "Ação será executada automaticamente"}, ensure_ascii=False)
    for call in response.tool_calls:
        followup.append({"role": "tool", "tool_call_id": call.id, "content": ack})

    try:
        continuation = llm.generate(
            followup,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_seconds=LLM_TIMEOUT_SECONDS,
        )
    except LLMError as exc:
        logger.warning(f"Tool follow-up call failed: {exc}")
        return TOOL_FOLLOWUP_FALLBACK
    return continuation.content or TOOL_FOLLOWUP_FALLBACK
