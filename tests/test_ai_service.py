from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from atendimento.services.ai_service import ReplyReason, TOOL_FOLLOWUP_FALLBACK, generate_response, model_parameters
from atendimento.services.directives import DirectiveKind
from atendimento.services.llm import LLMError, LLMResponse, ToolCall
from atendimento.services.prompt_service import PromptContext

# Saturday 2024-03-16, 10:00 in Sao Paulo
SATURDAY_MORNING = datetime(2024, 3, 16, 13, 0, tzinfo=timezone.utc)
MONDAY_MORNING = datetime(2024, 3, 18, 13, 0, tzinfo=timezone.utc)


@pytest.fixture
def db(db_session, account):
    db_session.query.return_value.filter.return_value.first.return_value = account
    return db_session


@pytest.fixture
def llm():
    provider = Mock()
    with patch("atendimento.services.ai_service.get_llm_provider", return_value=provider):
        yield provider


@pytest.fixture(autouse=True)
def prompt():
    context = PromptContext(messages=[{"role": "system", "content": "s"}, {"role": "user", "content": "Oi"}])
    with patch("atendimento.services.ai_service.assemble_prompt", return_value=context) as mock_prompt:
        yield mock_prompt


def business_days_agent(agent, message="Estamos fechados. Voltamos segunda às 9h."):
    agent.always_on = False
    agent.hours_start = "09:00"
    agent.hours_end = "18:00"
    agent.active_days = [1, 2, 3, 4, 5]
    agent.out_of_hours_message = message
    return agent


class TestShortCircuits:
    @patch("atendimento.services.ai_service.settings")
    def test_no_credential(self, mock_settings, db, account, conversation, llm):
        mock_settings.openai_api_key = None
        account.openai_api_key = "  "

        result = generate_response(db, conversation, None, MONDAY_MORNING)

        assert result.ok is True
        assert result.value.should_respond is False
        assert result.value.reason == ReplyReason.NO_CREDENTIAL
        llm.generate.assert_not_called()

    @patch("atendimento.services.ai_service.get_conversation_agent", return_value=None)
    def test_no_agent(self, _mock_agent, db, conversation, llm):
        result = generate_response(db, conversation, None, MONDAY_MORNING)

        assert result.value.reason == ReplyReason.NO_AGENT
        assert result.value.should_respond is False
        llm.generate.assert_not_called()

    @patch("atendimento.services.ai_service.get_conversation_agent")
    def test_saturday_canned_message_without_model_call(self, mock_agent, db, conversation, agent, llm):
        mock_agent.return_value = business_days_agent(agent)

        result = generate_response(db, conversation, None, SATURDAY_MORNING)

        reply = result.value
        assert reply.should_respond is True
        assert reply.out_of_hours is True
        assert reply.text == "Estamos fechados. Voltamos segunda às 9h."
        assert reply.reason == ReplyReason.OUT_OF_HOURS
        llm.generate.assert_not_called()

    @patch("atendimento.services.ai_service.get_conversation_agent")
    def test_skip_policy_stays_silent(self, mock_agent, db, conversation, agent, llm):
        agent = business_days_agent(agent)
        agent.out_of_hours_policy = "skip"
        mock_agent.return_value = agent

        result = generate_response(db, conversation, None, SATURDAY_MORNING)

        assert result.value.should_respond is False
        assert result.value.out_of_hours is True
        llm.generate.assert_not_called()

    @patch("atendimento.services.ai_service.get_conversation_agent")
    def test_generate_anyway_calls_the_model(self, mock_agent, db, conversation, agent, llm):
        agent = business_days_agent(agent, message=None)
        mock_agent.return_value = agent
        llm.generate.return_value = LLMResponse(content="Oi! Atendemos de segunda a sexta.", model="gpt-4o-mini")

        result = generate_response(db, conversation, None, SATURDAY_MORNING)

        assert result.value.should_respond is True
        assert result.value.out_of_hours is False
        llm.generate.assert_called_once()


class TestGeneration:
    @patch("atendimento.services.ai_service.get_conversation_agent")
    def test_directives_are_split_from_text(self, mock_agent, db, conversation, agent, llm):
        mock_agent.return_value = agent
        llm.generate.return_value = LLMResponse(content="Perfeito, já anotei! @tag:vip", model="gpt-4o-mini")

        result = generate_response(db, conversation, None, MONDAY_MORNING)

        reply = result.value
        assert reply.text == "Perfeito, já anotei!"
        assert [d.kind for d in reply.directives] == [DirectiveKind.TAG]
        assert reply.agent_id == agent.id
        kwargs = llm.generate.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 1000
        assert kwargs["temperature"] == 0.7

    @patch("atendimento.services.ai_service.get_conversation_agent")
    def test_tool_call_without_text_triggers_follow_up(self, mock_agent, db, conversation, agent, llm):
        mock_agent.return_value = agent
        tool_call = ToolCall(id="call_1", name="executar_acao", arguments='{"tipo": "etapa", "valor": "qualificado"}')
        llm.generate.side_effect = [
            LLMResponse(content="", model="gpt-4o-mini", tool_calls=[tool_call], raw_message={"role": "assistant"}),
            LLMResponse(content="Ótimo, vamos seguir!", model="gpt-4o-mini"),
        ]

        result = generate_response(db, conversation, None, MONDAY_MORNING)

        assert result.value.text == "Ótimo, vamos seguir!"
        assert result.value.directives[0].kind == DirectiveKind.STAGE
        followup_messages = llm.generate.call_args_list[1].args[0]
        assert followup_messages[-1]["role"] == "tool"
        assert followup_messages[-1]["tool_call_id"] == "call_1"

    @patch("atendimento.services.ai_service.get_conversation_agent")
    def test_failed_follow_up_uses_fallback_text(self, mock_agent, db, conversation, agent, llm):
        mock_agent.return_value = agent
        tool_call = ToolCall(id="call_1", name="executar_acao", arguments='{"tipo": "tag", "valor": "vip"}')
        llm.generate.side_effect = [
            LLMResponse(content="", model="gpt-4o-mini", tool_calls=[tool_call]),
            LLMError("timeout"),
        ]

        result = generate_response(db, conversation, None, MONDAY_MORNING)
        assert result.value.text == TOOL_FOLLOWUP_FALLBACK

    @patch("atendimento.services.ai_service.alert_error")
    @patch("atendimento.services.ai_service.get_conversation_agent")
    def test_provider_error_is_a_failure(self, mock_agent, mock_alert, db, conversation, agent, llm):
        mock_agent.return_value = agent
        llm.generate.side_effect = LLMError("OpenAI API error: 500", 500)

        result = generate_response(db, conversation, None, MONDAY_MORNING)

        assert result.ok is False
        assert result.error_code == "provider_error"
        mock_alert.assert_called_once()
        assert llm.generate.call_count == 1

    @patch("atendimento.services.ai_service.get_conversation_agent")
    def test_empty_completion_is_a_failure(self, mock_agent, db, conversation, agent, llm):
        mock_agent.return_value = agent
        llm.generate.return_value = LLMResponse(content="   ", model="gpt-4o-mini")

        result = generate_response(db, conversation, None, MONDAY_MORNING)

        assert result.ok is False
        assert result.error_code == "empty_completion"

    @patch("atendimento.services.ai_service.get_conversation_agent")
    def test_actions_only_reply(self, mock_agent, db, conversation, agent, llm):
        mock_agent.return_value = agent
        llm.generate.return_value = LLMResponse(content="@transferir:humano", model="gpt-4o-mini")

        result = generate_response(db, conversation, None, MONDAY_MORNING)

        assert result.value.should_respond is False
        assert result.value.reason == ReplyReason.ACTIONS_ONLY
        assert result.value.directives[0].kind == DirectiveKind.TRANSFER_TO_HUMAN


class TestModelParameters:
    def test_agent_overrides(self, agent):
        agent.model = "gpt-5-mini"
        agent.max_tokens = 300
        agent.temperature = 0.2
        assert model_parameters(agent) == ("gpt-5-mini", 300, 0.2)
