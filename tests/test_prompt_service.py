from datetime import datetime
from types import SimpleNamespace
from unittest.mock import patch
from uuid import uuid4
from zoneinfo import ZoneInfo

from atendimento.services.prompt_service import (
    ACTION_TOOL,
    agent_has_actions,
    assemble_prompt,
    build_system_prompt,
    build_turns,
    day_period,
)

SAO_PAULO = ZoneInfo("America/Sao_Paulo")


def message(content, direction="entrada", message_type="texto", metadata=None):
    return SimpleNamespace(
        id=uuid4(),
        content=content,
        direction=direction,
        message_type=message_type,
        message_metadata=metadata or {},
    )


def stage(number, name, description, kind=None):
    return SimpleNamespace(number=number, name=name, description=description, kind=kind)


class TestDayPeriod:
    def test_boundaries(self):
        assert day_period(4) == "madrugada"
        assert day_period(5) == "manhã"
        assert day_period(12) == "tarde"
        assert day_period(18) == "noite"
        assert day_period(0) == "madrugada"


class TestSystemPrompt:
    def test_sections_in_order(self, agent):
        agent.stages = [
            stage(2, "Fechamento", "Envie o link. @etapa:proposta", kind="venda"),
            stage(1, "Boas-vindas", "Cumprimente o cliente."),
        ]
        agent.faqs = [SimpleNamespace(question="Entregam?", answer="Sim, em todo o Brasil.", position=0)]
        local_now = datetime(2024, 3, 16, 10, 30, tzinfo=SAO_PAULO)

        prompt = build_system_prompt(agent, local_now)

        assert prompt.startswith("Você é a Sofia")
        order = [
            "## CONTEXTO TEMPORAL",
            "## ETAPAS DE ATENDIMENTO",
            "## PERGUNTAS FREQUENTES",
            "## AÇÕES DISPONÍVEIS",
            "## RESTRIÇÕES ABSOLUTAS",
        ]
        positions = [prompt.index(section) for section in order]
        assert positions == sorted(positions)
        assert "- Dia da semana: sábado" in prompt
        assert "- Data atual: 16 de março de 2024" in prompt
        assert "- Período do dia: manhã" in prompt
        assert prompt.index("### Etapa 1: Boas-vindas") < prompt.index("### Etapa 2 (venda): Fechamento")
        assert "**P: Entregam?**" in prompt

    def test_actions_only_when_a_stage_uses_directives(self, agent):
        agent.stages = [stage(1, "Boas-vindas", "Cumprimente o cliente.")]
        prompt = build_system_prompt(agent, datetime(2024, 3, 16, 20, 0, tzinfo=SAO_PAULO))

        assert agent_has_actions(agent) is False
        assert "## AÇÕES DISPONÍVEIS" not in prompt
        assert "- Período do dia: noite" in prompt

    def test_audio_transcript_adds_media_context(self, agent):
        trigger = message("🎵 Áudio", message_type="audio", metadata={"transcricao": "qual o horário?"})
        prompt = build_system_prompt(agent, datetime(2024, 3, 16, 10, 0, tzinfo=SAO_PAULO), trigger)

        assert "## CONTEXTO DE MÍDIA" in prompt
        assert '"qual o horário?"' in prompt

    def test_image_description_adds_media_context(self, agent):
        trigger = message(
            "📷 Imagem", message_type="imagem", metadata={"descricao_imagem": "Comprovante Pix de R$ 150,00"}
        )
        prompt = build_system_prompt(agent, datetime(2024, 3, 16, 10, 0, tzinfo=SAO_PAULO), trigger)

        assert "O lead enviou uma imagem. Análise da imagem:" in prompt
        assert '"Comprovante Pix de R$ 150,00"' in prompt
        assert prompt.index("## CONTEXTO DE MÍDIA") < prompt.index("## RESTRIÇÕES")

    def test_image_without_description_adds_nothing(self, agent):
        trigger = message("📷 Imagem", message_type="imagem")
        prompt = build_system_prompt(agent, datetime(2024, 3, 16, 10, 0, tzinfo=SAO_PAULO), trigger)

        assert "## CONTEXTO DE MÍDIA" not in prompt


class TestTurns:
    def test_roles_and_trigger_not_duplicated(self):
        history = [message("Oi"), message("Olá! Como posso ajudar?", direction="saida"), message("Preço?")]
        turns = build_turns("system", history, history[-1])

        assert [turn["role"] for turn in turns] == ["system", "user", "assistant", "user"]
        assert turns[-1]["content"] == "Preço?"

    def test_trigger_appended_when_history_lags(self):
        history = [message("Oi")]
        trigger = message("Ainda está aí?")
        turns = build_turns("system", history, trigger)

        assert turns[-1] == {"role": "user", "content": "Ainda está aí?"}

    def test_audio_history_uses_transcript(self):
        history = [message("🎵 Áudio", message_type="audio", metadata={"transcricao": "quero agendar"})]
        turns = build_turns("system", history, history[0])
        assert turns[1]["content"] == "quero agendar"


class TestAssemble:
    @patch("atendimento.services.prompt_service.load_history")
    def test_tool_exposed_with_actions(self, mock_history, db_session, agent, conversation):
        agent.stages = [stage(1, "Qualificação", "Se qualificado use @etapa:qualificado")]
        trigger = message("Quero comprar")
        mock_history.return_value = [trigger]

        prompt = assemble_prompt(db_session, conversation, agent, trigger, datetime(2024, 3, 18, 9, 0, tzinfo=SAO_PAULO))

        assert prompt.tools == [ACTION_TOOL]
        assert prompt.messages[0]["role"] == "system"
        assert prompt.messages[-1] == {"role": "user", "content": "Quero comprar"}
        mock_history.assert_called_once_with(db_session, conversation.id, since=None)

    @patch("atendimento.services.prompt_service.load_history", return_value=[])
    def test_no_tools_without_actions(self, _mock_history, db_session, agent, conversation):
        prompt = assemble_prompt(db_session, conversation, agent, None, datetime(2024, 3, 18, 9, 0, tzinfo=SAO_PAULO))
        assert prompt.tools is None
        assert len(prompt.messages) == 1
