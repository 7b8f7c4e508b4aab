from types import SimpleNamespace
from unittest.mock import Mock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from atendimento.database import get_db
from atendimento.main import app
from atendimento.services.action_service import ORIGIN_OPERATOR, DirectiveOutcome
from atendimento.services.directives import Directive, DirectiveKind
from atendimento.services.result import Result
from atendimento.services.scheduler_service import FireOutcome, FireResult
from atendimento.services.transfer_service import TransferOutcome

MESSAGES = "atendimento.routers.message"
CONVERSATIONS = "atendimento.routers.conversation"
PENDING = "atendimento.routers.pending"


@pytest.fixture
def db():
    session = Mock()
    app.dependency_overrides[get_db] = lambda: session
    yield session
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def sent_message():
    return SimpleNamespace(id=uuid4(), external_id="WAID1", content="Olá Maria")


class TestSendMessage:
    @patch(f"{MESSAGES}.deliver")
    @patch(f"{MESSAGES}.execute_directives")
    @patch(f"{MESSAGES}.get_conversation")
    def test_directives_stripped_before_sending(
        self, mock_get, mock_execute, mock_deliver, client, db, conversation, sent_message
    ):
        mock_get.return_value = conversation
        tag = Directive(DirectiveKind.TAG, "vip", raw="@tag:vip")
        mock_execute.return_value = [DirectiveOutcome(tag, ok=True, message="vip")]
        mock_deliver.return_value = Result.success(sent_message)
        operator_id = uuid4()

        response = client.post(
            "/mensagens/enviar",
            json={"conversa_id": str(conversation.id), "conteudo": "Olá Maria @tag:vip", "usuario_id": str(operator_id)},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["external_id"] == "WAID1"
        assert data["acoes"][0]["acao"] == "@tag:vip"
        assert mock_deliver.call_args[0][2].text == "Olá Maria"
        assert mock_deliver.call_args.kwargs["operator_id"] == operator_id
        assert mock_execute.call_args.kwargs["origin"] == ORIGIN_OPERATOR

    @patch(f"{MESSAGES}.deliver")
    @patch(f"{MESSAGES}.execute_directives")
    @patch(f"{MESSAGES}.get_conversation")
    def test_directives_only_sends_nothing(self, mock_get, mock_execute, mock_deliver, client, conversation):
        mock_get.return_value = conversation
        mock_execute.return_value = []

        response = client.post(
            "/mensagens/enviar", json={"conversa_id": str(conversation.id), "conteudo": "@finalizar"}
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Ações executadas"
        mock_deliver.assert_not_called()

    @patch(f"{MESSAGES}.get_conversation")
    def test_empty_message(self, mock_get, client, conversation):
        mock_get.return_value = conversation

        response = client.post("/mensagens/enviar", json={"conversa_id": str(conversation.id), "conteudo": "  "})

        assert response.status_code == 400

    @patch(f"{MESSAGES}.get_conversation", return_value=None)
    def test_unknown_conversation(self, mock_get, client):
        response = client.post("/mensagens/enviar", json={"conversa_id": str(uuid4()), "conteudo": "Oi"})
        assert response.status_code == 404

    @patch(f"{MESSAGES}.deliver")
    @patch(f"{MESSAGES}.execute_directives", return_value=[])
    @patch(f"{MESSAGES}.get_conversation")
    def test_send_failure_is_400(self, mock_get, mock_execute, mock_deliver, client, conversation):
        mock_get.return_value = conversation
        mock_deliver.return_value = Result.failure("evolution error: 500", "send_failed")

        response = client.post("/mensagens/enviar", json={"conversa_id": str(conversation.id), "conteudo": "Oi"})

        assert response.status_code == 400
        assert response.json()["detail"] == "evolution error: 500"

    @patch(f"{MESSAGES}.deliver")
    @patch(f"{MESSAGES}.execute_directives", return_value=[])
    @patch(f"{MESSAGES}.get_conversation")
    def test_media_accepts_file_name_alias(self, mock_get, mock_execute, mock_deliver, client, conversation, sent_message):
        mock_get.return_value = conversation
        mock_deliver.return_value = Result.success(sent_message)

        client.post(
            "/mensagens/enviar",
            json={
                "conversa_id": str(conversation.id),
                "tipo": "documento",
                "media_url": "https://cdn/x.pdf",
                "file_name": "orcamento.pdf",
            },
        )

        content = mock_deliver.call_args[0][2]
        assert content.file_name == "orcamento.pdf"
        assert content.media_url == "https://cdn/x.pdf"


class TestDeleteMessage:
    @patch(f"{MESSAGES}.soft_delete_message")
    def test_delete(self, mock_delete, client, db):
        message_id = uuid4()
        mock_delete.return_value = Result.success(SimpleNamespace(id=message_id))

        response = client.delete(f"/mensagens/{message_id}")

        assert response.status_code == 200
        db.commit.assert_called_once()

    @patch(f"{MESSAGES}.soft_delete_message")
    def test_delete_unknown(self, mock_delete, client):
        mock_delete.return_value = Result.failure("Mensagem não encontrada", "message_not_found")

        assert client.delete(f"/mensagens/{uuid4()}").status_code == 404


class TestTransfer:
    @patch(f"{CONVERSATIONS}.retrigger_ai")
    @patch(f"{CONVERSATIONS}.manual_transfer")
    def test_to_human(self, mock_transfer, mock_retrigger, client, db):
        conversation_id = uuid4()
        transfer = SimpleNamespace(id=uuid4())
        mock_transfer.return_value = Result.success(TransferOutcome(transfer, to_ai=False, target_name="Joana"))

        response = client.post(f"/conversas/{conversation_id}/transferir", json={"para_usuario_id": str(uuid4())})

        assert response.status_code == 200
        data = response.json()
        assert data["destino"] == "Joana"
        assert data["resposta_ia"] is False
        mock_retrigger.assert_not_called()
        db.commit.assert_called_once()

    @patch(f"{CONVERSATIONS}.get_conversation")
    @patch(f"{CONVERSATIONS}.retrigger_ai")
    @patch(f"{CONVERSATIONS}.manual_transfer")
    def test_to_ai_answers_immediately(self, mock_transfer, mock_retrigger, mock_get, client, conversation):
        mock_transfer.return_value = Result.success(
            TransferOutcome(SimpleNamespace(id=uuid4()), to_ai=True, target_name="Sofia")
        )
        mock_get.return_value = conversation
        mock_retrigger.return_value = SimpleNamespace(responded=True)

        response = client.post(f"/conversas/{conversation.id}/transferir", json={"para_ia": True})

        assert response.json()["resposta_ia"] is True
        mock_retrigger.assert_called_once()

    @patch(f"{CONVERSATIONS}.manual_transfer")
    def test_unknown_agent_is_404(self, mock_transfer, client):
        mock_transfer.return_value = Result.failure("Agente IA não encontrado", "agent_not_found")

        response = client.post(f"/conversas/{uuid4()}/transferir", json={"para_agente_ia_id": str(uuid4())})

        assert response.status_code == 404

    @patch(f"{CONVERSATIONS}.manual_transfer")
    def test_invalid_transfer_is_400(self, mock_transfer, client):
        mock_transfer.return_value = Result.failure("Destino não informado", "invalid_transfer")

        assert client.post(f"/conversas/{uuid4()}/transferir", json={}).status_code == 400


class TestRunActions:
    @patch(f"{CONVERSATIONS}.execute_directives")
    @patch(f"{CONVERSATIONS}.get_conversation")
    def test_unparseable_actions_are_reported(self, mock_get, mock_execute, client, conversation):
        mock_get.return_value = conversation
        tag = Directive(DirectiveKind.TAG, "vip", raw="@tag:vip")
        mock_execute.return_value = [DirectiveOutcome(tag, ok=True, message="vip")]

        response = client.post(f"/conversas/{conversation.id}/acoes", json={"acoes": ["@tag:vip", "sem diretiva"]})

        data = response.json()
        assert response.status_code == 200
        assert data["ignoradas"] == ["sem diretiva"]
        assert data["success"] is False
        assert data["resultados"][0]["sucesso"] is True
        assert mock_execute.call_args[0][2] == [Directive(DirectiveKind.TAG, "vip", raw="@tag:vip")]

    @patch(f"{CONVERSATIONS}.execute_directives")
    @patch(f"{CONVERSATIONS}.get_conversation")
    def test_failed_directive_reported(self, mock_get, mock_execute, client, conversation):
        mock_get.return_value = conversation
        stage = Directive(DirectiveKind.STAGE, "nada", raw="@etapa:nada")
        mock_execute.return_value = [DirectiveOutcome(stage, ok=False, message="Etapa não encontrada: nada", error_code="stage_not_found")]

        data = client.post(f"/conversas/{conversation.id}/acoes", json={"acoes": ["@etapa:nada"]}).json()

        assert data["success"] is False
        assert data["resultados"][0]["codigo_erro"] == "stage_not_found"

    def test_empty_list_rejected(self, client):
        assert client.post(f"/conversas/{uuid4()}/acoes", json={"acoes": []}).status_code == 422


class TestProcessPending:
    @patch(f"{PENDING}.fire_response")
    def test_not_due_is_success(self, mock_fire, client):
        conversation_id = uuid4()
        mock_fire.return_value = FireResult(conversation_id, FireOutcome.NOT_DUE)

        response = client.post(f"/respostas-pendentes/{conversation_id}/processar")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["resultado"] == "not_due"

    @patch(f"{PENDING}.fire_response")
    def test_failed_cycle(self, mock_fire, client):
        conversation_id = uuid4()
        mock_fire.return_value = FireResult(conversation_id, FireOutcome.FAILED, "boom")

        data = client.post(f"/respostas-pendentes/{conversation_id}/processar").json()

        assert data["success"] is False
        assert data["detalhe"] == "boom"
