from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import Mock, patch
from uuid import uuid4

import pytest
import redis
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError

from atendimento.models import Message, MessageDirection, MessageType
from atendimento.services.message_service import (
    SUMMARY_MAX_CHARS,
    _claim_dedup,
    build_external_id,
    persist_inbound,
    persist_outbound,
    persist_system_message,
    soft_delete_message,
    summarize,
)
from atendimento.services.providers import InboundMessage
from atendimento.services.providers.base import ProviderError


def inbound(**overrides):
    fields = {"external_conversation_key": "5511999990000", "content": "Oi", "external_message_id": "ABC123"}
    fields.update(overrides)
    return InboundMessage(**fields)


class TestExternalId:
    def test_provider_id_wins(self):
        assert build_external_id(inbound(external_message_id=" ABC ")) == "ABC"

    def test_timestamp_fallback(self):
        at = datetime(2024, 3, 18, 12, 0, tzinfo=timezone.utc)
        message = inbound(external_message_id=None, timestamp=at)
        assert build_external_id(message) == f"5511999990000:{int(at.timestamp())}"

    def test_nothing_to_key_on(self):
        assert build_external_id(inbound(external_message_id=None)) is None


class TestPersistInbound:
    def test_new_message_is_inserted_and_returned(self, db_session, conversation, contact):
        db_session.execute.return_value.rowcount = 1
        stored = SimpleNamespace(id="m1")
        db_session.query.return_value.filter.return_value.first.return_value = stored

        assert persist_inbound(db_session, conversation, contact, inbound()) is stored

        insert_sql = str(db_session.execute.call_args_list[0][0][0].compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT (conversa_id, external_id) DO NOTHING" in insert_sql
        # insert + conversation summary
        assert db_session.execute.call_count == 2

    def test_provider_retry_is_a_duplicate(self, db_session, conversation, contact):
        db_session.execute.return_value.rowcount = 0

        assert persist_inbound(db_session, conversation, contact, inbound()) is None
        assert db_session.execute.call_count == 1

    def test_cache_hit_skips_database(self, db_session, conversation, contact):
        with patch("atendimento.services.message_service._claim_dedup", return_value=False):
            assert persist_inbound(db_session, conversation, contact, inbound()) is None

        db_session.execute.assert_not_called()

    def test_insert_error_releases_cache_claim(self, db_session, conversation, contact):
        db_session.execute.side_effect = RuntimeError("connection lost")

        with patch("atendimento.services.message_service._release_dedup") as mock_release:
            with pytest.raises(RuntimeError):
                persist_inbound(db_session, conversation, contact, inbound())

        mock_release.assert_called_once_with(conversation.id, "ABC123")


class TestDedupCache:
    def test_no_redis_always_claims(self):
        with patch("atendimento.services.message_service._get_dedup_client", return_value=None):
            assert _claim_dedup(uuid4(), "ABC") is True

    def test_redis_error_falls_back_to_database(self):
        client = Mock()
        client.set.side_effect = redis.ConnectionError("down")
        with patch("atendimento.services.message_service._get_dedup_client", return_value=client):
            assert _claim_dedup(uuid4(), "ABC") is True

    def test_seen_key(self):
        client = Mock()
        client.set.return_value = None
        with patch("atendimento.services.message_service._get_dedup_client", return_value=client):
            assert _claim_dedup(uuid4(), "ABC") is False
        assert client.set.call_args.kwargs["nx"] is True


class TestOutbound:
    def test_row_without_provider_id(self, db_session, conversation):
        operator_id = uuid4()

        message = persist_outbound(db_session, conversation, "Olá", operator_id=operator_id)

        assert isinstance(message, Message)
        assert message.direction == MessageDirection.OUTBOUND.value
        assert message.operator_id == operator_id
        assert message.read is True
        db_session.add.assert_called_once_with(message)

    def test_provider_id_is_upserted(self, db_session, conversation):
        stored = SimpleNamespace(id=uuid4())
        db_session.execute.return_value.scalar_one.return_value = stored.id
        db_session.query.return_value.filter.return_value.first.return_value = stored

        message = persist_outbound(db_session, conversation, "Olá", external_id="W1", sent_by_ai=True)

        assert message is stored
        sql = str(db_session.execute.call_args_list[0][0][0].compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT (conversa_id, external_id) DO UPDATE SET" in sql
        assert "enviada_por_ia = " in sql
        assert "enviada_por_dispositivo = " in sql
        assert "RETURNING mensagens.id" in sql
        db_session.add.assert_not_called()

    def test_echo_stored_first_is_claimed(self, db_session, conversation):
        # the fromMe webhook for this send was stored before the send returned
        echo = SimpleNamespace(id=uuid4(), external_id="W1")
        db_session.execute.return_value.scalar_one.return_value = echo.id
        db_session.query.return_value.filter.return_value.first.return_value = echo
        db_session.flush.side_effect = IntegrityError("INSERT", {}, Exception("uq_mensagens_conversa_external_id"))

        assert persist_outbound(db_session, conversation, "Olá", external_id="W1", sent_by_ai=True) is echo
        db_session.flush.assert_not_called()

    def test_system_note_is_internal(self, db_session, conversation):
        message = persist_system_message(db_session, conversation, "🏷️ Tag", {"acao_tipo": "tag"})

        assert message.message_type == MessageType.SYSTEM.value
        assert message.message_metadata == {"interno": True, "acao_tipo": "tag"}
        db_session.execute.assert_not_called()


class TestSummarize:
    def test_long_content_is_cut(self):
        summary = summarize("a" * (SUMMARY_MAX_CHARS + 50))
        assert len(summary) == SUMMARY_MAX_CHARS
        assert summary.endswith("…")


class TestSoftDelete:
    @pytest.fixture
    def sent(self, conversation):
        return SimpleNamespace(
            id=uuid4(),
            conversation_id=conversation.id,
            direction=MessageDirection.OUTBOUND.value,
            message_type=MessageType.TEXT.value,
            external_id="W1",
            deleted=False,
            message_metadata={},
        )

    def _db(self, db_session, message, conversation):
        db_session.query.return_value.filter.return_value.first.side_effect = [message, conversation]
        return db_session

    def test_unknown_message(self, db_session):
        db_session.query.return_value.filter.return_value.first.return_value = None
        assert soft_delete_message(db_session, uuid4()).error_code == "message_not_found"

    def test_inbound_cannot_be_deleted(self, db_session, sent):
        sent.direction = MessageDirection.INBOUND.value
        db_session.query.return_value.filter.return_value.first.return_value = sent
        assert soft_delete_message(db_session, sent.id).error_code == "not_outbound"

    @patch("atendimento.services.message_service.EvolutionClient")
    def test_deleted_for_everyone(self, mock_client, db_session, sent, conversation, connection, contact):
        conversation.connection = connection
        conversation.contact = contact
        operator_id = uuid4()

        result = soft_delete_message(self._db(db_session, sent, conversation), sent.id, operator_id)

        assert result.ok
        assert sent.deleted is True
        assert sent.deleted_by == operator_id
        assert sent.message_metadata["deletada_para_todos"] is True
        mock_client.for_connection.return_value.delete_message_for_everyone.assert_called_once_with(
            "W1", f"{contact.phone}@s.whatsapp.net"
        )

    @patch("atendimento.services.message_service.EvolutionClient")
    def test_remote_failure_keeps_local_delete(self, mock_client, db_session, sent, conversation, connection, contact):
        conversation.connection = connection
        conversation.contact = contact
        mock_client.for_connection.return_value.delete_message_for_everyone.side_effect = ProviderError(
            "evolution", 400, "too old"
        )

        result = soft_delete_message(self._db(db_session, sent, conversation), sent.id)

        assert result.ok
        assert sent.deleted is True
        assert sent.message_metadata["deletada_para_todos"] is False
