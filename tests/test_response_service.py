from types import SimpleNamespace
from unittest.mock import patch

import pytest

from atendimento.services.action_service import ORIGIN_AI
from atendimento.services.ai_service import AIReply, ReplyReason
from atendimento.services.directives import Directive, DirectiveKind
from atendimento.services.response_service import CycleReason, run_response_cycle
from atendimento.services.result import Result


@pytest.fixture
def trigger():
    return SimpleNamespace(id="m1", content="Quero um orçamento")


@pytest.fixture
def pipeline():
    """generate -> deliver -> execute, each patched where the cycle looks them up."""
    with patch("atendimento.services.response_service.generate_response") as generate, patch(
        "atendimento.services.response_service.deliver"
    ) as deliver, patch("atendimento.services.response_service.execute_directives") as execute:
        deliver.return_value = Result.success(SimpleNamespace(id="out-1"))
        execute.return_value = []
        yield SimpleNamespace(generate=generate, deliver=deliver, execute=execute)


class TestRunResponseCycle:
    def test_nothing_to_answer(self, db_session, conversation, pipeline):
        with patch("atendimento.services.response_service.get_latest_inbound", return_value=None):
            result = run_response_cycle(db_session, conversation)

        assert result.reason == CycleReason.NO_TRIGGER
        pipeline.generate.assert_not_called()

    def test_reply_delivered_and_committed(self, db_session, conversation, trigger, pipeline):
        pipeline.generate.return_value = Result.success(AIReply(should_respond=True, text="Claro!"))

        result = run_response_cycle(db_session, conversation, trigger=trigger)

        assert result.responded
        assert result.reason == ReplyReason.GENERATED
        content = pipeline.deliver.call_args[0][2]
        assert content.text == "Claro!"
        assert pipeline.deliver.call_args.kwargs["sent_by_ai"] is True
        db_session.commit.assert_called_once()
        pipeline.execute.assert_not_called()

    def test_reply_goes_out_before_directives(self, db_session, conversation, trigger, pipeline):
        order = []
        pipeline.deliver.side_effect = lambda *a, **k: order.append("deliver") or Result.success(SimpleNamespace(id="out"))
        pipeline.execute.side_effect = lambda *a, **k: order.append("execute") or []
        directives = [Directive(DirectiveKind.TRANSFER_TO_HUMAN)]
        pipeline.generate.return_value = Result.success(
            AIReply(should_respond=True, text="Vou te passar para a equipe", directives=directives)
        )

        run_response_cycle(db_session, conversation, trigger=trigger, depth=1)

        assert order == ["deliver", "execute"]
        args, kwargs = pipeline.execute.call_args
        assert args[2] == directives
        assert kwargs == {"origin": ORIGIN_AI, "depth": 1}

    def test_actions_only_sends_nothing(self, db_session, conversation, trigger, pipeline):
        pipeline.generate.return_value = Result.success(
            AIReply(should_respond=False, directives=[Directive(DirectiveKind.TAG, "vip")], reason=ReplyReason.ACTIONS_ONLY)
        )

        result = run_response_cycle(db_session, conversation, trigger=trigger)

        pipeline.deliver.assert_not_called()
        pipeline.execute.assert_called_once()
        assert result.reason == ReplyReason.ACTIONS_ONLY

    def test_failed_delivery_still_runs_directives(self, db_session, conversation, trigger, pipeline):
        pipeline.deliver.return_value = Result.failure("down", "send_failed")
        pipeline.generate.return_value = Result.success(
            AIReply(should_respond=True, text="Oi", directives=[Directive(DirectiveKind.TAG, "vip")])
        )

        result = run_response_cycle(db_session, conversation, trigger=trigger)

        assert result.reason == CycleReason.DELIVERY_FAILED
        assert not result.responded
        pipeline.execute.assert_called_once()

    def test_generation_failure(self, db_session, conversation, trigger, pipeline):
        pipeline.generate.return_value = Result.failure("OpenAI indisponível", "provider_error")

        result = run_response_cycle(db_session, conversation, trigger=trigger)

        assert result.reason == "provider_error"
        pipeline.deliver.assert_not_called()
        db_session.commit.assert_not_called()
