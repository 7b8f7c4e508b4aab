import pytest

from atendimento.services.result import Result, ResultError


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success("sent")
        assert result.ok is True
        assert result.value == "sent"
        assert result.error is None

    def test_success_with_different_types(self):
        assert Result.success(42).value == 42
        assert Result.success({"conversa_id": "abc"}).value == {"conversa_id": "abc"}


class TestResultFailure:
    def test_failure_creates_not_ok_result(self):
        result = Result.failure("Conexão não encontrada", "connection_not_found")
        assert result.ok is False
        assert result.error == "Conexão não encontrada"
        assert result.error_code == "connection_not_found"
        assert result.value is None

    def test_failure_default_code(self):
        assert Result.failure("boom").error_code == "unknown"


class TestResultUnwrap:
    def test_unwrap_or_returns_value_on_success(self):
        assert Result.success("actual").unwrap_or("default") == "actual"

    def test_unwrap_or_returns_default_on_failure(self):
        assert Result.failure("Error", "code").unwrap_or("default") == "default"

    def test_unwrap_or_with_none_value(self):
        assert Result.success(None).unwrap_or("default") is None

    def test_unwrap_raises_with_code(self):
        with pytest.raises(ResultError) as exc_info:
            Result.failure("no key", "no_credential").unwrap()
        assert exc_info.value.code == "no_credential"


class TestResultToDict:
    def test_success_payload(self):
        assert Result.success("ok").to_dict() == {"ok": True, "value": "ok"}

    def test_failure_payload(self):
        assert Result.failure("Etapa não encontrada", "stage_not_found").to_dict() == {
            "ok": False,
            "error": "Etapa não encontrada",
            "error_code": "stage_not_found",
        }
