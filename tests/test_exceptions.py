from __future__ import annotations

from localfm.utils.exceptions import (
    ConfigurationError,
    EmptyConversation,
    EncodingFailure,
    GenerationFailure,
    InvalidInput,
    InvalidSchema,
    LocalFMException,
    Unavailable,
)


def test_base_exception_formats_code_and_context():
    exc = LocalFMException("boom", "E_TEST", {"k": 1})

    assert str(exc) == "[E_TEST] boom | Context: {'k': 1}"
    assert exc.to_dict() == {
        "error_code": "E_TEST",
        "message": "boom",
        "context": {"k": 1},
        "retryable": False,
        "type": "LocalFMException",
    }


def test_unavailable_keeps_reason_text_verbatim():
    exc = Unavailable("Start the local model server first.", reason="feature_disabled")

    assert str(exc) == "Start the local model server first."
    assert exc.reason == "feature_disabled"
    assert exc.error_code == "UNAVAILABLE"
    assert exc.retryable is False


def test_invalid_input_family():
    assert isinstance(InvalidSchema("bad"), InvalidInput)
    assert InvalidSchema("bad").error_code == "INVALID_SCHEMA"

    empty = EmptyConversation()
    assert isinstance(empty, InvalidInput)
    assert empty.context == {"field": "messages"}
    assert InvalidInput("x", field="temperature").context == {"field": "temperature"}


def test_generation_failure_is_retryable():
    exc = GenerationFailure("context window exceeded", model_name="m")

    assert exc.retryable is True
    assert exc.to_dict()["retryable"] is True
    assert exc.context == {"model_name": "m"}


def test_encoding_failure_truncates_raw_text_in_context():
    raw = "x" * 500
    exc = EncodingFailure("not json", raw_text=raw)

    assert exc.raw_text == raw
    assert len(exc.context["raw_text"]) == 200


def test_configuration_error_code():
    assert ConfigurationError("bad").error_code == "CONFIG_ERROR"
