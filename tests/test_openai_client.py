import json
import logging
import os
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from category_mapper.exception import ConfigError, CustomException, OracleContractError
from category_mapper.llm.openai_client import LEAF_MARKER, OpenAIClient, format_options
from category_mapper.models import SelectionOption, build_selection_model

CONFIG = {"llm": {"navigation_model": "gpt-4o-mini", "temperature": 0.0, "max_output_tokens": 64}}

OPTIONS = [
    SelectionOption(name="Computers", is_leaf=True),
    SelectionOption(name="Phones", is_leaf=False),
    SelectionOption(name="Other (use parent category)", is_leaf=True),
]


def _response(payload):
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return MagicMock(output_text=text, usage=MagicMock(input_tokens=10, output_tokens=5, total_tokens=15))


@pytest.fixture
def mock_openai():
    return MagicMock()


@pytest.fixture
def client(mock_openai):
    return OpenAIClient(client=mock_openai, config=CONFIG)


def test_select_returns_offered_name(client, mock_openai):
    mock_openai.responses.create.return_value = _response({"category": "Phones"})

    with client.session() as session:
        choice = session.select("iPhone 15", OPTIONS, "child category")

    assert choice == "Phones"


def test_select_sends_enum_constrained_schema(client, mock_openai):
    mock_openai.responses.create.return_value = _response({"category": "Computers"})

    with client.session() as session:
        session.select("MacBook", OPTIONS, "child category")

    request = mock_openai.responses.create.call_args.kwargs
    assert request["model"] == "gpt-4o-mini"
    assert request["temperature"] == 0.0
    assert request["max_output_tokens"] == 64

    fmt = request["text"]["format"]
    assert fmt["type"] == "json_schema"
    assert fmt["strict"] is True
    schema = fmt["schema"]
    assert schema["properties"]["category"]["enum"] == [o.name for o in OPTIONS]
    assert schema["required"] == ["category"]
    assert schema["additionalProperties"] is False

    prompt = request["input"][-1]["content"]
    assert '"MacBook"' in prompt
    assert f"1. Computers{LEAF_MARKER}" in prompt
    assert "2. Phones\n" in prompt


def test_session_keeps_transcript_between_turns(client, mock_openai):
    mock_openai.responses.create.side_effect = [
        _response({"category": "Computers"}),
        _response({"category": "Phones"}),
    ]

    with client.session() as session:
        session.select("Pixel", OPTIONS, "top-level category")
        session.select("Pixel", OPTIONS, "child category")

    second_input = mock_openai.responses.create.call_args_list[1].kwargs["input"]
    assert [m["role"] for m in second_input] == ["user", "assistant", "user"]
    assert second_input[1]["content"] == json.dumps({"category": "Computers"})


def test_session_reports_token_usage_on_close(client, mock_openai, caplog):
    mock_openai.responses.create.return_value = _response({"category": "Computers"})

    with caplog.at_level(logging.INFO, logger="category_mapper.llm.openai_client"):
        with client.session() as session:
            session.select("Pixel", OPTIONS, "top-level category")
            session.select("Pixel", OPTIONS, "child category")

    assert session.calls == 2
    assert session.usage_tokens == 30
    assert "2 calls, 30 tokens" in caplog.text


def test_new_session_starts_with_empty_transcript(client, mock_openai):
    mock_openai.responses.create.return_value = _response({"category": "Computers"})

    with client.session() as first:
        first.select("A", OPTIONS, "child category")
    with client.session() as second:
        second.select("B", OPTIONS, "child category")

    last_input = mock_openai.responses.create.call_args_list[-1].kwargs["input"]
    assert len(last_input) == 1
    assert first._history == []


def test_answer_outside_option_set_is_contract_error(client, mock_openai):
    mock_openai.responses.create.return_value = _response({"category": "C"})

    with client.session() as session:
        with pytest.raises(OracleContractError):
            session.select("Something", OPTIONS, "child category")


def test_case_mismatch_is_not_repaired(client, mock_openai):
    mock_openai.responses.create.return_value = _response({"category": "phones"})

    with client.session() as session:
        with pytest.raises(OracleContractError):
            session.select("Something", OPTIONS, "child category")


def test_unparsable_answer_is_contract_error(client, mock_openai):
    mock_openai.responses.create.return_value = _response("I think Phones")

    with client.session() as session:
        with pytest.raises(OracleContractError):
            session.select("Something", OPTIONS, "child category")


def test_duplicate_or_empty_options_rejected_before_calling(client, mock_openai):
    duplicated = [SelectionOption(name="Phones"), SelectionOption(name="Phones")]

    with client.session() as session:
        with pytest.raises(OracleContractError, match="distinct"):
            session.select("x", duplicated, "child category")
        with pytest.raises(OracleContractError, match="empty"):
            session.select("x", [], "child category")

    mock_openai.responses.create.assert_not_called()


def test_generate_without_model_returns_text(client, mock_openai):
    mock_openai.responses.create.return_value = _response("plain answer")

    response = client.generate("Say something")

    assert response.content == "plain answer"
    assert response.provider == "OpenAIClient"
    assert response.total_tokens == 15
    assert "text" not in mock_openai.responses.create.call_args.kwargs


def test_generate_wraps_api_failure(client, mock_openai):
    mock_openai.responses.create.side_effect = Exception("boom")

    with pytest.raises(CustomException):
        client.generate("Say something")


def test_missing_api_key():
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(ConfigError):
            OpenAIClient(config=CONFIG)


def test_format_options():
    text = format_options(OPTIONS)
    assert text.splitlines() == [
        f"1. Computers{LEAF_MARKER}",
        "2. Phones",
        f"3. Other (use parent category){LEAF_MARKER}",
    ]


def test_selection_model_rejects_unlisted_values():
    model = build_selection_model(["A", "B"], "child category")

    assert model(category="A").category == "A"
    with pytest.raises(ValidationError):
        model(category="C")
    with pytest.raises(ValidationError):
        model(category="A", extra="nope")
