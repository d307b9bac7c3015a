"""
Unit tests for the OpenAI Responses client

Uses a fake client object; no network
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from types import SimpleNamespace

import pytest
from openai import OpenAIError

from language_coach.errors import ConfigError, ModelError
from language_coach.utils.openai_client import OpenAIResponsesClient


# ========================
# Mock Modules
# ========================

class FakeResponses:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


class FakeOpenAI:
    def __init__(self, response=None, error=None):
        self.responses = FakeResponses(response, error)


def completed(output_text="", output=None):
    return SimpleNamespace(status="completed", output_text=output_text, output=output or [], incomplete_details=None)


def call(client):
    return client.generate(
        system_prompt="SYSTEM",
        history=[{"role": "assistant", "content": "¡Hola!"}],
        user_content="hola",
        schema={"type": "object"}
    )


# ========================
# Tests
# ========================

def test_request_shape_and_parsed_output():
    fake = FakeOpenAI(completed('{"response": "¿Qué tal?"}'))
    client = OpenAIResponsesClient(model="gpt-test", client=fake)

    assert call(client) == {"response": "¿Qué tal?"}

    request = fake.responses.requests[0]
    assert request["model"] == "gpt-test"
    assert request["input"][0] == {"role": "system", "content": "SYSTEM"}
    assert request["input"][-1] == {"role": "user", "content": "hola"}
    assert len(request["input"]) == 3
    text_format = request["text"]["format"]
    assert text_format["type"] == "json_schema"
    assert text_format["name"] == "language_response"
    assert text_format["strict"] is True
    assert text_format["schema"] == {"type": "object"}


def test_output_items_used_when_output_text_empty():
    part = SimpleNamespace(type="output_text", text='{"response": "ok"}')
    item = SimpleNamespace(type="message", content=[part])
    client = OpenAIResponsesClient(model="m", client=FakeOpenAI(completed("", [item])))

    assert call(client) == {"response": "ok"}


def test_incomplete_status_carries_reason():
    response = SimpleNamespace(
        status="incomplete",
        incomplete_details=SimpleNamespace(reason="max_output_tokens"),
        output_text="",
        output=[]
    )
    client = OpenAIResponsesClient(model="m", client=FakeOpenAI(response))

    with pytest.raises(ModelError, match="Incomplete model response: max_output_tokens"):
        call(client)


def test_missing_output_text():
    client = OpenAIResponsesClient(model="m", client=FakeOpenAI(completed("   ")))

    with pytest.raises(ModelError, match="No output_text"):
        call(client)


def test_invalid_json():
    client = OpenAIResponsesClient(model="m", client=FakeOpenAI(completed("not json")))

    with pytest.raises(ModelError):
        call(client)


def test_non_object_json():
    client = OpenAIResponsesClient(model="m", client=FakeOpenAI(completed("[1, 2]")))

    with pytest.raises(ModelError):
        call(client)


def test_transport_error_becomes_model_error():
    client = OpenAIResponsesClient(model="m", client=FakeOpenAI(error=OpenAIError("rate limited")))

    with pytest.raises(ModelError, match="rate limited"):
        call(client)


def test_missing_api_key_is_config_error():
    client = OpenAIResponsesClient(model="m")

    assert not client.is_configured()
    with pytest.raises(ConfigError):
        call(client)
