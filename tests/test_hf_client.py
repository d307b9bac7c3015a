"""
Unit tests for local-model prompt assembly

No model is loaded; the client is built without __init__ and given a fake tokenizer
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

pytest.importorskip("torch")
pytest.importorskip("transformers")

from language_coach.utils.hf_client import SCHEMA_INSTRUCTION, HuggingFaceClient


# ========================
# Mock Modules
# ========================

class MockTokenizer:
    """Renders messages as 'role|content' lines; can reject the system role"""

    def __init__(self, chat_template="template", reject_system=False):
        self.chat_template = chat_template
        self.reject_system = reject_system
        self.rendered = []

    def apply_chat_template(self, messages, tokenize=False, add_generation_prompt=False):
        if self.reject_system and any(m["role"] == "system" for m in messages):
            raise ValueError("Conversation roles must alternate user/assistant")
        self.rendered.append(messages)
        return "\n".join(f"{m['role']}|{m['content']}" for m in messages)


def create_client(tokenizer):
    client = object.__new__(HuggingFaceClient)
    client.tokenizer = tokenizer
    return client


HISTORY = [
    {"role": "assistant", "content": "¡Hola!"},
    {"role": "user", "content": "hola"},
    {"role": "assistant", "content": "¿Qué tal?"}
]
SCHEMA = {"type": "object"}


# ========================
# Tests
# ========================

def test_chat_template_gets_system_history_and_user():
    tokenizer = MockTokenizer()
    client = create_client(tokenizer)

    client._build_prompt("Coach", HISTORY, "bien", SCHEMA)

    messages = tokenizer.rendered[0]
    assert messages[0]["role"] == "system"
    assert messages[0]["content"].startswith("Coach")
    assert SCHEMA_INSTRUCTION in messages[0]["content"]
    assert '{"type": "object"}' in messages[0]["content"]
    assert messages[1:-1] == HISTORY
    assert messages[-1] == {"role": "user", "content": "bien"}


def test_rejected_system_role_is_merged_into_first_user_turn():
    tokenizer = MockTokenizer(reject_system=True)
    client = create_client(tokenizer)

    client._build_prompt("Coach", HISTORY, "bien", SCHEMA)

    messages = tokenizer.rendered[0]
    assert [m["role"] for m in messages] == ["assistant", "user", "assistant", "user"]
    assert messages[0] == {"role": "assistant", "content": "¡Hola!"}
    assert messages[1]["content"].startswith("Coach")
    assert messages[1]["content"].endswith("\n\nhola")
    assert messages[-1] == {"role": "user", "content": "bien"}


def test_rejected_system_role_without_history():
    tokenizer = MockTokenizer(reject_system=True)
    client = create_client(tokenizer)

    client._build_prompt("Coach", [], "bien", SCHEMA)

    messages = tokenizer.rendered[0]
    assert len(messages) == 1
    assert messages[0]["role"] == "user"
    assert messages[0]["content"].startswith("Coach")
    assert messages[0]["content"].endswith("\n\nbien")


def test_plain_text_prompt_without_chat_template():
    client = create_client(MockTokenizer(chat_template=None))

    prompt = client._build_prompt("Coach", HISTORY[:1], "bien", SCHEMA)

    parts = prompt.split("\n\n")
    assert parts[0] == "SYSTEM: Coach"
    assert "ASSISTANT: ¡Hola!" in parts
    assert parts[-2] == "USER: bien"
    assert parts[-1] == "ASSISTANT:"
