"""
Flask API tests

Service wired with a mock LLM and in-memory repository; no network
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

import app as app_module
from language_coach.core.conversation_controller import ConversationController
from language_coach.core.prompt_context_builder import PromptContextBuilder
from language_coach.core.response_normalizer import ResponseNormalizer
from language_coach.persistence import InMemorySessionRepository
from language_coach.service import ConversationService
from language_coach.session import ConversationMode, Session


PROMPTS = {"system_lines": ["Coach for {{targetLanguage}}"]}
HEADERS = {"X-Session-Id": "web"}


# ========================
# Mock Modules
# ========================

class MockLLMClient:
    """Returns queued replies; Exception items are raised"""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []

    def generate(self, system_prompt, history, user_content, schema):
        self.calls.append(user_content)
        item = self.replies.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class ExplodingService:
    def handle(self, session_id, command):
        raise RuntimeError("boom")


def reply(response, proposal=None, clear_active=0):
    return {"response": response, "flags": {}, "clear_active": clear_active, "proposal": proposal, "poll": None}


def mc_proposal(proposal_id="p_mc"):
    return {
        "enabled": 1,
        "proposal_id": proposal_id,
        "problem_type": "multiple_choice",
        "multiple_choice": {
            "prompt": "Pick the greeting",
            "options": [{"id": "a", "text": "Hola"}, {"id": "b", "text": "Adios"}],
            "allow_multiple": False,
            "correct_option_ids": ["a"]
        }
    }


@pytest.fixture
def wired(monkeypatch):
    """(test client, mock llm, repository) with a chat-mode session seeded"""
    llm = MockLLMClient()
    controller = ConversationController(llm, PromptContextBuilder(PROMPTS), ResponseNormalizer(), {})
    repository = InMemorySessionRepository()
    repository.save("web", Session(
        conversation_mode=ConversationMode.MODE_CHAT,
        onboarding_step=2,
        messages=[{"role": "assistant", "content": "¡Hola!"}]
    ))
    monkeypatch.setattr(app_module, "service", ConversationService(controller, repository))
    return app_module.app.test_client(), llm, repository


# ========================
# Session
# ========================

def test_get_session_for_unknown_id_starts_onboarding(wired):
    client, llm, repo = wired

    response = client.get('/api/session', headers={"X-Session-Id": "someone-else"})
    data = response.get_json()

    assert response.status_code == 200
    assert data['success'] is True
    assert data['busy'] is False
    assert data['session']['conversation_mode'] == "onboarding"
    assert llm.calls == []


def test_new_conversation_resets(wired):
    client, llm, repo = wired

    data = client.post('/api/new', headers=HEADERS).get_json()

    assert data['success'] is True
    assert data['session']['onboarding_step'] == 0


# ========================
# Chat + exercise flow
# ========================

def test_message_then_exercise_round_trip(wired):
    client, llm, repo = wired
    llm.replies = [
        reply("¡Vamos a practicar!", proposal=mc_proposal()),
        reply("¡Muy bien!")
    ]

    data = client.post('/api/message', json={"text": "quiero practicar"}, headers=HEADERS).get_json()
    assert data['success'] is True
    assert data['new_messages'][0] == {"role": "user", "content": "quiero practicar"}
    assert data['session']['pending_proposal']['proposal_id'] == "p_mc"

    data = client.post('/api/proposals/p_mc/start', headers=HEADERS).get_json()
    assert data['session']['active']['exercise_id'] == "p_mc"

    data = client.post('/api/exercise/toggle', json={"option_id": "a"}, headers=HEADERS).get_json()
    assert data['session']['attempt'] == ["a"]

    data = client.post('/api/exercise/submit', headers=HEADERS).get_json()
    assert data['grade']['all_correct'] is True
    assert data['session']['active'] is None
    assert len(llm.calls) == 2

    # Saved between requests
    assert repo.load("web").active is None


def test_model_failure_is_reported_in_body(wired):
    client, llm, repo = wired
    llm.replies = [Exception("upstream down")]

    response = client.post('/api/message', json={"text": "hola"}, headers=HEADERS)
    data = response.get_json()

    assert response.status_code == 200
    assert data['success'] is False
    assert "upstream down" in data['error']
    assert data['session']['messages'][-1]['error'] is True


# ========================
# Error mapping
# ========================

def test_missing_field_is_bad_request(wired):
    client, llm, repo = wired

    response = client.post('/api/message', json={}, headers=HEADERS)

    assert response.status_code == 400
    assert "text" in response.get_json()['error']


def test_illegal_command_is_conflict(wired):
    client, llm, repo = wired

    response = client.post('/api/exercise/submit', headers=HEADERS)
    data = response.get_json()

    assert response.status_code == 409
    assert data['success'] is False
    assert data['command_type'] == "SubmitExercise"


def test_unknown_route_is_still_404(wired):
    client, llm, repo = wired

    assert client.get('/api/nothing-here').status_code == 404


def test_unexpected_error_is_json_500(monkeypatch):
    monkeypatch.setattr(app_module, "service", ExplodingService())
    client = app_module.app.test_client()

    response = client.post('/api/exercise/clear', headers=HEADERS)

    assert response.status_code == 500
    assert response.get_json() == {'success': False, 'error': 'boom'}
