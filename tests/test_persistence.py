"""
Unit tests for session persistence

JSON file repository (atomic replace, tolerant load) and the in-memory store
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from language_coach.contracts import Exercise, ProblemType, Translation
from language_coach.persistence import InMemorySessionRepository, JsonFileSessionRepository
from language_coach.session import ConversationMode, Session


def make_session():
    return Session(
        conversation_mode=ConversationMode.MODE_CHAT,
        onboarding_step=2,
        messages=[{"role": "assistant", "content": "¡Hola!"}, {"role": "user", "content": "hola"}],
        active=Exercise(
            enabled=1,
            exercise_id="t1",
            problem_type=ProblemType.TRANSLATION,
            translation=Translation("en->es", "Good night")
        ),
        attempt="Buenas noches"
    )


# ========================
# JSON file repository
# ========================

def test_save_and_load_round_trip(tmp_path):
    repo = JsonFileSessionRepository(str(tmp_path))
    session = make_session()

    repo.save("abc", session)
    loaded = repo.load("abc")

    assert loaded.to_json() == session.to_json()


def test_file_name_uses_namespace(tmp_path):
    repo = JsonFileSessionRepository(str(tmp_path), namespace="ns_test")
    repo.save("abc", make_session())

    assert (tmp_path / "ns_test__abc.json").exists()
    # No temp files left behind
    assert [p.name for p in tmp_path.iterdir()] == ["ns_test__abc.json"]


def test_unsafe_session_id_stays_in_base_dir(tmp_path):
    repo = JsonFileSessionRepository(str(tmp_path / "state"))
    repo.save("../../etc/passwd", make_session())

    assert len(list((tmp_path / "state").glob("*.json"))) == 1
    assert repo.load("../../etc/passwd") is not None


def test_missing_session_loads_none(tmp_path):
    assert JsonFileSessionRepository(str(tmp_path)).load("nobody") is None


def test_corrupt_file_loads_none(tmp_path):
    repo = JsonFileSessionRepository(str(tmp_path))
    (tmp_path / "language_web_state_v2__broken.json").write_text("{not json", encoding="utf-8")

    assert repo.load("broken") is None


def test_non_object_snapshot_loads_none(tmp_path):
    repo = JsonFileSessionRepository(str(tmp_path))
    (tmp_path / "language_web_state_v2__list.json").write_text("[1, 2, 3]", encoding="utf-8")

    assert repo.load("list") is None


def test_wrongly_typed_fields_load_none(tmp_path):
    repo = JsonFileSessionRepository(str(tmp_path))
    path = tmp_path / "language_web_state_v2__s.json"

    for snapshot in [
        '{"conversation_mode": ["chat"]}',
        '{"messages": 5}',
        '{"grade": "x"}',
        '{"active": ["not", "an", "exercise"]}',
    ]:
        path.write_text(snapshot, encoding="utf-8")
        assert repo.load("s") is None, snapshot


def test_delete(tmp_path):
    repo = JsonFileSessionRepository(str(tmp_path))
    repo.save("abc", make_session())
    repo.delete("abc")

    assert repo.load("abc") is None


# ========================
# In-memory repository
# ========================

def test_in_memory_round_trip_is_isolated():
    repo = InMemorySessionRepository()
    repo.save("s", make_session())

    loaded = repo.load("s")
    loaded.messages.append({"role": "user", "content": "mutated"})

    assert len(repo.load("s").messages) == 2
    assert repo.load("other") is None
