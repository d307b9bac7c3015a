"""
Session persistence.

One JSON snapshot per session id, replaced atomically on every save.
"""

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from language_coach.session import Session

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "language_web_state_v2"

# Session ids are used as file names
SAFE_ID_PATTERN = re.compile(r"[^A-Za-z0-9_\-]")


class SessionRepository:
    """
    Storage interface for session snapshots.

    load() returns None when nothing usable is stored; the caller decides
    what a fresh session looks like.
    """

    def load(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    def save(self, session_id: str, session: Session) -> None:
        raise NotImplementedError

    def delete(self, session_id: str) -> None:
        raise NotImplementedError


class JsonFileSessionRepository(SessionRepository):
    """
    JSON file per session.

    Layout:
        state/
            language_web_state_v2__default.json
            language_web_state_v2__a3f7e2b9.json

    Design:
    - Atomic replace (temp file + os.replace), never a half-written snapshot
    - Missing or corrupt file loads as None (logged, never raised)
    """

    def __init__(self, base_dir: str = "state", namespace: str = DEFAULT_NAMESPACE):
        """
        Args:
            base_dir: Directory holding the snapshots (created if missing)
            namespace: File name prefix (bump to invalidate old snapshots)
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.namespace = namespace
        logger.info(f"JsonFileSessionRepository initialized: {self.base_dir} ({namespace})")

    def _path_for(self, session_id: str) -> Path:
        safe_id = SAFE_ID_PATTERN.sub("_", str(session_id)) or "default"
        return self.base_dir / f"{self.namespace}__{safe_id}.json"

    def load(self, session_id: str) -> Optional[Session]:
        path = self._path_for(session_id)

        if not path.exists():
            logger.info(f"No saved session for {session_id}")
            return None

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return Session.from_json(data)
        except (OSError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(f"Ignoring unreadable session file {path.name}: {e}")
            return None

    def save(self, session_id: str, session: Session) -> None:
        path = self._path_for(session_id)

        fd, tmp_name = tempfile.mkstemp(dir=self.base_dir, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(session.to_json(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except Exception:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

        logger.debug(f"Saved session {session_id}: {path.name}")

    def delete(self, session_id: str) -> None:
        path = self._path_for(session_id)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted session {session_id}")


class InMemorySessionRepository(SessionRepository):
    """Snapshot store for tests and the console harness"""

    def __init__(self):
        self._snapshots: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def load(self, session_id: str) -> Optional[Session]:
        with self._lock:
            data = self._snapshots.get(session_id)
        if data is None:
            return None
        try:
            return Session.from_json(json.loads(json.dumps(data)))
        except ValueError as e:
            logger.warning(f"Ignoring corrupt in-memory session {session_id}: {e}")
            return None

    def save(self, session_id: str, session: Session) -> None:
        snapshot = session.to_json()
        with self._lock:
            self._snapshots[session_id] = snapshot

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._snapshots.pop(session_id, None)
