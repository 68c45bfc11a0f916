"""
Session stores.

A store persists SessionState values under their session id. Every write is
a compare-and-swap on SessionState.version:

    save(state) succeeds only if the stored version equals state.version;
    the stored copy then carries version + 1.

Two requests racing on the same session therefore cannot both commit a
navigation step; the loser gets StaleSessionError.

Stores hand out copies. Mutating a loaded state never touches the stored
value until it is saved.
"""

import copy
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Union

from surveyflow.serialization import session_from_json, session_to_json
from surveyflow.session import SessionState

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """Raised when no session is stored under the requested id."""
    pass


class StaleSessionError(RuntimeError):
    """Raised when a save loses the compare-and-swap race."""
    pass


class SessionStore(ABC):
    """Persistence interface for session state."""

    @abstractmethod
    def create(self, state: SessionState) -> SessionState:
        """Store a new session. Raises ValueError if the id is taken."""

    @abstractmethod
    def load(self, session_id: str) -> SessionState:
        """Return a copy of the stored session."""

    @abstractmethod
    def save(self, state: SessionState) -> SessionState:
        """Commit state if its version is current; return the stored copy."""

    @abstractmethod
    def exists(self, session_id: str) -> bool:
        ...


class InMemorySessionStore(SessionStore):
    """Process-local store guarded by a lock."""

    def __init__(self):
        self._sessions: Dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def create(self, state: SessionState) -> SessionState:
        with self._lock:
            if state.session_id in self._sessions:
                raise ValueError(f"Session already exists: {state.session_id}")
            stored = copy.deepcopy(state)
            stored.version = 0
            self._sessions[state.session_id] = stored
            return copy.deepcopy(stored)

    def load(self, session_id: str) -> SessionState:
        with self._lock:
            try:
                return copy.deepcopy(self._sessions[session_id])
            except KeyError:
                raise SessionNotFoundError(session_id)

    def save(self, state: SessionState) -> SessionState:
        with self._lock:
            current = self._sessions.get(state.session_id)
            if current is None:
                raise SessionNotFoundError(state.session_id)
            if current.version != state.version:
                logger.warning(
                    "Rejected stale write to session %s (version %d, stored %d)",
                    state.session_id, state.version, current.version,
                )
                raise StaleSessionError(
                    f"Session {state.session_id} changed since version {state.version}"
                )
            stored = copy.deepcopy(state)
            stored.version = current.version + 1
            self._sessions[state.session_id] = stored
            return copy.deepcopy(stored)

    def exists(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions


class JsonFileSessionStore(SessionStore):
    """
    One JSON file per session in a directory.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace. The lock serialises writers within one process.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, session_id: str) -> Path:
        return self.directory / f"{session_id}.json"

    def _read(self, session_id: str) -> SessionState:
        path = self._path(session_id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise SessionNotFoundError(session_id)
        return session_from_json(text)

    def _write(self, state: SessionState) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(session_to_json(state))
            os.replace(tmp, self._path(state.session_id))
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def create(self, state: SessionState) -> SessionState:
        with self._lock:
            if self._path(state.session_id).exists():
                raise ValueError(f"Session already exists: {state.session_id}")
            stored = copy.deepcopy(state)
            stored.version = 0
            self._write(stored)
            return stored

    def load(self, session_id: str) -> SessionState:
        with self._lock:
            return self._read(session_id)

    def save(self, state: SessionState) -> SessionState:
        with self._lock:
            current = self._read(state.session_id)
            if current.version != state.version:
                logger.warning(
                    "Rejected stale write to session %s (version %d, stored %d)",
                    state.session_id, state.version, current.version,
                )
                raise StaleSessionError(
                    f"Session {state.session_id} changed since version {state.version}"
                )
            stored = copy.deepcopy(state)
            stored.version = current.version + 1
            self._write(stored)
            return stored

    def exists(self, session_id: str) -> bool:
        return self._path(session_id).exists()
