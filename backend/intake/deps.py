"""
Service wiring for the API.

Services are created lazily on first use. Routes receive them through the
dependency functions below, which tests replace with app.dependency_overrides.
"""
import logging
from collections import OrderedDict
from threading import Lock
from typing import Dict, Optional

from fastapi import Depends, HTTPException

from intake.config import Config
from intake.services.form_session import FormSession
from intake.services.recognition_client import RecognitionClient, create_recognition_client
from intake.services.record_store import RecordStore, create_stores
from intake.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

rate_limiter = RateLimiter()

_recognition_client: Optional[RecognitionClient] = None
_stores: Optional[Dict[str, RecordStore]] = None
_init_lock = Lock()


class SessionRegistry:
    """
    In-memory registry of open form sessions.

    Holds at most max_sessions; adding past the limit drops the least
    recently used session.
    """

    def __init__(self, max_sessions: Optional[int] = None):
        self.max_sessions = max_sessions or Config.MAX_OPEN_SESSIONS
        self._sessions: "OrderedDict[str, FormSession]" = OrderedDict()
        self._lock = Lock()

    def add(self, session: FormSession) -> FormSession:
        with self._lock:
            self._sessions[session.session_id] = session
            while len(self._sessions) > self.max_sessions:
                evicted_id, _ = self._sessions.popitem(last=False)
                logger.info(f"Dropped least recently used form session {evicted_id}")
        return session

    def get(self, session_id: str) -> Optional[FormSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._sessions.move_to_end(session_id)
            return session

    def remove(self, session_id: str) -> bool:
        """Close a session. Returns False if it was not open."""
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


session_registry = SessionRegistry()


def init_services():
    """Create the recognition client and stores if they do not exist yet."""
    global _recognition_client, _stores
    with _init_lock:
        if _recognition_client is None:
            _recognition_client = create_recognition_client(rate_limiter=rate_limiter)
            logger.info(f"Recognition client: {_recognition_client.service_name}")
        if _stores is None:
            _stores = create_stores()
            logger.info(f"Record stores: {', '.join(_stores)}")


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def get_recognition_client() -> RecognitionClient:
    init_services()
    return _recognition_client


def get_record_store() -> RecordStore:
    init_services()
    return _stores['patient_forms']


def get_todo_store() -> RecordStore:
    init_services()
    return _stores['todos']


def get_session_registry() -> SessionRegistry:
    return session_registry


def get_form_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> FormSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Form session not found")
    return session
