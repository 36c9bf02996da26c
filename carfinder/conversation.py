"""In-memory conversation store with typed turns and TTL sweeping."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Union
from contextlib import contextmanager
import logging
import threading

from carfinder.candidates import Candidate, describe

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FindCars:
    requirements: str
    result: Dict[str, Any]
    kind = "find-cars"


@dataclass(frozen=True)
class RefineSearch:
    feedback: str
    pinned_cars: List[Candidate]
    result: Dict[str, Any]
    kind = "refine-search"


@dataclass(frozen=True)
class AskAboutCar:
    car: Candidate
    question: str
    answer: str
    kind = "ask-about-car"


@dataclass(frozen=True)
class GetAlternatives:
    car: Candidate
    alternatives: List[Candidate]
    kind = "get-alternatives"


@dataclass(frozen=True)
class CompareCars:
    cars: List[Candidate]
    comparison: Dict[str, Any]
    kind = "compare-cars"


TurnPayload = Union[FindCars, RefineSearch, AskAboutCar, GetAlternatives, CompareCars]


@dataclass(frozen=True)
class Turn:
    payload: TurnPayload
    timestamp: datetime

    @property
    def kind(self) -> str:
        return self.payload.kind

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in vars(self.payload).items()}
        return {"type": self.kind, "timestamp": self.timestamp.isoformat(), "data": data}


@dataclass
class _SessionLock:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


@dataclass
class Conversation:
    session_id: str
    created_at: datetime
    updated_at: datetime
    user_language: Optional[str] = None
    requirements: Optional[str] = None
    history: List[Turn] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "user_language": self.user_language,
            "requirements": self.requirements,
            "history": [turn.to_dict() for turn in self.history],
        }


class ConversationStore:
    """Session-keyed conversations.

    A store-level lock guards the map; each session has its own lock held for
    appends and for the sweep's expiry check, so an expiring session is never
    deleted in the middle of an append. A session lock stays registered while
    any thread holds or waits on it, and is dropped once the last user leaves
    a deleted session.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        sweep_interval_seconds: float = 300.0,
        clock: Clock = utcnow,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._conversations: Dict[str, Conversation] = {}
        self._session_locks: Dict[str, _SessionLock] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = None

    @contextmanager
    def session(self, session_id: str) -> Iterator[None]:
        """Hold the session lock for a read-modify-write on one conversation."""
        with self._lock:
            entry = self._session_locks.get(session_id)
            if entry is None:
                entry = _SessionLock()
                self._session_locks[session_id] = entry
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._lock:
                entry.users -= 1
                if entry.users == 0 and session_id not in self._conversations:
                    self._session_locks.pop(session_id, None)

    def get(self, session_id: str) -> Conversation | None:
        with self._lock:
            return self._conversations.get(session_id)

    def get_or_create(self, session_id: str) -> Conversation:
        with self._lock:
            conversation = self._conversations.get(session_id)
            if conversation is None:
                now = self._clock()
                conversation = Conversation(session_id=session_id, created_at=now, updated_at=now)
                self._conversations[session_id] = conversation
            return conversation

    def append(self, session_id: str, payload: TurnPayload, user_language: Optional[str] = None) -> Conversation:
        with self.session(session_id):
            conversation = self.get_or_create(session_id)
            now = self._clock()
            conversation.history.append(Turn(payload=payload, timestamp=now))
            conversation.updated_at = now
            if user_language:
                conversation.user_language = user_language
            if isinstance(payload, FindCars) and not conversation.requirements:
                conversation.requirements = payload.requirements
            return conversation

    def delete(self, session_id: str) -> bool:
        with self.session(session_id):
            with self._lock:
                return self._conversations.pop(session_id, None) is not None

    def all(self) -> List[Conversation]:
        with self._lock:
            return list(self._conversations.values())

    def count(self) -> int:
        with self._lock:
            return len(self._conversations)

    def sweep(self) -> int:
        """Delete conversations older than the TTL. Returns the number removed."""
        removed = 0
        for session_id in [c.session_id for c in self.all()]:
            with self.session(session_id):
                with self._lock:
                    conversation = self._conversations.get(session_id)
                    if conversation is None:
                        continue
                    age = (self._clock() - conversation.created_at).total_seconds()
                    if age <= self.ttl_seconds:
                        continue
                    del self._conversations[session_id]
                    removed += 1
        if removed:
            logger.info(f"Swept {removed} expired conversation(s)")
        return removed

    def start(self) -> None:
        if self._sweeper and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="conversation-sweeper", daemon=True)
        self._sweeper.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._sweeper:
            self._sweeper.join(timeout)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval_seconds):
            try:
                self.sweep()
            except Exception:
                logger.exception("Conversation sweep failed")


def build_context(conversation: Conversation) -> str:
    """Replay the initial request and every turn's suggestions as prompt context."""
    requirements = conversation.requirements or ""
    if not requirements:
        first = next((t.payload for t in conversation.history if isinstance(t.payload, FindCars)), None)
        if first is not None:
            requirements = first.requirements
    if not requirements:
        requirements = "User is looking for a car."

    parts = [f'### Initial Request\n"{requirements}"']
    for index, turn in enumerate(conversation.history):
        payload = turn.payload
        label = f"Refinement Step {index + 1}"
        if isinstance(payload, FindCars):
            cars = _car_listing(payload.result)
            if cars:
                parts.append(f"### Assistant Suggestions (Initial):\n{cars}")
        elif isinstance(payload, RefineSearch):
            if payload.feedback:
                parts.append(f'### User feedback ({label}):\n"{payload.feedback}"')
            cars = _car_listing(payload.result)
            if cars:
                parts.append(f"### Assistant Suggestions ({label}):\n{cars}")
    return "\n\n".join(parts)


def _car_listing(result: Dict[str, Any]) -> str:
    cars = (result or {}).get("cars") or []
    return ", ".join(describe(car) for car in cars if isinstance(car, dict))
