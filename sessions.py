"""Session aggregate and the in-process session store."""
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from agent_models import ConversationContext


@dataclass
class Session:
    session_id: str
    context: ConversationContext = None
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    max_messages: int = 50
    message_count: int = 0
    state_machine: Any = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if self.context is None:
            self.context = ConversationContext(session_id=self.session_id)

    @property
    def candidate_profile(self):
        return self.context.candidate_profile

    @property
    def current_state(self):
        return self.context.current_state

    def touch(self, now: Optional[float] = None):
        self.last_activity = now if now is not None else time.time()

    def to_dict(self, include_messages: bool = True) -> Dict[str, Any]:
        ctx = self.context
        data = {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "created_at": self.created_at,
            "last_activity": self.last_activity,
            "message_count": self.message_count,
            "current_state": ctx.current_state.value,
            "previous_state": ctx.previous_state.value if ctx.previous_state else None,
            "previous_intentions": [i.value for i in ctx.previous_intentions],
            "job_id": ctx.job_id,
            "candidate_profile": ctx.candidate_profile.to_dict() if ctx.candidate_profile else None,
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in ctx.messages]
        return data


class SessionStore(Protocol):
    def get_or_create(self, session_id: str, **attrs) -> Session:
        ...

    def get(self, session_id: str) -> Optional[Session]:
        ...

    def save(self, session: Session) -> None:
        ...

    def delete(self, session_id: str) -> bool:
        ...

    def list_all(self) -> List[Session]:
        ...


class InMemorySessionStore:
    def __init__(self, ttl_sec: int = 3600, max_sessions: int = 500, clock: Callable[[], float] = time.time):
        self.ttl_sec = ttl_sec
        self.max_sessions = max_sessions
        self.clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._sessions)

    def __contains__(self, session_id):
        return session_id in self._sessions

    def get_or_create(self, session_id: str, **attrs) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                now = self.clock()
                session = Session(session_id=session_id, created_at=now, last_activity=now, **attrs)
                self._sessions[session_id] = session
            return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def save(self, session: Session) -> None:
        session.touch(self.clock())
        with self._lock:
            self._sessions[session.session_id] = session

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def list_all(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def cleanup(self, now: Optional[float] = None) -> List[str]:
        """Drop idle sessions, then the oldest ones beyond capacity."""
        now = self.clock() if now is None else now
        removed = []
        with self._lock:
            expired = [k for k, s in self._sessions.items() if (now - s.last_activity) > self.ttl_sec]
            for k in expired:
                self._sessions.pop(k, None)
            removed.extend(expired)

            # Hard cap to avoid unbounded memory. Drop oldest.
            if len(self._sessions) > self.max_sessions:
                items = sorted(self._sessions.items(), key=lambda kv: kv[1].last_activity)
                for k, _ in items[: max(0, len(self._sessions) - self.max_sessions)]:
                    self._sessions.pop(k, None)
                    removed.append(k)
        return removed
