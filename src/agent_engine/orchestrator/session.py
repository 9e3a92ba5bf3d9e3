"""Session storage for suspended and running sessions.

Sessions are kept in-memory. The store is the checkpointer behind the
two-phase suspend/resume protocol: a run that waits for human input saves
its state here together with the node to resume from.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from agent_engine.orchestrator.types import ExecutionState, GraphNode
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import SESSION_CLOSED, SESSION_CREATED, SESSION_SUSPENDED

log = get_logger(__name__)


@dataclass
class Session:
    """A stored session.

    Attributes:
        session_id: Unique identifier for this session.
        state: Execution state of the session.
        resume_node: Node the driver continues from on resume.
        created_at: UTC timestamp when session was created.
        last_active_at: UTC timestamp of last activity.
    """

    session_id: str
    state: ExecutionState
    resume_node: GraphNode = GraphNode.START
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_active_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionStore:
    """In-memory session checkpointer."""

    def __init__(self) -> None:
        """Initialize session store with empty in-memory storage."""
        self._sessions: dict[str, Session] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def create(self, state: ExecutionState, resume_node: GraphNode = GraphNode.START) -> Session:
        """Store a new session for a state.

        Args:
            state: Execution state; its session_id becomes the key.
            resume_node: Node to resume from.

        Returns:
            The stored Session.

        Raises:
            ValueError: If the session already exists.
        """
        if state.session_id in self._sessions:
            raise ValueError(f"Session {state.session_id} already exists")
        session = Session(session_id=state.session_id, state=state, resume_node=resume_node)
        self._sessions[state.session_id] = session
        log.info(SESSION_CREATED, session_id=state.session_id, trace_id=state.trace_id)
        return session

    def get(self, session_id: str) -> Session | None:
        """Retrieve a session by ID.

        Args:
            session_id: The session identifier.

        Returns:
            The Session, or None if not found.
        """
        session = self._sessions.get(session_id)
        if session:
            session.last_active_at = datetime.now(timezone.utc)
        return session

    def update(
        self,
        session_id: str,
        state: ExecutionState | None = None,
        resume_node: GraphNode | None = None,
    ) -> Session:
        """Update a stored session.

        Args:
            session_id: The session identifier.
            state: New state, if changed.
            resume_node: New resume node, if changed.

        Returns:
            The updated Session.

        Raises:
            ValueError: If session_id not found.
        """
        session = self._sessions.get(session_id)
        if not session:
            raise ValueError(f"Session {session_id} not found")
        if state is not None:
            session.state = state
        if resume_node is not None:
            session.resume_node = resume_node
            if resume_node != GraphNode.START:
                log.info(
                    SESSION_SUSPENDED,
                    session_id=session_id,
                    resume_node=resume_node.value,
                    trace_id=session.state.trace_id,
                )
        session.last_active_at = datetime.now(timezone.utc)
        return session

    def list_sessions(self) -> list[Session]:
        """List stored sessions, most recently active first."""
        return sorted(self._sessions.values(), key=lambda s: s.last_active_at, reverse=True)

    def delete(self, session_id: str) -> None:
        """Delete a session.

        Args:
            session_id: The session identifier.

        Raises:
            ValueError: If session_id not found.
        """
        if session_id not in self._sessions:
            raise ValueError(f"Session {session_id} not found")
        del self._sessions[session_id]
        log.info(SESSION_CLOSED, session_id=session_id)
