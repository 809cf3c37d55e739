"""
Proposal Queue

One ProposalQueue per transcript session: an ordered, fixed-length list of
reconciled proposals and a cursor pointing at the one awaiting a decision.

The SessionRegistry is the process-wide map from session id to queue. It sits
on a SessionStore repository and hands out a per-session asyncio.Lock so
multi-step mutations on one session are serialized without blocking others.

Guarantees:
- cursor only moves forward, by exactly 1 per advance()
- replace() never changes the queue length or the cursor
- a session is removed the moment cursor == len(proposals)
"""

import logging
import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..common.schemas import Proposal
from ..common.tracing import trace_logger

logger = logging.getLogger("meetsync.sync.proposal_queue")


class SessionExistsError(Exception):
    """A session with this id is already registered."""
    pass


class SessionNotFoundError(Exception):
    """The session is absent: already completed, evicted, or lost on restart."""
    pass


@dataclass
class ProposalQueue:
    """Ordered proposals for one session plus the review cursor"""
    session_id: str
    proposals: List[Proposal]
    destination_store: str
    meeting_title: str = ""
    cursor: int = 0
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def __len__(self) -> int:
        return len(self.proposals)

    @property
    def is_complete(self) -> bool:
        return self.cursor >= len(self.proposals)

    def current(self) -> Optional[Proposal]:
        if self.is_complete:
            return None
        return self.proposals[self.cursor]

    def touch(self) -> None:
        self.last_activity = time.time()

    def summary(self) -> Dict[str, object]:
        head = self.current()
        return {
            "session_id": self.session_id,
            "meeting_title": self.meeting_title,
            "destination_store": self.destination_store,
            "cursor": self.cursor,
            "total": len(self.proposals),
            "current_title": head.title if head else None,
            "current_iteration": head.iteration if head else None,
            "idle_seconds": round(time.time() - self.last_activity, 1),
        }


class SessionStore(ABC):
    """Repository interface: session id -> ProposalQueue."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[ProposalQueue]:
        pass

    @abstractmethod
    def put(self, queue: ProposalQueue) -> None:
        pass

    @abstractmethod
    def delete(self, session_id: str) -> None:
        pass

    @abstractmethod
    def all(self) -> List[ProposalQueue]:
        pass


class InMemorySessionStore(SessionStore):
    """Per-process session store. State is lost on restart."""

    def __init__(self):
        self._sessions: Dict[str, ProposalQueue] = {}

    def get(self, session_id: str) -> Optional[ProposalQueue]:
        return self._sessions.get(session_id)

    def put(self, queue: ProposalQueue) -> None:
        self._sessions[queue.session_id] = queue

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def all(self) -> List[ProposalQueue]:
        return list(self._sessions.values())


class SessionRegistry:
    """
    Creation, lookup, advancement, refinement and teardown of sessions.

    None of these methods await, so each one is atomic on the event loop.
    Callers that interleave them with external I/O hold ``queue.lock``.
    """

    def __init__(self, store: Optional[SessionStore] = None, ttl_seconds: Optional[float] = None):
        self._store = store or InMemorySessionStore()
        self._ttl_seconds = ttl_seconds

    def create(
        self,
        session_id: str,
        proposals: List[Proposal],
        destination_store: str,
        meeting_title: str = "",
    ) -> ProposalQueue:
        """
        Register a new session.

        An empty proposal list yields a queue that is already complete and
        is never stored; the caller sends the "nothing to review" notice.

        Raises:
            SessionExistsError: if session_id is already registered
            ProposalInvariantError: if any proposal breaks the action/url rule
        """
        if self._store.get(session_id) is not None:
            raise SessionExistsError(f"Session already exists: {session_id}")

        for proposal in proposals:
            proposal.check_invariant()

        queue = ProposalQueue(
            session_id=session_id,
            proposals=list(proposals),
            destination_store=destination_store,
            meeting_title=meeting_title,
        )
        log = trace_logger(logger, session_id)

        if queue.is_complete:
            log.info("Session has no proposals, completed on creation")
            return queue

        self._store.put(queue)
        log.info("Session created with %d proposal(s) for destination %s", len(queue), destination_store)
        return queue

    def get(self, session_id: str) -> ProposalQueue:
        queue = self._store.get(session_id)
        if queue is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return queue

    def exists(self, session_id: str) -> bool:
        return self._store.get(session_id) is not None

    def current(self, session_id: str) -> Proposal:
        """The proposal at the cursor (raises SessionNotFoundError)."""
        queue = self.get(session_id)
        head = queue.current()
        if head is None:
            raise SessionNotFoundError(f"Session already completed: {session_id}")
        return head

    def advance(self, session_id: str) -> Optional[Proposal]:
        """
        Move the cursor forward by one.

        Returns:
            The new head, or None when the session completed and was removed
        """
        queue = self.get(session_id)
        queue.cursor += 1
        queue.touch()

        if queue.is_complete:
            self._store.delete(session_id)
            trace_logger(logger, session_id).info("Session completed after %d proposal(s)", len(queue))
            return None
        return queue.current()

    def replace(self, session_id: str, refined: Proposal) -> Proposal:
        """
        Overwrite the proposal at the cursor with a refined version.

        The stored proposal's iteration is the replaced one's iteration + 1.
        """
        queue = self.get(session_id)
        replaced = queue.current()
        if replaced is None:
            raise SessionNotFoundError(f"Session already completed: {session_id}")

        stored = refined.model_copy(update={"iteration": replaced.iteration + 1})
        stored.check_invariant()
        queue.proposals[queue.cursor] = stored
        queue.touch()

        trace_logger(logger, session_id).info(
            "Proposal %d refined (v%d): %s", queue.cursor + 1, stored.iteration, stored.title
        )
        return stored

    def remove(self, session_id: str) -> None:
        self._store.delete(session_id)

    def evict_expired(self, now: Optional[float] = None) -> List[str]:
        """Drop sessions idle for longer than the TTL. Returns evicted ids."""
        if not self._ttl_seconds:
            return []
        now = time.time() if now is None else now

        evicted = []
        for queue in self._store.all():
            if now - queue.last_activity > self._ttl_seconds:
                self._store.delete(queue.session_id)
                evicted.append(queue.session_id)
                trace_logger(logger, queue.session_id).warning(
                    "Session evicted after %.0fs idle at proposal %d of %d",
                    now - queue.last_activity, queue.cursor + 1, len(queue),
                )
        return evicted

    def active_sessions(self) -> List[ProposalQueue]:
        return self._store.all()
