"""Streaming session state and the active-session registry."""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from .models import CloseCode, SessionState

logger = logging.getLogger(__name__)


@dataclass
class StreamSession:
    """
    State of one streaming completion.

    Tracks:
    - What has been sent downstream (sent_content, sent_lines)
    - Poll pacing (poll_interval, consecutive_errors)
    - Lifecycle (state, close_code, cancelled)

    Owned by exactly one StreamingController and never shared.
    """
    invocation_id: str
    poll_interval: float
    start_time: float
    sent_content: str = ""
    sent_lines: Set[str] = field(default_factory=set)
    consecutive_errors: int = 0
    cancelled: bool = False
    state: SessionState = SessionState.CREATED
    close_code: Optional[CloseCode] = None
    poll_count: int = 0

    def record_sent(self, text: str):
        """Account for text that went downstream."""
        self.sent_content += text

    def elapsed(self, now: float) -> float:
        return now - self.start_time


class SessionRegistry:
    """
    Bounded registry of live sessions, for observability only.

    Nothing here drives cleanup: each controller cleans up after itself
    and unregisters. When full, the oldest entry is dropped.
    """

    def __init__(self, max_size: int = 256):
        self.max_size = max_size
        self._sessions: "OrderedDict[str, StreamSession]" = OrderedDict()

    def register(self, session: StreamSession):
        if session.invocation_id in self._sessions:
            self._sessions.move_to_end(session.invocation_id)
        self._sessions[session.invocation_id] = session

        while len(self._sessions) > self.max_size:
            evicted, _ = self._sessions.popitem(last=False)
            logger.warning(f"Session registry full, dropped {evicted}")

    def unregister(self, invocation_id: str):
        self._sessions.pop(invocation_id, None)

    def get(self, invocation_id: str) -> Optional[StreamSession]:
        return self._sessions.get(invocation_id)

    def snapshot(self, now: float) -> List[Dict[str, Any]]:
        """Summaries of live sessions."""
        return [
            {
                "invocation_id": s.invocation_id,
                "state": s.state.value,
                "elapsed": round(s.elapsed(now), 2),
                "polls": s.poll_count,
                "sent_chars": len(s.sent_content),
            }
            for s in self._sessions.values()
        ]

    @property
    def session_count(self) -> int:
        """Number of active sessions."""
        return len(self._sessions)


# Global instance
sessions = SessionRegistry()
