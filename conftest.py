"""Shared fixtures: fast settings, a scripted Squad client and a manual clock."""

from typing import Callable, List, Optional

import pytest

from translator.config import Config
from translator.errors import StreamUnavailable
from translator.models import InvocationStatus
from translator.squad_client import Invocation, LogEntry, LogFeed
from translator.state import SessionRegistry

PENDING = {"status": "pending"}


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSquadClient:
    """
    Squad client double driven by scripts.

    `statuses` items are payload dicts or exceptions, `logs` items are lists
    of log lines or exceptions. Each call consumes one item; the last item
    repeats. With no logs scripted, the feed is unavailable.
    """

    def __init__(
        self,
        statuses: List,
        logs: Optional[List] = None,
        invocation_id: str = "inv-123",
        create_error: Optional[Exception] = None,
        before_status: Optional[Callable[[int], None]] = None,
    ):
        self.statuses = list(statuses)
        self.logs = list(logs or [])
        self.invocation_id = invocation_id
        self.create_error = create_error
        self.before_status = before_status
        self.calls: List[str] = []
        self.tasks: List[tuple] = []

    @staticmethod
    def _next(script: List):
        return script.pop(0) if len(script) > 1 else script[0]

    def count(self, name: str) -> int:
        return self.calls.count(name)

    async def create(self, task: str, agent_id: str) -> Invocation:
        self.calls.append("create")
        self.tasks.append((task, agent_id))
        if self.create_error:
            raise self.create_error
        return Invocation(id=self.invocation_id, raw_payload={"invocation_id": self.invocation_id})

    async def fetch_status(self, invocation_id: str) -> Invocation:
        self.calls.append("status")
        if self.before_status:
            self.before_status(self.count("status"))

        item = self._next(self.statuses)
        if isinstance(item, Exception):
            raise item
        return Invocation(
            id=invocation_id,
            status=InvocationStatus.parse(item.get("status")),
            raw_payload=item,
        )

    async def fetch_log(self, invocation_id: str) -> LogFeed:
        self.calls.append("log")
        if not self.logs:
            raise StreamUnavailable("Stream not available", status_code=404, invocation_id=invocation_id)

        item = self._next(self.logs)
        if isinstance(item, Exception):
            raise item
        return LogFeed(entries=[LogEntry(text=line) for line in item])

    async def list_agents(self):
        self.calls.append("agents")
        return []

    async def close(self):
        pass


@pytest.fixture
def settings():
    """Real policy shape, millisecond pacing."""
    return Config(
        squad_api_base_url="https://squad.test",
        squad_api_key="test-key",
        default_agent_id="default_agent",
        min_poll_interval=0.001,
        max_poll_interval=0.005,
        poll_backoff_factor=1.5,
        max_consecutive_errors=5,
        stream_timeout=300.0,
        log_read_window=0.5,
        blocking_poll_interval=0.001,
        invocation_timeout=600.0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return SessionRegistry(max_size=8)
