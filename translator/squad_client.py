"""Squad agent-invocation API client."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .config import Config, config
from .errors import CreationError, PollError, StreamUnavailable, UpstreamError
from .models import InvocationStatus

logger = logging.getLogger(__name__)


@dataclass
class Invocation:
    """One asynchronous unit of work submitted to the Squad API."""
    id: str
    status: InvocationStatus = InvocationStatus.PENDING
    raw_payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass
class LogEntry:
    """One line of the invocation log feed."""
    text: str
    offset: Optional[str] = None


@dataclass
class LogFeed:
    """Log entries read from the feed in one fetch."""
    entries: List[LogEntry] = field(default_factory=list)
    offset: Optional[str] = None


class SquadClient:
    """
    Async client for the Squad invocation API.

    Handles:
    - Invocation creation (POST /agents/{agent}/invoke)
    - Status polling (GET /invocations/{id})
    - Best-effort log feed reads (GET /invocations/{id}/stream)
    - Agent listing (GET /agents)

    Holds no per-invocation state; every call stands alone.
    """

    def __init__(
        self,
        settings: Optional[Config] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or config
        self.base_url = self.settings.squad_api_base_url
        self.api_key = self.settings.squad_api_key
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.http_timeout, connect=10.0),
            transport=transport,
        )

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

    def _headers(self, accept: str = "application/json") -> Dict[str, str]:
        return {
            "accept": accept,
            "Authorization": f"Bearer {self.api_key}",
        }

    async def create(self, task: str, agent_id: str) -> Invocation:
        """
        Submit a task to an agent without waiting for it to finish.

        Raises CreationError on any failure. Creation is never retried.
        """
        if not self.api_key:
            raise CreationError("SQUAD_API_KEY is not defined in environment variables")

        logger.info(f"Creating invocation: agent={agent_id}, task_length={len(task)}")

        try:
            resp = await self.client.post(
                f"{self.base_url}/agents/{agent_id}/invoke",
                json={"task": task},
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise CreationError(f"Squad API invocation creation failed: {_describe(e)}") from e

        if resp.is_error:
            raise CreationError(
                f"Squad API invocation creation failed: {_error_message(resp)}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise CreationError("Squad API returned a non-JSON creation response") from e

        invocation_id = data.get("invocation_id") if isinstance(data, dict) else None
        if not invocation_id:
            raise CreationError("Failed to get invocation ID from Squad API")

        logger.info(f"Invocation created: {invocation_id}")
        return Invocation(id=str(invocation_id), raw_payload=data)

    async def fetch_status(self, invocation_id: str) -> Invocation:
        """
        Fetch the current status of an invocation.

        Raises PollError on any failure, including HTTP 429. Callers retry.
        """
        try:
            resp = await self.client.get(
                f"{self.base_url}/invocations/{invocation_id}",
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise PollError(
                f"Fetch invocation failed: {_describe(e)}",
                invocation_id=invocation_id,
            ) from e

        if resp.is_error:
            raise PollError(
                f"Fetch invocation failed: {_error_message(resp)}",
                status_code=resp.status_code,
                invocation_id=invocation_id,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise PollError(
                "Fetch invocation returned a non-JSON body",
                status_code=resp.status_code,
                invocation_id=invocation_id,
            ) from e

        if not isinstance(data, dict):
            raise PollError(
                f"Fetch invocation returned {type(data).__name__}, expected an object",
                status_code=resp.status_code,
                invocation_id=invocation_id,
            )

        status = InvocationStatus.parse(data.get("status"))
        logger.debug(f"Invocation {invocation_id} status: {data.get('status')}")
        return Invocation(id=invocation_id, status=status, raw_payload=data)

    async def fetch_log(self, invocation_id: str) -> LogFeed:
        """
        Read whatever the log feed has for an invocation right now.

        The feed is an SSE stream that may stay open, so the read is cut
        off after `log_read_window` seconds and the entries seen so far are
        returned. Raises StreamUnavailable when there is no feed (yet).
        """
        feed = LogFeed()

        try:
            async with self.client.stream(
                "GET",
                f"{self.base_url}/invocations/{invocation_id}/stream",
                headers=self._headers("text/event-stream"),
            ) as response:
                if response.is_error:
                    raise StreamUnavailable(
                        f"Stream not available (HTTP {response.status_code})",
                        status_code=response.status_code,
                        invocation_id=invocation_id,
                    )

                try:
                    await asyncio.wait_for(
                        _read_log(response, feed),
                        timeout=self.settings.log_read_window,
                    )
                except asyncio.TimeoutError:
                    logger.debug(f"Log read window closed for {invocation_id} "
                                 f"after {len(feed.entries)} entries")

        except httpx.HTTPError as e:
            raise StreamUnavailable(
                f"Stream not available: {_describe(e)}",
                invocation_id=invocation_id,
            ) from e

        return feed

    async def list_agents(self) -> List[Dict[str, Any]]:
        """List agents available to this API key."""
        try:
            resp = await self.client.get(f"{self.base_url}/agents", headers=self._headers())
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                f"Failed to fetch agents list: {_error_message(e.response)}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError(f"Failed to fetch agents list: {_describe(e)}") from e

        if isinstance(data, dict) and isinstance(data.get("items"), list):
            agents = data["items"]
        elif isinstance(data, list):
            agents = data
        else:
            agents = []

        logger.info(f"Retrieved {len(agents)} agents from Squad API")
        return agents


async def _read_log(response: httpx.Response, feed: LogFeed):
    """Parse a log feed response into `feed`, in place."""
    content_type = response.headers.get("content-type", "")

    if "text/event-stream" not in content_type:
        body = await response.aread()
        if not body.strip():
            return
        try:
            _add_log_event(feed, json.loads(body))
        except ValueError:
            logger.debug(f"Ignoring non-JSON log body: {body[:100]!r}")
        return

    async for line in response.aiter_lines():
        if not line.startswith("data:"):
            continue

        data_str = line[5:].strip()
        if not data_str or data_str == "[DONE]":
            continue

        try:
            _add_log_event(feed, json.loads(data_str))
        except ValueError:
            logger.debug(f"Failed to parse log event: {data_str[:100]}")


def _add_log_event(feed: LogFeed, event: Any):
    if not isinstance(event, dict):
        return

    offset = event.get("offset")
    if offset is not None:
        offset = str(offset)
        feed.offset = offset

    log = event.get("log")
    if isinstance(log, str):
        feed.entries.append(LogEntry(text=log, offset=offset))
    elif isinstance(log, list):
        for item in log:
            if isinstance(item, str):
                feed.entries.append(LogEntry(text=item, offset=offset))


def _error_message(resp: httpx.Response) -> str:
    """Best human-readable message from an error response."""
    try:
        data = resp.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        if isinstance(message, str) and message:
            return message
        return f"Unknown API error (HTTP {resp.status_code})"

    text = resp.text.strip()
    return text[:200] if text else f"HTTP Error {resp.status_code}"


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__


# Global instance
squad = SquadClient()
