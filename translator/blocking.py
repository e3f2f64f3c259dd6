"""Blocking (non-streaming) completions: create, wait, extract."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .config import Config, config
from .errors import ExhaustedRetries, InvocationTimeout, PollError
from .extraction import extract_answer, extract_error
from .models import CloseCode, InvocationStatus
from .squad_client import Invocation, SquadClient

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    """Final answer of a blocking completion."""
    invocation_id: str
    answer: str
    finish_reason: CloseCode


async def wait_for_invocation(
    client: SquadClient,
    invocation_id: str,
    settings: Optional[Config] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Invocation:
    """
    Poll at a fixed interval until the invocation is terminal.

    No backoff here. Consecutive poll failures are still bounded by the
    error budget, and the whole wait by the invocation timeout.
    """
    settings = settings or config
    start = clock()
    attempts = 0
    consecutive_errors = 0

    while True:
        attempts += 1
        elapsed = clock() - start
        if elapsed >= settings.invocation_timeout:
            raise InvocationTimeout(invocation_id, elapsed)

        try:
            invocation = await client.fetch_status(invocation_id)
        except PollError as e:
            consecutive_errors += 1
            logger.warning(f"Poll {attempts} for {invocation_id} failed "
                           f"({consecutive_errors}/{settings.max_consecutive_errors}): {e}")
            if consecutive_errors >= settings.max_consecutive_errors:
                raise ExhaustedRetries(invocation_id, consecutive_errors, e) from e
        else:
            consecutive_errors = 0
            if invocation.is_terminal:
                logger.info(f"Invocation {invocation_id} completed with status "
                            f"{invocation.status.value} after {attempts} polls ({elapsed:.2f}s)")
                return invocation
            logger.debug(f"Invocation {invocation_id} still pending, poll {attempts} ({elapsed:.2f}s elapsed)")

        await asyncio.sleep(settings.blocking_poll_interval)


async def complete(
    client: SquadClient,
    task: str,
    agent_id: str,
    settings: Optional[Config] = None,
    clock: Callable[[], float] = time.monotonic,
) -> CompletionResult:
    """Run one invocation to completion and return its answer as a single unit."""
    created = await client.create(task, agent_id)
    invocation = await wait_for_invocation(client, created.id, settings=settings, clock=clock)

    if invocation.status == InvocationStatus.SUCCESS:
        answer = extract_answer(invocation.raw_payload)
        logger.info(f"Final answer received for {created.id}, length: {len(answer)}")
        return CompletionResult(created.id, answer, CloseCode.STOP)

    reason = extract_error(invocation.raw_payload)
    logger.error(f"Invocation {created.id} error: {reason}")
    return CompletionResult(created.id, f"Error: {reason}", CloseCode.ERROR)
