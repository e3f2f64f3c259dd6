"""
Streaming session controller.

The Squad API cannot push output, so a live stream is produced by polling:

    Created -> Polling -> Draining -> Terminated

Each polling tick fetches the invocation status and, while it is still
pending, the best-effort log feed. New content goes to the sink as soon as
it is seen. The session ends with exactly one close code:

- stop: the invocation succeeded
- error: the invocation failed, or polling failed too often in a row
- timeout: the stream ran past its wall-clock ceiling

A client disconnect skips Draining entirely: nothing more is written and
no further upstream calls are made.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from .config import Config, config
from .errors import ClientDisconnected, ExhaustedRetries, PollError, StreamUnavailable
from .extraction import NO_CONTENT, extract_answer, extract_error
from .models import CloseCode, InvocationStatus, SessionState
from .sinks import StreamSink
from .squad_client import Invocation, SquadClient
from .state import SessionRegistry, StreamSession, sessions

logger = logging.getLogger(__name__)

# Log lines that are upstream bookkeeping, not agent output
LOG_DENYLIST = (
    "Queued agent call",
    "Caution:",
    "Attempting to upload",
    "__INVOCATION_FINISHED__",
)


def next_poll_interval(current: float, failed: bool, settings: Config) -> float:
    """Back off after a failed poll, snap back to the minimum after a good one."""
    if not failed:
        return settings.min_poll_interval
    return min(current * settings.poll_backoff_factor, settings.max_poll_interval)


def is_log_noise(entry: str) -> bool:
    return any(marker in entry for marker in LOG_DENYLIST)


def unsent_suffix(answer: str, sent: str) -> str:
    """
    Part of the final answer the client has not seen yet.

    The answer is append-only relative to what was streamed, so the sent
    prefix is stripped. When the streamed text was not a prefix of the
    answer (progress notes rather than answer text) the whole answer
    follows after a blank line.
    """
    if not sent:
        return answer
    if answer == NO_CONTENT or answer in sent:
        return ""
    if answer.startswith(sent):
        return answer[len(sent):]
    return f"\n\n{answer}"


def _notice(reason: str, sent: str) -> str:
    return f"\n\n[Error: {reason}]" if sent else f"Error: {reason}"


class StreamingController:
    """
    Drives one upstream invocation and streams it to one sink.

    Usage:
        controller = StreamingController(squad, sink, task, agent_id)
        await controller.start()    # CreationError surfaces here
        await controller.run()      # always ends the sink cleanly
        controller.cancel()         # on client disconnect, from anywhere
    """

    def __init__(
        self,
        client: SquadClient,
        sink: StreamSink,
        task: str,
        agent_id: str,
        settings: Optional[Config] = None,
        clock: Callable[[], float] = time.monotonic,
        registry: Optional[SessionRegistry] = None,
    ):
        self.client = client
        self.sink = sink
        self.task = task
        self.agent_id = agent_id
        self.settings = settings or config
        self.clock = clock
        self.registry = registry if registry is not None else sessions
        self.session: Optional[StreamSession] = None
        self._cancelled = False
        self._wakeup = asyncio.Event()

    @property
    def state(self) -> SessionState:
        return self.session.state if self.session else SessionState.CREATED

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _tag(self) -> str:
        if not self.session:
            return "[new]"
        return f"[{self.session.invocation_id} {self.session.elapsed(self.clock()):.2f}s]"

    async def start(self) -> StreamSession:
        """Create the upstream invocation. CreationError propagates."""
        invocation = await self.client.create(self.task, self.agent_id)

        self.session = StreamSession(
            invocation_id=invocation.id,
            poll_interval=self.settings.min_poll_interval,
            start_time=self.clock(),
            cancelled=self._cancelled,
        )
        logger.info(f"{self._tag()} Session created for agent {self.agent_id}")
        return self.session

    def cancel(self):
        """Stop the session: no more upstream calls, no more writes."""
        if self._cancelled:
            return
        self._cancelled = True
        if self.session:
            self.session.cancelled = True
        self._wakeup.set()
        logger.info(f"{self._tag()} Cancellation requested")

    async def run(self) -> Optional[CloseCode]:
        """
        Poll until the session ends.

        Returns the close code, or None when the client disconnected.
        Task cancellation is re-raised after cleanup; nothing else escapes.
        """
        if self.session is None:
            await self.start()
        session = self.session
        # Registered only while run() is active, so a stream that is never
        # iterated leaves nothing behind
        self.registry.register(session)

        try:
            self._check_cancelled()
            session.state = SessionState.POLLING
            self.sink.open()

            remaining = max(self.settings.stream_timeout - session.elapsed(self.clock()), 0.0)
            try:
                close_code = await asyncio.wait_for(self._poll_loop(), timeout=remaining)
            except asyncio.TimeoutError:
                close_code = CloseCode.TIMEOUT
                logger.warning(f"{self._tag()} Stream timeout reached")

            self._drain(close_code)
            return close_code

        except ClientDisconnected:
            logger.info(f"{self._tag()} Client disconnected, stopping without drain")
            self._terminate()
            return None

        except asyncio.CancelledError:
            logger.info(f"{self._tag()} Session task cancelled")
            self._cancelled = session.cancelled = True
            self._terminate()
            raise

        except Exception as e:
            logger.exception(f"{self._tag()} Unexpected error in streaming session: {e}")
            if not self._cancelled:
                self._emit(_notice(str(e) or type(e).__name__, session.sent_content))
            self._drain(CloseCode.ERROR)
            return CloseCode.ERROR

        finally:
            self.registry.unregister(session.invocation_id)

    async def _poll_loop(self) -> CloseCode:
        """Polling state. Returns the close code to drain with."""
        session = self.session
        logger.info(f"{self._tag()} Polling started (interval {session.poll_interval}s)")

        while True:
            self._check_cancelled()

            if session.elapsed(self.clock()) >= self.settings.stream_timeout:
                logger.warning(f"{self._tag()} Stream timeout reached after {session.poll_count} polls")
                return CloseCode.TIMEOUT

            session.poll_count += 1

            try:
                invocation = await self.client.fetch_status(session.invocation_id)
            except PollError as e:
                session.consecutive_errors += 1
                session.poll_interval = next_poll_interval(session.poll_interval, True, self.settings)
                logger.error(f"{self._tag()} Poll error ({session.consecutive_errors}/"
                             f"{self.settings.max_consecutive_errors}): {e}")

                if session.consecutive_errors >= self.settings.max_consecutive_errors:
                    exhausted = ExhaustedRetries(session.invocation_id, session.consecutive_errors, e)
                    logger.error(f"{self._tag()} {exhausted}")
                    session.state = SessionState.DRAINING
                    self._emit(_notice(str(exhausted), session.sent_content))
                    return CloseCode.ERROR
            else:
                session.consecutive_errors = 0
                session.poll_interval = next_poll_interval(session.poll_interval, False, self.settings)
                self._check_cancelled()

                if invocation.is_terminal:
                    return self._finish_invocation(invocation)

                emitted = await self._relay_log()
                if not emitted:
                    self._relay_pending_message(invocation)

            await self._sleep(session.poll_interval)

    def _finish_invocation(self, invocation: Invocation) -> CloseCode:
        """Emit whatever the terminal payload adds and pick the close code."""
        session = self.session
        session.state = SessionState.DRAINING
        logger.info(f"{self._tag()} Invocation complete: {invocation.status.value}")

        if invocation.status == InvocationStatus.SUCCESS:
            answer = extract_answer(invocation.raw_payload)
            suffix = unsent_suffix(answer, session.sent_content)
            if suffix:
                logger.debug(f"{self._tag()} Sending remaining content ({len(suffix)} chars)")
                self._emit(suffix)
            return CloseCode.STOP

        reason = extract_error(invocation.raw_payload)
        logger.error(f"{self._tag()} Invocation failed: {reason}")
        self._emit(_notice(reason, session.sent_content))
        return CloseCode.ERROR

    async def _relay_log(self) -> int:
        """Forward new log entries. Returns how many were sent."""
        session = self.session

        try:
            feed = await self.client.fetch_log(session.invocation_id)
        except StreamUnavailable as e:
            logger.debug(f"{self._tag()} Log feed unavailable: {e}")
            return 0

        self._check_cancelled()

        emitted = 0
        for entry in feed.entries:
            text = entry.text
            if not text.strip() or is_log_noise(text):
                continue
            # Redelivered lines, and text already sent from a status message
            if text in session.sent_lines or text in session.sent_content:
                continue

            self._emit(text)
            session.sent_lines.add(text)
            emitted += 1

        if emitted:
            logger.info(f"{self._tag()} Sent {emitted} new log entries")
        return emitted

    def _relay_pending_message(self, invocation: Invocation):
        """Forward a partial answer carried by a still-pending status payload."""
        message = invocation.raw_payload.get("message")
        if not isinstance(message, str):
            return

        sent = self.session.sent_content
        if len(message) > len(sent) and message.startswith(sent):
            new_content = message[len(sent):]
            if new_content.strip():
                logger.debug(f"{self._tag()} Found new content in status response ({len(new_content)} chars)")
                self._emit(new_content)
                self.session.sent_lines.add(new_content)

    def _emit(self, text: str):
        self._check_cancelled()
        if not text:
            return
        self.sink.emit(text)
        self.session.record_sent(text)

    def _drain(self, close_code: CloseCode):
        session = self.session
        if self._cancelled:
            self._terminate()
            return

        session.state = SessionState.DRAINING
        session.close_code = close_code
        self.sink.emit_final(close_code)
        self.sink.close()
        session.state = SessionState.TERMINATED
        logger.info(f"{self._tag()} Stream completed with reason: {close_code.value} "
                    f"({session.poll_count} polls, {len(session.sent_content)} chars)")

    def _terminate(self):
        self.sink.abort()
        self.session.state = SessionState.TERMINATED

    def _check_cancelled(self):
        if self._cancelled:
            raise ClientDisconnected("client went away")

    async def _sleep(self, interval: float):
        """Wait between polls, waking early on cancel()."""
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
