"""
Downstream sinks for streaming sessions.

A sink is what the session controller writes to: open() announces the
assistant role, emit() sends a content delta, emit_final() sends the
finish frame and close() writes the terminator. Once closed a sink drops
every further write, so a session can never produce two terminators.
"""

import asyncio
import logging
from typing import AsyncIterator, List, Optional

from .frames import (
    ROLE_CHUNK,
    TERMINATOR_CHUNK,
    ChunkKind,
    FrameEncoder,
    ProtocolChunk,
    content_chunk,
    final_chunk,
)
from .models import CloseCode

logger = logging.getLogger(__name__)


class StreamSink:
    """Base sink. Subclasses implement _write() and optionally _finish()."""

    def __init__(self):
        self.opened = False
        self.final_sent = False
        self.closed = False

    def open(self):
        if self.opened or self.closed:
            return
        self.opened = True
        self._write(ROLE_CHUNK)

    def emit(self, text: str):
        if self.closed or not text:
            return
        self._write(content_chunk(text))

    def emit_final(self, close_code: CloseCode):
        if self.closed or self.final_sent:
            return
        self.final_sent = True
        self._write(final_chunk(close_code))

    def close(self):
        """Write the terminator and end the stream."""
        if self.closed:
            return
        self._write(TERMINATOR_CHUNK)
        self.closed = True
        self._finish()

    def abort(self):
        """End the stream without writing anything (client is gone)."""
        if self.closed:
            return
        self.closed = True
        self._finish()

    def _write(self, chunk: ProtocolChunk):
        raise NotImplementedError

    def _finish(self):
        pass


class SSESink(StreamSink):
    """
    Sink feeding an SSE response.

    Encoded events are queued; the HTTP layer drains them through events().
    A None in the queue marks the end of the stream.
    """

    def __init__(self, encoder: FrameEncoder):
        super().__init__()
        self.encoder = encoder
        self.queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

    def _write(self, chunk: ProtocolChunk):
        self.queue.put_nowait(self.encoder.encode(chunk))
        logger.debug(f"Queued [{chunk.kind.value}] chunk for {self.encoder.completion_id}")

    def _finish(self):
        self.queue.put_nowait(None)

    async def events(self) -> AsyncIterator[str]:
        """Yield SSE events until the stream ends."""
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event


class CollectingSink(StreamSink):
    """Sink that keeps every chunk in memory."""

    def __init__(self):
        super().__init__()
        self.chunks: List[ProtocolChunk] = []

    def _write(self, chunk: ProtocolChunk):
        self.chunks.append(chunk)

    @property
    def contents(self) -> List[str]:
        return [c.text for c in self.chunks if c.kind == ChunkKind.CONTENT]

    @property
    def text(self) -> str:
        return "".join(self.contents)

    @property
    def close_code(self) -> Optional[CloseCode]:
        for chunk in self.chunks:
            if chunk.kind == ChunkKind.FINAL:
                return chunk.close_code
        return None

    def count(self, kind: ChunkKind) -> int:
        return sum(1 for c in self.chunks if c.kind == kind)
