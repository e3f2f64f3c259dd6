"""
OpenAI streaming frame encoding.

Maps the role announcement, content deltas, close codes and the stream
terminator to chat.completion.chunk payloads and their SSE wire form.
Pure functions: ids and timestamps come in as arguments.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .models import CloseCode

DONE_EVENT = "data: [DONE]\n\n"


class ChunkKind(str, Enum):
    """Protocol chunk variant."""
    ROLE = "role"
    CONTENT = "content"
    FINAL = "final"
    TERMINATOR = "terminator"


@dataclass(frozen=True)
class ProtocolChunk:
    """One wire unit of an OpenAI-compatible stream."""
    kind: ChunkKind
    text: Optional[str] = None
    close_code: Optional[CloseCode] = None


ROLE_CHUNK = ProtocolChunk(ChunkKind.ROLE)
TERMINATOR_CHUNK = ProtocolChunk(ChunkKind.TERMINATOR)


def content_chunk(text: str) -> ProtocolChunk:
    return ProtocolChunk(ChunkKind.CONTENT, text=text)


def final_chunk(close_code: CloseCode) -> ProtocolChunk:
    return ProtocolChunk(ChunkKind.FINAL, close_code=close_code)


@dataclass(frozen=True)
class FrameEncoder:
    """Encodes protocol chunks for one completion."""
    completion_id: str
    model: str
    created: int

    def payload(self, chunk: ProtocolChunk) -> Dict[str, Any]:
        """Build the chat.completion.chunk object for a chunk."""
        if chunk.kind == ChunkKind.TERMINATOR:
            raise ValueError("The terminator has no JSON payload")

        finish_reason = None
        if chunk.kind == ChunkKind.ROLE:
            delta = {"role": "assistant"}
        elif chunk.kind == ChunkKind.CONTENT:
            delta = {"content": chunk.text or ""}
        else:
            delta = {}
            finish_reason = CloseCode(chunk.close_code or CloseCode.STOP).value

        return {
            "id": self.completion_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [{
                "index": 0,
                "delta": delta,
                "finish_reason": finish_reason,
            }],
        }

    def encode(self, chunk: ProtocolChunk) -> str:
        """Format a chunk as an SSE event."""
        if chunk.kind == ChunkKind.TERMINATOR:
            return DONE_EVENT
        return f"data: {json.dumps(self.payload(chunk), ensure_ascii=False)}\n\n"
