"""Data models for the translator."""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool


# ============================================================================
# OpenAI-Compatible Request Models
# ============================================================================

class ChatMessage(BaseModel):
    """OpenAI chat message format."""
    role: Literal["system", "user", "assistant"]
    content: str = Field(min_length=1)
    name: Optional[str] = None


class ChatCompletionRequest(BaseModel):
    """OpenAI chat completion request."""
    model_config = ConfigDict(extra="ignore")

    model: Optional[str] = None
    messages: List[ChatMessage] = Field(min_length=1)
    stream: StrictBool = False
    # Accepted for client compatibility, the agent decides these
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    user: Optional[str] = None


# ============================================================================
# Internal State Models
# ============================================================================

class InvocationStatus(str, Enum):
    """Upstream invocation status."""
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"

    @classmethod
    def parse(cls, value) -> "InvocationStatus":
        """Map an upstream status string, treating unknown values as still pending."""
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self is not InvocationStatus.PENDING


class SessionState(str, Enum):
    """Streaming session state."""
    CREATED = "created"
    POLLING = "polling"
    DRAINING = "draining"
    TERMINATED = "terminated"


class CloseCode(str, Enum):
    """Why a stream ended. Doubles as the final frame's finish_reason."""
    STOP = "stop"
    ERROR = "error"
    TIMEOUT = "timeout"
