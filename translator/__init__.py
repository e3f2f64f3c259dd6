"""
Squad OpenAI Translator

OpenAI-compatible API layer over the Squad asynchronous agent-invocation
API, with polling-driven streaming.

Components:
- squad_client: Invocation create/status/log calls
- extraction: Answer extraction from completed invocations
- frames: OpenAI streaming chunk encoding
- sinks: Downstream stream writers
- stream_controller: Polling state machine behind each stream
- blocking: One-shot (non-streaming) completions
- api: OpenAI-compatible endpoints
"""

from .main import app

__version__ = "0.2.0"
