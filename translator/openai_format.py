"""Translation between OpenAI chat requests/responses and Squad tasks."""

import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

from .blocking import CompletionResult
from .config import config
from .models import ChatMessage

MODEL_PREFIX = "squad/"

# System prompt fragments chat frontends use for title generation
TITLE_MARKERS = ("generate a title", "Write a concise title", "Title:")


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex[:12]}"


def format_messages(messages: Sequence[ChatMessage]) -> str:
    """Flatten an OpenAI conversation into one Squad task string."""
    lines = []
    for msg in messages:
        if msg.role == "system":
            lines.append(f"[System Instruction]: {msg.content}")
        elif msg.role == "user":
            lines.append(msg.content)
        elif msg.role == "assistant":
            lines.append(f"[Previous AI Response]: {msg.content}")
    return "\n".join(lines).strip()


def resolve_agent_id(model: Optional[str]) -> str:
    """`squad/<agent>` selects an agent; anything else uses the default."""
    if model and "/" in model:
        agent_id = model.split("/", 1)[1].strip()
        if agent_id:
            return agent_id
    return config.default_agent_id


def is_short_form_request(messages: Sequence[ChatMessage]) -> bool:
    """
    Whether this looks like a frontend's title-generation request.

    Substring heuristic on system messages. These requests are answered in
    one piece rather than streamed.
    """
    return any(
        msg.role == "system" and any(marker in msg.content for marker in TITLE_MARKERS)
        for msg in messages
    )


def format_completion(result: CompletionResult, model: str, completion_id: Optional[str] = None) -> Dict[str, Any]:
    """Non-streaming chat.completion response body."""
    return {
        "id": completion_id or new_completion_id(),
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [{
            "index": 0,
            "message": {
                "role": "assistant",
                "content": result.answer,
            },
            "finish_reason": result.finish_reason.value,
        }],
        # Squad does not report token counts
        "usage": {
            "prompt_tokens": 0,
            "completion_tokens": 0,
            "total_tokens": 0,
        },
    }


def _model_entry(agent_id: str, description: str, tools: List[str]) -> Dict[str, Any]:
    return {
        "id": f"{MODEL_PREFIX}{agent_id}",
        "object": "model",
        "created": int(time.time()),
        "owned_by": "squad",
        "description": description,
        "capabilities": {"tools": tools},
    }


def format_models(agents: List[Dict[str, Any]]) -> Dict[str, Any]:
    """OpenAI model list for Squad agents. The default agent is always listed."""
    models = []
    for agent in agents:
        name = agent.get("name") if isinstance(agent, dict) else None
        if not name:
            continue

        readme = agent.get("readme")
        description = f"{readme[:100]}..." if isinstance(readme, str) and readme else "Squad agent"
        tools = [t.get("name", "") for t in agent.get("tools") or [] if isinstance(t, dict)]
        models.append(_model_entry(name, description, tools))

    default_id = f"{MODEL_PREFIX}{config.default_agent_id}"
    if not any(m["id"] == default_id for m in models):
        models.append(_model_entry(config.default_agent_id, "Default Squad agent", []))

    return {"object": "list", "data": models}
