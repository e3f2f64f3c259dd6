"""
OpenAI-compatible API endpoints backed by Squad agent invocations.

Provides /v1/chat/completions and /v1/models endpoints compatible with
OpenAI clients. Streaming completions are produced by polling the
invocation and relaying new content as it appears.
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from .blocking import CompletionResult, complete
from .config import config
from .errors import CreationError, ExhaustedRetries, InvocationTimeout, UpstreamError
from .frames import FrameEncoder
from .models import ChatCompletionRequest
from .openai_format import (
    MODEL_PREFIX,
    format_completion,
    format_messages,
    format_models,
    is_short_form_request,
    new_completion_id,
    resolve_agent_id,
)
from .sinks import SSESink
from .squad_client import squad
from .stream_controller import StreamingController

logger = logging.getLogger(__name__)

router = APIRouter()

# How long to wait on the session before checking for a dropped client
DISCONNECT_CHECK_INTERVAL = 1.0

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("/v1/models")
async def list_models():
    """
    List available models (OpenAI-compatible).

    Each Squad agent is a model named `squad/<agent>`. Falls back to the
    default agent alone if the agent list cannot be fetched.
    """
    try:
        agents = await squad.list_agents()
    except UpstreamError as e:
        logger.error(f"Error fetching models: {e}")
        agents = []

    return format_models(agents)


@router.post("/v1/chat/completions")
async def chat_completions(body: ChatCompletionRequest, request: Request):
    """
    OpenAI-compatible chat completions over Squad invocations.

    - stream=false: wait for the invocation, return one chat.completion
    - stream=true: SSE stream of chat.completion.chunk events, relayed
      from polling, ending with a finish chunk and [DONE]
    - title-generation requests are always answered in one piece
    """
    request_id = _request_id(request)
    model = body.model or f"{MODEL_PREFIX}{config.default_agent_id}"
    agent_id = resolve_agent_id(body.model)
    task = format_messages(body.messages)

    logger.info(f"[{request_id}] Agent: {agent_id}, Stream: {body.stream}, Task length: {len(task)}")

    if is_short_form_request(body.messages):
        logger.info(f"[{request_id}] Title generation request detected")
        return await _complete_blocking(task, agent_id, model, body.stream, request_id)

    if not body.stream:
        return await _complete_blocking(task, agent_id, model, False, request_id)

    encoder = FrameEncoder(
        completion_id=f"chatcmpl-{request_id}" if request_id else new_completion_id(),
        model=model,
        created=int(time.time()),
    )
    sink = SSESink(encoder)
    controller = StreamingController(squad, sink, task, agent_id)

    try:
        await controller.start()
    except CreationError as e:
        logger.error(f"[{request_id}] Streaming setup failed: {e}")
        return _error_response(502, "Bad Gateway", "Failed to create invocation", e, request_id)

    return StreamingResponse(
        _stream_session(controller, sink, request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def _complete_blocking(
    task: str,
    agent_id: str,
    model: str,
    stream: bool,
    request_id: Optional[str],
):
    """Wait for the full answer, then return it as JSON or as a one-chunk stream."""
    try:
        result = await complete(squad, task, agent_id)
    except CreationError as e:
        logger.error(f"[{request_id}] Invocation creation failed: {e}")
        return _error_response(502, "Bad Gateway", "Failed to create invocation", e, request_id)
    except ExhaustedRetries as e:
        logger.error(f"[{request_id}] {e}")
        return _error_response(502, "Bad Gateway", "Failed to process request", e, request_id)
    except InvocationTimeout as e:
        logger.error(f"[{request_id}] {e}")
        return _error_response(504, "Gateway Timeout", "Request processing took too long", e, request_id)

    if not stream:
        logger.info(f"[{request_id}] Non-streaming response sent")
        return format_completion(result, model)

    encoder = FrameEncoder(new_completion_id(), model, int(time.time()))
    return StreamingResponse(
        _single_unit_stream(encoder, result),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def _stream_session(
    controller: StreamingController,
    sink: SSESink,
    request: Request,
) -> AsyncIterator[str]:
    """
    Run the session controller and relay its SSE events.

    Whatever ends this generator early (client disconnect, server
    shutdown) cancels the controller so no more upstream calls are made.
    """
    session_task = asyncio.create_task(controller.run())

    try:
        while True:
            try:
                event = await asyncio.wait_for(sink.queue.get(), timeout=DISCONNECT_CHECK_INTERVAL)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    logger.info(f"Client disconnected from session {controller.session.invocation_id}")
                    return
                continue

            if event is None:
                return
            yield event

    finally:
        if not session_task.done():
            controller.cancel()
            session_task.cancel()
        try:
            await session_task
        except asyncio.CancelledError:
            pass


async def _single_unit_stream(encoder: FrameEncoder, result: CompletionResult) -> AsyncIterator[str]:
    """Stream an already complete answer as role, content, finish and [DONE]."""
    sink = SSESink(encoder)
    sink.open()
    sink.emit(result.answer)
    sink.emit_final(result.finish_reason)
    sink.close()

    async for event in sink.events():
        yield event


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _error_response(
    status_code: int,
    error: str,
    message: str,
    exc: Exception,
    request_id: Optional[str],
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": str(exc),
            "request_id": request_id,
        },
    )
