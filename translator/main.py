"""
Squad OpenAI Translator - Main Entry Point

OpenAI-compatible API server in front of the Squad agent-invocation API.
Squad agents are exposed as models named `squad/<agent>`; streaming
completions are produced by polling each invocation and relaying new
content as server-sent events.

Usage:
    python -m translator.main

Environment Variables:
    HOST                    - Server host (default: 0.0.0.0)
    PORT                    - Server port (default: 3001)
    LOG_LEVEL               - Logging level (default: INFO)
    SQUAD_API_BASE_URL      - Squad API URL (default: https://api.sqd.io)
    SQUAD_API_KEY           - Squad API key (required)
    DEFAULT_AGENT_ID        - Agent used when the model names none
    MIN_POLL_INTERVAL       - Fastest poll pace in seconds (default: 1.0)
    MAX_POLL_INTERVAL       - Slowest poll pace in seconds (default: 5.0)
    MAX_CONSECUTIVE_ERRORS  - Poll failures tolerated in a row (default: 5)
    STREAM_TIMEOUT          - Streaming wall-clock ceiling in seconds (default: 300)
"""

import logging
import secrets
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import config
from .state import sessions
from .squad_client import squad
from .api import router as api_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

VERSION = "0.2.0"
STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""

    # Startup
    logger.info("=" * 60)
    logger.info("Squad OpenAI Translator Starting")
    logger.info("=" * 60)

    if not config.squad_configured:
        logger.warning("SQUAD_API_KEY not set - every completion request will fail")

    logger.info(f"API Base URL: {config.squad_api_base_url}")
    logger.info(f"Default agent ID: {config.default_agent_id}")
    logger.info(f"Poll interval: {config.min_poll_interval}s - {config.max_poll_interval}s "
                f"(x{config.poll_backoff_factor} on error)")
    logger.info(f"Error budget: {config.max_consecutive_errors} consecutive poll failures")
    logger.info(f"Stream timeout: {config.stream_timeout}s")

    logger.info("-" * 60)
    logger.info(f"Server ready at http://{config.host}:{config.port}")
    logger.info(f"OpenAI endpoint: http://{config.host}:{config.port}/v1/chat/completions")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("Shutting down...")
    logger.info(f"Abandoning {sessions.session_count} active sessions")
    await squad.close()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Squad OpenAI Translator",
    description=(
        "OpenAI-compatible API for Squad agents. "
        "Each agent is a model; streaming responses are relayed "
        "from invocation polling as server-sent events."
    ),
    version=VERSION,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Tag every request with an id for log correlation."""
    request_id = f"req-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
    request.state.request_id = request_id
    logger.info(f"[{request_id}] {request.method} {request.url.path}")

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    logger.info(f"[{request_id}] Response {response.status_code}")
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed chat requests as 400, the way OpenAI clients expect."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{location}: {first.get('msg')}" if location else first.get("msg")
    else:
        message = "Invalid request"

    return JSONResponse(
        status_code=400,
        content={
            "error": "Bad Request",
            "message": message,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


# Mount routers
app.include_router(api_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 2),
        "environment": {
            "python_version": sys.version.split()[0],
            "squad_api_configured": config.squad_configured,
            "default_agent": config.default_agent_id,
        },
        "session_count": sessions.session_count,
        "sessions": sessions.snapshot(time.monotonic()),
    }


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {
        "name": "Squad OpenAI Translator",
        "version": VERSION,
        "upstream": config.squad_api_base_url,
        "endpoints": {
            "chat": "/v1/chat/completions",
            "models": "/v1/models",
            "health": "/health",
        },
    }


def main():
    """Run the translator server."""
    uvicorn.run(
        "translator.main:app",
        host=config.host,
        port=config.port,
        reload=False,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
