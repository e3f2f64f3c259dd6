"""Translator configuration."""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """Configuration loaded from environment variables."""

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "3001")))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Squad API
    squad_api_base_url: str = field(default_factory=lambda:
        os.getenv("SQUAD_API_BASE_URL", "https://api.sqd.io").rstrip("/"))
    squad_api_key: str = field(default_factory=lambda: os.getenv("SQUAD_API_KEY", ""))
    default_agent_id: str = field(default_factory=lambda:
        os.getenv("DEFAULT_AGENT_ID", "michael_taolor_x_agent"))
    http_timeout: float = field(default_factory=lambda: float(os.getenv("HTTP_TIMEOUT", "30")))

    # Streaming sessions
    min_poll_interval: float = field(default_factory=lambda:
        float(os.getenv("MIN_POLL_INTERVAL", "1.0")))
    max_poll_interval: float = field(default_factory=lambda:
        float(os.getenv("MAX_POLL_INTERVAL", "5.0")))
    poll_backoff_factor: float = field(default_factory=lambda:
        float(os.getenv("POLL_BACKOFF_FACTOR", "1.5")))
    max_consecutive_errors: int = field(default_factory=lambda:
        int(os.getenv("MAX_CONSECUTIVE_ERRORS", "5")))
    stream_timeout: float = field(default_factory=lambda: float(os.getenv("STREAM_TIMEOUT", "300")))
    log_read_window: float = field(default_factory=lambda: float(os.getenv("LOG_READ_WINDOW", "0.5")))

    # Blocking (non-streaming) completions
    blocking_poll_interval: float = field(default_factory=lambda:
        float(os.getenv("BLOCKING_POLL_INTERVAL", "5.0")))
    invocation_timeout: float = field(default_factory=lambda:
        float(os.getenv("INVOCATION_TIMEOUT", "600")))

    @property
    def squad_configured(self) -> bool:
        """Whether an API key is available for upstream calls."""
        return bool(self.squad_api_key)

    def __post_init__(self):
        """Reject poll settings the backoff policy cannot honour."""
        if self.min_poll_interval <= 0:
            raise ValueError("MIN_POLL_INTERVAL must be positive")
        if self.max_poll_interval < self.min_poll_interval:
            raise ValueError("MAX_POLL_INTERVAL must be >= MIN_POLL_INTERVAL")
        if self.poll_backoff_factor < 1:
            raise ValueError("POLL_BACKOFF_FACTOR must be >= 1")
        if self.max_consecutive_errors < 1:
            raise ValueError("MAX_CONSECUTIVE_ERRORS must be >= 1")


# Global config instance
config = Config()
