from __future__ import annotations

from dataclasses import dataclass, field
from uuid import uuid4


def _new_session_id() -> str:
    return f"stock-assistant-{uuid4().hex[:8]}"


@dataclass
class SessionConfig:
    base_url: str
    session_id: str = field(default_factory=_new_session_id)
    default_location_id: int | None = 101
    streaming: bool = True
    connect_timeout_seconds: float = 10.0
    request_timeout_seconds: float = 30.0
    live_read_timeout_seconds: float = 60.0
    live_retry_attempts: int = 5
    live_retry_initial_wait_seconds: float = 1.0
    live_retry_max_wait_seconds: float = 30.0
    low_stock_threshold: int = 10
    max_error_history: int = 20

    def __post_init__(self) -> None:
        base_url = (self.base_url or "").strip()
        if not base_url:
            raise ValueError("base_url is required (set BaseUrl in config.json or STOCK_ASSISTANT_BASE_URL)")
        if not base_url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http or https URL, got {base_url!r}")
        self.base_url = base_url.rstrip("/")
        if not self.session_id.strip():
            self.session_id = _new_session_id()
