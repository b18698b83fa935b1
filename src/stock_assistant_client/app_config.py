from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from stock_assistant_client.session_config import SessionConfig

BASE_URL_ENV_VAR = "STOCK_ASSISTANT_BASE_URL"


@dataclass
class AppConfig:
    base_url: str
    session_id: str | None
    default_location_id: int | None
    streaming: bool
    connect_timeout_seconds: float
    request_timeout_seconds: float
    live_read_timeout_seconds: float
    live_retry_attempts: int
    live_retry_max_wait_seconds: float
    low_stock_threshold: int
    log_level: str
    log_consumers: list | None

    def to_session_config(self) -> SessionConfig:
        kwargs = {}
        if self.session_id:
            kwargs["session_id"] = self.session_id
        return SessionConfig(
            base_url=self.base_url,
            default_location_id=self.default_location_id,
            streaming=self.streaming,
            connect_timeout_seconds=self.connect_timeout_seconds,
            request_timeout_seconds=self.request_timeout_seconds,
            live_read_timeout_seconds=self.live_read_timeout_seconds,
            live_retry_attempts=self.live_retry_attempts,
            live_retry_max_wait_seconds=self.live_retry_max_wait_seconds,
            low_stock_threshold=self.low_stock_threshold,
            **kwargs,
        )


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _to_optional_int(value: object, default: int | None) -> int | None:
    if value is None:
        return default
    if isinstance(value, str) and not value.strip():
        return None
    return int(value)


def parse_app_config(config: dict, env: dict[str, str] | None = None) -> AppConfig:
    environ = os.environ if env is None else env
    base_url = environ.get(BASE_URL_ENV_VAR) or config.get("BaseUrl", "")
    return AppConfig(
        base_url=str(base_url).strip(),
        session_id=str(config.get("SessionId", "")).strip() or None,
        default_location_id=_to_optional_int(config.get("DefaultLocationId"), 101),
        streaming=_to_bool(config.get("Streaming", True), default=True),
        connect_timeout_seconds=float(config.get("ConnectTimeoutSeconds", 10)),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", 30)),
        live_read_timeout_seconds=float(config.get("LiveReadTimeoutSeconds", 60)),
        live_retry_attempts=int(config.get("LiveRetryAttempts", 5)),
        live_retry_max_wait_seconds=float(config.get("LiveRetryMaxWaitSeconds", 30)),
        low_stock_threshold=int(config.get("LowStockThreshold", 10)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )
