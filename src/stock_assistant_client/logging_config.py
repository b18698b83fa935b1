import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_CONSOLE_FORMAT = (
    "<level>{level:<8}</level> | <magenta>{extra[session]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[session]} | "
    "{name}:{function}:{line} - {message}"
)

RecordFilter = Callable[[dict], bool]


def module_filter(modules: list[str] | None) -> RecordFilter | None:
    """Keep only records logged from ``modules`` (or their submodules)."""
    if not modules:
        return None
    prefixes = tuple(modules)

    def accept(record: dict) -> bool:
        name = record["name"] or ""
        return any(name == p or name.startswith(p + ".") for p in prefixes)

    return accept


@runtime_checkable
class LogSink(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogSink:
    # The transcript streams to stdout, so log lines stay on stderr.
    def __init__(self, modules: list[str] | None = None):
        self._modules = modules
        self._filter = module_filter(modules)

    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT, filter=self._filter)

    def describe(self, level: str) -> str:
        scope = f", {', '.join(self._modules)}" if self._modules else ""
        return f"console (stderr, {level}{scope})"


class FileLogSink:
    def __init__(
        self,
        path: str = "stock_assistant.log",
        rotation: str = "10 MB",
        retention: int = 3,
        modules: list[str] | None = None,
    ):
        self._path = path
        self._rotation = rotation
        self._retention = retention
        self._modules = modules
        self._filter = module_filter(modules)

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            format=_FILE_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
            filter=self._filter,
        )

    def describe(self, level: str) -> str:
        scope = f", {', '.join(self._modules)}" if self._modules else ""
        return f"file ({self._path}, {level}{scope})"


_SINK_TYPES: dict[str, type] = {
    "console": ConsoleLogSink,
    "file": FileLogSink,
}

# Live update chatter gets its own file so the main log stays readable.
_DEFAULT_SINKS = [
    {"type": "console", "level": "WARNING"},
    {"type": "file", "path": "stock_assistant.log"},
    {"type": "file", "path": "live_updates.log", "level": "DEBUG", "modules": ["stock_assistant_client.live_updates"]},
]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
    *,
    session_id: str = "-",
) -> list[str]:
    """Configure log sinks. Returns a description of each registered sink.

    Every record carries the session id so logs from several kiosks can be
    merged.
    """
    logger.remove()
    logger.configure(extra={"session": session_id})

    if consumers is None:
        consumers = _DEFAULT_SINKS

    descriptions: list[str] = []

    for config in consumers:
        sink_type = config.get("type", "")
        cls = _SINK_TYPES.get(sink_type)
        if cls is None:
            logger.warning(f"Unknown log sink type: {sink_type!r}")
            continue

        kwargs = {k: v for k, v in config.items() if k not in ("type", "level")}
        sink_level = config.get("level", level)

        sink = cls(**kwargs)
        sink.register(sink_level)
        descriptions.append(sink.describe(sink_level))

    return descriptions
