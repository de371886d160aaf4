"""Loguru sinks for the assistant.

Every record carries ``extra[request_id]``: orchestrator turns bind their own
id, anything logged outside a turn shows ``UNBOUND_REQUEST_ID``.
"""

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

DEFAULT_LOG_PATH = "campaign_assistant.log"
UNBOUND_REQUEST_ID = "-"

_CONSOLE_FORMAT = (
    "<level>{level:<8}</level> | <magenta>req={extra[request_id]}</magenta> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | req={extra[request_id]} | "
    "{name}:{function}:{line} - {message}"
)


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


def module_filter(modules: list[str] | None) -> Callable[[dict], bool] | None:
    """Keep only records logged from the given module prefixes (e.g. ``campaign_assistant``)."""
    if not modules:
        return None
    prefixes = tuple(modules)

    def accept(record: dict) -> bool:
        return (record["name"] or "").startswith(prefixes)

    return accept


def _scope(modules: list[str] | None) -> str:
    return f", only {'+'.join(modules)}" if modules else ""


class ConsoleLogConsumer:
    def __init__(self, modules: list[str] | None = None):
        self._modules = modules

    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT, filter=module_filter(self._modules))

    def describe(self, level: str) -> str:
        return f"console (stderr, {level}{_scope(self._modules)})"


class FileLogConsumer:
    """Rotating log file; ``serialize`` writes one JSON record per line for log shippers."""

    def __init__(
        self,
        path: str = DEFAULT_LOG_PATH,
        rotation: str = "10 MB",
        retention: int = 3,
        serialize: bool = False,
        modules: list[str] | None = None,
    ):
        self._path = path
        self._rotation = rotation
        self._retention = retention
        self._serialize = serialize
        self._modules = modules

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            format=_FILE_FORMAT,
            filter=module_filter(self._modules),
            rotation=self._rotation,
            retention=self._retention,
            serialize=self._serialize,
        )

    def describe(self, level: str) -> str:
        kind = "jsonl" if self._serialize else "text"
        return f"file ({self._path}, {kind}, {level}{_scope(self._modules)})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

_DEFAULT_CONSUMERS = [
    {"type": "console", "level": "WARNING", "modules": ["campaign_assistant"]},
    {"type": "file", "path": DEFAULT_LOG_PATH},
]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace loguru's sinks with the configured consumers. Returns one description per sink."""
    logger.remove()
    logger.configure(extra={"request_id": UNBOUND_REQUEST_ID})

    if consumers is None:
        consumers = _DEFAULT_CONSUMERS

    descriptions: list[str] = []
    for config in consumers:
        sink_type = config.get("type", "")
        cls = _CONSUMER_TYPES.get(sink_type)
        if cls is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        kwargs = {k: v for k, v in config.items() if k not in ("type", "level")}
        sink_level = config.get("level", level)

        consumer = cls(**kwargs)
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions
