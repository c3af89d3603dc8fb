"""
Logging setup for the relay: JSON lines for aggregators, coloured text for
local runs.

While a subscriber websocket is being served its connection is bound to a
ContextVar, so every line logged on its behalf carries the connection id and
(shortened) wallet without threading them through each call.
"""
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

# (connection_id, wallet) of the subscriber currently being served
connection_context: ContextVar[Optional[Tuple[str, str]]] = ContextVar("connection_context", default=None)

_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def bind_connection(connection_id: str, wallet: Optional[str] = None) -> None:
    """Attach a subscriber connection to log lines emitted in this context."""
    connection_context.set((connection_id, wallet or ""))


def current_connection() -> Optional[Tuple[str, str]]:
    return connection_context.get()


def unbind_connection() -> None:
    connection_context.set(None)


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    `event` from extra={...} is promoted to a top-level key; other extras go
    under "extra".
    """

    def __init__(self, server_id: Optional[str] = None):
        super().__init__()
        self.server_id = server_id

    def format(self, record: logging.LogRecord) -> str:
        extras = _record_extras(record)
        entry: Dict[str, Any] = {
            "ts": datetime.utcnow().isoformat(timespec="milliseconds") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": f"{record.module}:{record.lineno}",
        }
        event = extras.pop("event", None)
        if event:
            entry["event"] = event
        if self.server_id:
            entry["server_id"] = self.server_id

        bound = connection_context.get()
        if bound:
            entry["connection_id"], entry["wallet"] = bound[0], bound[1][:8]

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        if extras:
            entry["extra"] = extras

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Single-line text output, level coloured when writing to a terminal."""

    LEVEL_COLORS = {
        "DEBUG": "\033[2m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: Optional[bool] = None):
        super().__init__()
        self.use_colors = sys.stdout.isatty() if use_colors is None else use_colors

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.use_colors:
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}{self.RESET}"

        parts = [datetime.utcnow().strftime("%H:%M:%S.%f")[:-3], level]
        bound = connection_context.get()
        if bound:
            parts.append(f"<{bound[1][:8] or bound[0][:8]}>")
        parts.append(f"{record.name}: {record.getMessage()}")

        event = getattr(record, "event", None)
        if event:
            parts.append(f"[{event}]")

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    server_id: Optional[str] = None,
) -> logging.Logger:
    """
    Install a single stdout handler on the root logger.

    Args:
        level: DEBUG, INFO, WARNING or ERROR (unknown names fall back to INFO)
        json_output: JSONFormatter when True, ConsoleFormatter otherwise
        server_id: Stamped on every JSON line

    Returns:
        The root logger.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(server_id) if json_output else ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    # uvicorn access lines duplicate the relay's own connection logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(numeric_level)

    if numeric_level > logging.DEBUG:
        for noisy in ("websockets", "sqlalchemy.engine"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger
