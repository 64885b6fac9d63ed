"""JSON-lines logger shared by every rates component."""

import json
import sys
import traceback
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from vesrates.utils.trace_context import get_current_trace

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

Context = dict[str, Any] | None


def _describe_exception(exception: BaseException) -> dict[str, str]:
    return {
        "type": type(exception).__name__,
        "message": str(exception),
        "stack_trace": "".join(
            traceback.format_exception(type(exception), exception, exception.__traceback__)
        ),
    }


class StructuredLogger:
    """
    Writes one JSON object per line to stdout (and optionally a file).

    Every entry carries timestamp, level, component and message. The active
    trace id is merged into the context unless the caller set one.
    """

    def __init__(self, component: str, file_path: str | None = None):
        self.component = component
        self.file_path = Path(file_path) if file_path else None
        if self.file_path is not None:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)

    def _format_log_entry(
        self,
        level: str,
        message: str,
        context: Context = None,
        exception: BaseException | None = None,
    ) -> str:
        merged = dict(context or {})
        trace_id = get_current_trace()
        if trace_id:
            merged.setdefault("trace_id", trace_id)

        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": level,
            "component": self.component,
            "message": message,
        }
        if merged:
            entry["context"] = merged
        if exception is not None:
            entry["exception"] = _describe_exception(exception)

        # Rates and timestamps are not always JSON-native
        return json.dumps(entry, default=str)

    def _write_log(self, line: str) -> None:
        try:
            print(line, file=sys.stdout)
            if self.file_path is not None:
                with self.file_path.open("a") as handle:
                    handle.write(line + "\n")
        except OSError as e:
            print(f"Failed to write log: {e}", file=sys.stderr)

    def _emit(self, level: str, message: str, context: Context, exception: BaseException | None) -> None:
        self._write_log(self._format_log_entry(level, message, context, exception))

    def debug(self, message: str, context: Context = None) -> None:
        self._emit("DEBUG", message, context, None)

    def info(self, message: str, context: Context = None) -> None:
        self._emit("INFO", message, context, None)

    def warning(self, message: str, context: Context = None, exception: BaseException | None = None) -> None:
        self._emit("WARNING", message, context, exception)

    def error(self, message: str, context: Context = None, exception: BaseException | None = None) -> None:
        """Log an error, with the exception's type, message and traceback if given."""
        self._emit("ERROR", message, context, exception)

    def critical(self, message: str, context: Context = None, exception: BaseException | None = None) -> None:
        self._emit("CRITICAL", message, context, exception)

    def log(
        self,
        level: str,
        message: str,
        context: Context = None,
        exception: BaseException | None = None,
    ) -> None:
        """
        Log at a level given by name.

        Unknown levels fall back to INFO; DEBUG and INFO entries never carry
        exception details.
        """
        level = level.upper()
        if level not in LEVELS:
            level = "INFO"
        if level in ("DEBUG", "INFO"):
            exception = None
        self._emit(level, message, context, exception)
