"""Observability for compile runs - structured events plus logging."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class CompileEvent:
    """A single event in a compile run."""

    timestamp: datetime
    event_type: str  # "thread_fetch", "parse", "merge", "lint", "publish", "error"
    data: Dict[str, Any]
    duration_ms: Optional[float] = None


class CompileObserver:
    """
    Observability layer for tracking compile and publish runs.

    Collects events and mirrors them to the ``brenner_agent`` logger.
    """

    def __init__(self, thread_id: Optional[str] = None, verbose: bool = False):
        self.events: List[CompileEvent] = []
        self.logger = logging.getLogger("brenner_agent")
        self.thread_id = thread_id
        self.verbose = verbose
        self._setup_logging()

    def _prefix(self) -> str:
        return f"[{self.thread_id}] " if self.thread_id else ""

    def _setup_logging(self):
        """Configure logging format and handlers."""
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)
        self.logger.setLevel(logging.INFO if self.verbose else logging.WARNING)

    def _record(self, event_type: str, data: Dict[str, Any], duration_ms: Optional[float] = None) -> CompileEvent:
        event = CompileEvent(timestamp=datetime.now(), event_type=event_type, data=data, duration_ms=duration_ms)
        self.events.append(event)
        return event

    def log_thread_fetch(self, project_key: str, message_count: int, duration_ms: float):
        self._record(
            "thread_fetch",
            {"project_key": project_key, "message_count": message_count},
            duration_ms,
        )
        self.logger.info(f"{self._prefix()}Fetched {message_count} messages from {project_key} ({duration_ms:.2f}ms)")

    def log_parse(self, total_blocks: int, valid_blocks: int, invalid_blocks: int):
        self._record(
            "parse",
            {"total_blocks": total_blocks, "valid_blocks": valid_blocks, "invalid_blocks": invalid_blocks},
        )
        self.logger.info(f"{self._prefix()}Parsed {total_blocks} delta blocks ({invalid_blocks} invalid)")
        if invalid_blocks:
            self.logger.warning(f"{self._prefix()}{invalid_blocks} delta block(s) rejected by the parser")

    def log_merge(self, applied: int, skipped: int, warnings: int, duration_ms: Optional[float] = None):
        self._record("merge", {"applied": applied, "skipped": skipped, "warnings": warnings}, duration_ms)
        self.logger.info(f"{self._prefix()}Merged: {applied} applied, {skipped} skipped, {warnings} warnings")

    def log_lint(self, valid: bool, errors: int, warnings: int):
        self._record("lint", {"valid": valid, "errors": errors, "warnings": warnings})
        level = logging.INFO if valid else logging.WARNING
        self.logger.log(level, f"{self._prefix()}Lint {'passed' if valid else 'failed'}: {errors} errors, {warnings} warnings")

    def log_publish(self, subject: str, recipients: List[str], duration_ms: float):
        self._record("publish", {"subject": subject, "recipients": recipients}, duration_ms)
        self.logger.info(f"{self._prefix()}Published '{subject}' to {', '.join(recipients)} ({duration_ms:.2f}ms)")

    def log_error(self, error_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        """
        Log an error event.

        Args:
            error_type: Type of error (e.g., "thread_fetch", "merge", "config")
            message: Error message
            context: Additional context about the error
        """
        self._record("error", {"error_type": error_type, "message": message, "context": context or {}})
        self.logger.error(f"{self._prefix()}Error ({error_type}): {message}")

    def get_stats(self) -> Dict[str, Any]:
        """Aggregate counters over the recorded events."""
        by_type: Dict[str, int] = {}
        for event in self.events:
            by_type[event.event_type] = by_type.get(event.event_type, 0) + 1

        merged = [e for e in self.events if e.event_type == "merge"]
        parsed = [e for e in self.events if e.event_type == "parse"]

        return {
            "event_count": len(self.events),
            "errors": by_type.get("error", 0),
            "publishes": by_type.get("publish", 0),
            "delta_blocks": sum(e.data.get("total_blocks", 0) for e in parsed),
            "invalid_blocks": sum(e.data.get("invalid_blocks", 0) for e in parsed),
            "applied": sum(e.data.get("applied", 0) for e in merged),
            "skipped": sum(e.data.get("skipped", 0) for e in merged),
            "total_duration_ms": sum(e.duration_ms or 0 for e in self.events),
        }

    def print_summary(self):
        """Print a formatted summary of the run."""
        stats = self.get_stats()

        print("\n" + "=" * 60)
        print("COMPILE SUMMARY")
        print("=" * 60)
        print(f"Total Events:     {stats['event_count']}")
        print(f"Delta Blocks:     {stats['delta_blocks']} ({stats['invalid_blocks']} invalid)")
        print(f"Applied/Skipped:  {stats['applied']}/{stats['skipped']}")
        print(f"Publishes:        {stats['publishes']}")
        print(f"Errors:           {stats['errors']}")
        print(f"Total Duration:   {stats['total_duration_ms']:.2f}ms")
        print("=" * 60 + "\n")

    def clear(self):
        """Clear all recorded events."""
        self.events.clear()
