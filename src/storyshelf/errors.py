"""Structured diagnostics for sync activity.

Remote failures in the loader and the mutation coordinator never reach
the caller; they are recorded here (and logged) so a session can be
inspected after the fact.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

REPORT_FILENAME = ".storyshelf-last-sync.json"


class SyncError(BaseModel):
    """A single failure captured while talking to the server or cache."""

    operation: str
    message: str = ""
    error_type: str = "unknown"
    item_id: int | float | None = None
    timestamp: datetime = Field(default_factory=datetime.now)
    recoverable: bool = True


class SyncReport(BaseModel):
    """Summary of one session's remote and cache activity."""

    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime | None = None
    source: str = ""  # "remote" | "cache" | "empty"
    errors: list[SyncError] = Field(default_factory=list)
    operations: dict[str, int] = Field(default_factory=dict)

    def add_error(
        self,
        operation: str,
        message: str,
        *,
        error_type: str = "unknown",
        item_id: int | float | None = None,
        recoverable: bool = True,
    ) -> None:
        """Record a failure."""
        self.errors.append(
            SyncError(
                operation=operation,
                message=message,
                error_type=error_type,
                item_id=item_id,
                recoverable=recoverable,
            )
        )

    def count(self, operation: str) -> None:
        """Record that *operation* completed."""
        self.operations[operation] = self.operations.get(operation, 0) + 1

    def finish(self) -> None:
        self.finished_at = datetime.now()

    @property
    def success(self) -> bool:
        return not any(not e.recoverable for e in self.errors)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def summary_text(self) -> str:
        """Human-readable summary of the session."""
        lines = [f"Loaded from {self.source or 'nowhere'}"]

        if self.operations:
            parts = [f"{k}: {v}" for k, v in self.operations.items()]
            lines.append(f"Synced: {', '.join(parts)}")

        if self.errors:
            lines.append(f"Errors: {len(self.errors)}")
            for err in self.errors[:5]:
                target = f" #{err.item_id}" if err.item_id is not None else ""
                lines.append(f"  {err.operation}{target}: {err.message}")
            if len(self.errors) > 5:
                lines.append(f"  ... and {len(self.errors) - 5} more")

        return "\n".join(lines)


def save_report(report: SyncReport, output_dir: Path) -> Path:
    """Save the sync report to disk."""
    report_path = output_dir / REPORT_FILENAME
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
    return report_path


def load_report(output_dir: Path) -> SyncReport | None:
    """Load the last sync report from disk."""
    report_path = output_dir / REPORT_FILENAME
    if not report_path.exists():
        return None
    try:
        data = json.loads(report_path.read_text(encoding="utf-8"))
        return SyncReport.model_validate(data)
    except (json.JSONDecodeError, ValueError):
        logger.warning("Corrupt sync report at %s", report_path)
        return None
