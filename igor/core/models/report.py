"""
Execution report models — what the workflow and orchestrator hand back.

UninstallResult is the workflow's aggregate. ExecutionReport adds the
orchestrator's event log and derived counters on top of it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class UninstallStatus(StrEnum):
    """Overall status of an uninstall run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EventType(StrEnum):
    """Kinds of entries in the orchestrator's execution log."""

    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_SKIPPED = "step_skipped"
    STEP_FAILED = "step_failed"
    ROLLBACK_STARTED = "rollback_started"
    ROLLBACK_COMPLETED = "rollback_completed"
    ROLLBACK_FAILED = "rollback_failed"


@dataclass
class ExecutionEntry:
    """One event in the execution log."""

    event: EventType
    step_name: str = ""
    message: str = ""
    duration: float = 0.0
    error: str = ""
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "event": str(self.event),
            "step": self.step_name,
            "message": self.message,
            "duration": round(self.duration, 3),
            "error": self.error,
        }


@dataclass
class UninstallResult:
    """Aggregate outcome of one workflow execution.

    Only steps produce the package and config facts; the workflow
    copies them out of the context's shared state.
    """

    status: UninstallStatus = UninstallStatus.PENDING
    removed_packages: list[str] = field(default_factory=list)
    failed_packages: list[str] = field(default_factory=list)
    cleaned_configs: list[str] = field(default_factory=list)
    completed_steps: list[str] = field(default_factory=list)
    failed_step: str = ""
    error: BaseException | None = None
    total_duration: float = 0.0
    needs_reboot: bool = False
    driver_restored: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status in (UninstallStatus.COMPLETED, UninstallStatus.PARTIAL)

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error is not None else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": str(self.status),
            "removed_packages": list(self.removed_packages),
            "failed_packages": list(self.failed_packages),
            "cleaned_configs": list(self.cleaned_configs),
            "completed_steps": list(self.completed_steps),
            "failed_step": self.failed_step,
            "error": self.error_message,
            "total_duration": round(self.total_duration, 3),
            "needs_reboot": self.needs_reboot,
            "driver_restored": self.driver_restored,
        }


@dataclass
class ExecutionReport:
    """Orchestrator report: workflow result plus the execution log."""

    workflow_name: str = ""
    result: UninstallResult = field(default_factory=UninstallResult)
    entries: list[ExecutionEntry] = field(default_factory=list)
    started_at: str = ""
    ended_at: str = ""
    dry_run: bool = False
    rolled_back: bool = False
    rollback_error: str = ""

    @property
    def status(self) -> UninstallStatus:
        return self.result.status

    def _count(self, event: EventType) -> int:
        return sum(1 for e in self.entries if e.event == event)

    @property
    def steps_executed(self) -> int:
        return self._count(EventType.STEP_STARTED)

    @property
    def steps_completed(self) -> int:
        return self._count(EventType.STEP_COMPLETED)

    @property
    def steps_skipped(self) -> int:
        return self._count(EventType.STEP_SKIPPED)

    @property
    def steps_failed(self) -> int:
        return self._count(EventType.STEP_FAILED)

    def to_dict(self) -> dict[str, Any]:
        data = self.result.to_dict()
        data.update({
            "workflow": self.workflow_name,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "dry_run": self.dry_run,
            "steps_executed": self.steps_executed,
            "steps_completed": self.steps_completed,
            "steps_skipped": self.steps_skipped,
            "steps_failed": self.steps_failed,
            "rolled_back": self.rolled_back,
            "rollback_error": self.rollback_error,
            "entries": [e.to_dict() for e in self.entries],
        })
        return data
