"""
Step result models — the execution contract between steps and the engine.

Steps return a StepResult; they never raise out of ``execute``.
A failed result always explains itself (error or message); a
completed or skipped result never carries an error.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class StepStatus(StrEnum):
    """Outcome of a single step execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StepResult:
    """Result of executing one step."""

    status: StepStatus
    message: str = ""
    error: BaseException | None = None
    duration: float = 0.0            # seconds
    can_rollback: bool = False

    def __post_init__(self) -> None:
        if self.status == StepStatus.FAILED and not (self.error or self.message):
            raise ValueError("a failed StepResult needs an error or a message")
        if self.status in (StepStatus.COMPLETED, StepStatus.SKIPPED) and self.error:
            raise ValueError(f"a {self.status} StepResult cannot carry an error")

    @property
    def ok(self) -> bool:
        """Completed or skipped."""
        return self.status in (StepStatus.COMPLETED, StepStatus.SKIPPED)

    @property
    def failed(self) -> bool:
        return self.status == StepStatus.FAILED

    @property
    def error_message(self) -> str:
        if self.error is not None:
            return str(self.error)
        return self.message if self.failed else ""

    @classmethod
    def completed(cls, message: str = "", can_rollback: bool = False) -> StepResult:
        """Create a completed result."""
        return cls(status=StepStatus.COMPLETED, message=message, can_rollback=can_rollback)

    @classmethod
    def skipped(cls, reason: str = "") -> StepResult:
        """Create a skipped result."""
        return cls(status=StepStatus.SKIPPED, message=reason)

    @classmethod
    def failure(cls, message: str, error: BaseException | None = None) -> StepResult:
        """Create a failed result."""
        return cls(status=StepStatus.FAILED, message=message, error=error)

    def __str__(self) -> str:
        text = f"[{self.status}] {self.message}".rstrip()
        if self.error is not None:
            text += f": {self.error}"
        return text


@dataclass
class StepProgress:
    """Progress notification emitted before each step runs."""

    step_name: str
    index: int          # 0-based
    total: int
    message: str = ""

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return (self.index + 1) / self.total * 100.0
