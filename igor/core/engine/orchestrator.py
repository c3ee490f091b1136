"""
Orchestrator — runs a workflow with hooks, policy, and an event log.

    pre_execute hooks → workflow (pre_step / post_step around each step)
                      → post_execute hooks → optional auto-rollback → report

Every hook failure is wrapped in HookError and fails the run.  The
execution log records one entry per lifecycle event; the report's step
counters are derived from it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from igor.core.context import ExecutionContext
from igor.core.engine.step import Step
from igor.core.engine.workflow import ProgressCallback, Workflow
from igor.core.errors import HookError
from igor.core.models.report import (
    EventType,
    ExecutionEntry,
    ExecutionReport,
    UninstallResult,
    UninstallStatus,
)
from igor.core.models.step import StepResult, StepStatus

logger = logging.getLogger(__name__)

ExecuteHook = Callable[[ExecutionContext], None]
PreStepHook = Callable[[ExecutionContext, Step], None]
PostStepHook = Callable[[ExecutionContext, Step, StepResult], None]

_STEP_EVENTS = {
    StepStatus.COMPLETED: EventType.STEP_COMPLETED,
    StepStatus.SKIPPED: EventType.STEP_SKIPPED,
    StepStatus.FAILED: EventType.STEP_FAILED,
}

_WORKFLOW_EVENTS = {
    UninstallStatus.COMPLETED: EventType.WORKFLOW_COMPLETED,
    UninstallStatus.PARTIAL: EventType.WORKFLOW_COMPLETED,
    UninstallStatus.FAILED: EventType.WORKFLOW_FAILED,
    UninstallStatus.CANCELLED: EventType.WORKFLOW_CANCELLED,
}


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class Orchestrator:
    """Wraps a workflow with lifecycle hooks and error policy.

    Args:
        workflow: The steps to run.
        stop_on_first_error: When False, failed steps do not stop the run.
        auto_rollback: Roll back after a failed (not cancelled) run.
        dry_run: When set, overrides the context's dry-run flag.
    """

    def __init__(
        self,
        workflow: Workflow,
        *,
        stop_on_first_error: bool = True,
        auto_rollback: bool = False,
        dry_run: bool | None = None,
    ):
        self.workflow = workflow
        self.stop_on_first_error = stop_on_first_error
        self.auto_rollback = auto_rollback
        self.dry_run = dry_run

        self._pre_execute: list[ExecuteHook] = []
        self._post_execute: list[ExecuteHook] = []
        self._pre_step: list[PreStepHook] = []
        self._post_step: list[PostStepHook] = []
        self._entries: list[ExecutionEntry] = []
        self._lock = threading.Lock()

    # ── Hooks ───────────────────────────────────────────────────

    def add_pre_execute_hook(self, hook: ExecuteHook) -> None:
        self._pre_execute.append(hook)

    def add_post_execute_hook(self, hook: ExecuteHook) -> None:
        self._post_execute.append(hook)

    def add_pre_step_hook(self, hook: PreStepHook) -> None:
        self._pre_step.append(hook)

    def add_post_step_hook(self, hook: PostStepHook) -> None:
        self._post_step.append(hook)

    @staticmethod
    def _call(name: str, hook: Callable, *args) -> None:
        try:
            hook(*args)
        except HookError:
            raise
        except Exception as e:
            raise HookError(name, e) from e

    # ── Event log ───────────────────────────────────────────────

    def _record(
        self,
        event: EventType,
        step_name: str = "",
        message: str = "",
        duration: float = 0.0,
        error: BaseException | str | None = None,
    ) -> None:
        entry = ExecutionEntry(
            event=event,
            step_name=step_name,
            message=message,
            duration=duration,
            error=str(error) if error else "",
        )
        with self._lock:
            self._entries.append(entry)
        logger.debug("%s %s %s", event, step_name, message)

    @property
    def entries(self) -> list[ExecutionEntry]:
        with self._lock:
            return list(self._entries)

    # ── Control ─────────────────────────────────────────────────

    def on_progress(self, callback: ProgressCallback | None) -> None:
        self.workflow.on_progress(callback)

    def cancel(self) -> None:
        self.workflow.cancel()

    def reset(self) -> None:
        """Clear the log and the workflow's run state."""
        with self._lock:
            self._entries = []
        self.workflow.reset()

    # ── Execution ───────────────────────────────────────────────

    def execute(self, ctx: ExecutionContext) -> ExecutionReport:
        """Run the workflow and build the report."""
        if self.dry_run is not None:
            ctx.dry_run = self.dry_run

        with self._lock:
            self._entries = []
        report = ExecutionReport(
            workflow_name=self.workflow.name,
            started_at=_now_iso(),
            dry_run=ctx.dry_run,
        )

        self._record(EventType.WORKFLOW_STARTED, message=f"starting {self.workflow.name}")
        logger.info("Starting workflow %s (dry_run=%s)", self.workflow.name, ctx.dry_run)

        try:
            for hook in self._pre_execute:
                self._call("pre_execute", hook, ctx)
        except HookError as e:
            logger.error("%s", e)
            report.result = UninstallResult(status=UninstallStatus.FAILED, error=e)
            self._record(EventType.WORKFLOW_FAILED, message=str(e), error=e)
            return self._finish(report)

        def before_step(step: Step) -> None:
            self._record(EventType.STEP_STARTED, step.name, step.description)
            for hook in self._pre_step:
                self._call("pre_step", hook, ctx, step)

        def after_step(step: Step, result: StepResult) -> None:
            self._record(
                _STEP_EVENTS.get(result.status, EventType.STEP_FAILED),
                step.name,
                result.message,
                result.duration,
                result.error,
            )
            for hook in self._post_step:
                self._call("post_step", hook, ctx, step, result)

        result = self.workflow.execute(
            ctx,
            before_step=before_step,
            after_step=after_step,
            stop_on_first_error=self.stop_on_first_error,
        )
        report.result = result

        try:
            for hook in self._post_execute:
                self._call("post_execute", hook, ctx)
        except HookError as e:
            logger.error("%s", e)
            if result.status in (UninstallStatus.COMPLETED, UninstallStatus.PARTIAL):
                result.status = UninstallStatus.FAILED
                result.error = e

        self._record(
            _WORKFLOW_EVENTS.get(result.status, EventType.WORKFLOW_FAILED),
            step_name=result.failed_step,
            message=str(result.status),
            duration=result.total_duration,
            error=result.error,
        )

        if result.status == UninstallStatus.FAILED and self.auto_rollback and not ctx.dry_run:
            self._rollback(ctx, report)

        return self._finish(report)

    def _rollback(self, ctx: ExecutionContext, report: ExecutionReport) -> None:
        self._record(EventType.ROLLBACK_STARTED, message="rolling back completed steps")
        logger.warning("Workflow %s failed, rolling back", self.workflow.name)

        errors = self.workflow.rollback(ctx, include_failed=True)
        report.rolled_back = True
        if errors:
            name, first = errors[0]
            report.rollback_error = f"{name}: {first}"
            for step_name, err in errors:
                self._record(EventType.ROLLBACK_FAILED, step_name, "rollback failed", error=err)
        else:
            self._record(EventType.ROLLBACK_COMPLETED, message="rollback completed")

    def _finish(self, report: ExecutionReport) -> ExecutionReport:
        report.ended_at = _now_iso()
        report.entries = self.entries
        status = report.result.status
        marker = "✓" if report.result.succeeded else "⊘" if status == UninstallStatus.CANCELLED else "✗"
        logger.info("%s %s → %s", marker, self.workflow.name, status)
        return report
