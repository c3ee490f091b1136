"""
Workflow — an ordered, named list of steps run one at a time.

For each step, in declaration order:

    cancellation check → progress → validate → execute → collect facts

A validation failure or a failed result stops the run (unless the
caller asks to continue past errors).  A failure caused by
cancellation, or a cancellation seen at a step boundary, ends the run
as ``cancelled`` rather than ``failed``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from igor.core import state_keys as keys
from igor.core.context import ExecutionContext
from igor.core.engine.step import Step
from igor.core.errors import HookError, StepCancelledError, ValidationError
from igor.core.models.report import UninstallResult, UninstallStatus
from igor.core.models.step import StepProgress, StepResult, StepStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[StepProgress], None]
BeforeStep = Callable[[Step], None]
AfterStep = Callable[[Step, StepResult], None]


def collect_facts(ctx: ExecutionContext, result: UninstallResult) -> None:
    """Copy step-produced facts from shared state into ``result``."""
    if ctx.has_state(keys.REMOVED_PACKAGES):
        result.removed_packages = ctx.get_list(keys.REMOVED_PACKAGES)
    if ctx.has_state(keys.FAILED_PACKAGES):
        result.failed_packages = ctx.get_list(keys.FAILED_PACKAGES)
    if ctx.has_state(keys.CLEANED_CONFIGS):
        result.cleaned_configs = ctx.get_list(keys.CLEANED_CONFIGS)
    if ctx.get_bool(keys.DRIVER_RESTORED):
        result.driver_restored = True
    if ctx.get_bool(keys.NEEDS_REBOOT):
        result.needs_reboot = True


class Workflow:
    """Sequential step executor."""

    def __init__(self, name: str, steps: list[Step] | None = None):
        self._name = name
        self._steps: list[Step] = list(steps or [])
        self._completed: list[Step] = []
        self._failed: Step | None = None
        self._progress_cb: ProgressCallback | None = None
        self._cancelled = threading.Event()
        self._running = False
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def steps(self) -> list[Step]:
        with self._lock:
            return list(self._steps)

    @property
    def completed_steps(self) -> list[Step]:
        with self._lock:
            return list(self._completed)

    @property
    def failed_step(self) -> Step | None:
        return self._failed

    def add_step(self, step: Step) -> None:
        """Append a step. Not allowed while executing."""
        with self._lock:
            if self._running:
                raise RuntimeError("cannot add steps while the workflow is executing")
            self._steps.append(step)

    def on_progress(self, callback: ProgressCallback | None) -> None:
        self._progress_cb = callback

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def reset(self) -> None:
        with self._lock:
            self._completed = []
            self._failed = None
        self._cancelled.clear()

    def _progress(self, step_name: str, index: int, total: int, message: str) -> None:
        if self._progress_cb is not None:
            self._progress_cb(StepProgress(step_name, index, total, message))

    def _run_step(self, step: Step, ctx: ExecutionContext) -> StepResult:
        start = time.monotonic()
        try:
            step.validate(ctx)
        except ValidationError as e:
            return StepResult.failure(f"validation failed: {e}", e)
        except Exception as e:
            logger.exception("Step %s raised from validate", step.name)
            return StepResult.failure(f"validation failed: {e}", ValidationError(str(e)))

        try:
            result = step.execute(ctx)
        except Exception as e:
            logger.exception("Step %s raised from execute", step.name)
            result = StepResult.failure(f"step raised: {e}", e)

        if not result.duration:
            result.duration = time.monotonic() - start
        return result

    def execute(
        self,
        ctx: ExecutionContext,
        *,
        before_step: BeforeStep | None = None,
        after_step: AfterStep | None = None,
        stop_on_first_error: bool = True,
    ) -> UninstallResult:
        """Run every step against ``ctx`` and aggregate the outcome.

        ``before_step`` / ``after_step`` are called around each executed
        step; a HookError they raise fails that step.
        """
        start = time.monotonic()
        with self._lock:
            self._running = True
            self._completed = []
            self._failed = None
            steps = list(self._steps)

        result = UninstallResult(status=UninstallStatus.RUNNING)
        total = len(steps)

        def fail(step: Step, error: BaseException | None) -> None:
            if self._failed is None:
                self._failed = step
                result.failed_step = step.name
                result.error = error
            result.status = UninstallStatus.FAILED

        try:
            for index, step in enumerate(steps):
                if self.is_cancelled or ctx.is_cancelled:
                    logger.info("Workflow %s cancelled before %s", self._name, step.name)
                    result.status = UninstallStatus.CANCELLED
                    break

                self._progress(step.name, index, total, f"Starting: {step.description or step.name}")

                try:
                    if before_step is not None:
                        before_step(step)
                    step_result = self._run_step(step, ctx)
                    if after_step is not None:
                        after_step(step, step_result)
                except HookError as e:
                    fail(step, e)
                    if stop_on_first_error:
                        break
                    continue

                if step_result.status == StepStatus.COMPLETED:
                    with self._lock:
                        self._completed.append(step)
                    result.completed_steps.append(step.name)
                    self._progress(step.name, index, total, f"Completed: {step_result.message}")
                elif step_result.status == StepStatus.SKIPPED:
                    self._progress(step.name, index, total, f"Skipped: {step_result.message}")
                elif isinstance(step_result.error, StepCancelledError):
                    collect_facts(ctx, result)
                    self._failed = step
                    result.status = UninstallStatus.CANCELLED
                    break
                else:
                    self._progress(step.name, index, total, f"Failed: {step_result.message}")
                    fail(step, step_result.error or RuntimeError(step_result.message))
                    collect_facts(ctx, result)
                    if stop_on_first_error:
                        break
                    continue

                collect_facts(ctx, result)

            if result.status == UninstallStatus.RUNNING:
                result.status = UninstallStatus.COMPLETED
                if result.removed_packages and result.failed_packages:
                    result.status = UninstallStatus.PARTIAL
                self._progress("", max(total - 1, 0), total, "Uninstall completed")
        finally:
            with self._lock:
                self._running = False
            result.total_duration = time.monotonic() - start

        return result

    def rollback(self, ctx: ExecutionContext, include_failed: bool = False) -> list[tuple[str, BaseException]]:
        """Roll back completed steps in reverse order.

        With ``include_failed`` the step that failed (or was cancelled)
        is rolled back first, since it may have recorded partial work.
        Continues past errors; returns ``(step name, error)`` pairs.
        """
        targets = list(reversed(self.completed_steps))
        if include_failed and self._failed is not None:
            targets.insert(0, self._failed)

        errors: list[tuple[str, BaseException]] = []
        for step in targets:
            if not step.can_rollback():
                logger.debug("Step %s cannot be rolled back, skipping", step.name)
                continue
            try:
                err = step.rollback(ctx)
            except Exception as e:
                err = e
            if err is not None:
                logger.warning("Rollback of %s failed: %s", step.name, err)
                errors.append((step.name, err))
        return errors

    def __repr__(self) -> str:
        return f"<Workflow name={self._name!r} steps={len(self._steps)}>"
