"""
Module unload step — remove the vendor's kernel modules.

Records exactly the modules it unloaded (in unload order) so rollback
reloads only those, even when execute stops part-way.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from igor.core import state_keys as keys
from igor.core.context import ExecutionContext
from igor.core.engine.step import Step, is_valid_module_name
from igor.core.errors import (
    DetectionError,
    IgorError,
    ModuleError,
    ModuleInUseError,
    StepCancelledError,
    ValidationError,
)
from igor.core.kernel.manager import ModuleManager
from igor.core.kernel.modules import normalize_name, unload_order
from igor.core.models.config import DEFAULT_MODULES
from igor.core.models.step import StepResult


class ModuleUnloadStep(Step):
    """Unload kernel modules with bounded retry and optional force.

    Args:
        modules: Names in unload order (dependents before base).
        skip_if_not_loaded: Skip the step when none of them is loaded.
        force: Permit ``rmmod -f`` for modules still in use. The
            context's ``force`` flag also permits it.
        retry_count: Extra attempts for a module that is in use.
        retry_delay: Seconds between attempts.
    """

    def __init__(
        self,
        modules: list[str] | None = None,
        skip_if_not_loaded: bool = True,
        force: bool = False,
        retry_count: int = 3,
        retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__("module_unload", "Unload GPU kernel modules", can_rollback=True)
        self.modules = list(DEFAULT_MODULES if modules is None else modules)
        self.skip_if_not_loaded = skip_if_not_loaded
        self.force = force
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self._sleep = sleep

    def validate(self, ctx: ExecutionContext) -> None:
        self._require_executor(ctx)
        for name in self.modules:
            if not name:
                raise ValidationError("empty module name is not allowed")
            if not is_valid_module_name(name):
                raise ValidationError(f"invalid module name: {name!r}")

    def _manager(self, ctx: ExecutionContext) -> ModuleManager:
        return ModuleManager(ctx.executor, ctx.detector, sleep=self._sleep)

    def _to_unload(self, ctx: ExecutionContext, manager: ModuleManager) -> list[str]:
        try:
            loaded = {normalize_name(n) for n in manager.loaded_names()}
        except (DetectionError, OSError) as e:
            ctx.log_warn("failed to check loaded modules, proceeding anyway", error=e)
            return list(self.modules)

        targets = [n for n in self.modules if normalize_name(n) in loaded]
        if ctx.detector is not None:
            try:
                targets = unload_order(targets, ctx.detector.loaded_modules())
            except (DetectionError, OSError) as e:
                ctx.log_debug("keeping configured unload order", error=e)
        return targets

    @staticmethod
    def _record(ctx: ExecutionContext, unloaded: list[str], in_use: list[str]) -> None:
        ctx.set_state(keys.MODULES_UNLOADED, len(unloaded) > 0)
        ctx.set_state(keys.UNLOADED_MODULES, list(unloaded))
        if in_use:
            ctx.set_state(keys.MODULES_IN_USE, list(in_use))

    def execute(self, ctx: ExecutionContext) -> StepResult:
        start = time.monotonic()
        if ctx.is_cancelled:
            return self._timed(StepResult.failure("step cancelled", StepCancelledError()), start)

        if not self.modules:
            return self._timed(StepResult.skipped("no modules configured to unload"), start)

        manager = self._manager(ctx)
        targets = self._to_unload(ctx, manager)
        if not targets and self.skip_if_not_loaded:
            ctx.log("no vendor modules are loaded, skipping")
            return self._timed(StepResult.skipped("no vendor modules are loaded"), start)

        if ctx.dry_run:
            for name in targets:
                ctx.log("dry run: would run modprobe -r", module=name)
            return self._timed(
                StepResult.completed("dry run: kernel modules would be unloaded"), start
            )

        ctx.log("unloading kernel modules", modules=", ".join(targets))
        force_permitted = self.force or ctx.force
        unloaded: list[str] = []
        in_use: list[str] = []

        for name in targets:
            if ctx.is_cancelled:
                self._record(ctx, unloaded, in_use)
                return self._timed(StepResult.failure("step cancelled", StepCancelledError()), start)

            ctx.log_debug("unloading module", module=name)
            try:
                manager.unload_with_retry(
                    name, self.retry_count, self.retry_delay, lambda: ctx.is_cancelled
                )
            except StepCancelledError as e:
                self._record(ctx, unloaded, in_use)
                return self._timed(StepResult.failure("step cancelled", e), start)
            except ModuleInUseError as e:
                in_use.append(name)
                ctx.log_warn("module is in use", module=name)
                if not force_permitted:
                    self._record(ctx, unloaded, in_use)
                    return self._timed(StepResult.failure(
                        f"module '{name}' is in use and cannot be unloaded", e,
                    ), start)
                ctx.log_warn("attempting force unload", module=name)
                try:
                    manager.force_unload(name)
                except ModuleError as fe:
                    ctx.log_error("force unload failed", module=name, error=fe)
                    self._record(ctx, unloaded, in_use)
                    return self._timed(StepResult.failure(
                        f"failed to force unload module '{name}'", fe,
                    ), start)
            except ModuleError as e:
                ctx.log_error("failed to unload module", module=name, error=e)
                self._record(ctx, unloaded, in_use)
                return self._timed(StepResult.failure(f"failed to unload module '{name}'", e), start)
            unloaded.append(name)

        self._record(ctx, unloaded, in_use)
        ctx.log("kernel modules unloaded", count=len(unloaded))
        return self._timed(
            StepResult.completed("kernel modules unloaded successfully", can_rollback=True), start
        )

    def rollback(self, ctx: ExecutionContext) -> BaseException | None:
        if not ctx.get_bool(keys.MODULES_UNLOADED):
            ctx.log_debug("no modules were unloaded, nothing to roll back")
            return None
        unloaded = ctx.get_list(keys.UNLOADED_MODULES)
        if not unloaded:
            return None
        if ctx.executor is None:
            return IgorError("executor not available for rollback")

        ctx.log("reloading unloaded modules", modules=", ".join(unloaded))
        err = self._manager(ctx).reload(unloaded)
        if err is not None:
            ctx.log_error("failed to reload modules during rollback", error=err)
            return err

        ctx.delete_state(keys.MODULES_UNLOADED, keys.UNLOADED_MODULES, keys.MODULES_IN_USE)
        return None
