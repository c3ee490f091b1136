"""
Driver restore step — bring back the open-source fallback driver.

Three independently switchable actions, in order:

    1. remove the fallback driver's blacklist files (contents kept in state)
    2. regenerate the boot image with the family's tool
    3. load the fallback module

If the boot image cannot be regenerated the blacklists are written back
immediately, before the step fails.  A fallback module that will not
load is only a warning: it becomes available after a reboot.
"""

from __future__ import annotations

import time

from igor.core import state_keys as keys
from igor.core.context import ExecutionContext
from igor.core.engine.step import Step, is_valid_module_name
from igor.core.errors import DetectionError, IgorError, ModuleError, StepCancelledError, ValidationError
from igor.core.kernel.manager import ModuleManager
from igor.core.models.distro import DistroFamily
from igor.core.models.step import StepResult
from igor.core.steps.paths import is_valid_path

DEFAULT_FALLBACK_MODULE = "nouveau"

BLACKLIST_PATHS = [
    "/etc/modprobe.d/blacklist-nouveau.conf",
    "/etc/modprobe.d/nvidia-blacklists-nouveau.conf",
    "/etc/modprobe.d/nvidia-installer-disable-nouveau.conf",
    "/etc/modprobe.d/nouveau-blacklist.conf",
]

DEFAULT_BLACKLIST_TEXT = (
    "# Blacklist nouveau for the proprietary GPU driver\n"
    "# Re-created by igor\n"
    "blacklist nouveau\n"
    "options nouveau modeset=0\n"
)


def boot_image_command(family: DistroFamily) -> tuple[str, list[str]]:
    """Initramfs regeneration command for ``family``."""
    if family in (DistroFamily.RHEL, DistroFamily.SUSE):
        return "dracut", ["--force"]
    if family == DistroFamily.ARCH:
        return "mkinitcpio", ["-P"]
    return "update-initramfs", ["-u"]


class DriverRestoreStep(Step):
    """Restore the fallback kernel driver after the vendor driver is gone."""

    def __init__(
        self,
        remove_blacklist: bool = True,
        regenerate_initramfs: bool = True,
        load_module: bool = True,
        fallback_module: str = DEFAULT_FALLBACK_MODULE,
        blacklist_paths: list[str] | None = None,
    ):
        super().__init__("driver_restore", "Restore the fallback GPU driver", can_rollback=True)
        self.remove_blacklist = remove_blacklist
        self.regenerate_initramfs = regenerate_initramfs
        self.load_module = load_module
        self.fallback_module = fallback_module
        self.blacklist_paths = list(BLACKLIST_PATHS if blacklist_paths is None else blacklist_paths)

    def validate(self, ctx: ExecutionContext) -> None:
        self._require_executor(ctx)
        if not is_valid_module_name(self.fallback_module):
            raise ValidationError(f"invalid module name: {self.fallback_module!r}")
        for path in self.blacklist_paths:
            if not is_valid_path(path):
                raise ValidationError(f"invalid blacklist path: {path!r}")

    @staticmethod
    def _family(ctx: ExecutionContext) -> DistroFamily:
        return ctx.distro.family if ctx.distro is not None else DistroFamily.UNKNOWN

    # ── Sub-operations ──────────────────────────────────────────

    def _remove_blacklists(self, ctx: ExecutionContext, removed: dict[str, str]) -> None:
        """Remove existing blacklist files, recording each one's content.

        Raises:
            IgorError: On the first file that cannot be removed.
        """
        for path in self.blacklist_paths:
            if not ctx.executor.run("test", "-f", path).ok:
                continue
            read = ctx.executor.run("cat", path)
            content = read.stdout if read.ok else ""
            result = ctx.executor.run("rm", "-f", path, elevated=True)
            if not result.ok:
                raise IgorError(f"failed to remove blacklist file '{path}': {result.error_message}")
            removed[path] = content
            ctx.log_debug("removed blacklist file", path=path)

    def _restore_blacklists(self, ctx: ExecutionContext, removed: dict[str, str]) -> BaseException | None:
        first: BaseException | None = None
        for path, content in removed.items():
            text = content or DEFAULT_BLACKLIST_TEXT
            result = ctx.executor.run("tee", path, input=text.encode("utf-8"), elevated=True)
            if not result.ok:
                err = IgorError(f"failed to re-create blacklist file '{path}': {result.error_message}")
                ctx.log_error("failed to re-create blacklist file", path=path, error=err)
                if first is None:
                    first = err
        return first

    def _regenerate(self, ctx: ExecutionContext) -> None:
        cmd, args = boot_image_command(self._family(ctx))
        ctx.log_debug("regenerating boot image", command=cmd)
        result = ctx.executor.run(cmd, *args, elevated=True)
        if not result.ok:
            raise IgorError(f"{cmd} failed: {result.error_message}")

    # ── Step contract ───────────────────────────────────────────

    def execute(self, ctx: ExecutionContext) -> StepResult:
        start = time.monotonic()
        if ctx.is_cancelled:
            return self._timed(StepResult.failure("step cancelled", StepCancelledError()), start)

        manager = ModuleManager(ctx.executor, ctx.detector)
        if self.load_module:
            try:
                already = manager.is_loaded(self.fallback_module)
            except (DetectionError, OSError) as e:
                ctx.log_warn("failed to check fallback module, proceeding anyway", error=e)
                already = False
            if already:
                ctx.log("fallback driver is already loaded", module=self.fallback_module)
                ctx.set_state(keys.DRIVER_RESTORED, True)
                ctx.set_state(keys.FALLBACK_MODULE_LOADED, False)
                return self._timed(
                    StepResult.skipped(f"{self.fallback_module} driver is already loaded"), start
                )

        if ctx.dry_run:
            if self.remove_blacklist:
                ctx.log("dry run: would remove blacklist files", paths=" ".join(self.blacklist_paths))
            if self.regenerate_initramfs:
                cmd, args = boot_image_command(self._family(ctx))
                ctx.log("dry run: would regenerate boot image", command=" ".join([cmd, *args]))
            if self.load_module:
                ctx.log("dry run: would load module", module=self.fallback_module)
            return self._timed(
                StepResult.completed(f"dry run: {self.fallback_module} would be restored"), start
            )

        removed: dict[str, str] = {}
        if self.remove_blacklist:
            ctx.log("removing fallback driver blacklist files")
            try:
                self._remove_blacklists(ctx, removed)
            except IgorError as e:
                ctx.log_error("failed to remove blacklist files", error=e)
                self._restore_blacklists(ctx, removed)
                return self._timed(StepResult.failure("failed to remove blacklist files", e), start)

        if ctx.is_cancelled:
            self._restore_blacklists(ctx, removed)
            return self._timed(StepResult.failure("step cancelled", StepCancelledError()), start)

        regenerated = False
        if self.regenerate_initramfs:
            ctx.log("regenerating boot image")
            try:
                self._regenerate(ctx)
            except IgorError as e:
                ctx.log_error("failed to regenerate boot image", error=e)
                self._restore_blacklists(ctx, removed)
                return self._timed(StepResult.failure("failed to regenerate initramfs", e), start)
            regenerated = True

        if ctx.is_cancelled:
            ctx.set_state(keys.BLACKLIST_REMOVED, bool(removed))
            ctx.set_state(keys.REMOVED_BLACKLISTS, dict(removed))
            ctx.set_state(keys.INITRAMFS_REGENERATED, regenerated)
            ctx.set_state(keys.DRIVER_RESTORED, True)
            return self._timed(StepResult.failure("step cancelled", StepCancelledError()), start)

        loaded = False
        if self.load_module:
            try:
                manager.load(self.fallback_module)
                loaded = True
            except ModuleError as e:
                ctx.log_warn("failed to load fallback module; available after reboot", error=e)

        needs_reboot = regenerated or (self.load_module and not loaded)
        ctx.set_state(keys.DRIVER_RESTORED, True)
        ctx.set_state(keys.BLACKLIST_REMOVED, bool(removed))
        ctx.set_state(keys.REMOVED_BLACKLISTS, dict(removed))
        ctx.set_state(keys.INITRAMFS_REGENERATED, regenerated)
        ctx.set_state(keys.FALLBACK_MODULE_LOADED, loaded)
        if needs_reboot:
            ctx.set_state(keys.NEEDS_REBOOT, True)

        ctx.log("fallback driver restored", module=self.fallback_module, reboot=needs_reboot)
        return self._timed(StepResult.completed(
            f"{self.fallback_module} driver restored successfully", can_rollback=True,
        ), start)

    def rollback(self, ctx: ExecutionContext) -> BaseException | None:
        if not ctx.get_bool(keys.DRIVER_RESTORED):
            ctx.log_debug("fallback driver was not restored, nothing to roll back")
            return None
        if ctx.executor is None:
            return IgorError("executor not available for rollback")

        first: BaseException | None = None
        if ctx.get_bool(keys.FALLBACK_MODULE_LOADED):
            try:
                ModuleManager(ctx.executor, ctx.detector).unload(self.fallback_module)
            except ModuleError as e:
                ctx.log_warn("failed to unload fallback module", error=e)
                first = e

        if ctx.get_bool(keys.BLACKLIST_REMOVED):
            removed = ctx.get_dict(keys.REMOVED_BLACKLISTS)
            if not removed and self.blacklist_paths:
                removed = {self.blacklist_paths[0]: ""}
            err = self._restore_blacklists(ctx, removed)
            if first is None:
                first = err

        if ctx.get_bool(keys.INITRAMFS_REGENERATED):
            try:
                self._regenerate(ctx)
            except IgorError as e:
                ctx.log_error("failed to regenerate boot image during rollback", error=e)
                if first is None:
                    first = e

        ctx.delete_state(
            keys.DRIVER_RESTORED, keys.BLACKLIST_REMOVED, keys.REMOVED_BLACKLISTS,
            keys.INITRAMFS_REGENERATED, keys.FALLBACK_MODULE_LOADED,
        )
        return first
