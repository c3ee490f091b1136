"""
Package removal step — uninstall vendor packages through the package manager.

Targets come from discovery (``remove_all``), an explicit list, or both,
deduplicated in that order.  Removal runs as one call or in fixed-size
batches; a failed batch does not stop the others.  Removed and failed
packages are tracked separately and always recorded.
"""

from __future__ import annotations

import time

from igor.core import state_keys as keys
from igor.core.context import ExecutionContext
from igor.core.discovery.discovery import Discovery
from igor.core.engine.step import Step
from igor.core.errors import IgorError, PackageError, StepCancelledError, ValidationError
from igor.core.models.package import RemoveOptions
from igor.core.models.step import StepResult


def batches(items: list[str], size: int) -> list[list[str]]:
    """Split ``items`` into batches of ``size``; ``size <= 0`` means one batch."""
    if size <= 0:
        return [list(items)] if items else []
    return [items[i:i + size] for i in range(0, len(items), size)]


class PackageRemovalStep(Step):
    """Remove packages, accounting for partial failure.

    Args:
        packages: Explicit package names.
        remove_all: Also remove every package discovery reports.
        discovery: Required when ``remove_all`` is set.
        batch_size: Packages per remove call; ``<= 0`` removes all at once.
    """

    def __init__(
        self,
        packages: list[str] | None = None,
        remove_all: bool = False,
        discovery: Discovery | None = None,
        purge: bool = False,
        auto_remove: bool = True,
        batch_size: int = 0,
    ):
        super().__init__("package_removal", "Remove GPU driver packages", can_rollback=False)
        self.packages = list(packages or [])
        self.remove_all = remove_all
        self.discovery = discovery
        self.purge = purge
        self.auto_remove = auto_remove
        self.batch_size = batch_size

    def validate(self, ctx: ExecutionContext) -> None:
        if ctx.package_manager is None:
            raise ValidationError("package manager is required for package removal")
        if not self.remove_all and not self.packages:
            raise ValidationError("either remove_all must be set or packages must be given")
        if self.remove_all and self.discovery is None:
            raise ValidationError("discovery is required when remove_all is set")

    def targets(self, ctx: ExecutionContext) -> list[str]:
        """Packages to remove, discovery first, deduplicated.

        Raises:
            PackageError: If discovery fails.
        """
        found: list[str] = []
        if self.remove_all and self.discovery is not None:
            discovered = self.discovery.discover()
            ctx.log_debug("discovered packages", count=discovered.total_count)
            found.extend(discovered.all_packages)
        found.extend(self.packages)

        seen: set[str] = set()
        out = []
        for name in found:
            if name and name not in seen:
                seen.add(name)
                out.append(name)
        return out

    def _record(self, ctx: ExecutionContext, removed: list[str], failed: list[str]) -> None:
        ctx.set_state(keys.REMOVED_PACKAGES, list(removed))
        ctx.set_state(keys.FAILED_PACKAGES, list(failed))
        ctx.set_state(keys.REMOVAL_PURGED, self.purge)
        ctx.set_state(keys.PACKAGES_REMOVED, len(removed) > 0)

    def execute(self, ctx: ExecutionContext) -> StepResult:
        start = time.monotonic()
        if ctx.is_cancelled:
            return self._timed(StepResult.failure("step cancelled", StepCancelledError()), start)

        try:
            packages = self.targets(ctx)
        except IgorError as e:
            ctx.log_error("failed to determine packages to remove", error=e)
            return self._timed(StepResult.failure("failed to determine packages", e), start)

        if not packages:
            ctx.log("no packages to remove")
            return self._timed(StepResult.skipped("no packages to remove"), start)

        if ctx.dry_run:
            ctx.log("dry run: would remove packages", packages=" ".join(packages), purge=self.purge)
            return self._timed(StepResult.completed("dry run: packages would be removed"), start)

        options = RemoveOptions(purge=self.purge, auto_remove=self.auto_remove, no_confirm=True)
        removed: list[str] = []
        failed: list[str] = []
        last_error: BaseException | None = None
        chunks = batches(packages, self.batch_size)

        for index, batch in enumerate(chunks, start=1):
            if ctx.is_cancelled:
                for rest in chunks[index - 1:]:
                    failed.extend(rest)
                self._record(ctx, removed, failed)
                ctx.log_warn("package removal cancelled", removed=len(removed), untried=len(failed))
                return self._timed(StepResult.failure("step cancelled", StepCancelledError()), start)

            ctx.log("removing package batch", batch=index, packages=" ".join(batch))
            try:
                ctx.package_manager.remove(batch, options)
            except Exception as e:
                ctx.log_error("failed to remove batch", batch=index, error=e)
                failed.extend(batch)
                last_error = e
                continue
            removed.extend(batch)

        self._record(ctx, removed, failed)

        if not removed and failed:
            ctx.log_error("package removal failed", failed=" ".join(failed))
            return self._timed(StepResult.failure(
                "failed to remove any packages", last_error or PackageError("removal failed"),
            ), start)

        if failed:
            ctx.log_warn("some packages failed to remove", removed=len(removed), failed=len(failed))
            return self._timed(StepResult.completed(
                f"partially removed packages: {len(removed)} removed, {len(failed)} failed"
            ), start)

        ctx.log("packages removed successfully", count=len(removed))
        return self._timed(StepResult.completed("packages removed successfully"), start)

    def rollback(self, ctx: ExecutionContext) -> BaseException | None:
        ctx.log_warn("package removal cannot be rolled back; packages are not reinstalled")
        return None
