"""
Configuration cleanup step — remove the vendor's config files.

Each existing candidate is copied under the backup directory (layout
preserved) before removal.  A file whose backup fails is left in place
and listed as failed, so everything removed stays restorable.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable

from igor.core import state_keys as keys
from igor.core.context import ExecutionContext
from igor.core.engine.step import Step
from igor.core.errors import IgorError, StepCancelledError, ValidationError
from igor.core.models.config import DEFAULT_ALLOWED_DIRS, DEFAULT_BACKUP_DIR
from igor.core.models.step import StepResult
from igor.core.steps.paths import (
    BLACKLIST_CONFIG_PATHS,
    MODPROBE_CONFIG_PATHS,
    PERSISTENCE_CONFIG_PATHS,
    XORG_CONFIG_PATHS,
    backup_path_for,
    is_valid_path,
)


class ConfigCleanupStep(Step):
    """Back up and remove configuration files.

    Args:
        paths: Extra paths, checked before the default groups.
        backup: Copy each file to ``backup_dir`` before removing it.
        allowed_dirs: Directories paths must live under.
        file_exists: Existence check (default ``os.path.isfile``).
    """

    def __init__(
        self,
        paths: list[str] | None = None,
        backup: bool = True,
        backup_dir: str = DEFAULT_BACKUP_DIR,
        allowed_dirs: list[str] | None = None,
        include_blacklist: bool = True,
        include_xorg: bool = True,
        include_modprobe: bool = True,
        include_persistence: bool = True,
        file_exists: Callable[[str], bool] = os.path.isfile,
    ):
        super().__init__("config_cleanup", "Remove GPU driver configuration files",
                         can_rollback=backup)
        self.paths = list(paths or [])
        self.backup = backup
        self.backup_dir = backup_dir
        self.allowed_dirs = list(DEFAULT_ALLOWED_DIRS if allowed_dirs is None else allowed_dirs)
        self.include_blacklist = include_blacklist
        self.include_xorg = include_xorg
        self.include_modprobe = include_modprobe
        self.include_persistence = include_persistence
        self._file_exists = file_exists

    def is_valid_path(self, path: str) -> bool:
        return is_valid_path(path, self.allowed_dirs)

    def validate(self, ctx: ExecutionContext) -> None:
        self._require_executor(ctx)
        if self.backup and not self.is_valid_path(self.backup_dir):
            raise ValidationError(f"invalid backup directory path: {self.backup_dir!r}")
        for path in self.paths:
            if not self.is_valid_path(path):
                raise ValidationError(f"invalid config path: {path!r}")

    def candidate_paths(self) -> list[str]:
        """Caller paths then enabled default groups, deduplicated, valid only."""
        groups = [self.paths]
        if self.include_blacklist:
            groups.append(BLACKLIST_CONFIG_PATHS)
        if self.include_xorg:
            groups.append(XORG_CONFIG_PATHS)
        if self.include_modprobe:
            groups.append(MODPROBE_CONFIG_PATHS)
        if self.include_persistence:
            groups.append(PERSISTENCE_CONFIG_PATHS)

        seen: set[str] = set()
        out: list[str] = []
        for group in groups:
            for p in group:
                if p and p not in seen and self.is_valid_path(p):
                    seen.add(p)
                    out.append(p)
        return out

    def _record(
        self,
        ctx: ExecutionContext,
        cleaned: list[str],
        backed_up: dict[str, str],
        failed: list[str],
    ) -> None:
        ctx.set_state(keys.CONFIGS_CLEANED, len(cleaned) > 0)
        ctx.set_state(keys.CLEANED_CONFIGS, list(cleaned))
        ctx.set_state(keys.BACKED_UP_CONFIGS, dict(backed_up))
        ctx.set_state(keys.BACKUP_DIR, self.backup_dir)
        if failed:
            ctx.set_state(keys.FAILED_CONFIGS, list(failed))

    def _backup(self, ctx: ExecutionContext, path: str) -> str:
        """Copy ``path`` under the backup dir; return the backup path."""
        dest = backup_path_for(path, self.backup_dir)
        result = ctx.executor.run("mkdir", "-p", os.path.dirname(dest), elevated=True)
        if not result.ok:
            raise IgorError(f"failed to create backup parent directory: {result.error_message}")
        result = ctx.executor.run("cp", "-p", path, dest, elevated=True)
        if not result.ok:
            raise IgorError(f"failed to back up file: {result.error_message}")
        return dest

    def execute(self, ctx: ExecutionContext) -> StepResult:
        start = time.monotonic()
        if ctx.is_cancelled:
            return self._timed(StepResult.failure("step cancelled", StepCancelledError()), start)

        existing = [p for p in self.candidate_paths() if self._file_exists(p)]
        ctx.log_debug("existing config files", count=len(existing))
        if not existing:
            ctx.log("no configuration files to remove")
            return self._timed(StepResult.skipped("no configuration files to remove"), start)

        if ctx.dry_run:
            for path in existing:
                ctx.log("dry run: would remove", path=path)
            if self.backup:
                ctx.log("dry run: would back up configs", dir=self.backup_dir)
            return self._timed(
                StepResult.completed("dry run: configuration files would be removed"), start
            )

        if self.backup:
            result = ctx.executor.run("mkdir", "-p", self.backup_dir, elevated=True)
            if not result.ok:
                ctx.log_error("failed to create backup directory", dir=self.backup_dir)
                return self._timed(StepResult.failure(
                    "failed to create backup directory", IgorError(result.error_message),
                ), start)

        ctx.log("removing configuration files", count=len(existing))
        cleaned: list[str] = []
        backed_up: dict[str, str] = {}
        failed: list[str] = []

        for path in existing:
            if ctx.is_cancelled:
                self._record(ctx, cleaned, backed_up, failed)
                return self._timed(StepResult.failure("step cancelled", StepCancelledError()), start)

            if self.backup:
                try:
                    backed_up[path] = self._backup(ctx, path)
                except IgorError as e:
                    ctx.log_warn("backup failed, leaving file in place", path=path, error=e)
                    failed.append(path)
                    continue

            result = ctx.executor.run("rm", "-f", path, elevated=True)
            if not result.ok:
                ctx.log_error("failed to remove config file", path=path)
                failed.append(path)
                self._record(ctx, cleaned, backed_up, failed)
                return self._timed(StepResult.failure(
                    f"failed to remove config file '{path}'", IgorError(result.error_message),
                ), start)
            cleaned.append(path)
            ctx.log_debug("removed config file", path=path)

        self._record(ctx, cleaned, backed_up, failed)
        message = f"removed {len(cleaned)} configuration file(s)"
        if failed:
            message += f", {len(failed)} left in place"
        ctx.log(message)
        return self._timed(
            StepResult.completed(message, can_rollback=len(backed_up) > 0), start
        )

    def rollback(self, ctx: ExecutionContext) -> BaseException | None:
        backed_up = ctx.get_dict(keys.BACKED_UP_CONFIGS)
        if not ctx.get_bool(keys.CONFIGS_CLEANED) or not backed_up:
            ctx.log_debug("no configs were backed up, nothing to roll back")
            return None
        if ctx.executor is None:
            return IgorError("executor not available for rollback")

        ctx.log("restoring configuration files", count=len(backed_up))
        first: BaseException | None = None
        for original, backup in backed_up.items():
            if not (self.is_valid_path(original) and self.is_valid_path(backup)):
                err = IgorError(f"refusing to restore invalid path {original!r}")
            else:
                ctx.executor.run("mkdir", "-p", os.path.dirname(original), elevated=True)
                result = ctx.executor.run("cp", "-p", backup, original, elevated=True)
                err = None if result.ok else IgorError(
                    f"failed to restore config '{original}': {result.error_message}"
                )
            if err is not None:
                ctx.log_error("failed to restore config file", path=original, error=err)
                if first is None:
                    first = err

        ctx.delete_state(
            keys.CONFIGS_CLEANED, keys.CLEANED_CONFIGS, keys.BACKED_UP_CONFIGS, keys.BACKUP_DIR,
            keys.FAILED_CONFIGS,
        )
        return first
