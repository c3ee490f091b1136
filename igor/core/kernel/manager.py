"""
Kernel module manager — load, unload and inspect modules via the executor.

Unload policy (per module):

    1. ``modprobe -r``; success ends it.
    2. On failure, check use count.  Not in use → fail now, no retry.
    3. In use → retry up to ``retry_count`` times with a fixed delay,
       checking cancellation before each retry.

The aggressive ``rmmod -f`` fallback is a separate call so the caller
decides whether force is permitted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from igor.adapters.base import CommandResult, Executor
from igor.core.errors import DetectionError, ModuleError, ModuleInUseError, StepCancelledError
from igor.core.kernel.detector import KernelDetector
from igor.core.kernel.modules import normalize_name

logger = logging.getLogger(__name__)


def _failure_text(result: CommandResult) -> str:
    if result.error is not None:
        return str(result.error)
    return result.stderr.strip() or result.stdout.strip() or "unknown error"


class ModuleManager:
    """Module operations on top of an Executor and an optional detector."""

    def __init__(
        self,
        executor: Executor,
        detector: KernelDetector | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._executor = executor
        self._detector = detector
        self._sleep = sleep

    # ── Queries ─────────────────────────────────────────────────

    def _lsmod_rows(self) -> list[list[str]]:
        result = self._executor.run("lsmod")
        if not result.ok:
            raise DetectionError(f"failed to list modules: {_failure_text(result)}")
        rows = [line.split() for line in result.stdout.splitlines() if line.strip()]
        return [r for r in rows if r and r[0] != "Module"]

    def loaded_names(self) -> list[str]:
        """Names of all loaded modules.

        Raises:
            DetectionError: If neither the detector nor lsmod can answer.
        """
        if self._detector is not None:
            return [m.name for m in self._detector.loaded_modules()]
        return [row[0] for row in self._lsmod_rows()]

    def is_loaded(self, name: str) -> bool:
        if self._detector is not None:
            return self._detector.is_module_loaded(name)
        target = normalize_name(name)
        return any(normalize_name(n) == target for n in self.loaded_names())

    def is_in_use(self, name: str) -> bool:
        """Reference count from sysfs, falling back to lsmod's use column."""
        result = self._executor.run("cat", f"/sys/module/{normalize_name(name)}/refcnt")
        if result.ok:
            refcnt = result.stdout.strip()
            return refcnt not in ("", "0")

        try:
            rows = self._lsmod_rows()
        except DetectionError:
            return False
        target = normalize_name(name)
        for row in rows:
            if len(row) >= 3 and normalize_name(row[0]) == target:
                return row[2] not in ("", "0")
        return False

    # ── Mutations ───────────────────────────────────────────────

    def unload(self, name: str) -> None:
        """``modprobe -r name``. Raises ModuleError on failure."""
        result = self._executor.run("modprobe", "-r", name, elevated=True)
        if not result.ok:
            raise ModuleError(name, f"modprobe -r failed: {_failure_text(result)}")

    def unload_with_retry(
        self,
        name: str,
        retry_count: int = 3,
        retry_delay: float = 1.0,
        is_cancelled: Callable[[], bool] = lambda: False,
    ) -> None:
        """Unload ``name``, retrying only while it is in use.

        Raises:
            StepCancelledError: If cancelled before an attempt.
            ModuleInUseError: If still in use after every retry.
            ModuleError: If unload failed while not in use.
        """
        last: ModuleError | None = None
        for attempt in range(retry_count + 1):
            if is_cancelled():
                raise StepCancelledError()
            if attempt > 0:
                logger.debug("Retrying unload of %s (attempt %d)", name, attempt + 1)
                self._sleep(retry_delay)
            try:
                self.unload(name)
                return
            except ModuleError as e:
                last = e
            if not self.is_in_use(name):
                raise last
        raise ModuleInUseError(name, f"module '{name}' is in use: {last}")

    def force_unload(self, name: str) -> None:
        """``rmmod -f name``. Raises ModuleError on failure."""
        result = self._executor.run("rmmod", "-f", name, elevated=True)
        if not result.ok:
            raise ModuleError(name, f"rmmod -f failed: {_failure_text(result)}")

    def load(self, name: str) -> None:
        """``modprobe name``. Raises ModuleError on failure."""
        result = self._executor.run("modprobe", name, elevated=True)
        if not result.ok:
            raise ModuleError(name, f"modprobe failed: {_failure_text(result)}")

    def reload(self, unloaded: list[str]) -> ModuleError | None:
        """Load ``unloaded`` back in exact reverse order.

        Continues past failures; returns the first error, or None.
        """
        first: ModuleError | None = None
        for name in reversed(unloaded):
            try:
                self.load(name)
                logger.debug("Reloaded module %s", name)
            except ModuleError as e:
                logger.warning("Failed to reload module %s: %s", name, e)
                if first is None:
                    first = e
        return first
