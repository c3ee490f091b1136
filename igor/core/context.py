"""
Execution context — the object every step receives.

One context is created per top-level operation and discarded after.
It carries:

    - collaborators (executor, package manager, privilege manager,
      kernel detector, distribution)
    - the shared state store: a str -> value mapping guarded by one
      reader/writer lock, type-checked on read
    - a once-settable, many-observable cancellation signal
    - dry-run / force flags
    - a logging facade

ExecutionContext is the shared core; UninstallContext extends it with
the uninstall-specific fields.  Steps take the core type and never need
a second context to be kept in sync.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from igor.adapters.base import Executor, PackageManager
    from igor.adapters.privilege import PrivilegeManager
    from igor.core.kernel.detector import KernelDetector
    from igor.core.models.distro import Distribution

T = TypeVar("T")

_DEFAULT_LOGGER = "igor"


class RWLock:
    """Reader/writer lock: many concurrent readers or one writer.

    Writers are preferred once waiting so a polling reader cannot
    starve execution.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


def _format_fields(fields: dict[str, Any]) -> str:
    return " ".join(f"{k}={v}" for k, v in fields.items())


class ExecutionContext:
    """Shared core context passed to every step."""

    def __init__(
        self,
        *,
        executor: Executor | None = None,
        package_manager: PackageManager | None = None,
        privilege: PrivilegeManager | None = None,
        detector: KernelDetector | None = None,
        distro: Distribution | None = None,
        logger: logging.Logger | None = None,
        dry_run: bool = False,
        force: bool = False,
    ):
        self.executor = executor
        self.package_manager = package_manager
        self.privilege = privilege
        self.detector = detector
        self.distro = distro
        self.logger = logger or logging.getLogger(_DEFAULT_LOGGER)
        self.dry_run = dry_run
        self.force = force
        self._state: dict[str, Any] = {}
        self._lock = RWLock()
        self._cancelled = threading.Event()

    # ── Cancellation ────────────────────────────────────────────

    def cancel(self) -> None:
        """Signal cancellation. Idempotent."""
        self._cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def wait_cancelled(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses."""
        return self._cancelled.wait(timeout)

    # ── Shared state ────────────────────────────────────────────

    def set_state(self, key: str, value: Any) -> None:
        with self._lock.write():
            self._state[key] = value

    def get_state(self, key: str, default: Any = None) -> Any:
        with self._lock.read():
            return self._state.get(key, default)

    def has_state(self, key: str) -> bool:
        with self._lock.read():
            return key in self._state

    def delete_state(self, *keys: str) -> None:
        with self._lock.write():
            for key in keys:
                self._state.pop(key, None)

    def clear_state(self) -> None:
        with self._lock.write():
            self._state.clear()

    def state_snapshot(self) -> dict[str, Any]:
        """Shallow copy of the store, for reporting."""
        with self._lock.read():
            return dict(self._state)

    def _typed(self, key: str, kind: type[T], default: T) -> T:
        value = self.get_state(key)
        # bool is a subclass of int; don't let True read as an int
        if kind is not bool and isinstance(value, bool):
            return default
        if isinstance(value, kind):
            return value
        return default

    def get_str(self, key: str, default: str = "") -> str:
        return self._typed(key, str, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        return self._typed(key, bool, default)

    def get_int(self, key: str, default: int = 0) -> int:
        return self._typed(key, int, default)

    def get_list(self, key: str) -> list[Any]:
        """List value under ``key`` as a copy; absent or mistyped reads as []."""
        return list(self._typed(key, list, []))

    def get_dict(self, key: str) -> dict[str, Any]:
        """Dict value under ``key`` as a copy; absent or mistyped reads as {}."""
        return dict(self._typed(key, dict, {}))

    # ── Logging facade ──────────────────────────────────────────

    def _emit(self, level: int, msg: str, fields: dict[str, Any]) -> None:
        if fields:
            self.logger.log(level, "%s %s", msg, _format_fields(fields))
        else:
            self.logger.log(level, "%s", msg)

    def log(self, msg: str, **fields: Any) -> None:
        self._emit(logging.INFO, msg, fields)

    def log_debug(self, msg: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, msg, fields)

    def log_warn(self, msg: str, **fields: Any) -> None:
        self._emit(logging.WARNING, msg, fields)

    def log_error(self, msg: str, **fields: Any) -> None:
        self._emit(logging.ERROR, msg, fields)

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} dry_run={self.dry_run} "
            f"force={self.force} cancelled={self.is_cancelled}>"
        )


class UninstallContext(ExecutionContext):
    """Context for an uninstall run.

    Adds the keep-config preference.
    """

    def __init__(
        self,
        *,
        keep_config: bool = False,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.keep_config = keep_config
