"""
Error types for the uninstall engine.

Steps never raise out of ``execute`` — failures travel inside a
StepResult.  These exceptions are what ends up in ``StepResult.error``,
what ``validate`` raises, and what collaborators (executor, package
manager, config loader) raise at their boundaries.
"""

from __future__ import annotations

from enum import StrEnum


class IgorError(Exception):
    """Base class for every error raised by igor."""


class ValidationError(IgorError):
    """A step precondition is not met. Raised by ``Step.validate``."""


class StepCancelledError(IgorError):
    """Cancellation was observed while a step was running."""

    def __init__(self, message: str = "step cancelled"):
        super().__init__(message)


class ErrorKind(StrEnum):
    """Classification of a process-execution failure."""

    TIMEOUT = "timeout"
    EXECUTION = "execution"
    UNSPECIFIED = "unspecified"


class CommandError(IgorError):
    """A command could not be run (as opposed to exiting non-zero)."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNSPECIFIED):
        super().__init__(message)
        self.kind = kind

    @property
    def is_timeout(self) -> bool:
        return self.kind == ErrorKind.TIMEOUT


class ModuleError(IgorError):
    """A kernel module could not be loaded or unloaded."""

    def __init__(self, module: str, message: str):
        super().__init__(message)
        self.module = module


class ModuleInUseError(ModuleError):
    """A kernel module is held by a process or another module."""


class DetectionError(IgorError):
    """Kernel state (module table, kernel release) could not be read."""


class PackageError(IgorError):
    """The package manager failed to list or remove packages."""

    def __init__(self, message: str, packages: list[str] | None = None):
        super().__init__(message)
        self.packages = list(packages or [])


class PrivilegeError(IgorError):
    """Root is required but no elevation tool is available."""


class ConfigError(IgorError):
    """Raised when igor.yml is invalid or unreadable."""


class HookError(IgorError):
    """A lifecycle hook raised while the orchestrator was running."""

    def __init__(self, hook: str, cause: BaseException):
        super().__init__(f"{hook} hook failed: {cause}")
        self.hook = hook
        self.cause = cause
