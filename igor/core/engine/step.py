"""
Step contract — the unit of work the workflow runs.

    validate(ctx)      precondition check; raises ValidationError; never mutates
    execute(ctx)       performs the side effect; returns a StepResult, never raises
    rollback(ctx)      best-effort inverse driven by shared state; returns the
                       first error (or None) instead of raising
    can_rollback()     whether rollback can undo execute

Steps keep nothing between calls except what they record in the
context's shared state.
"""

from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from igor.core.context import ExecutionContext
from igor.core.errors import ValidationError
from igor.core.models.step import StepResult

_SAFE_NAME = re.compile(r"[A-Za-z0-9_-]+")


def is_valid_module_name(name: str) -> bool:
    """Module names are restricted to ``[A-Za-z0-9_-]``."""
    return bool(_SAFE_NAME.fullmatch(name))


class Step(ABC):
    """Base class for every workflow step."""

    def __init__(self, name: str, description: str = "", can_rollback: bool = False):
        self._name = name
        self._description = description
        self._can_rollback = can_rollback

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    def validate(self, ctx: ExecutionContext) -> None:
        """Raise ValidationError if the step cannot run."""

    @abstractmethod
    def execute(self, ctx: ExecutionContext) -> StepResult:
        """Perform the step. MUST NOT raise."""

    def rollback(self, ctx: ExecutionContext) -> BaseException | None:
        """Undo what execute recorded. Default: nothing to undo."""
        return None

    def can_rollback(self) -> bool:
        return self._can_rollback

    @staticmethod
    def _timed(result: StepResult, start: float) -> StepResult:
        result.duration = time.monotonic() - start
        return result

    def _require_executor(self, ctx: ExecutionContext) -> None:
        if ctx.executor is None:
            raise ValidationError(f"{self._name}: executor is required")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self._name!r}>"


class FuncStep(Step):
    """Step built from plain callables.

    Handy for ad-hoc workflow stages and in tests.
    """

    def __init__(
        self,
        name: str,
        execute: Callable[[ExecutionContext], StepResult],
        description: str = "",
        validate: Callable[[ExecutionContext], None] | None = None,
        rollback: Callable[[ExecutionContext], BaseException | None] | None = None,
    ):
        super().__init__(name, description, can_rollback=rollback is not None)
        self._execute = execute
        self._validate = validate
        self._rollback = rollback

    def validate(self, ctx: ExecutionContext) -> None:
        if self._validate is not None:
            self._validate(ctx)

    def execute(self, ctx: ExecutionContext) -> StepResult:
        return self._execute(ctx)

    def rollback(self, ctx: ExecutionContext) -> BaseException | None:
        if self._rollback is None:
            return None
        return self._rollback(ctx)
