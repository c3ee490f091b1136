"""
Adapter base — the contracts between the engine and the host system.

The engine never calls external tools directly.  It goes through:

    - Executor        runs one OS command and returns a CommandResult
    - PackageManager  lists and removes installed packages

Executors never raise for a command that ran: a non-zero exit is data
in the CommandResult, and failures to run at all are classified in
``CommandResult.error``.  Package managers raise PackageError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, Field

from igor.core.errors import CommandError
from igor.core.models.distro import DistroFamily
from igor.core.models.package import Package, RemoveOptions


class CommandResult(BaseModel):
    """Captured outcome of one command."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    command: str
    args: list[str] = Field(default_factory=list)
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration: float = 0.0              # seconds
    error: CommandError | None = None  # could not run / timed out

    @property
    def ok(self) -> bool:
        """Whether the command ran and exited zero."""
        return self.error is None and self.exit_code == 0

    @property
    def failed(self) -> bool:
        return not self.ok

    @property
    def stdout_lines(self) -> list[str]:
        """Non-empty stdout lines, stripped."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]

    @property
    def error_message(self) -> str:
        """Best available explanation of a failure ("" when ok)."""
        if self.error is not None:
            return str(self.error)
        if self.exit_code != 0:
            return self.stderr.strip() or f"{self.command} exited with code {self.exit_code}"
        return ""

    @property
    def command_line(self) -> str:
        return " ".join([self.command, *self.args])


class Executor(ABC):
    """Runs OS commands.

    Implementations MUST NOT raise for a command that could not run or
    exited non-zero.  Everything is captured in the CommandResult.
    """

    @abstractmethod
    def run(
        self,
        command: str,
        *args: str,
        input: bytes | None = None,
        elevated: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run ``command`` with ``args`` and return its result."""

    def execute(self, command: str, *args: str) -> CommandResult:
        return self.run(command, *args)

    def execute_elevated(self, command: str, *args: str) -> CommandResult:
        return self.run(command, *args, elevated=True)

    def execute_with_input(
        self, input: bytes, command: str, *args: str, elevated: bool = False
    ) -> CommandResult:
        return self.run(command, *args, input=input, elevated=elevated)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class PackageManager(ABC):
    """Lists and removes installed packages for one distribution family."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The backend identifier (e.g., 'apt', 'dnf', 'pacman')."""

    @property
    @abstractmethod
    def family(self) -> DistroFamily:
        """The distribution family this backend serves."""

    @abstractmethod
    def list_installed(self) -> list[Package]:
        """Every installed package.

        Raises:
            PackageError: If the package database cannot be queried.
        """

    @abstractmethod
    def remove(self, packages: list[str], options: RemoveOptions | None = None) -> None:
        """Remove ``packages`` in one transaction.

        Raises:
            PackageError: If the removal fails.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
