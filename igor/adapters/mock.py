"""
Mock collaborators — test doubles for the executor and package manager.

Both record every call and return configurable responses, so steps can
be exercised without touching the host.  By default everything succeeds.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from igor.adapters.base import CommandResult, Executor, PackageManager
from igor.core.errors import CommandError, ErrorKind, PackageError
from igor.core.models.distro import DistroFamily
from igor.core.models.package import Package, RemoveOptions

Handler = Callable[[str, list[str], bytes | None], CommandResult]


def ok_result(stdout: str = "") -> CommandResult:
    """A successful response template."""
    return CommandResult(command="", stdout=stdout)


def fail_result(exit_code: int = 1, stderr: str = "") -> CommandResult:
    """A non-zero exit response template."""
    return CommandResult(command="", exit_code=exit_code, stderr=stderr)


def error_result(message: str, kind: ErrorKind = ErrorKind.EXECUTION) -> CommandResult:
    """A could-not-run response template."""
    return CommandResult(command="", exit_code=-1, error=CommandError(message, kind))


@dataclass
class Call:
    """One recorded executor invocation."""

    command: str
    args: list[str]
    input: bytes | None = None
    elevated: bool = False

    @property
    def command_line(self) -> str:
        return " ".join([self.command, *self.args])


class MockExecutor(Executor):
    """Executor test double.

    Responses are looked up by full command line first
    (``"modprobe -r nvidia"``), then by command name (``"modprobe"``).
    A handler, when set for a command, computes the response instead.
    """

    def __init__(self, default: CommandResult | None = None):
        self._default = default or ok_result()
        self._responses: dict[str, CommandResult] = {}
        self._handlers: dict[str, Handler] = {}
        self._calls: list[Call] = []

    @property
    def calls(self) -> list[Call]:
        """All invocations this mock has received."""
        return self._calls

    def set_response(self, key: str, result: CommandResult) -> None:
        """Respond to ``key`` (a command name or a full command line)."""
        self._responses[key] = result

    def set_handler(self, command: str, handler: Handler) -> None:
        """Compute responses for ``command`` with ``handler(command, args, input)``."""
        self._handlers[command] = handler

    def set_default(self, result: CommandResult) -> None:
        self._default = result

    def run(
        self,
        command: str,
        *args: str,
        input: bytes | None = None,
        elevated: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        arg_list = list(args)
        self._calls.append(Call(command, arg_list, input, elevated))

        if command in self._handlers:
            return self._handlers[command](command, arg_list, input)

        line = " ".join([command, *arg_list])
        template = self._responses.get(line)
        if template is None:
            template = self._responses.get(command, self._default)
        return template.model_copy(update={"command": command, "args": arg_list})

    def calls_for(self, command: str) -> list[Call]:
        return [c for c in self._calls if c.command == command]

    def call_count(self, command: str | None = None) -> int:
        """Number of calls, optionally only those of ``command``."""
        if command is None:
            return len(self._calls)
        return len(self.calls_for(command))

    def was_called_with(self, command: str, *args: str) -> bool:
        return any(c.command == command and c.args == list(args) for c in self._calls)

    def reset(self) -> None:
        """Clear call log, responses and handlers."""
        self._calls.clear()
        self._responses.clear()
        self._handlers.clear()


class MockPackageManager(PackageManager):
    """PackageManager test double.

    ``fail_on_call(n)`` makes the n-th remove call (1-based) raise;
    ``fail_package(name)`` makes any call containing ``name`` raise.
    """

    def __init__(
        self,
        installed: list[str] | list[Package] | None = None,
        family: DistroFamily = DistroFamily.DEBIAN,
        manager_name: str = "mock",
    ):
        self._installed = [
            p if isinstance(p, Package) else Package(name=p) for p in (installed or [])
        ]
        self._family = family
        self._name = manager_name
        self._fail_calls: set[int] = set()
        self._fail_packages: set[str] = set()
        self._list_error: str | None = None
        self.remove_calls: list[list[str]] = []
        self.remove_options: list[RemoveOptions] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def family(self) -> DistroFamily:
        return self._family

    def set_installed(self, names: list[str]) -> None:
        self._installed = [Package(name=n) for n in names]

    def set_list_error(self, message: str) -> None:
        self._list_error = message

    def fail_on_call(self, n: int) -> None:
        self._fail_calls.add(n)

    def fail_package(self, name: str) -> None:
        self._fail_packages.add(name)

    def list_installed(self) -> list[Package]:
        if self._list_error is not None:
            raise PackageError(self._list_error)
        return list(self._installed)

    def remove(self, packages: list[str], options: RemoveOptions | None = None) -> None:
        self.remove_calls.append(list(packages))
        self.remove_options.append(options or RemoveOptions())
        call_no = len(self.remove_calls)
        if call_no in self._fail_calls:
            raise PackageError(f"mock removal failure on call {call_no}", packages=packages)
        bad = [p for p in packages if p in self._fail_packages]
        if bad:
            raise PackageError(f"mock removal failure for {', '.join(bad)}", packages=packages)
        self._installed = [p for p in self._installed if p.name not in packages]

    @property
    def removed(self) -> list[str]:
        """Every package passed to a successful remove call."""
        out: list[str] = []
        for i, call in enumerate(self.remove_calls, start=1):
            if i in self._fail_calls or any(p in self._fail_packages for p in call):
                continue
            out.extend(call)
        return out

    def reset(self) -> None:
        self._fail_calls.clear()
        self._fail_packages.clear()
        self._list_error = None
        self.remove_calls.clear()
        self.remove_options.clear()
