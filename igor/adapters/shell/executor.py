"""
Subprocess executor — the SINGLE PLACE where ``subprocess.run`` is called.

All elevation, environment sanitization, timeouts and error
classification for OS commands is centralised here.  Commands are run
as argument lists, never through a shell.
"""

from __future__ import annotations

import logging
import subprocess
import time

from igor.adapters.base import CommandResult, Executor
from igor.adapters.privilege import PrivilegeManager
from igor.core.errors import CommandError, ErrorKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0  # seconds


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


class SubprocessExecutor(Executor):
    """Run commands with ``subprocess.run``.

    Args:
        privilege: Elevation handle. Without one, elevated commands run
            unmodified (useful when already root, and in tests).
        timeout: Default per-command timeout in seconds; ``0`` disables it.
    """

    def __init__(
        self,
        privilege: PrivilegeManager | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._privilege = privilege
        self._timeout = timeout

    @property
    def privilege(self) -> PrivilegeManager | None:
        return self._privilege

    def run(
        self,
        command: str,
        *args: str,
        input: bytes | None = None,
        elevated: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        argv_cmd, argv_args = command, list(args)
        env = None
        if elevated and self._privilege is not None:
            argv_cmd, argv_args = self._privilege.elevated_command(command, argv_args)
            env = self._privilege.sanitized_env()

        effective_timeout = self._timeout if timeout is None else timeout
        logger.debug("Executing: %s %s", argv_cmd, " ".join(argv_args))

        start = time.monotonic()
        try:
            proc = subprocess.run(
                [argv_cmd, *argv_args],
                input=input,
                capture_output=True,
                timeout=effective_timeout or None,
                env=env,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                command=command,
                args=list(args),
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                exit_code=-1,
                duration=time.monotonic() - start,
                error=CommandError(
                    f"{command} timed out after {effective_timeout}s", ErrorKind.TIMEOUT
                ),
            )
        except OSError as e:
            return CommandResult(
                command=command,
                args=list(args),
                exit_code=-1,
                duration=time.monotonic() - start,
                error=CommandError(f"cannot execute {command}: {e}", ErrorKind.EXECUTION),
            )
        except Exception as e:
            return CommandResult(
                command=command,
                args=list(args),
                exit_code=-1,
                duration=time.monotonic() - start,
                error=CommandError(f"{command} failed: {e}", ErrorKind.UNSPECIFIED),
            )

        result = CommandResult(
            command=command,
            args=list(args),
            stdout=_decode(proc.stdout),
            stderr=_decode(proc.stderr),
            exit_code=proc.returncode,
            duration=time.monotonic() - start,
        )
        if result.exit_code != 0:
            logger.debug("%s exited %d: %s", command, result.exit_code, result.stderr.strip())
        return result
