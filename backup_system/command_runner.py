"""
External Command Runner

Single place where the backup system invokes operating system tools
(btrfs, losetup, mount, duperemove, ydb, pg_dump, ...). Every call has a
bounded timeout; missing binaries, timeouts and non-zero exits are mapped
to the gateway error kinds.
"""

import os
import time
import shutil
import subprocess
import logging
from typing import Dict, List, Optional

from .errors import GatewayError, GatewayUnavailable, GatewayTimeout

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 2000


class CommandRunner:
    """Runs external tools with timeouts and explicit verbosity."""

    def __init__(self, timeout: int = 600, verbose: bool = False):
        """
        Initialize the command runner.

        Args:
            timeout: Default timeout in seconds for every command
            verbose: Log the stderr of every command at DEBUG level
        """
        self.timeout = timeout
        self.verbose = verbose
        self._binaries: Dict[str, str] = {}

    def find_binary(self, name: str) -> str:
        """Resolve a tool on PATH, raising GatewayUnavailable if absent."""
        if name in self._binaries:
            return self._binaries[name]

        binary_path = shutil.which(name)
        if not binary_path:
            raise GatewayUnavailable(name, f"`{name}` is not found in PATH")

        self._binaries[name] = binary_path
        return binary_path

    def run(self, args: List[str], operation: str, path: Optional[str] = None,
            timeout: Optional[int] = None, env: Optional[Dict[str, str]] = None,
            check: bool = True) -> subprocess.CompletedProcess:
        """
        Run a command and return the completed process.

        Args:
            args: Command line; the first element is a binary name resolved on PATH
            operation: Human readable operation name used in errors
            path: Path the operation acts on, for error context
            timeout: Override of the default timeout
            env: Extra environment variables
            check: Raise GatewayError on a non-zero exit status

        Returns:
            subprocess.CompletedProcess with text stdout/stderr
        """
        command = [self.find_binary(args[0])] + [str(a) for a in args[1:]]
        effective_timeout = timeout or self.timeout

        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        log_context = {'operation': operation, 'path': path}
        logger.debug(f"Running: {' '.join(command)}", extra=log_context)
        start_time = time.time()

        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=run_env,
                text=True,
                timeout=effective_timeout
            )
        except subprocess.TimeoutExpired as e:
            raise GatewayTimeout(
                operation, f"`{args[0]}` did not finish within {effective_timeout}s", path=path
            ) from e
        except OSError as e:
            raise GatewayUnavailable(operation, f"cannot execute `{args[0]}`: {e}", path=path) from e

        duration_ms = round((time.time() - start_time) * 1000, 2)
        logger.debug(f"`{args[0]}` exited with status {result.returncode}",
                     extra=dict(log_context, duration_ms=duration_ms))

        if self.verbose and result.stderr:
            for line in result.stderr.splitlines():
                logger.debug(f"[{args[0]}] {line}")

        if check and result.returncode != 0:
            stderr_tail = (result.stderr or "")[-STDERR_TAIL_CHARS:].strip()
            raise GatewayError(
                operation,
                stderr_tail or f"`{args[0]}` exited with status {result.returncode}",
                path=path,
                returncode=result.returncode,
                stderr=stderr_tail
            )

        return result
