"""Subprocess execution service for dataverse-ops."""

import shlex
import subprocess
from typing import List, Optional

from dvops.errors import ExecutionError


class CommandRunner:
    """Runs external commands with consistent error handling."""

    def __init__(self, logger, default_timeout: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = True,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        input_file: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = shlex.join(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout

        try:
            if input_file:
                with open(input_file, "r", encoding="utf-8", errors="surrogateescape") as stdin:
                    result = subprocess.run(
                        cmd,
                        text=True,
                        capture_output=capture_output,
                        timeout=effective_timeout,
                        stdin=stdin,
                    )
            else:
                result = subprocess.run(
                    cmd,
                    text=True,
                    capture_output=capture_output,
                    timeout=effective_timeout,
                    input=input_text,
                )
        except FileNotFoundError as exc:
            raise ExecutionError(
                f"Required command not found: {cmd[0]}. Please install it and try again.",
                command=cmd_str,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ExecutionError(
                f"Command timed out after {effective_timeout}s: {cmd_str}",
                command=cmd_str,
            ) from exc
        except OSError as exc:
            raise ExecutionError(f"Failed to execute command: {cmd_str}. {exc}", command=cmd_str) from exc

        output = self.combined_output(result)
        if output:
            self.logger.debug("Command output: %s", output)

        if result.returncode == 0 or not check:
            if result.returncode != 0:
                self.logger.warning("Command failed (%s): %s", result.returncode, cmd_str)
            return result

        message = f"Command failed ({result.returncode}): {cmd_str}"
        if output:
            message = f"{message}\n{output}"
        raise ExecutionError(message, command=cmd_str, output=output, returncode=result.returncode)

    @staticmethod
    def combined_output(result: subprocess.CompletedProcess) -> str:
        parts = [(result.stdout or "").strip(), (result.stderr or "").strip()]
        return "\n".join(part for part in parts if part)
