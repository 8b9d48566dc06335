"""Remote command execution and tree copies over ssh/rsync."""

from typing import Optional, Protocol, Sequence, Union

from dvops.errors import ExecutionError
from dvops.models import RemotePath, RemoteResult

Location = Union[str, RemotePath]


class RemoteExecutor(Protocol):
    def run(self, host: str, user: str, command: str, check: bool = True) -> RemoteResult:
        ...

    def copy(
        self,
        source: Location,
        destination: Location,
        excludes: Sequence[str] = (),
        max_size: Optional[str] = None,
    ) -> RemoteResult:
        ...


class SshRemoteExecutor:
    """Runs commands with ``ssh`` and copies trees with ``rsync``."""

    SSH_OPTIONS = ("-o", "BatchMode=yes")

    def __init__(self, command_runner, logger):
        self.command_runner = command_runner
        self.logger = logger

    def run(self, host: str, user: str, command: str, check: bool = True) -> RemoteResult:
        cmd = ["ssh", *self.SSH_OPTIONS, f"{user}@{host}", command]
        result = self.command_runner.run(cmd, check=False)
        remote_result = RemoteResult(
            output=self.command_runner.combined_output(result),
            exit_status=result.returncode,
        )
        if check and remote_result.exit_status != 0:
            message = f"Remote command failed on {host} ({remote_result.exit_status}): {command}"
            if remote_result.output:
                message = f"{message}\n{remote_result.output}"
            raise ExecutionError(
                message,
                command=command,
                output=remote_result.output,
                returncode=remote_result.exit_status,
            )
        return remote_result

    def copy(
        self,
        source: Location,
        destination: Location,
        excludes: Sequence[str] = (),
        max_size: Optional[str] = None,
    ) -> RemoteResult:
        cmd = self.build_rsync_command(source, destination, excludes, max_size)
        result = self.command_runner.run(cmd, check=True)
        return RemoteResult(output=self.command_runner.combined_output(result), exit_status=result.returncode)

    @staticmethod
    def build_rsync_command(
        source: Location,
        destination: Location,
        excludes: Sequence[str] = (),
        max_size: Optional[str] = None,
    ):
        cmd = ["rsync", "-avz", "--stats"]
        if max_size:
            cmd.append(f"--max-size={max_size}")
        cmd.extend(f"--exclude={pattern}" for pattern in excludes)
        cmd.extend([str(source), str(destination)])
        return cmd
