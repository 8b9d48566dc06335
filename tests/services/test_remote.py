import subprocess

import pytest

from dvops.errors import ExecutionError
from dvops.models import RemotePath
from dvops.services.remote import SshRemoteExecutor


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None


class FakeCommandRunner:
    def __init__(self, returncode=0, stdout="", stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.calls = []

    def run(self, cmd, check=True, **_kwargs):
        self.calls.append((cmd, check))
        return subprocess.CompletedProcess(cmd, self.returncode, stdout=self.stdout, stderr=self.stderr)

    @staticmethod
    def combined_output(result):
        return "\n".join(part for part in ((result.stdout or "").strip(), (result.stderr or "").strip()) if part)


def test_remote_path_renders_as_ssh_location():
    assert str(RemotePath("operator", "prod-host", "/srv/dataverse/")) == "operator@prod-host:/srv/dataverse/"


def test_build_rsync_command_applies_filters_in_order():
    cmd = SshRemoteExecutor.build_rsync_command(
        RemotePath("operator", "prod-host", "/srv/dataverse/"),
        "/srv/dataverse/",
        excludes=("*.pem", "domain.xml"),
        max_size="2M",
    )

    assert cmd == [
        "rsync",
        "-avz",
        "--stats",
        "--max-size=2M",
        "--exclude=*.pem",
        "--exclude=domain.xml",
        "operator@prod-host:/srv/dataverse/",
        "/srv/dataverse/",
    ]


def test_build_rsync_command_without_size_limit():
    cmd = SshRemoteExecutor.build_rsync_command("/a/", "/b/")

    assert not any(part.startswith("--max-size") for part in cmd)


def test_run_returns_output_and_status():
    runner = FakeCommandRunner(stdout="6.3\n")
    executor = SshRemoteExecutor(runner, DummyLogger())

    result = executor.run("prod-host", "operator", "cat /srv/dataverse/version.txt")

    assert result.output == "6.3"
    assert result.exit_status == 0
    assert runner.calls[0][0] == [
        "ssh",
        "-o",
        "BatchMode=yes",
        "operator@prod-host",
        "cat /srv/dataverse/version.txt",
    ]


def test_run_raises_execution_error_on_failure():
    executor = SshRemoteExecutor(FakeCommandRunner(returncode=2, stderr="permission denied"), DummyLogger())

    with pytest.raises(ExecutionError, match="permission denied") as exc_info:
        executor.run("prod-host", "operator", "sudo -u postgres pg_dump -d dvndb")

    assert exc_info.value.returncode == 2
    assert exc_info.value.command == "sudo -u postgres pg_dump -d dvndb"


def test_run_without_check_returns_failure_status():
    executor = SshRemoteExecutor(FakeCommandRunner(returncode=1), DummyLogger())

    result = executor.run("prod-host", "operator", "crontab -l", check=False)

    assert result.exit_status == 1
