import logging
import os
import signal
import sys

import pytest
from rich.console import Console

from dvops.errors import DvOpsError
from dvops.services.filesystem import FileSystemService, ScratchWorkspace

logger = logging.getLogger("dvops.tests")


def build_service():
    return FileSystemService(logger=logger, console=Console(record=True))


def test_scratch_workspace_is_removed_on_success():
    with ScratchWorkspace(build_service(), logger) as workspace:
        path = workspace.path
        with open(workspace.join("dump.sql"), "w", encoding="utf-8") as file_obj:
            file_obj.write("SELECT 1;")
        assert os.path.isdir(path)

    assert not os.path.exists(path)
    assert workspace.path is None


def test_scratch_workspace_is_removed_on_error():
    with pytest.raises(RuntimeError):
        with ScratchWorkspace(build_service(), logger) as workspace:
            path = workspace.path
            raise RuntimeError("boom")

    assert not os.path.exists(path)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
def test_scratch_workspace_turns_sigterm_into_exit_and_restores_handler():
    previous = signal.getsignal(signal.SIGTERM)

    with pytest.raises(SystemExit) as exc_info:
        with ScratchWorkspace(build_service(), logger) as workspace:
            path = workspace.path
            os.kill(os.getpid(), signal.SIGTERM)

    assert exc_info.value.code == 128 + signal.SIGTERM
    assert not os.path.exists(path)
    assert signal.getsignal(signal.SIGTERM) == previous


def test_join_requires_active_workspace():
    workspace = ScratchWorkspace(build_service(), logger)

    with pytest.raises(DvOpsError, match="not active"):
        workspace.join("x")


def test_copy_optional_warns_instead_of_failing(tmp_path):
    service = build_service()

    assert service.copy_optional(str(tmp_path / "missing.xml"), str(tmp_path / "out.xml"), "domain.xml") is False


def test_copy_optional_copies_trees(tmp_path):
    source = tmp_path / "config"
    source.mkdir()
    (source / "jhove.conf").write_text("x", encoding="utf-8")

    assert build_service().copy_optional(str(source), str(tmp_path / "backup" / "config"), "config") is True
    assert (tmp_path / "backup" / "config" / "jhove.conf").read_text(encoding="utf-8") == "x"
