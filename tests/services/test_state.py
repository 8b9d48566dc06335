import json

import pytest

from dvops.errors import DvOpsError
from dvops.services.state import StateService


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


def _metadata(target_version: str = "6.3"):
    return {
        "target_version": target_version,
        "previous_version": "6.2",
        "payara": "/usr/local/payara6",
        "domain": "staging.example.org",
    }


def test_state_service_creates_and_updates_state(tmp_path):
    state_file = tmp_path / "upgrade-state.json"
    service = StateService(str(state_file), logger=DummyLogger())

    state, resumed = service.initialize(_metadata(), "NotStarted")

    assert resumed is False
    assert state_file.exists()

    service.mark_step_completed(state, "check_version", "VersionChecked")
    service.set_value(state, "runtime_backup", "/usr/local/payara6.2024.07")

    loaded = json.loads(state_file.read_text(encoding="utf-8"))
    assert loaded["upgrade_state"] == "VersionChecked"
    assert loaded["data"]["runtime_backup"] == "/usr/local/payara6.2024.07"
    assert loaded["completed_steps"] == ["check_version"]


def test_state_service_resumes_with_same_metadata(tmp_path):
    state_file = tmp_path / "upgrade-state.json"
    service = StateService(str(state_file), logger=DummyLogger())

    state, _ = service.initialize(_metadata(), "NotStarted")
    service.mark_step_completed(state, "check_version", "VersionChecked")
    service.mark_status(state, "failed", error="boom")

    resumed_state, resumed = service.initialize(_metadata(), "NotStarted")

    assert resumed is True
    assert resumed_state["status"] == "running"
    assert resumed_state["upgrade_state"] == "VersionChecked"
    assert service.is_step_completed(resumed_state, "check_version")


def test_state_service_rejects_resume_with_different_metadata(tmp_path):
    state_file = tmp_path / "upgrade-state.json"
    service = StateService(str(state_file), logger=DummyLogger())

    service.initialize(_metadata(target_version="6.3"), "NotStarted")

    with pytest.raises(DvOpsError, match="Mismatched fields: target_version"):
        service.initialize(_metadata(target_version="6.4"), "NotStarted")


def test_state_service_refuses_finished_run(tmp_path):
    state_file = tmp_path / "upgrade-state.json"
    service = StateService(str(state_file), logger=DummyLogger())

    state, _ = service.initialize(_metadata(), "NotStarted")
    service.mark_status(state, "success")

    with pytest.raises(DvOpsError, match="finished upgrade"):
        service.initialize(_metadata(), "NotStarted")


def test_state_service_rejects_corrupt_file(tmp_path):
    state_file = tmp_path / "upgrade-state.json"
    state_file.write_text("{not json", encoding="utf-8")

    with pytest.raises(DvOpsError, match="Could not read state file"):
        StateService(str(state_file), logger=DummyLogger()).load()
