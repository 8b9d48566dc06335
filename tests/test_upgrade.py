import dataclasses
import hashlib
import io
import json
import os
import shutil
import subprocess
import zipfile

import pytest

import dvops.upgrade as upgrade_module
from dvops.models import Configuration
from dvops.releases import DATAVERSE_6_3, Artifact
from dvops.services.confirmation import CannedConfirmation
from dvops.upgrade import DataverseUpgrade, UpgradeState

DOMAIN_XML = """<domain>
  <configs>
    <config name="server-config">
      <java-config>
        <jvm-options>-Ddataverse.fqdn=dataverse.example.org</jvm-options>
      </java-config>
    </config>
  </configs>
</domain>
"""

WAR_BYTES = b"dataverse war"


def build_payara_zip() -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("payara6/bin/asadmin", "#!/bin/sh\n")
        archive.writestr("payara6/glassfish/domains/domain1/config/domain.xml", DOMAIN_XML)
    return buffer.getvalue()


PAYARA_ZIP = build_payara_zip()


class FakeResponse:
    def __init__(self, payload=b"", json_payload=None):
        self.payload = payload
        self.json_payload = json_payload
        self.text = payload.decode("utf-8", errors="replace")
        self.headers = {"Content-Length": str(len(payload))}

    def raise_for_status(self):
        return None

    def json(self):
        if self.json_payload is None:
            raise ValueError("not json")
        return self.json_payload

    def iter_content(self, chunk_size=8192):
        yield self.payload

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeRequestsModule:
    class RequestException(Exception):
        pass

    def __init__(self, running_version="6.2", payara_payload=PAYARA_ZIP):
        self.running_version = running_version
        self.payara_payload = payara_payload
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append(("GET", url))
        if url.endswith("/api/info/version"):
            return FakeResponse(json_payload={"status": "OK", "data": {"version": self.running_version}})
        if url.endswith(".zip"):
            return FakeResponse(self.payara_payload)
        if url.endswith(".war"):
            return FakeResponse(WAR_BYTES)
        return FakeResponse(b"ok")

    def post(self, url, **kwargs):
        self.calls.append(("POST", url))
        return FakeResponse(b"ok")


class FakeCommandRunner:
    def __init__(self):
        self.calls = []

    def run(self, cmd, check=True, **_kwargs):
        self.calls.append(list(cmd))
        stdout = "dataverse-6.2  <ejb, web>\n" if "list-applications" in cmd else ""
        return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

    @staticmethod
    def combined_output(result):
        return (result.stdout or "") + (result.stderr or "")


class FakeLocalSystem:
    """Performs moves and copies for real inside the test directory."""

    def __init__(self):
        self.calls = []

    @staticmethod
    def resolve(path):
        return path

    def move(self, source, destination):
        self.calls.append(("move", source, destination))
        shutil.move(source, destination)

    def remove_tree(self, path, privileged=False):
        self.calls.append(("remove_tree", path))
        shutil.rmtree(path, ignore_errors=True)

    def chown_tree(self, path, user):
        self.calls.append(("chown_tree", path, user))

    def read_file(self, path):
        self.calls.append(("read_file", path))
        with open(path, encoding="utf-8") as file_obj:
            return file_obj.read()

    def install_file(self, source, destination):
        self.calls.append(("install_file", source, destination))
        shutil.copyfile(source, destination)

    def stop_service(self, name, check=True):
        self.calls.append(("stop_service", name))
        return True

    def start_service(self, name):
        self.calls.append(("start_service", name))

    def process_running(self, pattern):
        self.calls.append(("process_running", pattern))
        return True

    def run_script(self, args, input_text=None):
        self.calls.append(("run_script", tuple(args)))


class IsolatedUpgrade(DataverseUpgrade):
    def _running_as_root(self):
        return False

    def _missing_commands(self):
        return []


@pytest.fixture(autouse=True)
def release_matching_fakes(monkeypatch):
    release = dataclasses.replace(
        DATAVERSE_6_3,
        payara=Artifact(url=DATAVERSE_6_3.payara.url, sha1=hashlib.sha1(PAYARA_ZIP).hexdigest()),
        war=Artifact(url=DATAVERSE_6_3.war.url, sha1=hashlib.sha1(WAR_BYTES).hexdigest()),
    )
    real_get_release = upgrade_module.get_release

    def get_release(version):
        return release if version == release.version else real_get_release(version)

    monkeypatch.setattr(upgrade_module, "get_release", get_release)
    return release


@pytest.fixture
def payara(tmp_path):
    root = tmp_path / "payara6"
    config_dir = root / "glassfish" / "domains" / "domain1" / "config"
    config_dir.mkdir(parents=True)
    (config_dir / "domain.xml").write_text(DOMAIN_XML, encoding="utf-8")
    (root / "glassfish" / "domains" / "domain1" / "generated").mkdir()
    (root / "previous-runtime.txt").write_text("6.2023.8\n", encoding="utf-8")
    return root


def build_upgrade(tmp_path, payara, confirmation=None, requests_module=None, config_values=None, **kwargs):
    values = {"DOMAIN": "dataverse.example.org", "PAYARA": str(payara), "DATAVERSE_USER": "dataverse"}
    values.update(config_values or {})
    config = Configuration(values=values)
    runner = FakeCommandRunner()
    local = FakeLocalSystem()
    requests_module = requests_module or FakeRequestsModule()
    sleeps = []
    workflow = IsolatedUpgrade(
        config=config,
        confirmation=confirmation or CannedConfirmation({"backups": True, "install the Solr": False}),
        command_runner=runner,
        local_system=local,
        requests_module=requests_module,
        sleep=sleeps.append,
        log_file=str(tmp_path / "upgrade.log"),
        report_file=str(tmp_path / "report.json"),
        **kwargs,
    )
    return workflow, runner, local, requests_module


def read_report(tmp_path):
    with open(tmp_path / "report.json", encoding="utf-8") as file_obj:
        return json.load(file_obj)


def step_statuses(payload):
    return {step["name"]: step["status"] for step in payload["steps"]}


def test_dry_run_touches_nothing(tmp_path, payara):
    confirmation = CannedConfirmation()
    state_file = tmp_path / "state.json"
    workflow, runner, local, requests_module = build_upgrade(
        tmp_path, payara, confirmation=confirmation, dry_run=True, resume=True, state_file=str(state_file)
    )

    assert workflow.run() == 0

    assert runner.calls == []
    assert local.calls == []
    assert requests_module.calls == []
    assert confirmation.asked == []
    assert not state_file.exists()
    payload = read_report(tmp_path)
    assert payload["status"] == "dry-run"
    assert set(step_statuses(payload).values()) == {"dry-run"}
    solr_actions = next(step["actions"] for step in payload["steps"] if step["name"] == "upgrade_solr")
    assert any("/usr/local/solr/solr-9.4.1" in action for action in solr_actions)
    assert (payara / "previous-runtime.txt").exists()


def test_checksum_mismatch_leaves_current_runtime_alone(tmp_path, payara):
    confirmation = CannedConfirmation({"backups": True, "roll back": True})
    workflow, _, local, _ = build_upgrade(
        tmp_path,
        payara,
        confirmation=confirmation,
        requests_module=FakeRequestsModule(payara_payload=b"tampered"),
    )

    assert workflow.run() == 1

    payload = read_report(tmp_path)
    statuses = step_statuses(payload)
    assert statuses["upgrade_runtime"] == "failed"
    assert "deploy" not in statuses
    failed = next(step for step in payload["steps"] if step["name"] == "upgrade_runtime")
    assert "Checksum mismatch" in failed["message"]
    assert payload["metadata"]["upgrade_state"] == UpgradeState.DIRS_CLEANED.value
    assert not any(call[0] == "move" for call in local.calls)
    assert (payara / "previous-runtime.txt").exists()
    assert [question for question, _ in confirmation.asked] == ["Have you created the necessary backups?"]


def test_verify_failure_offers_rollback_and_restores_runtime(tmp_path, payara):
    confirmation = CannedConfirmation({"backups": True, "install the Solr": False, "roll back": True})
    workflow, runner, local, requests_module = build_upgrade(tmp_path, payara, confirmation=confirmation)

    assert workflow.run() == 1

    payload = read_report(tmp_path)
    statuses = step_statuses(payload)
    assert statuses["deploy"] == "success"
    assert statuses["verify"] == "failed"
    assert payload["metadata"]["upgrade_state"] == UpgradeState.ROLLED_BACK.value
    assert any("roll back" in question for question, _ in confirmation.asked)

    assert (payara / "previous-runtime.txt").read_text(encoding="utf-8") == "6.2023.8\n"
    assert not (payara / "bin" / "asadmin").exists()
    restored_xml = (payara / "glassfish" / "domains" / "domain1" / "config" / "domain.xml").read_text(
        encoding="utf-8"
    )
    assert "--add-opens=java.management/javax.management=ALL-UNNAMED" in restored_xml
    assert not os.path.exists(workflow.runtime_backup)

    assert any("deploy" in cmd and cmd[-1].endswith("dataverse-6.3.war") for cmd in runner.calls)
    assert any(cmd[-2:] == ["undeploy", "dataverse-6.3"] for cmd in runner.calls)
    assert ("POST", "http://localhost:8080/api/admin/datasetfield/load") in requests_module.calls


def test_keeping_install_after_failed_verification_marks_done(tmp_path, payara):
    confirmation = CannedConfirmation({"backups": True, "install the Solr": False, "roll back": False})
    workflow, _, _, _ = build_upgrade(tmp_path, payara, confirmation=confirmation)

    assert workflow.run() == 1

    payload = read_report(tmp_path)
    assert payload["metadata"]["upgrade_state"] == UpgradeState.DONE.value
    assert (payara / "bin" / "asadmin").exists()
    assert os.path.isdir(workflow.runtime_backup)


def test_successful_upgrade_reaches_done(tmp_path, payara):
    workflow, _, _, _ = build_upgrade(tmp_path, payara, requests_module=FakeRequestsModule(running_version="6.3"))
    # The pre-upgrade check must still see the previous release.
    workflow.api.get_version = iter(["6.2", "6.3", "6.3"]).__next__

    assert workflow.run() == 0

    payload = read_report(tmp_path)
    assert payload["status"] == "success"
    assert payload["metadata"]["upgrade_state"] == UpgradeState.DONE.value
    statuses = step_statuses(payload)
    assert statuses["upgrade_solr"] == "success"
    messages = {step["name"]: step["message"] for step in payload["steps"]}
    assert messages["upgrade_solr"] == "declined by operator"


def test_resume_skips_completed_steps(tmp_path, payara):
    state_file = tmp_path / "state.json"
    tampered = FakeRequestsModule(payara_payload=b"tampered")
    first, _, _, _ = build_upgrade(
        tmp_path, payara, requests_module=tampered, resume=True, state_file=str(state_file)
    )
    assert first.run() == 1

    state = json.loads(state_file.read_text(encoding="utf-8"))
    assert state["completed_steps"] == ["check_version", "undeploy", "stop_server", "clean_dirs"]
    assert state["upgrade_state"] == UpgradeState.DIRS_CLEANED.value
    assert state["status"] == "failed"

    second, runner, _, _ = build_upgrade(
        tmp_path, payara, requests_module=tampered, resume=True, state_file=str(state_file)
    )
    assert second.run() == 1

    payload = read_report(tmp_path)
    for name in ("check_version", "undeploy", "stop_server", "clean_dirs"):
        step = next(step for step in payload["steps"] if step["name"] == name)
        assert step["status"] == "skipped"
        assert step["message"] == "completed in a previous run"
    assert not any("list-applications" in cmd for cmd in runner.calls)


def test_unsupported_target_version_is_rejected(tmp_path, payara):
    workflow, runner, local, _ = build_upgrade(tmp_path, payara, target_version="5.14")

    assert workflow.run() == 1

    payload = read_report(tmp_path)
    assert "Supported versions: 6.3" in payload["error"]
    assert runner.calls == []
    assert local.calls == []


def test_declining_backup_confirmation_exits_cleanly(tmp_path, payara):
    confirmation = CannedConfirmation({"backups": False})
    workflow, runner, local, _ = build_upgrade(tmp_path, payara, confirmation=confirmation)

    assert workflow.run() == 0

    assert read_report(tmp_path)["status"] == "cancelled"
    assert runner.calls == []
    assert local.calls == []


def successful_upgrade(tmp_path, payara, confirmation, **kwargs):
    workflow, runner, local, requests_module = build_upgrade(
        tmp_path,
        payara,
        confirmation=confirmation,
        requests_module=FakeRequestsModule(running_version="6.3"),
        **kwargs,
    )
    workflow.api.get_version = iter(["6.2", "6.3", "6.3"]).__next__
    return workflow, runner, local, requests_module


def test_enabled_feature_forces_reindex_without_asking(tmp_path, payara):
    confirmation = CannedConfirmation({"backups": True, "install the Solr": False, "metadata source facet": True})
    workflow, runner, _, requests_module = successful_upgrade(tmp_path, payara, confirmation)

    assert workflow.run() == 0

    assert any("create-jvm-options" in cmd for cmd in runner.calls)
    assert ("GET", "http://localhost:8080/api/admin/index") in requests_module.calls
    assert not any("reindex Solr" in question for question, _ in confirmation.asked)
    statuses = step_statuses(read_report(tmp_path))
    assert statuses["enable_features"] == "success"
    assert statuses["reindex"] == "success"


def test_solr_install_with_custom_fields_restarts_solr_around_script(tmp_path, payara):
    solr_dir = tmp_path / "solr"
    conf_dir = solr_dir / "solr-9.4.1" / "server" / "solr" / "collection1" / "conf"
    conf_dir.mkdir(parents=True)
    confirmation = CannedConfirmation(
        {
            "backups": True,
            "install the Solr": True,
            "Solr installation directory": str(solr_dir),
            "custom or experimental": True,
        }
    )
    workflow, _, local, requests_module = successful_upgrade(tmp_path, payara, confirmation)

    assert workflow.run() == 0

    installed = [call[2] for call in local.calls if call[0] == "install_file" and str(conf_dir) in call[2]]
    assert sorted(os.path.basename(path) for path in installed) == ["schema.xml", "solrconfig.xml"]
    assert (conf_dir / "schema.xml").exists()

    solr_calls = [
        call[0]
        for call in local.calls
        if call[0] == "run_script" or (call[0] in ("stop_service", "start_service") and call[1] == "solr")
    ]
    assert solr_calls == ["stop_service", "run_script", "start_service"]
    script_call = next(call for call in local.calls if call[0] == "run_script")
    assert script_call[1][-1] == str(conf_dir / "schema.xml")
    assert ("GET", "http://localhost:8080/api/admin/index/solr/schema") in requests_module.calls


def test_missing_solr_directory_fails_the_solr_step(tmp_path, payara):
    confirmation = CannedConfirmation(
        {
            "backups": True,
            "install the Solr": True,
            "Solr installation directory": str(tmp_path / "no-solr"),
            "roll back": False,
        }
    )
    workflow, _, _, _ = successful_upgrade(tmp_path, payara, confirmation)

    assert workflow.run() == 1

    payload = read_report(tmp_path)
    failed = next(step for step in payload["steps"] if step["name"] == "upgrade_solr")
    assert failed["status"] == "failed"
    assert "Solr directory not found" in failed["message"]


def test_keyword_migration_can_start_reindex(tmp_path, payara):
    confirmation = CannedConfirmation(
        {
            "backups": True,
            "install the Solr": False,
            "keywordValue": True,
            "completed the database migration": True,
        }
    )
    workflow, _, _, requests_module = successful_upgrade(tmp_path, payara, confirmation)

    assert workflow.run() == 0

    assert requests_module.calls.count(("GET", "http://localhost:8080/api/admin/index")) == 1
    steps = {step["name"]: step for step in read_report(tmp_path)["steps"]}
    assert steps["migrate_keywords"]["status"] == "success"
    assert "start a full Solr reindex" in steps["migrate_keywords"]["actions"]
    assert steps["reindex"]["message"] == "declined by operator"


def test_war_already_in_deploy_dir_is_verified_instead_of_downloaded(tmp_path, payara):
    deploy_dir = tmp_path / "deploy"
    deploy_dir.mkdir()
    (deploy_dir / "dataverse-6.3.war").write_bytes(WAR_BYTES)
    workflow, runner, _, requests_module = successful_upgrade(
        tmp_path, payara, CannedConfirmation({"backups": True, "install the Solr": False}),
        config_values={"DEPLOY_DIR": str(deploy_dir)},
    )

    assert workflow.run() == 0

    assert not any(url.endswith(".war") for _, url in requests_module.calls)
    assert any(cmd[-1] == str(deploy_dir / "dataverse-6.3.war") for cmd in runner.calls)
    deploy = next(step for step in read_report(tmp_path)["steps"] if step["name"] == "deploy")
    assert deploy["actions"][0] == "verify the SHA-1 checksum of dataverse-6.3.war"


def test_tampered_war_in_deploy_dir_fails_deploy(tmp_path, payara):
    deploy_dir = tmp_path / "deploy"
    deploy_dir.mkdir()
    (deploy_dir / "dataverse-6.3.war").write_bytes(b"not the release")
    confirmation = CannedConfirmation({"backups": True, "roll back": False})
    workflow, runner, _, _ = build_upgrade(
        tmp_path, payara, confirmation=confirmation, config_values={"DEPLOY_DIR": str(deploy_dir)}
    )

    assert workflow.run() == 1

    deploy = next(step for step in read_report(tmp_path)["steps"] if step["name"] == "deploy")
    assert deploy["status"] == "failed"
    assert "Checksum mismatch" in deploy["message"]
    assert not any("deploy" in cmd and cmd[-1].endswith(".war") for cmd in runner.calls)


def test_verify_rejects_a_different_minor_release(tmp_path, payara):
    confirmation = CannedConfirmation({"backups": True, "install the Solr": False, "roll back": False})
    workflow, _, _, _ = build_upgrade(tmp_path, payara, confirmation=confirmation)
    workflow.api.get_version = iter(["6.2", "6.30", "6.30"]).__next__

    assert workflow.run() == 1

    payload = read_report(tmp_path)
    verify = next(step for step in payload["steps"] if step["name"] == "verify")
    assert verify["status"] == "failed"
    assert "got: 6.30" in verify["message"]
