import json

from rich.console import Console

from dvops.models import StepOutcome
from dvops.services.report import ExecutionReport


class DummyLogger:
    def warning(self, *_args, **_kwargs):
        return None


def test_report_keeps_entries_in_order_and_finds_failure():
    report = ExecutionReport("sync")
    report.record("backup", StepOutcome.SUCCESS, "backup at /home/op/backup")
    report.record("database", StepOutcome.FAILED, "restore failed", ["restore database to localhost/dvndb"])

    assert [entry.step for entry in report.entries] == ["backup", "database"]
    assert report.failed.step == "database"
    assert report.steps_with(StepOutcome.SUCCESS) == ["backup"]


def test_report_writes_json(tmp_path):
    report = ExecutionReport("upgrade")
    report.metadata["target_version"] = "6.3"
    report.record("check_version", StepOutcome.DRY_RUN, "Check that Dataverse 6.2 is installed", ["check"])
    report_file = tmp_path / "reports" / "upgrade.json"

    report.write(str(report_file), "dry-run", DummyLogger())

    payload = json.loads(report_file.read_text(encoding="utf-8"))
    assert payload["workflow"] == "upgrade"
    assert payload["status"] == "dry-run"
    assert payload["metadata"] == {"target_version": "6.3"}
    assert payload["steps"] == [
        {
            "name": "check_version",
            "status": "dry-run",
            "message": "Check that Dataverse 6.2 is installed",
            "actions": ["check"],
        }
    ]


def test_report_renders_table():
    report = ExecutionReport("sync")
    report.record("solr", StepOutcome.SKIPPED, "--skip-solr given")
    console = Console(record=True, width=120)

    console.print(report.as_table("SYNC SUMMARY"))

    output = console.export_text()
    assert "SYNC SUMMARY" in output
    assert "--skip-solr given" in output
