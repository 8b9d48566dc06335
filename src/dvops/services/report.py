"""Execution report for a single workflow run."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rich.table import Table

from dvops.models import ReportEntry, StepOutcome

_OUTCOME_STYLES = {
    StepOutcome.SUCCESS: "green",
    StepOutcome.FAILED: "bold red",
    StepOutcome.SKIPPED: "yellow",
    StepOutcome.DRY_RUN: "cyan",
}


class ExecutionReport:
    """Append-only record of what each step did."""

    def __init__(self, workflow: str):
        self.workflow = workflow
        self.started_at = self._now()
        self._entries: List[ReportEntry] = []
        self.metadata: Dict[str, Any] = {}

    def record(
        self,
        step: str,
        outcome: StepOutcome,
        message: str = "",
        actions: Sequence[str] = (),
    ) -> ReportEntry:
        entry = ReportEntry(step=step, outcome=outcome, message=message, actions=tuple(actions))
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> Tuple[ReportEntry, ...]:
        return tuple(self._entries)

    @property
    def failed(self) -> Optional[ReportEntry]:
        for entry in self._entries:
            if entry.outcome == StepOutcome.FAILED:
                return entry
        return None

    def steps_with(self, outcome: StepOutcome) -> List[str]:
        return [entry.step for entry in self._entries if entry.outcome == outcome]

    def as_table(self, title: str) -> Table:
        table = Table(title=title)
        table.add_column("Step", style="bold")
        table.add_column("Outcome")
        table.add_column("Details")
        for entry in self._entries:
            style = _OUTCOME_STYLES.get(entry.outcome, "")
            table.add_row(entry.step, f"[{style}]{entry.outcome.value}[/{style}]", entry.message)
        return table

    def to_dict(self, status: str, error: Optional[str] = None) -> Dict[str, Any]:
        return {
            "workflow": self.workflow,
            "status": status,
            "started_at": self.started_at,
            "finished_at": self._now(),
            "error": error,
            "metadata": dict(self.metadata),
            "steps": [
                {
                    "name": entry.step,
                    "status": entry.outcome.value,
                    "message": entry.message,
                    "actions": list(entry.actions),
                }
                for entry in self._entries
            ],
        }

    def write(self, report_file: str, status: str, logger, error: Optional[str] = None):
        directory = os.path.dirname(report_file) or "."
        os.makedirs(directory, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(prefix="run-report-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.to_dict(status, error), file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, report_file)
        except OSError as exc:
            logger.warning("Could not write report file '%s': %s", report_file, exc)
            try:
                os.remove(temp_path)
            except OSError:
                pass

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
