"""Ordered, abort-on-first-error step execution with a dry-run mode."""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from dvops.errors import DvOpsError, OperationCancelled
from dvops.models import ReportEntry, StepOutcome, StepResult
from dvops.services.report import ExecutionReport


def _always() -> bool:
    return True


@dataclass
class Step:
    """One named unit of a workflow.

    ``action`` receives a :class:`StepContext` and performs every mutating
    sub-action through it. It may return a :class:`StepResult`, ``None``
    (success) or raise.
    """

    name: str
    description: str
    action: Callable[["StepContext"], Optional[StepResult]]
    enabled: Callable[[], bool] = _always
    skip_reason: str = "disabled"


class StepContext:
    """Handed to a step's action; routes side effects through dry-run."""

    def __init__(self, step_name: str, dry_run: bool, confirmation, logger):
        self.step_name = step_name
        self.dry_run = dry_run
        self.confirmation = confirmation
        self.logger = logger
        self.actions: List[str] = []

    def perform(self, description: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        self.actions.append(description)
        if self.dry_run:
            self.logger.info("DRY RUN: Would %s", description)
            return None
        self.logger.info("%s", description[:1].upper() + description[1:])
        return func(*args, **kwargs)

    def note(self, message: str, *args):
        """Logs an advisory line that is identical in both modes."""
        self.logger.info(message, *args)

    def ask(self, question: str, default: bool = False) -> bool:
        """Operator gate for optional work.

        A dry run assumes acceptance so that it describes every action a
        real run could take.
        """
        if self.dry_run:
            self.logger.info("DRY RUN: Would ask '%s'", question)
            return True
        return self.confirmation.confirm(question, default=default)

    def ask_text(self, question: str, default: str) -> str:
        if self.dry_run:
            return default
        return self.confirmation.ask(question, default=default)

    def optional(
        self,
        question: str,
        description: str,
        func: Callable[..., Any],
        *args,
        default: bool = False,
        **kwargs,
    ) -> Any:
        """Runs a sub-action only when the operator accepts it.

        Declining is not a failure; a failure after accepting is.
        """
        if not self.ask(question, default=default):
            self.logger.info("Skipping: %s", description)
            return None
        return self.perform(description, func, *args, **kwargs)


class StepPipeline:
    """Runs steps in order and stops at the first failure."""

    def __init__(self, logger, confirmation, dry_run: bool = False):
        self.logger = logger
        self.confirmation = confirmation
        self.dry_run = dry_run

    def run(
        self,
        steps: Sequence[Step],
        report: ExecutionReport,
        should_skip: Optional[Callable[[Step], Optional[str]]] = None,
        on_step_finished: Optional[Callable[[Step, ReportEntry], None]] = None,
    ) -> ExecutionReport:
        for step in steps:
            entry = self._run_step(step, report, should_skip)
            if on_step_finished:
                on_step_finished(step, entry)
            if entry.outcome == StepOutcome.FAILED:
                self.logger.error("Step '%s' failed: %s", step.name, entry.message)
                break
        return report

    def _run_step(self, step: Step, report: ExecutionReport, should_skip) -> ReportEntry:
        if not step.enabled():
            self.logger.info("Skipping %s: %s", step.name, step.skip_reason)
            return report.record(step.name, StepOutcome.SKIPPED, step.skip_reason)

        if should_skip:
            reason = should_skip(step)
            if reason:
                self.logger.info("Skipping %s: %s", step.name, reason)
                return report.record(step.name, StepOutcome.SKIPPED, reason)

        self.logger.info("=== %s ===", step.name.upper())
        context = StepContext(step.name, self.dry_run, self.confirmation, self.logger)

        try:
            result = step.action(context) or StepResult()
        except (OperationCancelled, KeyboardInterrupt):
            raise
        except DvOpsError as exc:
            return report.record(step.name, StepOutcome.FAILED, str(exc), context.actions)
        except Exception as exc:
            self.logger.exception("Unexpected error in step '%s'", step.name)
            return report.record(step.name, StepOutcome.FAILED, f"Unexpected error: {exc}", context.actions)

        if not result.success:
            return report.record(
                step.name, StepOutcome.FAILED, result.detail or "step reported failure", context.actions
            )

        if self.dry_run:
            return report.record(step.name, StepOutcome.DRY_RUN, step.description, context.actions)

        self.logger.info("%s completed", step.name)
        return report.record(step.name, StepOutcome.SUCCESS, result.detail or "", context.actions)
