"""Production -> staging sync workflow."""

import logging
import os
import shlex
import shutil
from datetime import datetime
from typing import List, Optional

from rich.console import Console

from .constants import (
    BACKUP_DIR_PREFIX,
    CONTENT_EXCLUDES,
    CONTENT_MAX_SIZE,
    COUNTER_EXCLUDES,
    COUNTER_GROUP,
    CRONTAB_PLACEHOLDER,
    CRONTAB_REVIEW_FILE,
    DEFAULT_SOLR_SERVICE,
    DOMAIN_XML_RELPATH,
    DOMAINS_RELPATH,
    POST_RESTORE_SQL,
    REMOTE_DUMP_PATH,
    SOLR_COLLECTION_RELPATH,
    SOLR_CONFIG_EXCLUDES,
    SYNC_LOG_FILE,
    SYNC_REQUIRED_COMMANDS,
    SYNC_REQUIRED_GROUPS,
)
from .errors import DvOpsError, OperationCancelled
from .errors_catalog import actionable_error
from .models import Configuration, RemotePath, StepOutcome, StepResult
from .pipeline import Step, StepContext, StepPipeline
from .services.command_runner import CommandRunner
from .services.confirmation import ConsoleConfirmation
from .services.env_loader import EnvironmentLoader
from .services.filesystem import FileSystemService, ScratchWorkspace
from .services.local_system import LocalSystem
from .services.remote import SshRemoteExecutor
from .services.report import ExecutionReport
from .services.rewriting import Rewriter, rewrite_crontab, rewrite_file, rewrite_properties, rewrite_script
from .services.safety import SafetyGuard

console = Console()
logger = logging.getLogger("dvops")


class ProductionSync:
    """Clones a production Dataverse onto this (staging) server."""

    def __init__(
        self,
        config: Configuration,
        dry_run: bool = False,
        skip_db: bool = False,
        skip_files: bool = False,
        skip_solr: bool = False,
        skip_counter: bool = False,
        skip_backup: bool = False,
        log_file: str = SYNC_LOG_FILE,
        report_file: Optional[str] = None,
        confirmation=None,
        remote_executor=None,
        local_system=None,
        home_dir: Optional[str] = None,
    ):
        self.config = config
        self.dry_run = dry_run
        self.skip_db = skip_db
        self.skip_files = skip_files
        self.skip_solr = skip_solr
        self.skip_counter = skip_counter
        self.skip_backup = skip_backup
        self.log_file = log_file
        self.report_file = report_file
        self.home_dir = home_dir or os.path.expanduser("~")

        self.command_runner = CommandRunner(logger=logger)
        self.confirmation = confirmation or ConsoleConfirmation(console)
        self.remote = remote_executor or SshRemoteExecutor(self.command_runner, logger)
        self.local = local_system or LocalSystem(self.command_runner, logger)
        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.env_loader = EnvironmentLoader(logger=logger)
        self.safety_guard = SafetyGuard(config, self.confirmation, logger, remote_executor=self.remote)
        self.pipeline = StepPipeline(logger, self.confirmation, dry_run=dry_run)

        self.workspace: Optional[ScratchWorkspace] = None
        self.backup_dir: Optional[str] = None
        self.crontab_review_path = os.path.join(self.home_dir, CRONTAB_REVIEW_FILE)

    # Configuration shortcuts

    @property
    def ssh_user(self) -> str:
        return self.config["PRODUCTION_SSH_USER"]

    @property
    def server(self) -> str:
        return self.config["PRODUCTION_SERVER"]

    @property
    def solr_service(self) -> str:
        return self.config.get("SOLR_SERVICE", DEFAULT_SOLR_SERVICE)

    def _remote_path(self, path: str, user: Optional[str] = None) -> RemotePath:
        return RemotePath(user or self.ssh_user, self.server, path)

    def _rewriter(self, include_paths: bool = False) -> Rewriter:
        hosts = {self.config["PRODUCTION_DOMAIN"]: self.config["DOMAIN"]}
        paths = {}
        if include_paths:
            paths[self.config["PRODUCTION_DATAVERSE_CONTENT_STORAGE"]] = self.config["DATAVERSE_CONTENT_STORAGE"]
            if self._counter_configured():
                paths[self.config["PRODUCTION_COUNTER_PROCESSOR_DIR"]] = self.config["COUNTER_PROCESSOR_DIR"]
        return Rewriter(hosts=hosts, paths=paths)

    def _counter_configured(self) -> bool:
        return self.env_loader.is_complete(self.config, COUNTER_GROUP)

    def _counter_enabled(self) -> bool:
        return not self.skip_counter and self._counter_configured()

    # Preflight

    def _running_as_root(self) -> bool:
        return hasattr(os, "geteuid") and os.geteuid() == 0

    def _missing_commands(self) -> List[str]:
        return [cmd for cmd in SYNC_REQUIRED_COMMANDS if shutil.which(cmd) is None]

    def preflight(self):
        if self._running_as_root():
            raise DvOpsError(actionable_error("running_as_root"))

        missing = self._missing_commands()
        if missing:
            raise DvOpsError(actionable_error("missing_commands", commands=", ".join(missing)))

        self.env_loader.validate(self.config, SYNC_REQUIRED_GROUPS)
        self.safety_guard.check()

        if self.dry_run:
            logger.info("Running in DRY RUN mode - no changes will be made")
            return

        self.safety_guard.check_versions()
        question = (
            f"This will sync data from production ({self.config['PRODUCTION_DOMAIN']}) "
            f"to this server ({self.config['DOMAIN']}). Continue?"
        )
        if not self.confirmation.confirm(question, default=False):
            raise OperationCancelled("Operation cancelled by user")

    # Steps

    def build_steps(self) -> List[Step]:
        counter_reason = (
            "--skip-counter given"
            if self.skip_counter
            else "one or more counter processor variables not set"
        )
        return [
            Step(
                "backup",
                "Backup of clone server before sync",
                self.backup_clone,
                enabled=lambda: not self.skip_backup,
                skip_reason="--skip-backup given",
            ),
            Step(
                "database",
                f"Database backup and restore from Production:{self.config['PRODUCTION_DB_NAME']} "
                f"to Local:{self.config['DB_NAME']}",
                self.sync_database,
                enabled=lambda: not self.skip_db,
                skip_reason="--skip-db given",
            ),
            Step(
                "files",
                f"Dataverse files sync from Production:{self.config['PRODUCTION_DATAVERSE_CONTENT_STORAGE']} "
                f"to Local:{self.config['DATAVERSE_CONTENT_STORAGE']}",
                self.sync_files,
                enabled=lambda: not self.skip_files,
                skip_reason="--skip-files given",
            ),
            Step(
                "solr",
                f"Solr configuration sync from Production:{self.config['PRODUCTION_SOLR_PATH']} "
                f"to Local:{self.config['SOLR_PATH']}",
                self.sync_solr,
                enabled=lambda: not self.skip_solr,
                skip_reason="--skip-solr given",
            ),
            Step(
                "counter",
                f"Counter processor sync from Production:{self.config.get('PRODUCTION_COUNTER_PROCESSOR_DIR', '-')} "
                f"to Local:{self.config.get('COUNTER_PROCESSOR_DIR', '-')}",
                self.sync_counter,
                enabled=self._counter_enabled,
                skip_reason=counter_reason,
            ),
            Step(
                "cron",
                f"Production cron jobs rewritten for review at {self.crontab_review_path}",
                self.sync_crontab,
            ),
            Step("permissions", "File permissions and ownership fix-up", self.fix_permissions),
        ]

    def backup_clone(self, ctx: StepContext) -> StepResult:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_dir = os.path.join(self.home_dir, f"{BACKUP_DIR_PREFIX}{timestamp}")
        dump_file = os.path.join(backup_dir, "database_backup.sql")

        ctx.perform(f"create backup directory {backup_dir}", self.filesystem_service.ensure_dir, backup_dir)
        ctx.perform(
            f"back up local database {self.config['DB_HOST']}/{self.config['DB_NAME']} to {dump_file}",
            self.local.dump_database,
            self.config["DB_HOST"],
            self.config["DB_USER"],
            self.config["DB_NAME"],
            dump_file,
        )
        ctx.perform(
            f"back up domain.xml and Dataverse config directory to {backup_dir}",
            self._backup_config_files,
            backup_dir,
        )
        self.backup_dir = backup_dir
        return StepResult(detail=f"backup at {backup_dir}")

    def _backup_config_files(self, backup_dir: str):
        domain_xml = os.path.join(self.config["PAYARA"], DOMAIN_XML_RELPATH)
        self.filesystem_service.copy_optional(
            domain_xml, os.path.join(backup_dir, "config", "domain.xml"), "domain.xml"
        )
        config_dir = os.path.join(self.config["DATAVERSE_CONTENT_STORAGE"], "config")
        if os.path.isdir(config_dir):
            self.filesystem_service.copy_optional(
                config_dir, os.path.join(backup_dir, "config"), "Dataverse config dir"
            )
        logger.info("In case of problems, you can restore from %s", backup_dir)

    def sync_database(self, ctx: StepContext) -> StepResult:
        db_name = self.config["PRODUCTION_DB_NAME"]
        dump_file = self.workspace.join(f"{db_name}_dump.sql")
        rewritten_file = self.workspace.join(f"{db_name}_dump.local.sql")
        target = f"{self.config['DB_HOST']}/{self.config['DB_NAME']}"

        ctx.perform(
            f"create database dump of {db_name} on {self.server}",
            self._create_remote_dump,
            db_name,
        )
        ctx.perform(
            f"copy database dump from {self.server} into the scratch workspace",
            self.remote.copy,
            self._remote_path(REMOTE_DUMP_PATH),
            dump_file,
        )
        ctx.perform(
            f"remove {REMOTE_DUMP_PATH} from {self.server}",
            self.remote.run,
            self.server,
            self.ssh_user,
            f"rm -f {REMOTE_DUMP_PATH}",
            check=False,
        )
        ctx.perform(
            f"replace {self.config['PRODUCTION_DOMAIN']} with {self.config['DOMAIN']} in the database dump",
            self._rewrite_dump,
            dump_file,
            rewritten_file,
        )
        ctx.perform(f"restore database to {target}", self.local.run_sql_file,
                    self.config["DB_HOST"], self.config["DB_NAME"], rewritten_file)
        ctx.perform(
            "apply post-restore settings (disable DOI registration and email, add test-instance notice)",
            self._apply_post_restore_sql,
        )
        ctx.note("PRESERVED: Local database credentials")
        return StepResult(detail=f"restored into {target}")

    def _create_remote_dump(self, db_name: str):
        command = (
            f"sudo -u postgres pg_dump -d {shlex.quote(db_name)} -c --no-owner -f {REMOTE_DUMP_PATH} "
            f"&& sudo chown {shlex.quote(self.ssh_user)}: {REMOTE_DUMP_PATH}"
        )
        self.remote.run(self.server, self.ssh_user, command)

    def _rewrite_dump(self, dump_file: str, rewritten_file: str):
        changed = rewrite_file(dump_file, rewritten_file, self._rewriter())
        logger.info("Updated %s line(s) of the database dump", changed)

    def _apply_post_restore_sql(self):
        sql_file = self.workspace.join("post_restore.sql")
        self.filesystem_service.write_text(sql_file, POST_RESTORE_SQL + "\n")
        self.local.run_sql_file(self.config["DB_HOST"], self.config["DB_NAME"], sql_file, stop_on_error=True)

    def sync_files(self, ctx: StepContext) -> StepResult:
        source = self.config["PRODUCTION_DATAVERSE_CONTENT_STORAGE"]
        destination = self.config["DATAVERSE_CONTENT_STORAGE"]
        full_copy = self.config.flag("FULL_COPY")
        max_size = None if full_copy else CONTENT_MAX_SIZE
        mode = "full copy" if full_copy else f"files up to {CONTENT_MAX_SIZE}"

        ctx.note("PRESERVED: SSL certificates and secrets in %s", source)
        ctx.perform(
            f"copy Dataverse files from {self.server}:{source} to {destination} ({mode})",
            self.remote.copy,
            self._remote_path(source.rstrip("/") + "/"),
            destination.rstrip("/") + "/",
            excludes=CONTENT_EXCLUDES,
            max_size=max_size,
        )
        ctx.perform(
            "copy essential Payara configuration files (excluding domain.xml and credentials)",
            self._sync_payara_properties,
        )
        return StepResult(detail=mode)

    def _sync_payara_properties(self):
        production_payara = self.config.get("PRODUCTION_PAYARA", self.config["PAYARA"])
        remote_domains = os.path.join(production_payara, DOMAINS_RELPATH)
        local_domains = os.path.join(self.config["PAYARA"], DOMAINS_RELPATH)
        staging_root = self.workspace.join("payara_configs")

        listing = self.remote.run(
            self.server,
            self.ssh_user,
            f"find {shlex.quote(remote_domains)} -name '*.properties' "
            "-not -path '*password*' -not -path '*keyfile*'",
        )
        rewriter = self._rewriter()
        copied = 0
        for remote_file in filter(None, (line.strip() for line in listing.output.splitlines())):
            relative = os.path.relpath(remote_file, remote_domains)
            if relative.startswith(".."):
                continue
            staged = os.path.join(staging_root, relative)
            self.filesystem_service.ensure_dir(os.path.dirname(staged))
            self.remote.copy(self._remote_path(remote_file), staged)

            content, _ = rewrite_properties(self.filesystem_service.read_text(staged), rewriter)
            self.filesystem_service.write_text(os.path.join(local_domains, relative), content)
            copied += 1
        logger.info("Copied %s Payara properties file(s)", copied)

    def sync_solr(self, ctx: StepContext) -> StepResult:
        conf_dir = os.path.join(self.config["SOLR_PATH"], SOLR_COLLECTION_RELPATH, "conf")
        prod_conf_dir = os.path.join(self.config["PRODUCTION_SOLR_PATH"], SOLR_COLLECTION_RELPATH, "conf")
        data_dir = os.path.join(self.config["SOLR_PATH"], SOLR_COLLECTION_RELPATH, "data")
        prod_data_dir = os.path.join(self.config["PRODUCTION_SOLR_PATH"], SOLR_COLLECTION_RELPATH, "data")
        solr_user = self.config["PRODUCTION_SOLR_USER"]

        ctx.note("PRESERVED: Solr SSL configurations and credentials in %s", self.config["PRODUCTION_SOLR_PATH"])
        ctx.perform("stop local Solr service", self._stop_solr)
        ctx.perform(
            f"copy Solr configuration from {self.server}:{prod_conf_dir} to {conf_dir}",
            self.remote.copy,
            self._remote_path(prod_conf_dir + "/", user=solr_user),
            conf_dir + "/",
            excludes=SOLR_CONFIG_EXCLUDES,
        )
        ctx.optional(
            "Do you want to copy Solr indexes? This may take a long time.",
            f"copy Solr indexes from {self.server}:{prod_data_dir} to {data_dir}",
            self.remote.copy,
            self._remote_path(prod_data_dir + "/", user=solr_user),
            data_dir + "/",
        )
        ctx.perform("start local Solr service", self.local.start_service, self.solr_service)
        return StepResult()

    def _stop_solr(self):
        if not self.local.stop_service(self.solr_service, check=False):
            logger.warning("Could not stop Solr service. It may not be running.")

    def sync_counter(self, ctx: StepContext) -> StepResult:
        source = self.config["PRODUCTION_COUNTER_PROCESSOR_DIR"]
        destination = self.config["COUNTER_PROCESSOR_DIR"]

        ctx.perform(
            f"copy counter-processor from {self.server}:{source} to {destination}",
            self.remote.copy,
            self._remote_path(source.rstrip("/") + "/"),
            destination.rstrip("/") + "/",
            excludes=COUNTER_EXCLUDES,
        )
        ctx.perform(
            f"install application.properties rewritten for {self.config['DOMAIN']}",
            self._install_counter_properties,
        )
        for label, key in (("daily", "COUNTER_DAILY_SCRIPT"), ("weekly", "COUNTER_WEEKLY_SCRIPT")):
            ctx.perform(
                f"update counter {label} script from {self.server}:{self.config['PRODUCTION_' + key]} "
                f"to {self.config[key]}",
                self._install_counter_script,
                self.config["PRODUCTION_" + key],
                self.config[key],
                f"counter_{label}_script",
            )
        return StepResult()

    def _install_counter_properties(self):
        remote_file = os.path.join(self.config["PRODUCTION_COUNTER_PROCESSOR_DIR"], "application.properties")
        result = self.remote.run(self.server, self.ssh_user, f"cat {shlex.quote(remote_file)}")
        content, _ = rewrite_properties(result.output + "\n", self._rewriter())
        self.filesystem_service.write_text(
            os.path.join(self.config["COUNTER_PROCESSOR_DIR"], "application.properties"), content
        )

    def _install_counter_script(self, remote_script: str, local_script: str, staging_name: str):
        result = self.remote.run(self.server, self.ssh_user, f"sudo cat {shlex.quote(remote_script)}")
        rewriter = Rewriter(
            paths={self.config["PRODUCTION_COUNTER_PROCESSOR_DIR"]: self.config["COUNTER_PROCESSOR_DIR"]}
        )
        content, _ = rewrite_script(result.output + "\n", rewriter)
        staged = self.workspace.join(staging_name)
        self.filesystem_service.write_text(staged, content)
        self.local.install_file(staged, local_script)

    def sync_crontab(self, ctx: StepContext) -> StepResult:
        ctx.perform(
            f"fetch production crontab and write a rewritten copy to {self.crontab_review_path}",
            self._fetch_crontab,
        )
        ctx.note("PRESERVED: cron jobs are never applied automatically to avoid scheduling conflicts")
        return StepResult(detail=f"review {self.crontab_review_path}")

    def _fetch_crontab(self):
        result = self.remote.run(self.server, self.ssh_user, "crontab -l", check=False)
        original = result.output if result.exit_status == 0 else CRONTAB_PLACEHOLDER
        rewritten, changed = rewrite_crontab(original.rstrip("\n") + "\n", self._rewriter(include_paths=True))
        header = (
            "# Modified crontab from production - REVIEW BEFORE APPLYING\n"
            f"# Applied on staging server on {datetime.now():%Y-%m-%d %H:%M:%S}\n"
        )

        self.filesystem_service.write_text(self.crontab_review_path, header + rewritten)
        logger.info("Rewrote %s crontab line(s) for the staging environment", changed)
        logger.info(
            "IMPORTANT: Review %s manually and apply it with 'crontab %s' if desired",
            self.crontab_review_path,
            self.crontab_review_path,
        )

    def fix_permissions(self, ctx: StepContext) -> StepResult:
        dataverse_user = self.config["DATAVERSE_USER"]
        if not self.skip_files:
            storage = self.config["DATAVERSE_CONTENT_STORAGE"]
            ctx.perform(f"change ownership of {storage} to {dataverse_user}",
                        self.local.chown_tree, storage, dataverse_user)
        if not self.skip_solr:
            solr_path = self.config["SOLR_PATH"]
            ctx.perform(f"change ownership of {solr_path} to {self.config['SOLR_USER']}",
                        self.local.chown_tree, solr_path, self.config["SOLR_USER"])
        if self._counter_enabled():
            counter_dir = self.config["COUNTER_PROCESSOR_DIR"]
            ctx.perform(f"change ownership of {counter_dir} to {dataverse_user}",
                        self.local.chown_tree, counter_dir, dataverse_user)
            ctx.perform(
                "make counter scripts executable",
                self.local.make_executable,
                self.config["COUNTER_DAILY_SCRIPT"],
                self.config["COUNTER_WEEKLY_SCRIPT"],
            )
        ctx.note("IMPORTANT: You may need to restart Dataverse services now (sudo systemctl restart payara)")
        return StepResult()

    # Summary

    def print_summary(self, report: ExecutionReport):
        title = "DRY RUN SUMMARY - no changes were made" if self.dry_run else "SYNC SUMMARY"
        console.print(report.as_table(title))

        if report.failed:
            return

        skipped = report.steps_with(StepOutcome.SKIPPED)
        if skipped:
            logger.info("Skipped steps: %s", ", ".join(skipped))

        if self.dry_run:
            logger.info("DRY RUN COMPLETED - No changes were made")
            logger.info(
                "Preserved locally: SSL certificates and private keys, domain.xml, secret keys and "
                "credentials, Solr security configuration, production cron jobs, local .env file"
            )
            return

        logger.info("SYNC COMPLETED SUCCESSFULLY")
        next_steps = [
            f"Review modified crontab at {self.crontab_review_path}",
            "Verify database settings were properly updated (domain names, etc.)",
            "Check that Solr is properly configured and indexes are available",
            "Restart Payara if needed",
            "Test the staging instance and verify the site notice marks it as a test instance",
        ]
        if self.backup_dir:
            next_steps.append(f"If needed, roll back using the backup at {self.backup_dir}")
        for number, line in enumerate(next_steps, start=1):
            logger.info("%s. %s", number, line)
        logger.info(
            "TROUBLESHOOTING: check %s if Dataverse fails to start; "
            "verify Solr with 'systemctl status %s'; check database connectivity with "
            "'psql -h %s -U postgres -d %s -c \"SELECT 1\"'",
            os.path.join(self.config["PAYARA"], "glassfish/domains/domain1/logs"),
            self.solr_service,
            self.config["DB_HOST"],
            self.config["DB_NAME"],
        )

    def run(self) -> int:
        report = ExecutionReport("sync")
        exit_code = 1
        status = "failed"
        error: Optional[str] = None

        try:
            logger.info(
                "Starting production data fetch from %s to %s",
                self.config.get("PRODUCTION_DOMAIN", "<unset>"),
                self.config.get("DOMAIN", "<unset>"),
            )
            self.preflight()

            with ScratchWorkspace(self.filesystem_service, logger) as workspace:
                self.workspace = workspace
                self.pipeline.run(self.build_steps(), report)
            self.workspace = None

            self.print_summary(report)
            failed = report.failed
            if failed:
                raise DvOpsError(actionable_error("step_failed", step=failed.step, log_file=self.log_file))

            status = "dry-run" if self.dry_run else "success"
            exit_code = 0
            return exit_code

        except OperationCancelled as exc:
            logger.info("%s", exc)
            status = "cancelled"
            exit_code = 0
            return exit_code
        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            status = "aborted"
            error = "Operation cancelled by user."
            return exit_code
        except DvOpsError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            error = str(exc)
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            error = str(exc)
            return exit_code
        finally:
            if self.report_file:
                report.write(self.report_file, status, logger, error=error)
            logger.info("Script completed at %s", datetime.now().strftime("%Y-%m-%d %H:%M:%S"))
