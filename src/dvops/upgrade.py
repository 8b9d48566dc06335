"""In-place Dataverse upgrade: Payara runtime, WAR, metadata blocks and Solr."""

import logging
import os
import shutil
import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import requests
from packaging import version
from rich.console import Console

from .constants import (
    DEFAULT_API_URL,
    DEFAULT_PAYARA_SERVICE,
    DEFAULT_SOLR_DIR,
    DEFAULT_SOLR_SERVICE,
    DIR_MODE,
    DOMAIN_XML_RELPATH,
    DOMAINS_RELPATH,
    FILE_MODE,
    PAYARA_GENERATED_DIRS,
    SCRIPT_MODE,
    SERVER_START_PAUSE_SECONDS,
    SOLR_COLLECTION_RELPATH,
    UPGRADE_GROUP,
    UPGRADE_LOG_FILE,
    UPGRADE_REQUIRED_COMMANDS,
    UPGRADE_STATE_FILE,
)
from .errors import DvOpsError, OperationCancelled
from .errors_catalog import actionable_error
from .models import Configuration, ReportEntry, StepOutcome, StepResult
from .pipeline import Step, StepContext, StepPipeline
from .releases import DEFAULT_TARGET_VERSION, Release, get_release
from .services.app_server import AppServerService
from .services.archive import ArchiveService
from .services.command_runner import CommandRunner
from .services.confirmation import ConsoleConfirmation
from .services.dataverse_api import DataverseApiService
from .services.domain_xml import inject_jvm_options
from .services.download import DownloadService
from .services.env_loader import EnvironmentLoader
from .services.filesystem import FileSystemService, ScratchWorkspace
from .services.local_system import LocalSystem
from .services.report import ExecutionReport
from .services.state import StateService

console = Console()
logger = logging.getLogger("dvops")

DECLINED = "declined by operator"


class UpgradeState(str, Enum):
    NOT_STARTED = "NotStarted"
    VERSION_CHECKED = "VersionChecked"
    UNDEPLOYED = "Undeployed"
    SERVER_STOPPED = "ServerStopped"
    DIRS_CLEANED = "DirsCleaned"
    RUNTIME_UPGRADED = "RuntimeUpgraded"
    DEPLOYED = "Deployed"
    SERVER_RESTARTED = "ServerRestarted"
    METADATA_UPDATED = "MetadataUpdated"
    SEARCH_UPGRADED = "SearchUpgraded"
    FEATURES_ENABLED = "FeaturesEnabled"
    REINDEXED = "Reindexed"
    VERIFIED = "Verified"
    DONE = "Done"
    ROLLED_BACK = "RolledBack"


# Steps without an entry here are advisory and leave the state unchanged.
STEP_STATES = {
    "check_version": UpgradeState.VERSION_CHECKED,
    "undeploy": UpgradeState.UNDEPLOYED,
    "stop_server": UpgradeState.SERVER_STOPPED,
    "clean_dirs": UpgradeState.DIRS_CLEANED,
    "upgrade_runtime": UpgradeState.RUNTIME_UPGRADED,
    "deploy": UpgradeState.DEPLOYED,
    "restart_server": UpgradeState.SERVER_RESTARTED,
    "update_metadata": UpgradeState.METADATA_UPDATED,
    "upgrade_solr": UpgradeState.SEARCH_UPGRADED,
    "enable_features": UpgradeState.FEATURES_ENABLED,
    "reindex": UpgradeState.REINDEXED,
    "verify": UpgradeState.VERIFIED,
}


def _major_minor(value: str):
    return version.parse(value).release[:2]


class DataverseUpgrade:
    """Upgrades a Dataverse installation in place to a catalogued release."""

    def __init__(
        self,
        config: Configuration,
        target_version: str = DEFAULT_TARGET_VERSION,
        dry_run: bool = False,
        resume: bool = False,
        state_file: Optional[str] = None,
        log_file: str = UPGRADE_LOG_FILE,
        report_file: Optional[str] = None,
        confirmation=None,
        command_runner=None,
        local_system=None,
        requests_module=requests,
        sleep=time.sleep,
    ):
        self.config = config
        self.target_version = target_version
        self.dry_run = dry_run
        self.resume = resume
        self.state_file = state_file or UPGRADE_STATE_FILE
        self.log_file = log_file
        self.report_file = report_file
        self.sleep = sleep
        self.release: Optional[Release] = None

        self.command_runner = command_runner or CommandRunner(logger=logger)
        self.confirmation = confirmation or ConsoleConfirmation(console)
        self.local = local_system or LocalSystem(self.command_runner, logger)
        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.archive_service = ArchiveService()
        self.download_service = DownloadService(logger=logger, console=console, requests_module=requests_module)
        self.api = DataverseApiService(
            config.get("DATAVERSE_API_URL", DEFAULT_API_URL),
            logger,
            requests_module,
            sleep=sleep,
        )
        self.app_server = AppServerService(
            payara_dir=config.get("PAYARA", ""),
            service_user=config.get("DATAVERSE_USER", ""),
            command_runner=self.command_runner,
            local_system=self.local,
            logger=logger,
            service_name=config.get("PAYARA_SERVICE", DEFAULT_PAYARA_SERVICE),
        )
        self.env_loader = EnvironmentLoader(logger=logger)
        self.state_service = StateService(state_file=self.state_file, logger=logger)
        self.pipeline = StepPipeline(logger, self.confirmation, dry_run=dry_run)

        self.state: Optional[Dict[str, Any]] = None
        self.upgrade_state = UpgradeState.NOT_STARTED
        self.workspace: Optional[ScratchWorkspace] = None
        self.runtime_path: Optional[str] = None
        self.runtime_backup: Optional[str] = None
        self.reindex_required = False

    @property
    def payara(self) -> str:
        return self.config["PAYARA"]

    @property
    def solr_service(self) -> str:
        return self.config.get("SOLR_SERVICE", DEFAULT_SOLR_SERVICE)

    # Preflight

    def _running_as_root(self) -> bool:
        return hasattr(os, "geteuid") and os.geteuid() == 0

    def _missing_commands(self) -> List[str]:
        return [cmd for cmd in UPGRADE_REQUIRED_COMMANDS if shutil.which(cmd) is None]

    def preflight(self):
        self.release = get_release(self.target_version)

        if self._running_as_root():
            raise DvOpsError(actionable_error("running_as_root"))

        missing = self._missing_commands()
        if missing:
            raise DvOpsError(actionable_error("missing_commands", commands=", ".join(missing)))

        self.env_loader.validate(self.config, [UPGRADE_GROUP])

        if self.dry_run:
            logger.info("Running in DRY RUN mode - no changes will be made")
            return

        logger.info(
            "IMPORTANT: Before proceeding, ensure you have created backups of your database "
            "and Payara configuration."
        )
        if not self.confirmation.confirm("Have you created the necessary backups?", default=False):
            raise OperationCancelled("Upgrade aborted. Please create backups before running again.")

    def _resume_metadata(self) -> Dict[str, Any]:
        return {
            "target_version": self.release.version,
            "previous_version": self.release.previous_version,
            "payara": self.payara,
            "domain": self.config["DOMAIN"],
        }

    def _initialize_state(self):
        if not self.resume or self.dry_run:
            return

        state, resumed = self.state_service.initialize(self._resume_metadata(), UpgradeState.NOT_STARTED.value)
        self.state = state
        if not resumed:
            logger.info("Resume state initialized at %s", self.state_file)
            return

        self.upgrade_state = UpgradeState(state.get("upgrade_state", UpgradeState.NOT_STARTED.value))
        self.runtime_path = self.state_service.get_value(state, "runtime_path")
        self.runtime_backup = self.state_service.get_value(state, "runtime_backup")
        self.reindex_required = bool(self.state_service.get_value(state, "reindex_required", False))
        logger.info(
            "Resuming previous upgrade at state '%s' (%s step(s) already completed).",
            self.upgrade_state.value,
            len(state.get("completed_steps", [])),
        )

    def _remember(self, key: str, value: Any):
        if self.state:
            self.state_service.set_value(self.state, key, value)

    def _skip_completed(self, step: Step) -> Optional[str]:
        if self.state and self.state_service.is_step_completed(self.state, step.name):
            return "completed in a previous run"
        return None

    def _on_step_finished(self, step: Step, entry: ReportEntry):
        if entry.outcome != StepOutcome.SUCCESS:
            return

        new_state = STEP_STATES.get(step.name)
        if new_state and entry.message != DECLINED:
            logger.debug("Upgrade state: %s -> %s", self.upgrade_state.value, new_state.value)
            self.upgrade_state = new_state

        if self.state:
            self.state_service.mark_step_completed(self.state, step.name, self.upgrade_state.value)

    # Steps

    def build_steps(self) -> List[Step]:
        release = self.release
        return [
            Step("check_version", f"Check that Dataverse {release.previous_version} is installed",
                 self.check_version),
            Step("undeploy", f"Undeploy {release.previous_war_name}", self.undeploy),
            Step("stop_server", "Stop Payara", self.stop_server),
            Step("clean_dirs", "Remove Payara generated directories", self.clean_dirs),
            Step("upgrade_runtime", f"Upgrade Payara to {release.payara_version}", self.upgrade_runtime),
            Step("deploy", f"Deploy {release.war_name}", self.deploy),
            Step("internationalization", "Internationalization notice", self.internationalization),
            Step("restart_server", "Restart Payara and wait for the API", self.restart_server),
            Step("update_metadata", "Update metadata blocks", self.update_metadata),
            Step("upgrade_solr", f"Install Solr {release.solr_version} configuration", self.upgrade_solr),
            Step("enable_features", "Enable optional features", self.enable_features),
            Step("reindex", "Reindex Solr", self.reindex),
            Step("migrate_keywords", "keywordTermURI data migration", self.migrate_keywords),
            Step("verify", f"Verify Dataverse reports version {release.version}", self.verify),
        ]

    def check_version(self, ctx: StepContext) -> StepResult:
        ctx.perform(
            f"check that the deployed Dataverse version is {self.release.previous_version}",
            self._check_version,
        )
        return StepResult()

    def _check_version(self):
        if not self.app_server.has_applications():
            logger.info("No applications are deployed to this target server. Assuming upgrade is needed.")
            return

        current = self.api.get_version()
        expected = self.release.previous_version
        try:
            matches = bool(current) and _major_minor(current) == _major_minor(expected)
        except version.InvalidVersion:
            matches = False
        if not matches:
            raise DvOpsError(
                f"Current Dataverse version is {current or 'unknown'}, not {expected}. Upgrade cannot proceed."
            )
        logger.info("Current version is %s as expected. Proceeding with upgrade.", current)

    def undeploy(self, ctx: StepContext) -> StepResult:
        ctx.perform(f"undeploy {self.release.previous_war_name} if deployed", self._undeploy_previous)
        return StepResult()

    def _undeploy_previous(self):
        application = self.release.previous_war_name
        if not self.app_server.is_deployed(application):
            logger.info("Dataverse is not currently deployed. Skipping undeploy step.")
            return
        self.app_server.undeploy(application)
        logger.info("Undeploy completed successfully.")

    def stop_server(self, ctx: StepContext) -> StepResult:
        ctx.perform("stop Payara if it is running", self._stop_if_running)
        return StepResult()

    def _stop_if_running(self):
        if not self.app_server.is_running():
            logger.info("Payara is already stopped.")
            return
        self.app_server.stop()
        logger.info("Payara service stopped.")

    def clean_dirs(self, ctx: StepContext) -> StepResult:
        for relative in PAYARA_GENERATED_DIRS:
            path = os.path.join(self.app_server.domain_dir, relative)
            ctx.perform(f"remove {path}", self._remove_if_present, path)
        return StepResult()

    def _remove_if_present(self, path: str):
        if os.path.isdir(path):
            self.local.remove_tree(path, privileged=True)

    def upgrade_runtime(self, ctx: StepContext) -> StepResult:
        release = self.release
        payara_zip = self.workspace.join(release.payara.file_name)
        extract_dir = self.workspace.join("payara")
        runtime_path = self.local.resolve(self.payara)
        backup = f"{self.payara}.{datetime.now():%Y.%m}"

        # Download and extraction complete before the current runtime is touched.
        ctx.perform(
            f"download Payara {release.payara_version} and verify its SHA-1 checksum",
            self.download_service.download_file,
            release.payara.url,
            payara_zip,
            f"Payara {release.payara_version}",
            expected_hash=release.payara.sha1,
        )
        ctx.perform(f"extract {release.payara.file_name}", self.archive_service.extract_distribution,
                    payara_zip, extract_dir, "payara6")
        ctx.perform(f"move current Payara {runtime_path} to {backup}", self._move_runtime_aside,
                    runtime_path, backup)
        ctx.perform(
            f"install Payara {release.payara_version} at {runtime_path}",
            self._install_runtime,
            os.path.join(extract_dir, "payara6"),
            runtime_path,
        )
        ctx.perform("keep the new domain1 as domain1_DIST and restore the existing domain1",
                    self._restore_domain, backup)
        ctx.perform("add required JVM options to domain.xml", self._update_domain_xml)
        return StepResult(detail=f"previous runtime kept at {backup}")

    def _move_runtime_aside(self, runtime_path: str, backup: str):
        if os.path.exists(backup):
            raise DvOpsError(f"{backup} already exists. Move it away before upgrading Payara.")
        self.local.move(runtime_path, backup)
        self.runtime_path = runtime_path
        self.runtime_backup = backup
        self._remember("runtime_path", runtime_path)
        self._remember("runtime_backup", backup)

    def _install_runtime(self, extracted: str, runtime_path: str):
        self.local.move(extracted, runtime_path)
        self.local.chown_tree(runtime_path, self.config["DATAVERSE_USER"])

    def _restore_domain(self, backup: str):
        domains = os.path.join(self.payara, DOMAINS_RELPATH)
        self.local.move(os.path.join(domains, "domain1"), os.path.join(domains, "domain1_DIST"))
        self.local.move(os.path.join(backup, DOMAINS_RELPATH, "domain1"), os.path.join(domains, "domain1"))

    def _update_domain_xml(self):
        domain_xml = os.path.join(self.payara, DOMAIN_XML_RELPATH)
        content, changes = inject_jvm_options(self.local.read_file(domain_xml), self.release.jvm_options)
        if not changes:
            logger.info("All required JVM options already exist in %s", domain_xml)
            return

        staged = self.workspace.join("domain.xml")
        self.filesystem_service.write_text(staged, content)
        self.local.install_file(staged, domain_xml)
        for change in changes:
            logger.info("JVM option %s", change)

    def _war_file(self) -> str:
        deploy_dir = self.config.get("DEPLOY_DIR")
        if deploy_dir:
            return os.path.join(deploy_dir, self.release.war.file_name)
        return self.workspace.join(self.release.war.file_name)

    def deploy(self, ctx: StepContext) -> StepResult:
        war_file = self._war_file()
        if os.path.isfile(war_file):
            logger.info("WAR file already exists at %s. Skipping download.", war_file)
            ctx.perform(
                f"verify the SHA-1 checksum of {os.path.basename(war_file)}",
                self.download_service.verify_file,
                war_file,
                self.release.war.sha1,
                "sha1",
                f"Dataverse {self.release.version} WAR",
            )
        else:
            ctx.perform(
                f"download Dataverse {self.release.version} WAR and verify its SHA-1 checksum",
                self.download_service.download_file,
                self.release.war.url,
                war_file,
                f"Dataverse {self.release.version} WAR",
                expected_hash=self.release.war.sha1,
            )
        ctx.perform(f"deploy {os.path.basename(war_file)}", self._deploy_war, war_file)
        return StepResult(detail=war_file)

    def _deploy_war(self, war_file: str):
        # asadmin runs as the service user, who must be able to read the WAR.
        if self.workspace.path and war_file.startswith(self.workspace.path):
            self.filesystem_service.set_permissions(self.workspace.path, DIR_MODE)
            self.filesystem_service.set_permissions(war_file, FILE_MODE)
        self.app_server.deploy(war_file)

    def internationalization(self, ctx: StepContext) -> StepResult:
        ctx.note(
            "NOTE: If you are using internationalization, please update translations via "
            "Dataverse language packs."
        )
        ctx.note("This step must be performed manually as it depends on your specific language configuration.")
        return StepResult()

    def restart_server(self, ctx: StepContext) -> StepResult:
        ctx.perform("stop Payara", self.app_server.stop)
        ctx.perform(f"wait {int(SERVER_START_PAUSE_SECONDS)} seconds", self.sleep, SERVER_START_PAUSE_SECONDS)
        ctx.perform("start Payara", self.app_server.start)
        running = ctx.perform("wait for Payara to answer on /api/info/version", self.api.wait_until_ready)
        return StepResult(detail=f"running version {running}" if running else None)

    def update_metadata(self, ctx: StepContext) -> StepResult:
        for block in self.release.required_metadata_blocks:
            self._load_metadata_block(ctx, block)
        for block in self.release.optional_metadata_blocks:
            if ctx.ask(f"Are you using the optional {block.name} metadata block?", default=False):
                self._load_metadata_block(ctx, block)
            else:
                logger.info("Skipping %s metadata block.", block.name)
        return StepResult()

    def _load_metadata_block(self, ctx: StepContext, block):
        tsv_file = self.workspace.join(f"{block.name}.tsv")
        ctx.perform(f"download {block.name} metadata block", self.download_service.download_file,
                    block.url, tsv_file, f"{block.name}.tsv")
        ctx.perform(f"load {block.name} metadata block into Dataverse", self.api.load_metadata_block,
                    tsv_file, block.name)

    def upgrade_solr(self, ctx: StepContext) -> StepResult:
        release = self.release
        if not ctx.ask(f"Do you want to install the Solr {release.solr_version} configuration?", default=True):
            return StepResult(detail=DECLINED)

        solr_dir = ctx.ask_text(
            "Please enter the Solr installation directory",
            default=self.config.get("SOLR_DIR", DEFAULT_SOLR_DIR),
        )
        conf_dir = os.path.join(solr_dir, f"solr-{release.solr_version}", SOLR_COLLECTION_RELPATH, "conf")
        solr_config = self.workspace.join("solrconfig.xml")
        schema = self.workspace.join("schema.xml")

        ctx.perform("download solrconfig.xml", self.download_service.download_file,
                    release.solr_config_url, solr_config, "solrconfig.xml")
        ctx.perform("download schema.xml", self.download_service.download_file,
                    release.solr_schema_url, schema, "schema.xml")
        ctx.perform(f"copy solrconfig.xml and schema.xml into {conf_dir}", self._install_solr_config,
                    solr_dir, conf_dir, [solr_config, schema])

        if ctx.ask("Do you have custom or experimental metadata blocks?", default=False):
            update_fields = self.workspace.join("update-fields.sh")
            ctx.perform("stop Solr", self.local.stop_service, self.solr_service)
            ctx.perform("download update-fields.sh", self.download_service.download_file,
                        release.update_fields_url, update_fields, "update-fields.sh")
            ctx.perform(
                "update schema.xml with custom fields from /api/admin/index/solr/schema",
                self._update_custom_fields,
                update_fields,
                os.path.join(conf_dir, "schema.xml"),
            )
            ctx.perform("start Solr", self.local.start_service, self.solr_service)

        return StepResult(detail=conf_dir)

    def _install_solr_config(self, solr_dir: str, conf_dir: str, files: List[str]):
        if not os.path.isdir(solr_dir):
            raise DvOpsError(f"Solr directory not found at {solr_dir}")
        for path in files:
            self.local.install_file(path, os.path.join(conf_dir, os.path.basename(path)))

    def _update_custom_fields(self, script: str, schema_file: str):
        fields = self.api.solr_schema_fields()
        self.filesystem_service.set_permissions(script, SCRIPT_MODE)
        self.local.run_script(["sudo", script, schema_file], input_text=fields)

    def enable_features(self, ctx: StepContext) -> StepResult:
        enabled = []
        if ctx.ask("Do you want to enable the metadata source facet for harvested content?", default=False):
            ctx.perform("enable the metadata source facet", self.app_server.create_jvm_options,
                        list(self.release.metadata_source_facet))
            enabled.append("metadata source facet")
        if ctx.ask("Do you want to enable Solr optimizations? Recommended for large installations.",
                   default=False):
            ctx.perform("enable Solr optimizations", self.app_server.create_jvm_options,
                        list(self.release.solr_optimizations))
            enabled.append("Solr optimizations")

        if not enabled:
            return StepResult(detail=DECLINED)

        logger.info("%s enabled. A full reindex will be required.", " and ".join(enabled))
        self.reindex_required = True
        self._remember("reindex_required", True)
        return StepResult(detail=", ".join(enabled))

    def reindex(self, ctx: StepContext) -> StepResult:
        if self.reindex_required:
            ctx.note("A reindex is required by the features enabled above.")
            ctx.perform("start a full Solr reindex", self.api.start_reindex)
            return StepResult()

        question = (
            "Do you want to reindex Solr? This is recommended if you upgraded Solr "
            "or enabled optional features."
        )
        if not ctx.ask(question, default=False):
            return StepResult(detail=DECLINED)
        ctx.perform("start a full Solr reindex", self.api.start_reindex)
        return StepResult()

    def migrate_keywords(self, ctx: StepContext) -> StepResult:
        sql = self.release.keyword_migration_sql
        if not sql or not ctx.ask(
            "Do you want to check for and migrate keywordValue data containing URIs?", default=False
        ):
            return StepResult(detail=DECLINED)

        ctx.note("To view affected data, run this SQL query:\n%s", sql["inspect"])
        ctx.note("To migrate the data, run this SQL query:\n%s", sql["migrate"])
        ctx.note("After migration, you must reindex Solr and run ReExportAll.")
        ctx.optional(
            "Have you completed the database migration and want to reindex now?",
            "start a full Solr reindex",
            self.api.start_reindex,
        )
        return StepResult()

    def verify(self, ctx: StepContext) -> StepResult:
        ctx.perform(f"check that Dataverse reports version {self.release.version}", self._verify_version)
        return StepResult()

    def _verify_version(self):
        running = self.api.get_version()
        try:
            matches = bool(running) and _major_minor(running) == _major_minor(self.release.version)
        except version.InvalidVersion:
            matches = False
        if not matches:
            raise DvOpsError(
                f"Dataverse version verification failed. Expected: {self.release.version}, "
                f"got: {running or 'no answer'}"
            )
        logger.info("Dataverse version verified: %s", running)

    # Rollback

    def offer_rollback(self, failed: ReportEntry):
        if self.dry_run or not self.runtime_backup:
            return

        question = (
            f"Upgrade failed at step '{failed.step}'. Do you want to roll back to the previous "
            f"Payara runtime at {self.runtime_backup}?"
        )
        if self.confirmation.confirm(question, default=False):
            self.rollback()
            self.upgrade_state = UpgradeState.ROLLED_BACK
        elif failed.step == "verify":
            logger.warning("Keeping the upgraded installation although verification failed.")
            self.upgrade_state = UpgradeState.DONE

    def rollback(self):
        logger.info("Rolling back the upgrade...")
        runtime_path = self.runtime_path or self.local.resolve(self.payara)

        logger.info("Undeploying %s...", self.release.war_name)
        self.app_server.undeploy(self.release.war_name, check=False)

        if not os.path.isdir(self.runtime_backup):
            logger.warning("Previous runtime %s not found; nothing to restore.", self.runtime_backup)
            return

        logger.info("Restoring Payara from %s", self.runtime_backup)
        self.app_server.stop(check=False)

        # The backup gave its domain1 to the new runtime; hand it back.
        backup_domain = os.path.join(self.runtime_backup, DOMAINS_RELPATH, "domain1")
        current_domain = os.path.join(runtime_path, DOMAINS_RELPATH, "domain1")
        if not os.path.exists(backup_domain) and os.path.isdir(current_domain):
            self.local.move(current_domain, backup_domain)

        self.local.remove_tree(runtime_path, privileged=True)
        self.local.move(self.runtime_backup, runtime_path)
        try:
            self.app_server.start()
        except DvOpsError as exc:
            logger.warning("Could not start Payara after rollback: %s", exc)
        logger.info("Rollback completed. Please check the system and redeploy the previous version if necessary.")

    # Summary

    def print_summary(self, report: ExecutionReport):
        title = "DRY RUN SUMMARY - no changes were made" if self.dry_run else "UPGRADE SUMMARY"
        console.print(report.as_table(title))
        if self.dry_run:
            logger.info("DRY RUN COMPLETED - No changes were made")
        elif self.upgrade_state == UpgradeState.DONE and not report.failed:
            logger.info(
                "Dataverse upgrade from version %s to %s completed successfully!",
                self.release.previous_version,
                self.release.version,
            )
        logger.info("Final upgrade state: %s", self.upgrade_state.value)

    def run(self) -> int:
        report = ExecutionReport("upgrade")
        exit_code = 1
        status = "failed"
        error: Optional[str] = None

        try:
            logger.info("Starting Dataverse upgrade to %s...", self.target_version)
            self.preflight()
            self._initialize_state()

            failed = None
            with ScratchWorkspace(self.filesystem_service, logger) as workspace:
                self.workspace = workspace
                try:
                    self.pipeline.run(
                        self.build_steps(),
                        report,
                        should_skip=self._skip_completed,
                        on_step_finished=self._on_step_finished,
                    )
                    failed = report.failed
                    if failed:
                        self.offer_rollback(failed)
                finally:
                    self.workspace = None

            if not failed and not self.dry_run:
                self.upgrade_state = UpgradeState.DONE

            self.print_summary(report)
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
            if self.state:
                self.state["upgrade_state"] = self.upgrade_state.value
                self.state_service.mark_status(self.state, status, error=error)
            if self.report_file:
                report.metadata.update(
                    {"target_version": self.target_version, "upgrade_state": self.upgrade_state.value}
                )
                report.write(self.report_file, status, logger, error=error)
