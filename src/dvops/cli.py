import logging
import os

import click
from rich.logging import RichHandler

from .constants import DEFAULT_CONFIG_FILE, DEFAULT_ENV_FILE, SYNC_LOG_FILE, UPGRADE_LOG_FILE
from .errors import DvOpsError
from .releases import DEFAULT_TARGET_VERSION, RELEASES
from .services.config_loader import ConfigLoader
from .services.env_loader import EnvironmentLoader
from .sync import ProductionSync
from .upgrade import DataverseUpgrade

PASS_THROUGH_SETTINGS = {"ignore_unknown_options": True, "allow_extra_args": True}


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def _load_cli_defaults(config):
    config_loader = ConfigLoader()
    resolved_config = config
    if resolved_config is None:
        default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
        if os.path.exists(default_config_path):
            resolved_config = default_config_path
    return config_loader.load(resolved_config)


def _configure_logging(logger, verbose, log_file):
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)


def _warn_unknown_arguments(logger, ctx):
    for argument in ctx.args:
        logger.warning("Unknown option: %s (ignored)", argument)


def _load_instance_settings(logger, env_file):
    try:
        return EnvironmentLoader(logger=logger).load(env_file)
    except DvOpsError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
def main():
    """Operations tooling for a Dataverse installation."""


@main.command(context_settings=PASS_THROUGH_SETTINGS)
@click.option("--dry-run", is_flag=True, default=None, help="Show what would happen without making changes.")
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging.")
@click.option("--skip-db", is_flag=True, default=None, help="Skip the database sync.")
@click.option("--skip-files", is_flag=True, default=None, help="Skip the Dataverse files sync.")
@click.option("--skip-solr", is_flag=True, default=None, help="Skip the Solr configuration sync.")
@click.option("--skip-counter", is_flag=True, default=None, help="Skip the counter-processor sync.")
@click.option("--skip-backup", is_flag=True, default=None, help="Skip the backup of this server before syncing.")
@click.option(
    "--env-file",
    required=False,
    type=click.Path(),
    help=f"Path to the instance settings file (default: {DEFAULT_ENV_FILE}).",
)
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--log-file", type=click.Path(), help=f"Path to log file (default: {SYNC_LOG_FILE}).")
@click.option("--report-file", type=click.Path(), help="Write a JSON report of every step to this path.")
@click.pass_context
def sync(
    ctx,
    dry_run,
    verbose,
    skip_db,
    skip_files,
    skip_solr,
    skip_counter,
    skip_backup,
    env_file,
    config,
    log_file,
    report_file,
):
    """Sync production data (database, files, Solr, counter, cron) to this staging server."""
    logger = logging.getLogger("dvops")

    try:
        config_values = _load_cli_defaults(config)
    except DvOpsError as exc:
        raise click.ClickException(str(exc)) from exc

    dry_run = bool(_resolve_option(dry_run, config_values, "dry_run", default=False))
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    skip_db = bool(_resolve_option(skip_db, config_values, "skip_db", default=False))
    skip_files = bool(_resolve_option(skip_files, config_values, "skip_files", default=False))
    skip_solr = bool(_resolve_option(skip_solr, config_values, "skip_solr", default=False))
    skip_counter = bool(_resolve_option(skip_counter, config_values, "skip_counter", default=False))
    skip_backup = bool(_resolve_option(skip_backup, config_values, "skip_backup", default=False))
    env_file = _resolve_option(env_file, config_values, "env_file", default=DEFAULT_ENV_FILE)
    log_file = _resolve_option(log_file, config_values, "log_file", default=SYNC_LOG_FILE)
    report_file = _resolve_option(report_file, config_values, "report_file")

    _configure_logging(logger, verbose, log_file)
    _warn_unknown_arguments(logger, ctx)

    workflow = ProductionSync(
        config=_load_instance_settings(logger, env_file),
        dry_run=dry_run,
        skip_db=skip_db,
        skip_files=skip_files,
        skip_solr=skip_solr,
        skip_counter=skip_counter,
        skip_backup=skip_backup,
        log_file=log_file,
        report_file=report_file,
    )
    raise SystemExit(workflow.run())


@main.command(context_settings=PASS_THROUGH_SETTINGS)
@click.option(
    "--target-version",
    required=False,
    type=click.Choice(sorted(RELEASES)),
    help=f"Dataverse version to upgrade to (default: {DEFAULT_TARGET_VERSION}).",
)
@click.option("--dry-run", is_flag=True, default=None, help="Show what would happen without making changes.")
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging.")
@click.option(
    "--resume",
    is_flag=True,
    default=None,
    help="Resume a previously interrupted upgrade using the execution state file.",
)
@click.option("--state-file", required=False, type=click.Path(), help="Path to the upgrade state file.")
@click.option(
    "--env-file",
    required=False,
    type=click.Path(),
    help=f"Path to the instance settings file (default: {DEFAULT_ENV_FILE}).",
)
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--log-file", type=click.Path(), help=f"Path to log file (default: {UPGRADE_LOG_FILE}).")
@click.option("--report-file", type=click.Path(), help="Write a JSON report of every step to this path.")
@click.pass_context
def upgrade(
    ctx,
    target_version,
    dry_run,
    verbose,
    resume,
    state_file,
    env_file,
    config,
    log_file,
    report_file,
):
    """Upgrade Payara, the Dataverse WAR, metadata blocks and Solr in place."""
    logger = logging.getLogger("dvops")

    try:
        config_values = _load_cli_defaults(config)
    except DvOpsError as exc:
        raise click.ClickException(str(exc)) from exc

    target_version = str(
        _resolve_option(target_version, config_values, "target_version", default=DEFAULT_TARGET_VERSION)
    )
    dry_run = bool(_resolve_option(dry_run, config_values, "dry_run", default=False))
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    resume = bool(_resolve_option(resume, config_values, "resume", default=False))
    state_file = _resolve_option(state_file, config_values, "state_file")
    env_file = _resolve_option(env_file, config_values, "env_file", default=DEFAULT_ENV_FILE)
    log_file = _resolve_option(log_file, config_values, "log_file", default=UPGRADE_LOG_FILE)
    report_file = _resolve_option(report_file, config_values, "report_file")

    if target_version not in RELEASES:
        raise click.ClickException(
            f"Unsupported target version '{target_version}'. Supported versions: {', '.join(sorted(RELEASES))}"
        )

    _configure_logging(logger, verbose, log_file)
    _warn_unknown_arguments(logger, ctx)

    workflow = DataverseUpgrade(
        config=_load_instance_settings(logger, env_file),
        target_version=target_version,
        dry_run=dry_run,
        resume=resume,
        state_file=state_file,
        log_file=log_file,
        report_file=report_file,
    )
    raise SystemExit(workflow.run())


if __name__ == "__main__":
    main()
