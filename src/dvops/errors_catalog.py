"""Actionable error catalog for dataverse-ops."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "env_file_not_found": {
        "what": "Environment file not found: {path}",
        "next": "Create it from sample.env (cp sample.env {path}) and fill in the instance settings.",
    },
    "missing_keys": {
        "what": "Missing required configuration: {details}.",
        "next": "Add the listed keys to {path} and run again.",
    },
    "production_host": {
        "what": "This host identifies as the production server ({fqdn}).",
        "next": "Run the sync on the staging/clone server, never on production.",
    },
    "production_database": {
        "what": "DB_HOST ({db_host}) points at the production server or its database host.",
        "next": "Set DB_HOST to localhost or the clone server's database host (e.g. DB_HOST=localhost).",
    },
    "running_as_root": {
        "what": "This command must not run as root.",
        "next": "Run it as a regular user with sudo rights; privileged commands use sudo.",
    },
    "missing_commands": {
        "what": "Required commands are not installed: {commands}.",
        "next": "Install them with your package manager before running again.",
    },
    "step_failed": {
        "what": "Step '{step}' failed.",
        "next": "Inspect {log_file}, fix the cause and re-run; completed steps are safe to repeat.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
