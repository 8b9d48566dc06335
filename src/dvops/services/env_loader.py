"""Instance settings loader backed by dotenv files."""

import getpass
import os
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from dotenv import dotenv_values

from dvops.constants import KEY_GROUPS
from dvops.errors import ConfigurationError
from dvops.errors_catalog import actionable_error
from dvops.models import Configuration


class EnvironmentLoader:
    """Reads key=value settings once and validates them per key group.

    Required groups are validated together so that every missing key is
    reported in a single error. Optional groups are only checked for
    completeness; callers disable whatever depends on an incomplete one.
    """

    def __init__(self, logger, groups: Optional[Mapping[str, Iterable[str]]] = None):
        self.logger = logger
        self.groups = {name: tuple(keys) for name, keys in (groups or KEY_GROUPS).items()}

    def load(self, env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Configuration:
        if env_file:
            path = Path(env_file)
            if not path.is_file():
                raise ConfigurationError(actionable_error("env_file_not_found", path=env_file))
            raw = dotenv_values(path)
            source = str(path)
            self.logger.info("Loaded environment variables from %s", path)
        else:
            raw = dict(os.environ if environ is None else environ)
            source = "<environment>"

        values: Dict[str, str] = {key: (value or "").strip() for key, value in raw.items()}

        if not values.get("PRODUCTION_SSH_USER"):
            values["PRODUCTION_SSH_USER"] = getpass.getuser()
            self.logger.info(
                "PRODUCTION_SSH_USER not defined, using current user: %s",
                values["PRODUCTION_SSH_USER"],
            )

        return Configuration(values=values, source=source)

    def validate(self, config: Configuration, group_names: Iterable[str]):
        missing: Dict[str, List[str]] = {}
        for group_name in group_names:
            self.logger.debug("Checking %s variables...", group_name)
            absent = config.missing(self._keys(group_name))
            if absent:
                missing[group_name] = list(absent)
                for key in absent:
                    self.logger.error("  - Missing: %s", key)

        if missing:
            details = "; ".join(f"{group}: {', '.join(keys)}" for group, keys in missing.items())
            raise ConfigurationError(
                actionable_error("missing_keys", details=details, path=config.source),
                missing=missing,
            )

        self.logger.info("All required environment variables are properly set.")

    def is_complete(self, config: Configuration, group_name: str) -> bool:
        absent = config.missing(self._keys(group_name))
        if absent:
            self.logger.debug("Optional %s settings incomplete: %s", group_name, ", ".join(absent))
        return not absent

    def _keys(self, group_name: str):
        try:
            return self.groups[group_name]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown configuration group: {group_name}") from exc
