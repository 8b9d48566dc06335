"""Pre-flight checks that keep destructive actions off production."""

import os
import shlex
from typing import Optional

from dvops.constants import DOMAIN_XML_RELPATH
from dvops.errors import OperationCancelled, SafetyViolation
from dvops.errors_catalog import actionable_error
from dvops.models import Configuration
from dvops.services.domain_xml import read_fqdn


class SafetyGuard:
    """Refuses to let the sync overwrite the production instance."""

    UNKNOWN_VERSION = "unknown"

    def __init__(self, config: Configuration, confirmation, logger, remote_executor=None):
        self.config = config
        self.confirmation = confirmation
        self.logger = logger
        self.remote_executor = remote_executor

    @property
    def domain_xml_path(self) -> str:
        return os.path.join(self.config["PAYARA"], DOMAIN_XML_RELPATH)

    def local_identity(self) -> Optional[str]:
        try:
            with open(self.domain_xml_path, "r", encoding="utf-8", errors="replace") as file_obj:
                return read_fqdn(file_obj.read())
        except OSError as exc:
            self.logger.debug("Could not read %s: %s", self.domain_xml_path, exc)
            return None

    def assert_not_production(self):
        self.logger.info("Performing safety check to ensure this is not the production server...")
        production_domain = self.config["PRODUCTION_DOMAIN"]
        local_fqdn = self.local_identity()

        if local_fqdn is None:
            self.logger.warning("Could not verify server identity from %s.", self.domain_xml_path)
            if not self.confirmation.confirm("Are you SURE this is NOT the production server?", default=False):
                raise OperationCancelled("Operation cancelled by user")
            return

        if local_fqdn.lower() == production_domain.lower():
            raise SafetyViolation(actionable_error("production_host", fqdn=local_fqdn))

        self.logger.info("Safety check passed - Running on non-production server (FQDN: %s)", local_fqdn)

    def assert_database_target(self):
        db_host = self.config["DB_HOST"].lower()
        forbidden = {self.config["PRODUCTION_DOMAIN"].lower(), self.config["PRODUCTION_DB_HOST"].lower()}
        if db_host in forbidden:
            raise SafetyViolation(actionable_error("production_database", db_host=self.config["DB_HOST"]))

    def check(self):
        self.assert_not_production()
        self.assert_database_target()

    def read_versions(self):
        remote_file = os.path.join(self.config["PRODUCTION_DATAVERSE_CONTENT_STORAGE"], "version.txt")
        result = self.remote_executor.run(
            self.config["PRODUCTION_SERVER"],
            self.config["PRODUCTION_SSH_USER"],
            f"cat {shlex.quote(remote_file)}",
            check=False,
        )
        production = result.output.strip() if result.exit_status == 0 and result.output.strip() else None

        local_file = os.path.join(self.config["DATAVERSE_CONTENT_STORAGE"], "version.txt")
        try:
            with open(local_file, "r", encoding="utf-8") as file_obj:
                local = file_obj.read().strip() or None
        except OSError:
            local = None

        return production or self.UNKNOWN_VERSION, local or self.UNKNOWN_VERSION

    def check_versions(self):
        """Asks before continuing when production and clone report different versions."""
        self.logger.info("Checking version compatibility between production and clone...")
        production, local = self.read_versions()
        if self.UNKNOWN_VERSION in (production, local) or production == local:
            return

        self.logger.warning("Version mismatch detected. Production: %s, Clone: %s", production, local)
        if not self.confirmation.confirm("Version mismatch may cause issues. Continue anyway?", default=False):
            raise OperationCancelled("Operation cancelled by user due to version mismatch")
