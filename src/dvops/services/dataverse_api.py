"""Client for the local Dataverse admin and info endpoints."""

import re
import time
from typing import Optional

from dvops.constants import VERSION_POLL_INTERVAL_SECONDS, VERSION_POLL_TIMEOUT_SECONDS
from dvops.errors import DvOpsError, ServiceTimeoutError

_VERSION_IN_TEXT = re.compile(r"\d+\.\d+(?:\.\d+)?")


class DataverseApiService:
    """Talks to ``/api/info`` and ``/api/admin`` on the local instance."""

    def __init__(self, base_url: str, logger, requests_module, timeout: float = 30.0,
                 sleep=time.sleep, clock=time.monotonic):
        self.base_url = base_url.rstrip("/")
        self.logger = logger
        self.requests = requests_module
        self.timeout = timeout
        self.sleep = sleep
        self.clock = clock

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def get_version(self) -> Optional[str]:
        """Returns the deployed version, or None when the endpoint is unreachable."""
        try:
            response = self.requests.get(self._url("/api/info/version"), timeout=self.timeout)
            response.raise_for_status()
        except self.requests.RequestException as exc:
            self.logger.debug("Version endpoint not available: %s", exc)
            return None

        try:
            payload = response.json()
            version = (payload.get("data") or {}).get("version")
            if version:
                return str(version)
        except ValueError:
            pass

        match = _VERSION_IN_TEXT.search(response.text or "")
        return match.group(0) if match else None

    def wait_until_ready(
        self,
        timeout: float = VERSION_POLL_TIMEOUT_SECONDS,
        interval: float = VERSION_POLL_INTERVAL_SECONDS,
    ) -> str:
        started = self.clock()
        while True:
            version = self.get_version()
            if version:
                self.logger.info("Payara started successfully (version %s).", version)
                return version

            elapsed = self.clock() - started
            if elapsed >= timeout:
                raise ServiceTimeoutError(
                    f"Payara failed to start within {int(timeout)} seconds. "
                    "Check the server log under glassfish/domains/domain1/logs."
                )
            self.sleep(interval)
            self.logger.info("Still waiting for Payara to start... (%d seconds)", int(self.clock() - started))

    def load_metadata_block(self, tsv_path: str, label: str):
        with open(tsv_path, "rb") as file_obj:
            try:
                response = self.requests.post(
                    self._url("/api/admin/datasetfield/load"),
                    data=file_obj,
                    headers={"Content-type": "text/tab-separated-values"},
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except self.requests.RequestException as exc:
                raise DvOpsError(f"Failed to update {label} metadata block: {exc}") from exc

    def solr_schema_fields(self) -> str:
        try:
            response = self.requests.get(self._url("/api/admin/index/solr/schema"), timeout=self.timeout)
            response.raise_for_status()
        except self.requests.RequestException as exc:
            raise DvOpsError(f"Could not read Solr schema fields from Dataverse: {exc}") from exc
        return response.text

    def start_reindex(self):
        try:
            response = self.requests.get(self._url("/api/admin/index"), timeout=self.timeout)
            response.raise_for_status()
        except self.requests.RequestException as exc:
            raise DvOpsError(f"Could not start Solr reindex: {exc}") from exc
        self.logger.info("Solr reindexing initiated. Check server logs for progress.")
