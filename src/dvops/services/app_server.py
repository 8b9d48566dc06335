"""Payara application server control through asadmin."""

import os
from typing import List

from dvops.constants import DEFAULT_PAYARA_SERVICE, DOMAIN1_RELPATH, NO_APPLICATIONS_MARKER


class AppServerService:
    """Runs ``asadmin`` as the Dataverse service user."""

    def __init__(self, payara_dir: str, service_user: str, command_runner, local_system, logger,
                 service_name: str = DEFAULT_PAYARA_SERVICE):
        self.payara_dir = payara_dir
        self.service_user = service_user
        self.command_runner = command_runner
        self.local_system = local_system
        self.logger = logger
        self.service_name = service_name

    @property
    def asadmin(self) -> str:
        return os.path.join(self.payara_dir, "bin", "asadmin")

    @property
    def domain_dir(self) -> str:
        return os.path.join(self.payara_dir, DOMAIN1_RELPATH)

    def _asadmin(self, *args: str, check: bool = True):
        return self.command_runner.run(["sudo", "-u", self.service_user, self.asadmin, *args], check=check)

    def list_applications(self) -> str:
        return self.command_runner.combined_output(self._asadmin("list-applications"))

    def has_applications(self) -> bool:
        return NO_APPLICATIONS_MARKER not in self.list_applications()

    def is_deployed(self, application: str) -> bool:
        return application in self.list_applications()

    def undeploy(self, application: str, check: bool = True):
        self._asadmin("undeploy", application, check=check)

    def deploy(self, war_file: str):
        self._asadmin("deploy", war_file)

    def create_jvm_options(self, options: List[str]):
        for option in options:
            self._asadmin("create-jvm-options", option)

    def is_running(self) -> bool:
        return self.local_system.process_running("payara")

    def stop(self, check: bool = True) -> bool:
        return self.local_system.stop_service(self.service_name, check=check)

    def start(self):
        self.local_system.start_service(self.service_name)
