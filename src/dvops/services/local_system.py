"""Privileged local operations: services, ownership, database client."""

import os
from typing import List, Optional


class LocalSystem:
    """Local side effects, each one an external command run through sudo."""

    def __init__(self, command_runner, logger):
        self.command_runner = command_runner
        self.logger = logger

    def _sudo(self, *args: str, check: bool = True, input_file: Optional[str] = None):
        return self.command_runner.run(["sudo", *args], check=check, input_file=input_file)

    # Services

    def stop_service(self, name: str, check: bool = True) -> bool:
        result = self._sudo("systemctl", "stop", name, check=check)
        return result.returncode == 0

    def start_service(self, name: str):
        self._sudo("systemctl", "start", name)

    def process_running(self, pattern: str) -> bool:
        result = self.command_runner.run(["pgrep", "-f", pattern], check=False)
        return result.returncode == 0

    # Files

    def chown_tree(self, path: str, user: str):
        self._sudo("chown", "-R", f"{user}:", path)

    def make_executable(self, *paths: str):
        self._sudo("chmod", "+x", *paths)

    def read_file(self, path: str) -> str:
        return self._sudo("cat", path).stdout or ""

    def install_file(self, source: str, destination: str):
        self._sudo("cp", source, destination)

    def move(self, source: str, destination: str):
        self._sudo("mv", source, destination)

    def remove_tree(self, path: str, privileged: bool = False):
        if privileged:
            self._sudo("rm", "-rf", path)
        else:
            self.command_runner.run(["rm", "-rf", path])

    @staticmethod
    def resolve(path: str) -> str:
        return os.path.realpath(path) if os.path.islink(path) else path

    # Database

    def dump_database(self, host: str, user: str, database: str, output_file: str):
        cmd = ["pg_dump", "-h", host, "-U", user, "-d", database, "-c", "--no-owner", "-f", output_file]
        self.command_runner.run(cmd)

    def run_sql_file(self, host: str, database: str, sql_file: str, stop_on_error: bool = False):
        # Fed through stdin: the postgres user cannot read the scratch workspace.
        args = ["-u", "postgres", "psql", "-h", host, "-d", database]
        if stop_on_error:
            args.extend(["-v", "ON_ERROR_STOP=1"])
        self._sudo(*args, input_file=sql_file)

    # Scripts

    def run_script(self, args: List[str], input_text: Optional[str] = None):
        return self.command_runner.run(args, input_text=input_text)
