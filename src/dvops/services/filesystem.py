"""Filesystem helpers for dataverse-ops."""

import logging
import os
import shutil
import signal
import sys
import tempfile
import threading
from typing import Dict, Optional

from rich.console import Console

from dvops.errors import DvOpsError


class FileSystemService:
    """Encapsulates local file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except Exception as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def ensure_dir(self, path: str) -> str:
        os.makedirs(path, exist_ok=True)
        return path

    def write_text(self, path: str, content: str):
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="\n") as file_obj:
            file_obj.write(content)

    def read_text(self, path: str) -> str:
        with open(path, "r", encoding="utf-8", errors="replace") as file_obj:
            return file_obj.read()

    def copy_optional(self, source: str, destination: str, label: str) -> bool:
        """Copies a file or tree; failures are warnings, not errors."""
        try:
            if os.path.isdir(source):
                shutil.copytree(source, destination, dirs_exist_ok=True)
            else:
                os.makedirs(os.path.dirname(destination) or ".", exist_ok=True)
                shutil.copy2(source, destination)
            return True
        except OSError as exc:
            self.logger.warning("Could not back up %s: %s", label, exc)
            return False

    def cleanup_dir(self, path: str):
        if os.path.exists(path):
            try:
                shutil.rmtree(path)
                self.logger.debug("Removed directory: %s", path)
            except Exception as exc:
                message = f"Warning: Could not remove {path}: {exc}"
                self.console.print(f"[yellow]{message}[/yellow]")
                self.logger.warning(message)


class ScratchWorkspace:
    """Process-owned temporary directory, removed on every exit path.

    Used as a context manager. While active, SIGTERM and SIGHUP are turned
    into ``SystemExit`` so the ``finally`` cleanup also runs when the process
    is signalled.
    """

    HANDLED_SIGNALS = tuple(
        sig for sig in (getattr(signal, "SIGTERM", None), getattr(signal, "SIGHUP", None)) if sig is not None
    )

    def __init__(self, filesystem_service: FileSystemService, logger, prefix: str = "dvops-"):
        self.filesystem_service = filesystem_service
        self.logger = logger
        self.prefix = prefix
        self.path: Optional[str] = None
        self._previous_handlers: Dict[int, object] = {}

    def __enter__(self) -> "ScratchWorkspace":
        self.path = tempfile.mkdtemp(prefix=self.prefix)
        self.logger.info("Created temporary directory: %s", self.path)
        self._install_signal_handlers()
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            self.cleanup()
        finally:
            self._restore_signal_handlers()
        return False

    def join(self, *parts: str) -> str:
        if not self.path:
            raise DvOpsError("Scratch workspace is not active.")
        return os.path.join(self.path, *parts)

    def cleanup(self):
        if self.path and os.path.exists(self.path):
            self.logger.info("Cleaning up temporary files")
            self.filesystem_service.cleanup_dir(self.path)
        self.path = None

    def _install_signal_handlers(self):
        if threading.current_thread() is not threading.main_thread():
            return
        for sig in self.HANDLED_SIGNALS:
            self._previous_handlers[sig] = signal.getsignal(sig)
            signal.signal(sig, self._on_signal)

    def _restore_signal_handlers(self):
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers = {}

    def _on_signal(self, signum, _frame):
        self.logger.warning("Received signal %s, aborting.", signum)
        raise SystemExit(128 + signum)
