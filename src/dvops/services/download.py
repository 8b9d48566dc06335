"""Download service with progress reporting and checksum validation."""

import hashlib
import os
from typing import Optional

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from dvops.errors import ChecksumMismatch, DvOpsError


class DownloadService:
    """Fetches release artifacts and verifies them against a known hash."""

    def __init__(self, logger, console, requests_module, timeout: float = 60.0):
        self.logger = logger
        self.console = console
        self.requests = requests_module
        self.timeout = timeout

    def download_file(
        self,
        url: str,
        dest_path: str,
        description: str = "Downloading...",
        expected_hash: Optional[str] = None,
        algorithm: str = "sha1",
    ) -> str:
        self.logger.info("Downloading %s to %s", url, dest_path)

        hasher = hashlib.new(algorithm) if expected_hash else None

        try:
            with self.requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                total_size = int(response.headers.get("Content-Length", 0))

                os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)

                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    TaskProgressColumn(),
                    TimeElapsedColumn(),
                    console=self.console,
                ) as progress:
                    task = progress.add_task(f"[cyan]{description}", total=total_size or None)
                    with open(dest_path, "wb") as file_obj:
                        for chunk in response.iter_content(chunk_size=8192):
                            if not chunk:
                                continue
                            file_obj.write(chunk)
                            if hasher:
                                hasher.update(chunk)
                            progress.update(task, advance=len(chunk))
        except self.requests.RequestException as exc:
            raise DvOpsError(f"Download failed for {description}: {exc}") from exc

        if hasher:
            self.verify(dest_path, expected_hash, hasher.hexdigest(), description)
        return dest_path

    def verify_file(self, path: str, expected_hash: str, algorithm: str = "sha1", description: str = ""):
        hasher = hashlib.new(algorithm)
        with open(path, "rb") as file_obj:
            for chunk in iter(lambda: file_obj.read(8192), b""):
                hasher.update(chunk)
        self.verify(path, expected_hash, hasher.hexdigest(), description or os.path.basename(path))

    def verify(self, path: str, expected_hash: str, actual_hash: str, description: str):
        expected = expected_hash.strip().lower()
        if actual_hash == expected:
            self.logger.debug("Checksum verified for %s: %s", description, actual_hash)
            return

        try:
            os.remove(path)
        except OSError:
            pass
        raise ChecksumMismatch(
            f"Checksum mismatch for {description}. Expected {expected}, but got {actual_hash}.",
            expected=expected,
            actual=actual_hash,
        )
