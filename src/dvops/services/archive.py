"""Archive extraction helpers for dataverse-ops."""

import os
import shutil
import zipfile
from pathlib import Path

from dvops.errors import DvOpsError


class ArchiveService:
    """Encapsulates safe archive extraction logic."""

    def is_within_dir(self, base_dir: Path, candidate: Path) -> bool:
        try:
            return os.path.commonpath([str(base_dir), str(candidate)]) == str(base_dir)
        except ValueError:
            return False

    def safe_extract_zip(self, zip_path: str, destination_dir: str):
        base = Path(destination_dir).resolve()

        try:
            with zipfile.ZipFile(zip_path, "r") as zip_ref:
                for member in zip_ref.infolist():
                    normalized_name = member.filename.replace("\\", "/")
                    target_path = (base / normalized_name).resolve()

                    if not self.is_within_dir(base, target_path):
                        raise DvOpsError(
                            f"Unsafe ZIP entry detected: `{member.filename}`. "
                            "Archive extraction aborted to prevent path traversal."
                        )

                    file_type = (member.external_attr >> 16) & 0o170000
                    if file_type == 0o120000:
                        raise DvOpsError(
                            f"Unsafe ZIP entry detected: `{member.filename}` is a symbolic link."
                        )

                for member in zip_ref.infolist():
                    normalized_name = member.filename.replace("\\", "/")
                    target_path = (base / normalized_name).resolve()

                    if member.is_dir() or normalized_name.endswith("/"):
                        target_path.mkdir(parents=True, exist_ok=True)
                        continue

                    target_path.parent.mkdir(parents=True, exist_ok=True)
                    with zip_ref.open(member, "r") as src, open(target_path, "wb") as dst:
                        shutil.copyfileobj(src, dst)

                    # Payara ships its launchers (bin/asadmin) as executables.
                    mode = (member.external_attr >> 16) & 0o777
                    if mode:
                        os.chmod(target_path, mode)
        except zipfile.BadZipFile as exc:
            raise DvOpsError(f"Invalid ZIP archive: {zip_path}") from exc

    def extract_distribution(self, zip_path: str, destination_dir: str, root: str) -> str:
        """Extracts a distribution zip and returns its top-level ``root`` directory.

        Vendor archives such as Payara's unpack into a single versioned
        directory; anything else means the wrong artifact was fetched.
        """
        self.safe_extract_zip(zip_path, destination_dir)
        extracted = os.path.join(destination_dir, root)
        if not os.path.isdir(extracted):
            raise DvOpsError(
                f"The archive {os.path.basename(zip_path)} did not contain the expected {root} directory."
            )
        return extracted
