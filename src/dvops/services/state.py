"""Execution state persistence for resumable upgrades."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from dvops.errors import DvOpsError


class StateService:
    """Persists and validates resumable execution state."""

    SCHEMA_VERSION = 1
    METADATA_KEYS = ("target_version", "previous_version", "payara", "domain")

    def __init__(self, state_file: str, logger):
        self.state_file = state_file
        self.logger = logger

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.state_file):
            return None

        try:
            with open(self.state_file, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise DvOpsError(f"Could not read state file '{self.state_file}': {exc}") from exc

        if not isinstance(data, dict):
            raise DvOpsError(f"State file '{self.state_file}' has invalid format.")

        return data

    def save(self, state: Dict[str, Any]):
        directory = os.path.dirname(self.state_file) or "."
        os.makedirs(directory, exist_ok=True)
        state["schema_version"] = self.SCHEMA_VERSION
        state["updated_at"] = self._now()

        fd, temp_path = tempfile.mkstemp(prefix="upgrade-state-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(state, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.state_file)
        except OSError as exc:
            raise DvOpsError(f"Could not write state file '{self.state_file}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    def initialize(self, metadata: Dict[str, Any], initial_state: str) -> Tuple[Dict[str, Any], bool]:
        existing_state = self.load()

        if existing_state:
            self._validate_resume_compatibility(existing_state, metadata)
            if existing_state.get("status") == "success":
                raise DvOpsError(
                    "The state file already belongs to a finished upgrade. "
                    "Remove it or choose another --state-file."
                )
            existing_state["status"] = "running"
            self.save(existing_state)
            return existing_state, True

        state = {
            "schema_version": self.SCHEMA_VERSION,
            "created_at": self._now(),
            "updated_at": self._now(),
            "status": "running",
            "metadata": metadata,
            "upgrade_state": initial_state,
            "completed_steps": [],
            "data": {},
            "last_error": None,
        }
        self.save(state)
        return state, False

    def mark_step_completed(self, state: Dict[str, Any], step_name: str, upgrade_state: Optional[str] = None):
        if step_name not in state["completed_steps"]:
            state["completed_steps"].append(step_name)
        if upgrade_state:
            state["upgrade_state"] = upgrade_state
        self.save(state)

    def mark_status(self, state: Dict[str, Any], status: str, error: Optional[str] = None):
        state["status"] = status
        if error:
            state["last_error"] = error
        self.save(state)

    def is_step_completed(self, state: Dict[str, Any], step_name: str) -> bool:
        return step_name in state.get("completed_steps", [])

    def set_value(self, state: Dict[str, Any], key: str, value: Any):
        state.setdefault("data", {})[key] = value
        self.save(state)

    def get_value(self, state: Dict[str, Any], key: str, default: Any = None) -> Any:
        return state.get("data", {}).get(key, default)

    def _validate_resume_compatibility(self, state: Dict[str, Any], metadata: Dict[str, Any]):
        existing_meta = state.get("metadata", {})
        mismatches = [key for key in self.METADATA_KEYS if existing_meta.get(key) != metadata.get(key)]

        if mismatches:
            mismatch_list = ", ".join(mismatches)
            raise DvOpsError(
                "Cannot resume run with different inputs. " f"Mismatched fields: {mismatch_list}."
            )

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
