"""Run report generation service."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class ManifestService:
    """Collects per-database outcomes and writes the run report JSON.

    The report never holds secrets: only names, statuses and failed
    statement intents are recorded.
    """

    def __init__(self, manifest_file: str, logger):
        self.manifest_file = manifest_file
        self.logger = logger
        self.manifest: Dict[str, Any] = {
            "run_id": None,
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "metadata": {},
            "databases": [],
            "artifacts": {},
            "error": None,
        }

    def start_run(self, run_id: str, metadata: Dict[str, Any]):
        self.manifest["run_id"] = run_id
        self.manifest["status"] = "running"
        self.manifest["started_at"] = self._now()
        self.manifest["metadata"] = metadata
        self.write()

    def database_started(self, source: str, target: str):
        self.manifest["databases"].append(
            {
                "source": source,
                "target": target,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "duration_seconds": None,
                "reason": None,
                "provisioning_gaps": [],
            }
        )
        self.write()

    def database_finished(
        self,
        source: str,
        status: str,
        reason: Optional[str] = None,
        provisioning_gaps: Optional[List[str]] = None,
    ):
        for entry in reversed(self.manifest["databases"]):
            if entry["source"] == source and entry["status"] == "running":
                entry["status"] = status
                entry["finished_at"] = self._now()
                entry["reason"] = reason
                if provisioning_gaps:
                    entry["provisioning_gaps"] = list(provisioning_gaps)
                started_at = datetime.fromisoformat(entry["started_at"])
                finished_at = datetime.fromisoformat(entry["finished_at"])
                entry["duration_seconds"] = (finished_at - started_at).total_seconds()
                break
        self.write()

    def add_artifact(self, key: str, value: str):
        self.manifest["artifacts"][key] = value
        self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        self.manifest["status"] = status
        self.manifest["finished_at"] = self._now()
        if self.manifest.get("started_at"):
            started_at = datetime.fromisoformat(self.manifest["started_at"])
            finished_at = datetime.fromisoformat(self.manifest["finished_at"])
            self.manifest["duration_seconds"] = (finished_at - started_at).total_seconds()
        self.manifest["error"] = error
        self.write()

    def write(self):
        directory = os.path.dirname(self.manifest_file) or "."
        os.makedirs(directory, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(prefix="run-report-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.manifest, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.manifest_file)
        except OSError as exc:
            self.logger.warning("Could not write run report '%s': %s", self.manifest_file, exc)
            try:
                os.remove(temp_path)
            except OSError:
                pass

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
