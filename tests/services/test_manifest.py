import json

from dbcloner.services.manifest import ManifestService


class DummyLogger:
    def warning(self, *_args, **_kwargs):
        return None


def test_manifest_service_writes_run_metadata(tmp_path):
    manifest_file = tmp_path / "run-report.json"
    service = ManifestService(str(manifest_file), logger=DummyLogger())

    service.start_run("run-123", {"engine": "postgresql", "prefix": "stage_"})
    service.database_started("billing_db", "stage_billing_db")
    service.database_finished(
        "billing_db", "success", provisioning_gaps=["revoke all on stage_billing_db from PUBLIC"]
    )
    service.database_started("crm_db", "stage_crm_db")
    service.database_finished("crm_db", "skipped", reason="Source database crm_db not found")
    service.add_artifact("credential_summary", "credentials_191026.txt")
    service.finalize("partial")

    data = json.loads(manifest_file.read_text(encoding="utf-8"))

    assert data["run_id"] == "run-123"
    assert data["status"] == "partial"
    assert data["metadata"]["engine"] == "postgresql"
    assert data["artifacts"]["credential_summary"] == "credentials_191026.txt"
    assert [entry["status"] for entry in data["databases"]] == ["success", "skipped"]
    assert data["databases"][0]["provisioning_gaps"] == ["revoke all on stage_billing_db from PUBLIC"]
    assert data["databases"][1]["reason"] == "Source database crm_db not found"
    assert data["databases"][1]["duration_seconds"] is not None


def test_manifest_service_leaves_no_temporary_files(tmp_path):
    manifest_file = tmp_path / "run-report.json"
    service = ManifestService(str(manifest_file), logger=DummyLogger())

    service.start_run("run-1", {})
    service.finalize("success")

    assert [path.name for path in tmp_path.iterdir()] == ["run-report.json"]
