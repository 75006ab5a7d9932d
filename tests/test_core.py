import json

import pytest

import dbcloner.core as core_module
from dbcloner.core import DatabaseCloner
from dbcloner.errors import ClonerError, DatabaseFailed, IdentifierError
from dbcloner.models import AdminCredential, ClonerSettings, MongoCredentials, ProvisioningReport


class FakeEngine:
    display_name = "FakeDB"
    backup_suffix = ".dump"

    def __init__(self, settings, command_runner, client_tools, filesystem_service, logger, console):
        self.settings = settings
        self.existing = {"billing_db", "crm_db"}
        self.busy = {}
        self.probe_error = None
        self.provision_error = {}
        self.gaps = {}
        self.interrupt_on = None
        self.calls = []

    def validate_environment(self):
        self.calls.append("validate")

    def probe_connection(self):
        self.calls.append("connect")
        if self.probe_error:
            raise self.probe_error

    def source_exists(self, name):
        return name in self.existing

    def target_exists(self, name):
        return name in self.existing

    def count_active_connections(self, name):
        return self.busy.get(name, 0)

    def inspect_sessions_command(self, name):
        return f"inspect {name}"

    def terminate_sessions_command(self, names):
        return f"terminate {','.join(names)}"

    def clone_database(self, request):
        if request.source_name == self.interrupt_on:
            raise KeyboardInterrupt
        self.calls.append(f"clone {request.target_name}")
        self.existing.add(request.target_name)

    def derive_names(self, request):
        if "-" in request.target_name:
            raise IdentifierError(f"Invalid name {request.target_name!r}")
        return {"database": request.target_name, "app_user": f"{request.target_name}_user"}

    def provision_users(self, request):
        if request.source_name in self.provision_error:
            raise self.provision_error[request.source_name]
        credentials = MongoCredentials(request.target_name, f"{request.target_name}_user", "Secret123456")
        report = ProvisioningReport(database=request.target_name)
        report.failed.extend(self.gaps.get(request.source_name, []))
        return credentials, report

    def verify_connections(self, credentials):
        return True

    def render_secrets(self, credentials, now):
        return f"{credentials.app_user}:{credentials.app_password}\n"

    def summarize_credentials(self, entries, now):
        return "".join(f"{entry.database}\n" for entry in entries)


@pytest.fixture
def fake_engine(monkeypatch):
    monkeypatch.setitem(core_module.ENGINES, "postgresql", FakeEngine)


def build_cloner(tmp_path, databases=("billing_db", "crm_db"), **kwargs):
    settings = ClonerSettings(
        engine="postgresql",
        databases=tuple(databases),
        prefix="stage_",
        admin=AdminCredential("db.internal", 5432, "postgres", "AdminPass"),
        output_dir=str(tmp_path),
    )
    return DatabaseCloner(settings=settings, **kwargs)


def _report(tmp_path):
    return json.loads((tmp_path / "run-report.json").read_text(encoding="utf-8"))


def _summary_files(tmp_path):
    return sorted(path.name for path in tmp_path.glob("credentials_*.txt"))


def test_run_clones_every_database_and_writes_summary(tmp_path, fake_engine):
    cloner = build_cloner(tmp_path)

    assert cloner.run() == 0

    assert cloner.engine.calls[:2] == ["validate", "connect"]
    assert [outcome.status for outcome in cloner.outcomes] == ["success", "success"]
    assert len(list(tmp_path.glob("passwords_stage_billing_db_*.txt"))) == 1
    (summary,) = _summary_files(tmp_path)
    assert (tmp_path / summary).read_text(encoding="utf-8") == "stage_billing_db\nstage_crm_db\n"
    report = _report(tmp_path)
    assert report["status"] == "success"
    assert report["artifacts"]["credential_summary"].endswith(summary)
    assert "Secret123456" not in (tmp_path / "run-report.json").read_text(encoding="utf-8")


def test_existing_target_counts_as_already_cloned(tmp_path, fake_engine):
    cloner = build_cloner(tmp_path)
    cloner.engine.existing.add("stage_crm_db")

    assert cloner.run() == 0

    assert [outcome.status for outcome in cloner.outcomes] == ["success", "already_cloned"]
    assert "clone stage_crm_db" not in cloner.engine.calls
    assert not list(tmp_path.glob("passwords_stage_crm_db_*.txt"))
    (summary,) = _summary_files(tmp_path)
    assert (tmp_path / summary).read_text(encoding="utf-8") == "stage_billing_db\n"
    assert _report(tmp_path)["status"] == "success"


def test_rerun_over_cloned_targets_succeeds_without_provisioning(tmp_path, fake_engine):
    cloner = build_cloner(tmp_path)
    cloner.engine.existing.update({"stage_billing_db", "stage_crm_db"})

    assert cloner.run() == 0

    assert [outcome.status for outcome in cloner.outcomes] == ["already_cloned", "already_cloned"]
    assert cloner.engine.calls == ["validate", "connect"]
    assert _summary_files(tmp_path) == []


def test_unwritable_passwords_file_keeps_credentials_and_continues(tmp_path, fake_engine, monkeypatch):
    cloner = build_cloner(tmp_path)

    def failing_write(*_args, **_kwargs):
        raise PermissionError("read-only file system")

    monkeypatch.setattr(cloner.secrets_service, "write", failing_write)

    assert cloner.run() == 0

    assert [outcome.status for outcome in cloner.outcomes] == ["success", "success"]
    assert "clone stage_crm_db" in cloner.engine.calls
    (summary,) = _summary_files(tmp_path)
    assert (tmp_path / summary).read_text(encoding="utf-8") == "stage_billing_db\nstage_crm_db\n"


def test_missing_source_and_active_sessions_skip_only_that_database(tmp_path, fake_engine):
    cloner = build_cloner(tmp_path, databases=("billing_db", "crm_db", "ghost_db"))
    cloner.engine.busy["crm_db"] = 3

    assert cloner.run() == 1

    assert [outcome.status for outcome in cloner.outcomes] == ["success", "skipped", "skipped"]
    assert "Active connections detected on crm_db" in cloner.outcomes[1].reason
    assert "does not exist: ghost_db" in cloner.outcomes[2].reason


def test_failed_provisioning_leaves_no_secrets_for_that_database(tmp_path, fake_engine):
    cloner = build_cloner(tmp_path)
    cloner.engine.provision_error["crm_db"] = DatabaseFailed("rename schema failed")

    assert cloner.run() == 1

    assert [outcome.status for outcome in cloner.outcomes] == ["success", "failed"]
    assert not list(tmp_path.glob("passwords_stage_crm_db_*.txt"))
    assert _report(tmp_path)["databases"][1]["reason"] == "rename schema failed"


def test_provisioning_gaps_are_reported_but_database_succeeds(tmp_path, fake_engine):
    cloner = build_cloner(tmp_path, databases=("billing_db",))
    cloner.engine.gaps["billing_db"] = [("create role r_rw_stage_billing_db", "already exists")]

    assert cloner.run() == 0

    entry = _report(tmp_path)["databases"][0]
    assert entry["status"] == "success"
    assert entry["provisioning_gaps"] == ["create role r_rw_stage_billing_db"]


def test_connection_failure_is_fatal_and_writes_no_summary(tmp_path, fake_engine):
    cloner = build_cloner(tmp_path)
    cloner.engine.probe_error = ClonerError("Failed to connect")

    assert cloner.run() == 2

    assert cloner.outcomes == []
    assert _summary_files(tmp_path) == []
    report = _report(tmp_path)
    assert report["status"] == "failed"
    assert report["error"] == "Failed to connect"


def test_interrupt_still_flushes_collected_credentials(tmp_path, fake_engine):
    cloner = build_cloner(tmp_path)
    cloner.engine.interrupt_on = "crm_db"

    assert cloner.run() == 1

    (summary,) = _summary_files(tmp_path)
    assert (tmp_path / summary).read_text(encoding="utf-8") == "stage_billing_db\n"
    assert _report(tmp_path)["status"] == "aborted"


def test_dry_run_prints_plan_without_touching_the_engine(tmp_path, fake_engine):
    cloner = build_cloner(tmp_path, dry_run=True)

    assert cloner.run() == 0

    assert cloner.engine.calls == []
    assert _summary_files(tmp_path) == []
    assert _report(tmp_path)["status"] == "dry_run"


def test_dry_run_flags_unusable_names(tmp_path, fake_engine):
    cloner = build_cloner(tmp_path, databases=("billing-db",), dry_run=True)

    assert cloner.run() == 1


def test_unsupported_engine_is_rejected(tmp_path):
    settings = ClonerSettings(
        engine="oracle",
        databases=("billing_db",),
        prefix="stage_",
        admin=AdminCredential("db", 1521, "system"),
        output_dir=str(tmp_path),
    )

    with pytest.raises(ClonerError, match="Unsupported engine 'oracle'"):
        DatabaseCloner(settings=settings)


def test_unusable_target_name_fails_before_clone(tmp_path, fake_engine):
    cloner = build_cloner(tmp_path, databases=("billing-db",))
    cloner.engine.existing.add("billing-db")

    assert cloner.run() == 1

    assert cloner.outcomes[0].status == "failed"
    assert not any(call.startswith("clone") for call in cloner.engine.calls)
