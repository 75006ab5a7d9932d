import pytest

from dbcloner.errors import DatabaseSkipped
from dbcloner.models import CloneRequest
from dbcloner.services.existence_guard import ExistenceGuard


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def log(self, *_args, **_kwargs):
        return None

    def error(self, *_args, **_kwargs):
        return None


class RecordingConsole:
    def __init__(self):
        self.lines = []

    def print(self, *args, **_kwargs):
        self.lines.append(" ".join(str(arg) for arg in args))


class FakeEngine:
    def __init__(self, existing, sessions):
        self.existing = set(existing)
        self.sessions = sessions
        self.counted = []

    def source_exists(self, name):
        return name in self.existing

    def target_exists(self, name):
        return name in self.existing

    def count_active_connections(self, name):
        self.counted.append(name)
        return self.sessions.get(name, 0)

    def inspect_sessions_command(self, name):
        return f"inspect {name}"

    def terminate_sessions_command(self, names):
        return f"terminate {','.join(names)}"


REQUEST = CloneRequest.build("billing_db", "stage_", "postgresql")


def test_missing_source_is_skipped():
    guard = ExistenceGuard(FakeEngine([], {}), logger=DummyLogger(), console=RecordingConsole())

    with pytest.raises(DatabaseSkipped, match="Source database does not exist: billing_db"):
        guard.check(REQUEST)


def test_idle_databases_pass_and_absent_target_is_not_counted():
    engine = FakeEngine(["billing_db"], {})
    guard = ExistenceGuard(engine, logger=DummyLogger(), console=RecordingConsole())

    guard.check(REQUEST)

    assert engine.counted == ["billing_db"]


def test_busy_source_prints_remediation_and_skips():
    console = RecordingConsole()
    engine = FakeEngine(["billing_db"], {"billing_db": 2})
    guard = ExistenceGuard(engine, logger=DummyLogger(), console=console)

    with pytest.raises(DatabaseSkipped, match="wait 30 seconds"):
        guard.check(REQUEST)

    assert "   inspect billing_db" in console.lines
    assert "   terminate billing_db" in console.lines
    assert not any("Alternative single command" in line for line in console.lines)


def test_busy_source_and_target_get_combined_command():
    console = RecordingConsole()
    engine = FakeEngine(["billing_db", "stage_billing_db"], {"billing_db": 1, "stage_billing_db": 4})
    guard = ExistenceGuard(engine, logger=DummyLogger(), console=console)

    with pytest.raises(DatabaseSkipped, match="billing_db, stage_billing_db"):
        guard.check(REQUEST)

    assert engine.counted == ["billing_db", "stage_billing_db"]
    assert "terminate billing_db,stage_billing_db" in console.lines
