import subprocess

import pytest

from dbcloner.errors import ClonerError
from dbcloner.services.client_tools import ClientToolsService


class DummyLogger:
    def __init__(self):
        self.warnings = []

    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, message, *args, **_kwargs):
        self.warnings.append(message % args if args else message)


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakeSubprocess:
    CalledProcessError = subprocess.CalledProcessError

    def __init__(self, installed):
        self.installed = installed
        self.calls = []

    def run(self, cmd, **_kwargs):
        self.calls.append(cmd)
        program = cmd[0]
        if program not in self.installed:
            raise FileNotFoundError(program)
        return subprocess.CompletedProcess(cmd, 0, stdout=self.installed[program], stderr="")


def _service(installed):
    return ClientToolsService(
        logger=DummyLogger(),
        console=DummyConsole(),
        subprocess_module=FakeSubprocess(installed),
    )


def test_resolve_prefers_first_provider():
    service = _service({"mongosh": "2.2.5", "mongo": "MongoDB shell version v4.4.6"})

    assert service.resolve(["mongosh", "mongo"], "MongoDB") == "mongosh"
    assert service.logger.warnings == []


def test_resolve_falls_back_with_warning_and_caches_choice():
    service = _service({"mongo": "MongoDB shell version v4.4.6"})

    assert service.resolve(["mongosh", "mongo"], "MongoDB") == "mongo"
    assert service.resolve(["mongosh", "mongo"], "MongoDB") == "mongo"

    assert service.logger.warnings == ["mongosh not found, falling back to mongo."]
    assert service.subprocess.calls == [["mongosh", "--version"], ["mongo", "--version"]]


def test_resolve_raises_when_no_provider_installed():
    service = _service({})

    with pytest.raises(ClonerError, match="Required client program not found: mongosh or mongo"):
        service.resolve(["mongosh", "mongo"], "MongoDB")


def test_require_checks_every_program():
    service = _service({"psql": "psql (PostgreSQL) 16.2"})

    with pytest.raises(ClonerError, match="pg_dump"):
        service.require(["psql", "pg_dump"], "PostgreSQL")


def test_ensure_min_version_rejects_old_mongorestore():
    service = _service({"mongorestore": "mongorestore version: r3.2.22\ngit version: abc"})

    with pytest.raises(ClonerError, match="3.2.22 is too old; at least 3.4 is required"):
        service.ensure_min_version("mongorestore", "3.4", "MongoDB")


def test_ensure_min_version_accepts_new_tools():
    service = _service({"mongorestore": "mongorestore version: 100.9.4\ngo version: go1.21"})

    service.ensure_min_version("mongorestore", "3.4", "MongoDB")


def test_ensure_min_version_warns_when_version_unknown():
    service = _service({"mongorestore": "built from source"})

    service.ensure_min_version("mongorestore", "3.4", "MongoDB")

    assert service.logger.warnings


def test_require_announces_programs_on_console():
    printed = []

    class RecordingConsole:
        def print(self, *args, **_kwargs):
            printed.append(" ".join(str(arg) for arg in args))

    service = ClientToolsService(
        logger=DummyLogger(),
        console=RecordingConsole(),
        subprocess_module=FakeSubprocess({"psql": "psql (PostgreSQL) 16.2", "pg_dump": "pg_dump 16.2"}),
    )

    service.require(["psql", "pg_dump"], "PostgreSQL")

    assert printed == ["[blue]Checking PostgreSQL client programs: psql, pg_dump[/blue]"]
