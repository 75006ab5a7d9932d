import os
import stat
import sys
from datetime import datetime

import pytest

from dbcloner.services.credentials import PASSWORD_ALPHABET, SecretsFileService, generate_password
from dbcloner.services.filesystem import FileSystemService


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


def test_generate_password_uses_alphanumeric_alphabet():
    password = generate_password(24)

    assert len(password) == 24
    assert set(password) <= set(PASSWORD_ALPHABET)


def test_generate_password_values_differ():
    assert len({generate_password() for _ in range(20)}) == 20


def test_generate_password_rejects_short_lengths():
    with pytest.raises(ValueError):
        generate_password(4)


def test_secrets_file_is_named_by_target_and_date(tmp_path):
    service = SecretsFileService(
        str(tmp_path),
        filesystem_service=FileSystemService(logger=DummyLogger(), console=DummyConsole()),
        logger=DummyLogger(),
    )

    path = service.write("stage_billing_db", "Password: x\n", datetime(2026, 10, 19))

    assert os.path.basename(path) == "passwords_stage_billing_db_191026.txt"
    assert (tmp_path / "passwords_stage_billing_db_191026.txt").read_text(encoding="utf-8") == "Password: x\n"
    if sys.platform != "win32":
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
