"""Password generation and per-database secrets files."""

import os
import secrets
import string
from datetime import datetime
from typing import Optional

from dbcloner.constants import FILE_DATE_FORMAT, SECRETS_FILE_MODE

PASSWORD_ALPHABET = string.ascii_letters + string.digits


def generate_password(length: int = 16) -> str:
    if length < 8:
        raise ValueError("Generated passwords must be at least 8 characters long.")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


class SecretsFileService:
    """Writes the one-time pickup file for a freshly provisioned database."""

    def __init__(self, output_dir: str, filesystem_service, logger):
        self.output_dir = output_dir
        self.filesystem_service = filesystem_service
        self.logger = logger

    def path_for(self, database: str, now: Optional[datetime] = None) -> str:
        stamp = (now or datetime.now()).strftime(FILE_DATE_FORMAT)
        return os.path.join(self.output_dir, f"passwords_{database}_{stamp}.txt")

    def write(self, database: str, content: str, now: Optional[datetime] = None) -> str:
        path = self.path_for(database, now)
        self.filesystem_service.write_private_file(path, content, SECRETS_FILE_MODE)
        return path
