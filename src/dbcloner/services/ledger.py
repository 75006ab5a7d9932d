"""Run-level credential ledger."""

import os
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Union

from dbcloner.constants import FILE_DATE_FORMAT, SECRETS_FILE_MODE
from dbcloner.models import MongoCredentials, PostgresCredentials

Credentials = Union[PostgresCredentials, MongoCredentials]


class CredentialLedger:
    """Collects provisioned credentials in order and renders them once at the end."""

    def __init__(
        self,
        output_dir: str,
        filesystem_service,
        logger,
        renderer: Callable[[Sequence[Credentials], datetime], str],
    ):
        self.output_dir = output_dir
        self.filesystem_service = filesystem_service
        self.logger = logger
        self.renderer = renderer
        self._entries: List[Credentials] = []
        self._flushed = False

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[Credentials]:
        return list(self._entries)

    def record(self, credentials: Credentials):
        if self._flushed:
            raise RuntimeError("Credential ledger was already flushed for this run.")
        self._entries.append(credentials)

    def summary_path(self, now: datetime) -> str:
        return os.path.join(self.output_dir, f"credentials_{now.strftime(FILE_DATE_FORMAT)}.txt")

    def flush(self, now: Optional[datetime] = None) -> Optional[str]:
        """Writes the summary file; returns its path, or None if nothing was provisioned."""
        if self._flushed:
            return None
        self._flushed = True

        if not self._entries:
            self.logger.info("No credentials found to create summary file.")
            return None

        now = now or datetime.now()
        path = self.summary_path(now)
        self.logger.info("Creating credential summary file: %s", path)
        self.filesystem_service.write_private_file(
            path, self.renderer(self.entries, now), SECRETS_FILE_MODE
        )
        self._entries.clear()
        return path
