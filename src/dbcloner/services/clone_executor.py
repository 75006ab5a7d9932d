"""Clone execution with the idempotent skip and the optional backup."""

import os
from datetime import datetime

from dbcloner.constants import BACKUP_TIMESTAMP_FORMAT, DIR_MODE, SUCCESS
from dbcloner.errors import ClonerError, DatabaseFailed
from dbcloner.errors_catalog import actionable_error
from dbcloner.models import CloneRequest, ClonerSettings


class CloneExecutor:
    """Duplicates one source database into its prefixed target."""

    def __init__(self, engine, settings: ClonerSettings, filesystem_service, logger):
        self.engine = engine
        self.settings = settings
        self.filesystem_service = filesystem_service
        self.logger = logger

    def backup_path(self, source: str, now: datetime) -> str:
        file_name = f"{source}_{now.strftime(BACKUP_TIMESTAMP_FORMAT)}{self.engine.backup_suffix}"
        return os.path.join(self.settings.backup_dir, file_name)

    def backup(self, source: str) -> str:
        self.filesystem_service.ensure_dir(self.settings.backup_dir, DIR_MODE)
        path = self.backup_path(source, datetime.now())
        self.logger.info("Creating backup of database: %s", source)
        try:
            self.engine.backup_database(source, path)
        except ClonerError as exc:
            self.logger.error("Backup command failed: %s", exc)
            raise DatabaseFailed(
                actionable_error("backup_failed", name=source, backup_dir=self.settings.backup_dir)
            ) from exc
        self.logger.log(SUCCESS, "Backup created: %s", path)
        return path

    def clone(self, request: CloneRequest) -> bool:
        """Returns False when the target is already there and was left untouched."""
        self.logger.info("Cloning database: %s -> %s", request.source_name, request.target_name)

        if self.engine.target_exists(request.target_name):
            self.logger.warning(actionable_error("target_exists", name=request.target_name))
            return False

        if self.settings.backup_before_clone:
            self.backup(request.source_name)

        self.engine.clone_database(request)
        self.logger.log(SUCCESS, "Database cloned successfully: %s", request.target_name)
        return True
