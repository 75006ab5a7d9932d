"""Engine capability set shared by the PostgreSQL and MongoDB variants."""

import abc
from datetime import datetime
from typing import Dict, List, Sequence, Tuple, Union

from dbcloner.constants import SUCCESS
from dbcloner.errors import DatabaseFailed
from dbcloner.errors_catalog import actionable_error
from dbcloner.models import (
    CloneRequest,
    ClonerSettings,
    MongoCredentials,
    PostgresCredentials,
    ProvisioningReport,
)
from dbcloner.services.statements import Statement

Credentials = Union[PostgresCredentials, MongoCredentials]


class DatabaseEngine(abc.ABC):
    """Everything the run loop needs from one engine kind."""

    display_name = ""
    backup_suffix = ""

    def __init__(self, settings: ClonerSettings, command_runner, client_tools, filesystem_service, logger, console):
        self.settings = settings
        self.command_runner = command_runner
        self.client_tools = client_tools
        self.filesystem_service = filesystem_service
        self.logger = logger
        self.console = console
        self.command_runner.register_secret(settings.admin.password)

    @abc.abstractmethod
    def validate_environment(self):
        """Raises ClonerError when a required client program is missing."""

    @abc.abstractmethod
    def probe_connection(self):
        """Raises ClonerError when the admin credential cannot reach the engine."""

    @abc.abstractmethod
    def source_exists(self, name: str) -> bool:
        pass

    def target_exists(self, name: str) -> bool:
        return self.source_exists(name)

    @abc.abstractmethod
    def count_active_connections(self, name: str) -> int:
        pass

    @abc.abstractmethod
    def inspect_sessions_command(self, name: str) -> str:
        pass

    @abc.abstractmethod
    def terminate_sessions_command(self, names: Sequence[str]) -> str:
        pass

    @abc.abstractmethod
    def backup_database(self, name: str, path: str):
        pass

    @abc.abstractmethod
    def clone_database(self, request: CloneRequest):
        pass

    @abc.abstractmethod
    def derive_names(self, request: CloneRequest) -> Dict[str, str]:
        """Names the provisioning protocol will create, without secrets."""

    @abc.abstractmethod
    def provision_users(self, request: CloneRequest) -> Tuple[Credentials, ProvisioningReport]:
        pass

    @abc.abstractmethod
    def verify_connections(self, credentials: Credentials) -> bool:
        pass

    @abc.abstractmethod
    def render_secrets(self, credentials: Credentials, now: datetime) -> str:
        pass

    @abc.abstractmethod
    def summarize_credentials(self, entries: Sequence[Credentials], now: datetime) -> str:
        pass

    @abc.abstractmethod
    def _execute(self, statement: Statement, credentials: Credentials) -> Tuple[bool, str]:
        """Runs one statement; returns (succeeded, error output)."""

    def apply_statements(
        self,
        statements: List[Statement],
        credentials: Credentials,
        report: ProvisioningReport,
    ) -> ProvisioningReport:
        current_step = None
        for statement in statements:
            if statement.step != current_step:
                current_step = statement.step
                self.logger.info("Step %s: %s", statement.step, statement.intent)
            else:
                self.logger.debug("Step %s: %s", statement.step, statement.intent)

            succeeded, error = self._execute(statement, credentials)
            if succeeded:
                report.applied.append(statement.intent)
                continue

            self.logger.error("Failed to %s: %s", statement.intent, error or "no output")
            if statement.structural:
                raise DatabaseFailed(
                    actionable_error(
                        "structural_step_failed", step=statement.intent, target=report.database
                    )
                )
            if self.settings.strict_provisioning:
                raise DatabaseFailed(
                    actionable_error(
                        "strict_statement_failed", step=statement.intent, target=report.database
                    )
                )
            report.failed.append((statement.intent, error))
        return report

    def log_success(self, message: str, *args):
        self.logger.log(SUCCESS, message, *args)

    @staticmethod
    def last_line(output: str) -> str:
        lines = [line.strip() for line in (output or "").splitlines() if line.strip()]
        return lines[-1] if lines else ""

    def _load_balancer_line(self) -> str:
        lb = self.settings.load_balancer
        return f"LB: {lb.host}:{lb.port}" if lb else "LB: Not configured"
