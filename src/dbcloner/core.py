import logging
import os
import subprocess
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Type

from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from .constants import (
    ENGINE_MONGODB,
    ENGINE_POSTGRESQL,
    EXIT_FATAL,
    EXIT_PARTIAL,
    EXIT_SUCCESS,
    SUCCESS,
)
from .errors import ClonerError, DatabaseSkipped
from .models import CloneRequest, ClonerSettings, DatabaseOutcome
from .services.client_tools import ClientToolsService
from .services.clone_executor import CloneExecutor
from .services.command_runner import CommandRunner
from .services.credentials import SecretsFileService
from .services.engines.base import DatabaseEngine
from .services.engines.mongodb import MongoEngine
from .services.engines.postgres import PostgresEngine
from .services.existence_guard import ExistenceGuard
from .services.filesystem import FileSystemService
from .services.ledger import CredentialLedger
from .services.manifest import ManifestService

console = Console(theme=Theme({"logging.level.success": "bold green"}))
logger = logging.getLogger("dbcloner")

# Outcomes that count towards "Successfully processed".
SUCCEEDED_STATUSES = ("success", "already_cloned")

ENGINES: Dict[str, Type[DatabaseEngine]] = {
    ENGINE_POSTGRESQL: PostgresEngine,
    ENGINE_MONGODB: MongoEngine,
}


class DatabaseCloner:
    """Clones each requested database and provisions least-privilege users on it."""

    def __init__(
        self,
        settings: ClonerSettings,
        dry_run: bool = False,
        log_file: Optional[str] = None,
        report_file: Optional[str] = None,
    ):
        if settings.engine not in ENGINES:
            raise ClonerError(
                f"Unsupported engine '{settings.engine}'. Supported engines: {', '.join(ENGINES)}"
            )

        self.settings = settings
        self.dry_run = dry_run
        self.log_file = log_file
        self.run_id = uuid.uuid4().hex[:10]
        self.outcomes: List[DatabaseOutcome] = []

        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.command_runner = CommandRunner(logger=logger, default_timeout=settings.command_timeout)
        self.client_tools = ClientToolsService(
            logger=logger,
            console=console,
            subprocess_module=subprocess,
        )
        self.engine = ENGINES[settings.engine](
            settings,
            self.command_runner,
            self.client_tools,
            self.filesystem_service,
            logger,
            console,
        )
        self.existence_guard = ExistenceGuard(self.engine, logger=logger, console=console)
        self.clone_executor = CloneExecutor(
            self.engine,
            settings,
            filesystem_service=self.filesystem_service,
            logger=logger,
        )
        self.secrets_service = SecretsFileService(
            output_dir=settings.output_dir,
            filesystem_service=self.filesystem_service,
            logger=logger,
        )
        self.ledger = CredentialLedger(
            output_dir=settings.output_dir,
            filesystem_service=self.filesystem_service,
            logger=logger,
            renderer=self.engine.summarize_credentials,
        )
        self.manifest_service = ManifestService(
            manifest_file=report_file or os.path.join(settings.output_dir, "run-report.json"),
            logger=logger,
        )

    def build_requests(self) -> List[CloneRequest]:
        return [
            CloneRequest.build(name, self.settings.prefix, self.settings.engine)
            for name in self.settings.databases
        ]

    def _build_manifest_metadata(self) -> Dict[str, object]:
        return {
            "engine": self.settings.engine,
            "prefix": self.settings.prefix,
            "databases": list(self.settings.databases),
            "backup_before_clone": self.settings.backup_before_clone,
            "strict_provisioning": self.settings.strict_provisioning,
            "transfer_ownership": self.settings.transfer_ownership,
            "dry_run": self.dry_run,
        }

    def print_plan(self) -> bool:
        """Shows what each request would create; returns False if any name is unusable."""
        table = Table(title=f"{self.engine.display_name} clone plan (dry run)")
        table.add_column("Source")
        table.add_column("Target")
        table.add_column("Derived names")

        all_valid = True
        for request in self.build_requests():
            try:
                names = self.engine.derive_names(request)
            except ClonerError as exc:
                all_valid = False
                table.add_row(request.source_name, request.target_name, f"[red]{exc}[/red]")
                continue
            details = "\n".join(f"{key}: {value}" for key, value in names.items() if key != "database")
            table.add_row(request.source_name, request.target_name, details)

        console.print(table)
        if self.settings.backup_before_clone:
            console.print(f"[blue]Backups would be written to {self.settings.backup_dir}[/blue]")
        return all_valid

    def _provision(self, request: CloneRequest) -> List[str]:
        """Provisions a fresh clone; returns the intents of failed statements."""
        credentials, report = self.engine.provision_users(request)

        # The users exist from here on, so the ledger may hold the only copy of the passwords.
        self.ledger.record(credentials)
        now = datetime.now()
        try:
            secrets_path = self.secrets_service.write(
                credentials.database, self.engine.render_secrets(credentials, now), now
            )
        except OSError as exc:
            logger.error(
                "Could not write passwords file for %s: %s. They will be in the credential summary.",
                credentials.database,
                exc,
            )
        else:
            logger.log(SUCCESS, "Passwords saved to: %s", secrets_path)

        gaps = [intent for intent, _ in report.failed]
        if gaps:
            logger.warning(
                "Database %s was provisioned with %s failed statement(s): %s",
                credentials.database,
                len(gaps),
                "; ".join(gaps),
            )

        try:
            self.engine.verify_connections(credentials)
        except ClonerError as exc:
            logger.warning("Connection verification failed for %s: %s", credentials.database, exc)
        return gaps

    def process_database(self, request: CloneRequest) -> DatabaseOutcome:
        logger.info("Processing database: %s", request.source_name)
        self.manifest_service.database_started(request.source_name, request.target_name)
        gaps: List[str] = []

        try:
            self.engine.derive_names(request)
            self.existence_guard.check(request)
            cloned = self.clone_executor.clone(request)
            if cloned:
                gaps = self._provision(request)
        except DatabaseSkipped as exc:
            logger.warning("Skipping database %s: %s", request.source_name, exc)
            outcome = DatabaseOutcome(request.source_name, request.target_name, "skipped", str(exc))
        except ClonerError as exc:
            logger.error("Failed to process database %s: %s", request.source_name, exc)
            outcome = DatabaseOutcome(request.source_name, request.target_name, "failed", str(exc))
        else:
            if cloned:
                logger.log(SUCCESS, "Successfully processed database: %s", request.source_name)
                outcome = DatabaseOutcome(request.source_name, request.target_name, "success")
            else:
                logger.log(
                    SUCCESS,
                    "Database %s was already cloned by an earlier run; left as is",
                    request.target_name,
                )
                outcome = DatabaseOutcome(request.source_name, request.target_name, "already_cloned")

        self.manifest_service.database_finished(
            outcome.source, outcome.status, reason=outcome.reason, provisioning_gaps=gaps
        )
        return outcome

    def _finish(self) -> Optional[str]:
        self.filesystem_service.cleanup_staging_dirs()
        try:
            summary_path = self.ledger.flush()
        except OSError as exc:
            logger.error("Could not write credential summary: %s", exc)
            return None
        if summary_path:
            logger.log(SUCCESS, "Credential summary created: %s", summary_path)
            self.manifest_service.add_artifact("credential_summary", summary_path)
        return summary_path

    def run(self) -> int:
        exit_code = EXIT_FATAL
        manifest_status = "failed"
        manifest_error: Optional[str] = None

        try:
            logger.info("Starting %s database cloning process", self.engine.display_name)
            self.manifest_service.start_run(
                run_id=self.run_id,
                metadata=self._build_manifest_metadata(),
            )

            if self.dry_run:
                valid = self.print_plan()
                manifest_status = "dry_run"
                exit_code = EXIT_SUCCESS if valid else EXIT_PARTIAL
                return exit_code

            self.engine.validate_environment()
            self.engine.probe_connection()

            requests = self.build_requests()
            for request in requests:
                self.outcomes.append(self.process_database(request))
                console.print("-" * 40)

            success_count = sum(1 for outcome in self.outcomes if outcome.status in SUCCEEDED_STATUSES)
            logger.info("Cloning process completed")
            logger.info("Successfully processed: %s/%s databases", success_count, len(requests))

            if success_count == len(requests):
                logger.log(SUCCESS, "All databases cloned successfully!")
                manifest_status = "success"
                exit_code = EXIT_SUCCESS
            else:
                where = f": {self.log_file}" if self.log_file else ""
                logger.warning("Some databases failed to clone. Check the log for details%s", where)
                manifest_status = "partial"
                exit_code = EXIT_PARTIAL
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            manifest_status = "aborted"
            manifest_error = "Operation cancelled by user."
            exit_code = EXIT_PARTIAL
            return exit_code
        except ClonerError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            manifest_error = str(exc)
            exit_code = EXIT_FATAL
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            manifest_error = str(exc)
            exit_code = EXIT_FATAL
            return exit_code
        finally:
            if not self.dry_run:
                self._finish()
            self.manifest_service.finalize(manifest_status, error=manifest_error)
