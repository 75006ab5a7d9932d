"""Pre-clone safety checks."""

from typing import Dict

from dbcloner.constants import RETRY_COOLDOWN_SECONDS, SUCCESS
from dbcloner.errors import DatabaseSkipped
from dbcloner.errors_catalog import actionable_error
from dbcloner.models import CloneRequest


class ExistenceGuard:
    """Blocks a clone when the source is missing or either side has live sessions."""

    def __init__(self, engine, logger, console):
        self.engine = engine
        self.logger = logger
        self.console = console

    def check(self, request: CloneRequest):
        source, target = request.source_name, request.target_name

        if not self.engine.source_exists(source):
            raise DatabaseSkipped(actionable_error("source_missing", name=source))

        self.logger.info("Checking for active connections on databases: %s and %s", source, target)
        counts = {source: self.engine.count_active_connections(source)}
        if self.engine.target_exists(target):
            counts[target] = self.engine.count_active_connections(target)

        busy = {name: count for name, count in counts.items() if count > 0}
        if not busy:
            self.logger.log(
                SUCCESS, "No active connections found on databases: %s and %s", source, target
            )
            return

        self.logger.error("Active connections detected on databases!")
        for name, count in busy.items():
            label = "Source" if name == source else "Target"
            self.logger.error("%s database '%s': %s active connection(s)", label, name, count)
        self.show_remediation(source, busy)
        raise DatabaseSkipped(
            actionable_error(
                "active_connections",
                names=", ".join(busy),
                cooldown=str(RETRY_COOLDOWN_SECONDS),
            )
        )

    def show_remediation(self, source: str, busy: Dict[str, int]):
        self.console.print()
        self.console.print("[bold red]DATABASE CLONING CANNOT PROCEED![/bold red]")
        self.console.print(
            "Please ask your DBA to kill all active connections using the following commands:"
        )
        self.console.print()

        for name in busy:
            label = "Source" if name == source else "Target"
            self.console.print(f"[yellow]{label} database '{name}' connections:[/yellow]")
            self.console.print("1. View active connections:")
            self.console.print(self._indent(self.engine.inspect_sessions_command(name)), markup=False)
            self.console.print()
            self.console.print("2. Kill connections (run as administrator):")
            self.console.print(
                self._indent(self.engine.terminate_sessions_command([name])), markup=False
            )
            self.console.print()

        if len(busy) > 1:
            self.console.print("[blue]Alternative single command to kill all connections:[/blue]")
            self.console.print(self.engine.terminate_sessions_command(list(busy)), markup=False)
            self.console.print()

        self.logger.info(
            "After killing connections, please wait %s seconds and run this tool again.",
            RETRY_COOLDOWN_SECONDS,
        )

    @staticmethod
    def _indent(text: str) -> str:
        return "\n".join(f"   {line}" for line in text.splitlines())
