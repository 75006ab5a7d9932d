"""PostgreSQL engine: template-copy cloning and schema/role provisioning."""

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from dbcloner.constants import APP_USER_SUFFIX, OWNER_USER_SUFFIX
from dbcloner.errors import ClonerError, DatabaseFailed
from dbcloner.errors_catalog import actionable_error
from dbcloner.models import CloneRequest, PostgresCredentials, ProvisioningReport
from dbcloner.services.credentials import generate_password
from dbcloner.services.engines.base import DatabaseEngine
from dbcloner.services.identifiers import pg_identifier
from dbcloner.services.statements import MAINTENANCE, PostgresQueries, PostgresStatements, Statement

SEPARATOR = "==============================================="


class PostgresEngine(DatabaseEngine):
    """Drives ``psql``/``pg_dump`` as the configured superuser."""

    display_name = "PostgreSQL"
    backup_suffix = ".sql"

    def _connection_args(
        self,
        database: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
    ) -> List[str]:
        admin = self.settings.admin
        return [
            "-h",
            host or admin.host,
            "-p",
            str(port or admin.port),
            "-U",
            user or admin.username,
            "-d",
            database,
        ]

    def _env(self, password: Optional[str] = None) -> Optional[Dict[str, str]]:
        password = password if password is not None else self.settings.admin.password
        return {"PGPASSWORD": password} if password else None

    def _psql(
        self,
        database: str,
        sql: str,
        check: bool = False,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
    ):
        # SQL goes through stdin so generated passwords never show up in argv.
        cmd = ["psql", *self._connection_args(database, host, port, user)]
        cmd += ["-X", "-q", "-t", "-A", "-v", "ON_ERROR_STOP=1", "-f", "-"]
        return self.command_runner.run(
            cmd,
            check=check,
            capture_output=True,
            timeout=self.settings.command_timeout,
            env=self._env(password),
            input_text=sql,
        )

    def _query_value(self, sql: str, database: Optional[str] = None) -> str:
        result = self._psql(database or self.settings.maintenance_database, sql, check=True)
        return self.last_line(result.stdout)

    def validate_environment(self):
        programs = ["psql"]
        if self.settings.backup_before_clone:
            programs.append("pg_dump")
        self.client_tools.require(programs, self.display_name)

    def probe_connection(self):
        self.logger.info("Testing database connection...")
        admin = self.settings.admin
        result = self._psql(self.settings.maintenance_database, PostgresQueries.ping())
        if result.returncode != 0:
            message = actionable_error(
                "connection_failed",
                engine=self.display_name,
                host=admin.host,
                port=str(admin.port),
                user=admin.username,
            )
            stderr = self.command_runner.mask((result.stderr or "").strip())
            raise ClonerError(f"{message}\n{stderr}" if stderr else message)
        self.log_success("Database connection successful")

    def source_exists(self, name: str) -> bool:
        return self._query_value(PostgresQueries.database_exists(name)) == "1"

    def count_active_connections(self, name: str) -> int:
        value = self._query_value(PostgresQueries.active_connections(name))
        try:
            return int(value or 0)
        except ValueError as exc:
            raise ClonerError(f"Unexpected session count for {name}: {value!r}") from exc

    def inspect_sessions_command(self, name: str) -> str:
        return PostgresQueries.inspect_sessions(name)

    def terminate_sessions_command(self, names: Sequence[str]) -> str:
        return PostgresQueries.terminate_sessions(names)

    def backup_database(self, name: str, path: str):
        pg_identifier(name, "database name")
        admin = self.settings.admin
        cmd = [
            "pg_dump",
            "-h",
            admin.host,
            "-p",
            str(admin.port),
            "-U",
            admin.username,
            "--no-owner",
            "--no-privileges",
            "--file",
            path,
            name,
        ]
        self.command_runner.run(
            cmd,
            check=True,
            capture_output=True,
            timeout=self.settings.command_timeout,
            env=self._env(),
        )

    def clone_database(self, request: CloneRequest):
        self.logger.info("Creating database: %s", request.target_name)
        sql = PostgresQueries.create_from_template(request.target_name, request.source_name)
        result = self._psql(self.settings.maintenance_database, sql)
        if result.returncode != 0:
            message = actionable_error(
                "clone_failed", source=request.source_name, target=request.target_name
            )
            stderr = self.command_runner.mask((result.stderr or "").strip())
            raise DatabaseFailed(f"{message}\n{stderr}" if stderr else message)

    def derive_names(self, request: CloneRequest) -> Dict[str, str]:
        target = pg_identifier(request.target_name, "database name")
        owner_user = pg_identifier(f"{target}{OWNER_USER_SUFFIX}", "owner user name")
        return {
            "database": target,
            "schema": owner_user,
            "owner_user": owner_user,
            "app_user": pg_identifier(f"{target}{APP_USER_SUFFIX}", "app user name"),
            "app_role": pg_identifier(f"{self.settings.app_role_prefix}{target}", "app role name"),
            "owner_role": pg_identifier(
                f"{self.settings.owner_role_prefix}{target}", "owner role name"
            ),
        }

    def derive_credentials(self, request: CloneRequest) -> PostgresCredentials:
        names = self.derive_names(request)
        length = self.settings.password_length
        credentials = PostgresCredentials(
            owner_password=generate_password(length),
            app_password=generate_password(length),
            **names,
        )
        self.command_runner.register_secret(credentials.owner_password, credentials.app_password)
        return credentials

    def _execute(self, statement: Statement, credentials: PostgresCredentials) -> Tuple[bool, str]:
        database = (
            self.settings.maintenance_database
            if statement.database == MAINTENANCE
            else credentials.database
        )
        self.logger.debug("SQL on %s: %s", database, self.command_runner.mask(statement.sql))
        result = self._psql(database, statement.sql)
        if result.returncode == 0:
            return True, ""
        return False, self.command_runner.mask((result.stderr or "").strip())

    def provision_users(self, request: CloneRequest) -> Tuple[PostgresCredentials, ProvisioningReport]:
        self.logger.info("Creating users and schema for database: %s", request.target_name)
        credentials = self.derive_credentials(request)
        self.logger.info(
            "Owner user: %s, App user: %s", credentials.owner_user, credentials.app_user
        )

        builder = PostgresStatements(credentials, self.settings.source_schema_name)
        report = ProvisioningReport(database=credentials.database)
        self.apply_statements(builder.protocol(), credentials, report)

        if self.settings.transfer_ownership:
            self.logger.info("Step 9: Transferring object ownership to %s", credentials.owner_user)
            objects = self._owned_objects(builder, credentials)
            self.apply_statements(builder.ownership_statements(objects), credentials, report)

        self.log_success("User configuration completed for database: %s", credentials.database)
        self.logger.info(
            "Created users: %s (app), %s (owner)", credentials.app_user, credentials.owner_user
        )
        self.logger.info(
            "Created roles: %s (app), %s (owner)", credentials.app_role, credentials.owner_role
        )
        return credentials, report

    def _owned_objects(self, builder: PostgresStatements, credentials: PostgresCredentials) -> List[Tuple[str, str]]:
        result = self._psql(credentials.database, builder.owned_objects_query())
        if result.returncode != 0:
            stderr = self.command_runner.mask((result.stderr or "").strip())
            self.logger.error("Failed to list objects in schema %s: %s", credentials.schema, stderr)
            if self.settings.strict_provisioning:
                raise DatabaseFailed(
                    actionable_error(
                        "strict_statement_failed",
                        step="list objects for ownership transfer",
                        target=credentials.database,
                    )
                )
            return []

        objects = []
        for line in (result.stdout or "").splitlines():
            if "|" not in line:
                continue
            name, relkind = line.rsplit("|", 1)
            objects.append((name, relkind.strip()))
        return objects

    def verify_connections(self, credentials: PostgresCredentials) -> bool:
        lb = self.settings.load_balancer
        if lb is None:
            self.logger.info("Load balancer not configured. Skipping user connection testing.")
            return True

        self.logger.info("Testing user connections via load balancer: %s:%s", lb.host, lb.port)
        checks = [
            (
                credentials.app_user,
                credentials.app_password,
                PostgresQueries.schema_table_count(credentials.schema),
                f"App user {credentials.app_user} has DML access to schema {credentials.schema}",
                f"App user {credentials.app_user} DML test failed - check privileges",
            ),
            (
                credentials.owner_user,
                credentials.owner_password,
                PostgresQueries.schema_lookup(credentials.schema),
                f"Owner user {credentials.owner_user} has DDL access to schema {credentials.schema}",
                f"Owner user {credentials.owner_user} DDL test failed - check privileges",
            ),
        ]

        all_passed = True
        for user, password, privilege_sql, ok_message, failed_message in checks:
            if not self._lb_query(credentials.database, user, password, "SELECT 1 AS test_connection;"):
                self.logger.warning("User %s cannot connect via load balancer", user)
                all_passed = False
                continue
            self.log_success("User %s can connect via load balancer", user)
            if self._lb_query(credentials.database, user, password, privilege_sql):
                self.log_success(ok_message)
            else:
                self.logger.warning(failed_message)
                all_passed = False

        if self._lb_query(
            credentials.database, credentials.app_user, credentials.app_password, "SHOW search_path;"
        ):
            self.log_success("Search path is correctly configured for %s", credentials.app_user)
        else:
            self.logger.warning("Search path test failed for %s", credentials.app_user)
            all_passed = False

        return all_passed

    def _lb_query(self, database: str, user: str, password: str, sql: str) -> bool:
        lb = self.settings.load_balancer
        try:
            result = self._psql(database, sql, host=lb.host, port=lb.port, user=user, password=password)
        except ClonerError as exc:
            self.logger.warning("Connection test as %s could not run: %s", user, exc)
            return False
        return result.returncode == 0

    def render_secrets(self, credentials: PostgresCredentials, now: datetime) -> str:
        admin = self.settings.admin
        lines = [
            "PostgreSQL Database Cloning - Generated Passwords",
            f"Generated on: {now:%Y-%m-%d %H:%M:%S}",
            f"Database: {credentials.database}",
            SEPARATOR,
            "",
            "App User (DML only):",
            f"Username: {credentials.app_user}",
            f"Password: {credentials.app_password}",
            "",
            "Schema Owner (DDL + DML):",
            f"Username: {credentials.owner_user}",
            f"Password: {credentials.owner_password}",
            "",
            "Connection Details:",
            f"Host: {admin.host}",
            f"Port: {admin.port}",
            f"Database: {credentials.database}",
            f"Schema: {credentials.schema}",
            "",
            "Roles assigned:",
            f"- {credentials.app_user} -> {credentials.app_role}",
            f"- {credentials.owner_user} -> {credentials.owner_role}",
        ]
        return "\n".join(lines) + "\n"

    def summarize_credentials(self, entries: Sequence[PostgresCredentials], now: datetime) -> str:
        admin = self.settings.admin
        lb = self.settings.load_balancer
        lines = [
            "PostgreSQL Database Cloning - Credential Summary",
            f"Generated on: {now:%Y-%m-%d %H:%M:%S}",
            SEPARATOR,
            "",
        ]
        for entry in entries:
            lines += [
                f"database name : {entry.database}",
                f"schema: {entry.schema}",
                f"app user: {entry.app_user}",
                f"password: {entry.app_password}",
                f"owner user: {entry.owner_user}",
                f"password: {entry.owner_password}",
                self._load_balancer_line(),
                "",
            ]
        lines += [
            SEPARATOR,
            "Connection Information:",
            f"Database Host: {admin.host}",
            f"Database Port: {admin.port}",
        ]
        if lb:
            lines.append(f"Load Balancer: {lb.host}:{lb.port}")
        lines += ["", "Note: Keep this file secure and delete after use.", SEPARATOR]
        return "\n".join(lines) + "\n"
