"""MongoDB engine: dump/restore cloning and readWrite app user provisioning."""

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from dbcloner.constants import MIN_MONGORESTORE_NS_VERSION, MONGO_SHELLS
from dbcloner.errors import ClonerError, DatabaseFailed
from dbcloner.errors_catalog import actionable_error
from dbcloner.models import CloneRequest, MongoCredentials, ProvisioningReport
from dbcloner.services.credentials import generate_password
from dbcloner.services.engines.base import DatabaseEngine
from dbcloner.services.identifiers import mongo_name
from dbcloner.services.statements import MongoCommands, Statement

SEPARATOR = "==============================================="


class MongoEngine(DatabaseEngine):
    """Drives the mongo shell and database tools as the configured admin user.

    The shell is picked once from ``MONGO_SHELLS`` (modern first) and reused
    for the rest of the run.
    """

    display_name = "MongoDB"
    backup_suffix = ".archive.gz"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.shell: Optional[str] = None

    def _auth_args(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        auth_database: Optional[str] = None,
    ) -> List[str]:
        admin = self.settings.admin
        args = ["--host", host or admin.host, "--port", str(port or admin.port)]
        user = user or admin.username
        password = password if password is not None else admin.password
        if user:
            args += ["--username", user]
        if password:
            args += ["--password", password]
        if user:
            args += ["--authenticationDatabase", auth_database or self.settings.auth_database]
        return args

    def _shell(self) -> str:
        if self.shell is None:
            self.shell = self.client_tools.resolve(MONGO_SHELLS, self.display_name)
        return self.shell

    def _eval(self, expression: str, database: str = "admin", check: bool = False, **auth):
        cmd = [self._shell(), "--quiet", *self._auth_args(**auth), "--eval", expression, database]
        return self.command_runner.run(
            cmd,
            check=check,
            capture_output=True,
            timeout=self.settings.command_timeout,
        )

    def _eval_value(self, expression: str) -> str:
        return self.last_line(self._eval(expression, check=True).stdout)

    def _run_tool(self, cmd: List[str]):
        return self.command_runner.run(
            cmd,
            check=True,
            capture_output=True,
            timeout=self.settings.command_timeout,
        )

    def validate_environment(self):
        self.shell = self.client_tools.resolve(MONGO_SHELLS, self.display_name)
        self.client_tools.require(["mongodump", "mongorestore"], self.display_name)
        self.client_tools.ensure_min_version(
            "mongorestore", MIN_MONGORESTORE_NS_VERSION, self.display_name
        )

    def probe_connection(self):
        self.logger.info("Testing database connection...")
        admin = self.settings.admin
        result = self._eval(MongoCommands.ping())
        if result.returncode != 0:
            message = actionable_error(
                "connection_failed",
                engine=self.display_name,
                host=admin.host,
                port=str(admin.port),
                user=admin.username,
            )
            output = self.command_runner.mask((result.stderr or result.stdout or "").strip())
            raise ClonerError(f"{message}\n{output}" if output else message)
        self.log_success("Database connection successful")

    def source_exists(self, name: str) -> bool:
        return self._eval_value(MongoCommands.database_exists(name)) == "true"

    def count_active_connections(self, name: str) -> int:
        value = self._eval_value(MongoCommands.active_operations(name))
        try:
            return int(float(value or 0))
        except ValueError as exc:
            raise ClonerError(f"Unexpected operation count for {name}: {value!r}") from exc

    def inspect_sessions_command(self, name: str) -> str:
        return MongoCommands.inspect_operations(name)

    def terminate_sessions_command(self, names: Sequence[str]) -> str:
        return MongoCommands.kill_operations(names)

    def backup_database(self, name: str, path: str):
        mongo_name(name, "database name")
        self._run_tool(["mongodump", *self._auth_args(), "--db", name, f"--archive={path}", "--gzip"])

    def clone_database(self, request: CloneRequest):
        source = mongo_name(request.source_name, "database name")
        target = mongo_name(request.target_name, "database name")
        staging = self.filesystem_service.make_staging_dir(prefix=f"dbcloner_{source}_")
        try:
            self.logger.info("Dumping %s to staging directory", source)
            self._run_tool(["mongodump", *self._auth_args(), "--db", source, "--out", staging])

            self.logger.info("Restoring %s as %s", source, target)
            self._run_tool(
                [
                    "mongorestore",
                    *self._auth_args(),
                    "--nsInclude",
                    f"{source}.*",
                    "--nsFrom",
                    f"{source}.*",
                    "--nsTo",
                    f"{target}.*",
                    staging,
                ]
            )
        except ClonerError as exc:
            message = actionable_error("clone_failed", source=source, target=target)
            raise DatabaseFailed(f"{message}\n{exc}") from exc
        finally:
            self.filesystem_service.release_staging_dir(staging)

    def derive_names(self, request: CloneRequest) -> Dict[str, str]:
        target = mongo_name(request.target_name, "database name")
        return {
            "database": target,
            "app_user": mongo_name(f"{target}{self.settings.app_user_suffix}", "user name"),
            "role": f"{MongoCommands.READ_WRITE_ROLE}@{target}",
        }

    def derive_credentials(self, request: CloneRequest) -> MongoCredentials:
        names = self.derive_names(request)
        credentials = MongoCredentials(
            database=names["database"],
            app_user=names["app_user"],
            app_password=generate_password(self.settings.password_length),
        )
        self.command_runner.register_secret(credentials.app_password)
        return credentials

    def _execute(self, statement: Statement, credentials: MongoCredentials) -> Tuple[bool, str]:
        result = self._eval(statement.sql, database=credentials.database)
        if result.returncode == 0:
            return True, ""
        output = (result.stderr or result.stdout or "").strip()
        return False, self.command_runner.mask(output)

    def provision_users(self, request: CloneRequest) -> Tuple[MongoCredentials, ProvisioningReport]:
        credentials = self.derive_credentials(request)
        self.logger.info("Creating app user for database: %s", credentials.database)

        # createUser is the whole protocol, so it is structural by nature.
        statement = Statement(
            1,
            f"create app user {credentials.app_user} with readWrite on {credentials.database}",
            MongoCommands.create_user(
                credentials.database, credentials.app_user, credentials.app_password
            ),
            structural=True,
        )
        report = ProvisioningReport(database=credentials.database)
        self.apply_statements([statement], credentials, report)
        self.log_success(
            "App user %s created with readWrite on %s", credentials.app_user, credentials.database
        )
        return credentials, report

    def verify_connections(self, credentials: MongoCredentials) -> bool:
        lb = self.settings.load_balancer
        if lb is None:
            self.logger.info("Load balancer not configured. Skipping user connection testing.")
            return True

        self.logger.info("Testing app user connection via load balancer: %s:%s", lb.host, lb.port)
        auth = {
            "host": lb.host,
            "port": lb.port,
            "user": credentials.app_user,
            "password": credentials.app_password,
            "auth_database": credentials.database,
        }
        try:
            ping = self._eval(MongoCommands.ping(), database=credentials.database, **auth)
            if ping.returncode != 0:
                self.logger.warning(
                    "App user %s cannot connect via load balancer", credentials.app_user
                )
                return False
            self.log_success("App user %s can connect via load balancer", credentials.app_user)

            listing = self._eval(MongoCommands.list_collections(), database=credentials.database, **auth)
        except ClonerError as exc:
            self.logger.warning("Connection test as %s could not run: %s", credentials.app_user, exc)
            return False

        if listing.returncode != 0:
            self.logger.warning(
                "App user %s read test failed - check privileges", credentials.app_user
            )
            return False
        self.log_success("App user %s can read %s", credentials.app_user, credentials.database)
        return True

    def render_secrets(self, credentials: MongoCredentials, now: datetime) -> str:
        admin = self.settings.admin
        lines = [
            "MongoDB Database Cloning - Generated Passwords",
            f"Generated on: {now:%Y-%m-%d %H:%M:%S}",
            f"Database: {credentials.database}",
            SEPARATOR,
            "",
            f"App User ({MongoCommands.READ_WRITE_ROLE}):",
            f"Username: {credentials.app_user}",
            f"Password: {credentials.app_password}",
            f"Authentication Database: {credentials.database}",
            "",
            "Connection Details:",
            f"Host: {admin.host}",
            f"Port: {admin.port}",
            f"Database: {credentials.database}",
        ]
        return "\n".join(lines) + "\n"

    def summarize_credentials(self, entries: Sequence[MongoCredentials], now: datetime) -> str:
        admin = self.settings.admin
        lb = self.settings.load_balancer
        lines = [
            "MongoDB Database Cloning - Credential Summary",
            f"Generated on: {now:%Y-%m-%d %H:%M:%S}",
            SEPARATOR,
            "",
        ]
        for entry in entries:
            lines += [
                f"database name : {entry.database}",
                f"app user: {entry.app_user}",
                f"password: {entry.app_password}",
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
