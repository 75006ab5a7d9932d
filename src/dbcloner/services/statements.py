"""Statement builders for the provisioning protocols.

The builders only produce text; executing it is the engine's job. Keeping
the ordered protocol here makes it inspectable in dry runs and tests.
"""

import json
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from dbcloner.models import PostgresCredentials
from dbcloner.services.identifiers import (
    js_string,
    mongo_name,
    pg_identifier,
    quote_catalog_ident,
    quote_ident,
    quote_literal,
)

# Targets for Statement.database
MAINTENANCE = "maintenance"
TARGET = "target"

PG_DML = "SELECT, INSERT, UPDATE, DELETE"

# pg_class.relkind -> ALTER keyword used for ownership transfer
OWNERSHIP_RELKINDS = {
    "r": "TABLE",
    "p": "TABLE",
    "v": "VIEW",
    "m": "MATERIALIZED VIEW",
    "S": "SEQUENCE",
}


@dataclass(frozen=True)
class Statement:
    step: int
    intent: str
    sql: str
    database: str = TARGET
    structural: bool = False


class PostgresStatements:
    """Builds the relational provisioning protocol for one cloned database."""

    def __init__(self, credentials: PostgresCredentials, source_schema: str):
        self.credentials = credentials
        self.source_schema = pg_identifier(source_schema, "schema name")

    @property
    def _source_grantee(self) -> str:
        # "public" is the PUBLIC pseudo-role, not a role named after the schema.
        if self.source_schema == "public":
            return "PUBLIC"
        return quote_ident(self.source_schema)

    def protocol(self) -> List[Statement]:
        creds = self.credentials
        db = quote_ident(creds.database)
        schema = quote_ident(creds.schema)
        owner_user = quote_ident(creds.owner_user)
        app_user = quote_ident(creds.app_user)
        app_role = quote_ident(creds.app_role)
        owner_role = quote_ident(creds.owner_role)
        source_schema = quote_ident(self.source_schema)
        grantee = self._source_grantee

        return [
            Statement(
                1,
                f"rename schema {self.source_schema} to {creds.schema}",
                f"ALTER SCHEMA {source_schema} RENAME TO {schema};",
                structural=True,
            ),
            Statement(
                2,
                f"set search_path to {creds.schema}, {self.source_schema}",
                f"ALTER DATABASE {db} SET search_path TO {schema}, {source_schema};",
                structural=True,
            ),
            Statement(
                3,
                f"create app user {creds.app_user}",
                f"CREATE USER {app_user} WITH PASSWORD {quote_literal(creds.app_password)};",
                database=MAINTENANCE,
            ),
            Statement(
                3,
                f"create owner user {creds.owner_user}",
                f"CREATE USER {owner_user} WITH PASSWORD {quote_literal(creds.owner_password)};",
                database=MAINTENANCE,
            ),
            Statement(
                4,
                f"grant connect on {creds.database} to {creds.owner_user}",
                f"GRANT CONNECT ON DATABASE {db} TO {owner_user};",
            ),
            Statement(
                5,
                f"revoke all on {creds.database} from {grantee}",
                f"REVOKE ALL ON DATABASE {db} FROM {grantee};",
            ),
            Statement(
                5,
                f"revoke create on schema {creds.schema} from {grantee}",
                f"REVOKE CREATE ON SCHEMA {schema} FROM {grantee};",
            ),
            *self._role_statements(6, creds.app_role, app_role, elevated=False),
            *self._role_statements(7, creds.owner_role, owner_role, elevated=True),
            Statement(
                8,
                f"grant {creds.app_role} to {creds.app_user}",
                f"GRANT {app_role} TO {app_user};",
                database=MAINTENANCE,
            ),
            Statement(
                8,
                f"grant {creds.owner_role} to {creds.owner_user}",
                f"GRANT {owner_role} TO {owner_user};",
                database=MAINTENANCE,
            ),
        ]

    def _role_statements(self, step: int, role_name: str, role: str, elevated: bool) -> List[Statement]:
        creds = self.credentials
        db = quote_ident(creds.database)
        schema = quote_ident(creds.schema)
        owner_user = quote_ident(creds.owner_user)
        schema_privileges = "USAGE, CREATE" if elevated else "USAGE"

        statements = [
            Statement(step, f"create role {role_name}", f"CREATE ROLE {role};"),
            Statement(
                step,
                f"grant connect on {creds.database} to {role_name}",
                f"GRANT CONNECT ON DATABASE {db} TO {role};",
            ),
            Statement(
                step,
                f"grant {schema_privileges.lower()} on schema {creds.schema} to {role_name}",
                f"GRANT {schema_privileges} ON SCHEMA {schema} TO {role};",
            ),
            Statement(
                step,
                f"grant dml on all tables in {creds.schema} to {role_name}",
                f"GRANT {PG_DML} ON ALL TABLES IN SCHEMA {schema} TO {role};",
            ),
            Statement(
                step,
                f"grant usage on all sequences in {creds.schema} to {role_name}",
                f"GRANT USAGE ON ALL SEQUENCES IN SCHEMA {schema} TO {role};",
            ),
            Statement(
                step,
                f"default dml on future tables to {role_name}",
                f"ALTER DEFAULT PRIVILEGES FOR ROLE {owner_user} GRANT {PG_DML} ON TABLES TO {role};",
            ),
            Statement(
                step,
                f"default usage on future sequences to {role_name}",
                f"ALTER DEFAULT PRIVILEGES FOR ROLE {owner_user} GRANT USAGE, SELECT ON SEQUENCES TO {role};",
            ),
            Statement(
                step,
                f"default execute on future functions to {role_name}",
                f"ALTER DEFAULT PRIVILEGES FOR ROLE {owner_user} GRANT EXECUTE ON FUNCTIONS TO {role};",
            ),
        ]
        if elevated:
            statements.extend(
                [
                    Statement(
                        step,
                        f"grant temporary on {creds.database} to {role_name}",
                        f"GRANT TEMPORARY ON DATABASE {db} TO {role};",
                    ),
                    Statement(
                        step,
                        f"grant create on {creds.database} to {role_name}",
                        f"GRANT CREATE ON DATABASE {db} TO {role};",
                    ),
                ]
            )
        return statements

    def owned_objects_query(self) -> str:
        schema = quote_literal(self.credentials.schema)
        kinds = ", ".join(quote_literal(kind) for kind in OWNERSHIP_RELKINDS)
        # Sequences backing serial/identity columns follow their table.
        return (
            "SELECT c.relname, c.relkind FROM pg_class c "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            f"WHERE n.nspname = {schema} AND c.relkind IN ({kinds}) "
            "AND NOT (c.relkind = 'S' AND EXISTS ("
            "SELECT 1 FROM pg_depend d WHERE d.classid = 'pg_class'::regclass "
            "AND d.objid = c.oid AND d.deptype IN ('a', 'i'))) "
            "ORDER BY c.relkind, c.relname;"
        )

    def ownership_statements(self, objects: Iterable[Tuple[str, str]]) -> List[Statement]:
        creds = self.credentials
        schema = quote_ident(creds.schema)
        owner_user = quote_ident(creds.owner_user)
        statements = []
        for name, relkind in objects:
            keyword = OWNERSHIP_RELKINDS.get(relkind)
            if keyword is None:
                continue
            statements.append(
                Statement(
                    9,
                    f"set owner of {keyword.lower()} {creds.schema}.{name} to {creds.owner_user}",
                    f"ALTER {keyword} {schema}.{quote_catalog_ident(name)} OWNER TO {owner_user};",
                )
            )
        return statements


class PostgresQueries:
    """Catalog queries and operator commands that are not part of the protocol."""

    @staticmethod
    def ping() -> str:
        return "SELECT 1;"

    @staticmethod
    def database_exists(name: str) -> str:
        return f"SELECT 1 FROM pg_database WHERE datname = {quote_literal(pg_identifier(name, 'database name'))};"

    @staticmethod
    def active_connections(name: str) -> str:
        return (
            "SELECT count(*) FROM pg_stat_activity "
            f"WHERE datname = {quote_literal(pg_identifier(name, 'database name'))} "
            "AND state != 'idle' AND pid != pg_backend_pid();"
        )

    @staticmethod
    def create_from_template(target: str, source: str) -> str:
        return f"CREATE DATABASE {quote_ident(target)} TEMPLATE {quote_ident(source)};"

    @staticmethod
    def inspect_sessions(name: str) -> str:
        return (
            "SELECT pid, usename, application_name, state, query_start\n"
            "FROM pg_stat_activity\n"
            f"WHERE datname = {quote_literal(pg_identifier(name, 'database name'))} AND state != 'idle';"
        )

    @staticmethod
    def terminate_sessions(names: Sequence[str]) -> str:
        literals = ", ".join(quote_literal(pg_identifier(name, "database name")) for name in names)
        return (
            "SELECT pg_terminate_backend(pid)\n"
            "FROM pg_stat_activity\n"
            f"WHERE datname IN ({literals}) AND state != 'idle'\n"
            "AND pid != pg_backend_pid();"
        )

    @staticmethod
    def schema_table_count(schema: str) -> str:
        return (
            "SELECT count(*) FROM information_schema.tables "
            f"WHERE table_schema = {quote_literal(pg_identifier(schema, 'schema name'))};"
        )

    @staticmethod
    def schema_lookup(schema: str) -> str:
        return (
            "SELECT count(*) FROM information_schema.schemata "
            f"WHERE schema_name = {quote_literal(pg_identifier(schema, 'schema name'))};"
        )


class MongoCommands:
    """Shell expressions for the document engine; every result is print()ed."""

    READ_WRITE_ROLE = "readWrite"

    @staticmethod
    def _namespace_filter(names: Sequence[str]) -> str:
        checked = [mongo_name(name, "database name") for name in names]
        pattern = f"^{checked[0]}\\." if len(checked) == 1 else f"^({'|'.join(checked)})\\."
        return f"{{active: true, ns: {{$regex: {js_string(pattern)}}}}}"

    @staticmethod
    def ping() -> str:
        return "print(db.adminCommand({ping: 1}).ok)"

    @staticmethod
    def database_exists(name: str) -> str:
        name = mongo_name(name, "database name")
        return f"print(db.getMongo().getDBNames().indexOf({js_string(name)}) >= 0)"

    @classmethod
    def active_operations(cls, name: str) -> str:
        return f"print(db.getSiblingDB('admin').currentOp({cls._namespace_filter([name])}).inprog.length)"

    @classmethod
    def inspect_operations(cls, name: str) -> str:
        return f"db.getSiblingDB('admin').currentOp({cls._namespace_filter([name])})"

    @classmethod
    def kill_operations(cls, names: Sequence[str]) -> str:
        return (
            f"db.getSiblingDB('admin').currentOp({cls._namespace_filter(names)})"
            ".inprog.forEach(function (op) { db.killOp(op.opid); })"
        )

    @classmethod
    def create_user(cls, database: str, user: str, password: str) -> str:
        database = mongo_name(database, "database name")
        spec = {
            "user": mongo_name(user, "user name"),
            "pwd": password,
            "roles": [{"role": cls.READ_WRITE_ROLE, "db": database}],
        }
        return f"db.getSiblingDB({js_string(database)}).createUser({json.dumps(spec)})"

    @staticmethod
    def list_collections() -> str:
        return "print(db.getCollectionNames().length)"
