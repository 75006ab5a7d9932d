"""Shared domain models for dbcloner."""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .constants import (
    DEFAULT_APP_ROLE_PREFIX,
    DEFAULT_APP_USER_SUFFIX,
    DEFAULT_AUTH_DATABASE,
    DEFAULT_BACKUP_DIR,
    DEFAULT_MAINTENANCE_DATABASE,
    DEFAULT_OWNER_ROLE_PREFIX,
    DEFAULT_PASSWORD_LENGTH,
    DEFAULT_SOURCE_SCHEMA,
)


@dataclass(frozen=True)
class AdminCredential:
    host: str
    port: int
    username: str
    password: Optional[str] = None


@dataclass(frozen=True)
class Endpoint:
    host: str
    port: int


@dataclass(frozen=True)
class ClonerSettings:
    """Resolved configuration for one run, built once by the CLI."""

    engine: str
    databases: Tuple[str, ...]
    prefix: str
    admin: AdminCredential
    output_dir: str
    load_balancer: Optional[Endpoint] = None
    backup_before_clone: bool = False
    backup_dir: str = DEFAULT_BACKUP_DIR
    strict_provisioning: bool = False
    transfer_ownership: bool = False
    command_timeout: Optional[float] = None
    password_length: int = DEFAULT_PASSWORD_LENGTH
    maintenance_database: str = DEFAULT_MAINTENANCE_DATABASE
    source_schema_name: str = DEFAULT_SOURCE_SCHEMA
    app_role_prefix: str = DEFAULT_APP_ROLE_PREFIX
    owner_role_prefix: str = DEFAULT_OWNER_ROLE_PREFIX
    auth_database: str = DEFAULT_AUTH_DATABASE
    app_user_suffix: str = DEFAULT_APP_USER_SUFFIX


@dataclass(frozen=True)
class CloneRequest:
    source_name: str
    target_name: str
    engine: str

    @classmethod
    def build(cls, source_name: str, prefix: str, engine: str) -> "CloneRequest":
        return cls(source_name=source_name, target_name=f"{prefix}{source_name}", engine=engine)


@dataclass(frozen=True)
class PostgresCredentials:
    database: str
    schema: str
    owner_user: str
    owner_password: str
    app_user: str
    app_password: str
    app_role: str
    owner_role: str


@dataclass(frozen=True)
class MongoCredentials:
    database: str
    app_user: str
    app_password: str


@dataclass
class ProvisioningReport:
    """Per-statement outcome of one provisioning protocol run."""

    database: str
    applied: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class DatabaseOutcome:
    source: str
    target: str
    status: str
    reason: Optional[str] = None
