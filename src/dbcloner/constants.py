"""Shared constants for dbcloner."""

import logging

ENGINE_POSTGRESQL = "postgresql"
ENGINE_MONGODB = "mongodb"
SUPPORTED_ENGINES = (ENGINE_POSTGRESQL, ENGINE_MONGODB)

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

EXIT_SUCCESS = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2

DIR_MODE = 0o750
SECRETS_FILE_MODE = 0o600

DEFAULT_PASSWORD_LENGTH = 16
DEFAULT_APP_ROLE_PREFIX = "r_rw_"
DEFAULT_OWNER_ROLE_PREFIX = "r_rc_"
DEFAULT_SOURCE_SCHEMA = "public"
DEFAULT_MAINTENANCE_DATABASE = "postgres"
DEFAULT_AUTH_DATABASE = "admin"
DEFAULT_APP_USER_SUFFIX = "_app_user"
DEFAULT_BACKUP_DIR = "backups"

OWNER_USER_SUFFIX = "_user_owner"
APP_USER_SUFFIX = "_user"

RETRY_COOLDOWN_SECONDS = 30

MONGO_SHELLS = ("mongosh", "mongo")
MIN_MONGORESTORE_NS_VERSION = "3.4"

FILE_DATE_FORMAT = "%d%m%y"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
