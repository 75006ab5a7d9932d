"""Configuration loader for dbcloner."""

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from dbcloner.constants import ENGINE_MONGODB, ENGINE_POSTGRESQL, SUPPORTED_ENGINES
from dbcloner.errors import ClonerError
from dbcloner.errors_catalog import actionable_error


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "engine",
        "databases",
        "prefix",
        "output_dir",
        "log_file",
        "verbose",
        "dry_run",
        "backup_before_clone",
        "backup_dir",
        "strict_provisioning",
        "transfer_ownership",
        "command_timeout",
        "password_length",
        "pg_host",
        "pg_port",
        "pg_superuser",
        "pg_superuser_password",
        "pg_maintenance_database",
        "source_schema_name",
        "app_role_prefix",
        "owner_role_prefix",
        "mongo_host",
        "mongo_port",
        "mongo_admin_user",
        "mongo_admin_password",
        "mongo_auth_database",
        "app_user_suffix",
        "lb_host",
        "lb_port",
    }

    REQUIRED_KEYS = {
        ENGINE_POSTGRESQL: ("pg_host", "pg_port", "pg_superuser", "prefix", "databases"),
        ENGINE_MONGODB: ("mongo_host", "mongo_port", "mongo_admin_user", "prefix", "databases"),
    }

    @staticmethod
    def default_config_name(engine: str) -> str:
        return f"{engine}_db_clone.yml"

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ClonerError(actionable_error("config_not_found", path=str(config_path)))

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ClonerError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ClonerError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ClonerError(f"Unknown configuration keys: {unknown_list}")

        engine = parsed.get("engine")
        if engine is not None and engine not in SUPPORTED_ENGINES:
            raise ClonerError(
                f"Unsupported engine '{engine}'. Supported engines: {', '.join(SUPPORTED_ENGINES)}"
            )

        return parsed

    def missing_required(self, engine: str, values: Mapping[str, Any]) -> List[str]:
        if engine not in self.REQUIRED_KEYS:
            raise ClonerError(
                f"Unsupported engine '{engine}'. Supported engines: {', '.join(SUPPORTED_ENGINES)}"
            )
        return [key for key in self.REQUIRED_KEYS[engine] if values.get(key) in (None, "", [], ())]

    @staticmethod
    def parse_databases(raw: Union[str, List[Any], Tuple[Any, ...], None]) -> Tuple[str, ...]:
        if raw is None:
            return ()
        items = raw.split(",") if isinstance(raw, str) else [str(item) for item in raw]

        names: List[str] = []
        for item in items:
            name = item.strip()
            if name and name not in names:
                names.append(name)
        return tuple(names)
