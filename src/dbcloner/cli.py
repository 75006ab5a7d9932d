import logging
import os
from datetime import datetime

import click
from rich.logging import RichHandler

from .constants import (
    DEFAULT_APP_ROLE_PREFIX,
    DEFAULT_APP_USER_SUFFIX,
    DEFAULT_AUTH_DATABASE,
    DEFAULT_BACKUP_DIR,
    DEFAULT_MAINTENANCE_DATABASE,
    DEFAULT_OWNER_ROLE_PREFIX,
    DEFAULT_PASSWORD_LENGTH,
    DEFAULT_SOURCE_SCHEMA,
    ENGINE_MONGODB,
    ENGINE_POSTGRESQL,
    FILE_DATE_FORMAT,
    SUPPORTED_ENGINES,
)
from .core import DatabaseCloner, console
from .errors import ClonerError
from .models import AdminCredential, ClonerSettings, Endpoint
from .services.config_loader import ConfigLoader


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config and config[key] is not None:
        return config[key]
    return default


def _resolve_path(path, base_dir):
    if os.path.isabs(path):
        return path
    return os.path.join(base_dir, path)


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
)


def build_settings(
    engine,
    config_values,
    databases,
    prefix,
    output_dir,
    backup,
    strict,
    transfer_ownership,
    prompt_password=True,
):
    """Freezes CLI values and config values into one ClonerSettings."""
    loader = ConfigLoader()
    values = dict(config_values)
    values["databases"] = ConfigLoader.parse_databases(_resolve_option(databases, config_values, "databases"))
    values["prefix"] = _resolve_option(prefix, config_values, "prefix")

    missing = loader.missing_required(engine, values)
    if missing:
        raise click.ClickException(
            f"Missing required configuration: {', '.join(missing)} (set them in the config file or via options)."
        )

    if engine == ENGINE_POSTGRESQL:
        admin = AdminCredential(
            host=str(values["pg_host"]),
            port=int(values["pg_port"]),
            username=str(values["pg_superuser"]),
            password=values.get("pg_superuser_password"),
        )
    else:
        password = values.get("mongo_admin_password")
        if not password and prompt_password:
            password = click.prompt(
                f"Password for MongoDB admin user '{values['mongo_admin_user']}'",
                hide_input=True,
                confirmation_prompt=True,
            )
        admin = AdminCredential(
            host=str(values["mongo_host"]),
            port=int(values["mongo_port"]),
            username=str(values["mongo_admin_user"]),
            password=password,
        )

    load_balancer = None
    if values.get("lb_host"):
        load_balancer = Endpoint(host=str(values["lb_host"]), port=int(values.get("lb_port") or admin.port))

    command_timeout = values.get("command_timeout")
    return ClonerSettings(
        engine=engine,
        databases=values["databases"],
        prefix=str(values["prefix"]),
        admin=admin,
        output_dir=output_dir,
        load_balancer=load_balancer,
        backup_before_clone=bool(_resolve_option(backup, config_values, "backup_before_clone", default=False)),
        backup_dir=_resolve_path(str(values.get("backup_dir") or DEFAULT_BACKUP_DIR), output_dir),
        strict_provisioning=bool(_resolve_option(strict, config_values, "strict_provisioning", default=False)),
        transfer_ownership=bool(
            _resolve_option(transfer_ownership, config_values, "transfer_ownership", default=False)
        ),
        command_timeout=float(command_timeout) if command_timeout is not None else None,
        password_length=int(values.get("password_length") or DEFAULT_PASSWORD_LENGTH),
        maintenance_database=str(values.get("pg_maintenance_database") or DEFAULT_MAINTENANCE_DATABASE),
        source_schema_name=str(values.get("source_schema_name") or DEFAULT_SOURCE_SCHEMA),
        app_role_prefix=str(values.get("app_role_prefix") or DEFAULT_APP_ROLE_PREFIX),
        owner_role_prefix=str(values.get("owner_role_prefix") or DEFAULT_OWNER_ROLE_PREFIX),
        auth_database=str(values.get("mongo_auth_database") or DEFAULT_AUTH_DATABASE),
        app_user_suffix=str(values.get("app_user_suffix") or DEFAULT_APP_USER_SUFFIX),
    )


@click.command()
@click.option(
    "--engine",
    required=False,
    envvar="DB_TYPE",
    type=click.Choice(SUPPORTED_ENGINES),
    help="Database engine to clone (default: postgresql). Also read from DB_TYPE.",
)
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help="Path to a YAML configuration file. Defaults to <engine>_db_clone.yml if present.",
)
@click.option("--databases", required=False, help="Comma-separated list of source databases.")
@click.option("--prefix", required=False, help="Prefix prepended to every target database name.")
@click.option(
    "--output-dir",
    required=False,
    type=click.Path(file_okay=False),
    help="Directory for password files, credential summary and run report (default: cwd).",
)
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option(
    "--backup/--no-backup",
    default=None,
    help="Dump each source database before cloning it.",
)
@click.option(
    "--strict",
    is_flag=True,
    default=None,
    help="Fail a database on the first failed provisioning statement.",
)
@click.option(
    "--transfer-ownership",
    is_flag=True,
    default=None,
    help="Make the owner user the owner of every cloned table, sequence and view (PostgreSQL).",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=None,
    help="Print the clone plan and derived names without contacting the database.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
def main(
    engine,
    config,
    databases,
    prefix,
    output_dir,
    log_file,
    backup,
    strict,
    transfer_ownership,
    dry_run,
    verbose,
):
    """Clone databases to prefixed copies and provision least-privilege users on them."""
    logger = logging.getLogger("dbcloner")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(
                os.getcwd(), ConfigLoader.default_config_name(engine or ENGINE_POSTGRESQL)
            )
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except ClonerError as exc:
        raise click.ClickException(str(exc)) from exc

    engine = _resolve_option(engine, config_values, "engine", default=ENGINE_POSTGRESQL)
    if engine not in SUPPORTED_ENGINES:
        raise click.ClickException(f"Unsupported engine '{engine}'.")

    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    dry_run = bool(_resolve_option(dry_run, config_values, "dry_run", default=False))
    output_dir = os.path.abspath(
        _resolve_option(output_dir, config_values, "output_dir", default=os.getcwd())
    )
    log_file = _resolve_option(log_file, config_values, "log_file")
    if not log_file:
        log_file = f"{engine}_db_cloner_{datetime.now().strftime(FILE_DATE_FORMAT)}.log"
    log_file = _resolve_path(log_file, output_dir)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    try:
        settings = build_settings(
            engine,
            config_values,
            databases=databases,
            prefix=prefix,
            output_dir=output_dir,
            backup=backup,
            strict=strict,
            transfer_ownership=transfer_ownership,
            prompt_password=not dry_run,
        )
    except (ClonerError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    logger.addHandler(file_handler)

    try:
        cloner = DatabaseCloner(settings=settings, dry_run=dry_run, log_file=log_file)
        exit_code = cloner.run()
    except ClonerError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        logger.removeHandler(file_handler)
        file_handler.close()

    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
