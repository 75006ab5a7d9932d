"""Actionable error catalog for dbcloner."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "config_not_found": {
        "what": "Configuration file not found: {path}",
        "next": "Copy the example configuration to {path} and fill in the connection settings.",
    },
    "connection_failed": {
        "what": "Failed to connect to {engine} at {host}:{port} as {user}.",
        "next": "Check the host, port and admin credentials in your configuration file.",
    },
    "client_not_found": {
        "what": "Required client program not found: {program}",
        "next": "Install the {engine} client tools and make sure they are on PATH.",
    },
    "client_too_old": {
        "what": "{program} {found} is too old; at least {required} is required.",
        "next": "Upgrade the {engine} database tools before cloning.",
    },
    "source_missing": {
        "what": "Source database does not exist: {name}",
        "next": "Check the spelling in the database list or remove it from the run.",
    },
    "active_connections": {
        "what": "Active connections detected on {names}.",
        "next": "Terminate the sessions with the commands above, wait {cooldown} seconds and run again.",
    },
    "target_exists": {
        "what": "Target database {name} already exists, skipping clone.",
        "next": "Drop {name} first if a fresh clone is needed.",
    },
    "backup_failed": {
        "what": "Backup of {name} failed, clone aborted.",
        "next": "Check free space and permissions on {backup_dir}, or disable backups.",
    },
    "clone_failed": {
        "what": "Failed to clone database: {source} -> {target}",
        "next": "Inspect the log file for the client error output and retry.",
    },
    "structural_step_failed": {
        "what": "Provisioning step '{step}' failed on {target}; the database is NOT provisioned.",
        "next": "Fix the cause shown in the log, drop {target} and run again.",
    },
    "strict_statement_failed": {
        "what": "Provisioning statement '{step}' failed on {target} in strict mode.",
        "next": "Fix the cause shown in the log, drop {target} and run again.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
