"""Identifier validation and quoting for generated statements.

Every name that ends up inside a SQL statement or a shell expression goes
through one of the ``*_identifier`` helpers first. Anything outside the
allowed character set is rejected instead of escaped, so a database list
with a stray quote fails loudly before a single statement is issued.
"""

import json
import re

from dbcloner.errors import IdentifierError

PG_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
PG_MAX_IDENTIFIER_BYTES = 63

MONGO_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
MONGO_MAX_NAME_LENGTH = 63


def pg_identifier(name: str, label: str = "identifier") -> str:
    """Returns ``name`` unchanged if it is a safe PostgreSQL identifier."""
    if not isinstance(name, str) or not PG_IDENTIFIER_RE.match(name):
        raise IdentifierError(
            f"Invalid PostgreSQL {label} {name!r}: only letters, digits and underscores "
            "are allowed and it must not start with a digit."
        )
    # PostgreSQL truncates longer names silently, which would break the
    # derived user/role naming scheme.
    if len(name.encode("utf-8")) > PG_MAX_IDENTIFIER_BYTES:
        raise IdentifierError(
            f"Invalid PostgreSQL {label} {name!r}: longer than {PG_MAX_IDENTIFIER_BYTES} bytes."
        )
    return name


def mongo_name(name: str, label: str = "name") -> str:
    if not isinstance(name, str) or not MONGO_NAME_RE.match(name):
        raise IdentifierError(
            f"Invalid MongoDB {label} {name!r}: only letters, digits, '_' and '-' are allowed."
        )
    if len(name) > MONGO_MAX_NAME_LENGTH:
        raise IdentifierError(
            f"Invalid MongoDB {label} {name!r}: longer than {MONGO_MAX_NAME_LENGTH} characters."
        )
    return name


def quote_ident(name: str) -> str:
    return '"' + pg_identifier(name) + '"'


def quote_literal(value: str) -> str:
    if "\x00" in value:
        raise IdentifierError("Literal values must not contain NUL characters.")
    return "'" + value.replace("'", "''") + "'"


def js_string(value: str) -> str:
    return json.dumps(value)


def quote_catalog_ident(name: str) -> str:
    """Quotes a name read back from the catalog, which may use any character."""
    if "\x00" in name:
        raise IdentifierError("Identifiers must not contain NUL characters.")
    return '"' + name.replace('"', '""') + '"'
