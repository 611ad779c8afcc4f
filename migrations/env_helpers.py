"""DATABASE_URL handling for Alembic.

The service accepts DATABASE_URL either as a URL or as a libpq
``key=value`` string (psycopg2 takes both); SQLAlchemy needs a URL. Kept
apart from env.py so it can be imported without an Alembic context.
"""

from __future__ import annotations

import os
import re
from urllib.parse import quote_plus

_DRIVER_PREFIX = "postgresql+psycopg2://"

# key=value or key='quoted value' with backslash escapes
_LIBPQ_PAIR = re.compile(r"\s*(\w+)\s*=\s*(?:'((?:[^'\\]|\\.)*)'|(\S*))")


def parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse a libpq keyword/value connection string."""
    params: dict[str, str] = {}
    for match in _LIBPQ_PAIR.finditer(dsn):
        key, quoted, plain = match.groups()
        params[key] = re.sub(r"\\(.)", r"\1", quoted) if quoted is not None else plain
    return params


def libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq DSN to a SQLAlchemy URL.

    A host starting with "/" is a Unix socket directory and is passed as the
    ``host`` query parameter.
    """
    params = parse_libpq_dsn(dsn)
    user = quote_plus(params.get("user", ""))
    password = quote_plus(params.get("password", ""))
    dbname = quote_plus(params.get("dbname", ""))
    host = params.get("host", "localhost")
    port = params.get("port", "5432")

    credentials = f"{user}:{password}@" if password else (f"{user}@" if user else "")
    if host.startswith("/"):
        return f"{_DRIVER_PREFIX}{credentials}/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_PREFIX}{credentials}{host}:{port}/{dbname}"


def database_url() -> str:
    """SQLAlchemy URL for DATABASE_URL.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return libpq_dsn_to_url(url)
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return _DRIVER_PREFIX + url[len(scheme):]
    return url
