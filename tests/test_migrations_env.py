"""Tests for migrations/env_helpers.py DSN-to-URL conversion."""

from __future__ import annotations

import os
import sys
from unittest.mock import patch

import pytest

# Make migrations importable without alembic context
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from migrations.env_helpers import database_url, libpq_dsn_to_url, parse_libpq_dsn  # noqa: E402


class TestParseLibpqDsn:
    def test_plain_pairs(self):
        assert parse_libpq_dsn("dbname=convoy user=svc host=db") == {
            "dbname": "convoy",
            "user": "svc",
            "host": "db",
        }

    def test_quoted_value_with_escape(self):
        params = parse_libpq_dsn(r"user=u password='it\'s a pw' host=h")
        assert params["password"] == "it's a pw"


class TestLibpqDsnToUrl:
    def test_tcp_host(self):
        dsn = "dbname=convoy user=admin password=pw host=localhost port=5432"
        assert libpq_dsn_to_url(dsn) == "postgresql+psycopg2://admin:pw@localhost:5432/convoy"

    def test_default_port(self):
        dsn = "dbname=db user=u password=p host=myhost"
        assert libpq_dsn_to_url(dsn) == "postgresql+psycopg2://u:p@myhost:5432/db"

    def test_unix_socket(self):
        dsn = "dbname=convoy user=svc password=s3cret host=/var/run/postgresql"
        assert libpq_dsn_to_url(dsn) == (
            "postgresql+psycopg2://svc:s3cret@/convoy?host=%2Fvar%2Frun%2Fpostgresql"
        )

    def test_special_chars_encoded(self):
        dsn = "dbname=db user=u@domain password=p@ss=word host=h port=5432"
        result = libpq_dsn_to_url(dsn)
        assert "u%40domain" in result
        assert "p%40ss%3Dword" in result

    def test_without_password(self):
        assert libpq_dsn_to_url("dbname=db user=u host=h") == "postgresql+psycopg2://u@h:5432/db"


class TestDatabaseUrl:
    def test_url_passthrough(self):
        with patch.dict(os.environ, {"DATABASE_URL": "postgresql+psycopg2://u:p@h/db"}):
            assert database_url() == "postgresql+psycopg2://u:p@h/db"

    def test_bare_scheme_gets_driver(self):
        with patch.dict(os.environ, {"DATABASE_URL": "postgres://u:p@h/db"}):
            assert database_url() == "postgresql+psycopg2://u:p@h/db"

    def test_dsn_converted(self):
        with patch.dict(os.environ, {"DATABASE_URL": "dbname=convoy user=sa password=pw host=h"}):
            assert database_url().startswith("postgresql+psycopg2://")

    def test_missing(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                database_url()
