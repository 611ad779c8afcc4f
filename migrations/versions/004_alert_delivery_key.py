"""Key account alerts by delivery instead of by content.

Revision ID: 004_alert_delivery_key
Revises: 003_webhook_logs
Create Date: 2026-10-18
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "004_alert_delivery_key"
down_revision = "003_webhook_logs"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "004_alert_delivery_key.sql"


def upgrade() -> None:
    op.execute(_SQL_FILE.read_text(encoding="utf-8"))


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS account_alerts_tenant_delivery_key_uq")
    op.execute("UPDATE account_alerts SET delivery_key = 'id:' || id::text WHERE delivery_key IS NULL")
    op.execute("ALTER TABLE account_alerts ALTER COLUMN delivery_key SET NOT NULL")
    op.execute("ALTER TABLE account_alerts RENAME COLUMN delivery_key TO fingerprint")
    op.execute(
        "ALTER TABLE account_alerts "
        "ADD CONSTRAINT account_alerts_tenant_fingerprint_uq UNIQUE (tenant_id, fingerprint)"
    )
