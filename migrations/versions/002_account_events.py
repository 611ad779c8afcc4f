"""Account-level event tables.

Templates, capabilities, alerts, tracking events, user preferences and flow
responses, all keyed by tenant.

Revision ID: 002_account_events
Revises: 001_core_schema
Create Date: 2026-10-18
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "002_account_events"
down_revision = "001_core_schema"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "002_account_events.sql"

_TABLES = (
    "flow_responses",
    "user_preferences",
    "tracking_events",
    "business_capabilities",
    "account_alerts",
    "whatsapp_templates",
)


def upgrade() -> None:
    op.execute(_SQL_FILE.read_text(encoding="utf-8"))


def downgrade() -> None:
    for table in _TABLES:
        op.execute(f"DROP TABLE IF EXISTS {table}")
