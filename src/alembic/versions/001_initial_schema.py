"""Initial schema -- all tables, indexes, and starter riddles.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op

from bergvlei.schema_sql import (
    indexes,
    seeds,
    tables_billing,
    tables_core,
    tables_riddles,
)

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _execute_all(statements: list[str]) -> None:
    """Execute a list of SQL statements sequentially."""
    for stmt in statements:
        op.execute(stmt)


def upgrade() -> None:
    _execute_all(tables_core.ALL)
    _execute_all(tables_riddles.ALL)
    _execute_all(tables_billing.ALL)
    _execute_all(indexes.ALL)
    _execute_all(seeds.ALL)


def downgrade() -> None:
    tables = [
        "leaderboards",
        "processed_webhooks",
        "subscriptions",
        "saved_riddles",
        "riddle_attempts",
        "riddles",
        "daily_progress",
        "user_stats",
        "users",
    ]
    for table in tables:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE;")
