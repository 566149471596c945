"""001: create credits_balances and credit_logs tables

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE credits_balances (
            user_id        VARCHAR(64) PRIMARY KEY,
            credits        BIGINT      NOT NULL DEFAULT 0,
            last_updated   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_credits_balances_credits_gte_0 CHECK (credits >= 0)
        );
    """)
    op.execute("""
        CREATE TABLE credit_logs (
            id             VARCHAR(128) PRIMARY KEY,
            user_id        VARCHAR(64)  NOT NULL,
            amount         BIGINT       NOT NULL,
            reason         VARCHAR(20)  NOT NULL,
            description    VARCHAR(500),
            metadata       JSONB,
            reference_id   VARCHAR(64),
            created_at     TIMESTAMPTZ  NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_credit_logs_reason CHECK (reason IN (
                'usage', 'purchase', 'refund', 'bonus', 'subscription', 'admin', 'other'
            ))
        );
    """)
    op.execute(
        "CREATE INDEX idx_credit_logs_user_created ON credit_logs (user_id, created_at DESC);"
    )
    op.execute("COMMENT ON TABLE credit_logs IS 'Append-only credits transaction log';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS credit_logs CASCADE;")
    op.execute("DROP TABLE IF EXISTS credits_balances CASCADE;")
