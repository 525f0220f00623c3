"""Queue-slot ledger tables.

Creates accounts, giveaway_pools, contribution_transactions,
queue_tracker (seeded with its singleton row) and the notifications
outbox.

Revision ID: 001_ledger_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_ledger_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Accounts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            bubble_balance BIGINT NOT NULL DEFAULT 0,
            queue_position INTEGER NOT NULL DEFAULT 0,
            queue_slot_count INTEGER NOT NULL DEFAULT 0,
            slot_progress TEXT NOT NULL DEFAULT '{}',
            is_top_of_queue BOOLEAN NOT NULL DEFAULT false,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_accounts_balance_non_negative CHECK (bubble_balance >= 0),
            CONSTRAINT ck_accounts_position_non_negative CHECK (queue_position >= 0),
            CONSTRAINT ck_accounts_slots_non_negative CHECK (queue_slot_count >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_accounts_queue_position
        ON accounts(queue_position)
    """)

    # --- Giveaway Pools ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS giveaway_pools (
            id BIGSERIAL PRIMARY KEY,
            category VARCHAR(16) NOT NULL CHECK (category IN ('Medical', 'Grocery', 'Education')),
            amount_per_account BIGINT NOT NULL,
            total_amount_distributed BIGINT NOT NULL DEFAULT 0,
            hold_amount BIGINT NOT NULL DEFAULT 0,
            is_distributed BOOLEAN NOT NULL DEFAULT false,
            is_active BOOLEAN NOT NULL DEFAULT true,
            set_by_admin_id BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            distributed_at TIMESTAMPTZ,
            CONSTRAINT ck_giveaway_pools_amount_positive CHECK (amount_per_account > 0)
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_giveaway_pools_open_category
        ON giveaway_pools(category)
        WHERE is_distributed = false
    """)

    # --- Contribution Transactions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS contribution_transactions (
            id BIGSERIAL PRIMARY KEY,
            from_account_id BIGINT NOT NULL REFERENCES accounts(id),
            to_account_id BIGINT NOT NULL REFERENCES accounts(id),
            amount BIGINT NOT NULL,
            target_slot_number INTEGER,
            kind VARCHAR(16) NOT NULL
                CHECK (kind IN ('support', 'donation', 'transfer', 'payback', 'admin_support')),
            status VARCHAR(16) NOT NULL
                CHECK (status IN ('pending', 'completed', 'cancelled', 'paidback', 'donated')),
            is_giveaway BOOLEAN NOT NULL DEFAULT false,
            giveaway_pool_id BIGINT REFERENCES giveaway_pools(id) ON DELETE SET NULL,
            related_transaction_id BIGINT REFERENCES contribution_transactions(id),
            description VARCHAR(256),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_contribution_transactions_amount_positive CHECK (amount > 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_contribution_tx_from
        ON contribution_transactions(from_account_id, kind, status)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_contribution_tx_to
        ON contribution_transactions(to_account_id, kind, status)
    """)

    # --- Queue Tracker ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS queue_tracker (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            last_assigned_position INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        INSERT INTO queue_tracker (id, last_assigned_position)
        VALUES (1, 0)
        ON CONFLICT (id) DO NOTHING
    """)

    # --- Notifications outbox ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            type VARCHAR(32) NOT NULL,
            title VARCHAR(256) NOT NULL,
            body TEXT,
            data JSONB NOT NULL DEFAULT '{}',
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            error TEXT,
            read BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            sent_at TIMESTAMPTZ,
            delivered_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_status
        ON notifications(status, id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_account
        ON notifications(account_id, created_at)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS queue_tracker CASCADE")
    op.execute("DROP TABLE IF EXISTS contribution_transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS giveaway_pools CASCADE")
    op.execute("DROP TABLE IF EXISTS accounts CASCADE")
