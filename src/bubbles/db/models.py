"""ORM models for the queue-slot ledger.

Tables are created by the Alembic migration in ``alembic/versions``;
tests build the same schema from this metadata.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from bubbles.db.base import Base

# BIGSERIAL on PostgreSQL, rowid alias on SQLite.
PrimaryKey = BigInteger().with_variant(Integer, "sqlite")
JSONType = JSON().with_variant(JSONB, "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class Account(Base):
    """Maps to the 'accounts' table.

    ``slot_progress`` holds a single layer of JSON text and is only ever
    read and written through :mod:`bubbles.ledger.slot_codec`.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("bubble_balance >= 0", name="ck_accounts_balance_non_negative"),
        CheckConstraint("queue_position >= 0", name="ck_accounts_position_non_negative"),
        CheckConstraint("queue_slot_count >= 0", name="ck_accounts_slots_non_negative"),
        Index("idx_accounts_queue_position", "queue_position"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    bubble_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    queue_position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    queue_slot_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    slot_progress: Mapped[str] = mapped_column(Text, nullable=False, default="{}", server_default="{}")
    is_top_of_queue: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )


# ---------------------------------------------------------------------------
# Contribution transactions (append-only; only status transitions)
# ---------------------------------------------------------------------------


class ContributionTransaction(Base):
    """Maps to the 'contribution_transactions' table."""

    __tablename__ = "contribution_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_contribution_transactions_amount_positive"),
        Index("idx_contribution_tx_from", "from_account_id", "kind", "status"),
        Index("idx_contribution_tx_to", "to_account_id", "kind", "status"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    from_account_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id"), nullable=False)
    to_account_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id"), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    target_slot_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    is_giveaway: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    giveaway_pool_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("giveaway_pools.id", ondelete="SET NULL"), nullable=True,
    )
    related_transaction_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("contribution_transactions.id"), nullable=True,
    )
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )


# ---------------------------------------------------------------------------
# Giveaway pools
# ---------------------------------------------------------------------------


class GiveawayPool(Base):
    """Maps to the 'giveaway_pools' table.

    At most one undistributed pool per category (partial unique index).
    """

    __tablename__ = "giveaway_pools"
    __table_args__ = (
        CheckConstraint("amount_per_account > 0", name="ck_giveaway_pools_amount_positive"),
        Index(
            "uq_giveaway_pools_open_category",
            "category",
            unique=True,
            postgresql_where=text("is_distributed = false"),
            sqlite_where=text("is_distributed = 0"),
        ),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    amount_per_account: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_amount_distributed: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    hold_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    is_distributed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    set_by_admin_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    distributed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Queue tracker (singleton row id = 1)
# ---------------------------------------------------------------------------


class QueueTracker(Base):
    """Maps to the 'queue_tracker' table. Watermark never decreases."""

    __tablename__ = "queue_tracker"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_assigned_position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )


# ---------------------------------------------------------------------------
# Notifications (transactional outbox)
# ---------------------------------------------------------------------------


class Notification(Base):
    """Maps to the 'notifications' table.

    Rows are written in the same transaction as the ledger change that
    caused them and drained by the dispatcher.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_status", "status", "id"),
        Index("idx_notifications_account", "account_id", "created_at"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False,
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
