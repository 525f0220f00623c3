"""Contribution ledger.

Every balance movement happens here, inside one transaction that locks
the involved accounts in ascending id order, and leaves behind exactly one
append-only ``contribution_transactions`` row per accepted operation.
Notifications go to the outbox in the same transaction and are pushed
best-effort after commit; a failed push never rolls back the ledger.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.db.models import Account, ContributionTransaction
from bubbles.errors import (
    InsufficientBalance,
    InvalidAmount,
    InvalidContribution,
    InvalidTransactionState,
    TransactionNotFound,
)
from bubbles.ledger.constants import (
    CONTRIBUTION_KINDS,
    SLOT_CAPACITY,
    TransactionKind,
    TransactionStatus,
)
from bubbles.ledger.locks import ledger_transaction, lock_accounts
from bubbles.ledger.slot_codec import decode_slot_progress, encode_slot_progress
from bubbles.notifications.dispatcher import dispatch_pending_notifications
from bubbles.notifications.service import enqueue_notification
from bubbles.queue.allocator import advance_on_slot_completion, assign_initial_position
from bubbles.queue.service import refresh_queue

logger = structlog.get_logger()


@dataclass(frozen=True)
class ContributionResult:
    slot_completed: bool
    new_progress: int
    bubbles_earned: int
    transaction_id: int


def validate_amount(amount: Any, maximum: int | None = SLOT_CAPACITY) -> int:  # noqa: ANN401
    """Reject non-integers, bools, non-positive values and values above ``maximum``."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        msg = f"Amount must be an integer, got {amount!r}"
        raise InvalidAmount(msg)
    if amount < 1 or (maximum is not None and amount > maximum):
        bound = f"1..{maximum}" if maximum is not None else "at least 1"
        msg = f"Amount must be {bound}, got {amount}"
        raise InvalidAmount(msg)
    return amount


def _coerce_kind(kind: TransactionKind | str) -> TransactionKind:
    try:
        resolved = TransactionKind(kind)
    except ValueError:
        msg = f"Unknown contribution kind: {kind!r}"
        raise InvalidContribution(msg) from None
    if resolved not in CONTRIBUTION_KINDS:
        msg = f"Kind {resolved.value!r} cannot target a slot"
        raise InvalidContribution(msg)
    return resolved


async def run_after_commit(
    db: AsyncSession,
    redis: object | None,
    notification_ids: Sequence[int],
    queue_changed: bool = False,
) -> None:
    """Best-effort side effects of a committed ledger write."""
    try:
        await dispatch_pending_notifications(db, redis, notification_ids=notification_ids)
    except Exception:
        await db.rollback()
        logger.warning("notification_dispatch_failed", notification_ids=list(notification_ids), exc_info=True)
    if queue_changed:
        await refresh_queue(db)


# ---------------------------------------------------------------------------
# Slot contributions
# ---------------------------------------------------------------------------


async def apply_contribution(
    db: AsyncSession,
    redis: object | None,
    from_account_id: int,
    to_account_id: int,
    amount: int,
    target_slot: int,
    kind: TransactionKind | str = TransactionKind.SUPPORT,
) -> ContributionResult:
    """Add ``amount`` bubbles from one account to a slot of another.

    Reaching ``SLOT_CAPACITY`` completes the slot: the target is credited
    the full capacity, any overflow stays on the slot key, and the slot
    count drops by one. When the last slot completes the account leaves
    the queue, which is then rebalanced and the top of queue recomputed.
    """
    resolved_kind = _coerce_kind(kind)
    validate_amount(amount)
    if from_account_id == to_account_id:
        msg = "An account cannot contribute to its own slot"
        raise InvalidContribution(msg)

    async with ledger_transaction(db):
        accounts = await lock_accounts(db, [from_account_id, to_account_id])
        source = accounts[from_account_id]
        target = accounts[to_account_id]

        if not target.is_active:
            msg = f"Account {target.id} is inactive"
            raise InvalidContribution(msg)
        if target.queue_slot_count <= 0:
            msg = f"Account {target.id} has no open slots"
            raise InvalidContribution(msg)
        if (
            isinstance(target_slot, bool)
            or not isinstance(target_slot, int)
            or not 1 <= target_slot <= target.queue_slot_count
        ):
            msg = f"Slot {target_slot!r} is not open on account {target.id}"
            raise InvalidContribution(msg)
        if source.bubble_balance < amount:
            msg = f"Balance {source.bubble_balance} is below {amount}"
            raise InsufficientBalance(msg)

        progress = decode_slot_progress(target.slot_progress, target.queue_slot_count, account_id=target.id)
        new_progress = progress.get(target_slot, 0) + amount
        source.bubble_balance -= amount

        completed = new_progress >= SLOT_CAPACITY
        earned = 0
        advanced = False
        # A legacy stored value of SLOT_CAPACITY can complete twice.
        while new_progress >= SLOT_CAPACITY and not advanced:
            new_progress -= SLOT_CAPACITY
            earned += SLOT_CAPACITY
            target.bubble_balance += SLOT_CAPACITY
            target.queue_slot_count = max(target.queue_slot_count - 1, 0)
            if target.queue_slot_count == 0:
                advance_on_slot_completion(target)
                advanced = True
                new_progress = 0
        if new_progress:
            progress[target_slot] = new_progress
        else:
            progress.pop(target_slot, None)

        if not advanced:
            target.slot_progress = encode_slot_progress(progress)

        tx = ContributionTransaction(
            from_account_id=source.id,
            to_account_id=target.id,
            amount=amount,
            target_slot_number=target_slot,
            kind=resolved_kind.value,
            status=TransactionStatus.COMPLETED.value,
            description=f"Slot {target_slot} {resolved_kind.value}",
        )
        db.add(tx)
        await db.flush()

        notifications = [
            await enqueue_notification(
                db,
                target.id,
                "support",
                "Support received",
                f"{source.name} added {amount} bubbles to slot {target_slot}.",
                {"transaction_id": tx.id, "from_account_id": source.id, "amount": amount, "slot": target_slot},
            ),
        ]
        if completed:
            notifications.append(
                await enqueue_notification(
                    db,
                    target.id,
                    "slot_completed",
                    "Slot completed",
                    f"Slot {target_slot} is full. {earned} bubbles were added to your balance.",
                    {"transaction_id": tx.id, "slot": target_slot, "bubbles_earned": earned},
                ),
            )
        notification_ids = [n.id for n in notifications]
        result = ContributionResult(
            slot_completed=completed,
            new_progress=new_progress,
            bubbles_earned=earned,
            transaction_id=tx.id,
        )

    logger.info(
        "contribution_applied",
        transaction_id=result.transaction_id,
        from_account_id=from_account_id,
        to_account_id=to_account_id,
        amount=amount,
        slot=target_slot,
        kind=resolved_kind.value,
        slot_completed=completed,
        left_queue=advanced,
    )
    await run_after_commit(db, redis, notification_ids, queue_changed=completed)
    return result


# ---------------------------------------------------------------------------
# Deposits and direct support
# ---------------------------------------------------------------------------


async def deposit_bubbles(db: AsyncSession, account_id: int, amount: int) -> Account:
    """Credit bubbles from outside the ledger (purchase flow, admin top-up)."""
    validate_amount(amount, maximum=None)
    async with ledger_transaction(db):
        accounts = await lock_accounts(db, [account_id])
        account = accounts[account_id]
        await assign_initial_position(db, account)
        account.bubble_balance += amount
    logger.info("bubbles_deposited", account_id=account_id, amount=amount, balance=account.bubble_balance)
    return account


async def send_direct_support(
    db: AsyncSession,
    redis: object | None,
    from_account_id: int,
    to_account_id: int,
    amount: int,
    description: str | None = None,
) -> ContributionTransaction:
    """Transfer bubbles peer to peer, outside any slot.

    The transaction stays ``pending`` until the recipient pays it back or
    the supporter marks it as a donation.
    """
    validate_amount(amount, maximum=None)
    if from_account_id == to_account_id:
        msg = "An account cannot support itself"
        raise InvalidContribution(msg)

    async with ledger_transaction(db):
        accounts = await lock_accounts(db, [from_account_id, to_account_id])
        source = accounts[from_account_id]
        target = accounts[to_account_id]
        if not target.is_active:
            msg = f"Account {target.id} is inactive"
            raise InvalidContribution(msg)
        if source.bubble_balance < amount:
            msg = f"Balance {source.bubble_balance} is below {amount}"
            raise InsufficientBalance(msg)

        source.bubble_balance -= amount
        target.bubble_balance += amount
        tx = ContributionTransaction(
            from_account_id=source.id,
            to_account_id=target.id,
            amount=amount,
            kind=TransactionKind.SUPPORT.value,
            status=TransactionStatus.PENDING.value,
            description=description or "Direct support",
        )
        db.add(tx)
        await db.flush()
        notification = await enqueue_notification(
            db,
            target.id,
            "support",
            "Support received",
            f"{source.name} sent you {amount} bubbles.",
            {"transaction_id": tx.id, "from_account_id": source.id, "amount": amount},
        )
        notification_ids = [notification.id]

    logger.info("direct_support_sent", transaction_id=tx.id, from_account_id=from_account_id,
                to_account_id=to_account_id, amount=amount)
    await run_after_commit(db, redis, notification_ids)
    return tx


# ---------------------------------------------------------------------------
# Payback / donation transitions
# ---------------------------------------------------------------------------


async def _lock_pending_support(db: AsyncSession, transaction_id: int) -> ContributionTransaction:
    result = await db.execute(
        select(ContributionTransaction)
        .where(ContributionTransaction.id == transaction_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    tx = result.scalar_one_or_none()
    if tx is None:
        msg = f"Transaction {transaction_id} not found"
        raise TransactionNotFound(msg)
    if tx.kind != TransactionKind.SUPPORT.value or tx.status != TransactionStatus.PENDING.value:
        msg = f"Transaction {transaction_id} is {tx.kind}/{tx.status}, expected pending support"
        raise InvalidTransactionState(msg)
    return tx


async def mark_paidback(
    db: AsyncSession,
    redis: object | None,
    transaction_id: int,
    acting_account_id: int | None = None,
) -> ContributionTransaction:
    """Settle a pending support by returning the same amount to the supporter.

    Only the supported account may pay back. Returns the new payback
    transaction, linked to the original through ``related_transaction_id``.
    """
    async with ledger_transaction(db):
        original = await _lock_pending_support(db, transaction_id)
        if acting_account_id is not None and acting_account_id != original.to_account_id:
            msg = "Only the supported account can pay back this transaction"
            raise InvalidTransactionState(msg)

        accounts = await lock_accounts(db, [original.from_account_id, original.to_account_id])
        payer = accounts[original.to_account_id]
        supporter = accounts[original.from_account_id]
        if payer.bubble_balance < original.amount:
            msg = f"Balance {payer.bubble_balance} is below {original.amount}"
            raise InsufficientBalance(msg)

        payer.bubble_balance -= original.amount
        supporter.bubble_balance += original.amount
        original.status = TransactionStatus.PAIDBACK.value

        payback = ContributionTransaction(
            from_account_id=payer.id,
            to_account_id=supporter.id,
            amount=original.amount,
            kind=TransactionKind.PAYBACK.value,
            status=TransactionStatus.COMPLETED.value,
            related_transaction_id=original.id,
            description=f"Payback for transaction {original.id}",
        )
        db.add(payback)
        await db.flush()
        notification = await enqueue_notification(
            db,
            supporter.id,
            "payback",
            "Support paid back",
            f"{payer.name} paid back {original.amount} bubbles.",
            {"transaction_id": payback.id, "original_transaction_id": original.id, "amount": original.amount},
        )
        notification_ids = [notification.id]

    logger.info("support_paidback", transaction_id=original.id, payback_transaction_id=payback.id,
                amount=original.amount)
    await run_after_commit(db, redis, notification_ids)
    return payback


async def mark_donated(
    db: AsyncSession,
    redis: object | None,
    transaction_id: int,
    acting_account_id: int | None = None,
) -> ContributionTransaction:
    """Waive a pending support. No balance moves; only the supporter may donate."""
    async with ledger_transaction(db):
        original = await _lock_pending_support(db, transaction_id)
        if acting_account_id is not None and acting_account_id != original.from_account_id:
            msg = "Only the supporter can mark this transaction as donated"
            raise InvalidTransactionState(msg)

        original.status = TransactionStatus.DONATED.value
        await db.flush()
        notification = await enqueue_notification(
            db,
            original.to_account_id,
            "donation",
            "Support donated",
            f"{original.amount} bubbles you received no longer need to be paid back.",
            {"transaction_id": original.id, "amount": original.amount},
        )
        notification_ids = [notification.id]

    logger.info("support_donated", transaction_id=original.id, amount=original.amount)
    await run_after_commit(db, redis, notification_ids)
    return original


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------


async def get_transaction(db: AsyncSession, transaction_id: int) -> ContributionTransaction:
    tx = await db.get(ContributionTransaction, transaction_id)
    if tx is None:
        msg = f"Transaction {transaction_id} not found"
        raise TransactionNotFound(msg)
    return tx


async def list_pending_paybacks(db: AsyncSession, account_id: int) -> list[ContributionTransaction]:
    """Pending support the account has received and still owes back."""
    result = await db.execute(
        select(ContributionTransaction)
        .where(
            ContributionTransaction.to_account_id == account_id,
            ContributionTransaction.kind == TransactionKind.SUPPORT.value,
            ContributionTransaction.status == TransactionStatus.PENDING.value,
        )
        .order_by(ContributionTransaction.created_at, ContributionTransaction.id)
    )
    return list(result.scalars().all())


async def has_pending_paybacks(db: AsyncSession, account_id: int) -> bool:
    return bool(await list_pending_paybacks(db, account_id))


async def payback_history(db: AsyncSession, account_id: int) -> dict[str, int]:
    """Totals of completed paybacks sent and received by an account."""
    sent = case((ContributionTransaction.from_account_id == account_id, ContributionTransaction.amount), else_=0)
    received = case((ContributionTransaction.to_account_id == account_id, ContributionTransaction.amount), else_=0)
    sent_count = case((ContributionTransaction.from_account_id == account_id, 1), else_=0)
    received_count = case((ContributionTransaction.to_account_id == account_id, 1), else_=0)
    result = await db.execute(
        select(
            func.coalesce(func.sum(sent), 0),
            func.coalesce(func.sum(received), 0),
            func.coalesce(func.sum(sent_count), 0),
            func.coalesce(func.sum(received_count), 0),
        ).where(
            ContributionTransaction.kind == TransactionKind.PAYBACK.value,
            ContributionTransaction.status == TransactionStatus.COMPLETED.value,
            (ContributionTransaction.from_account_id == account_id)
            | (ContributionTransaction.to_account_id == account_id),
        )
    )
    total_sent, total_received, count_sent, count_received = result.one()
    return {
        "total_sent": int(total_sent),
        "total_received": int(total_received),
        "net": int(total_received) - int(total_sent),
        "count_sent": int(count_sent),
        "count_received": int(count_received),
    }


async def supporter_totals(
    db: AsyncSession,
    account_id: int,
    slot: int | None = None,
) -> list[tuple[int, int]]:
    """Cumulative ``(supporter_id, total)`` of slot contributions received, largest first."""
    stmt = (
        select(
            ContributionTransaction.from_account_id,
            func.sum(ContributionTransaction.amount).label("total"),
        )
        .where(
            ContributionTransaction.to_account_id == account_id,
            ContributionTransaction.status == TransactionStatus.COMPLETED.value,
            ContributionTransaction.kind.in_([k.value for k in CONTRIBUTION_KINDS]),
            ContributionTransaction.target_slot_number.is_not(None),
        )
        .group_by(ContributionTransaction.from_account_id)
        .order_by(func.sum(ContributionTransaction.amount).desc(), ContributionTransaction.from_account_id)
    )
    if slot is not None:
        stmt = stmt.where(ContributionTransaction.target_slot_number == slot)
    result = await db.execute(stmt)
    return [(row.from_account_id, int(row.total)) for row in result]


async def list_transactions(
    db: AsyncSession,
    account_id: int,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[ContributionTransaction], int]:
    """Transactions sent or received by an account (paginated, most recent first)."""
    involved = (ContributionTransaction.from_account_id == account_id) | (
        ContributionTransaction.to_account_id == account_id
    )
    total_result = await db.execute(
        select(func.count()).select_from(ContributionTransaction).where(involved)
    )
    total = total_result.scalar_one()
    result = await db.execute(
        select(ContributionTransaction)
        .where(involved)
        .order_by(ContributionTransaction.created_at.desc(), ContributionTransaction.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total
