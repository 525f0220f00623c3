"""Account lifecycle and slot-progress repair."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.db.models import Account
from bubbles.errors import AccountNotFound
from bubbles.ledger.locks import ledger_transaction, lock_accounts
from bubbles.ledger.slot_codec import decode_slot_progress, encode_slot_progress, inspect_slot_progress

logger = structlog.get_logger()


@dataclass(frozen=True)
class RepairResult:
    account_id: int
    changed: bool
    recovered: bool
    reason: str | None
    progress: dict[int, int]


async def create_account(db: AsyncSession, name: str) -> Account:
    name = name.strip()
    if not name:
        raise ValueError("Account name must not be empty")
    account = Account(name=name)
    db.add(account)
    await db.commit()
    logger.info("account_created", account_id=account.id)
    return account


async def get_account(db: AsyncSession, account_id: int) -> Account:
    account = await db.get(Account, account_id)
    if account is None:
        msg = f"Account {account_id} not found"
        raise AccountNotFound(msg)
    return account


async def list_accounts(
    db: AsyncSession,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[Account], int]:
    total_result = await db.execute(select(func.count()).select_from(Account))
    total = total_result.scalar_one()
    result = await db.execute(
        select(Account).order_by(Account.id).offset((page - 1) * per_page).limit(per_page)
    )
    return list(result.scalars().all()), total


async def set_account_active(db: AsyncSession, account_id: int, active: bool) -> Account:
    """Activate or deactivate an account.

    Inactive accounts keep their queue position but are skipped by the
    top-of-queue resolver and by giveaway eligibility.
    """
    async with ledger_transaction(db):
        account = (await lock_accounts(db, [account_id]))[account_id]
        account.is_active = active
    logger.info("account_active_changed", account_id=account_id, active=active)
    return account


def account_progress(account: Account) -> dict[int, int]:
    """Decoded slot progress for display."""
    return decode_slot_progress(account.slot_progress, account.queue_slot_count, account_id=account.id)


async def repair_slot_progress(db: AsyncSession, account_id: int) -> RepairResult:
    """Rewrite one account's stored progress in canonical single-layer form."""
    async with ledger_transaction(db):
        account = (await lock_accounts(db, [account_id]))[account_id]
        result = _repair(account)
    return result


async def repair_all_slot_progress(db: AsyncSession) -> list[RepairResult]:
    """Repair every account holding progress. Returns only the rows that changed."""
    async with ledger_transaction(db):
        ids_result = await db.execute(
            select(Account.id).where(Account.slot_progress != "{}").order_by(Account.id)
        )
        accounts = await lock_accounts(db, [row[0] for row in ids_result])
        results = [_repair(account) for account in accounts.values()]
    changed = [r for r in results if r.changed]
    logger.info("slot_progress_repaired", scanned=len(results), changed=len(changed))
    return changed


def _repair(account: Account) -> RepairResult:
    inspection = inspect_slot_progress(account.slot_progress, account.queue_slot_count)
    canonical = encode_slot_progress(inspection.progress)
    changed = canonical != account.slot_progress
    if changed:
        if inspection.recovered:
            logger.warning(
                "data_integrity_recovered",
                signal="DataIntegrityRecovered",
                account_id=account.id,
                reason=inspection.reason,
            )
        account.slot_progress = canonical
    return RepairResult(
        account_id=account.id,
        changed=changed,
        recovered=inspection.recovered,
        reason=inspection.reason,
        progress=inspection.progress,
    )
