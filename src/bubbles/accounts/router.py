"""Account API endpoints."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.accounts.schemas import (
    AccountActiveRequest,
    AccountCreateRequest,
    AccountDetailResponse,
    AccountListResponse,
    AccountResponse,
    SlotRepairBatchResponse,
    SlotRepairResponse,
)
from bubbles.accounts.service import (
    account_progress,
    create_account,
    get_account,
    list_accounts,
    repair_all_slot_progress,
    repair_slot_progress,
    set_account_active,
)
from bubbles.database import get_session
from bubbles.db.models import Account
from bubbles.ledger.locks import run_with_retry
from bubbles.ledger.schemas import DepositRequest
from bubbles.ledger.service import deposit_bubbles

router = APIRouter(prefix="/api/v1", tags=["Accounts"])


def _detail(account: Account) -> AccountDetailResponse:
    return AccountDetailResponse(
        **AccountResponse.model_validate(account).model_dump(),
        slot_progress=account_progress(account),
    )


@router.post("/accounts", response_model=AccountResponse, status_code=201)
async def create(
    body: AccountCreateRequest,
    db: AsyncSession = Depends(get_session),
):
    """Create an empty, unqueued account."""
    try:
        account = await create_account(db, body.name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return AccountResponse.model_validate(account)


@router.get("/accounts", response_model=AccountListResponse)
async def list_all(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    accounts, total = await list_accounts(db, page, per_page)
    return AccountListResponse(
        accounts=[AccountResponse.model_validate(a) for a in accounts],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/accounts/{account_id}", response_model=AccountDetailResponse)
async def get_one(
    account_id: int,
    db: AsyncSession = Depends(get_session),
):
    """Account with decoded slot progress."""
    return _detail(await get_account(db, account_id))


@router.post("/accounts/{account_id}/deposit", response_model=AccountDetailResponse)
async def deposit(
    account_id: int,
    body: DepositRequest,
    db: AsyncSession = Depends(get_session),
):
    """Credit bubbles from outside the ledger."""
    account = await run_with_retry(lambda: deposit_bubbles(db, account_id, body.amount))
    return _detail(account)


@router.patch("/accounts/{account_id}/active", response_model=AccountResponse)
async def set_active(
    account_id: int,
    body: AccountActiveRequest,
    db: AsyncSession = Depends(get_session),
):
    account = await run_with_retry(lambda: set_account_active(db, account_id, body.is_active))
    return AccountResponse.model_validate(account)


# ── Slot progress repair ──


@router.post("/accounts/slot-progress/repair", response_model=SlotRepairBatchResponse)
async def repair_all(
    db: AsyncSession = Depends(get_session),
):
    """Rewrite every account's stored progress in canonical form."""
    results = await run_with_retry(lambda: repair_all_slot_progress(db))
    return SlotRepairBatchResponse(
        repaired=[SlotRepairResponse(**asdict(r)) for r in results],
        count=len(results),
    )


@router.post("/accounts/{account_id}/slot-progress/repair", response_model=SlotRepairResponse)
async def repair_one(
    account_id: int,
    db: AsyncSession = Depends(get_session),
):
    result = await run_with_retry(lambda: repair_slot_progress(db, account_id))
    return SlotRepairResponse(**asdict(result))
