"""Ledger API endpoints: slot contributions, direct support, paybacks."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.database import get_session
from bubbles.dependencies import get_redis_dep
from bubbles.ledger.locks import run_with_retry
from bubbles.ledger.schemas import (
    ContributionRequest,
    ContributionResponse,
    DirectSupportRequest,
    PaybackHistoryResponse,
    PendingPaybacksResponse,
    SupporterTotal,
    SupporterTotalsResponse,
    TransactionActionRequest,
    TransactionListResponse,
    TransactionResponse,
)
from bubbles.ledger.service import (
    apply_contribution,
    get_transaction,
    list_pending_paybacks,
    list_transactions,
    mark_donated,
    mark_paidback,
    payback_history,
    send_direct_support,
    supporter_totals,
)

router = APIRouter(prefix="/api/v1", tags=["Ledger"])


@router.post("/contributions", response_model=ContributionResponse)
async def contribute(
    body: ContributionRequest,
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
):
    """Contribute bubbles to a slot of a queued account."""
    result = await run_with_retry(
        lambda: apply_contribution(
            db, redis, body.from_account_id, body.to_account_id, body.amount, body.target_slot, body.kind,
        )
    )
    return ContributionResponse(**asdict(result))


@router.post("/support", response_model=TransactionResponse, status_code=201)
async def direct_support(
    body: DirectSupportRequest,
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
):
    """Send bubbles directly; the recipient later pays back or the supporter donates."""
    tx = await run_with_retry(
        lambda: send_direct_support(
            db, redis, body.from_account_id, body.to_account_id, body.amount, body.description,
        )
    )
    return TransactionResponse.model_validate(tx)


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_one(
    transaction_id: int,
    db: AsyncSession = Depends(get_session),
):
    return TransactionResponse.model_validate(await get_transaction(db, transaction_id))


@router.post("/transactions/{transaction_id}/payback", response_model=TransactionResponse)
async def payback(
    transaction_id: int,
    body: TransactionActionRequest | None = None,
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
):
    """Pay back a pending support. Returns the new payback transaction."""
    acting = body.acting_account_id if body else None
    tx = await run_with_retry(lambda: mark_paidback(db, redis, transaction_id, acting))
    return TransactionResponse.model_validate(tx)


@router.post("/transactions/{transaction_id}/donate", response_model=TransactionResponse)
async def donate(
    transaction_id: int,
    body: TransactionActionRequest | None = None,
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
):
    """Waive repayment of a pending support."""
    acting = body.acting_account_id if body else None
    tx = await run_with_retry(lambda: mark_donated(db, redis, transaction_id, acting))
    return TransactionResponse.model_validate(tx)


# ── Per-account views ──


@router.get("/accounts/{account_id}/transactions", response_model=TransactionListResponse)
async def account_transactions(
    account_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    transactions, total = await list_transactions(db, account_id, page, per_page)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/accounts/{account_id}/pending-paybacks", response_model=PendingPaybacksResponse)
async def pending_paybacks(
    account_id: int,
    db: AsyncSession = Depends(get_session),
):
    """Support received that is still owed back."""
    transactions = await list_pending_paybacks(db, account_id)
    return PendingPaybacksResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total_amount=sum(t.amount for t in transactions),
        has_pending=bool(transactions),
    )


@router.get("/accounts/{account_id}/payback-history", response_model=PaybackHistoryResponse)
async def payback_summary(
    account_id: int,
    db: AsyncSession = Depends(get_session),
):
    return PaybackHistoryResponse(**await payback_history(db, account_id))


@router.get("/accounts/{account_id}/supporters", response_model=SupporterTotalsResponse)
async def supporters(
    account_id: int,
    slot: int | None = Query(None, ge=1),
    db: AsyncSession = Depends(get_session),
):
    """Cumulative slot contributions per supporter."""
    totals = await supporter_totals(db, account_id, slot)
    return SupporterTotalsResponse(
        account_id=account_id,
        slot=slot,
        supporters=[SupporterTotal(account_id=a, total=t) for a, t in totals],
    )
