"""Queue API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.accounts.schemas import AccountResponse
from bubbles.database import get_session
from bubbles.ledger.locks import run_with_retry
from bubbles.queue.schemas import (
    OpenSlotsRequest,
    QueueEntryResponse,
    QueueMoveResponse,
    QueueResponse,
    RebalanceResponse,
    TopUserResponse,
)
from bubbles.queue.service import get_queue, get_top_account, open_queue_slots, rebalance_queue
from bubbles.queue.top_user import recompute_top_user

router = APIRouter(prefix="/api/v1", tags=["Queue"])


@router.get("/queue", response_model=QueueResponse)
async def list_queue(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
):
    """Queued accounts in position order."""
    accounts, total = await get_queue(db, limit, offset)
    return QueueResponse(
        entries=[
            QueueEntryResponse(
                account_id=a.id,
                name=a.name,
                queue_position=a.queue_position,
                queue_slot_count=a.queue_slot_count,
                is_top_of_queue=a.is_top_of_queue,
            )
            for a in accounts
        ],
        total=total,
    )


@router.get("/queue/top", response_model=TopUserResponse)
async def top_of_queue(
    db: AsyncSession = Depends(get_session),
):
    account = await get_top_account(db)
    return TopUserResponse(account_id=account.id if account else None)


@router.post("/queue/top/recompute", response_model=TopUserResponse)
async def recompute_top(
    db: AsyncSession = Depends(get_session),
):
    winner = await run_with_retry(lambda: recompute_top_user(db))
    return TopUserResponse(account_id=winner)


@router.post("/queue/rebalance", response_model=RebalanceResponse)
async def rebalance(
    db: AsyncSession = Depends(get_session),
):
    """Compact queue positions."""
    moves = await run_with_retry(lambda: rebalance_queue(db))
    return RebalanceResponse(
        moves=[
            QueueMoveResponse(
                account_id=m.account_id,
                old_position=m.old_position,
                new_position=m.new_position,
            )
            for m in moves
        ]
    )


@router.post("/accounts/{account_id}/slots", response_model=AccountResponse)
async def open_slots(
    account_id: int,
    body: OpenSlotsRequest,
    db: AsyncSession = Depends(get_session),
):
    """Open new slots for an account, queueing it if needed."""
    account = await run_with_retry(lambda: open_queue_slots(db, account_id, body.count))
    return AccountResponse.model_validate(account)
