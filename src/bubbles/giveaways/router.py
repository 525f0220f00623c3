"""Giveaway API endpoints: pool administration and distribution."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.database import get_session
from bubbles.dependencies import get_redis_dep
from bubbles.giveaways.distributor import distribute_giveaway
from bubbles.giveaways.pool_service import (
    create_pool,
    get_open_pool,
    list_pools,
    preview_distribution,
    reset_pool,
    toggle_pool,
    update_pool_amount,
)
from bubbles.giveaways.schemas import (
    Category,
    DistributeRequest,
    DistributeResponse,
    DistributionPreviewResponse,
    PoolAmountRequest,
    PoolCreateRequest,
    PoolListResponse,
    PoolResponse,
)
from bubbles.ledger.locks import run_with_retry

router = APIRouter(prefix="/api/v1", tags=["Giveaways"])


@router.get("/giveaways", response_model=PoolListResponse)
async def list_all(
    include_distributed: bool = Query(False),
    db: AsyncSession = Depends(get_session),
):
    pools = await list_pools(db, include_distributed)
    return PoolListResponse(pools=[PoolResponse.model_validate(p) for p in pools])


@router.post("/giveaways", response_model=PoolResponse, status_code=201)
async def create(
    body: PoolCreateRequest,
    db: AsyncSession = Depends(get_session),
):
    """Open a pool for a category."""
    pool = await create_pool(db, body.category, body.amount_per_account, body.admin_account_id)
    return PoolResponse.model_validate(pool)


@router.get("/giveaways/{category}", response_model=PoolResponse)
async def get_open(
    category: Category,
    db: AsyncSession = Depends(get_session),
):
    pool = await get_open_pool(db, category)
    if pool is None:
        raise HTTPException(status_code=404, detail=f"No open giveaway pool for {category}")
    return PoolResponse.model_validate(pool)


@router.patch("/giveaways/{category}/amount", response_model=PoolResponse)
async def update_amount(
    category: Category,
    body: PoolAmountRequest,
    db: AsyncSession = Depends(get_session),
):
    pool = await update_pool_amount(db, category, body.amount_per_account)
    return PoolResponse.model_validate(pool)


@router.post("/giveaways/{category}/toggle", response_model=PoolResponse)
async def toggle(
    category: Category,
    db: AsyncSession = Depends(get_session),
):
    """Enable or disable the open pool."""
    pool = await toggle_pool(db, category)
    return PoolResponse.model_validate(pool)


@router.delete("/giveaways/{category}", status_code=200)
async def reset(
    category: Category,
    db: AsyncSession = Depends(get_session),
):
    """Delete the open pool of a category."""
    pool_id = await reset_pool(db, category)
    return {"detail": f"Giveaway pool {pool_id} reset"}


@router.get("/giveaways/{category}/preview", response_model=DistributionPreviewResponse)
async def preview(
    category: Category,
    amount: int | None = Query(None, ge=1),
    donor_account_id: int | None = Query(None),
    db: AsyncSession = Depends(get_session),
):
    """Projected split for a donation, without moving bubbles."""
    return DistributionPreviewResponse(
        **await preview_distribution(db, category, amount, donor_account_id)
    )


@router.post("/giveaways/distribute", response_model=DistributeResponse)
async def distribute(
    body: DistributeRequest,
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
):
    """Donate bubbles and distribute the category's open pool."""
    result = await run_with_retry(
        lambda: distribute_giveaway(db, redis, body.donor_account_id, body.category, body.amount)
    )
    return DistributeResponse(**asdict(result))
