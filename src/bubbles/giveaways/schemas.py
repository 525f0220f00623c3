"""Pydantic schemas for giveaway endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

Category = Literal["Medical", "Grocery", "Education"]


class PoolCreateRequest(BaseModel):
    category: Category
    amount_per_account: int
    admin_account_id: int | None = None


class PoolAmountRequest(BaseModel):
    amount_per_account: int


class DistributeRequest(BaseModel):
    donor_account_id: int
    category: Category
    amount: int


class PoolResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    category: str
    amount_per_account: int
    total_amount_distributed: int
    hold_amount: int
    is_distributed: bool
    is_active: bool
    set_by_admin_id: int | None
    created_at: datetime
    distributed_at: datetime | None


class PoolListResponse(BaseModel):
    pools: list[PoolResponse]


class DistributeResponse(BaseModel):
    pool_id: int
    recipient_count: int
    amount_per_recipient: int
    total_distributed: int
    retained: int
    donation_transaction_id: int


class DistributionPreviewResponse(BaseModel):
    pool_id: int
    eligible_count: int
    amount_per_account: int
    donated_amount: int
    amount_per_recipient: int
    total_distributed: int
    retained: int
