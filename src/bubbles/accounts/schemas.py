"""Pydantic schemas for account endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class AccountCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)


class AccountActiveRequest(BaseModel):
    is_active: bool


class AccountResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    name: str
    bubble_balance: int
    queue_position: int
    queue_slot_count: int
    is_top_of_queue: bool
    is_active: bool
    created_at: datetime


class AccountDetailResponse(AccountResponse):
    slot_progress: dict[int, int]  # {slot: bubbles}, zero slots omitted


class AccountListResponse(BaseModel):
    accounts: list[AccountResponse]
    total: int
    page: int
    per_page: int


class SlotRepairResponse(BaseModel):
    account_id: int
    changed: bool
    recovered: bool
    reason: str | None
    progress: dict[int, int]


class SlotRepairBatchResponse(BaseModel):
    repaired: list[SlotRepairResponse]
    count: int
