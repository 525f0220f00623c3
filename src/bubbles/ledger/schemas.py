"""Pydantic schemas for ledger endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

# --- Requests ---


class ContributionRequest(BaseModel):
    from_account_id: int
    to_account_id: int
    amount: int  # 1..400, checked by the ledger
    target_slot: int
    kind: Literal["support", "admin_support", "payback"] = "support"


class DirectSupportRequest(BaseModel):
    from_account_id: int
    to_account_id: int
    amount: int
    description: str | None = None


class DepositRequest(BaseModel):
    amount: int


class TransactionActionRequest(BaseModel):
    acting_account_id: int | None = None


# --- Responses ---


class ContributionResponse(BaseModel):
    slot_completed: bool
    new_progress: int
    bubbles_earned: int
    transaction_id: int


class TransactionResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    from_account_id: int
    to_account_id: int
    amount: int
    target_slot_number: int | None
    kind: str
    status: str
    is_giveaway: bool
    giveaway_pool_id: int | None
    related_transaction_id: int | None
    description: str | None
    created_at: datetime


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    page: int
    per_page: int


class PendingPaybacksResponse(BaseModel):
    transactions: list[TransactionResponse]
    total_amount: int
    has_pending: bool


class PaybackHistoryResponse(BaseModel):
    total_sent: int
    total_received: int
    net: int
    count_sent: int
    count_received: int


class SupporterTotal(BaseModel):
    account_id: int
    total: int


class SupporterTotalsResponse(BaseModel):
    account_id: int
    slot: int | None
    supporters: list[SupporterTotal]
