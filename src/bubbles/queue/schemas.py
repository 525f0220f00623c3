"""Pydantic schemas for queue endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class OpenSlotsRequest(BaseModel):
    count: int = Field(..., ge=1)


class QueueEntryResponse(BaseModel):
    account_id: int
    name: str
    queue_position: int
    queue_slot_count: int
    is_top_of_queue: bool


class QueueResponse(BaseModel):
    entries: list[QueueEntryResponse]
    total: int


class QueueMoveResponse(BaseModel):
    account_id: int
    old_position: int
    new_position: int


class RebalanceResponse(BaseModel):
    moves: list[QueueMoveResponse]


class TopUserResponse(BaseModel):
    account_id: int | None
