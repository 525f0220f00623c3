"""Integration tests for apply_contribution: arithmetic, validation, side effects."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.db.models import Account, ContributionTransaction, Notification
from bubbles.errors import (
    AccountNotFound,
    InsufficientBalance,
    InvalidAmount,
    InvalidContribution,
)
from bubbles.ledger.service import apply_contribution


async def _total_bubbles(db: AsyncSession) -> int:
    """Balances plus bubbles parked in slot progress."""
    balances = (await db.execute(select(func.sum(Account.bubble_balance)))).scalar_one() or 0
    rows = (await db.execute(select(Account.slot_progress))).scalars().all()
    parked = sum(sum(json.loads(raw).values()) for raw in rows)
    return balances + parked


@pytest.mark.asyncio
class TestCompletionArithmetic:
    """150 then 300 into an empty slot: overflow 50, target +400, one slot fewer."""

    async def test_partial_then_complete(self, db_session, make_account, reload_account):
        supporter = await make_account(balance=1000)
        target = await make_account(position=1, slots=2)

        first = await apply_contribution(db_session, None, supporter.id, target.id, 150, 1)
        assert first.slot_completed is False
        assert first.new_progress == 150
        assert first.bubbles_earned == 0

        second = await apply_contribution(db_session, None, supporter.id, target.id, 300, 1)
        assert second.slot_completed is True
        assert second.new_progress == 50
        assert second.bubbles_earned == 400

        target = await reload_account(target.id)
        supporter = await reload_account(supporter.id)
        assert json.loads(target.slot_progress) == {"1": 50}
        assert target.bubble_balance == 400
        assert target.queue_slot_count == 1
        assert supporter.bubble_balance == 550

    async def test_exact_completion_deletes_key(self, db_session, make_account, reload_account):
        supporter = await make_account(balance=400)
        target = await make_account(position=1, slots=2, progress='{"1": 100, "2": 30}')

        result = await apply_contribution(db_session, None, supporter.id, target.id, 300, 1)
        assert result.slot_completed is True
        assert result.new_progress == 0

        target = await reload_account(target.id)
        assert json.loads(target.slot_progress) == {"2": 30}

    async def test_last_slot_advances_account_out_of_queue(self, db_session, make_account, reload_account):
        supporter = await make_account(balance=400)
        target = await make_account(position=1, slots=1, progress='{"1": 350}')

        result = await apply_contribution(db_session, None, supporter.id, target.id, 100, 1)
        assert result.slot_completed is True
        assert result.new_progress == 0

        target = await reload_account(target.id)
        assert target.queue_position == 0
        assert target.queue_slot_count == 0
        assert target.slot_progress == "{}"
        assert target.is_top_of_queue is False
        assert target.bubble_balance == 400

    async def test_progress_never_persists_at_capacity(self, db_session, make_account, reload_account):
        supporter = await make_account(balance=2000)
        target = await make_account(position=1, slots=3)

        for amount in (399, 1, 250, 150, 400):
            await apply_contribution(db_session, None, supporter.id, target.id, amount, 1)
            stored = json.loads((await reload_account(target.id)).slot_progress)
            assert all(0 <= v < 400 for v in stored.values())

    async def test_stored_full_slot_completes_twice(self, db_session, make_account, reload_account):
        supporter = await make_account(balance=400)
        target = await make_account(position=1, slots=3, progress='{"1": 400}')

        result = await apply_contribution(db_session, None, supporter.id, target.id, 400, 1)
        assert result.slot_completed is True
        assert result.new_progress == 0
        assert result.bubbles_earned == 800

        target = await reload_account(target.id)
        assert json.loads(target.slot_progress) == {}
        assert target.bubble_balance == 800
        assert target.queue_slot_count == 1

    async def test_stored_full_slot_keeps_remainder_below_capacity(self, db_session, make_account, reload_account):
        supporter = await make_account(balance=100)
        target = await make_account(position=1, slots=3, progress='{"1": 400}')

        result = await apply_contribution(db_session, None, supporter.id, target.id, 50, 1)
        assert result.new_progress == 50
        assert result.bubbles_earned == 400

        target = await reload_account(target.id)
        assert json.loads(target.slot_progress) == {"1": 50}
        assert target.queue_slot_count == 2

    async def test_stored_full_last_slot_leaves_queue(self, db_session, make_account, reload_account):
        supporter = await make_account(balance=400)
        target = await make_account(position=1, slots=1, progress='{"1": 400}')

        result = await apply_contribution(db_session, None, supporter.id, target.id, 400, 1)
        assert result.bubbles_earned == 400

        target = await reload_account(target.id)
        assert target.queue_position == 0
        assert target.slot_progress == "{}"

    async def test_conservation(self, db_session, make_account):
        """Internal contributions never create or destroy bubbles."""
        a = await make_account(balance=900)
        b = await make_account(balance=300, position=1, slots=2)
        c = await make_account(balance=0, position=3, slots=2)
        before = await _total_bubbles(db_session)

        await apply_contribution(db_session, None, a.id, b.id, 250, 1)
        await apply_contribution(db_session, None, a.id, c.id, 200, 2)
        await apply_contribution(db_session, None, b.id, c.id, 120, 2)
        await apply_contribution(db_session, None, a.id, b.id, 149, 1)

        assert await _total_bubbles(db_session) == before

    async def test_double_encoded_progress_is_repaired_on_write(self, db_session, make_account, reload_account):
        supporter = await make_account(balance=100)
        raw = json.dumps(json.dumps({"1": 50}))
        target = await make_account(position=1, slots=1, progress=raw)

        result = await apply_contribution(db_session, None, supporter.id, target.id, 25, 1)
        assert result.new_progress == 75
        assert (await reload_account(target.id)).slot_progress == '{"1": 75}'

    async def test_corrupt_progress_restarts_from_zero(self, db_session, make_account, reload_account):
        supporter = await make_account(balance=100)
        corrupt = json.dumps({str(i): "x" for i in range(1, 30)})
        target = await make_account(position=1, slots=2, progress=corrupt)

        result = await apply_contribution(db_session, None, supporter.id, target.id, 40, 2)
        assert result.new_progress == 40
        assert json.loads((await reload_account(target.id)).slot_progress) == {"2": 40}


@pytest.mark.asyncio
class TestValidation:
    """Rejected contributions change nothing."""

    @pytest.mark.parametrize("amount", [0, -1, 401, 10.5, True])
    async def test_invalid_amounts(self, db_session, make_account, amount):
        supporter = await make_account(balance=1000)
        target = await make_account(position=1, slots=1)
        with pytest.raises(InvalidAmount):
            await apply_contribution(db_session, None, supporter.id, target.id, amount, 1)

    async def test_insufficient_balance(self, db_session, make_account, reload_account):
        supporter_id = (await make_account(balance=10)).id
        target_id = (await make_account(position=1, slots=1)).id
        with pytest.raises(InsufficientBalance):
            await apply_contribution(db_session, None, supporter_id, target_id, 50, 1)
        assert (await reload_account(supporter_id)).bubble_balance == 10
        count = (await db_session.execute(select(func.count()).select_from(ContributionTransaction))).scalar_one()
        assert count == 0

    async def test_self_contribution_rejected(self, db_session, make_account):
        account = await make_account(balance=100, position=1, slots=1)
        with pytest.raises(InvalidContribution):
            await apply_contribution(db_session, None, account.id, account.id, 10, 1)

    @pytest.mark.parametrize("slot", [0, 3, -1])
    async def test_slot_out_of_range(self, db_session, make_account, slot):
        supporter = await make_account(balance=100)
        target = await make_account(position=1, slots=2)
        with pytest.raises(InvalidContribution):
            await apply_contribution(db_session, None, supporter.id, target.id, 10, slot)

    async def test_unqueued_target(self, db_session, make_account):
        supporter = await make_account(balance=100)
        target = await make_account()
        with pytest.raises(InvalidContribution):
            await apply_contribution(db_session, None, supporter.id, target.id, 10, 1)

    async def test_inactive_target(self, db_session, make_account):
        supporter = await make_account(balance=100)
        target = await make_account(position=1, slots=1, active=False)
        with pytest.raises(InvalidContribution):
            await apply_contribution(db_session, None, supporter.id, target.id, 10, 1)

    async def test_unsupported_kind(self, db_session, make_account):
        supporter = await make_account(balance=100)
        target = await make_account(position=1, slots=1)
        with pytest.raises(InvalidContribution):
            await apply_contribution(db_session, None, supporter.id, target.id, 10, 1, kind="donation")

    async def test_missing_account(self, db_session, make_account):
        supporter = await make_account(balance=100)
        with pytest.raises(AccountNotFound):
            await apply_contribution(db_session, None, supporter.id, 999_999, 10, 1)


@pytest.mark.asyncio
class TestSideEffects:
    """Transaction log, outbox and queue refresh after a contribution."""

    async def test_transaction_recorded(self, db_session, make_account):
        supporter = await make_account(balance=100)
        target = await make_account(position=1, slots=1)

        result = await apply_contribution(db_session, None, supporter.id, target.id, 60, 1, kind="admin_support")
        tx = await db_session.get(ContributionTransaction, result.transaction_id)
        assert tx.amount == 60
        assert tx.target_slot_number == 1
        assert tx.kind == "admin_support"
        assert tx.status == "completed"
        assert tx.from_account_id == supporter.id
        assert tx.to_account_id == target.id

    async def test_notifications_published_after_commit(self, db_session, make_account, redis_mock: AsyncMock):
        supporter = await make_account(balance=500)
        target = await make_account(position=1, slots=2)

        await apply_contribution(db_session, redis_mock, supporter.id, target.id, 400, 1)

        channels = [call.args[0] for call in redis_mock.publish.await_args_list]
        assert channels == [f"notifications:account:{target.id}"] * 2
        statuses = (await db_session.execute(select(Notification.status))).scalars().all()
        assert sorted(statuses) == ["sent", "sent"]

    async def test_push_failure_keeps_ledger_change(self, db_session, make_account, reload_account, redis_mock):
        redis_mock.publish.side_effect = ConnectionError("redis down")
        supporter = await make_account(balance=100)
        target = await make_account(position=1, slots=1)

        result = await apply_contribution(db_session, redis_mock, supporter.id, target.id, 30, 1)
        assert result.new_progress == 30
        assert (await reload_account(supporter.id)).bubble_balance == 70

        notification = (await db_session.execute(select(Notification))).scalar_one()
        assert notification.status == "pending"
        assert notification.attempts == 1
        assert "redis down" in notification.error

    async def test_completion_refreshes_queue(self, db_session, make_account, reload_account):
        supporter = await make_account(balance=400)
        first = await make_account(position=1, slots=1, progress='{"1": 300}')
        second = await make_account(position=2, slots=2)

        await apply_contribution(db_session, None, supporter.id, first.id, 100, 1)

        second = await reload_account(second.id)
        assert second.queue_position == 1
        assert second.is_top_of_queue is True
