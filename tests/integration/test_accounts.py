"""Integration tests for account lifecycle and slot-progress repair."""

from __future__ import annotations

import json

import pytest

from bubbles.accounts.service import (
    account_progress,
    create_account,
    get_account,
    list_accounts,
    repair_all_slot_progress,
    repair_slot_progress,
    set_account_active,
)
from bubbles.errors import AccountNotFound


@pytest.mark.asyncio
class TestLifecycle:
    async def test_create(self, db_session):
        account = await create_account(db_session, "  alice ")
        assert account.id is not None
        assert account.name == "alice"
        assert account.bubble_balance == 0
        assert account.queue_position == 0
        assert account.slot_progress == "{}"

    async def test_blank_name_rejected(self, db_session):
        with pytest.raises(ValueError):
            await create_account(db_session, "   ")

    async def test_get_missing(self, db_session):
        with pytest.raises(AccountNotFound):
            await get_account(db_session, 12345)

    async def test_list(self, db_session, make_account):
        for _ in range(3):
            await make_account()
        accounts, total = await list_accounts(db_session, page=1, per_page=2)
        assert total == 3
        assert [a.name for a in accounts] == ["account-1", "account-2"]

    async def test_deactivate(self, db_session, make_account, reload_account):
        account = await make_account(position=1, slots=1)
        await set_account_active(db_session, account.id, False)
        account = await reload_account(account.id)
        assert account.is_active is False
        assert account.queue_position == 1


@pytest.mark.asyncio
class TestRepair:
    """Stored progress is rewritten in canonical single-layer form."""

    async def test_double_encoded_is_unwrapped(self, db_session, make_account, reload_account):
        account = await make_account(position=1, slots=2, progress=json.dumps(json.dumps({"2": 30, "1": 10})))

        result = await repair_slot_progress(db_session, account.id)

        assert result.changed is True
        assert result.recovered is False
        assert result.progress == {1: 10, 2: 30}
        assert (await reload_account(account.id)).slot_progress == '{"1": 10, "2": 30}'

    async def test_corrupt_is_reset(self, db_session, make_account, reload_account):
        corrupt = json.dumps({str(i): c for i, c in enumerate('{"1": 50}', start=1)})
        account = await make_account(position=1, slots=1, progress=corrupt)

        result = await repair_slot_progress(db_session, account.id)

        assert result.changed is True
        assert result.recovered is True
        assert result.reason == "corrupt_entries"
        assert (await reload_account(account.id)).slot_progress == "{}"

    async def test_canonical_is_untouched(self, db_session, make_account):
        account = await make_account(position=1, slots=1, progress='{"1": 120}')
        result = await repair_slot_progress(db_session, account.id)
        assert result.changed is False

    async def test_repair_all_returns_changed_rows(self, db_session, make_account):
        clean = await make_account(position=1, slots=1, progress='{"1": 5}')
        dirty = await make_account(position=2, slots=1, progress='{"1": "7"}')
        await make_account()

        changed = await repair_all_slot_progress(db_session)

        assert [r.account_id for r in changed] == [dirty.id]
        assert clean.id not in {r.account_id for r in changed}

    async def test_account_progress(self, make_account):
        account = await make_account(position=1, slots=2, progress='{"1": "40", "2": 3}')
        assert account_progress(account) == {1: 40, 2: 3}
