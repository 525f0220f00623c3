"""HTTP API tests: routes wired end to end over the app."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

API = "/api/v1"


async def _account(client: AsyncClient, name: str, deposit: int = 0, slots: int = 0) -> dict:
    response = await client.post(f"{API}/accounts", json={"name": name})
    assert response.status_code == 201
    account = response.json()
    if deposit:
        response = await client.post(f"{API}/accounts/{account['id']}/deposit", json={"amount": deposit})
        assert response.status_code == 200
        account = response.json()
    if slots:
        response = await client.post(f"{API}/accounts/{account['id']}/slots", json={"count": slots})
        assert response.status_code == 200
        account = response.json()
    return account


@pytest.mark.asyncio
class TestAccountsApi:
    async def test_create_and_get(self, client: AsyncClient):
        created = await _account(client, "alice")
        response = await client.get(f"{API}/accounts/{created['id']}")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "alice"
        assert data["bubble_balance"] == 0
        assert data["slot_progress"] == {}

    async def test_blank_name(self, client: AsyncClient):
        response = await client.post(f"{API}/accounts", json={"name": "  "})
        assert response.status_code == 400

    async def test_first_deposit_queues_account(self, client: AsyncClient):
        account = await _account(client, "alice", deposit=100)
        assert account["bubble_balance"] == 100
        assert account["queue_position"] == 1

    async def test_list(self, client: AsyncClient):
        await _account(client, "a")
        await _account(client, "b")
        data = (await client.get(f"{API}/accounts", params={"per_page": 1})).json()
        assert data["total"] == 2
        assert len(data["accounts"]) == 1

    async def test_deactivate(self, client: AsyncClient):
        account = await _account(client, "alice")
        response = await client.patch(f"{API}/accounts/{account['id']}/active", json={"is_active": False})
        assert response.status_code == 200
        assert response.json()["is_active"] is False


@pytest.mark.asyncio
class TestContributionsApi:
    async def test_contribution_flow(self, client: AsyncClient):
        supporter = await _account(client, "supporter", deposit=1000)
        target = await _account(client, "target", slots=2)

        payload = {"from_account_id": supporter["id"], "to_account_id": target["id"], "target_slot": 1}
        first = await client.post(f"{API}/contributions", json={**payload, "amount": 150})
        assert first.status_code == 200
        assert first.json()["new_progress"] == 150

        second = await client.post(f"{API}/contributions", json={**payload, "amount": 300})
        assert second.json() == {
            "slot_completed": True,
            "new_progress": 50,
            "bubbles_earned": 400,
            "transaction_id": second.json()["transaction_id"],
        }

        detail = (await client.get(f"{API}/accounts/{target['id']}")).json()
        assert detail["bubble_balance"] == 400
        assert detail["queue_slot_count"] == 1
        assert detail["slot_progress"] == {"1": 50}

        supporters = (await client.get(f"{API}/accounts/{target['id']}/supporters")).json()
        assert supporters["supporters"] == [{"account_id": supporter["id"], "total": 450}]

    async def test_insufficient_balance(self, client: AsyncClient):
        supporter = await _account(client, "supporter")
        target = await _account(client, "target", slots=1)
        response = await client.post(
            f"{API}/contributions",
            json={"from_account_id": supporter["id"], "to_account_id": target["id"], "amount": 10, "target_slot": 1},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "insufficient_balance"

    async def test_amount_over_capacity(self, client: AsyncClient):
        supporter = await _account(client, "supporter", deposit=1000)
        target = await _account(client, "target", slots=1)
        response = await client.post(
            f"{API}/contributions",
            json={"from_account_id": supporter["id"], "to_account_id": target["id"], "amount": 401, "target_slot": 1},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_amount"

    async def test_unknown_target(self, client: AsyncClient):
        supporter = await _account(client, "supporter", deposit=100)
        response = await client.post(
            f"{API}/contributions",
            json={"from_account_id": supporter["id"], "to_account_id": 9999, "amount": 10, "target_slot": 1},
        )
        assert response.status_code == 404
        assert response.json()["code"] == "account_not_found"

    async def test_notifications_published(self, client: AsyncClient, redis_mock):
        supporter = await _account(client, "supporter", deposit=100)
        target = await _account(client, "target", slots=1)
        await client.post(
            f"{API}/contributions",
            json={"from_account_id": supporter["id"], "to_account_id": target["id"], "amount": 10, "target_slot": 1},
        )
        assert redis_mock.publish.await_args.args[0] == f"notifications:account:{target['id']}"


@pytest.mark.asyncio
class TestPaybackApi:
    async def test_support_then_payback(self, client: AsyncClient):
        supporter = await _account(client, "supporter", deposit=100)
        receiver = await _account(client, "receiver")

        support = await client.post(
            f"{API}/support",
            json={"from_account_id": supporter["id"], "to_account_id": receiver["id"], "amount": 30},
        )
        assert support.status_code == 201
        tx_id = support.json()["id"]

        pending = (await client.get(f"{API}/accounts/{receiver['id']}/pending-paybacks")).json()
        assert pending["has_pending"] is True
        assert pending["total_amount"] == 30

        payback = await client.post(
            f"{API}/transactions/{tx_id}/payback", json={"acting_account_id": receiver["id"]}
        )
        assert payback.status_code == 200
        assert payback.json()["kind"] == "payback"
        assert payback.json()["related_transaction_id"] == tx_id

        again = await client.post(f"{API}/transactions/{tx_id}/payback")
        assert again.status_code == 409
        assert again.json()["code"] == "invalid_transaction_state"

        history = (await client.get(f"{API}/accounts/{receiver['id']}/payback-history")).json()
        assert history["total_sent"] == 30

    async def test_donate(self, client: AsyncClient):
        supporter = await _account(client, "supporter", deposit=100)
        receiver = await _account(client, "receiver")
        support = await client.post(
            f"{API}/support",
            json={"from_account_id": supporter["id"], "to_account_id": receiver["id"], "amount": 30},
        )
        response = await client.post(f"{API}/transactions/{support.json()['id']}/donate")
        assert response.status_code == 200
        assert response.json()["status"] == "donated"

    async def test_unknown_transaction(self, client: AsyncClient):
        response = await client.get(f"{API}/transactions/404")
        assert response.status_code == 404
        assert response.json()["code"] == "transaction_not_found"


@pytest.mark.asyncio
class TestQueueApi:
    async def test_queue_and_top(self, client: AsyncClient):
        first = await _account(client, "first", slots=2)
        second = await _account(client, "second", slots=1)

        queue = (await client.get(f"{API}/queue")).json()
        assert [e["account_id"] for e in queue["entries"]] == [first["id"], second["id"]]
        assert [e["queue_position"] for e in queue["entries"]] == [1, 3]

        top = (await client.get(f"{API}/queue/top")).json()
        assert top["account_id"] == first["id"]

        recomputed = (await client.post(f"{API}/queue/top/recompute")).json()
        assert recomputed["account_id"] == first["id"]

        assert (await client.post(f"{API}/queue/rebalance")).json() == {"moves": []}

    async def test_open_zero_slots_rejected(self, client: AsyncClient):
        account = await _account(client, "a")
        response = await client.post(f"{API}/accounts/{account['id']}/slots", json={"count": 0})
        assert response.status_code == 422


@pytest.mark.asyncio
class TestGiveawayApi:
    async def test_pool_lifecycle(self, client: AsyncClient):
        created = await client.post(f"{API}/giveaways", json={"category": "Medical", "amount_per_account": 10})
        assert created.status_code == 201

        duplicate = await client.post(f"{API}/giveaways", json={"category": "Medical", "amount_per_account": 10})
        assert duplicate.status_code == 409
        assert duplicate.json()["code"] == "pool_already_open"

        amount = await client.patch(f"{API}/giveaways/Medical/amount", json={"amount_per_account": 12})
        assert amount.json()["amount_per_account"] == 12

        toggled = await client.post(f"{API}/giveaways/Medical/toggle")
        assert toggled.json()["is_active"] is False

        assert (await client.delete(f"{API}/giveaways/Medical")).status_code == 200
        assert (await client.get(f"{API}/giveaways/Medical")).status_code == 404

    async def test_distribute_without_recipients(self, client: AsyncClient):
        donor = await _account(client, "donor", deposit=100)
        await client.post(f"{API}/giveaways", json={"category": "Grocery", "amount_per_account": 10})

        response = await client.post(
            f"{API}/giveaways/distribute",
            json={"donor_account_id": donor["id"], "category": "Grocery", "amount": 30},
        )
        assert response.status_code == 409
        assert response.json()["code"] == "no_eligible_recipients"

        balance = (await client.get(f"{API}/accounts/{donor['id']}")).json()["bubble_balance"]
        assert balance == 100

    async def test_distribute(self, client: AsyncClient):
        supporter = await _account(client, "supporter", deposit=100)
        receiver = await _account(client, "receiver")
        support = await client.post(
            f"{API}/support",
            json={"from_account_id": supporter["id"], "to_account_id": receiver["id"], "amount": 20},
        )
        await client.post(f"{API}/transactions/{support.json()['id']}/payback")
        await client.post(f"{API}/giveaways", json={"category": "Education", "amount_per_account": 10})

        preview = (await client.get(f"{API}/giveaways/Education/preview", params={"amount": 25})).json()
        assert preview["eligible_count"] == 1

        response = await client.post(
            f"{API}/giveaways/distribute",
            json={"donor_account_id": supporter["id"], "category": "Education", "amount": 25},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["recipient_count"] == 1
        assert data["amount_per_recipient"] == 10
        assert data["retained"] == 15

    async def test_distribute_missing_pool(self, client: AsyncClient):
        donor = await _account(client, "donor", deposit=100)
        response = await client.post(
            f"{API}/giveaways/distribute",
            json={"donor_account_id": donor["id"], "category": "Medical", "amount": 30},
        )
        assert response.status_code == 404
        assert response.json()["code"] == "pool_not_found"


@pytest.mark.asyncio
class TestNotificationsApi:
    async def test_inbox(self, client: AsyncClient):
        supporter = await _account(client, "supporter", deposit=100)
        receiver = await _account(client, "receiver")
        await client.post(
            f"{API}/support",
            json={"from_account_id": supporter["id"], "to_account_id": receiver["id"], "amount": 5},
        )

        inbox = (await client.get(f"{API}/accounts/{receiver['id']}/notifications")).json()
        assert inbox["total"] == 1
        notification = inbox["notifications"][0]
        assert notification["type"] == "support"
        assert notification["status"] == "sent"

        count = (await client.get(f"{API}/accounts/{receiver['id']}/notifications/unread-count")).json()
        assert count["count"] == 1

        read = await client.post(
            f"{API}/accounts/{receiver['id']}/notifications/{notification['id']}/read"
        )
        assert read.status_code == 200
        count = (await client.get(f"{API}/accounts/{receiver['id']}/notifications/unread-count")).json()
        assert count["count"] == 0

    async def test_delivery_callback(self, client: AsyncClient):
        supporter = await _account(client, "supporter", deposit=100)
        receiver = await _account(client, "receiver")
        await client.post(
            f"{API}/support",
            json={"from_account_id": supporter["id"], "to_account_id": receiver["id"], "amount": 5},
        )
        inbox = (await client.get(f"{API}/accounts/{receiver['id']}/notifications")).json()
        nid = inbox["notifications"][0]["id"]

        response = await client.post(f"{API}/notifications/{nid}/delivery", json={"delivered": True})
        assert response.status_code == 200
        assert response.json()["status"] == "delivered"

        missing = await client.post(f"{API}/notifications/9999/delivery", json={"delivered": True})
        assert missing.status_code == 404
