"""
Tests for API route endpoints.

Exercises the HTTP surface end to end against the in-memory DB and fake
Stripe: envelopes, status codes, auth guards and the main order flows.
"""
import pytest

from db_models import Puppy


class TestHealthEndpoint:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["database_connected"] is True


class TestCheckoutEndpoints:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_finalize_requires_auth(self, client):
        resp = await client.post("/checkout/finalize", json={"sessionId": "cs_test_1"})
        assert resp.status_code == 401
        assert resp.json()["success"] is False

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_finalize_twice_same_order(self, client, stripe, litter, puppies, buyer, auth_headers,
                                             session_metadata):
        session_id = stripe.add_paid_session(
            session_metadata(litter, [puppies[0].id, puppies[2].id], buyer), amount_total=22000,
        )

        first = await client.post("/checkout/finalize", json={"sessionId": session_id}, headers=auth_headers(buyer))
        second = await client.post("/checkout/finalize", json={"sessionId": session_id}, headers=auth_headers(buyer))

        assert first.status_code == 200
        assert second.status_code == 200
        body = first.json()
        assert body["success"] is True
        assert body["data"]["order"]["total_amount"] == 22000
        assert sorted(i["price"] for i in body["data"]["order"]["items"]) == [10000, 12000]
        assert all(p["is_available"] is False for p in body["data"]["puppies"])
        assert second.json()["data"]["order"]["id"] == body["data"]["order"]["id"]

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_finalize_other_buyer_forbidden(self, client, stripe, litter, puppies, buyer, other_buyer,
                                                  auth_headers, session_metadata):
        session_id = stripe.add_paid_session(session_metadata(litter, [puppies[0].id], buyer))

        resp = await client.post(
            "/checkout/finalize", json={"sessionId": session_id}, headers=auth_headers(other_buyer),
        )

        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "buyer_mismatch"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_finalize_conflict_tells_client_to_refresh(self, client, stripe, litter, puppies, buyer,
                                                             other_buyer, auth_headers, session_metadata):
        taken = stripe.add_paid_session(session_metadata(litter, [puppies[1].id], other_buyer))
        mine = stripe.add_paid_session(session_metadata(litter, [puppies[1].id], buyer))
        await client.post("/checkout/finalize", json={"sessionId": taken}, headers=auth_headers(other_buyer))

        resp = await client.post("/checkout/finalize", json={"sessionId": mine}, headers=auth_headers(buyer))

        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["details"]["action"] == "refresh_cart"
        assert error["details"]["puppy_ids"] == [puppies[1].id]

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_finalize_unpaid_is_402(self, client, stripe, litter, puppies, buyer, auth_headers,
                                          session_metadata):
        session_id = stripe.add_paid_session(
            session_metadata(litter, [puppies[0].id], buyer), payment_status="unpaid",
        )
        resp = await client.post("/checkout/finalize", json={"sessionId": session_id}, headers=auth_headers(buyer))
        assert resp.status_code == 402

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_finalize_malformed_session_id(self, client, buyer, auth_headers):
        resp = await client.post("/checkout/finalize", json={"sessionId": "not-a-session"},
                                 headers=auth_headers(buyer))
        assert resp.status_code == 400

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_finalize_rate_limited(self, client, buyer, auth_headers):
        headers = auth_headers(buyer)
        for _ in range(30):
            await client.post("/checkout/finalize", json={"sessionId": "bad"}, headers=headers)
        resp = await client.post("/checkout/finalize", json={"sessionId": "bad"}, headers=headers)
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "60"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_create_session(self, client, stripe, litter, puppies, buyer, auth_headers):
        resp = await client.post(
            "/checkout/session",
            json={"litterId": litter.id, "puppyIds": [puppies[0].id], "deliveryOption": "pickup"},
            headers=auth_headers(buyer),
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["session_id"] in stripe.sessions
        assert data["url"]


class TestOrderEndpoints:

    async def _order_id(self, client, stripe, litter, puppy_ids, buyer, auth_headers, session_metadata) -> int:
        session_id = stripe.add_paid_session(session_metadata(litter, puppy_ids, buyer), amount_total=10000)
        resp = await client.post("/checkout/finalize", json={"sessionId": session_id}, headers=auth_headers(buyer))
        return resp.json()["data"]["order"]["id"]

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_cancel_then_cancel_again(self, client, db_session, stripe, litter, puppies, buyer, breeder_user,
                                            auth_headers, session_metadata):
        order_id = await self._order_id(client, stripe, litter, [puppies[0].id], buyer, auth_headers,
                                        session_metadata)

        first = await client.post(f"/orders/{order_id}/cancel", headers=auth_headers(breeder_user))
        second = await client.post(f"/orders/{order_id}/cancel", headers=auth_headers(breeder_user))

        assert first.status_code == 200
        assert first.json()["data"]["order"]["status"] == "cancelled"
        assert first.json()["data"]["puppies_released"] == 1
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "already_terminal"
        assert (await db_session.get(Puppy, puppies[0].id)).is_available is True

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_buyer_cannot_cancel(self, client, stripe, litter, puppies, buyer, auth_headers,
                                       session_metadata):
        order_id = await self._order_id(client, stripe, litter, [puppies[0].id], buyer, auth_headers,
                                        session_metadata)
        resp = await client.post(f"/orders/{order_id}/cancel", headers=auth_headers(buyer))
        assert resp.status_code == 403

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_archive_and_list_archived(self, client, stripe, litter, puppies, buyer, breeder_user,
                                             auth_headers, session_metadata):
        order_id = await self._order_id(client, stripe, litter, [puppies[0].id], buyer, auth_headers,
                                        session_metadata)
        await client.post(f"/orders/{order_id}/cancel", headers=auth_headers(breeder_user))

        archived = await client.post(f"/orders/{order_id}/archive", headers=auth_headers(breeder_user))
        listed = await client.get("/orders/archived", headers=auth_headers(breeder_user))

        assert archived.status_code == 200
        assert [o["id"] for o in listed.json()["data"]] == [order_id]

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_my_orders(self, client, stripe, litter, puppies, buyer, auth_headers, session_metadata):
        order_id = await self._order_id(client, stripe, litter, [puppies[3].id], buyer, auth_headers,
                                        session_metadata)
        resp = await client.get("/orders/mine", headers=auth_headers(buyer))
        body = resp.json()
        assert [o["id"] for o in body["data"]] == [order_id]
        assert body["data"][0]["items"][0]["puppy_id"] == puppies[3].id
        assert body["meta"]["limit"] == 50

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_force_release(self, client, stripe, litter, puppies, buyer, breeder_user, auth_headers,
                                 session_metadata):
        await self._order_id(client, stripe, litter, [puppies[0].id], buyer, auth_headers, session_metadata)
        resp = await client.post(f"/puppies/{puppies[0].id}/force-release", headers=auth_headers(breeder_user))
        assert resp.status_code == 200
        assert resp.json()["data"]["orders_cancelled"] == 1


class TestLitterEndpoints:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_create_update_delete(self, client, stripe, breeder_user, auth_headers):
        headers = auth_headers(breeder_user)
        created = await client.post("/litters", headers=headers, json={
            "name": "Winter Huskies",
            "breed": "Husky",
            "price_per_male": 150000,
            "price_per_female": 160000,
            "puppies": [{"name": "Frost", "gender": "male"}, {"name": "Snow", "gender": "female"}],
        })
        assert created.status_code == 200
        litter = created.json()["data"]
        assert litter["total_puppies"] == 2
        assert litter["stripe_product_id"] in stripe.products

        updated = await client.put(f"/litters/{litter['id']}", headers=headers, json={"price_per_female": 170000})
        assert updated.status_code == 200
        assert stripe.prices[updated.json()["data"]["stripe_female_price_id"]]["unit_amount"] == 170000

        prices = await client.get(f"/litters/{litter['id']}/prices")
        assert sorted(prices.json()["data"].values()) == [150000, 170000]

        deleted = await client.post(f"/litters/{litter['id']}/delete", headers=headers)
        assert deleted.status_code == 200
        assert deleted.json()["data"]["catalog_teardown"] == "ok"
        assert litter["stripe_product_id"] not in stripe.products

        gone = await client.delete(f"/litters/{litter['id']}", headers=headers)
        assert gone.status_code == 404

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_buyer_cannot_create_litter(self, client, buyer, auth_headers):
        resp = await client.post("/litters", headers=auth_headers(buyer), json={
            "name": "Nope", "breed": "Mutt", "price_per_male": 1, "price_per_female": 1,
        })
        assert resp.status_code == 403


class TestAdminEndpoints:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_sweep_requires_admin(self, client, breeder_user, auth_headers):
        resp = await client.post("/admin/sweep-test-fixtures", headers=auth_headers(breeder_user))
        assert resp.status_code == 403

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_seed_and_sweep(self, client, stripe, admin_user, auth_headers):
        headers = auth_headers(admin_user)
        seeded = await client.post("/admin/seed-test-litters", headers=headers)
        assert len(seeded.json()["data"]) == 2

        swept = await client.post("/admin/sweep-test-fixtures", headers=headers)
        report = swept.json()["data"]
        assert report["litters_deleted"] == 2
        assert report["products_deactivated"] == 2
        assert report["failures"] == []

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_purge_archived(self, client, admin_user, auth_headers):
        resp = await client.post("/admin/purge-archived-orders", headers=auth_headers(admin_user))
        assert resp.json()["data"] == {"orders_deleted": 0}


class TestErrorEnvelope:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_missing_litter_is_not_found(self, client):
        resp = await client.get("/litters/9999/prices")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_bad_body_is_request_validation(self, client, buyer, auth_headers):
        resp = await client.post("/checkout/session", json={"litterId": "x"}, headers=auth_headers(buyer))
        assert resp.status_code == 422
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "request_validation"
