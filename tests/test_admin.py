import unittest

import httpx

from dispatchkit.admin import create_admin_app
from factories import Stack, make_order, north_of


class TestAdminAPI(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.stack = Stack()
        self.shop = await self.stack.add_shop()
        await self.stack.add_courier("c1", north_of(12.97, 77.59, 200))
        await self.stack.add_courier("c2", north_of(12.97, 77.59, 400))
        self.order = make_order()
        await self.stack.orders.add_order(self.order)
        result = await self.stack.coordinator.dispatch(self.order, self.order.lines[0], self.shop, 1000)
        self.assignment_id = result.assignment.id

        app = create_admin_app(self.stack.coordinator)
        self.client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://admin")

    async def asyncTearDown(self):
        await self.client.aclose()

    async def test_health(self):
        r = await self.client.get("/health")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {"status": "ok"})

    async def test_metrics_exposition(self):
        r = await self.client.get("/metrics")
        self.assertEqual(r.status_code, 200)
        self.assertIn("dispatch_attempts_total", r.text)

    async def test_offers_then_accept_then_current(self):
        r = await self.client.get("/couriers/c1/offers")
        self.assertEqual([o["assignmentId"] for o in r.json()], [self.assignment_id])

        r = await self.client.get("/couriers/c1/current")
        self.assertEqual(r.status_code, 404)

        r = await self.client.post(f"/assignments/{self.assignment_id}/accept", json={"courier_id": "c1"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["message"], "order accepted")

        r = await self.client.get("/couriers/c1/current")
        self.assertEqual(r.json()["orderId"], self.order.id)

    async def test_accept_errors_map_to_status(self):
        r = await self.client.post("/assignments/missing/accept", json={"courier_id": "c1"})
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.json()["detail"], "assignment expired or invalid")

        r = await self.client.post(f"/assignments/{self.assignment_id}/accept", json={"courier_id": "stranger"})
        self.assertEqual(r.status_code, 400)

        await self.client.post(f"/assignments/{self.assignment_id}/accept", json={"courier_id": "c1"})
        r = await self.client.post(f"/assignments/{self.assignment_id}/accept", json={"courier_id": "c2"})
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()["detail"], "this order is no longer available")


if __name__ == '__main__':
    unittest.main()
