import unittest

from dispatchkit.errors import InvalidInput, OtpRejected
from dispatchkit.models import AssignmentState
from dispatchkit.runtime.codes import MemoryCodeStore
from dispatchkit.runtime.otp import DELIVERED, DeliveryCodeIssuer
from factories import Stack, make_order, north_of


class TestMemoryCodeStore(unittest.IsolatedAsyncioTestCase):
    async def test_code_expires(self):
        store = MemoryCodeStore()
        await store.save("live", "1234", 60)
        await store.save("stale", "5678", 0)

        self.assertEqual(await store.get("live"), "1234")
        self.assertIsNone(await store.get("stale"))

    async def test_delete(self):
        store = MemoryCodeStore()
        await store.save("k", "1234", 60)
        await store.delete("k")
        self.assertIsNone(await store.get("k"))


class TestDeliveryCodeIssuer(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.stack = Stack()
        await self.stack.add_shop()
        await self.stack.add_customer_handle()
        await self.stack.add_courier("c1", north_of(12.97, 77.59, 200))
        self.order = make_order()
        self.line = self.order.lines[0]
        await self.stack.orders.add_order(self.order)
        shop = await self.stack.orders.get_shop("shop-1")
        result = await self.stack.coordinator.dispatch(self.order, self.line, shop, 1000)
        await self.stack.coordinator.resolve_acceptance(result.assignment.id, "c1")
        self.issuer = DeliveryCodeIssuer(self.stack.coordinator, MemoryCodeStore(), ttl_seconds=300)

    async def test_issue_pushes_code_to_customer(self):
        code = await self.issuer.issue(self.order, self.line)

        self.assertEqual(len(code), 4)
        self.assertTrue(1000 <= int(code) <= 9999)
        event, payload = self.stack.gateway.drain("sock-customer")[0]
        self.assertEqual(event, "deliveryOtp")
        self.assertEqual(payload["otp"], code)
        self.assertEqual(payload["expiresIn"], 300)

    async def test_correct_code_completes_delivery(self):
        code = await self.issuer.issue(self.order, self.line)

        done = await self.issuer.verify(self.order, self.line, "c1", code)

        self.assertEqual(done.state, AssignmentState.COMPLETED)
        stored = await self.stack.orders.get_order(self.order.id)
        self.assertEqual(stored.lines[0].status, DELIVERED)
        with self.assertRaises(OtpRejected):
            await self.issuer.verify(self.order, self.line, "c1", code)

    async def test_wrong_code_is_rejected(self):
        code = await self.issuer.issue(self.order, self.line)
        wrong = "0000" if code != "0000" else "1111"

        with self.assertRaises(OtpRejected) as ctx:
            await self.issuer.verify(self.order, self.line, "c1", wrong)
        self.assertEqual(ctx.exception.message, "invalid or expired delivery code")
        self.assertIsNotNone(await self.stack.ledger.find_accepted_for_courier("c1"))

    async def test_other_courier_cannot_close_the_line(self):
        code = await self.issuer.issue(self.order, self.line)

        with self.assertRaises(InvalidInput):
            await self.issuer.verify(self.order, self.line, "c2", code)

        stored = await self.stack.orders.get_order(self.order.id)
        self.assertNotEqual(stored.lines[0].status, DELIVERED)
        self.assertEqual((await self.stack.ledger.find_accepted_for_courier("c1")).id,
                         (await self.stack.ledger.find_for_line(self.order.id, self.line.id)).id)

        done = await self.issuer.verify(self.order, self.line, "c1", code)
        self.assertEqual(done.state, AssignmentState.COMPLETED)
        self.assertEqual(await self.stack.ledger.busy_couriers(["c1"]), set())

    async def test_no_code_issued_is_rejected(self):
        with self.assertRaises(OtpRejected):
            await self.issuer.verify(self.order, self.line, "c1", "1234")


if __name__ == '__main__':
    unittest.main()
