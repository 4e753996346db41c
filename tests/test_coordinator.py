import unittest
from unittest.mock import AsyncMock

from dispatchkit.errors import AlreadyResolved, CourierBusy, GatewayError, NotFound
from dispatchkit.models import AssignmentState
from factories import Stack, make_order, north_of


class TestDispatchCoordinator(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.stack = Stack()
        self.coordinator = self.stack.coordinator
        self.shop = await self.stack.add_shop()
        await self.stack.add_customer_handle()
        self.order = make_order()
        self.line = self.order.lines[0]
        await self.stack.orders.add_order(self.order)

    async def test_no_candidates_creates_nothing(self):
        result = await self.coordinator.dispatch(self.order, self.line, self.shop, 1000)

        self.assertTrue(result.no_candidates)
        self.assertEqual(result.candidates, [])
        self.assertIsNone(await self.stack.ledger.find_for_line(self.order.id, self.line.id))
        self.assertIsNone((await self.stack.orders.get_order(self.order.id)).lines[0].assignment_id)

    async def test_dispatch_pushes_to_reachable_candidates(self):
        await self.stack.add_courier("online", north_of(12.97, 77.59, 200), handle="sock-1")
        await self.stack.add_courier("no-socket", north_of(12.97, 77.59, 300))

        result = await self.coordinator.dispatch(self.order, self.line, self.shop, 1000)

        self.assertFalse(result.no_candidates)
        self.assertEqual(result.assignment.candidates, ("online", "no-socket"))
        stored = await self.stack.orders.get_order(self.order.id)
        self.assertEqual(stored.lines[0].assignment_id, result.assignment.id)

        messages = self.stack.gateway.drain("sock-1")
        self.assertEqual(len(messages), 1)
        event, payload = messages[0]
        self.assertEqual(event, "newAssignment")
        self.assertEqual(payload["sentTo"], "online")
        self.assertEqual(payload["assignmentId"], result.assignment.id)
        self.assertEqual(payload["orderId"], self.order.id)
        self.assertEqual(payload["shopName"], "Dosa Corner")
        self.assertEqual(payload["deliveryAddress"]["text"], "12 MG Road")
        self.assertEqual(payload["items"][0], {"name": "Masala Dosa", "quantity": 2, "price": 80.0})
        self.assertEqual(payload["subtotal"], 190.0)

    async def test_push_failure_does_not_fail_dispatch(self):
        await self.stack.add_courier("c1", north_of(12.97, 77.59, 200), handle="sock-1")
        self.stack.gateway.push = AsyncMock(side_effect=GatewayError("socket gone"))

        result = await self.coordinator.dispatch(self.order, self.line, self.shop, 1000)

        self.assertEqual(result.assignment.state, AssignmentState.BROADCAST)
        self.stack.gateway.push.assert_awaited_once()

    async def test_resolve_acceptance_records_assignee(self):
        await self.stack.add_courier("c1", north_of(12.97, 77.59, 200))
        result = await self.coordinator.dispatch(self.order, self.line, self.shop, 1000)

        accepted = await self.coordinator.resolve_acceptance(result.assignment.id, "c1")

        self.assertEqual(accepted.assignee, "c1")
        stored = await self.stack.orders.get_order(self.order.id)
        self.assertEqual(stored.lines[0].assignee, "c1")

    async def test_resolve_acceptance_propagates_ledger_errors(self):
        await self.stack.add_courier("c1", north_of(12.97, 77.59, 200))
        await self.stack.add_courier("c2", north_of(12.97, 77.59, 400))
        result = await self.coordinator.dispatch(self.order, self.line, self.shop, 1000)
        await self.coordinator.resolve_acceptance(result.assignment.id, "c1")

        with self.assertRaises(AlreadyResolved) as ctx:
            await self.coordinator.resolve_acceptance(result.assignment.id, "c2")
        self.assertEqual(ctx.exception.message, "this order is no longer available")

        with self.assertRaises(NotFound):
            await self.coordinator.resolve_acceptance("nope", "c2")

        stored = await self.stack.orders.get_order(self.order.id)
        self.assertEqual(stored.lines[0].assignee, "c1")

    async def test_busy_courier_told_to_finish_first(self):
        await self.stack.add_courier("c1", north_of(12.97, 77.59, 200))
        first = await self.coordinator.dispatch(self.order, self.line, self.shop, 1000)
        other = make_order("order-2")
        await self.stack.orders.add_order(other)
        # c1 is broadcast to but not busy yet, so the second dispatch still reaches them
        second = await self.coordinator.dispatch(other, other.lines[0], self.shop, 1000)
        self.assertEqual(second.assignment.candidates, ("c1",))

        await self.coordinator.resolve_acceptance(first.assignment.id, "c1")
        with self.assertRaises(CourierBusy) as ctx:
            await self.coordinator.resolve_acceptance(second.assignment.id, "c1")
        self.assertEqual(ctx.exception.message, "finish your current delivery first")

    async def test_completion_notifies_once(self):
        await self.stack.add_courier("c1", north_of(12.97, 77.59, 200))
        result = await self.coordinator.dispatch(self.order, self.line, self.shop, 1000)
        await self.coordinator.resolve_acceptance(result.assignment.id, "c1")

        done = await self.coordinator.resolve_completion(self.order, self.line, "c1")
        again = await self.coordinator.resolve_completion(self.order, self.line, "c1")

        self.assertEqual(done.state, AssignmentState.COMPLETED)
        self.assertIsNone(again)
        owner_msgs = self.stack.gateway.drain("sock-owner")
        customer_msgs = self.stack.gateway.drain("sock-customer")
        self.assertEqual([e for e, _ in owner_msgs], ["orderDelivered"])
        self.assertEqual([e for e, _ in customer_msgs], ["orderDelivered"])
        self.assertEqual(customer_msgs[0][1]["message"], "Your order has been delivered!")

    async def test_completion_survives_unreachable_owner(self):
        await self.stack.gateway.disconnect("sock-owner")
        await self.stack.add_courier("c1", north_of(12.97, 77.59, 200))
        result = await self.coordinator.dispatch(self.order, self.line, self.shop, 1000)
        await self.coordinator.resolve_acceptance(result.assignment.id, "c1")

        done = await self.coordinator.resolve_completion(self.order, self.line, "c1")

        self.assertEqual(done.state, AssignmentState.COMPLETED)
        self.assertEqual(len(self.stack.gateway.drain("sock-customer")), 1)

    async def test_completion_survives_order_store_lookup_failures(self):
        await self.stack.add_courier("c1", north_of(12.97, 77.59, 200))
        result = await self.coordinator.dispatch(self.order, self.line, self.shop, 1000)
        await self.coordinator.resolve_acceptance(result.assignment.id, "c1")
        self.stack.orders.get_shop = AsyncMock(side_effect=RuntimeError("orders db down"))
        self.stack.orders.handle_for_user = AsyncMock(side_effect=RuntimeError("orders db down"))

        done = await self.coordinator.resolve_completion(self.order, self.line, "c1")

        self.assertEqual(done.state, AssignmentState.COMPLETED)
        self.assertEqual(await self.stack.ledger.busy_couriers(["c1"]), set())

    async def test_dispatch_for_unknown_line_writes_nothing(self):
        await self.stack.add_courier("c1", north_of(12.97, 77.59, 200), handle="sock-1")
        stray = make_order("order-unknown")

        with self.assertRaises(NotFound):
            await self.coordinator.dispatch(stray, stray.lines[0], self.shop, 1000)

        self.assertIsNone(await self.stack.ledger.find_for_line(stray.id, stray.lines[0].id))
        self.assertEqual(await self.coordinator.pending_offers("c1"), [])
        self.assertEqual(self.stack.gateway.drain("sock-1"), [])

    async def test_pending_offers_and_current_job(self):
        await self.stack.add_courier("c1", north_of(12.97, 77.59, 200))
        result = await self.coordinator.dispatch(self.order, self.line, self.shop, 1000)

        offers = await self.coordinator.pending_offers("c1")
        self.assertEqual([o["assignmentId"] for o in offers], [result.assignment.id])
        self.assertIsNone(await self.coordinator.current_job("c1"))

        await self.coordinator.resolve_acceptance(result.assignment.id, "c1")
        job = await self.coordinator.current_job("c1")

        self.assertEqual(await self.coordinator.pending_offers("c1"), [])
        self.assertEqual(job["orderId"], self.order.id)
        self.assertEqual(job["customerLocation"], {"lat": 12.97, "lon": 77.59})
        self.assertAlmostEqual(job["deliveryBoyLocation"]["lat"], 12.97 + 200 / 111194.93, places=6)
        self.assertEqual(job["shopOrder"]["assignee"], "c1")


if __name__ == '__main__':
    unittest.main()
