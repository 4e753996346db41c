import asyncio
import uuid
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from dispatchkit.errors import AlreadyResolved, CourierBusy, InvalidInput, NotFound
from dispatchkit.ledger.interfaces import AssignmentLedger
from dispatchkit.models import Assignment, AssignmentState, utcnow


class MemoryAssignmentLedger(AssignmentLedger):
    """
    In-memory ledger. Every check-and-write runs under one asyncio.Lock
    with no await inside the critical section.
    """
    def __init__(self):
        self._assignments: Dict[str, Assignment] = {}
        self._by_line: Dict[Tuple[str, str], str] = {}
        # courier id -> accepted assignment id; acts as the uniqueness constraint
        self._accepted: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    def _is_current(self, assignment: Assignment) -> bool:
        return self._by_line.get((assignment.order_id, assignment.shop_order_id)) == assignment.id

    async def create(self, order_id: str, shop_order_id: str, shop_id: str,
                     candidates: Sequence[str]) -> Assignment:
        if not candidates:
            raise InvalidInput("cannot create an assignment without candidates")

        async with self._lock:
            line = (order_id, shop_order_id)
            previous = self._assignments.get(self._by_line.get(line, ""))
            if previous is not None and previous.state == AssignmentState.ACCEPTED:
                raise InvalidInput(f"line {shop_order_id} of order {order_id} is already accepted")

            assignment = Assignment(
                id=uuid.uuid4().hex,
                order_id=order_id,
                shop_order_id=shop_order_id,
                shop_id=shop_id,
                candidates=tuple(dict.fromkeys(candidates)),
            )
            self._assignments[assignment.id] = assignment
            self._by_line[line] = assignment.id
            return assignment.model_copy()

    async def accept(self, assignment_id: str, courier_id: str) -> Assignment:
        async with self._lock:
            assignment = self._assignments.get(assignment_id)
            if assignment is None:
                raise NotFound(f"assignment {assignment_id} not found")
            if assignment.state != AssignmentState.BROADCAST or not self._is_current(assignment):
                raise AlreadyResolved(f"assignment {assignment_id} is {assignment.state.value}")
            if courier_id not in assignment.candidates:
                raise InvalidInput(f"courier {courier_id} was not offered assignment {assignment_id}")
            if courier_id in self._accepted:
                raise CourierBusy(f"courier {courier_id} already holds {self._accepted[courier_id]}")

            assignment.assignee = courier_id
            assignment.state = AssignmentState.ACCEPTED
            assignment.accepted_at = utcnow()
            self._accepted[courier_id] = assignment_id
            return assignment.model_copy()

    async def complete(self, order_id: str, shop_order_id: str, courier_id: str) -> Optional[Assignment]:
        async with self._lock:
            assignment = self._assignments.get(self._accepted.get(courier_id, ""))
            if (assignment is None
                    or assignment.order_id != order_id
                    or assignment.shop_order_id != shop_order_id):
                return None

            assignment.state = AssignmentState.COMPLETED
            del self._accepted[courier_id]
            return assignment.model_copy()

    async def get(self, assignment_id: str) -> Optional[Assignment]:
        async with self._lock:
            assignment = self._assignments.get(assignment_id)
            return assignment.model_copy() if assignment else None

    async def find_for_line(self, order_id: str, shop_order_id: str) -> Optional[Assignment]:
        async with self._lock:
            assignment = self._assignments.get(self._by_line.get((order_id, shop_order_id), ""))
            return assignment.model_copy() if assignment else None

    async def find_active_for_courier(self, courier_id: str) -> List[Assignment]:
        async with self._lock:
            return [
                a.model_copy() for a in self._assignments.values()
                if a.state == AssignmentState.BROADCAST
                and courier_id in a.candidates
                and self._is_current(a)
            ]

    async def find_accepted_for_courier(self, courier_id: str) -> Optional[Assignment]:
        async with self._lock:
            assignment = self._assignments.get(self._accepted.get(courier_id, ""))
            return assignment.model_copy() if assignment else None

    async def busy_couriers(self, courier_ids: Iterable[str]) -> Set[str]:
        async with self._lock:
            return {cid for cid in courier_ids if cid in self._accepted}
