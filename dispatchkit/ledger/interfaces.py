from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence, Set

from dispatchkit.models import Assignment


class AssignmentLedger(ABC):
    """
    Authoritative record of dispatch attempts, one live record per
    (order, shop-order-line).

    Lifecycle: broadcast -> accepted -> completed. ``accept`` must be a
    single atomic step: among concurrent attempts on the same assignment
    exactly one wins, and no courier ever holds two accepted assignments.
    """

    async def start(self) -> None:
        """Initialize the ledger (e.g. open connections, create schema)."""
        pass

    async def stop(self) -> None:
        pass

    @abstractmethod
    async def create(self, order_id: str, shop_order_id: str, shop_id: str,
                     candidates: Sequence[str]) -> Assignment:
        """
        Record a new broadcast. Raises InvalidInput when ``candidates`` is
        empty or the line already has an accepted assignment. A previous
        unaccepted broadcast for the same line is superseded.
        """
        pass

    @abstractmethod
    async def accept(self, assignment_id: str, courier_id: str) -> Assignment:
        """
        Raises NotFound, AlreadyResolved, InvalidInput (not a candidate) or
        CourierBusy; otherwise returns the accepted assignment.
        """
        pass

    @abstractmethod
    async def complete(self, order_id: str, shop_order_id: str, courier_id: str) -> Optional[Assignment]:
        """
        Mark the matching accepted assignment completed. Returns None when
        there is nothing to complete, so repeating the call is harmless.
        """
        pass

    @abstractmethod
    async def get(self, assignment_id: str) -> Optional[Assignment]:
        pass

    @abstractmethod
    async def find_for_line(self, order_id: str, shop_order_id: str) -> Optional[Assignment]:
        """The current (non-superseded) assignment of a line."""
        pass

    @abstractmethod
    async def find_active_for_courier(self, courier_id: str) -> List[Assignment]:
        """Open broadcasts that list the courier as a candidate."""
        pass

    @abstractmethod
    async def find_accepted_for_courier(self, courier_id: str) -> Optional[Assignment]:
        pass

    @abstractmethod
    async def busy_couriers(self, courier_ids: Iterable[str]) -> Set[str]:
        """Subset of ``courier_ids`` currently holding an accepted assignment."""
        pass
