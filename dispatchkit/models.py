from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Coordinate(BaseModel):
    """A point on the globe. Stored longitude first, as GeoJSON does."""
    model_config = ConfigDict(frozen=True)

    longitude: float = Field(ge=-180.0, le=180.0)
    latitude: float = Field(ge=-90.0, le=90.0)


class Courier(BaseModel):
    """
    A courier as seen by the directory.
    ``handle`` is the live push channel; None means unreachable.
    """
    id: str
    position: Optional[Coordinate] = None
    handle: Optional[str] = None
    online: bool = False
    full_name: str = ""
    mobile: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        """Shape handed back to shop owners after a re-dispatch."""
        return {
            "id": self.id,
            "fullName": self.full_name,
            "longitude": self.position.longitude if self.position else None,
            "latitude": self.position.latitude if self.position else None,
            "mobile": self.mobile,
        }


class AssignmentState(str, Enum):
    BROADCAST = "broadcast"
    ACCEPTED = "accepted"
    COMPLETED = "completed"


class Assignment(BaseModel):
    """One dispatch attempt for a single shop's portion of an order."""
    id: str
    order_id: str
    shop_order_id: str
    shop_id: str
    candidates: Tuple[str, ...]
    assignee: Optional[str] = None
    state: AssignmentState = AssignmentState.BROADCAST
    created_at: datetime = Field(default_factory=utcnow)
    accepted_at: Optional[datetime] = None


class LineItem(BaseModel):
    name: str
    quantity: int = Field(ge=1)
    price: float = Field(ge=0)


class ShopOrderLine(BaseModel):
    """The part of an order that belongs to one shop."""
    id: str
    shop_id: str
    items: List[LineItem] = Field(default_factory=list)
    subtotal: float = 0.0
    status: str = "pending"
    assignment_id: Optional[str] = None
    assignee: Optional[str] = None


class Shop(BaseModel):
    id: str
    name: str
    owner_id: Optional[str] = None


class DeliveryAddress(BaseModel):
    text: str
    latitude: float
    longitude: float

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(longitude=self.longitude, latitude=self.latitude)


class Order(BaseModel):
    id: str
    customer_id: str
    delivery_address: DeliveryAddress
    lines: List[ShopOrderLine] = Field(default_factory=list)

    def line(self, shop_order_id: str) -> Optional[ShopOrderLine]:
        for line in self.lines:
            if line.id == shop_order_id:
                return line
        return None


class DispatchResult(BaseModel):
    """
    Outcome of a dispatch. ``assignment`` is None when nobody nearby was
    free; that is a normal outcome, not an error.
    """
    assignment: Optional[Assignment] = None
    candidates: List[Courier] = Field(default_factory=list)

    @property
    def no_candidates(self) -> bool:
        return self.assignment is None
