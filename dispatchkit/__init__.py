from dispatchkit.settings import settings
from dispatchkit.errors import (
    DispatchError, InvalidInput, NotFound, AlreadyResolved, CourierBusy, OtpRejected,
)
from dispatchkit.models import Assignment, AssignmentState, Coordinate, Courier, DispatchResult
from dispatchkit.runtime.candidates import CandidateFinder
from dispatchkit.runtime.coordinator import DispatchCoordinator
from dispatchkit.runtime.triggers import DispatchTriggers

__version__ = "0.1.0"

__all__ = [
    "settings",
    "DispatchError",
    "InvalidInput",
    "NotFound",
    "AlreadyResolved",
    "CourierBusy",
    "OtpRejected",
    "Assignment",
    "AssignmentState",
    "Coordinate",
    "Courier",
    "DispatchResult",
    "CandidateFinder",
    "DispatchCoordinator",
    "DispatchTriggers",
]
