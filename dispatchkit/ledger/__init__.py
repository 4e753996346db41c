# dispatchkit/ledger/__init__.py
from dispatchkit.ledger.interfaces import AssignmentLedger
from dispatchkit.ledger.memory import MemoryAssignmentLedger
from dispatchkit.ledger.sqlite import SQLiteAssignmentLedger
from dispatchkit.ledger.valkey import ValkeyAssignmentLedger

__all__ = ["AssignmentLedger", "MemoryAssignmentLedger", "SQLiteAssignmentLedger", "ValkeyAssignmentLedger"]
