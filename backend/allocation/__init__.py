from allocation.algorithm import (
    AllocationResult,
    PreferenceRow,
    SectionSlot,
    UnallocatableStudentError,
    allocate_subject,
)
from allocation.ledger import CapacityLedger

__all__ = [
    "AllocationResult",
    "CapacityLedger",
    "PreferenceRow",
    "SectionSlot",
    "UnallocatableStudentError",
    "allocate_subject",
]
