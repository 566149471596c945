"""Global enums: CreditLogReason must match the credit_logs CHECK constraint exactly."""

from enum import Enum


class CreditLogReason(str, Enum):
    USAGE = "usage"
    PURCHASE = "purchase"
    REFUND = "refund"
    BONUS = "bonus"
    SUBSCRIPTION = "subscription"
    ADMIN = "admin"
    OTHER = "other"


class SyncPhase(str, Enum):
    """Lifecycle of one user session inside a ReconciliationController."""
    UNINITIALIZED = "UNINITIALIZED"
    INITIALIZING = "INITIALIZING"
    READY = "READY"
    RESET = "RESET"
