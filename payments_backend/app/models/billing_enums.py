"""
Billing enumerations.
"""

import enum


class InvoiceType(str, enum.Enum):
    """Ledger polarity of an invoice."""
    PAYABLE = "payable"  # Customer still owes money
    RECEIVABLE = "receivable"  # Money is owed back to the customer


class PaymentStatus(str, enum.Enum):
    """
    Payment attempt state machine.

    INITIATED -> COMPLETED | FAILED (gateway callback)
    COMPLETED -> REVERSED (full invoice reversal)
    """
    INITIATED = "initiated"
    COMPLETED = "completed"
    FAILED = "failed"
    REVERSED = "reversed"


class ReconciliationStatus(str, enum.Enum):
    FAILED = "FAILED"  # Needs operator attention
    RESOLVED = "RESOLVED"  # Reconciled manually
