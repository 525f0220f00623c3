"""Ledger constants and enumerations."""

from __future__ import annotations

from enum import Enum

# Bubbles needed to complete one queue slot.
SLOT_CAPACITY = 400

# Extra keys tolerated in stored slot progress before it is treated as corrupt.
SLOT_KEY_SKEW = 5

# String unwrapping passes applied to stored slot progress.
MAX_DECODE_PASSES = 3


class TransactionKind(str, Enum):
    SUPPORT = "support"
    DONATION = "donation"
    TRANSFER = "transfer"
    PAYBACK = "payback"
    ADMIN_SUPPORT = "admin_support"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PAIDBACK = "paidback"
    DONATED = "donated"


class GiveawayCategory(str, Enum):
    MEDICAL = "Medical"
    GROCERY = "Grocery"
    EDUCATION = "Education"


# Kinds accepted by apply_contribution.
CONTRIBUTION_KINDS = frozenset(
    {TransactionKind.SUPPORT, TransactionKind.ADMIN_SUPPORT, TransactionKind.PAYBACK}
)
