"""Enumerations and fixed rates shared across the POS modules.

Centralises domain constants so that the data access layer, the transaction
engine, and the CLI rely on a single source of truth for record tags,
result codes, and pricing factors.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum, IntEnum


# Fraction of the unit price charged per day a rented item is outstanding.
LATE_FEE_RATE = Decimal("0.1")

# Multiplier applied to the running total when a valid coupon is redeemed.
COUPON_DISCOUNT = Decimal("0.90")

DEFAULT_TAX_RATE = Decimal("1.06")

CARD_NUMBER_LENGTH = 16

CUSTOMER_LEDGER_HEADER = "User Database"

# Checkout dates in the customer ledger use the MM/DD/YY layout.
RENTAL_DATE_FORMAT = "%m/%d/%y"

CHECK_IN_FLAG = "check-in"


class TransactionKind(str, Enum):
    """Enumerate the transaction kinds a cashier can complete."""

    SALE = "Sale"
    RENTAL = "Rental"
    RETURN = "Return"


class TransactionState(str, Enum):
    """Lifecycle of a cart from creation to completion."""

    EMPTY = "Empty"
    BUILDING = "Building"
    FINALIZED = "Finalized"


class EmployeeRole(str, Enum):
    """Enumerate the positions recorded in the employee file."""

    CASHIER = "Cashier"
    ADMIN = "Admin"


class AuthResult(IntEnum):
    """Result codes returned by employee authentication."""

    FAILURE = 0
    CASHIER = 1
    ADMIN = 2


class UpdateResult(IntEnum):
    """Result codes returned by record-update operations."""

    UPDATED = 0
    NOT_FOUND = -1
    INVALID_FIELD = -2
    WRITE_FAILED = -3


# Transaction kinds each role is allowed to start.
ROLE_PERMISSIONS: dict[EmployeeRole, frozenset[TransactionKind]] = {
    EmployeeRole.CASHIER: frozenset(TransactionKind),
    EmployeeRole.ADMIN: frozenset(TransactionKind),
}


__all__ = [
    "LATE_FEE_RATE",
    "COUPON_DISCOUNT",
    "DEFAULT_TAX_RATE",
    "CARD_NUMBER_LENGTH",
    "CUSTOMER_LEDGER_HEADER",
    "RENTAL_DATE_FORMAT",
    "CHECK_IN_FLAG",
    "TransactionKind",
    "TransactionState",
    "EmployeeRole",
    "AuthResult",
    "UpdateResult",
    "ROLE_PERMISSIONS",
]
