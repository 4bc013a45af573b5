"""
Values -- Immutable, self-validating billing value objects.

Responsibility:
    Provides Currency (the fixed set of billable currencies) and Money
    (non-negative Decimal amount paired with its Currency).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Amounts are Decimal, never float.
    - Invoice amounts are never negative.
    - Currency codes are drawn from the fixed enumerated set.

Failure modes:
    - ValueError on construction with invalid amounts or currencies.
    - TypeError when comparing Money values of different types.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum


class Currency(str, Enum):
    """Currencies an invoice may be denominated in."""

    EUR = "EUR"
    USD = "USD"
    DKK = "DKK"
    SEK = "SEK"
    GBP = "GBP"

    @classmethod
    def parse(cls, code: "str | Currency") -> "Currency":
        """Normalize and validate a currency code."""
        if isinstance(code, Currency):
            return code
        normalized = code.upper().strip() if code else ""
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unsupported currency code: {code}") from None

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with its Currency -- they are NEVER separated.

    Guarantees:
        - Immutable and hashable (frozen dataclass with slots)
        - amount is always a non-negative Decimal (never float)
        - currency is always a member of Currency

    Non-goals:
        - Does NOT perform currency conversion
        - Does NOT support arithmetic; billing only charges whole invoices
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        if isinstance(self.amount, float):
            raise ValueError(f"Money amount must not be float: {self.amount!r}")
        if not isinstance(self.amount, Decimal):
            try:
                object.__setattr__(self, "amount", Decimal(str(self.amount)))
            except (InvalidOperation, ValueError) as e:
                raise ValueError(f"Invalid amount: {self.amount}") from e
        if not self.amount.is_finite():
            raise ValueError(f"Invalid amount: {self.amount}")
        if self.amount < 0:
            raise ValueError(f"Money amount must be non-negative, got {self.amount}")

        object.__setattr__(self, "currency", Currency.parse(self.currency))

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """
        Factory method for creating Money.

        Raises:
            ValueError: If amount cannot be converted, is negative,
                or currency is not supported.
        """
        return cls(amount=Decimal(str(amount)), currency=Currency.parse(currency))

    @property
    def is_zero(self) -> bool:
        return self.amount == Decimal("0")

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.value}"
