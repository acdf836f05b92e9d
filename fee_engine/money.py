"""
Money Value Type

Exact decimal arithmetic for every monetary value in the engine.
Floats are refused outright; rounding happens only when an invoice
amount is produced (2 decimals, banker's rounding).
"""

from decimal import ROUND_HALF_EVEN, Context, Decimal, DivisionByZero, InvalidOperation, Overflow

# High precision so intermediate results (tier slices, VAT extraction)
# never round before the invoice boundary.
MONEY_CONTEXT = Context(prec=40, rounding=ROUND_HALF_EVEN, traps=[InvalidOperation, DivisionByZero, Overflow])

INVOICE_QUANTUM = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Convert an int/str/Decimal/Money to Decimal. Floats are rejected."""
    if isinstance(value, Money):
        return value.amount
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a monetary value")
    if isinstance(value, float):
        raise TypeError(f"float is not allowed for money arithmetic: {value!r}")
    if isinstance(value, (int, str)):
        try:
            return Decimal(value)
        except InvalidOperation as e:
            raise ValueError(f"Invalid decimal value: {value!r}") from e
    raise TypeError(f"Unsupported monetary value type: {type(value).__name__}")


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places using banker's rounding."""
    return value.quantize(INVOICE_QUANTUM, rounding=ROUND_HALF_EVEN)


class Money:
    """Immutable exact monetary amount."""

    __slots__ = ("_amount",)

    def __init__(self, value=0):
        amount = to_decimal(value)
        if not amount.is_finite():
            raise ValueError(f"Money must be finite, got: {value!r}")
        self._amount = amount

    # -- construction -----------------------------------------------------

    @classmethod
    def zero(cls) -> "Money":
        return cls(0)

    @classmethod
    def sum(cls, values) -> "Money":
        total = Decimal("0")
        for value in values:
            total = MONEY_CONTEXT.add(total, to_decimal(value))
        return cls(total)

    # -- accessors --------------------------------------------------------

    @property
    def amount(self) -> Decimal:
        return self._amount

    def is_zero(self) -> bool:
        return self._amount == 0

    def is_positive(self) -> bool:
        return self._amount > 0

    def is_negative(self) -> bool:
        return self._amount < 0

    # -- arithmetic -------------------------------------------------------

    def __add__(self, other) -> "Money":
        return Money(MONEY_CONTEXT.add(self._amount, to_decimal(other)))

    __radd__ = __add__

    def __sub__(self, other) -> "Money":
        return Money(MONEY_CONTEXT.subtract(self._amount, to_decimal(other)))

    def __rsub__(self, other) -> "Money":
        return Money(MONEY_CONTEXT.subtract(to_decimal(other), self._amount))

    def __mul__(self, factor) -> "Money":
        if isinstance(factor, Money):
            raise TypeError("Cannot multiply Money by Money")
        return Money(MONEY_CONTEXT.multiply(self._amount, to_decimal(factor)))

    __rmul__ = __mul__

    def __truediv__(self, divisor) -> "Money":
        if isinstance(divisor, Money):
            raise TypeError("Cannot divide Money by Money; use ratio()")
        divisor = to_decimal(divisor)
        if divisor == 0:
            raise ZeroDivisionError("Money division by zero")
        return Money(MONEY_CONTEXT.divide(self._amount, divisor))

    def ratio(self, other: "Money") -> Decimal:
        """Dimensionless ratio of two amounts."""
        if other.is_zero():
            raise ZeroDivisionError("Money ratio with zero denominator")
        return MONEY_CONTEXT.divide(self._amount, other.amount)

    def __neg__(self) -> "Money":
        return Money(-self._amount)

    def __abs__(self) -> "Money":
        return Money(abs(self._amount))

    def apply_rate(self, rate) -> "Money":
        """Amount x rate, where rate is a fraction (0.02 == 2%)."""
        return self * rate

    def percentage(self, percent) -> "Money":
        """Amount x percent / 100."""
        return Money(MONEY_CONTEXT.divide(MONEY_CONTEXT.multiply(self._amount, to_decimal(percent)), Decimal(100)))

    # -- comparison -------------------------------------------------------

    def _cmp_value(self, other) -> Decimal:
        if isinstance(other, Money):
            return other.amount
        if isinstance(other, (int, Decimal)) and not isinstance(other, bool):
            return Decimal(other)
        return NotImplemented

    def __eq__(self, other) -> bool:
        value = self._cmp_value(other)
        if value is NotImplemented:
            return NotImplemented
        return self._amount == value

    def __lt__(self, other) -> bool:
        value = self._cmp_value(other)
        if value is NotImplemented:
            return NotImplemented
        return self._amount < value

    def __le__(self, other) -> bool:
        value = self._cmp_value(other)
        if value is NotImplemented:
            return NotImplemented
        return self._amount <= value

    def __gt__(self, other) -> bool:
        value = self._cmp_value(other)
        if value is NotImplemented:
            return NotImplemented
        return self._amount > value

    def __ge__(self, other) -> bool:
        value = self._cmp_value(other)
        if value is NotImplemented:
            return NotImplemented
        return self._amount >= value

    def __hash__(self) -> int:
        return hash(self._amount)

    # -- output -----------------------------------------------------------

    def quantize(self) -> "Money":
        """Invoice amount as Money (2 decimals)."""
        return Money(quantize_money(self._amount))

    def to_invoice_amount(self) -> Decimal:
        """Invoice amount as Decimal (2 decimals)."""
        return quantize_money(self._amount)

    def to_fixed(self, places: int = 2) -> str:
        return f"{self._amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN):f}"

    def __str__(self) -> str:
        return f"{self._amount:f}"

    def __repr__(self) -> str:
        return f"Money('{self._amount}')"
