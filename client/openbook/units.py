from dataclasses import dataclass
from decimal import ROUND_FLOOR, ROUND_HALF_EVEN, Decimal, InvalidOperation, localcontext
from typing import Union

from openbook.errors import InvalidPrice

U64_MAX = 2 ** 64 - 1
I64_MAX = 2 ** 63 - 1

PRECISION = 60

# a product within this distance of an integer came from a representable lot value
_SNAP = Decimal("1e-18")

Number = Union[Decimal, float, int, str]


def to_decimal(x: Number) -> Decimal:
    if isinstance(x, Decimal):
        return x
    if isinstance(x, int):
        return Decimal(x)
    try:
        return Decimal(str(x))
    except InvalidOperation as e:
        raise InvalidPrice(f"Not a number: {x!r}") from e


def _floor(value: Decimal) -> int:
    nearest = value.to_integral_value(rounding=ROUND_HALF_EVEN)
    if abs(value - nearest) < _SNAP:
        return int(nearest)
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


@dataclass(frozen=True)
class LotConverter:
    """Maps between on-chain lot integers and human-readable prices and sizes.

    A human-readable price is quote tokens per base token. One price lot is
    ``quote_lot_size`` native quote units per ``base_lot_size`` native base units.
    """

    base_decimals: int
    quote_decimals: int
    base_lot_size: int
    quote_lot_size: int
    max_price_lots: int = U64_MAX

    def __post_init__(self):
        if self.base_lot_size <= 0 or self.quote_lot_size <= 0:
            raise ValueError(
                f"Lot sizes must be positive, got base={self.base_lot_size} quote={self.quote_lot_size}"
            )

    @property
    def base_factor(self) -> int:
        return 10 ** self.base_decimals

    @property
    def quote_factor(self) -> int:
        return 10 ** self.quote_decimals

    @property
    def price_factor(self) -> Decimal:
        """Price lots per unit of human-readable price."""
        with localcontext() as ctx:
            ctx.prec = PRECISION
            return Decimal(self.quote_factor * self.base_lot_size) / Decimal(
                self.base_factor * self.quote_lot_size
            )

    def price_lots_to_native(self, price_lots: int) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = PRECISION
            return Decimal(price_lots * self.quote_lot_size * self.base_factor) / Decimal(
                self.base_lot_size * self.quote_factor
            )

    def native_price_to_lots(self, price: Number) -> int:
        price = to_decimal(price)
        if price.is_nan() or price.is_infinite() or price < 0:
            raise InvalidPrice(f"Price {price} cannot be expressed in lots")
        with localcontext() as ctx:
            ctx.prec = PRECISION
            lots = _floor(
                price
                * Decimal(self.quote_factor * self.base_lot_size)
                / Decimal(self.base_factor * self.quote_lot_size)
            )
        if lots > self.max_price_lots:
            raise InvalidPrice(f"Price {price} overflows at {lots} lots")
        return lots

    def quote_size_to_base_lots(self, quote_notional: Number, price: Number) -> int:
        quote_notional = to_decimal(quote_notional)
        price = to_decimal(price)
        if price.is_nan() or price.is_infinite() or price <= 0:
            raise InvalidPrice(f"Cannot size an order at price {price}")
        if quote_notional.is_nan() or quote_notional < 0:
            raise ValueError(f"Invalid quote notional {quote_notional}")
        with localcontext() as ctx:
            ctx.prec = PRECISION
            return _floor(
                quote_notional / price * Decimal(self.base_factor) / Decimal(self.base_lot_size)
            )

    def base_lots_to_size(self, base_lots: int) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = PRECISION
            return Decimal(base_lots * self.base_lot_size) / Decimal(self.base_factor)

    def native_base_to_ui(self, amount: int) -> Decimal:
        return Decimal(amount) / Decimal(self.base_factor)

    def native_quote_to_ui(self, amount: int) -> Decimal:
        return Decimal(amount) / Decimal(self.quote_factor)
