import math
import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from loguru import logger

from openbook.errors import InvalidPrice, InvalidSize
from openbook.orderbook import OrderType, SelfTradeBehavior, Side
from openbook.units import LotConverter, Number, to_decimal
from openbook.utils.solana import get_unix_secs


@dataclass(frozen=True)
class BestQuotes:
    """Top of book in human-readable prices; zero means that side is empty."""

    highest_bid: Decimal = Decimal(0)
    lowest_ask: Decimal = Decimal(0)


@dataclass(frozen=True)
class PendingOrderIntent:
    side: Side
    price: Decimal
    price_lots: int
    base_lots: int
    max_quote_lots_including_fees: int
    max_native_quote_including_fees: int
    client_order_id: int
    expiry_timestamp: int
    order_type: OrderType = OrderType.POST_ONLY
    self_trade_behavior: SelfTradeBehavior = SelfTradeBehavior.ABORT_TRANSACTION
    limit: int = 12


class OrderIntentCompiler:
    """Turns a quote-denominated order request into lot-quantized order parameters.

    Args:
        converter: Lot conversion for the market being traded.
        expiry_horizon: Seconds until the order expires.
        fee_buffer: Margin on the worst-case quote spend, covering fees.
        order_type: Default order type of compiled orders.
        limit: Matching iteration limit passed to the program.
        max_quantity: Largest quantity the program's instruction fields hold,
            defaults to the converter's price limit.
    """

    def __init__(
        self,
        converter: LotConverter,
        expiry_horizon: int,
        fee_buffer: float = 1.1,
        order_type: OrderType = OrderType.POST_ONLY,
        limit: int = 12,
        clock=get_unix_secs,
        max_quantity: Optional[int] = None,
    ):
        self.converter = converter
        self.expiry_horizon = expiry_horizon
        self.fee_buffer = to_decimal(fee_buffer)
        self.order_type = order_type
        self.limit = limit
        self.clock = clock
        self.max_quantity = max_quantity if max_quantity is not None else converter.max_price_lots

    def resolve_price(
        self, side: Side, best: BestQuotes, offset: Number = 0, target_price: Optional[Number] = None
    ) -> Decimal:
        if target_price:
            return to_decimal(target_price)
        if side == Side.BID:
            return best.highest_bid - to_decimal(offset)
        return best.lowest_ask + to_decimal(offset)

    def _check_quantity(self, name: str, value: int):
        if value > self.max_quantity:
            raise InvalidSize(f"{name} {value} exceeds the limit of {self.max_quantity}")

    def compile(
        self,
        side: Side,
        target_notional_quote: Number,
        best: BestQuotes,
        offset: Number = 0,
        target_price: Optional[Number] = None,
        order_type: Optional[OrderType] = None,
    ) -> Optional[PendingOrderIntent]:
        """None when the order rounds down to zero base lots."""
        price = self.resolve_price(side, best, offset, target_price)
        if price <= 0:
            raise InvalidPrice(f"Resolved {side.name.lower()} price {price} is not positive")

        price_lots = self.converter.native_price_to_lots(price)
        base_lots = self.converter.quote_size_to_base_lots(target_notional_quote, price)
        logger.debug("Using limit price lots: {}", price_lots)
        logger.debug("Using target base lots: {}", base_lots)

        if base_lots == 0:
            logger.debug("Got zero base lots for quote {}", target_notional_quote)
            return None
        if price_lots == 0:
            raise InvalidPrice(f"Price {price} is below one price lot")

        quote_lots = math.ceil(Decimal(base_lots * price_lots) * self.fee_buffer)
        native_quote = quote_lots * self.converter.quote_lot_size
        self._check_quantity("Base lots", base_lots)
        self._check_quantity("Quote lots including fees", quote_lots)
        self._check_quantity("Native quote including fees", native_quote)

        return PendingOrderIntent(
            side=side,
            price=price,
            price_lots=price_lots,
            base_lots=base_lots,
            max_quote_lots_including_fees=quote_lots,
            max_native_quote_including_fees=native_quote,
            client_order_id=random.getrandbits(64),
            expiry_timestamp=self.clock() + self.expiry_horizon,
            order_type=order_type if order_type is not None else self.order_type,
            limit=self.limit,
        )
