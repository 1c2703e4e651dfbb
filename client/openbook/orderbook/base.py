from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator, List, Optional, Tuple

import pandas as pd
from solders.pubkey import Pubkey


class Side(IntEnum):
    BID = 0
    ASK = 1

    @staticmethod
    def from_str(value: str) -> "Side":
        value = value.strip().lower()
        if value in ("bid", "buy", "b"):
            return Side.BID
        if value in ("ask", "sell", "a", "s"):
            return Side.ASK
        raise ValueError(f"Unknown side {value!r}")


class SelfTradeBehavior(IntEnum):
    DECREMENT_TAKE = 0
    CANCEL_PROVIDE = 1
    ABORT_TRANSACTION = 2


class OrderType(IntEnum):
    LIMIT = 0
    IMMEDIATE_OR_CANCEL = 1
    POST_ONLY = 2
    MARKET = 3
    POST_ONLY_SLIDE = 4
    FILL_OR_KILL = 5


@dataclass(frozen=True)
class InnerNode:
    prefix_len: int
    key: int
    children: Tuple[int, int]


@dataclass(frozen=True)
class OrderNode:
    key: int
    owner: Pubkey
    quantity: int
    client_order_id: int
    owner_slot: int
    timestamp: int = 0
    time_in_force: int = 0
    fee_tier: int = 0

    @property
    def price_lots(self) -> int:
        return self.key >> 64

    @property
    def order_id(self) -> int:
        return self.key


@dataclass
class OrderBookSide:
    side: Side
    orders: List[OrderNode]

    def __iter__(self) -> Iterator[OrderNode]:
        return iter(self.orders)

    def __len__(self) -> int:
        return len(self.orders)

    @property
    def best(self) -> Optional[OrderNode]:
        return self.orders[0] if self.orders else None

    def owned_by(self, owner: Pubkey) -> List[OrderNode]:
        return [order for order in self.orders if order.owner == owner]

    def order_bookify(self, converter=None, group=False) -> pd.DataFrame:
        """L2 view as a DataFrame of Oid/Price/Qty, best price first.

        With a converter prices and sizes are human-readable, otherwise in lots.
        """
        rows = []
        for order in self.orders:
            price, qty = order.price_lots, order.quantity
            if converter is not None:
                price = float(converter.price_lots_to_native(price))
                qty = float(converter.base_lots_to_size(qty))
            rows.append({"Oid": order.order_id, "Price": price, "Qty": qty})
        df = pd.DataFrame(rows, columns=["Oid", "Price", "Qty"])
        if group:
            return (
                df.groupby("Price", sort=False)
                .agg({"Qty": ["sum", "count"]})
            )
        return df
