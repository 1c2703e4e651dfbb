from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from loguru import logger
from solders.pubkey import Pubkey

from openbook.errors import MissingAccount
from openbook.fetcher import AccountFetcher
from openbook.market import MarketDescriptor, MarketProtocol, OpenOrdersAccount
from openbook.orderbook import OrderBookSide, OrderNode, Side
from openbook.orders import BestQuotes


@dataclass(frozen=True)
class OwnedOrder:
    order_id: int
    client_order_id: int
    side: Side
    price_lots: int
    price: Decimal
    quantity: int


@dataclass
class OpenOrdersView:
    """What one open orders account sees of a market at a point in time."""

    market: Pubkey
    open_orders_address: Optional[Pubkey]
    best: BestQuotes
    best_bid_lots: int
    best_ask_lots: int
    bids: List[OwnedOrder] = field(default_factory=list)
    asks: List[OwnedOrder] = field(default_factory=list)
    bid_book: Optional[OrderBookSide] = None
    ask_book: Optional[OrderBookSide] = None
    account: Optional[OpenOrdersAccount] = None

    @property
    def orders(self) -> List[OwnedOrder]:
        return self.bids + self.asks

    @property
    def highest_bid(self) -> Decimal:
        return self.best.highest_bid

    @property
    def lowest_ask(self) -> Decimal:
        return self.best.lowest_ask


class MarketSnapshotBuilder:
    def __init__(self, protocol: MarketProtocol, fetcher: AccountFetcher):
        self.protocol = protocol
        self.fetcher = fetcher

    async def refresh(self, descriptor: MarketDescriptor, open_orders_address: Optional[Pubkey]) -> OpenOrdersView:
        market_account = await self.fetcher.fetch_existing(descriptor.address)
        self.protocol.check_owner(market_account)

        addresses = [descriptor.bids, descriptor.asks]
        if open_orders_address is not None:
            addresses.append(open_orders_address)
        accounts = await self.fetcher.fetch_multiple(addresses)
        bids_account, asks_account = accounts[0], accounts[1]
        if bids_account is None or asks_account is None:
            raise MissingAccount(f"Order book of market {descriptor.address} not found")

        bid_book = OrderBookSide(Side.BID, list(self.protocol.walk(bids_account.data, Side.BID)))
        ask_book = OrderBookSide(Side.ASK, list(self.protocol.walk(asks_account.data, Side.ASK)))

        converter = descriptor.converter
        best_bid_lots = bid_book.best.price_lots if bid_book.best else 0
        best_ask_lots = ask_book.best.price_lots if ask_book.best else 0
        best = BestQuotes(
            highest_bid=converter.price_lots_to_native(best_bid_lots),
            lowest_ask=converter.price_lots_to_native(best_ask_lots),
        )
        logger.debug("Best bid {} best ask {} on {}", best.highest_bid, best.lowest_ask, descriptor.address)

        view = OpenOrdersView(
            market=descriptor.address,
            open_orders_address=open_orders_address,
            best=best,
            best_bid_lots=best_bid_lots,
            best_ask_lots=best_ask_lots,
            bid_book=bid_book,
            ask_book=ask_book,
        )
        if open_orders_address is None:
            return view

        view.bids = [self._owned(order, Side.BID, descriptor) for order in bid_book.owned_by(open_orders_address)]
        view.asks = [self._owned(order, Side.ASK, descriptor) for order in ask_book.owned_by(open_orders_address)]
        if accounts[2] is not None:
            view.account = self.protocol.decode_open_orders(accounts[2], descriptor)
        return view

    @staticmethod
    def _owned(order: OrderNode, side: Side, descriptor: MarketDescriptor) -> OwnedOrder:
        return OwnedOrder(
            order_id=order.order_id,
            client_order_id=order.client_order_id,
            side=side,
            price_lots=order.price_lots,
            price=descriptor.converter.price_lots_to_native(order.price_lots),
            quantity=order.quantity,
        )
