from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from openbook.errors import OwnershipMismatch, UnsupportedOperation
from openbook.fetcher import AccountFetcher
from openbook.orderbook import OrderNode, OrderTree, Side
from openbook.rpc import ProgramAccountsFilter
from openbook.units import U64_MAX, LotConverter
from openbook.utils.solana import AccountInfo


@dataclass(frozen=True)
class MarketDescriptor:
    version: int
    program_id: Pubkey
    address: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey
    base_decimals: int
    quote_decimals: int
    base_lot_size: int
    quote_lot_size: int
    bids: Pubkey
    asks: Pubkey
    event_queue: Pubkey
    base_vault: Pubkey
    quote_vault: Pubkey
    # v1: vault signer PDA, v2: market authority
    authority: Pubkey
    request_queue: Optional[Pubkey] = None
    consume_events_authority: Optional[Pubkey] = None
    open_orders_admin: Optional[Pubkey] = None
    oracle_a: Optional[Pubkey] = None
    oracle_b: Optional[Pubkey] = None
    name: str = ""
    fee_rate_bps: int = 0
    maker_fee: int = 0
    taker_fee: int = 0
    max_price_lots: int = U64_MAX

    @property
    def converter(self) -> LotConverter:
        return LotConverter(
            base_decimals=self.base_decimals,
            quote_decimals=self.quote_decimals,
            base_lot_size=self.base_lot_size,
            quote_lot_size=self.quote_lot_size,
            max_price_lots=self.max_price_lots,
        )

    def book_address(self, side: Side) -> Pubkey:
        return self.bids if side == Side.BID else self.asks

    def vault(self, side: Side) -> Pubkey:
        """Vault an order on ``side`` pays into."""
        return self.quote_vault if side == Side.BID else self.base_vault


@dataclass(frozen=True)
class OpenOrder:
    order_id: int
    client_order_id: int
    side: Side
    locked_price_lots: int = 0

    @property
    def price_lots(self) -> int:
        return self.order_id >> 64


@dataclass
class OpenOrdersAccount:
    address: Pubkey
    market: Pubkey
    owner: Pubkey
    base_free: int
    base_locked: int
    quote_free: int
    quote_locked: int
    orders: List[OpenOrder] = field(default_factory=list)
    referrer_rebates: int = 0
    account_num: int = 0
    name: str = ""

    @property
    def base_total(self) -> int:
        return self.base_free + self.base_locked

    @property
    def quote_total(self) -> int:
        return self.quote_free + self.quote_locked


@dataclass
class CreatedAccount:
    address: Pubkey
    instructions: List[Instruction]
    signers: List[Keypair] = field(default_factory=list)


class MarketProtocol(ABC):
    """Version-specific layouts and instruction encodings of one order-book program."""

    version: int
    expiry_horizon_field: str

    def __init__(self, program_id: Pubkey):
        self.program_id = program_id

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.program_id})"

    def check_owner(self, account: AccountInfo):
        if account.owner != self.program_id:
            raise OwnershipMismatch(account.public_key, self.program_id, account.owner)

    def expiry_horizon(self, config) -> int:
        return getattr(config, self.expiry_horizon_field)

    @abstractmethod
    def decode_market(self, account: AccountInfo) -> MarketDescriptor:
        """Decode a market from its account, with decimals left for ``load_market``."""

    async def load_market(
        self, fetcher: AccountFetcher, address: Pubkey, account: Optional[AccountInfo] = None
    ) -> MarketDescriptor:
        """Decode the market at ``address``, reusing ``account`` when already fetched."""
        if account is None:
            account = await fetcher.fetch_existing(address)
        self.check_owner(account)
        return self.decode_market(account)

    @abstractmethod
    def decode_book_side(self, data: bytes, side: Side) -> OrderTree:
        ...

    def walk(self, data: bytes, side: Side, max_depth: Optional[int] = None) -> Iterator[OrderNode]:
        return self.decode_book_side(data, side).walk(side, max_depth)

    @abstractmethod
    def decode_open_orders(self, account: AccountInfo, market: MarketDescriptor) -> OpenOrdersAccount:
        ...

    @abstractmethod
    def open_orders_filters(self, market: MarketDescriptor, owner: Pubkey) -> List[ProgramAccountsFilter]:
        """``getProgramAccounts`` filters selecting ``owner``'s open orders accounts."""

    @abstractmethod
    async def create_open_orders(
        self, rpc, market: MarketDescriptor, owner: Pubkey, account_num: int = 0
    ) -> CreatedAccount:
        ...

    @abstractmethod
    def place_order_ix(
        self,
        market: MarketDescriptor,
        intent,
        open_orders: Pubkey,
        owner: Pubkey,
        payer: Pubkey,
    ) -> Instruction:
        ...

    @abstractmethod
    def cancel_order_ix(
        self, market: MarketDescriptor, open_orders: Pubkey, owner: Pubkey, side: Side, order_id: int
    ) -> Instruction:
        ...

    @abstractmethod
    def settle_funds_ix(
        self,
        market: MarketDescriptor,
        open_orders: Pubkey,
        owner: Pubkey,
        base_wallet: Pubkey,
        quote_wallet: Pubkey,
    ) -> Instruction:
        ...

    @abstractmethod
    def consume_events_ix(
        self, market: MarketDescriptor, open_orders_accounts: Sequence[Pubkey], limit: int
    ) -> Instruction:
        ...

    def match_orders_ix(self, market: MarketDescriptor, limit: int) -> Instruction:
        raise UnsupportedOperation(f"{type(self).__name__} has no match orders instruction")

    def consume_events_permissioned_ix(
        self,
        market: MarketDescriptor,
        open_orders_accounts: Sequence[Pubkey],
        limit: int,
        authority: Pubkey,
    ) -> Instruction:
        raise UnsupportedOperation(f"{type(self).__name__} has no permissioned consume events instruction")

    def deposit_ix(
        self,
        market: MarketDescriptor,
        open_orders: Pubkey,
        owner: Pubkey,
        base_wallet: Pubkey,
        quote_wallet: Pubkey,
        base_amount: int,
        quote_amount: int,
    ) -> Instruction:
        raise UnsupportedOperation(f"{type(self).__name__} has no deposit instruction")

    def place_order_pegged_ix(
        self,
        market: MarketDescriptor,
        intent,
        open_orders: Pubkey,
        owner: Pubkey,
        payer: Pubkey,
        price_offset_lots: int,
        peg_limit: int = -1,
    ) -> Instruction:
        raise UnsupportedOperation(f"{type(self).__name__} has no oracle pegged orders")

    def cancel_all_ixs(
        self, market: MarketDescriptor, open_orders: OpenOrdersAccount, owner: Pubkey
    ) -> List[Instruction]:
        return [
            self.cancel_order_ix(market, open_orders.address, owner, order.side, order.order_id)
            for order in open_orders.orders
        ]


def sorted_unique(keys: Sequence[Pubkey]) -> Tuple[Pubkey, ...]:
    return tuple(sorted(set(keys), key=bytes))
