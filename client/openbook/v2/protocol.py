from typing import List, Optional, Sequence

from loguru import logger
from solders.pubkey import Pubkey

from openbook.market import (
    CreatedAccount,
    MarketDescriptor,
    MarketProtocol,
    OpenOrder,
    OpenOrdersAccount,
)
from openbook.orderbook import OrderTree, Side
from openbook.rpc import ProgramAccountsFilter, memcmp
from openbook.units import I64_MAX
from openbook.utils.solana import AccountInfo, optional_key
from openbook.v2 import instructions as ixs
from openbook.v2 import state

DEFAULT_ACCOUNT_NAME = "random"


class V2Protocol(MarketProtocol):
    """Anchor OpenBook v2 program: discriminated accounts, PDA open orders accounts."""

    version = 2
    expiry_horizon_field = "v2_expiry_horizon"

    def decode_market(self, account: AccountInfo) -> MarketDescriptor:
        market = state.decode_market(account.data)
        return MarketDescriptor(
            version=self.version,
            program_id=self.program_id,
            address=account.public_key,
            base_mint=market.base_mint,
            quote_mint=market.quote_mint,
            base_decimals=market.base_decimals,
            quote_decimals=market.quote_decimals,
            base_lot_size=market.base_lot_size,
            quote_lot_size=market.quote_lot_size,
            bids=market.bids,
            asks=market.asks,
            event_queue=market.event_heap,
            base_vault=market.market_base_vault,
            quote_vault=market.market_quote_vault,
            authority=market.market_authority,
            consume_events_authority=optional_key(market.consume_events_admin),
            open_orders_admin=optional_key(market.open_orders_admin),
            oracle_a=optional_key(market.oracle_a),
            oracle_b=optional_key(market.oracle_b),
            name=state.decode_name(market.name),
            maker_fee=market.maker_fee,
            taker_fee=market.taker_fee,
            max_price_lots=I64_MAX,
        )

    def decode_book_side(self, data: bytes, side: Side) -> OrderTree:
        return state.decode_book_side(data, side, state.FIXED_TREE)

    def decode_open_orders(self, account: AccountInfo, market: MarketDescriptor) -> OpenOrdersAccount:
        raw = state.decode_open_orders_account(account.data)
        position = raw.position
        orders = [
            OpenOrder(
                order_id=slot.id,
                client_order_id=slot.client_id,
                side=Side(slot.side_and_tree % 2),
                locked_price_lots=slot.locked_price,
            )
            for slot in raw.open_orders
            if not slot.is_free
        ]
        return OpenOrdersAccount(
            address=account.public_key,
            market=raw.market,
            owner=raw.owner,
            base_free=position.base_free_native,
            base_locked=position.asks_base_lots * market.base_lot_size,
            quote_free=position.quote_free_native,
            quote_locked=position.bids_quote_lots * market.quote_lot_size,
            orders=orders,
            referrer_rebates=position.referrer_rebates_available,
            account_num=raw.account_num,
            name=state.decode_name(raw.name),
        )

    def open_orders_filters(self, market: MarketDescriptor, owner: Pubkey) -> List[ProgramAccountsFilter]:
        return [
            memcmp(0, state.OPEN_ORDERS_ACCOUNT_DISCRIMINATOR),
            memcmp(state.OPEN_ORDERS_OWNER_OFFSET, owner),
            memcmp(state.OPEN_ORDERS_MARKET_OFFSET, market.address),
        ]

    async def next_account_num(self, rpc, owner: Pubkey) -> int:
        """Account numbers are per owner across all markets."""
        accounts = await rpc.get_program_accounts(
            self.program_id,
            [
                memcmp(0, state.OPEN_ORDERS_ACCOUNT_DISCRIMINATOR),
                memcmp(state.OPEN_ORDERS_OWNER_OFFSET, owner),
            ],
        )
        nums = [state.decode_open_orders_account(account.data).account_num for account in accounts]
        return max(nums, default=-1) + 1

    def open_orders_indexer(self, owner: Pubkey) -> Pubkey:
        return ixs.get_open_orders_indexer(owner, self.program_id)

    def create_open_orders_indexer(self, owner: Pubkey) -> CreatedAccount:
        indexer = self.open_orders_indexer(owner)
        return CreatedAccount(
            address=indexer,
            instructions=[ixs.create_open_orders_indexer_ix(self.program_id, owner, owner, indexer)],
        )

    async def create_open_orders(
        self, rpc, market: MarketDescriptor, owner: Pubkey, account_num: int = 0, name: str = DEFAULT_ACCOUNT_NAME
    ) -> CreatedAccount:
        address = ixs.get_open_orders_account(owner, account_num, self.program_id)
        logger.debug("Open orders account #{} of {} is {}", account_num, owner, address)
        return CreatedAccount(
            address=address,
            instructions=[
                ixs.create_open_orders_account_ix(
                    self.program_id,
                    payer=owner,
                    owner=owner,
                    open_orders_indexer=self.open_orders_indexer(owner),
                    open_orders_account=address,
                    market=market.address,
                    name=name,
                )
            ],
        )

    def place_order_ix(self, market, intent, open_orders, owner, payer):
        return ixs.place_order_ix(
            program_id=self.program_id,
            signer=owner,
            open_orders_account=open_orders,
            user_token_account=payer,
            market=market.address,
            bids=market.bids,
            asks=market.asks,
            event_heap=market.event_queue,
            market_vault=market.vault(intent.side),
            side=intent.side,
            price_lots=intent.price_lots,
            max_base_lots=intent.base_lots,
            max_quote_lots_including_fees=intent.max_quote_lots_including_fees,
            client_order_id=intent.client_order_id,
            order_type=intent.order_type,
            expiry_timestamp=intent.expiry_timestamp,
            self_trade_behavior=intent.self_trade_behavior,
            limit=intent.limit,
            open_orders_admin=market.open_orders_admin,
            oracle_a=market.oracle_a,
            oracle_b=market.oracle_b,
        )

    def place_order_pegged_ix(
        self, market, intent, open_orders, owner, payer, price_offset_lots: int, peg_limit: int = -1
    ):
        """Oracle pegged variant of ``place_order_ix``; ``intent.price_lots`` is ignored."""
        return ixs.place_order_pegged_ix(
            program_id=self.program_id,
            signer=owner,
            open_orders_account=open_orders,
            user_token_account=payer,
            market=market.address,
            bids=market.bids,
            asks=market.asks,
            event_heap=market.event_queue,
            market_vault=market.vault(intent.side),
            side=intent.side,
            price_offset_lots=price_offset_lots,
            peg_limit=peg_limit,
            max_base_lots=intent.base_lots,
            max_quote_lots_including_fees=intent.max_quote_lots_including_fees,
            client_order_id=intent.client_order_id,
            order_type=intent.order_type,
            expiry_timestamp=intent.expiry_timestamp,
            self_trade_behavior=intent.self_trade_behavior,
            limit=intent.limit,
            open_orders_admin=market.open_orders_admin,
            oracle_a=market.oracle_a,
            oracle_b=market.oracle_b,
        )

    def cancel_order_ix(self, market, open_orders, owner, side, order_id):
        return ixs.cancel_order_ix(
            self.program_id, owner, open_orders, market.address, market.bids, market.asks, order_id
        )

    def cancel_all_ixs(self, market, open_orders: OpenOrdersAccount, owner, side: Optional[Side] = None):
        if not open_orders.orders:
            return []
        return [
            ixs.cancel_all_orders_ix(
                self.program_id, owner, open_orders.address, market.address, market.bids, market.asks, side
            )
        ]

    def settle_funds_ix(self, market, open_orders, owner, base_wallet, quote_wallet):
        return ixs.settle_funds_ix(
            self.program_id,
            owner=owner,
            penalty_payer=owner,
            open_orders_account=open_orders,
            market=market.address,
            market_authority=market.authority,
            market_base_vault=market.base_vault,
            market_quote_vault=market.quote_vault,
            user_base_account=base_wallet,
            user_quote_account=quote_wallet,
        )

    def deposit_ix(self, market, open_orders, owner, base_wallet, quote_wallet, base_amount: int, quote_amount: int):
        return ixs.deposit_ix(
            self.program_id,
            owner=owner,
            user_base_account=base_wallet,
            user_quote_account=quote_wallet,
            open_orders_account=open_orders,
            market=market.address,
            market_base_vault=market.base_vault,
            market_quote_vault=market.quote_vault,
            base_amount=base_amount,
            quote_amount=quote_amount,
        )

    def consume_events_ix(self, market, open_orders_accounts: Sequence[Pubkey], limit):
        return ixs.consume_events_ix(
            self.program_id, market.address, market.event_queue, list(open_orders_accounts), limit
        )
