from typing import List, Optional, Sequence

from loguru import logger
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account

from openbook.errors import DecodeError, MissingAccount, OwnershipMismatch
from openbook.fetcher import AccountFetcher
from openbook.market import (
    CreatedAccount,
    MarketDescriptor,
    MarketProtocol,
    OpenOrder,
    OpenOrdersAccount,
    sorted_unique,
)
from openbook.orderbook import OrderTree, Side
from openbook.rpc import ProgramAccountsFilter, data_size, memcmp
from openbook.units import U64_MAX
from openbook.utils.solana import AccountInfo
from openbook.v1 import instructions as ixs
from openbook.v1 import state


def get_vault_signer(market: Pubkey, nonce: int, program_id: Pubkey) -> Pubkey:
    try:
        return Pubkey.create_program_address(
            [bytes(market), nonce.to_bytes(8, "little")], program_id
        )
    except ValueError as e:
        raise DecodeError(f"Market {market} has an invalid vault signer nonce {nonce}") from e


class V1Protocol(MarketProtocol):
    """Serum-lineage OpenBook v1 program: fixed-size slabs behind ``serum``/``padding`` framing."""

    version = 1
    expiry_horizon_field = "v1_expiry_horizon"

    def decode_market(self, account: AccountInfo, base_decimals: int = 0, quote_decimals: int = 0) -> MarketDescriptor:
        market = state.decode_market_state(account.data)
        if market.own_address != account.public_key:
            raise OwnershipMismatch(
                account.public_key, account.public_key, market.own_address, what="own address"
            )
        return MarketDescriptor(
            version=self.version,
            program_id=self.program_id,
            address=account.public_key,
            base_mint=market.coin_mint,
            quote_mint=market.pc_mint,
            base_decimals=base_decimals,
            quote_decimals=quote_decimals,
            base_lot_size=market.coin_lot_size,
            quote_lot_size=market.pc_lot_size,
            bids=market.bids,
            asks=market.asks,
            event_queue=market.event_q,
            request_queue=market.req_q,
            base_vault=market.coin_vault,
            quote_vault=market.pc_vault,
            authority=get_vault_signer(account.public_key, market.vault_signer_nonce, self.program_id),
            consume_events_authority=market.consume_events_authority,
            fee_rate_bps=market.fee_rate_bps,
            max_price_lots=U64_MAX,
        )

    async def load_market(
        self, fetcher: AccountFetcher, address: Pubkey, account: Optional[AccountInfo] = None
    ) -> MarketDescriptor:
        if account is None:
            account = await fetcher.fetch_existing(address)
        self.check_owner(account)
        market = self.decode_market(account)

        base_mint, quote_mint = await fetcher.fetch_multiple([market.base_mint, market.quote_mint])
        if base_mint is None or quote_mint is None:
            raise MissingAccount(f"Mints of market {address} not found")
        base_decimals = state.decode_mint_decimals(base_mint.data)
        quote_decimals = state.decode_mint_decimals(quote_mint.data)
        logger.debug("Market {} decimals base={} quote={}", address, base_decimals, quote_decimals)
        return self.decode_market(account, base_decimals, quote_decimals)

    def decode_book_side(self, data: bytes, side: Side) -> OrderTree:
        return state.decode_slab(data, side)

    def decode_open_orders(self, account: AccountInfo, market: MarketDescriptor) -> OpenOrdersAccount:
        raw = state.decode_open_orders(account.data)
        orders = []
        for slot in range(128):
            if (raw.free_slot_bits >> slot) & 1:
                continue
            side = Side.BID if (raw.is_bid_bits >> slot) & 1 else Side.ASK
            orders.append(OpenOrder(raw.orders[slot], raw.client_ids[slot], side))
        return OpenOrdersAccount(
            address=account.public_key,
            market=raw.market,
            owner=raw.owner,
            base_free=raw.base_token_free,
            base_locked=raw.base_token_total - raw.base_token_free,
            quote_free=raw.quote_token_free,
            quote_locked=raw.quote_token_total - raw.quote_token_free,
            orders=orders,
            referrer_rebates=raw.referrer_rebates_accrued,
        )

    def open_orders_filters(self, market: MarketDescriptor, owner: Pubkey) -> List[ProgramAccountsFilter]:
        return [
            data_size(state.OPEN_ORDERS_SIZE),
            memcmp(state.OPEN_ORDERS_MARKET_OFFSET, market.address),
            memcmp(state.OPEN_ORDERS_OWNER_OFFSET, owner),
        ]

    async def create_open_orders(
        self, rpc, market: MarketDescriptor, owner: Pubkey, account_num: int = 0
    ) -> CreatedAccount:
        account = Keypair()
        lamports = await rpc.get_minimum_balance_for_rent_exemption(state.OPEN_ORDERS_SIZE)
        logger.debug("Got new open orders address {}", account.pubkey())
        return CreatedAccount(
            address=account.pubkey(),
            instructions=[
                create_account(
                    CreateAccountParams(
                        from_pubkey=owner,
                        to_pubkey=account.pubkey(),
                        lamports=lamports,
                        space=state.OPEN_ORDERS_SIZE,
                        owner=self.program_id,
                    )
                ),
                ixs.init_open_orders_ix(self.program_id, account.pubkey(), owner, market.address),
            ],
            signers=[account],
        )

    def place_order_ix(self, market, intent, open_orders, owner, payer):
        return ixs.new_order_v3_ix(
            program_id=self.program_id,
            market=market.address,
            open_orders=open_orders,
            request_queue=market.request_queue,
            event_queue=market.event_queue,
            bids=market.bids,
            asks=market.asks,
            order_payer=payer,
            owner=owner,
            coin_vault=market.base_vault,
            pc_vault=market.quote_vault,
            side=intent.side,
            limit_price=intent.price_lots,
            max_coin_qty=intent.base_lots,
            max_native_pc_qty_including_fees=intent.max_native_quote_including_fees,
            order_type=intent.order_type,
            client_order_id=intent.client_order_id,
            self_trade_behavior=intent.self_trade_behavior,
            max_ts=intent.expiry_timestamp,
        )

    def cancel_order_ix(self, market, open_orders, owner, side, order_id):
        return ixs.cancel_order_v2_ix(
            self.program_id,
            market.address,
            market.bids,
            market.asks,
            open_orders,
            owner,
            market.event_queue,
            side,
            order_id,
        )

    def settle_funds_ix(self, market, open_orders, owner, base_wallet, quote_wallet):
        return ixs.settle_funds_ix(
            self.program_id,
            market.address,
            open_orders,
            owner,
            market.base_vault,
            base_wallet,
            market.quote_vault,
            quote_wallet,
            market.authority,
        )

    def match_orders_ix(self, market, limit):
        return ixs.match_orders_ix(
            self.program_id,
            market.address,
            market.request_queue,
            market.bids,
            market.asks,
            market.event_queue,
            market.base_vault,
            market.quote_vault,
            limit,
        )

    def consume_events_ix(self, market, open_orders_accounts: Sequence[Pubkey], limit):
        return ixs.consume_events_ix(
            self.program_id,
            sorted_unique(open_orders_accounts),
            market.address,
            market.event_queue,
            market.base_vault,
            market.quote_vault,
            limit,
        )

    def consume_events_permissioned_ix(self, market, open_orders_accounts, limit, authority=None):
        authority = authority or market.consume_events_authority
        if authority is None:
            raise MissingAccount(f"Market {market.address} has no consume events authority")
        return ixs.consume_events_permissioned_ix(
            self.program_id,
            sorted_unique(open_orders_accounts),
            market.address,
            market.event_queue,
            authority,
            limit,
        )
