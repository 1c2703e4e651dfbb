import dataclasses
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple, Union

from loguru import logger
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from openbook.cache import OpenOrdersCache
from openbook.config import ClientConfig
from openbook.errors import MissingAccount, OwnershipMismatch, SubmissionFailure
from openbook.fetcher import AccountFetcher, CachedAccountFetcher, RpcAccountFetcher
from openbook.market import MarketDescriptor, MarketProtocol, OpenOrdersAccount
from openbook.markets import PROGRAM_LAYOUT_VERSIONS
from openbook.orderbook import OrderType, Side
from openbook.orders import BestQuotes, OrderIntentCompiler
from openbook.program_ids import OPENBOOK_V2_PROGRAM_ID, SRM_PROGRAM_ID
from openbook.rpc import Rpc
from openbook.snapshot import MarketSnapshotBuilder, OpenOrdersView
from openbook.submission import SubmissionOutcome, SubmissionState, TransactionSubmitter
from openbook.units import Number
from openbook.utils.solana import read_keypair
from openbook.v1.protocol import V1Protocol
from openbook.v2.protocol import DEFAULT_ACCOUNT_NAME, V2Protocol

# instructions when not executed, the signature when sent
OrderReturnType = Union[List[Instruction], str]


def select_protocol(program_id: Pubkey) -> MarketProtocol:
    if program_id == OPENBOOK_V2_PROGRAM_ID:
        return V2Protocol(program_id)
    if str(program_id) in PROGRAM_LAYOUT_VERSIONS:
        return V1Protocol(program_id)
    raise OwnershipMismatch(program_id, SRM_PROGRAM_ID, program_id, what="program")


class OBClient:
    """Trading session on one market for one signer.

    Every operation that reads the book goes through the open orders cache,
    so repeated calls within ``config.cache_duration`` share one snapshot.
    Submitting operations invalidate it.
    """

    def __init__(
        self,
        config: ClientConfig,
        rpc: Rpc,
        fetcher: AccountFetcher,
        protocol: MarketProtocol,
        market: MarketDescriptor,
        owner: Keypair,
        open_orders_address: Optional[Pubkey] = None,
        index_address: Optional[Pubkey] = None,
    ):
        self.config = config
        self.rpc = rpc
        self.fetcher = fetcher
        self.protocol = protocol
        self.market = market
        self.owner = owner
        self.open_orders_address = open_orders_address
        self.index_address = index_address

        self.base_ata = get_associated_token_address(owner.pubkey(), market.base_mint)
        self.quote_ata = get_associated_token_address(owner.pubkey(), market.quote_mint)

        self.snapshots = MarketSnapshotBuilder(protocol, fetcher)
        self.compiler = OrderIntentCompiler(
            market.converter,
            protocol.expiry_horizon(config),
            fee_buffer=config.fee_buffer,
        )
        self.submitter = TransactionSubmitter.from_config(rpc, owner, config)
        self.cache = OpenOrdersCache()
        self.accounts_cache = OpenOrdersCache()
        self.view: Optional[OpenOrdersView] = None

    def __repr__(self) -> str:
        return f"OBClient(market={self.market.address}, owner={self.owner_key}, version={self.market.version})"

    async def __aenter__(self) -> "OBClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self):
        await self.rpc.close()

    @property
    def owner_key(self) -> Pubkey:
        return self.owner.pubkey()

    @property
    def best_quotes(self) -> BestQuotes:
        return self.view.best if self.view is not None else BestQuotes()

    def _require_open_orders(self) -> Pubkey:
        if self.open_orders_address is None:
            raise MissingAccount(f"No open orders account for {self.owner_key} on {self.market.address}")
        return self.open_orders_address

    def _use_open_orders(self, address: Pubkey) -> None:
        if address != self.open_orders_address:
            # cached views were taken against the previous account
            self.cache.invalidate(self.owner_key)
            self.view = None
        self.open_orders_address = address

    def _wallet(self, side: Side) -> Pubkey:
        return self.quote_ata if side == Side.BID else self.base_ata

    async def refresh(self, force: bool = False) -> OpenOrdersView:
        """Book snapshot as seen by our open orders account."""
        max_age = 0 if force else self.config.cache_duration
        self.view = await self.cache.get_or_refresh(
            self.owner_key,
            max_age,
            lambda: self.snapshots.refresh(self.market, self.open_orders_address),
        )
        return self.view

    async def _send(
        self,
        ixs: Sequence[Instruction],
        signers: Sequence[Keypair] = (),
        compute_unit_limit: Optional[int] = None,
    ) -> SubmissionOutcome:
        outcome = await self.submitter.submit(ixs, signers, compute_unit_limit)
        self.cache.invalidate(self.owner_key)
        if outcome.state == SubmissionState.FAILED:
            raise SubmissionFailure(
                f"Transaction {outcome.signature} failed: {outcome.error}",
                signature=outcome.signature,
                error=outcome.error,
            )
        return outcome

    @staticmethod
    def _collect(ixs: List[Instruction], result: Optional[OrderReturnType]):
        if isinstance(result, list):
            ixs.extend(result)

    async def place_limit_order(
        self,
        target_notional: Number,
        side: Side,
        offset: Number = 0,
        execute: bool = True,
        target_price: Optional[Number] = None,
    ) -> Optional[OrderReturnType]:
        """Post only order worth ``target_notional`` quote tokens.

        Priced at ``target_price`` when given, else ``offset`` behind our side's
        best price. None when the order rounds down to zero base lots.
        """
        open_orders = self._require_open_orders()
        view = await self.refresh()
        intent = self.compiler.compile(side, target_notional, view.best, offset, target_price)
        if intent is None:
            return None

        ixs = [
            self.protocol.place_order_ix(self.market, intent, open_orders, self.owner_key, self._wallet(side))
        ]
        if not execute:
            return ixs
        outcome = await self._send(ixs)
        return outcome.signature

    async def place_market_order(
        self,
        target_notional: Number,
        side: Side,
        limit_price: Number,
        execute: bool = True,
    ) -> Optional[OrderReturnType]:
        """Immediate or cancel order worth ``target_notional`` quote tokens.

        Takes liquidity up to ``limit_price``; whatever does not fill right
        away is cancelled by the program.
        """
        open_orders = self._require_open_orders()
        view = await self.refresh()
        intent = self.compiler.compile(
            side,
            target_notional,
            view.best,
            target_price=limit_price,
            order_type=OrderType.IMMEDIATE_OR_CANCEL,
        )
        if intent is None:
            return None

        ixs = [
            self.protocol.place_order_ix(self.market, intent, open_orders, self.owner_key, self._wallet(side))
        ]
        if not execute:
            return ixs
        outcome = await self._send(ixs)
        return outcome.signature

    async def place_order_pegged(
        self,
        target_notional: Number,
        side: Side,
        price_offset_lots: int,
        peg_limit: int = -1,
        reference_price: Optional[Number] = None,
        execute: bool = True,
    ) -> Optional[OrderReturnType]:
        """Order that tracks the market oracle at ``price_offset_lots``.

        Size is worked out at ``reference_price``, or at our side's best price
        when omitted. ``peg_limit`` caps the effective price in lots, -1 for
        no cap. Only v2 markets support it.
        """
        open_orders = self._require_open_orders()
        view = await self.refresh()
        intent = self.compiler.compile(side, target_notional, view.best, target_price=reference_price)
        if intent is None:
            return None

        ixs = [
            self.protocol.place_order_pegged_ix(
                self.market,
                intent,
                open_orders,
                self.owner_key,
                self._wallet(side),
                price_offset_lots,
                peg_limit,
            )
        ]
        if not execute:
            return ixs
        outcome = await self._send(ixs)
        return outcome.signature

    async def cancel_orders(self, execute: bool = True) -> Optional[OrderReturnType]:
        view = await self.refresh()
        if view.account is None:
            return None
        ixs = self.protocol.cancel_all_ixs(self.market, view.account, self.owner_key)
        if not ixs:
            return None
        if not execute:
            return ixs
        outcome = await self._send(ixs)
        return outcome.signature

    async def settle_balance(self, execute: bool = True) -> Optional[OrderReturnType]:
        ixs = [
            self.protocol.settle_funds_ix(
                self.market, self._require_open_orders(), self.owner_key, self.base_ata, self.quote_ata
            )
        ]
        if not execute:
            return ixs
        outcome = await self._send(ixs)
        return outcome.signature

    async def deposit(self, base_amount: int, quote_amount: int) -> SubmissionOutcome:
        ix = self.protocol.deposit_ix(
            self.market,
            self._require_open_orders(),
            self.owner_key,
            self.base_ata,
            self.quote_ata,
            base_amount,
            quote_amount,
        )
        return await self._send([ix])

    async def match_orders(self, limit: int) -> SubmissionOutcome:
        return await self._send([self.protocol.match_orders_ix(self.market, limit)])

    async def consume_events(self, open_orders_accounts: Sequence[Pubkey], limit: int) -> SubmissionOutcome:
        return await self._send([self.protocol.consume_events_ix(self.market, open_orders_accounts, limit)])

    async def consume_events_permissioned(
        self, open_orders_accounts: Sequence[Pubkey], limit: int
    ) -> SubmissionOutcome:
        ix = self.protocol.consume_events_permissioned_ix(
            self.market, open_orders_accounts, limit, self.market.consume_events_authority
        )
        return await self._send([ix])

    async def cancel_settle_place(
        self,
        ask_notional: Number,
        bid_notional: Number,
        bid_price: Number,
        ask_price: Number,
    ) -> SubmissionOutcome:
        """Cancel everything, settle, then quote both sides in one transaction."""
        ixs: List[Instruction] = []
        self._collect(ixs, await self.cancel_orders(execute=False))
        self._collect(ixs, await self.settle_balance(execute=False))
        self._collect(ixs, await self.place_limit_order(bid_notional, Side.BID, 0, False, bid_price))
        self._collect(ixs, await self.place_limit_order(ask_notional, Side.ASK, 0, False, ask_price))
        return await self._send(ixs, compute_unit_limit=self.config.compute_unit_limit)

    async def cancel_settle_place_bid(self, bid_notional: Number, bid_price: Number) -> SubmissionOutcome:
        ixs: List[Instruction] = []
        self._collect(ixs, await self.cancel_orders(execute=False))
        self._collect(ixs, await self.settle_balance(execute=False))
        self._collect(ixs, await self.place_limit_order(bid_notional, Side.BID, 0, False, bid_price))
        return await self._send(ixs, compute_unit_limit=self.config.compute_unit_limit_light)

    async def cancel_settle_place_ask(self, ask_notional: Number, ask_price: Number) -> SubmissionOutcome:
        ixs: List[Instruction] = []
        self._collect(ixs, await self.cancel_orders(execute=False))
        self._collect(ixs, await self.settle_balance(execute=False))
        self._collect(ixs, await self.place_limit_order(ask_notional, Side.ASK, 0, False, ask_price))
        return await self._send(ixs, compute_unit_limit=self.config.compute_unit_limit_light)

    async def cancel_settle(self) -> SubmissionOutcome:
        ixs: List[Instruction] = []
        self._collect(ixs, await self.cancel_orders(execute=False))
        self._collect(ixs, await self.settle_balance(execute=False))
        return await self._send(ixs, compute_unit_limit=self.config.compute_unit_limit_light)

    async def find_open_orders_accounts(self, force: bool = False) -> List[OpenOrdersAccount]:
        """Open orders accounts of the signer on this market, decoded."""
        max_age = 0 if force else self.config.cache_duration

        async def fetch():
            filters = self.protocol.open_orders_filters(self.market, self.owner_key)
            accounts = await self.rpc.get_program_accounts(self.protocol.program_id, filters)
            return [self.protocol.decode_open_orders(account, self.market) for account in accounts]

        return await self.accounts_cache.get_or_refresh(self.owner_key, max_age, fetch)

    async def find_or_create_open_orders(self, name: str = DEFAULT_ACCOUNT_NAME) -> Pubkey:
        """Use the signer's open orders account on this market, creating one when there is none.

        On v2 the account is matched by ``name`` and the indexer is created first if needed.
        """
        v2 = isinstance(self.protocol, V2Protocol)
        if v2:
            await self._ensure_indexer()
        accounts = await self.find_open_orders_accounts(force=True)
        existing = [account for account in accounts if not v2 or account.name == name]
        if existing:
            self._use_open_orders(existing[0].address)
            logger.debug("Using open orders account {}", self.open_orders_address)
            return self.open_orders_address

        if v2:
            account_num = await self.protocol.next_account_num(self.rpc, self.owner_key)
            created = await self.protocol.create_open_orders(
                self.rpc, self.market, self.owner_key, account_num, name=name
            )
        else:
            created = await self.protocol.create_open_orders(self.rpc, self.market, self.owner_key)
        outcome = await self._send(
            created.instructions, created.signers, compute_unit_limit=self.config.compute_unit_limit_light
        )
        logger.info("Created open orders account {} in {}", created.address, outcome.signature)
        self.accounts_cache.invalidate(self.owner_key)
        self._use_open_orders(created.address)
        return created.address

    async def _ensure_indexer(self) -> Pubkey:
        indexer = self.index_address or self.protocol.open_orders_indexer(self.owner_key)
        if await self.fetcher.fetch(indexer) is None:
            created = self.protocol.create_open_orders_indexer(self.owner_key)
            outcome = await self._send(created.instructions)
            logger.info("Created open orders indexer {} in {}", created.address, outcome.signature)
        self.index_address = indexer
        return indexer

    async def load_orders_for_owner(self) -> List[int]:
        view = await self.refresh(force=True)
        return [order.order_id for order in view.orders]

    async def get_token_balances(self) -> Tuple[Decimal, Decimal]:
        """UI balances of the signer's base and quote token accounts."""
        base = await self.rpc.get_token_account_balance(self.base_ata)
        quote = await self.rpc.get_token_account_balance(self.quote_ata)
        return base, quote

    async def open_orders_balances(self) -> Tuple[Decimal, Decimal]:
        """UI base and quote totals, free plus locked, held by the open orders account."""
        view = await self.refresh()
        if view.account is None:
            return Decimal(0), Decimal(0)
        converter = self.market.converter
        return (
            converter.native_base_to_ui(view.account.base_total),
            converter.native_quote_to_ui(view.account.quote_total),
        )

    async def transaction_max_slot(self, signature: str) -> int:
        details = await self.rpc.get_transaction(signature)
        return details.slot if details is not None else 0


async def create_client(
    commitment: str,
    market_address: Union[str, Pubkey],
    create_accounts: bool = False,
    cache_duration: float = 5.0,
    config: Optional[ClientConfig] = None,
    owner: Optional[Keypair] = None,
    rpc: Optional[Rpc] = None,
    load: bool = True,
) -> OBClient:
    """Connect to ``market_address``, picking the protocol from the market account's owner.

    Args:
        commitment: processed, confirmed or finalized.
        market_address: Market account.
        create_accounts: Create the open orders account (and v2 indexer) when missing.
        cache_duration: Seconds a book snapshot stays valid.
        config: Everything else; defaults apply when omitted.
        owner: Signer; read from ``config.key_path`` when omitted.
        rpc: Pre-built node client.
        load: Take the first book snapshot right away.
    """
    config = dataclasses.replace(config or ClientConfig(), commitment=commitment, cache_duration=cache_duration)
    if owner is None:
        if not config.key_path:
            raise MissingAccount("No signer keypair configured")
        owner = read_keypair(config.key_path)
    if rpc is not None:
        return await _connect(config, rpc, owner, market_address, create_accounts, load)

    rpc = Rpc(config.rpc_url, config.commitment, config.read_retry, config.request_timeout)
    try:
        return await _connect(config, rpc, owner, market_address, create_accounts, load)
    except Exception:
        await rpc.close()
        raise


async def _connect(
    config: ClientConfig,
    rpc: Rpc,
    owner: Keypair,
    market_address: Union[str, Pubkey],
    create_accounts: bool,
    load: bool,
) -> OBClient:
    fetcher: AccountFetcher = RpcAccountFetcher(rpc)
    if config.account_cache_ttl > 0:
        fetcher = CachedAccountFetcher(fetcher, config.account_cache_ttl)

    if isinstance(market_address, str):
        market_address = Pubkey.from_string(market_address)
    market_account = await fetcher.fetch_existing(market_address)
    protocol = select_protocol(market_account.owner)
    market = await protocol.load_market(fetcher, market_address, market_account)
    logger.debug("Loaded market {} with {}", market_address, protocol)

    client = OBClient(
        config,
        rpc,
        fetcher,
        protocol,
        market,
        owner,
        open_orders_address=config.open_orders_address,
        index_address=config.index_address,
    )

    if client.open_orders_address is None:
        if create_accounts:
            await client.find_or_create_open_orders()
        else:
            accounts = await client.find_open_orders_accounts()
            if accounts:
                client._use_open_orders(accounts[0].address)

    if load:
        await client.refresh()
    return client
