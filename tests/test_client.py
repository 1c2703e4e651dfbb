import struct
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from factories import (
    FakeFetcher,
    account,
    key,
    leaf,
    mint,
    order_id,
    v1_market,
    v1_open_orders,
    v1_slab,
    v2_book_side,
    v2_market,
    v2_open_orders,
)
from openbook import client as client_module
from openbook.client import OBClient, create_client, select_protocol
from openbook.config import ClientConfig
from openbook.errors import MissingAccount, OwnershipMismatch, SubmissionFailure, UnsupportedOperation
from openbook.orderbook import OrderType, Side
from openbook.program_ids import OPENBOOK_V2_PROGRAM_ID, SRM_PROGRAM_ID, SYSTEM_PROGRAM_ID
from openbook.submission import SubmissionOutcome, SubmissionState
from openbook.utils.solana import sighash
from openbook.v1.protocol import V1Protocol
from openbook.v2 import instructions as v2_ixs
from openbook.v2.protocol import V2Protocol

MARKET = key(5)
OPEN_ORDERS = key(6)


def _rpc(program_accounts=()):
    rpc = SimpleNamespace()
    rpc.close = AsyncMock()
    rpc.get_program_accounts = AsyncMock(return_value=list(program_accounts))
    rpc.get_minimum_balance_for_rent_exemption = AsyncMock(return_value=23_357_760)
    rpc.get_token_account_balance = AsyncMock(side_effect=[Decimal("1.5"), Decimal("200")])
    rpc.get_transaction = AsyncMock(return_value=SimpleNamespace(slot=321))
    return rpc


def _owned(orders, side):
    return [leaf(price, seq, OPEN_ORDERS, 1) for price, seq, order_side in orders if order_side == side]


def _v1_accounts(fetcher, owner, orders=()):
    fetcher.add(account(MARKET, SRM_PROGRAM_ID, v1_market(MARKET, SRM_PROGRAM_ID)))
    fetcher.add(account(key(10), SYSTEM_PROGRAM_ID, mint(9)))
    fetcher.add(account(key(11), SYSTEM_PROGRAM_ID, mint(6)))
    fetcher.add(
        account(
            key(16),
            SRM_PROGRAM_ID,
            v1_slab(Side.BID, [leaf(150_000, 1, key(7), 10)] + _owned(orders, Side.BID)),
        )
    )
    fetcher.add(
        account(
            key(17),
            SRM_PROGRAM_ID,
            v1_slab(Side.ASK, [leaf(151_000, 2, key(7), 10)] + _owned(orders, Side.ASK)),
        )
    )
    fetcher.add(
        account(
            OPEN_ORDERS,
            SRM_PROGRAM_ID,
            v1_open_orders(
                MARKET,
                owner.pubkey(),
                [(order_id(p, s), 0, side) for p, s, side in orders],
                base_token_free=500_000_000,
                base_token_total=500_000_000,
                quote_token_free=2_000_000,
                quote_token_total=3_000_000,
            ),
        )
    )


async def _v1_client(fetcher, owner, orders=(), config=None, open_orders=OPEN_ORDERS):
    _v1_accounts(fetcher, owner, orders)
    protocol = V1Protocol(SRM_PROGRAM_ID)
    market = await protocol.load_market(fetcher, MARKET)
    client = OBClient(config or ClientConfig(), _rpc(), fetcher, protocol, market, owner, open_orders)
    client.submitter = SimpleNamespace(
        submit=AsyncMock(return_value=SubmissionOutcome(True, "sig", SubmissionState.CONFIRMED))
    )
    return client


def test_select_protocol():
    assert isinstance(select_protocol(SRM_PROGRAM_ID), V1Protocol)
    assert isinstance(select_protocol(OPENBOOK_V2_PROGRAM_ID), V2Protocol)
    with pytest.raises(OwnershipMismatch):
        select_protocol(SYSTEM_PROGRAM_ID)


@pytest.mark.asyncio
async def test_place_limit_order_builds_without_sending(fetcher, owner):
    client = await _v1_client(fetcher, owner)

    ixs = await client.place_limit_order(100, Side.BID, offset="0.5", execute=False)

    assert len(ixs) == 1
    assert int.from_bytes(ixs[0].data[9:17], "little") == 149_500
    client.submitter.submit.assert_not_awaited()


@pytest.mark.asyncio
async def test_place_limit_order_sends(fetcher, owner):
    client = await _v1_client(fetcher, owner)
    assert await client.place_limit_order(100, Side.ASK) == "sig"
    client.submitter.submit.assert_awaited_once()


@pytest.mark.asyncio
async def test_place_limit_order_too_small(fetcher, owner):
    client = await _v1_client(fetcher, owner)
    assert await client.place_limit_order(1, Side.BID) is None


@pytest.mark.asyncio
async def test_place_needs_open_orders_account(fetcher, owner):
    client = await _v1_client(fetcher, owner, open_orders=None)
    with pytest.raises(MissingAccount):
        await client.place_limit_order(100, Side.BID)


@pytest.mark.asyncio
async def test_failed_transaction_raises(fetcher, owner):
    client = await _v1_client(fetcher, owner)
    client.submitter.submit.return_value = SubmissionOutcome(False, "sig", SubmissionState.FAILED, "err")
    with pytest.raises(SubmissionFailure):
        await client.settle_balance()


@pytest.mark.asyncio
async def test_timed_out_transaction_is_returned(fetcher, owner):
    client = await _v1_client(fetcher, owner)
    client.submitter.submit.return_value = SubmissionOutcome(False, "sig", SubmissionState.TIMED_OUT)
    outcome = await client.cancel_settle()
    assert tuple(outcome) == (False, "sig")


@pytest.mark.asyncio
async def test_cancel_orders(fetcher, owner):
    client = await _v1_client(fetcher, owner, orders=[(149_000, 3, Side.BID), (152_000, 4, Side.ASK)])

    ixs = await client.cancel_orders(execute=False)

    assert len(ixs) == 2
    assert await client.load_orders_for_owner() == [order_id(149_000, 3), order_id(152_000, 4)]


@pytest.mark.asyncio
async def test_cancel_orders_nothing_to_cancel(fetcher, owner):
    client = await _v1_client(fetcher, owner)
    assert await client.cancel_orders() is None


@pytest.mark.asyncio
async def test_cancel_settle_place_bundles_one_transaction(fetcher, owner):
    config = ClientConfig(compute_unit_limit=900_000)
    client = await _v1_client(fetcher, owner, orders=[(149_000, 3, Side.BID)], config=config)

    await client.cancel_settle_place(ask_notional=100, bid_notional=100, bid_price=148, ask_price=153)

    ixs, signers, limit = client.submitter.submit.await_args.args
    # cancel, settle, bid, ask
    assert len(ixs) == 4
    assert limit == 900_000
    assert int.from_bytes(ixs[2].data[9:17], "little") == 148_000
    assert int.from_bytes(ixs[3].data[9:17], "little") == 153_000


@pytest.mark.asyncio
async def test_refresh_is_cached_until_a_send(fetcher, owner):
    client = await _v1_client(fetcher, owner)
    await client.refresh()
    fetcher.requested.clear()

    await client.refresh()
    assert fetcher.requested == []

    await client.settle_balance()
    await client.refresh()
    assert MARKET in fetcher.requested


@pytest.mark.asyncio
async def test_balances(fetcher, owner):
    client = await _v1_client(fetcher, owner)

    assert await client.get_token_balances() == (Decimal("1.5"), Decimal("200"))
    assert await client.open_orders_balances() == (Decimal("0.5"), Decimal("3"))
    assert await client.transaction_max_slot("sig") == 321


@pytest.mark.asyncio
async def test_v1_find_or_create_creates_account(fetcher, owner):
    client = await _v1_client(fetcher, owner, open_orders=None)

    address = await client.find_or_create_open_orders()

    ixs, signers, _ = client.submitter.submit.await_args.args
    assert address == signers[0].pubkey()
    assert client.open_orders_address == address
    assert ixs[0].data[4:12] == (23_357_760).to_bytes(8, "little")


@pytest.mark.asyncio
async def test_v1_find_or_create_reuses_account(fetcher, owner):
    client = await _v1_client(fetcher, owner, open_orders=None)
    client.rpc.get_program_accounts.return_value = [fetcher.accounts[OPEN_ORDERS]]

    assert await client.find_or_create_open_orders() == OPEN_ORDERS
    client.submitter.submit.assert_not_awaited()


@pytest.mark.asyncio
async def test_v2_find_or_create_picks_next_account_number(fetcher, owner):
    fetcher.add(account(MARKET, OPENBOOK_V2_PROGRAM_ID, v2_market()))
    protocol = V2Protocol(OPENBOOK_V2_PROGRAM_ID)
    market = await protocol.load_market(fetcher, MARKET)
    elsewhere = account(
        key(60), OPENBOOK_V2_PROGRAM_ID, v2_open_orders(key(61), owner.pubkey(), name="other", account_num=3)
    )
    rpc = _rpc()
    rpc.get_program_accounts.side_effect = [[], [elsewhere]]
    client = OBClient(ClientConfig(), rpc, fetcher, protocol, market, owner)
    client.submitter = SimpleNamespace(
        submit=AsyncMock(return_value=SubmissionOutcome(True, "sig", SubmissionState.CONFIRMED))
    )

    address = await client.find_or_create_open_orders()

    assert address == v2_ixs.get_open_orders_account(owner.pubkey(), 4, OPENBOOK_V2_PROGRAM_ID)
    # indexer first, then the account
    assert client.submitter.submit.await_count == 2
    assert client.index_address == protocol.open_orders_indexer(owner.pubkey())


@pytest.mark.asyncio
async def test_create_client_discovers_v1_market(owner):
    fetcher = FakeFetcher()
    _v1_accounts(fetcher, owner)
    rpc = _rpc()

    async def get_account_info(address):
        return fetcher.accounts.get(address)

    async def get_multiple_accounts(addresses):
        return [fetcher.accounts.get(address) for address in addresses]

    rpc.get_account_info = get_account_info
    rpc.get_multiple_accounts = get_multiple_accounts
    config = ClientConfig(open_orders_address=OPEN_ORDERS)

    async with await create_client("processed", str(MARKET), config=config, owner=owner, rpc=rpc) as client:
        assert client.market.version == 1
        assert client.config.commitment == "processed"
        assert client.view.highest_bid == Decimal("150")
    rpc.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_create_client_needs_a_signer():
    with pytest.raises(MissingAccount):
        await create_client("confirmed", str(MARKET), config=ClientConfig(), rpc=_rpc())


@pytest.mark.asyncio
async def test_create_client_reads_market_account_once(owner):
    fetcher = FakeFetcher()
    _v1_accounts(fetcher, owner)
    rpc = _rpc()
    requested = []

    async def get_account_info(address):
        requested.append(address)
        return fetcher.accounts.get(address)

    async def get_multiple_accounts(addresses):
        return [fetcher.accounts.get(address) for address in addresses]

    rpc.get_account_info = get_account_info
    rpc.get_multiple_accounts = get_multiple_accounts
    config = ClientConfig(open_orders_address=OPEN_ORDERS, account_cache_ttl=0)

    client = await create_client("confirmed", MARKET, config=config, owner=owner, rpc=rpc, load=False)

    assert requested == [MARKET]
    assert client.market.address == MARKET


@pytest.mark.asyncio
async def test_place_market_order_is_immediate_or_cancel(fetcher, owner):
    client = await _v1_client(fetcher, owner)

    ixs = await client.place_market_order(100, Side.BID, limit_price=152, execute=False)

    (ix,) = ixs
    assert int.from_bytes(ix.data[9:17], "little") == 152_000
    assert int.from_bytes(ix.data[37:41], "little") == OrderType.IMMEDIATE_OR_CANCEL
    client.submitter.submit.assert_not_awaited()

    assert await client.place_market_order(100, Side.ASK, limit_price=149) == "sig"
    client.submitter.submit.assert_awaited_once()


@pytest.mark.asyncio
async def test_market_order_does_not_change_limit_order_type(fetcher, owner):
    client = await _v1_client(fetcher, owner)
    await client.place_market_order(100, Side.BID, limit_price=152, execute=False)

    (ix,) = await client.place_limit_order(100, Side.BID, execute=False)
    assert int.from_bytes(ix.data[37:41], "little") == OrderType.POST_ONLY


@pytest.mark.asyncio
async def test_pegged_order_unsupported_on_v1(fetcher, owner):
    client = await _v1_client(fetcher, owner)
    with pytest.raises(UnsupportedOperation):
        await client.place_order_pegged(100, Side.BID, price_offset_lots=-10, execute=False)
    client.submitter.submit.assert_not_awaited()


async def _v2_client(fetcher, owner):
    fetcher.add(account(MARKET, OPENBOOK_V2_PROGRAM_ID, v2_market()))
    fetcher.add(account(key(22), OPENBOOK_V2_PROGRAM_ID, v2_book_side(Side.BID, [leaf(149_000, 1, key(7), 8)])))
    fetcher.add(account(key(23), OPENBOOK_V2_PROGRAM_ID, v2_book_side(Side.ASK, [leaf(151_000, 2, key(7), 8)])))
    fetcher.add(account(OPEN_ORDERS, OPENBOOK_V2_PROGRAM_ID, v2_open_orders(MARKET, owner.pubkey())))
    protocol = V2Protocol(OPENBOOK_V2_PROGRAM_ID)
    market = await protocol.load_market(fetcher, MARKET)
    client = OBClient(ClientConfig(), _rpc(), fetcher, protocol, market, owner, OPEN_ORDERS)
    client.submitter = SimpleNamespace(
        submit=AsyncMock(return_value=SubmissionOutcome(True, "sig", SubmissionState.CONFIRMED))
    )
    return client


@pytest.mark.asyncio
async def test_v2_pegged_order(fetcher, owner):
    client = await _v2_client(fetcher, owner)

    (ix,) = await client.place_order_pegged(
        100, Side.ASK, price_offset_lots=-3, peg_limit=160_000, reference_price=150, execute=False
    )

    assert ix.data[:8] == sighash("place_order_pegged")
    side, offset, peg_limit, max_base_lots = struct.unpack("<BqqqqQBQBB", ix.data[8:])[:4]
    assert (side, offset, peg_limit, max_base_lots) == (Side.ASK, -3, 160_000, 666)

    assert await client.place_order_pegged(100, Side.BID, price_offset_lots=2) == "sig"
    client.submitter.submit.assert_awaited_once()


@pytest.mark.asyncio
async def test_reused_account_drops_cached_view(fetcher, owner):
    client = await _v1_client(fetcher, owner, open_orders=None)
    view = await client.refresh()
    assert view.account is None
    client.rpc.get_program_accounts.return_value = [fetcher.accounts[OPEN_ORDERS]]

    await client.find_or_create_open_orders()
    fetcher.requested.clear()
    view = await client.refresh()

    assert OPEN_ORDERS in fetcher.requested
    assert view.open_orders_address == OPEN_ORDERS
    assert view.account is not None


@pytest.mark.asyncio
async def test_create_client_closes_its_rpc_on_failure(monkeypatch, owner):
    rpc = _rpc()
    rpc.get_account_info = AsyncMock(return_value=None)
    monkeypatch.setattr(client_module, "Rpc", lambda *args, **kwargs: rpc)

    with pytest.raises(MissingAccount):
        await create_client("confirmed", MARKET, config=ClientConfig(), owner=owner)
    rpc.close.assert_awaited_once()
