import struct
from typing import Optional, Sequence

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from openbook.orderbook import OrderType, SelfTradeBehavior, Side
from openbook.program_ids import SPL_TOKEN_PROGRAM_ID, SYSTEM_PROGRAM_ID
from openbook.utils.solana import sighash

OPEN_ORDERS_INDEXER_SEED = b"OpenOrdersIndexer"
OPEN_ORDERS_SEED = b"OpenOrders"


def _optional(program_id: Pubkey, key: Optional[Pubkey], is_signer=False, is_writable=False) -> AccountMeta:
    # absent optional accounts are passed as the program id
    if key is None:
        return AccountMeta(program_id, is_signer=False, is_writable=False)
    return AccountMeta(key, is_signer=is_signer, is_writable=is_writable)


def _borsh_string(value: str) -> bytes:
    raw = value.encode()
    return struct.pack("<I", len(raw)) + raw


def get_open_orders_indexer(owner: Pubkey, program_id: Pubkey) -> Pubkey:
    return Pubkey.find_program_address([OPEN_ORDERS_INDEXER_SEED, bytes(owner)], program_id)[0]


def get_open_orders_account(owner: Pubkey, account_num: int, program_id: Pubkey) -> Pubkey:
    return Pubkey.find_program_address(
        [OPEN_ORDERS_SEED, bytes(owner), struct.pack("<I", account_num)], program_id
    )[0]


def create_open_orders_indexer_ix(
    program_id: Pubkey,
    payer: Pubkey,
    owner: Pubkey,
    open_orders_indexer: Pubkey,
):
    return Instruction(
        accounts=[
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(owner, is_signer=True, is_writable=False),
            AccountMeta(open_orders_indexer, is_signer=False, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
        program_id=program_id,
        data=sighash("create_open_orders_indexer"),
    )


def create_open_orders_account_ix(
    program_id: Pubkey,
    payer: Pubkey,
    owner: Pubkey,
    open_orders_indexer: Pubkey,
    open_orders_account: Pubkey,
    market: Pubkey,
    name: str,
    delegate: Optional[Pubkey] = None,
):
    return Instruction(
        accounts=[
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(owner, is_signer=True, is_writable=False),
            _optional(program_id, delegate),
            AccountMeta(open_orders_indexer, is_signer=False, is_writable=True),
            AccountMeta(open_orders_account, is_signer=False, is_writable=True),
            AccountMeta(market, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
        program_id=program_id,
        data=sighash("create_open_orders_account") + _borsh_string(name),
    )


def _place_order_keys(
    program_id, signer, open_orders_account, open_orders_admin, user_token_account, market,
    bids, asks, event_heap, market_vault, oracle_a, oracle_b,
):
    return [
        AccountMeta(signer, is_signer=True, is_writable=False),
        AccountMeta(open_orders_account, is_signer=False, is_writable=True),
        _optional(program_id, open_orders_admin, is_signer=True),
        AccountMeta(user_token_account, is_signer=False, is_writable=True),
        AccountMeta(market, is_signer=False, is_writable=True),
        AccountMeta(bids, is_signer=False, is_writable=True),
        AccountMeta(asks, is_signer=False, is_writable=True),
        AccountMeta(event_heap, is_signer=False, is_writable=True),
        AccountMeta(market_vault, is_signer=False, is_writable=True),
        _optional(program_id, oracle_a),
        _optional(program_id, oracle_b),
        AccountMeta(SPL_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]


def place_order_ix(
    program_id: Pubkey,
    signer: Pubkey,
    open_orders_account: Pubkey,
    user_token_account: Pubkey,
    market: Pubkey,
    bids: Pubkey,
    asks: Pubkey,
    event_heap: Pubkey,
    market_vault: Pubkey,
    side: Side,
    price_lots: int,  # i64
    max_base_lots: int,  # i64
    max_quote_lots_including_fees: int,  # i64
    client_order_id: int,  # u64
    order_type: OrderType,
    expiry_timestamp: int,  # u64, 0 never expires
    self_trade_behavior: SelfTradeBehavior = SelfTradeBehavior.ABORT_TRANSACTION,
    limit: int = 12,  # u8
    open_orders_admin: Optional[Pubkey] = None,
    oracle_a: Optional[Pubkey] = None,
    oracle_b: Optional[Pubkey] = None,
):
    params = [
        int(side),
        price_lots,
        max_base_lots,
        max_quote_lots_including_fees,
        client_order_id,
        int(order_type),
        expiry_timestamp,
        int(self_trade_behavior),
        limit,
    ]
    return Instruction(
        accounts=_place_order_keys(
            program_id, signer, open_orders_account, open_orders_admin, user_token_account,
            market, bids, asks, event_heap, market_vault, oracle_a, oracle_b,
        ),
        program_id=program_id,
        data=sighash("place_order") + struct.pack("<BqqqQBQBB", *params),
    )


def place_order_pegged_ix(
    program_id: Pubkey,
    signer: Pubkey,
    open_orders_account: Pubkey,
    user_token_account: Pubkey,
    market: Pubkey,
    bids: Pubkey,
    asks: Pubkey,
    event_heap: Pubkey,
    market_vault: Pubkey,
    side: Side,
    price_offset_lots: int,  # i64
    peg_limit: int,  # i64, -1 for no limit
    max_base_lots: int,  # i64
    max_quote_lots_including_fees: int,  # i64
    client_order_id: int,  # u64
    order_type: OrderType,
    expiry_timestamp: int,  # u64
    self_trade_behavior: SelfTradeBehavior = SelfTradeBehavior.ABORT_TRANSACTION,
    limit: int = 12,  # u8
    open_orders_admin: Optional[Pubkey] = None,
    oracle_a: Optional[Pubkey] = None,
    oracle_b: Optional[Pubkey] = None,
):
    params = [
        int(side),
        price_offset_lots,
        peg_limit,
        max_base_lots,
        max_quote_lots_including_fees,
        client_order_id,
        int(order_type),
        expiry_timestamp,
        int(self_trade_behavior),
        limit,
    ]
    return Instruction(
        accounts=_place_order_keys(
            program_id, signer, open_orders_account, open_orders_admin, user_token_account,
            market, bids, asks, event_heap, market_vault, oracle_a, oracle_b,
        ),
        program_id=program_id,
        data=sighash("place_order_pegged") + struct.pack("<BqqqqQBQBB", *params),
    )


def cancel_order_ix(
    program_id: Pubkey,
    signer: Pubkey,
    open_orders_account: Pubkey,
    market: Pubkey,
    bids: Pubkey,
    asks: Pubkey,
    order_id: int,  # u128
):
    return Instruction(
        accounts=[
            AccountMeta(signer, is_signer=True, is_writable=False),
            AccountMeta(open_orders_account, is_signer=False, is_writable=True),
            AccountMeta(market, is_signer=False, is_writable=False),
            AccountMeta(bids, is_signer=False, is_writable=True),
            AccountMeta(asks, is_signer=False, is_writable=True),
        ],
        program_id=program_id,
        data=sighash("cancel_order") + order_id.to_bytes(16, "little"),
    )


def cancel_all_orders_ix(
    program_id: Pubkey,
    signer: Pubkey,
    open_orders_account: Pubkey,
    market: Pubkey,
    bids: Pubkey,
    asks: Pubkey,
    side: Optional[Side] = None,
    limit: int = 255,  # u8
):
    side_option = b"\x00" if side is None else struct.pack("<BB", 1, int(side))
    return Instruction(
        accounts=[
            AccountMeta(signer, is_signer=True, is_writable=False),
            AccountMeta(open_orders_account, is_signer=False, is_writable=True),
            AccountMeta(market, is_signer=False, is_writable=False),
            AccountMeta(bids, is_signer=False, is_writable=True),
            AccountMeta(asks, is_signer=False, is_writable=True),
        ],
        program_id=program_id,
        data=sighash("cancel_all_orders") + side_option + struct.pack("<B", limit),
    )


def settle_funds_ix(
    program_id: Pubkey,
    owner: Pubkey,
    penalty_payer: Pubkey,
    open_orders_account: Pubkey,
    market: Pubkey,
    market_authority: Pubkey,
    market_base_vault: Pubkey,
    market_quote_vault: Pubkey,
    user_base_account: Pubkey,
    user_quote_account: Pubkey,
    referrer_account: Optional[Pubkey] = None,
):
    return Instruction(
        accounts=[
            AccountMeta(owner, is_signer=True, is_writable=True),
            AccountMeta(penalty_payer, is_signer=True, is_writable=True),
            AccountMeta(open_orders_account, is_signer=False, is_writable=True),
            AccountMeta(market, is_signer=False, is_writable=True),
            AccountMeta(market_authority, is_signer=False, is_writable=False),
            AccountMeta(market_base_vault, is_signer=False, is_writable=True),
            AccountMeta(market_quote_vault, is_signer=False, is_writable=True),
            AccountMeta(user_base_account, is_signer=False, is_writable=True),
            AccountMeta(user_quote_account, is_signer=False, is_writable=True),
            _optional(program_id, referrer_account, is_writable=True),
            AccountMeta(SPL_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
        program_id=program_id,
        data=sighash("settle_funds"),
    )


def deposit_ix(
    program_id: Pubkey,
    owner: Pubkey,
    user_base_account: Pubkey,
    user_quote_account: Pubkey,
    open_orders_account: Pubkey,
    market: Pubkey,
    market_base_vault: Pubkey,
    market_quote_vault: Pubkey,
    base_amount: int,  # u64
    quote_amount: int,  # u64
):
    return Instruction(
        accounts=[
            AccountMeta(owner, is_signer=True, is_writable=False),
            AccountMeta(user_base_account, is_signer=False, is_writable=True),
            AccountMeta(user_quote_account, is_signer=False, is_writable=True),
            AccountMeta(open_orders_account, is_signer=False, is_writable=True),
            AccountMeta(market, is_signer=False, is_writable=True),
            AccountMeta(market_base_vault, is_signer=False, is_writable=True),
            AccountMeta(market_quote_vault, is_signer=False, is_writable=True),
            AccountMeta(SPL_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
        program_id=program_id,
        data=sighash("deposit") + struct.pack("<QQ", base_amount, quote_amount),
    )


def consume_events_ix(
    program_id: Pubkey,
    market: Pubkey,
    event_heap: Pubkey,
    open_orders_accounts: Sequence[Pubkey],
    limit: int,  # usize
    consume_events_admin: Optional[Pubkey] = None,
):
    keys = [
        _optional(program_id, consume_events_admin, is_signer=True),
        AccountMeta(market, is_signer=False, is_writable=True),
        AccountMeta(event_heap, is_signer=False, is_writable=True),
    ]
    keys += [AccountMeta(pk, is_signer=False, is_writable=True) for pk in open_orders_accounts]
    return Instruction(
        accounts=keys,
        program_id=program_id,
        data=sighash("consume_events") + struct.pack("<Q", limit),
    )
