import struct
from typing import Optional, Sequence

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from openbook.orderbook import OrderType, SelfTradeBehavior, Side
from openbook.program_ids import RENT_PROGRAM_ID, SPL_TOKEN_PROGRAM_ID

INSTRUCTION_VERSION = 0


class InstructionCode:
    MATCH_ORDERS = 2
    CONSUME_EVENTS = 3
    SETTLE_FUNDS = 5
    NEW_ORDER_V3 = 10
    CANCEL_ORDER_V2 = 11
    INIT_OPEN_ORDERS = 15
    CONSUME_EVENTS_PERMISSIONED = 17


def _header(code: int) -> bytes:
    return struct.pack("<BI", INSTRUCTION_VERSION, code)


def init_open_orders_ix(
    program_id: Pubkey,
    open_orders: Pubkey,
    owner: Pubkey,
    market: Pubkey,
    market_authority: Optional[Pubkey] = None,
):
    keys = [
        AccountMeta(open_orders, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=True, is_writable=False),
        AccountMeta(market, is_signer=False, is_writable=False),
        AccountMeta(RENT_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    if market_authority is not None:
        keys.append(AccountMeta(market_authority, is_signer=True, is_writable=False))
    return Instruction(
        accounts=keys,
        program_id=program_id,
        data=_header(InstructionCode.INIT_OPEN_ORDERS),
    )


def new_order_v3_ix(
    program_id: Pubkey,
    market: Pubkey,
    open_orders: Pubkey,
    request_queue: Pubkey,
    event_queue: Pubkey,
    bids: Pubkey,
    asks: Pubkey,
    order_payer: Pubkey,
    owner: Pubkey,
    coin_vault: Pubkey,
    pc_vault: Pubkey,
    side: Side,
    limit_price: int,  # u64, non zero
    max_coin_qty: int,  # u64, non zero
    max_native_pc_qty_including_fees: int,  # u64, non zero
    order_type: OrderType,
    client_order_id: int,
    self_trade_behavior: SelfTradeBehavior = SelfTradeBehavior.ABORT_TRANSACTION,
    limit: int = 65535,
    max_ts: int = 2 ** 63 - 1,
    srm_account: Optional[Pubkey] = None,
):
    if order_type > OrderType.POST_ONLY:
        raise ValueError(f"Order type {order_type!r} is not available on this program")
    if min(limit_price, max_coin_qty, max_native_pc_qty_including_fees) <= 0:
        raise ValueError("Price and quantities must be non zero")

    params = [
        int(side),
        limit_price,
        max_coin_qty,
        max_native_pc_qty_including_fees,
        int(self_trade_behavior),
        int(order_type),
        client_order_id,
        limit,
        max_ts,
    ]
    keys = [
        AccountMeta(market, is_signer=False, is_writable=True),
        AccountMeta(open_orders, is_signer=False, is_writable=True),
        AccountMeta(request_queue, is_signer=False, is_writable=True),
        AccountMeta(event_queue, is_signer=False, is_writable=True),
        AccountMeta(bids, is_signer=False, is_writable=True),
        AccountMeta(asks, is_signer=False, is_writable=True),
        AccountMeta(order_payer, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=True, is_writable=False),
        AccountMeta(coin_vault, is_signer=False, is_writable=True),
        AccountMeta(pc_vault, is_signer=False, is_writable=True),
        AccountMeta(SPL_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(RENT_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    if srm_account is not None:
        keys.append(AccountMeta(srm_account, is_signer=False, is_writable=False))
    return Instruction(
        accounts=keys,
        program_id=program_id,
        data=_header(InstructionCode.NEW_ORDER_V3) + struct.pack("<IQQQIIQHq", *params),
    )


def cancel_order_v2_ix(
    program_id: Pubkey,
    market: Pubkey,
    bids: Pubkey,
    asks: Pubkey,
    open_orders: Pubkey,
    owner: Pubkey,
    event_queue: Pubkey,
    side: Side,
    order_id: int,  # u128
):
    return Instruction(
        accounts=[
            AccountMeta(market, is_signer=False, is_writable=True),
            AccountMeta(bids, is_signer=False, is_writable=True),
            AccountMeta(asks, is_signer=False, is_writable=True),
            AccountMeta(open_orders, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=True, is_writable=False),
            AccountMeta(event_queue, is_signer=False, is_writable=True),
        ],
        program_id=program_id,
        data=_header(InstructionCode.CANCEL_ORDER_V2)
        + struct.pack("<I", int(side))
        + order_id.to_bytes(16, "little"),
    )


def settle_funds_ix(
    program_id: Pubkey,
    market: Pubkey,
    open_orders: Pubkey,
    owner: Pubkey,
    coin_vault: Pubkey,
    coin_wallet: Pubkey,
    pc_vault: Pubkey,
    pc_wallet: Pubkey,
    vault_signer: Pubkey,
    referrer_pc_wallet: Optional[Pubkey] = None,
):
    keys = [
        AccountMeta(market, is_signer=False, is_writable=True),
        AccountMeta(open_orders, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=True, is_writable=False),
        AccountMeta(coin_vault, is_signer=False, is_writable=True),
        AccountMeta(pc_vault, is_signer=False, is_writable=True),
        AccountMeta(coin_wallet, is_signer=False, is_writable=True),
        AccountMeta(pc_wallet, is_signer=False, is_writable=True),
        AccountMeta(vault_signer, is_signer=False, is_writable=False),
        AccountMeta(SPL_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    if referrer_pc_wallet is not None:
        keys.append(AccountMeta(referrer_pc_wallet, is_signer=False, is_writable=True))
    return Instruction(
        accounts=keys,
        program_id=program_id,
        data=_header(InstructionCode.SETTLE_FUNDS),
    )


def match_orders_ix(
    program_id: Pubkey,
    market: Pubkey,
    request_queue: Pubkey,
    bids: Pubkey,
    asks: Pubkey,
    event_queue: Pubkey,
    coin_fee_receivable: Pubkey,
    pc_fee_receivable: Pubkey,
    limit: int,  # u16
):
    return Instruction(
        accounts=[
            AccountMeta(market, is_signer=False, is_writable=True),
            AccountMeta(request_queue, is_signer=False, is_writable=True),
            AccountMeta(event_queue, is_signer=False, is_writable=True),
            AccountMeta(bids, is_signer=False, is_writable=True),
            AccountMeta(asks, is_signer=False, is_writable=True),
            AccountMeta(coin_fee_receivable, is_signer=False, is_writable=True),
            AccountMeta(pc_fee_receivable, is_signer=False, is_writable=True),
        ],
        program_id=program_id,
        data=_header(InstructionCode.MATCH_ORDERS) + struct.pack("<H", limit),
    )


def consume_events_ix(
    program_id: Pubkey,
    open_orders_accounts: Sequence[Pubkey],
    market: Pubkey,
    event_queue: Pubkey,
    coin_fee_receivable: Pubkey,
    pc_fee_receivable: Pubkey,
    limit: int,  # u16
):
    keys = [AccountMeta(pk, is_signer=False, is_writable=True) for pk in open_orders_accounts]
    keys += [
        AccountMeta(market, is_signer=False, is_writable=True),
        AccountMeta(event_queue, is_signer=False, is_writable=True),
        AccountMeta(coin_fee_receivable, is_signer=False, is_writable=True),
        AccountMeta(pc_fee_receivable, is_signer=False, is_writable=True),
    ]
    return Instruction(
        accounts=keys,
        program_id=program_id,
        data=_header(InstructionCode.CONSUME_EVENTS) + struct.pack("<H", limit),
    )


def consume_events_permissioned_ix(
    program_id: Pubkey,
    open_orders_accounts: Sequence[Pubkey],
    market: Pubkey,
    event_queue: Pubkey,
    consume_events_authority: Pubkey,
    limit: int,  # u16
):
    keys = [AccountMeta(pk, is_signer=False, is_writable=True) for pk in open_orders_accounts]
    keys += [
        AccountMeta(market, is_signer=False, is_writable=True),
        AccountMeta(event_queue, is_signer=False, is_writable=True),
        AccountMeta(consume_events_authority, is_signer=True, is_writable=False),
    ]
    return Instruction(
        accounts=keys,
        program_id=program_id,
        data=_header(InstructionCode.CONSUME_EVENTS_PERMISSIONED) + struct.pack("<H", limit),
    )
