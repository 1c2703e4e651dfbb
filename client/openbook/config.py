import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from solders.pubkey import Pubkey

from openbook.utils.retry import RetryPolicy

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"

PROCESSED = "processed"
CONFIRMED = "confirmed"
FINALIZED = "finalized"

COMMITMENT_RANKS = {PROCESSED: 0, CONFIRMED: 1, FINALIZED: 2}


def commitment_reached(status: Optional[str], commitment: str) -> bool:
    if status is None:
        return False
    return COMMITMENT_RANKS.get(status, -1) >= COMMITMENT_RANKS[commitment]


@dataclass
class ClientConfig:
    rpc_url: str = DEFAULT_RPC_URL
    key_path: Optional[str] = None
    commitment: str = CONFIRMED
    skip_preflight: bool = True
    request_timeout: float = 30.0

    # pre-existing accounts, discovered or created when absent
    open_orders_address: Optional[Pubkey] = None
    index_address: Optional[Pubkey] = None

    cache_duration: float = 5.0
    # accounts younger than this are served from memory, 0 disables
    account_cache_ttl: float = 0.0

    fee_buffer: float = 1.1
    v1_expiry_horizon: int = 30
    v2_expiry_horizon: int = 86_400
    compute_unit_limit: int = 1_000_000
    compute_unit_limit_light: int = 800_000
    min_priority_fee: int = 1

    read_retry: RetryPolicy = field(default_factory=RetryPolicy)
    confirm_retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=10, base_delay=0.5, max_delay=8.0)
    )

    def __post_init__(self):
        if self.commitment not in COMMITMENT_RANKS:
            raise ValueError(f"Unknown commitment level {self.commitment!r}")
        if isinstance(self.open_orders_address, str):
            self.open_orders_address = Pubkey.from_string(self.open_orders_address)
        if isinstance(self.index_address, str):
            self.index_address = Pubkey.from_string(self.index_address)

    @staticmethod
    def from_env(environ: Mapping[str, str] = None, **overrides) -> "ClientConfig":
        if environ is None:
            environ = os.environ
        values = dict(
            rpc_url=environ.get("RPC_URL") or DEFAULT_RPC_URL,
            key_path=environ.get("KEY_PATH") or None,
            open_orders_address=_maybe_key(environ.get("OOS_KEY")),
            index_address=_maybe_key(environ.get("INDEX_KEY")),
        )
        values.update(overrides)
        return ClientConfig(**values)


def _maybe_key(value: Optional[str]) -> Optional[Pubkey]:
    if not value:
        return None
    try:
        return Pubkey.from_string(value)
    except ValueError:
        return None
