import json
import time
from dataclasses import dataclass, field
from hashlib import sha256
from pathlib import Path
from typing import List, Optional, Union

from solders.keypair import Keypair
from solders.pubkey import Pubkey


@dataclass
class AccountInfo:
    public_key: Pubkey
    owner: Pubkey
    lamports: int
    data: bytes = field(repr=False)
    executable: bool = False

    @staticmethod
    def from_account(public_key: Pubkey, account) -> "AccountInfo":
        """From the ``Account`` value of an RPC response."""
        return AccountInfo(
            public_key=public_key,
            owner=account.owner,
            lamports=account.lamports,
            data=bytes(account.data),
            executable=account.executable,
        )

    def __str__(self) -> str:
        return f"AccountInfo({self.public_key})"


@dataclass
class TransactionDetails:
    signature: str
    slot: int
    error: object = None
    log_messages: List[str] = field(default_factory=list)

    @staticmethod
    def from_confirmed(signature: str, confirmed) -> "TransactionDetails":
        meta = confirmed.transaction.meta
        return TransactionDetails(
            signature=signature,
            slot=confirmed.slot,
            error=meta.err if meta is not None else None,
            log_messages=list(meta.log_messages or []) if meta is not None else [],
        )

    def __str__(self) -> str:
        return f"TransactionDetails({self.signature})"


def get_unix_secs() -> int:
    return int(time.time())


def sighash(ix_name: str) -> bytes:
    """Not technically sighash, since we don't include the arguments.
    (Because Rust doesn't allow function overloading.)
    Args:
        ix_name: The instruction name.
    Returns:
        The sighash bytes.
    """
    formatted_str = f"global:{ix_name}"
    return sha256(formatted_str.encode()).digest()[:8]


def account_discriminator(account_name: str) -> bytes:
    return sha256(f"account:{account_name}".encode()).digest()[:8]


def optional_key(key: Optional[Pubkey]) -> Optional[Pubkey]:
    """Anchor stores absent keys as all zeroes."""
    if key is None or key == Pubkey.default():
        return None
    return key


def read_keypair(path: Union[str, Path]) -> Keypair:
    """Load a keypair file, either a JSON byte array or a base58 string."""
    content = Path(path).expanduser().read_text().strip()
    if not content.startswith("["):
        return Keypair.from_base58_string(content)
    raw = bytes(json.loads(content))
    if len(raw) == 32:
        return Keypair.from_seed(raw)
    return Keypair.from_bytes(raw)
