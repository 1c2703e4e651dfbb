import itertools
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import base58
import httpx
from loguru import logger
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.core import RPCException
from solana.rpc.types import MemcmpOpts, TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus

from openbook.config import CONFIRMED
from openbook.errors import RemoteFetchError, SubmissionFailure
from openbook.utils.retry import RetryPolicy
from openbook.utils.solana import AccountInfo, TransactionDetails

MAX_MULTIPLE_ACCOUNTS = 100

CONFIRMATION_STATUSES = {
    TransactionConfirmationStatus.Processed: "processed",
    TransactionConfirmationStatus.Confirmed: "confirmed",
    TransactionConfirmationStatus.Finalized: "finalized",
}

ProgramAccountsFilter = Union[int, MemcmpOpts]


def memcmp(offset: int, data: Union[bytes, Pubkey]) -> MemcmpOpts:
    return MemcmpOpts(offset=offset, bytes=base58.b58encode(bytes(data)).decode("ascii"))


def data_size(size: int) -> int:
    return size


class TransportError(RemoteFetchError):
    """The node could not be reached or answered with an HTTP error."""


class RpcError(RemoteFetchError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, error: Any):
        self.method = method
        self.error = error
        super().__init__(f"{method} failed: {error}")


def _signature(signature: Union[str, Signature]) -> Signature:
    if isinstance(signature, Signature):
        return signature
    return Signature.from_string(signature)


class Rpc:
    """Retrying, domain-typed facade over ``solana.rpc.async_api.AsyncClient``.

    Reads are retried under ``retry`` when the node cannot be reached; an
    error object from the node is deterministic and raised right away.
    ``send_transaction`` is never retried.

    Args:
        endpoint: HTTP(S) URL of the node.
        commitment: Default commitment for reads.
        retry: Backoff policy for reads.
        timeout: Per-request timeout in seconds.
        client: Pre-built ``AsyncClient``.
        http: Pre-built ``httpx.AsyncClient`` for methods ``AsyncClient`` lacks.
    """

    def __init__(
        self,
        endpoint: str,
        commitment: str = CONFIRMED,
        retry: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
        client: Optional[AsyncClient] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint
        self.commitment = commitment
        self.retry = retry or RetryPolicy()
        self.client = client or AsyncClient(endpoint, commitment=commitment, timeout=timeout)
        self.http = http or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "Rpc":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()
        await self.http.aclose()

    async def _call(self, method: str, *args, **kwargs):
        try:
            return await getattr(self.client, method)(*args, **kwargs)
        except SolanaRpcException as e:
            raise TransportError(f"{method} request failed: {e}") from e
        except RPCException as e:
            raise RpcError(method, e) from e

    async def _read(self, method: str, *args, **kwargs):
        return await self.retry.call(self._call, method, *args, retry_on=(TransportError,), **kwargs)

    async def _raw(self, method: str, params: Optional[list] = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        try:
            response = await self.http.post(self.endpoint, json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransportError(f"{method} request failed: {e}") from e
        if "error" in body:
            raise RpcError(method, body["error"])
        return body.get("result")

    async def get_account_info(self, pubkey: Pubkey, commitment: Optional[str] = None) -> Optional[AccountInfo]:
        resp = await self._read("get_account_info", pubkey, commitment=commitment, encoding="base64")
        if resp.value is None:
            return None
        return AccountInfo.from_account(pubkey, resp.value)

    async def get_multiple_accounts(
        self, pubkeys: Sequence[Pubkey], commitment: Optional[str] = None
    ) -> List[Optional[AccountInfo]]:
        accounts: List[Optional[AccountInfo]] = []
        for start in range(0, len(pubkeys), MAX_MULTIPLE_ACCOUNTS):
            chunk = list(pubkeys[start:start + MAX_MULTIPLE_ACCOUNTS])
            resp = await self._read("get_multiple_accounts", chunk, commitment=commitment, encoding="base64")
            for pk, value in zip(chunk, resp.value):
                accounts.append(None if value is None else AccountInfo.from_account(pk, value))
        return accounts

    async def get_program_accounts(
        self,
        program_id: Pubkey,
        filters: Sequence[ProgramAccountsFilter] = (),
        commitment: Optional[str] = None,
    ) -> List[AccountInfo]:
        resp = await self._read(
            "get_program_accounts",
            program_id,
            commitment=commitment,
            encoding="base64",
            filters=list(filters),
        )
        return [AccountInfo.from_account(keyed.pubkey, keyed.account) for keyed in resp.value]

    async def get_latest_blockhash(self, commitment: Optional[str] = None) -> Tuple[Hash, int]:
        resp = await self._read("get_latest_blockhash", commitment=commitment)
        return resp.value.blockhash, resp.value.last_valid_block_height

    async def send_transaction(self, tx: VersionedTransaction, skip_preflight: bool = True) -> str:
        signature = str(tx.signatures[0])
        opts = TxOpts(
            skip_confirmation=True,
            skip_preflight=skip_preflight,
            preflight_commitment=self.commitment,
        )
        try:
            resp = await self._call("send_raw_transaction", bytes(tx), opts=opts)
        except RpcError as e:
            raise SubmissionFailure(
                f"Transaction {signature} rejected: {e.error}", signature=signature, error=e.error
            ) from e
        logger.debug("Sent transaction {}", resp.value)
        return str(resp.value)

    async def get_signature_statuses(self, signatures: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
        resp = await self._call("get_signature_statuses", [_signature(s) for s in signatures])
        return [
            None
            if status is None
            else {
                "slot": status.slot,
                "err": status.err,
                "confirmationStatus": CONFIRMATION_STATUSES.get(status.confirmation_status),
            }
            for status in resp.value
        ]

    async def get_recent_prioritization_fees(self, addresses: Sequence[Pubkey] = ()) -> List[int]:
        result = await self.retry.call(
            self._raw,
            "getRecentPrioritizationFees",
            [[str(pk) for pk in addresses]],
            retry_on=(TransportError,),
        )
        return [sample["prioritizationFee"] for sample in result]

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        resp = await self._read("get_minimum_balance_for_rent_exemption", size)
        return resp.value

    async def get_signatures_for_address(
        self, address: Pubkey, limit: Optional[int] = None, before: Optional[str] = None
    ) -> List[str]:
        resp = await self._read(
            "get_signatures_for_address",
            address,
            before=_signature(before) if before is not None else None,
            limit=limit,
        )
        return [str(entry.signature) for entry in resp.value]

    async def get_transaction(self, signature: str) -> Optional[TransactionDetails]:
        resp = await self._read(
            "get_transaction", _signature(signature), encoding="json", max_supported_transaction_version=0
        )
        if resp.value is None:
            return None
        return TransactionDetails.from_confirmed(str(signature), resp.value)

    async def get_token_account_balance(self, pubkey: Pubkey) -> Decimal:
        resp = await self._read("get_token_account_balance", pubkey)
        return Decimal(resp.value.ui_amount_string)
