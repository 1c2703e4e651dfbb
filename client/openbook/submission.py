from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence

from loguru import logger
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from openbook.config import CONFIRMED, commitment_reached
from openbook.errors import ConfirmationTimeout, RemoteFetchError, SubmissionFailure
from openbook.rpc import Rpc
from openbook.utils.retry import RetryPolicy


class SubmissionState(Enum):
    BUILT = "built"
    SIGNED = "signed"
    SENT = "sent"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class SubmissionOutcome:
    confirmed: bool
    signature: Optional[str]
    state: SubmissionState
    error: Any = None

    def __iter__(self):
        # unpacks as (confirmed, signature)
        return iter((self.confirmed, self.signature))


class _NotYetConfirmed(Exception):
    pass


class TransactionSubmitter:
    """Signs, sends and confirms transactions.

    A rejected send is final and never retried. A send whose outcome is
    unknown (transport failure) is still polled for, since the node may
    have forwarded it. Polling follows ``confirm_retry``; when it runs out
    the outcome is TIMED_OUT and carries the signature, which may still land.

    Args:
        rpc: Remote node client.
        payer: Fee payer, always the first signer.
        commitment: Status a transaction has to reach to count as confirmed.
        skip_preflight: Skip simulation on send.
        confirm_retry: Polling schedule for confirmation.
        min_priority_fee: Floor for the compute unit price in micro lamports.
    """

    def __init__(
        self,
        rpc: Rpc,
        payer: Keypair,
        commitment: str = CONFIRMED,
        skip_preflight: bool = True,
        confirm_retry: Optional[RetryPolicy] = None,
        min_priority_fee: int = 1,
    ):
        self.rpc = rpc
        self.payer = payer
        self.commitment = commitment
        self.skip_preflight = skip_preflight
        self.confirm_retry = confirm_retry or RetryPolicy(max_attempts=10, base_delay=0.5, max_delay=8.0)
        self.min_priority_fee = min_priority_fee

    @staticmethod
    def from_config(rpc: Rpc, payer: Keypair, config) -> "TransactionSubmitter":
        return TransactionSubmitter(
            rpc,
            payer,
            commitment=config.commitment,
            skip_preflight=config.skip_preflight,
            confirm_retry=config.confirm_retry,
            min_priority_fee=config.min_priority_fee,
        )

    async def priority_fee(self, addresses: Sequence[Pubkey] = ()) -> int:
        """Highest recently observed prioritization fee, at least ``min_priority_fee``."""
        try:
            samples = await self.rpc.get_recent_prioritization_fees(addresses)
        except RemoteFetchError as e:
            logger.warning("Could not fetch prioritization fees, using {}: {}", self.min_priority_fee, e)
            return self.min_priority_fee
        fee = max(samples, default=0)
        return max(fee, self.min_priority_fee)

    async def compute_budget_ixs(self, compute_unit_limit: int) -> List[Instruction]:
        fee = await self.priority_fee()
        logger.debug("Using compute unit limit {} and price {}", compute_unit_limit, fee)
        return [set_compute_unit_limit(compute_unit_limit), set_compute_unit_price(fee)]

    def _signers(self, message: MessageV0, signers: Sequence[Keypair]) -> List[Keypair]:
        """Payer first, then each extra keypair the message requires, once."""
        required = set(message.account_keys[:message.header.num_required_signatures])
        keypairs = [self.payer]
        seen = {self.payer.pubkey()}
        for signer in signers:
            pubkey = signer.pubkey()
            if pubkey in required and pubkey not in seen:
                keypairs.append(signer)
                seen.add(pubkey)
        return keypairs

    async def submit(
        self,
        ixs: Sequence[Instruction],
        signers: Sequence[Keypair] = (),
        compute_unit_limit: Optional[int] = None,
    ) -> SubmissionOutcome:
        instructions = list(ixs)
        if compute_unit_limit is not None:
            instructions = [*await self.compute_budget_ixs(compute_unit_limit), *instructions]
        state = SubmissionState.BUILT
        logger.debug("Transaction with {} instructions {}", len(instructions), state.value)

        blockhash, _ = await self.rpc.get_latest_blockhash()
        message = MessageV0.try_compile(self.payer.pubkey(), instructions, [], blockhash)
        tx = VersionedTransaction(message, self._signers(message, signers))
        state = SubmissionState.SIGNED
        signature = str(tx.signatures[0])
        logger.debug("Transaction {} {}", signature, state.value)

        try:
            await self.rpc.send_transaction(tx, skip_preflight=self.skip_preflight)
        except SubmissionFailure as e:
            logger.error("Transaction {} rejected: {}", signature, e)
            return SubmissionOutcome(False, signature, SubmissionState.FAILED, e)
        except RemoteFetchError as e:
            logger.warning("Send of {} had no answer, polling anyway: {}", signature, e)
        state = SubmissionState.SENT
        logger.info("Transaction {} {}", signature, state.value)

        return await self.confirm(signature)

    async def confirm(self, signature: str) -> SubmissionOutcome:
        try:
            async for attempt in self.confirm_retry.retrying((_NotYetConfirmed, RemoteFetchError)):
                with attempt:
                    statuses = await self.rpc.get_signature_statuses([signature])
                    status = statuses[0] if statuses else None
                    if status is not None and status.get("err") is not None:
                        logger.error("Transaction {} failed: {}", signature, status["err"])
                        return SubmissionOutcome(False, signature, SubmissionState.FAILED, status["err"])
                    if status is None or not commitment_reached(status.get("confirmationStatus"), self.commitment):
                        raise _NotYetConfirmed(signature)
        except (_NotYetConfirmed, RemoteFetchError):
            logger.warning("Could not confirm transaction {}, it may still land", signature)
            return SubmissionOutcome(False, signature, SubmissionState.TIMED_OUT, ConfirmationTimeout(signature))

        logger.info("Confirmed transaction {}", signature)
        return SubmissionOutcome(True, signature, SubmissionState.CONFIRMED)
