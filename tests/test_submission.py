from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from solders.compute_budget import ID as COMPUTE_BUDGET_PROGRAM_ID
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair

from factories import key
from openbook.errors import ConfirmationTimeout, RemoteFetchError, SubmissionFailure
from openbook.submission import SubmissionState, TransactionSubmitter
from openbook.utils.retry import RetryPolicy

CONFIRMED_STATUS = {"slot": 10, "confirmationStatus": "confirmed", "err": None}


def _rpc(statuses=None):
    rpc = SimpleNamespace()
    rpc.get_latest_blockhash = AsyncMock(return_value=(Hash.default(), 100))
    rpc.send_transaction = AsyncMock(return_value="node-signature")
    rpc.get_signature_statuses = AsyncMock(side_effect=statuses or [[None]] * 10)
    rpc.get_recent_prioritization_fees = AsyncMock(return_value=[])
    return rpc


def _submitter(rpc, owner, attempts=3):
    return TransactionSubmitter(
        rpc, owner, confirm_retry=RetryPolicy(max_attempts=attempts, base_delay=0, max_delay=0)
    )


def _ix():
    return Instruction(program_id=key(4), data=b"\x01", accounts=[AccountMeta(key(3), False, True)])


@pytest.mark.asyncio
async def test_confirmed_after_polling(owner):
    rpc = _rpc([[None], [CONFIRMED_STATUS]])
    outcome = await _submitter(rpc, owner).submit([_ix()])

    sent = rpc.send_transaction.await_args.args[0]
    assert outcome.confirmed
    assert outcome.state == SubmissionState.CONFIRMED
    assert outcome.signature == str(sent.signatures[0])
    assert rpc.get_signature_statuses.await_count == 2


@pytest.mark.asyncio
async def test_unconfirmed_send_keeps_its_signature(owner):
    rpc = _rpc()
    outcome = await _submitter(rpc, owner, attempts=2).submit([_ix()])

    confirmed, signature = outcome
    assert not confirmed
    assert signature is not None
    assert signature == str(rpc.send_transaction.await_args.args[0].signatures[0])
    assert outcome.state == SubmissionState.TIMED_OUT
    assert isinstance(outcome.error, ConfirmationTimeout)
    assert rpc.get_signature_statuses.await_count == 2


@pytest.mark.asyncio
async def test_weaker_commitment_is_not_enough(owner):
    processed = dict(CONFIRMED_STATUS, confirmationStatus="processed")
    rpc = _rpc([[processed], [processed]])
    outcome = await _submitter(rpc, owner, attempts=2).submit([_ix()])
    assert outcome.state == SubmissionState.TIMED_OUT


@pytest.mark.asyncio
async def test_rejected_send_is_final(owner):
    rpc = _rpc()
    rpc.send_transaction.side_effect = SubmissionFailure("blockhash not found")
    outcome = await _submitter(rpc, owner).submit([_ix()])

    assert outcome.state == SubmissionState.FAILED
    assert not outcome.confirmed
    assert isinstance(outcome.error, SubmissionFailure)
    assert rpc.send_transaction.await_count == 1
    rpc.get_signature_statuses.assert_not_awaited()


@pytest.mark.asyncio
async def test_send_without_answer_is_still_polled(owner):
    rpc = _rpc([[CONFIRMED_STATUS]])
    rpc.send_transaction.side_effect = RemoteFetchError("connection reset")
    outcome = await _submitter(rpc, owner).submit([_ix()])
    assert outcome.state == SubmissionState.CONFIRMED


@pytest.mark.asyncio
async def test_failed_status(owner):
    rpc = _rpc([[dict(CONFIRMED_STATUS, err={"InstructionError": [0, "Custom"]})]])
    outcome = await _submitter(rpc, owner).submit([_ix()])

    assert outcome.state == SubmissionState.FAILED
    assert outcome.error == {"InstructionError": [0, "Custom"]}


@pytest.mark.asyncio
async def test_status_poll_errors_are_retried(owner):
    rpc = _rpc([RemoteFetchError("503"), [CONFIRMED_STATUS]])
    outcome = await _submitter(rpc, owner).submit([_ix()])
    assert outcome.confirmed


@pytest.mark.asyncio
async def test_compute_budget_prepended(owner):
    rpc = _rpc([[CONFIRMED_STATUS]])
    rpc.get_recent_prioritization_fees.return_value = [0, 5_000, 12]
    await _submitter(rpc, owner).submit([_ix()], compute_unit_limit=800_000)

    message = rpc.send_transaction.await_args.args[0].message
    compiled = message.instructions
    assert len(compiled) == 3
    assert [message.account_keys[ix.program_id_index] for ix in compiled] == [
        COMPUTE_BUDGET_PROGRAM_ID,
        COMPUTE_BUDGET_PROGRAM_ID,
        key(4),
    ]
    assert bytes(compiled[0].data) == bytes([2]) + (800_000).to_bytes(4, "little")
    assert bytes(compiled[1].data) == bytes([3]) + (5_000).to_bytes(8, "little")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "samples,expected",
    [([], 1), ([0, 0], 1), ([10, 7_500, 300], 7_500), (RemoteFetchError("down"), 1)],
)
async def test_priority_fee(owner, samples, expected):
    rpc = _rpc()
    if isinstance(samples, Exception):
        rpc.get_recent_prioritization_fees.side_effect = samples
    else:
        rpc.get_recent_prioritization_fees.return_value = samples
    assert await _submitter(rpc, owner).priority_fee() == expected


@pytest.mark.asyncio
async def test_only_required_signers_sign(owner):
    rpc = _rpc([[CONFIRMED_STATUS]])
    account = Keypair.from_seed(bytes([7]) * 32)
    unrelated = Keypair.from_seed(bytes([8]) * 32)
    ix = Instruction(
        program_id=key(4),
        data=b"\x02",
        accounts=[AccountMeta(account.pubkey(), True, True), AccountMeta(key(3), False, False)],
    )

    await _submitter(rpc, owner).submit([ix], signers=[account, unrelated, account, owner])

    tx = rpc.send_transaction.await_args.args[0]
    assert len(tx.signatures) == 2
    assert list(tx.message.account_keys[:2]) == [owner.pubkey(), account.pubkey()]
    assert tx.verify_with_results() == [True, True]
