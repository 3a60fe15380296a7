"""
Pending Operation state machine
"""

import os

import pytest

from voting.errors import PhaseOrderError
from voting.phases import (
    DeclaredOutputs, OperationKind, PendingOperation, Phase, PhaseEvent, operation_addresses,
)
from zk.errors import CircuitInputError

BALLOT_ID = b"\x21" * 32
MINT = b"\x22" * 32
SUBMITTER = b"\x23" * 32


def _operation(kind: OperationKind) -> PendingOperation:
    outputs = DeclaredOutputs(nullifier=1, commitment=2, weight=10, vote_choice=0,
                              input_commitment=3)
    return PendingOperation(
        operation_id=os.urandom(32), ballot_id=BALLOT_ID, kind=kind, outputs=outputs,
        addresses=operation_addresses(kind, BALLOT_ID, MINT, outputs, note_address=4),
        submitter=SUBMITTER)


def _walk(operation: PendingOperation):
    while not operation.is_terminal:
        operation.advance(operation.next_event())


def test_first_vote_skips_commitment_verification():
    operation = _operation(OperationKind.VOTE_SNAPSHOT)
    _walk(operation)
    assert operation.history == [
        Phase.PROOF_PENDING, Phase.PROOF_VERIFIED, Phase.NULLIFIER_REGISTERED,
        Phase.EXECUTED, Phase.COMMITMENT_REGISTERED,
    ]
    assert operation.phase is Phase.CLOSED


@pytest.mark.parametrize("kind", [k for k in OperationKind if k is not OperationKind.VOTE_SNAPSHOT])
def test_consuming_kinds_verify_prior_commitment(kind):
    operation = _operation(kind)
    operation.advance(PhaseEvent.PROOF_ACCEPTED)
    with pytest.raises(PhaseOrderError):
        operation.advance(PhaseEvent.NULLIFIER_REGISTERED)

    _walk(operation)
    assert Phase.COMMITMENT_VERIFIED in operation.history


def test_phases_cannot_be_skipped_or_replayed():
    operation = _operation(OperationKind.VOTE_SNAPSHOT)
    with pytest.raises(PhaseOrderError):
        operation.advance(PhaseEvent.EXECUTED)

    operation.advance(PhaseEvent.PROOF_ACCEPTED)
    with pytest.raises(PhaseOrderError):
        operation.advance(PhaseEvent.PROOF_ACCEPTED)
    with pytest.raises(PhaseOrderError) as excinfo:
        operation.advance(PhaseEvent.CLOSED)
    assert excinfo.value.phase == Phase.PROOF_VERIFIED.value


def test_abandon_from_any_phase_before_closed():
    operation = _operation(OperationKind.CHANGE_VOTE_SPEND)
    operation.advance(PhaseEvent.PROOF_ACCEPTED)
    operation.advance(PhaseEvent.COMMITMENT_VERIFIED)
    assert operation.advance(PhaseEvent.ABANDONED) is Phase.ABANDONED
    assert operation.is_terminal
    assert operation.next_event() is None


def test_closed_operation_cannot_be_abandoned():
    operation = _operation(OperationKind.VOTE_SNAPSHOT)
    _walk(operation)
    with pytest.raises(PhaseOrderError):
        operation.advance(PhaseEvent.ABANDONED)


def test_declared_outputs_require_signals():
    public_inputs = [("voteNullifier", 1), ("voteCommitment", 2), ("weight", 3),
                     ("voteChoice", 1)]
    outputs = DeclaredOutputs.from_public_inputs(OperationKind.VOTE_SNAPSHOT, public_inputs)
    assert (outputs.nullifier, outputs.commitment, outputs.weight, outputs.vote_choice) == \
        (1, 2, 3, 1)

    with pytest.raises(CircuitInputError):
        DeclaredOutputs.from_public_inputs(OperationKind.VOTE_SNAPSHOT, public_inputs[1:])


def test_addresses_separate_kinds():
    snapshot = _operation(OperationKind.VOTE_SNAPSHOT).addresses
    spend = _operation(OperationKind.VOTE_SPEND).addresses
    close = _operation(OperationKind.CLOSE_POSITION).addresses

    assert snapshot.input is None
    assert spend.input == 4
    assert len({snapshot.nullifier, spend.nullifier, close.nullifier}) == 3
    assert close.commitment != spend.commitment
