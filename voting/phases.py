"""
Phase state machine for multi-transaction voting actions.

Every action (vote, change, close, claim) runs as a Pending Operation:

    ProofPending -> ProofVerified -> [CommitmentVerified] -> NullifierRegistered
        -> Executed -> CommitmentRegistered -> Closed

CommitmentVerified is required for every kind that consumes an existing
commitment or note. Abandoned is reachable from any phase except Closed.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from zk.circuit_inputs import (
    CIRCUIT_CHANGE_VOTE_SNAPSHOT, CIRCUIT_CHANGE_VOTE_SPEND, CIRCUIT_CLAIM,
    CIRCUIT_CLOSE_POSITION, CIRCUIT_VOTE_SNAPSHOT, CIRCUIT_VOTE_SPEND, SignalValue,
)
from zk.commitments import (
    ADDRESS_POSITION, ADDRESS_POSITION_NULLIFIER, ADDRESS_SPENDING_NULLIFIER,
    ADDRESS_TOKEN_NOTE, ADDRESS_VOTE_COMMITMENT, ADDRESS_VOTE_COMMITMENT_NULLIFIER,
    ADDRESS_VOTE_NULLIFIER, derive_address,
)
from zk.errors import CircuitInputError

from .encrypted_tally import ElGamalCiphertext
from .errors import PhaseOrderError
from .models import Ciphertext

logger = logging.getLogger(__name__)


class Phase(Enum):
    PROOF_PENDING = 0
    PROOF_VERIFIED = 1
    COMMITMENT_VERIFIED = 2
    NULLIFIER_REGISTERED = 3
    EXECUTED = 4
    COMMITMENT_REGISTERED = 5
    CLOSED = 6
    ABANDONED = 7


class PhaseEvent(Enum):
    PROOF_ACCEPTED = "proof_accepted"
    COMMITMENT_VERIFIED = "commitment_verified"
    NULLIFIER_REGISTERED = "nullifier_registered"
    EXECUTED = "executed"
    COMMITMENT_REGISTERED = "commitment_registered"
    CLOSED = "closed"
    ABANDONED = "abandoned"


class OperationKind(Enum):
    VOTE_SNAPSHOT = "vote_snapshot"
    CHANGE_VOTE_SNAPSHOT = "change_vote_snapshot"
    VOTE_SPEND = "vote_spend"
    CHANGE_VOTE_SPEND = "change_vote_spend"
    CLOSE_POSITION = "close_position"
    CLAIM = "claim"

    @property
    def circuit_id(self) -> str:
        return _CIRCUITS[self]

    @property
    def requires_inclusion(self) -> bool:
        return self is not OperationKind.VOTE_SNAPSHOT

    @property
    def is_vote(self) -> bool:
        """Kinds that can only execute while voting is open"""
        return self is not OperationKind.CLAIM


_CIRCUITS = {
    OperationKind.VOTE_SNAPSHOT: CIRCUIT_VOTE_SNAPSHOT,
    OperationKind.CHANGE_VOTE_SNAPSHOT: CIRCUIT_CHANGE_VOTE_SNAPSHOT,
    OperationKind.VOTE_SPEND: CIRCUIT_VOTE_SPEND,
    OperationKind.CHANGE_VOTE_SPEND: CIRCUIT_CHANGE_VOTE_SPEND,
    OperationKind.CLOSE_POSITION: CIRCUIT_CLOSE_POSITION,
    OperationKind.CLAIM: CIRCUIT_CLAIM,
}

# ============================================================================
# DECLARED OUTPUTS
# ============================================================================

# Public signal names per kind: (nullifier, commitment, prior commitment, weight,
# amount, vote choice, old vote choice)
_SIGNALS: Dict[OperationKind, Tuple[Optional[str], ...]] = {
    OperationKind.VOTE_SNAPSHOT: (
        "voteNullifier", "voteCommitment", None, "weight", None, "voteChoice", None),
    OperationKind.CHANGE_VOTE_SNAPSHOT: (
        "oldVoteCommitmentNullifier", "newVoteCommitment", "oldVoteCommitment", "weight",
        None, "newVoteChoice", "oldVoteChoice"),
    OperationKind.VOTE_SPEND: (
        "spendingNullifier", "positionCommitment", None, "weight", "amount", "voteChoice", None),
    OperationKind.CHANGE_VOTE_SPEND: (
        "oldPositionNullifier", "newPositionCommitment", "oldPositionCommitment", "weight",
        "amount", "newVoteChoice", "oldVoteChoice"),
    OperationKind.CLOSE_POSITION: (
        "positionNullifier", "refundCommitment", "positionCommitment", "weight", "amount",
        "voteChoice", None),
    OperationKind.CLAIM: (
        "positionNullifier", "payoutCommitment", "positionCommitment", "userWeight", None,
        "userVoteChoice", None),
}


@dataclass
class DeclaredOutputs:
    """Public outputs of a verified proof that later phases act on"""
    nullifier: int
    commitment: int
    weight: int
    vote_choice: int
    amount: int = 0
    old_vote_choice: int = 0
    input_commitment: Optional[int] = None
    gross_payout: int = 0
    net_payout: int = 0
    merkle_root: Optional[int] = None

    @classmethod
    def from_public_inputs(cls, kind: OperationKind,
                           public_inputs: Sequence[Tuple[str, SignalValue]]) -> 'DeclaredOutputs':
        signals = dict(public_inputs)

        def get(name: Optional[str], default: int = 0) -> int:
            if name is None:
                return default
            if name not in signals:
                raise CircuitInputError(f"{kind.value} proof is missing signal {name}")
            return int(signals[name])

        nullifier, commitment, prior, weight, amount, choice, old_choice = _SIGNALS[kind]
        return cls(
            nullifier=get(nullifier),
            commitment=get(commitment),
            weight=get(weight),
            vote_choice=get(choice),
            amount=get(amount),
            old_vote_choice=get(old_choice),
            input_commitment=get(prior) if prior else None,
            gross_payout=get("grossPayout") if kind is OperationKind.CLAIM else 0,
            net_payout=get("netPayout") if kind is OperationKind.CLAIM else 0,
            merkle_root=get("merkleRoot") if kind is OperationKind.VOTE_SPEND else None,
        )


@dataclass(frozen=True)
class OperationAddresses:
    nullifier: int
    commitment: int
    input: Optional[int] = None


def operation_addresses(kind: OperationKind, ballot_id: bytes, token_mint: bytes,
                        outputs: DeclaredOutputs,
                        note_address: Optional[int] = None) -> OperationAddresses:
    """State-tree addresses an operation touches.

    Vote leaves are scoped by ballot; token notes by mint. The note spent by
    a vote_spend is private, so its address is supplied by the voter.
    """
    if kind is OperationKind.VOTE_SNAPSHOT:
        nullifier = derive_address(ADDRESS_VOTE_NULLIFIER, ballot_id, outputs.nullifier)
    elif kind is OperationKind.CHANGE_VOTE_SNAPSHOT:
        nullifier = derive_address(ADDRESS_VOTE_COMMITMENT_NULLIFIER, ballot_id, outputs.nullifier)
    elif kind is OperationKind.VOTE_SPEND:
        nullifier = derive_address(ADDRESS_SPENDING_NULLIFIER, token_mint, outputs.nullifier)
    else:
        nullifier = derive_address(ADDRESS_POSITION_NULLIFIER, ballot_id, outputs.nullifier)

    if kind in (OperationKind.VOTE_SNAPSHOT, OperationKind.CHANGE_VOTE_SNAPSHOT):
        commitment = derive_address(ADDRESS_VOTE_COMMITMENT, ballot_id, outputs.commitment)
    elif kind in (OperationKind.VOTE_SPEND, OperationKind.CHANGE_VOTE_SPEND):
        commitment = derive_address(ADDRESS_POSITION, ballot_id, outputs.commitment)
    else:
        commitment = derive_address(ADDRESS_TOKEN_NOTE, token_mint, outputs.commitment)

    if kind is OperationKind.VOTE_SPEND:
        prior = note_address
    elif kind is OperationKind.CHANGE_VOTE_SNAPSHOT:
        prior = derive_address(ADDRESS_VOTE_COMMITMENT, ballot_id, outputs.input_commitment)
    elif kind.requires_inclusion:
        prior = derive_address(ADDRESS_POSITION, ballot_id, outputs.input_commitment)
    else:
        prior = None

    return OperationAddresses(nullifier=nullifier, commitment=commitment, input=prior)

# ============================================================================
# PENDING OPERATION
# ============================================================================

_TRANSITIONS: Dict[Tuple[Phase, PhaseEvent], Phase] = {
    (Phase.PROOF_PENDING, PhaseEvent.PROOF_ACCEPTED): Phase.PROOF_VERIFIED,
    (Phase.PROOF_VERIFIED, PhaseEvent.COMMITMENT_VERIFIED): Phase.COMMITMENT_VERIFIED,
    (Phase.PROOF_VERIFIED, PhaseEvent.NULLIFIER_REGISTERED): Phase.NULLIFIER_REGISTERED,
    (Phase.COMMITMENT_VERIFIED, PhaseEvent.NULLIFIER_REGISTERED): Phase.NULLIFIER_REGISTERED,
    (Phase.NULLIFIER_REGISTERED, PhaseEvent.EXECUTED): Phase.EXECUTED,
    (Phase.EXECUTED, PhaseEvent.COMMITMENT_REGISTERED): Phase.COMMITMENT_REGISTERED,
    (Phase.COMMITMENT_REGISTERED, PhaseEvent.CLOSED): Phase.CLOSED,
}


@dataclass
class PendingOperation:
    """Ledger record threading one action through its phases"""
    operation_id: bytes
    ballot_id: bytes
    kind: OperationKind
    outputs: DeclaredOutputs
    addresses: OperationAddresses
    submitter: bytes
    phase: Phase = Phase.PROOF_PENDING
    proof_verified: bool = False
    encrypted_contributions: Optional[List[ElGamalCiphertext]] = None
    encrypted_preimage: Optional[Ciphertext] = None
    history: List[Phase] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.phase in (Phase.CLOSED, Phase.ABANDONED)

    def next_event(self) -> Optional[PhaseEvent]:
        """Event that moves this operation forward, or None when terminal"""
        if self.phase is Phase.PROOF_PENDING:
            return PhaseEvent.PROOF_ACCEPTED
        if self.phase is Phase.PROOF_VERIFIED:
            if self.kind.requires_inclusion:
                return PhaseEvent.COMMITMENT_VERIFIED
            return PhaseEvent.NULLIFIER_REGISTERED
        return {
            Phase.COMMITMENT_VERIFIED: PhaseEvent.NULLIFIER_REGISTERED,
            Phase.NULLIFIER_REGISTERED: PhaseEvent.EXECUTED,
            Phase.EXECUTED: PhaseEvent.COMMITMENT_REGISTERED,
            Phase.COMMITMENT_REGISTERED: PhaseEvent.CLOSED,
        }.get(self.phase)

    def advance(self, event: PhaseEvent) -> Phase:
        """Single transition function; anything out of order raises PhaseOrderError"""
        if event is PhaseEvent.ABANDONED:
            if self.phase is Phase.CLOSED:
                raise PhaseOrderError("Closed operations cannot be abandoned",
                                      operation_id=self.operation_id, phase=self.phase.value)
            if self.phase in (Phase.EXECUTED, Phase.COMMITMENT_REGISTERED):
                logger.warning(
                    f"Abandoning operation {self.operation_id.hex()[:16]} after tally execution")
            return self._move(Phase.ABANDONED)

        if event is not self.next_event():
            raise PhaseOrderError(
                f"Event {event.value} not allowed in phase {self.phase.name} for {self.kind.value}",
                ballot_id=self.ballot_id, operation_id=self.operation_id, phase=self.phase.value)

        target = _TRANSITIONS[(self.phase, event)]
        if target is Phase.EXECUTED and not self.proof_verified:
            raise PhaseOrderError("Cannot execute without a verified proof",
                                  operation_id=self.operation_id, phase=self.phase.value)
        if target is Phase.PROOF_VERIFIED:
            self.proof_verified = True
        return self._move(target)

    def _move(self, target: Phase) -> Phase:
        self.history.append(self.phase)
        logger.debug(f"Operation {self.operation_id.hex()[:16]}: {self.phase.name} -> {target.name}")
        self.phase = target
        return target


@dataclass(frozen=True)
class PhaseReceipt:
    """Proof that an operation reached ``phase``; only the program can issue a valid tag"""
    operation_id: bytes
    phase: Phase
    tag: bytes
