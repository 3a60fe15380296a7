"""
Ballot Program

In-process model of the ledger program. It owns the Ballot and Pending
Operation records and exposes one entrypoint per phase. Each phase
entrypoint takes the receipt issued by the previous phase, so phases can be
neither skipped nor replayed out of order. Nullifiers and commitments are
never stored here; they live in the state tree.
"""

import hashlib
import hmac
import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence, Tuple

from zk.backend import ProofBackend
from zk.circuit_inputs import SignalValue, WeightOp, evaluate_weight_formula
from zk.errors import ProofRejected, ProtocolError
from zk.field import to_field

from . import resolution
from .encrypted_tally import ElGamalCiphertext
from .errors import (
    AddressAlreadyExists, BallotNotActive, CommitmentAlreadyExists,
    CommitmentNotFound, InvalidBallotConfig, InvalidBindingMode, NullifierAlreadyExists,
    OperationNotFound, PhaseOrderError, QuorumNotMet, UnauthorizedSubmitter, VotingError,
)
from .models import MAX_FEE_BPS, Ballot, BallotConfig, Ciphertext, VoteBindingMode
from .phases import (
    DeclaredOutputs, OperationKind, PendingOperation, Phase, PhaseEvent, PhaseReceipt,
    operation_addresses,
)
from .state_tree import StateTree

logger = logging.getLogger(__name__)

_SNAPSHOT_KINDS = (OperationKind.VOTE_SNAPSHOT, OperationKind.CHANGE_VOTE_SNAPSHOT)


class BallotProgram:
    """Ledger entrypoints for ballots and their phased voting actions"""

    def __init__(self, backend: ProofBackend, state_tree: StateTree):
        self.backend = backend
        self.state_tree = state_tree
        self.ballots: Dict[bytes, Ballot] = {}
        self.pending: Dict[bytes, PendingOperation] = {}
        # Replay guard: operation ids are single-use, so every closed id keeps
        # its submitter and final receipt for the lifetime of the program.
        # Resubmitting a closed id is refused and closing it again is a no-op.
        self._closed: Dict[bytes, Tuple[bytes, PhaseReceipt]] = {}
        self._receipt_key = os.urandom(32)

    # ========================================================================
    # RECEIPTS
    # ========================================================================

    def _issue(self, operation: PendingOperation) -> PhaseReceipt:
        tag = hmac.new(self._receipt_key,
                       operation.operation_id + operation.phase.value.to_bytes(1, 'big'),
                       hashlib.sha256).digest()
        return PhaseReceipt(operation.operation_id, operation.phase, tag)

    @staticmethod
    def _check_submitter(operation_id: bytes, submitter: bytes, caller: bytes):
        if caller != submitter:
            logger.warning(f"Rejected foreign caller for operation {operation_id.hex()[:16]}")
            raise UnauthorizedSubmitter(operation_id=operation_id)

    def _load(self, receipt: PhaseReceipt, caller: bytes) -> PendingOperation:
        """Resolve a receipt to its operation, rejecting forged or stale receipts"""
        expected = hmac.new(self._receipt_key,
                            receipt.operation_id + receipt.phase.value.to_bytes(1, 'big'),
                            hashlib.sha256).digest()
        if not hmac.compare_digest(expected, receipt.tag):
            raise PhaseOrderError("Receipt was not issued by this program",
                                  operation_id=receipt.operation_id)

        operation = self.pending.get(receipt.operation_id)
        if operation is None:
            raise OperationNotFound(operation_id=receipt.operation_id)
        self._check_submitter(operation.operation_id, operation.submitter, caller)
        if operation.phase is not receipt.phase:
            raise PhaseOrderError(
                f"Receipt is for phase {receipt.phase.name}, operation is in {operation.phase.name}",
                ballot_id=operation.ballot_id, operation_id=operation.operation_id,
                phase=operation.phase.value)
        return operation

    def _closed_receipt(self, operation_id: bytes, caller: bytes) -> Optional[PhaseReceipt]:
        if operation_id not in self._closed:
            return None
        submitter, receipt = self._closed[operation_id]
        self._check_submitter(operation_id, submitter, caller)
        return receipt

    def receipt_for(self, operation_id: bytes, caller: bytes) -> PhaseReceipt:
        """Current receipt of an operation, used by its submitter to resume"""
        closed = self._closed_receipt(operation_id, caller)
        if closed is not None:
            return closed
        operation = self.get_operation(operation_id)
        self._check_submitter(operation_id, operation.submitter, caller)
        return self._issue(operation)

    def get_operation(self, operation_id: bytes) -> PendingOperation:
        operation = self.pending.get(operation_id)
        if operation is None:
            raise OperationNotFound(operation_id=operation_id)
        return operation

    @contextmanager
    def _phase(self, operation: PendingOperation):
        try:
            yield
        except ProtocolError as e:
            raise e.with_context(ballot_id=operation.ballot_id,
                                 operation_id=operation.operation_id,
                                 phase=operation.phase.value)

    # ========================================================================
    # BALLOT LIFECYCLE
    # ========================================================================

    def create_ballot(self, ballot_id: bytes, config: BallotConfig, now: int) -> Ballot:
        if len(ballot_id) != 32:
            raise InvalidBallotConfig("Ballot id must be 32 bytes")
        if ballot_id in self.ballots:
            raise InvalidBallotConfig("Ballot already exists", ballot_id=ballot_id)
        ballot = Ballot.create(ballot_id, config, now)
        self.ballots[ballot_id] = ballot
        logger.info(
            f"Created ballot {ballot_id.hex()[:16]}: {config.binding_mode.name}/"
            f"{config.reveal_mode.name}/{config.vote_type.name}/{config.resolution_mode.name}, "
            f"{config.num_options} options")
        return ballot

    def get_ballot(self, ballot_id: bytes) -> Ballot:
        ballot = self.ballots.get(ballot_id)
        if ballot is None:
            raise VotingError("Ballot not found", ballot_id=ballot_id)
        return ballot

    def decrypt_tally(self, ballot_id: bytes, decryption_key: int,
                      option_weights: Sequence[int], now: int, current_slot: int):
        resolution.decrypt_tally(self.get_ballot(ballot_id), decryption_key,
                                 option_weights, now, current_slot)

    def submit_oracle_outcome(self, ballot_id: bytes, caller: bytes, outcome: int):
        resolution.submit_oracle_outcome(self.get_ballot(ballot_id), caller, outcome)

    def resolve_ballot(self, ballot_id: bytes, now: int, caller: Optional[bytes] = None,
                       outcome: Optional[int] = None) -> resolution.Resolution:
        ballot = self.get_ballot(ballot_id)
        result = resolution.resolve_ballot(ballot, now, caller, outcome)
        if not result.quorum_met:
            raise QuorumNotMet(
                f"Total weight {result.total_weight} below quorum "
                f"{ballot.config.quorum_threshold}", ballot_id=ballot_id)
        return result

    def finalize_ballot(self, ballot_id: bytes, now: int) -> int:
        return resolution.finalize_ballot(self.get_ballot(ballot_id), now)

    # ========================================================================
    # PHASE 1: PROOF
    # ========================================================================

    def _check_bindings(self, ballot: Ballot, kind: OperationKind,
                        signals: Dict[str, SignalValue]):
        """Public signals that must agree with the ballot record"""
        config = ballot.config
        expected = {"ballotId": to_field(ballot.ballot_id)}

        if kind in _SNAPSHOT_KINDS:
            if config.binding_mode is not VoteBindingMode.SNAPSHOT:
                raise InvalidBindingMode(f"{kind.value} on a spend-to-vote ballot")
        elif config.binding_mode is not VoteBindingMode.SPEND_TO_VOTE:
            raise InvalidBindingMode(f"{kind.value} on a snapshot ballot")

        if kind is OperationKind.CLAIM:
            expected["isPrivateMode"] = int(not config.public_reveal)
            expected.update({
                "voteType": config.vote_type.value,
                "outcome": ballot.outcome,
                "totalPool": ballot.pool_balance,
                "winnerWeight": ballot.winner_weight,
                "protocolFeeBps": config.protocol_fee_bps,
                "tokenMint": to_field(config.token_mint),
            })
        else:
            expected["isPublicMode"] = int(config.public_reveal)

        if kind is OperationKind.VOTE_SNAPSHOT:
            expected.update({
                "snapshotSlot": config.snapshot_slot,
                "indexerPubkeyX": config.indexer_pubkey.x,
                "indexerPubkeyY": config.indexer_pubkey.y,
                "tokenMint": to_field(config.token_mint),
                "eligibilityRoot": to_field(config.eligibility_root),
                "hasEligibility": int(bool(config.eligibility_root)),
            })
        elif kind is OperationKind.VOTE_SPEND:
            expected.update({
                "tokenMint": to_field(config.token_mint),
                "eligibilityRoot": to_field(config.eligibility_root),
                "hasEligibility": int(bool(config.eligibility_root)),
            })
        elif kind is OperationKind.CLOSE_POSITION:
            expected["tokenMint"] = to_field(config.token_mint)

        for name, value in expected.items():
            if signals.get(name) != value:
                raise ProofRejected(f"Public signal {name} does not match the ballot")

    def _check_weight(self, ballot: Ballot, kind: OperationKind,
                      signals: Dict[str, SignalValue], outputs: DeclaredOutputs):
        """Recompute weight from a public amount when the formula needs no user data"""
        config = ballot.config
        if WeightOp.PUSH_USER_DATA in config.weight_formula:
            return
        if kind is OperationKind.VOTE_SNAPSHOT:
            amount = signals["totalAmount"]
        elif kind is OperationKind.VOTE_SPEND:
            amount = outputs.amount
        else:
            return
        weight = evaluate_weight_formula(config.weight_formula, amount, config.weight_params)
        if weight != outputs.weight:
            raise ProofRejected(f"Declared weight {outputs.weight} does not match formula ({weight})")

    def _check_payout(self, ballot: Ballot, outputs: DeclaredOutputs):
        """Public choices pin the payout exactly; hidden ones may not exceed a winner's share"""
        public_choice = outputs.vote_choice if ballot.config.public_reveal else None
        gross, net = resolution.expected_payout(ballot, outputs.weight, public_choice)
        if public_choice is not None and (gross, net) != (outputs.gross_payout, outputs.net_payout):
            raise ProofRejected(f"Declared payout ({outputs.gross_payout}, {outputs.net_payout}) "
                                f"does not match ({gross}, {net})")
        if outputs.gross_payout > gross:
            raise ProofRejected("Declared gross payout exceeds the position's share")
        fee = outputs.gross_payout * ballot.config.protocol_fee_bps // MAX_FEE_BPS
        if outputs.net_payout != outputs.gross_payout - fee:
            raise ProofRejected("Net payout does not match the protocol fee")

    def submit_proof(self, operation_id: bytes, caller: bytes, ballot_id: bytes,
                     kind: OperationKind, proof: bytes,
                     public_inputs: Sequence[Tuple[str, SignalValue]], *,
                     encrypted_contributions: Optional[List[ElGamalCiphertext]] = None,
                     encrypted_preimage: Optional[Ciphertext] = None,
                     note_address: Optional[int] = None) -> PhaseReceipt:
        """ProofPending -> ProofVerified; a rejected proof leaves no record behind.

        The caller is recorded as the operation's submitter, and only the
        submitter may drive, resume or abandon it afterwards.
        """
        if len(operation_id) != 32:
            raise PhaseOrderError("Operation id must be 32 bytes", ballot_id=ballot_id)
        if operation_id in self.pending or operation_id in self._closed:
            raise PhaseOrderError("Operation id already used",
                                  ballot_id=ballot_id, operation_id=operation_id)

        ballot = self.get_ballot(ballot_id)
        try:
            signals = dict(public_inputs)
            if kind is OperationKind.CLAIM:
                resolution.check_claim_window(ballot)
            self._check_bindings(ballot, kind, signals)
            outputs = DeclaredOutputs.from_public_inputs(kind, public_inputs)
            self._check_weight(ballot, kind, signals, outputs)
            if kind is OperationKind.CLAIM:
                self._check_payout(ballot, outputs)
            if kind is OperationKind.VOTE_SPEND and note_address is None:
                raise ProofRejected("vote_spend requires the spent note's address")
            if not ballot.config.public_reveal and kind.is_vote and encrypted_contributions is None:
                raise ProofRejected("Hidden reveal modes require encrypted tally contributions")

            flat = [v for _, value in public_inputs
                    for v in (value if isinstance(value, list) else [value])]
            if not self.backend.verify(kind.circuit_id, proof, flat):
                raise ProofRejected(f"{kind.circuit_id} proof failed verification")
        except ProtocolError as e:
            logger.warning(f"Rejected {kind.value} proof for ballot {ballot_id.hex()[:16]}: {e}")
            raise e.with_context(ballot_id=ballot_id, operation_id=operation_id,
                                 phase=Phase.PROOF_PENDING.value)

        operation = PendingOperation(
            operation_id=operation_id,
            ballot_id=ballot_id,
            kind=kind,
            submitter=caller,
            outputs=outputs,
            addresses=operation_addresses(kind, ballot_id, ballot.config.token_mint,
                                          outputs, note_address),
            encrypted_contributions=encrypted_contributions,
            encrypted_preimage=encrypted_preimage,
        )
        operation.advance(PhaseEvent.PROOF_ACCEPTED)
        self.pending[operation_id] = operation
        logger.info(f"Accepted {kind.value} proof, operation {operation_id.hex()[:16]}")
        return self._issue(operation)

    # ========================================================================
    # PHASE 2: PRIOR COMMITMENT AND NULLIFIER
    # ========================================================================

    def verify_commitment(self, receipt: PhaseReceipt, caller: bytes,
                          inclusion_proof: Dict[str, Any]) -> PhaseReceipt:
        """ProofVerified -> CommitmentVerified for kinds that consume a prior commitment"""
        operation = self._load(receipt, caller)
        with self._phase(operation):
            if not operation.kind.requires_inclusion:
                raise PhaseOrderError(f"{operation.kind.value} has no prior commitment")
            address = operation.addresses.input
            if not self.state_tree.verify_inclusion_proof(address, inclusion_proof):
                raise CommitmentNotFound(f"No valid inclusion proof for {address:#x}")
            merkle_root = operation.outputs.merkle_root
            if merkle_root is not None and not self.state_tree.is_known_root(merkle_root):
                raise CommitmentNotFound(f"Proven merkle root {merkle_root:#x} is not a known root")
            operation.advance(PhaseEvent.COMMITMENT_VERIFIED)
        logger.info(f"Verified prior commitment for operation {operation.operation_id.hex()[:16]}")
        return self._issue(operation)

    def create_nullifier(self, receipt: PhaseReceipt, caller: bytes,
                         validity_proof: Dict[str, Any]) -> PhaseReceipt:
        """Insert the nullifier; the state tree rejects a second insertion"""
        operation = self._load(receipt, caller)
        with self._phase(operation):
            if operation.next_event() is not PhaseEvent.NULLIFIER_REGISTERED:
                raise PhaseOrderError(f"Cannot register nullifier in phase {operation.phase.name}")
            try:
                self.state_tree.insert(operation.addresses.nullifier, validity_proof)
            except AddressAlreadyExists as e:
                logger.warning(
                    f"Nullifier already registered for operation {operation.operation_id.hex()[:16]}")
                raise NullifierAlreadyExists(str(e)) from e
            operation.advance(PhaseEvent.NULLIFIER_REGISTERED)
        logger.info(f"Registered nullifier for operation {operation.operation_id.hex()[:16]}")
        return self._issue(operation)

    # ========================================================================
    # PHASE 3: EXECUTE
    # ========================================================================

    def execute(self, receipt: PhaseReceipt, caller: bytes, now: int) -> PhaseReceipt:
        """Apply the tally update exactly once"""
        operation = self._load(receipt, caller)
        ballot = self.get_ballot(operation.ballot_id)
        outputs = operation.outputs
        contributions = operation.encrypted_contributions

        with self._phase(operation):
            if operation.next_event() is not PhaseEvent.EXECUTED:
                raise PhaseOrderError(f"Cannot execute in phase {operation.phase.name}")

            kind = operation.kind
            if kind.is_vote:
                if not ballot.is_active(now):
                    raise BallotNotActive("Voting window closed before execution")
            else:
                resolution.check_claim_window(ballot, now)

            if kind is OperationKind.VOTE_SNAPSHOT:
                ballot.apply_vote(outputs.vote_choice, outputs.weight, 0, contributions)
            elif kind is OperationKind.VOTE_SPEND:
                ballot.apply_vote(outputs.vote_choice, outputs.weight, outputs.amount, contributions)
            elif kind in (OperationKind.CHANGE_VOTE_SNAPSHOT, OperationKind.CHANGE_VOTE_SPEND):
                ballot.apply_vote_change(outputs.old_vote_choice, outputs.vote_choice,
                                         outputs.weight, outputs.amount, contributions)
            elif kind is OperationKind.CLOSE_POSITION:
                ballot.apply_close(outputs.vote_choice, outputs.weight, outputs.amount,
                                   contributions)
            else:
                resolution.record_claim(ballot, outputs.gross_payout, outputs.net_payout, now)

            operation.advance(PhaseEvent.EXECUTED)

        logger.info(f"Executed {operation.kind.value} on ballot {ballot.ballot_id.hex()[:16]}: "
                    f"total weight {ballot.total_weight}, votes {ballot.vote_count}")
        return self._issue(operation)

    # ========================================================================
    # PHASE 4-5: COMMITMENT AND CLOSE
    # ========================================================================

    def create_commitment(self, receipt: PhaseReceipt, caller: bytes,
                          validity_proof: Dict[str, Any]) -> PhaseReceipt:
        operation = self._load(receipt, caller)
        with self._phase(operation):
            if operation.next_event() is not PhaseEvent.COMMITMENT_REGISTERED:
                raise PhaseOrderError(f"Cannot register commitment in phase {operation.phase.name}")
            try:
                self.state_tree.insert(operation.addresses.commitment, validity_proof,
                                       operation.encrypted_preimage)
            except AddressAlreadyExists as e:
                logger.warning(
                    f"Commitment already registered for operation {operation.operation_id.hex()[:16]}")
                raise CommitmentAlreadyExists(str(e)) from e
            operation.advance(PhaseEvent.COMMITMENT_REGISTERED)
        logger.info(f"Registered commitment for operation {operation.operation_id.hex()[:16]}")
        return self._issue(operation)

    def close_pending(self, receipt: PhaseReceipt, caller: bytes) -> PhaseReceipt:
        """Release the operation record; closing a closed operation is a no-op"""
        closed = self._closed_receipt(receipt.operation_id, caller)
        if closed is not None:
            return closed

        operation = self._load(receipt, caller)
        with self._phase(operation):
            operation.advance(PhaseEvent.CLOSED)
        closed = self._issue(operation)
        self._closed[operation.operation_id] = (operation.submitter, closed)
        del self.pending[operation.operation_id]
        logger.info(f"Closed operation {operation.operation_id.hex()[:16]}")
        return closed

    def abandon(self, operation_id: bytes, caller: bytes) -> Phase:
        """Drop an in-flight operation from any phase before Closed; submitter only"""
        if self._closed_receipt(operation_id, caller) is not None:
            raise PhaseOrderError("Closed operations cannot be abandoned",
                                  operation_id=operation_id, phase=Phase.CLOSED.value)
        operation = self.get_operation(operation_id)
        self._check_submitter(operation_id, operation.submitter, caller)
        previous = operation.phase
        with self._phase(operation):
            operation.advance(PhaseEvent.ABANDONED)
        del self.pending[operation_id]
        logger.info(f"Abandoned operation {operation_id.hex()[:16]} in phase {previous.name}")
        return previous

