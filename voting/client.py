"""
Voting Client

Voter-side driver for the phased protocol. For each action it builds the
circuit inputs and proves them off the event loop, prepares the encrypted
tally contributions and sealed preimage, and then walks the Pending
Operation through the ledger program phase by phase. An interrupted action
can be resumed from the program's phase cursor with ``resume``.
"""

import asyncio
import dataclasses
import functools
import logging
import os
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config.config import ProofBackendConfig, StateTreeConfig
from utils.utils import PerformanceMonitor, generate_operation_id
from zk.babyjubjub import spending_key_pubkey
from zk.backend import DevelopmentProofBackend, ProofBackend, SnarkjsProofBackend
from zk.circuit_inputs import (
    BalanceAttestation, MerklePath, PreparedInputs, TokenNote, build_change_vote_snapshot_inputs,
    build_change_vote_spend_inputs, build_claim_inputs, build_close_position_inputs,
    build_vote_snapshot_inputs, build_vote_spend_inputs,
)
from zk.commitments import ADDRESS_TOKEN_NOTE, derive_address
from zk.errors import ProtocolError

from .encrypted_tally import ElGamalCiphertext, encrypt_credit_delta, encrypt_credits
from .errors import AddressAlreadyExists, CommitmentAlreadyExists, NotAWinner, NullifierAlreadyExists
from .models import Ballot, Ciphertext, Position, VoteRecord, tally_credits
from .phases import OperationKind, PendingOperation, PhaseEvent, PhaseReceipt
from .preimage import VotePreimage, seal_preimage
from .program import BallotProgram
from .resolution import check_claim_window, expected_payout, is_winner, payout_share
from .state_tree import InMemoryStateTree, JsonRpcStateTree, StateTree

logger = logging.getLogger(__name__)


def create_proof_backend(config: ProofBackendConfig) -> ProofBackend:
    if config.backend == "snarkjs":
        return SnarkjsProofBackend(config.build_dir, node_binary=config.node_binary,
                                   snarkjs_binary=config.snarkjs_binary,
                                   timeout=config.proof_timeout)
    return DevelopmentProofBackend()


def create_state_tree(config: StateTreeConfig) -> StateTree:
    if config.backend == "rpc":
        return JsonRpcStateTree(config.rpc_url, timeout=config.timeout)
    return InMemoryStateTree(depth=config.depth)


def shield_note(state_tree: StateTree, note: TokenNote) -> TokenNote:
    """Insert a token note leaf, as the token pool's shield instruction does.

    Returns the note with its leaf index filled in.
    """
    address = derive_address(ADDRESS_TOKEN_NOTE, note.token_mint, note.commitment())
    state_tree.insert(address, state_tree.get_validity_proof(address))
    leaf_index = state_tree.get_inclusion_proof(address)["leaf_index"]
    return dataclasses.replace(note, leaf_index=leaf_index)


class VotingClient:
    """Builds, proves and submits voting actions for one or more voters.

    Every operation is submitted under the client's ``submitter`` key, and
    only that key can drive, resume or abandon it on the ledger.
    """

    def __init__(self, program: BallotProgram, backend: ProofBackend, state_tree: StateTree,
                 executor: Optional[Executor] = None,
                 monitor: Optional[PerformanceMonitor] = None, proof_workers: int = 4,
                 submitter: Optional[bytes] = None):
        self.program = program
        self.backend = backend
        self.state_tree = state_tree
        self.submitter = submitter or os.urandom(32)
        self.executor = executor or ThreadPoolExecutor(max_workers=proof_workers)
        self.monitor = monitor or PerformanceMonitor()
        self._ledger_lock = asyncio.Lock()

    # ========================================================================
    # PROVING
    # ========================================================================

    def _prepare_and_prove(self, builder: Callable[..., PreparedInputs],
                           kwargs: Dict[str, Any]) -> Tuple[PreparedInputs, bytes]:
        prepared = builder(**kwargs)
        with self.monitor.start_operation(f"prove_{prepared.bundle.circuit_id}"):
            proof = self.backend.prove_bundle(prepared.bundle)
        return prepared, proof

    async def _prove(self, builder: Callable[..., PreparedInputs],
                     **kwargs) -> Tuple[PreparedInputs, bytes]:
        """Input construction and proving run in the executor, one proof per worker"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self.executor, functools.partial(self._prepare_and_prove, builder, kwargs))

    # ========================================================================
    # PHASE DRIVER
    # ========================================================================

    def _validity_proof(self, address: int, conflict: type) -> Dict[str, Any]:
        try:
            return self.state_tree.get_validity_proof(address)
        except AddressAlreadyExists as e:
            raise conflict(str(e)) from e

    def _step(self, operation: PendingOperation, receipt: PhaseReceipt,
              event: PhaseEvent, now: int) -> PhaseReceipt:
        addresses = operation.addresses
        if event is PhaseEvent.COMMITMENT_VERIFIED:
            return self.program.verify_commitment(
                receipt, self.submitter, self.state_tree.get_inclusion_proof(addresses.input))
        if event is PhaseEvent.NULLIFIER_REGISTERED:
            return self.program.create_nullifier(
                receipt, self.submitter,
                self._validity_proof(addresses.nullifier, NullifierAlreadyExists))
        if event is PhaseEvent.EXECUTED:
            return self.program.execute(receipt, self.submitter, now)
        if event is PhaseEvent.COMMITMENT_REGISTERED:
            return self.program.create_commitment(
                receipt, self.submitter,
                self._validity_proof(addresses.commitment, CommitmentAlreadyExists))
        return self.program.close_pending(receipt, self.submitter)

    async def _drive(self, receipt: PhaseReceipt, now: int) -> PendingOperation:
        operation = self.program.get_operation(receipt.operation_id)
        async with self._ledger_lock:
            while not operation.is_terminal:
                try:
                    receipt = self._step(operation, receipt, operation.next_event(), now)
                except ProtocolError as e:
                    raise e.with_context(ballot_id=operation.ballot_id,
                                         operation_id=operation.operation_id,
                                         phase=operation.phase.value)
        return operation

    async def _submit(self, ballot: Ballot, kind: OperationKind, prepared: PreparedInputs,
                      proof: bytes, now: int, *,
                      contributions: Optional[List[ElGamalCiphertext]] = None,
                      preimage: Optional[Ciphertext] = None,
                      note_address: Optional[int] = None) -> PendingOperation:
        operation_id = generate_operation_id()
        async with self._ledger_lock:
            receipt = self.program.submit_proof(
                operation_id, self.submitter, ballot.ballot_id, kind, proof,
                prepared.bundle.public_inputs,
                encrypted_contributions=contributions, encrypted_preimage=preimage,
                note_address=note_address)
        return await self._drive(receipt, now)

    async def resume(self, operation_id: bytes, now: int) -> PendingOperation:
        """Continue an interrupted operation from its current phase"""
        operation = self.program.get_operation(operation_id)
        logger.info(f"Resuming operation {operation_id.hex()[:16]} from {operation.phase.name}")
        return await self._drive(self.program.receipt_for(operation_id, self.submitter), now)

    def abandon(self, operation_id: bytes):
        return self.program.abandon(operation_id, self.submitter)

    # ========================================================================
    # CONTRIBUTIONS AND PREIMAGES
    # ========================================================================

    @staticmethod
    def _credits(ballot: Ballot, vote_choice: int, weight: int) -> List[int]:
        return tally_credits(ballot.config.vote_type, vote_choice, weight,
                             ballot.config.num_options)

    def _vote_contributions(self, ballot: Ballot, vote_choice: int,
                            weight: int) -> Optional[List[ElGamalCiphertext]]:
        if ballot.config.public_reveal:
            return None
        return encrypt_credits(ballot.config.time_lock_pubkey,
                               self._credits(ballot, vote_choice, weight))

    def _change_contributions(self, ballot: Ballot, old_choice: int, new_choice: int,
                              weight: int) -> Optional[List[ElGamalCiphertext]]:
        if ballot.config.public_reveal:
            return None
        return encrypt_credit_delta(ballot.config.time_lock_pubkey,
                                    self._credits(ballot, old_choice, weight),
                                    self._credits(ballot, new_choice, weight))

    def _close_contributions(self, ballot: Ballot, vote_choice: int,
                             weight: int) -> Optional[List[ElGamalCiphertext]]:
        if ballot.config.public_reveal:
            return None
        return encrypt_credits(ballot.config.time_lock_pubkey,
                               [-c for c in self._credits(ballot, vote_choice, weight)])

    @staticmethod
    def _seal(ballot: Ballot, spending_key: bytes, prepared: PreparedInputs,
              amount: Optional[int] = None) -> Ciphertext:
        preimage = VotePreimage(prepared.vote_choice, prepared.weight, prepared.randomness,
                                ballot.ballot_id, amount)
        return seal_preimage(preimage, ballot.config.reveal_mode, spending_key,
                             ballot.config.time_lock_pubkey)

    def _note_leaf_index(self, token_mint: bytes, commitment: int) -> int:
        address = derive_address(ADDRESS_TOKEN_NOTE, token_mint, commitment)
        return self.state_tree.get_inclusion_proof(address)["leaf_index"]

    # ========================================================================
    # SNAPSHOT ACTIONS
    # ========================================================================

    async def vote_snapshot(self, ballot_id: bytes, spending_key: bytes, vote_choice: int,
                            attestation: BalanceAttestation, now: int, *,
                            eligibility_proof: Optional[MerklePath] = None,
                            user_data: Sequence[int] = ()) -> VoteRecord:
        ballot = self.program.get_ballot(ballot_id)
        config = ballot.config
        prepared, proof = await self._prove(
            build_vote_snapshot_inputs, ballot_id=ballot_id, spending_key=spending_key,
            vote_choice=vote_choice, attestation=attestation,
            indexer_pubkey=config.indexer_pubkey, public_reveal=config.public_reveal,
            eligibility_root=config.eligibility_root, eligibility_proof=eligibility_proof,
            weight_formula=config.weight_formula, weight_params=config.weight_params,
            user_data=user_data)

        await self._submit(
            ballot, OperationKind.VOTE_SNAPSHOT, prepared, proof, now,
            contributions=self._vote_contributions(ballot, vote_choice, prepared.weight),
            preimage=self._seal(ballot, spending_key, prepared))

        logger.info(f"Vote cast on ballot {ballot_id.hex()[:16]} with weight {prepared.weight}")
        return VoteRecord(ballot_id=ballot_id, vote_nullifier=prepared.vote_nullifier,
                          vote_commitment=prepared.commitment, vote_choice=vote_choice,
                          weight=prepared.weight, randomness=prepared.randomness)

    async def change_vote_snapshot(self, record: VoteRecord, spending_key: bytes,
                                   new_vote_choice: int, now: int) -> VoteRecord:
        ballot = self.program.get_ballot(record.ballot_id)
        prepared, proof = await self._prove(
            build_change_vote_snapshot_inputs, ballot_id=record.ballot_id,
            spending_key=spending_key, old_vote_choice=record.vote_choice,
            new_vote_choice=new_vote_choice, weight=record.weight,
            old_randomness=record.randomness, public_reveal=ballot.config.public_reveal)

        await self._submit(
            ballot, OperationKind.CHANGE_VOTE_SNAPSHOT, prepared, proof, now,
            contributions=self._change_contributions(
                ballot, record.vote_choice, new_vote_choice, record.weight),
            preimage=self._seal(ballot, spending_key, prepared))

        record.replace(prepared.commitment, new_vote_choice, prepared.randomness)
        logger.info(f"Vote changed on ballot {record.ballot_id.hex()[:16]}")
        return record

    # ========================================================================
    # SPEND-TO-VOTE ACTIONS
    # ========================================================================

    async def vote_spend(self, ballot_id: bytes, spending_key: bytes, note: TokenNote,
                         vote_choice: int, now: int, *,
                         eligibility_proof: Optional[MerklePath] = None,
                         user_data: Sequence[int] = ()) -> Position:
        """Lock a shielded token note into a new position"""
        ballot = self.program.get_ballot(ballot_id)
        config = ballot.config
        note_address = derive_address(ADDRESS_TOKEN_NOTE, note.token_mint, note.commitment())
        inclusion = self.state_tree.get_inclusion_proof(note_address)
        note = dataclasses.replace(note, leaf_index=inclusion["leaf_index"])
        merkle_path = MerklePath(inclusion["merkle_path"], inclusion["leaf_index"],
                                 inclusion["root"])

        prepared, proof = await self._prove(
            build_vote_spend_inputs, ballot_id=ballot_id, spending_key=spending_key,
            note=note, merkle_path=merkle_path, vote_choice=vote_choice,
            public_reveal=config.public_reveal, eligibility_root=config.eligibility_root,
            eligibility_proof=eligibility_proof, weight_formula=config.weight_formula,
            weight_params=config.weight_params, user_data=user_data)

        await self._submit(
            ballot, OperationKind.VOTE_SPEND, prepared, proof, now,
            contributions=self._vote_contributions(ballot, vote_choice, prepared.weight),
            preimage=self._seal(ballot, spending_key, prepared, note.amount),
            note_address=note_address)

        logger.info(f"Locked {note.amount} into a position on ballot {ballot_id.hex()[:16]}")
        return Position(ballot_id=ballot_id, commitment=prepared.commitment,
                        vote_choice=vote_choice, amount=note.amount, weight=prepared.weight,
                        randomness=prepared.randomness)

    async def change_vote_spend(self, position: Position, spending_key: bytes,
                                new_vote_choice: int, now: int) -> Position:
        ballot = self.program.get_ballot(position.ballot_id)
        prepared, proof = await self._prove(
            build_change_vote_spend_inputs, ballot_id=position.ballot_id,
            spending_key=spending_key, old_vote_choice=position.vote_choice,
            new_vote_choice=new_vote_choice, amount=position.amount, weight=position.weight,
            old_randomness=position.randomness, public_reveal=ballot.config.public_reveal)

        await self._submit(
            ballot, OperationKind.CHANGE_VOTE_SPEND, prepared, proof, now,
            contributions=self._change_contributions(
                ballot, position.vote_choice, new_vote_choice, position.weight),
            preimage=self._seal(ballot, spending_key, prepared, position.amount))

        position.nullifier = prepared.nullifier
        return Position(ballot_id=position.ballot_id, commitment=prepared.commitment,
                        vote_choice=new_vote_choice, amount=position.amount,
                        weight=position.weight, randomness=prepared.randomness)

    async def close_position(self, position: Position, spending_key: bytes,
                             now: int) -> TokenNote:
        """Withdraw a position during voting; the locked amount comes back as a note"""
        ballot = self.program.get_ballot(position.ballot_id)
        token_mint = ballot.config.token_mint
        prepared, proof = await self._prove(
            build_close_position_inputs, ballot_id=position.ballot_id,
            spending_key=spending_key, token_mint=token_mint,
            vote_choice=position.vote_choice, amount=position.amount, weight=position.weight,
            position_randomness=position.randomness,
            public_reveal=ballot.config.public_reveal)

        await self._submit(
            ballot, OperationKind.CLOSE_POSITION, prepared, proof, now,
            contributions=self._close_contributions(
                ballot, position.vote_choice, position.weight))

        position.nullifier = prepared.nullifier
        return TokenNote(stealth_pubkey_x=spending_key_pubkey(spending_key),
                         token_mint=token_mint, amount=position.amount,
                         randomness=prepared.randomness,
                         leaf_index=self._note_leaf_index(token_mint, prepared.commitment))

    async def claim(self, position: Position, spending_key: bytes, now: int) -> TokenNote:
        """Redeem a winning position for its net payout note"""
        ballot = self.program.get_ballot(position.ballot_id)
        config = ballot.config
        check_claim_window(ballot, now)
        if not is_winner(position.vote_choice, ballot.outcome, config.vote_type):
            raise NotAWinner(ballot_id=ballot.ballot_id)
        if payout_share(ballot, position.weight, position.vote_choice) == 0:
            raise NotAWinner("Position holds no credit on the outcome", ballot_id=ballot.ballot_id)
        gross, net = expected_payout(ballot, position.weight, position.vote_choice)

        prepared, proof = await self._prove(
            build_claim_inputs, ballot_id=position.ballot_id, spending_key=spending_key,
            token_mint=config.token_mint, vote_choice=position.vote_choice,
            amount=position.amount, weight=position.weight,
            position_randomness=position.randomness, vote_type=config.vote_type.value,
            outcome=ballot.outcome, total_pool=ballot.pool_balance,
            winner_weight=ballot.winner_weight, protocol_fee_bps=config.protocol_fee_bps,
            gross_payout=gross, net_payout=net, public_reveal=config.public_reveal)

        await self._submit(ballot, OperationKind.CLAIM, prepared, proof, now)

        position.nullifier = prepared.nullifier
        logger.info(f"Claimed {net} (gross {gross}) from ballot {ballot.ballot_id.hex()[:16]}")
        return TokenNote(stealth_pubkey_x=spending_key_pubkey(spending_key),
                         token_mint=config.token_mint, amount=net,
                         randomness=prepared.randomness,
                         leaf_index=self._note_leaf_index(config.token_mint,
                                                          prepared.commitment))

    def close(self):
        self.executor.shutdown(wait=True)
