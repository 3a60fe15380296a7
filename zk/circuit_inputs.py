"""
Circuit Input Construction for the Voting Proof Families

Builds the ordered public and private input vectors for each voting circuit.
Order matters: the proof backend consumes a flat list, so every builder emits
signals exactly in the order the circuit declares them.
"""

import math
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .babyjubjub import Point, SUBGROUP_ORDER, is_on_curve, spending_key_pubkey
from .commitments import (
    derive_nullifier_key, vote_nullifier, vote_commitment, vote_commitment_nullifier,
    position_commitment, position_nullifier, token_commitment, payout_commitment,
    spending_nullifier,
)
from .errors import CircuitInputError, InvalidAttestationSignature, InvalidWeightFormula
from .field import FIELD_MODULUS, bytes_to_field, generate_randomness, to_field

logger = logging.getLogger(__name__)

# ============================================================================
# CIRCUIT CONSTANTS
# ============================================================================

STATE_TREE_DEPTH = 32
ELIGIBILITY_TREE_DEPTH = 20

CIRCUIT_VOTE_SNAPSHOT = "voting/vote_snapshot"
CIRCUIT_CHANGE_VOTE_SNAPSHOT = "voting/change_vote_snapshot"
CIRCUIT_VOTE_SPEND = "voting/vote_spend"
CIRCUIT_CHANGE_VOTE_SPEND = "voting/change_vote_spend"
CIRCUIT_CLOSE_POSITION = "voting/close_position"
CIRCUIT_CLAIM = "voting/claim"

SignalValue = Union[int, List[int]]

# ============================================================================
# WEIGHT FORMULA
# ============================================================================

MAX_WEIGHT_FORMULA_OPS = 16
MAX_WEIGHT_PARAMS = 8
U64_MAX = 2 ** 64 - 1


class WeightOp(Enum):
    """Opcodes of the weight formula stack machine"""
    PUSH_AMOUNT = 0
    PUSH_CONST = 1
    PUSH_USER_DATA = 2
    ADD = 3
    SUB = 4
    MUL = 5
    DIV = 6
    SQRT = 7
    MIN = 8
    MAX = 9


DEFAULT_WEIGHT_FORMULA: Tuple[WeightOp, ...] = (WeightOp.PUSH_AMOUNT,)


def validate_weight_formula(formula: Sequence[WeightOp], params: Sequence[int]):
    if not formula:
        raise InvalidWeightFormula("Weight formula is empty")
    if len(formula) > MAX_WEIGHT_FORMULA_OPS:
        raise InvalidWeightFormula(
            f"Weight formula has {len(formula)} ops, maximum is {MAX_WEIGHT_FORMULA_OPS}")
    if len(params) > MAX_WEIGHT_PARAMS:
        raise InvalidWeightFormula(
            f"Weight formula has {len(params)} params, maximum is {MAX_WEIGHT_PARAMS}")
    for op in formula:
        if not isinstance(op, WeightOp):
            raise InvalidWeightFormula(f"Unknown weight opcode {op!r}")
    for value in params:
        if not 0 <= value <= U64_MAX:
            raise InvalidWeightFormula(f"Weight param {value} outside u64 range")


def evaluate_weight_formula(formula: Sequence[WeightOp], amount: int,
                            params: Sequence[int] = (),
                            user_data: Sequence[int] = ()) -> int:
    """Run the stack machine over an amount.

    PushConst and PushUserData consume their operands in order. Binary ops
    pop the right operand first. Every intermediate value is an unsigned
    64-bit integer, so a negative difference, a division by zero or an
    overflow is an error rather than a wrapped value.
    """
    validate_weight_formula(formula, params)

    stack: List[int] = []
    param_index = 0
    data_index = 0

    def pop() -> int:
        if not stack:
            raise InvalidWeightFormula("Weight formula stack underflow")
        return stack.pop()

    for op in formula:
        if op is WeightOp.PUSH_AMOUNT:
            stack.append(amount)
        elif op is WeightOp.PUSH_CONST:
            if param_index >= len(params):
                raise InvalidWeightFormula("PushConst has no remaining param")
            stack.append(params[param_index])
            param_index += 1
        elif op is WeightOp.PUSH_USER_DATA:
            if data_index >= len(user_data):
                raise InvalidWeightFormula("PushUserData has no remaining user data")
            stack.append(user_data[data_index])
            data_index += 1
        elif op is WeightOp.SQRT:
            stack.append(math.isqrt(pop()))
        else:
            b = pop()
            a = pop()
            if op is WeightOp.ADD:
                result = a + b
            elif op is WeightOp.SUB:
                if b > a:
                    raise InvalidWeightFormula("Weight formula subtraction underflow")
                result = a - b
            elif op is WeightOp.MUL:
                result = a * b
            elif op is WeightOp.DIV:
                if b == 0:
                    raise InvalidWeightFormula("Weight formula division by zero")
                result = a // b
            elif op is WeightOp.MIN:
                result = min(a, b)
            else:
                result = max(a, b)
            stack.append(result)

        if stack and stack[-1] > U64_MAX:
            raise InvalidWeightFormula("Weight formula overflow")

    if len(stack) != 1:
        raise InvalidWeightFormula(
            f"Weight formula must leave one value, left {len(stack)}")
    return stack[0]

# ============================================================================
# ATTESTATIONS AND MERKLE PATHS
# ============================================================================


@dataclass(frozen=True)
class AttestationSignature:
    """EdDSA signature over a balance attestation"""
    r8x: int
    r8y: int
    s: int


@dataclass
class BalanceAttestation:
    """Indexer statement of a voter's balance at the snapshot slot"""
    token_mint: bytes
    total_amount: int
    snapshot_slot: int
    signature: Union[str, bytes]


@dataclass
class MerklePath:
    siblings: List[int]
    leaf_index: int
    root: int = 0


def parse_attestation_signature(signature: Union[str, bytes]) -> AttestationSignature:
    """Split a 96-byte signature into R8x | R8y | S"""
    try:
        if isinstance(signature, str):
            raw = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
        else:
            raw = bytes(signature)
    except (TypeError, ValueError) as e:
        raise InvalidAttestationSignature(f"Attestation signature is not hex: {e}") from e

    if len(raw) != 96:
        raise InvalidAttestationSignature(
            f"Attestation signature must be 96 bytes, got {len(raw)}")

    r8x = int.from_bytes(raw[:32], 'big')
    r8y = int.from_bytes(raw[32:64], 'big')
    s = int.from_bytes(raw[64:], 'big')

    if r8x >= FIELD_MODULUS or r8y >= FIELD_MODULUS:
        raise InvalidAttestationSignature("Signature point coordinate outside field")
    if not is_on_curve(Point(r8x, r8y)):
        raise InvalidAttestationSignature("Signature point R8 is not on the curve")
    if s >= SUBGROUP_ORDER:
        raise InvalidAttestationSignature("Signature scalar S outside subgroup order")

    return AttestationSignature(r8x, r8y, s)


def pad_merkle_path(siblings: Sequence[int], leaf_index: int,
                    depth: int) -> Tuple[List[int], List[int]]:
    """Zero-pad siblings to the circuit depth and derive left/right indicator bits"""
    if len(siblings) > depth:
        raise CircuitInputError(
            f"Merkle path has {len(siblings)} levels, circuit depth is {depth}")
    if not 0 <= leaf_index < 2 ** depth:
        raise CircuitInputError(f"Leaf index {leaf_index} does not fit depth {depth}")

    padded = [to_field(s) for s in siblings] + [0] * (depth - len(siblings))
    indices = [(leaf_index >> level) & 1 for level in range(depth)]
    return padded, indices


def _eligibility_signals(eligibility_root: int,
                         proof: Optional[MerklePath]) -> Tuple[int, List[int], List[int]]:
    if not eligibility_root:
        return 0, [0] * ELIGIBILITY_TREE_DEPTH, [0] * ELIGIBILITY_TREE_DEPTH
    if proof is None:
        raise CircuitInputError("Ballot has an eligibility root but no eligibility proof was supplied")
    path, indices = pad_merkle_path(proof.siblings, proof.leaf_index, ELIGIBILITY_TREE_DEPTH)
    return 1, path, indices

# ============================================================================
# INPUT BUNDLE
# ============================================================================


@dataclass
class ProofInputBundle:
    """Ordered public and private signals for one circuit invocation"""
    circuit_id: str
    public_inputs: List[Tuple[str, SignalValue]] = field(default_factory=list)
    private_inputs: List[Tuple[str, SignalValue]] = field(default_factory=list)

    @staticmethod
    def _flatten(signals: List[Tuple[str, SignalValue]]) -> List[int]:
        values = []
        for _, value in signals:
            if isinstance(value, list):
                values.extend(value)
            else:
                values.append(value)
        return values

    def public_values(self) -> List[int]:
        """Flat public vector in circuit order"""
        return self._flatten(self.public_inputs)

    def private_values(self) -> List[int]:
        return self._flatten(self.private_inputs)

    def public_signal(self, name: str) -> SignalValue:
        for signal_name, value in self.public_inputs:
            if signal_name == name:
                return value
        raise KeyError(name)

    def to_witness(self) -> Dict[str, Any]:
        """Witness map in the decimal-string form snarkjs expects"""
        witness = {}
        for name, value in self.public_inputs + self.private_inputs:
            if isinstance(value, list):
                witness[name] = [str(v) for v in value]
            else:
                witness[name] = str(value)
        return witness


@dataclass
class PreparedInputs:
    """A bundle together with the values the client needs after proving"""
    bundle: ProofInputBundle
    nullifier: int
    commitment: int
    randomness: bytes
    weight: int
    vote_choice: int
    amount: int = 0
    vote_nullifier: Optional[int] = None
    input_commitment: Optional[int] = None
    gross_payout: int = 0
    net_payout: int = 0


def _public_choice(vote_choice: int, public_reveal: bool) -> int:
    return vote_choice if public_reveal else 0


def _check_choice_range(vote_choice: int):
    if not 0 <= vote_choice <= U64_MAX:
        raise CircuitInputError(f"Vote choice {vote_choice} outside u64 range")

# ============================================================================
# SNAPSHOT BUILDERS
# ============================================================================


def build_vote_snapshot_inputs(*, ballot_id: bytes, spending_key: bytes, vote_choice: int,
                               attestation: BalanceAttestation, indexer_pubkey: Point,
                               public_reveal: bool, eligibility_root: int = 0,
                               eligibility_proof: Optional[MerklePath] = None,
                               weight_formula: Sequence[WeightOp] = DEFAULT_WEIGHT_FORMULA,
                               weight_params: Sequence[int] = (),
                               user_data: Sequence[int] = (),
                               randomness: Optional[bytes] = None) -> PreparedInputs:
    """Inputs for a first vote proven against an attested snapshot balance"""
    _check_choice_range(vote_choice)
    signature = parse_attestation_signature(attestation.signature)
    randomness = randomness or generate_randomness()

    weight = evaluate_weight_formula(
        weight_formula, attestation.total_amount, weight_params, user_data)
    pubkey = spending_key_pubkey(spending_key)
    nk = derive_nullifier_key(spending_key)
    nullifier = vote_nullifier(nk, ballot_id)
    commitment = vote_commitment(ballot_id, nullifier, pubkey, vote_choice, weight, randomness)
    has_eligibility, eligibility_path, eligibility_indices = _eligibility_signals(
        eligibility_root, eligibility_proof)

    bundle = ProofInputBundle(CIRCUIT_VOTE_SNAPSHOT)
    bundle.public_inputs = [
        ("ballotId", to_field(ballot_id)),
        ("voteNullifier", nullifier),
        ("voteCommitment", commitment),
        ("totalAmount", attestation.total_amount),
        ("weight", weight),
        ("tokenMint", to_field(attestation.token_mint)),
        ("snapshotSlot", attestation.snapshot_slot),
        ("indexerPubkeyX", indexer_pubkey.x),
        ("indexerPubkeyY", indexer_pubkey.y),
        ("eligibilityRoot", to_field(eligibility_root)),
        ("hasEligibility", has_eligibility),
        ("voteChoice", _public_choice(vote_choice, public_reveal)),
        ("isPublicMode", int(public_reveal)),
    ]
    bundle.private_inputs = [
        ("spendingKey", bytes_to_field(spending_key)),
        ("pubkey", pubkey),
        ("attestationSignatureR8x", signature.r8x),
        ("attestationSignatureR8y", signature.r8y),
        ("attestationSignatureS", signature.s),
        ("randomness", bytes_to_field(randomness)),
        ("eligibilityPath", eligibility_path),
        ("eligibilityPathIndices", eligibility_indices),
        ("privateVoteChoice", vote_choice),
    ]

    logger.debug(f"Built {CIRCUIT_VOTE_SNAPSHOT} inputs: weight={weight}")
    return PreparedInputs(bundle=bundle, nullifier=nullifier, commitment=commitment,
                          randomness=randomness, weight=weight, vote_choice=vote_choice,
                          amount=attestation.total_amount, vote_nullifier=nullifier)


def build_change_vote_snapshot_inputs(*, ballot_id: bytes, spending_key: bytes,
                                      old_vote_choice: int, new_vote_choice: int,
                                      weight: int, old_randomness: bytes,
                                      public_reveal: bool,
                                      new_randomness: Optional[bytes] = None) -> PreparedInputs:
    """Inputs that nullify the current vote commitment and bind a new choice.

    The vote nullifier and the weight carry over unchanged.
    """
    _check_choice_range(old_vote_choice)
    _check_choice_range(new_vote_choice)
    new_randomness = new_randomness or generate_randomness()

    pubkey = spending_key_pubkey(spending_key)
    nk = derive_nullifier_key(spending_key)
    stable_nullifier = vote_nullifier(nk, ballot_id)
    old_commitment = vote_commitment(
        ballot_id, stable_nullifier, pubkey, old_vote_choice, weight, old_randomness)
    old_commitment_nullifier = vote_commitment_nullifier(nk, old_commitment)
    new_commitment = vote_commitment(
        ballot_id, stable_nullifier, pubkey, new_vote_choice, weight, new_randomness)

    bundle = ProofInputBundle(CIRCUIT_CHANGE_VOTE_SNAPSHOT)
    bundle.public_inputs = [
        ("ballotId", to_field(ballot_id)),
        ("voteNullifier", stable_nullifier),
        ("oldVoteCommitment", old_commitment),
        ("oldVoteCommitmentNullifier", old_commitment_nullifier),
        ("newVoteCommitment", new_commitment),
        ("weight", weight),
        ("oldVoteChoice", _public_choice(old_vote_choice, public_reveal)),
        ("newVoteChoice", _public_choice(new_vote_choice, public_reveal)),
        ("isPublicMode", int(public_reveal)),
    ]
    bundle.private_inputs = [
        ("spendingKey", bytes_to_field(spending_key)),
        ("pubkey", pubkey),
        ("oldRandomness", bytes_to_field(old_randomness)),
        ("newRandomness", bytes_to_field(new_randomness)),
        ("privateOldVoteChoice", old_vote_choice),
        ("privateNewVoteChoice", new_vote_choice),
    ]

    logger.debug(f"Built {CIRCUIT_CHANGE_VOTE_SNAPSHOT} inputs")
    return PreparedInputs(bundle=bundle, nullifier=old_commitment_nullifier,
                          commitment=new_commitment, randomness=new_randomness,
                          weight=weight, vote_choice=new_vote_choice,
                          vote_nullifier=stable_nullifier, input_commitment=old_commitment)

# ============================================================================
# SPEND-TO-VOTE BUILDERS
# ============================================================================


@dataclass
class TokenNote:
    """Shielded token note spent into a voting position"""
    stealth_pubkey_x: int
    token_mint: bytes
    amount: int
    randomness: bytes
    leaf_index: int

    def commitment(self) -> int:
        return token_commitment(self.stealth_pubkey_x, self.token_mint,
                                self.amount, self.randomness)


def build_vote_spend_inputs(*, ballot_id: bytes, spending_key: bytes, note: TokenNote,
                            merkle_path: MerklePath, vote_choice: int, public_reveal: bool,
                            eligibility_root: int = 0,
                            eligibility_proof: Optional[MerklePath] = None,
                            weight_formula: Sequence[WeightOp] = DEFAULT_WEIGHT_FORMULA,
                            weight_params: Sequence[int] = (),
                            user_data: Sequence[int] = (),
                            position_randomness: Optional[bytes] = None) -> PreparedInputs:
    """Inputs that spend a token note into a locked voting position.

    ``spending_key`` is the stealth spending key of the note being spent; the
    position is bound to its public key.
    """
    _check_choice_range(vote_choice)
    position_randomness = position_randomness or generate_randomness()

    weight = evaluate_weight_formula(weight_formula, note.amount, weight_params, user_data)
    pubkey = spending_key_pubkey(spending_key)
    nk = derive_nullifier_key(spending_key)
    note_commitment = note.commitment()
    nullifier = spending_nullifier(nk, note_commitment, note.leaf_index)
    commitment = position_commitment(
        ballot_id, pubkey, vote_choice, note.amount, weight, position_randomness)

    path, path_indices = pad_merkle_path(merkle_path.siblings, note.leaf_index, STATE_TREE_DEPTH)
    has_eligibility, eligibility_path, eligibility_indices = _eligibility_signals(
        eligibility_root, eligibility_proof)

    bundle = ProofInputBundle(CIRCUIT_VOTE_SPEND)
    bundle.public_inputs = [
        ("ballotId", to_field(ballot_id)),
        ("merkleRoot", to_field(merkle_path.root)),
        ("spendingNullifier", nullifier),
        ("positionCommitment", commitment),
        ("amount", note.amount),
        ("weight", weight),
        ("tokenMint", to_field(note.token_mint)),
        ("eligibilityRoot", to_field(eligibility_root)),
        ("hasEligibility", has_eligibility),
        ("voteChoice", _public_choice(vote_choice, public_reveal)),
        ("isPublicMode", int(public_reveal)),
    ]
    bundle.private_inputs = [
        ("inStealthPubX", note.stealth_pubkey_x),
        ("inAmount", note.amount),
        ("inRandomness", bytes_to_field(note.randomness)),
        ("inStealthSpendingKey", bytes_to_field(spending_key)),
        ("merklePath", path),
        ("merklePathIndices", path_indices),
        ("leafIndex", note.leaf_index),
        ("positionRandomness", bytes_to_field(position_randomness)),
        ("privateVoteChoice", vote_choice),
        ("eligibilityPath", eligibility_path),
        ("eligibilityPathIndices", eligibility_indices),
    ]

    logger.debug(f"Built {CIRCUIT_VOTE_SPEND} inputs: amount={note.amount}, weight={weight}")
    return PreparedInputs(bundle=bundle, nullifier=nullifier, commitment=commitment,
                          randomness=position_randomness, weight=weight,
                          vote_choice=vote_choice, amount=note.amount,
                          input_commitment=note_commitment)


def build_change_vote_spend_inputs(*, ballot_id: bytes, spending_key: bytes,
                                   old_vote_choice: int, new_vote_choice: int,
                                   amount: int, weight: int, old_randomness: bytes,
                                   public_reveal: bool,
                                   new_randomness: Optional[bytes] = None) -> PreparedInputs:
    """Inputs that supersede a position with a new choice; amount and weight carry over"""
    _check_choice_range(old_vote_choice)
    _check_choice_range(new_vote_choice)
    new_randomness = new_randomness or generate_randomness()

    pubkey = spending_key_pubkey(spending_key)
    nk = derive_nullifier_key(spending_key)
    old_position = position_commitment(
        ballot_id, pubkey, old_vote_choice, amount, weight, old_randomness)
    old_nullifier = position_nullifier(nk, old_position)
    new_position = position_commitment(
        ballot_id, pubkey, new_vote_choice, amount, weight, new_randomness)

    bundle = ProofInputBundle(CIRCUIT_CHANGE_VOTE_SPEND)
    bundle.public_inputs = [
        ("ballotId", to_field(ballot_id)),
        ("oldPositionCommitment", old_position),
        ("oldPositionNullifier", old_nullifier),
        ("newPositionCommitment", new_position),
        ("amount", amount),
        ("weight", weight),
        ("oldVoteChoice", _public_choice(old_vote_choice, public_reveal)),
        ("newVoteChoice", _public_choice(new_vote_choice, public_reveal)),
        ("isPublicMode", int(public_reveal)),
    ]
    bundle.private_inputs = [
        ("spendingKey", bytes_to_field(spending_key)),
        ("pubkey", pubkey),
        ("oldRandomness", bytes_to_field(old_randomness)),
        ("newRandomness", bytes_to_field(new_randomness)),
        ("privateOldVoteChoice", old_vote_choice),
        ("privateNewVoteChoice", new_vote_choice),
    ]

    logger.debug(f"Built {CIRCUIT_CHANGE_VOTE_SPEND} inputs")
    return PreparedInputs(bundle=bundle, nullifier=old_nullifier, commitment=new_position,
                          randomness=new_randomness, weight=weight,
                          vote_choice=new_vote_choice, amount=amount,
                          input_commitment=old_position)


def build_close_position_inputs(*, ballot_id: bytes, spending_key: bytes, token_mint: bytes,
                                vote_choice: int, amount: int, weight: int,
                                position_randomness: bytes, public_reveal: bool,
                                refund_randomness: Optional[bytes] = None) -> PreparedInputs:
    """Inputs that nullify a position and return its locked amount as a token note"""
    _check_choice_range(vote_choice)
    refund_randomness = refund_randomness or generate_randomness()

    pubkey = spending_key_pubkey(spending_key)
    nk = derive_nullifier_key(spending_key)
    position = position_commitment(
        ballot_id, pubkey, vote_choice, amount, weight, position_randomness)
    nullifier = position_nullifier(nk, position)
    refund = token_commitment(pubkey, token_mint, amount, refund_randomness)

    bundle = ProofInputBundle(CIRCUIT_CLOSE_POSITION)
    bundle.public_inputs = [
        ("ballotId", to_field(ballot_id)),
        ("positionCommitment", position),
        ("positionNullifier", nullifier),
        ("refundCommitment", refund),
        ("amount", amount),
        ("weight", weight),
        ("tokenMint", to_field(token_mint)),
        ("voteChoice", _public_choice(vote_choice, public_reveal)),
        ("isPublicMode", int(public_reveal)),
    ]
    bundle.private_inputs = [
        ("spendingKey", bytes_to_field(spending_key)),
        ("pubkey", pubkey),
        ("positionRandomness", bytes_to_field(position_randomness)),
        ("refundRandomness", bytes_to_field(refund_randomness)),
        ("privateVoteChoice", vote_choice),
    ]

    logger.debug(f"Built {CIRCUIT_CLOSE_POSITION} inputs: amount={amount}")
    return PreparedInputs(bundle=bundle, nullifier=nullifier, commitment=refund,
                          randomness=refund_randomness, weight=weight,
                          vote_choice=vote_choice, amount=amount, input_commitment=position)


def build_claim_inputs(*, ballot_id: bytes, spending_key: bytes, token_mint: bytes,
                       vote_choice: int, amount: int, weight: int,
                       position_randomness: bytes, vote_type: int, outcome: int,
                       total_pool: int, winner_weight: int, protocol_fee_bps: int,
                       gross_payout: int, net_payout: int, public_reveal: bool,
                       payout_randomness: Optional[bytes] = None) -> PreparedInputs:
    """Inputs that nullify a winning position and mint its net payout as a token note.

    Payout amounts are computed by the caller from the resolved ballot and
    bound here as public signals the circuit re-derives.
    """
    _check_choice_range(vote_choice)
    payout_randomness = payout_randomness or generate_randomness()

    pubkey = spending_key_pubkey(spending_key)
    nk = derive_nullifier_key(spending_key)
    position = position_commitment(
        ballot_id, pubkey, vote_choice, amount, weight, position_randomness)
    nullifier = position_nullifier(nk, position)
    payout = payout_commitment(pubkey, token_mint, net_payout, payout_randomness)

    bundle = ProofInputBundle(CIRCUIT_CLAIM)
    bundle.public_inputs = [
        ("ballotId", to_field(ballot_id)),
        ("positionCommitment", position),
        ("positionNullifier", nullifier),
        ("payoutCommitment", payout),
        ("grossPayout", gross_payout),
        ("netPayout", net_payout),
        ("voteType", vote_type),
        ("userWeight", weight),
        ("outcome", outcome),
        ("totalPool", total_pool),
        ("winnerWeight", winner_weight),
        ("protocolFeeBps", protocol_fee_bps),
        ("tokenMint", to_field(token_mint)),
        ("userVoteChoice", _public_choice(vote_choice, public_reveal)),
        ("isPrivateMode", int(not public_reveal)),
    ]
    bundle.private_inputs = [
        ("spendingKey", bytes_to_field(spending_key)),
        ("pubkey", pubkey),
        ("positionAmount", amount),
        ("positionRandomness", bytes_to_field(position_randomness)),
        ("privateVoteChoice", vote_choice),
        ("payoutRandomness", bytes_to_field(payout_randomness)),
    ]

    logger.debug(f"Built {CIRCUIT_CLAIM} inputs: gross={gross_payout}, net={net_payout}")
    return PreparedInputs(bundle=bundle, nullifier=nullifier, commitment=payout,
                          randomness=payout_randomness, weight=weight,
                          vote_choice=vote_choice, amount=amount, input_commitment=position,
                          gross_payout=gross_payout, net_payout=net_payout)
