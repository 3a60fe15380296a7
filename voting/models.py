"""
Ballot, position and vote-record data model
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from zk.babyjubjub import Point
from zk.circuit_inputs import DEFAULT_WEIGHT_FORMULA, WeightOp, validate_weight_formula

from .encrypted_tally import ElGamalCiphertext, ZERO_CIPHERTEXT, add_contributions
from .errors import InvalidBallotConfig, InvalidVoteChoice, VotingError

logger = logging.getLogger(__name__)

MIN_BALLOT_OPTIONS = 2
MAX_BALLOT_OPTIONS = 10
MAX_FEE_BPS = 10_000
RANKED_SLOTS = 16
RANKED_SLOT_BITS = 4

# ============================================================================
# CONFIGURATION AXES
# ============================================================================


class VoteBindingMode(Enum):
    """How voting power is bound to tokens"""
    SNAPSHOT = 0       # prove a balance at a snapshot slot
    SPEND_TO_VOTE = 1  # lock tokens for the ballot's duration


class RevealMode(Enum):
    """When individual vote choices become visible"""
    PUBLIC = 0
    TIME_LOCKED = 1
    PERMANENT_PRIVATE = 2


class VoteType(Enum):
    SINGLE = 0
    APPROVAL = 1
    RANKED = 2
    WEIGHTED = 3


class ResolutionMode(Enum):
    TALLY_BASED = 0
    AUTHORITY = 1
    ORACLE = 2


class BallotStatus(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CLOSED = "closed"
    RESOLVED = "resolved"
    FINALIZED = "finalized"

# ============================================================================
# TAGGED CIPHERTEXTS
# ============================================================================


class EncryptionType(Enum):
    USER_KEY = 0
    TIMELOCK_KEY = 1


@dataclass(frozen=True)
class Ciphertext:
    """Encrypted preimage tagged with the key family that opens it"""
    encryption_type: EncryptionType
    data: bytes

    @classmethod
    def user_key(cls, data: bytes) -> 'Ciphertext':
        return cls(EncryptionType.USER_KEY, data)

    @classmethod
    def timelock_key(cls, data: bytes) -> 'Ciphertext':
        return cls(EncryptionType.TIMELOCK_KEY, data)

    def to_bytes(self) -> bytes:
        return bytes([self.encryption_type.value]) + self.data

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Ciphertext':
        if not data:
            raise ValueError("Empty ciphertext")
        return cls(EncryptionType(data[0]), bytes(data[1:]))

# ============================================================================
# VOTE CHOICES
# ============================================================================


def ranked_slots(vote_choice: int) -> List[int]:
    """Unpack the 16 4-bit ranking slots, first preference in slot 0"""
    mask = (1 << RANKED_SLOT_BITS) - 1
    return [(vote_choice >> (RANKED_SLOT_BITS * i)) & mask for i in range(RANKED_SLOTS)]


def validate_vote_choice(vote_type: VoteType, vote_choice: int, num_options: int):
    if vote_choice < 0:
        raise InvalidVoteChoice(f"Negative vote choice {vote_choice}")

    if vote_type in (VoteType.SINGLE, VoteType.WEIGHTED):
        if vote_choice >= num_options:
            raise InvalidVoteChoice(
                f"Option {vote_choice} out of range for {num_options} options")
    elif vote_type is VoteType.APPROVAL:
        if vote_choice == 0 or vote_choice >= (1 << num_options):
            raise InvalidVoteChoice(f"Approval bitmap {vote_choice:#x} is invalid")
    elif vote_type is VoteType.RANKED:
        if vote_choice >= (1 << (RANKED_SLOT_BITS * RANKED_SLOTS)):
            raise InvalidVoteChoice("Ranking does not fit 16 slots")
        ranked = ranked_slots(vote_choice)[:num_options]
        if any(option >= num_options for option in ranked):
            raise InvalidVoteChoice(f"Ranking {vote_choice:#x} names an unknown option")


def tally_credits(vote_type: VoteType, vote_choice: int, weight: int,
                  num_options: int) -> List[int]:
    """Per-option credit of one vote; the credits always sum to ``weight``.

    Approval splits the weight evenly over approved options with the
    remainder going to the lowest indices. Ranked credits the first
    preference.
    """
    validate_vote_choice(vote_type, vote_choice, num_options)
    credits = [0] * num_options

    if vote_type is VoteType.APPROVAL:
        approved = [i for i in range(num_options) if vote_choice >> i & 1]
        share, remainder = divmod(weight, len(approved))
        for rank, option in enumerate(approved):
            credits[option] = share + (1 if rank < remainder else 0)
    elif vote_type is VoteType.RANKED:
        credits[ranked_slots(vote_choice)[0]] = weight
    else:
        credits[vote_choice] = weight
    return credits

# ============================================================================
# BALLOT
# ============================================================================


@dataclass
class BallotConfig:
    """Ballot parameters, validated once at construction"""
    binding_mode: VoteBindingMode
    reveal_mode: RevealMode
    vote_type: VoteType
    resolution_mode: ResolutionMode
    num_options: int
    start_time: int
    end_time: int
    token_mint: bytes = bytes(32)
    authority: bytes = bytes(32)
    quorum_threshold: int = 0
    protocol_fee_bps: int = 0
    protocol_treasury: bytes = bytes(32)
    snapshot_slot: int = 0
    indexer_pubkey: Optional[Point] = None
    eligibility_root: int = 0
    weight_formula: Sequence[WeightOp] = DEFAULT_WEIGHT_FORMULA
    weight_params: Sequence[int] = ()
    time_lock_pubkey: Optional[Point] = None
    unlock_slot: int = 0
    resolver: Optional[bytes] = None
    oracle: Optional[bytes] = None
    claim_deadline: int = 0

    def __post_init__(self):
        self.weight_formula = tuple(self.weight_formula)
        self.weight_params = tuple(self.weight_params)
        self.validate()

    def validate(self):
        if self.start_time >= self.end_time:
            raise InvalidBallotConfig("Start time must be before end time")
        if not MIN_BALLOT_OPTIONS <= self.num_options <= MAX_BALLOT_OPTIONS:
            raise InvalidBallotConfig(
                f"Option count must be {MIN_BALLOT_OPTIONS}..{MAX_BALLOT_OPTIONS}, "
                f"got {self.num_options}")
        if not 0 <= self.protocol_fee_bps <= MAX_FEE_BPS:
            raise InvalidBallotConfig(f"Protocol fee {self.protocol_fee_bps} bps exceeds {MAX_FEE_BPS}")
        if self.quorum_threshold < 0:
            raise InvalidBallotConfig("Quorum threshold cannot be negative")

        validate_weight_formula(self.weight_formula, self.weight_params)

        if self.binding_mode is VoteBindingMode.SNAPSHOT:
            if self.snapshot_slot == 0:
                raise InvalidBallotConfig("Snapshot ballots need a snapshot slot")
            if self.indexer_pubkey is None:
                raise InvalidBallotConfig("Snapshot ballots need an attestation indexer key")
            if self.claim_deadline:
                raise InvalidBallotConfig("Claim deadlines apply to spend-to-vote ballots only")
        elif self.claim_deadline and self.claim_deadline <= self.end_time:
            raise InvalidBallotConfig("Claim deadline must be after the voting end time")

        if self.reveal_mode is not RevealMode.PUBLIC:
            if self.time_lock_pubkey is None:
                raise InvalidBallotConfig("Encrypted reveal modes need a time-lock key")
            if self.unlock_slot == 0:
                raise InvalidBallotConfig("Encrypted reveal modes need an unlock slot")

        if self.resolution_mode is ResolutionMode.ORACLE and self.oracle is None:
            raise InvalidBallotConfig("Oracle resolution needs an oracle key")
        if self.resolution_mode is ResolutionMode.AUTHORITY and self.resolver is None:
            raise InvalidBallotConfig("Authority resolution needs a resolver key")

    @property
    def public_reveal(self) -> bool:
        return self.reveal_mode is RevealMode.PUBLIC


@dataclass
class Ballot:
    """Ballot record with its running tally"""
    ballot_id: bytes
    config: BallotConfig
    status: BallotStatus = BallotStatus.PENDING

    option_weights: List[int] = field(default_factory=list)
    option_amounts: List[int] = field(default_factory=list)
    total_weight: int = 0
    total_amount: int = 0
    vote_count: int = 0

    # Spend-to-vote vault accounting
    pool_balance: int = 0
    total_distributed: int = 0
    fees_collected: int = 0

    # Hidden reveal modes
    encrypted_tally: List[ElGamalCiphertext] = field(default_factory=list)
    tally_decrypted: bool = False

    outcome: Optional[int] = None
    winner_weight: int = 0
    oracle_outcome: Optional[int] = None
    quorum_failed: bool = False

    def __post_init__(self):
        n = self.config.num_options
        if not self.option_weights:
            self.option_weights = [0] * n
        if not self.option_amounts:
            self.option_amounts = [0] * n
        if not self.encrypted_tally and not self.config.public_reveal:
            self.encrypted_tally = [ZERO_CIPHERTEXT] * n

    @classmethod
    def create(cls, ballot_id: bytes, config: BallotConfig, now: int) -> 'Ballot':
        ballot = cls(ballot_id=ballot_id, config=config)
        ballot.refresh_status(now)
        return ballot

    @property
    def is_spend_to_vote(self) -> bool:
        return self.config.binding_mode is VoteBindingMode.SPEND_TO_VOTE

    @property
    def vault_balance(self) -> int:
        return self.pool_balance - self.total_distributed

    def refresh_status(self, now: int) -> BallotStatus:
        if self.status is BallotStatus.PENDING and now >= self.config.start_time:
            self.status = BallotStatus.ACTIVE
            logger.info(f"Ballot {self.ballot_id.hex()[:16]} is active")
        return self.status

    def is_active(self, now: int) -> bool:
        self.refresh_status(now)
        return (self.status is BallotStatus.ACTIVE
                and self.config.start_time <= now < self.config.end_time)

    def has_ended(self, now: int) -> bool:
        return now >= self.config.end_time

    # ------------------------------------------------------------------
    # Tally updates. Each is applied once per logical event; the caller
    # guarantees that through nullifier registration.
    # ------------------------------------------------------------------

    def _credits(self, vote_choice: int, value: int) -> List[int]:
        return tally_credits(self.config.vote_type, vote_choice, value, self.config.num_options)

    def _add_encrypted(self, contributions: Optional[Sequence[ElGamalCiphertext]]):
        if contributions is None:
            raise VotingError("Hidden reveal modes require encrypted tally contributions")
        self.encrypted_tally = add_contributions(self.encrypted_tally, contributions)

    def _add_plain(self, vote_choice: int, weight: int, amount: int, sign: int):
        weights = [w + sign * c for w, c in
                   zip(self.option_weights, self._credits(vote_choice, weight))]
        amounts = self.option_amounts
        if self.is_spend_to_vote:
            amounts = [a + sign * c for a, c in
                       zip(self.option_amounts, self._credits(vote_choice, amount))]
        if any(w < 0 for w in weights) or any(a < 0 for a in amounts):
            raise VotingError("Tally underflow", ballot_id=self.ballot_id)
        self.option_weights = weights
        self.option_amounts = amounts

    def apply_vote(self, vote_choice: int, weight: int, amount: int = 0,
                   encrypted_contributions: Optional[Sequence[ElGamalCiphertext]] = None):
        if self.config.public_reveal:
            self._add_plain(vote_choice, weight, amount, 1)
        else:
            self._add_encrypted(encrypted_contributions)

        self.total_weight += weight
        self.vote_count += 1
        if self.is_spend_to_vote:
            self.total_amount += amount
            self.pool_balance += amount

    def apply_vote_change(self, old_vote_choice: int, new_vote_choice: int, weight: int,
                          amount: int = 0,
                          encrypted_contributions: Optional[Sequence[ElGamalCiphertext]] = None):
        """Move a vote's credits; totals and vote count are unchanged"""
        if self.config.public_reveal:
            # Validate the new choice before touching the tally
            self._credits(new_vote_choice, weight)
            self._add_plain(old_vote_choice, weight, amount, -1)
            self._add_plain(new_vote_choice, weight, amount, 1)
        else:
            self._add_encrypted(encrypted_contributions)

    def apply_close(self, vote_choice: int, weight: int, amount: int = 0,
                    encrypted_contributions: Optional[Sequence[ElGamalCiphertext]] = None):
        if weight > self.total_weight or self.vote_count == 0:
            raise VotingError("Tally underflow", ballot_id=self.ballot_id)
        if self.is_spend_to_vote and amount > self.total_amount:
            raise VotingError("Locked amount underflow", ballot_id=self.ballot_id)

        if self.config.public_reveal:
            self._add_plain(vote_choice, weight, amount, -1)
        else:
            self._add_encrypted(encrypted_contributions)

        self.total_weight -= weight
        self.vote_count -= 1
        if self.is_spend_to_vote:
            self.total_amount -= amount
            self.pool_balance -= amount

# ============================================================================
# VOTER-SIDE RECORDS
# ============================================================================


@dataclass
class VoteRecord:
    """A voter's live snapshot vote; the nullifier never changes"""
    ballot_id: bytes
    vote_nullifier: int
    vote_commitment: int
    vote_choice: int
    weight: int
    randomness: bytes
    superseded: List[int] = field(default_factory=list)

    def replace(self, commitment: int, vote_choice: int, randomness: bytes):
        self.superseded.append(self.vote_commitment)
        self.vote_commitment = commitment
        self.vote_choice = vote_choice
        self.randomness = randomness


@dataclass
class Position:
    """A spend-to-vote position and, once superseded or spent, its nullifier"""
    ballot_id: bytes
    commitment: int
    vote_choice: int
    amount: int
    weight: int
    randomness: bytes
    nullifier: Optional[int] = None

    @property
    def is_live(self) -> bool:
        return self.nullifier is None
