"""
Commitment and nullifier derivations for votes, positions and payouts.

Every function is pure and returns a BN254 field element. Each family hashes
under its own domain constant, so outputs from different families cannot
collide even when their inputs coincide. Byte inputs (ballot ids, keys,
randomness, mints) go through the same big-endian reduction used by the
circuits, so client-side values match the proof-side values as field
elements, not only as byte strings.
"""

import hashlib
import logging
from typing import Union

from .field import bytes_to_field, field_to_bytes, to_field
from .poseidon import poseidon_hash_domain

logger = logging.getLogger(__name__)

# ============================================================================
# DOMAIN SEPARATION CONSTANTS
# ============================================================================

DOMAIN_COMMITMENT = 0x01          # token notes and payouts
DOMAIN_SPENDING_NULLIFIER = 0x02
DOMAIN_NULLIFIER_KEY = 0x04
DOMAIN_VOTE_NULLIFIER = 0x10
DOMAIN_VOTE_COMMITMENT = 0x11
DOMAIN_POSITION = 0x13

FieldLike = Union[int, bytes, bytearray]


def derive_nullifier_key(spending_key: FieldLike) -> int:
    """nk = H(D_NULLIFIER_KEY, spending_key); the only path a spending key takes into public values"""
    return poseidon_hash_domain(DOMAIN_NULLIFIER_KEY, to_field(spending_key))

# ============================================================================
# SNAPSHOT VOTES
# ============================================================================


def vote_nullifier(nullifier_key: FieldLike, ballot_id: FieldLike) -> int:
    """One per (voter, ballot); unchanged by vote changes"""
    return poseidon_hash_domain(
        DOMAIN_VOTE_NULLIFIER, to_field(nullifier_key), to_field(ballot_id))


def vote_commitment(ballot_id: FieldLike, vote_nullifier_value: FieldLike,
                    voter_pubkey: FieldLike, vote_choice: int, weight: int,
                    randomness: FieldLike) -> int:
    inner = poseidon_hash_domain(
        DOMAIN_VOTE_COMMITMENT,
        to_field(ballot_id),
        to_field(vote_nullifier_value),
        to_field(voter_pubkey),
    )
    return poseidon_hash_domain(
        inner, to_field(vote_choice), to_field(weight), to_field(randomness))


def vote_commitment_nullifier(nullifier_key: FieldLike, old_vote_commitment: FieldLike) -> int:
    """Invalidates a superseded vote commitment"""
    return poseidon_hash_domain(
        DOMAIN_VOTE_COMMITMENT, to_field(nullifier_key), to_field(old_vote_commitment))

# ============================================================================
# SPEND-TO-VOTE POSITIONS
# ============================================================================


def position_commitment(ballot_id: FieldLike, voter_pubkey: FieldLike, vote_choice: int,
                        locked_amount: int, weight: int, randomness: FieldLike) -> int:
    inner = poseidon_hash_domain(
        DOMAIN_POSITION,
        to_field(ballot_id),
        to_field(voter_pubkey),
        to_field(vote_choice),
    )
    return poseidon_hash_domain(
        inner, to_field(locked_amount), to_field(weight), to_field(randomness))


def position_nullifier(nullifier_key: FieldLike, position_commitment_value: FieldLike) -> int:
    return poseidon_hash_domain(
        DOMAIN_POSITION, to_field(nullifier_key), to_field(position_commitment_value))

# ============================================================================
# TOKEN NOTES AND PAYOUTS
# ============================================================================


def token_commitment(owner_pubkey: FieldLike, token_mint: FieldLike, amount: int,
                     randomness: FieldLike) -> int:
    return poseidon_hash_domain(
        DOMAIN_COMMITMENT,
        to_field(owner_pubkey),
        to_field(token_mint),
        to_field(amount),
        to_field(randomness),
    )


def payout_commitment(voter_pubkey: FieldLike, token_mint: FieldLike, net_payout: int,
                      randomness: FieldLike) -> int:
    """Payouts are ordinary token notes owned by the voter"""
    return token_commitment(voter_pubkey, token_mint, net_payout, randomness)


def spending_nullifier(nullifier_key: FieldLike, note_commitment: FieldLike,
                       leaf_index: int) -> int:
    """Nullifier of a token note consumed by a spend-to-vote lock"""
    return poseidon_hash_domain(
        DOMAIN_SPENDING_NULLIFIER,
        to_field(nullifier_key),
        to_field(note_commitment),
        to_field(leaf_index),
    )

# ============================================================================
# STATE-TREE ADDRESSES
# ============================================================================

ADDRESS_VOTE_NULLIFIER = b"vote_nullifier"
ADDRESS_VOTE_COMMITMENT = b"vote_commitment"
ADDRESS_VOTE_COMMITMENT_NULLIFIER = b"vote_commitment_nullifier"
ADDRESS_POSITION = b"position"
ADDRESS_POSITION_NULLIFIER = b"position_nullifier"
ADDRESS_SPENDING_NULLIFIER = b"spend_nullifier"
ADDRESS_TOKEN_NOTE = b"token_note"


def derive_address(seed: bytes, scope: FieldLike, value: FieldLike) -> int:
    """Leaf address of a value in the compressed state tree.

    Addresses are scoped by leaf family and by a ballot id (vote leaves) or a
    token mint (note leaves), then truncated to 248 bits so they are always
    valid field elements.
    """
    digest = hashlib.sha256(
        seed + field_to_bytes(to_field(scope)) + field_to_bytes(to_field(value))
    ).digest()
    return bytes_to_field(b"\x00" + digest[1:])
