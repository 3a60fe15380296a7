"""
Commitment, nullifier and address derivation
"""

from zk.babyjubjub import spending_key_pubkey
from zk.commitments import (
    ADDRESS_POSITION, ADDRESS_VOTE_COMMITMENT, ADDRESS_VOTE_NULLIFIER, derive_address,
    derive_nullifier_key, payout_commitment, position_commitment, position_nullifier,
    spending_nullifier, token_commitment, vote_commitment, vote_commitment_nullifier,
    vote_nullifier,
)

SPENDING_KEY = b"\x07" * 32
BALLOT_A = b"\xaa" * 32
BALLOT_B = b"\xbb" * 32
RANDOMNESS = b"\x11" * 32


def test_vote_nullifier_is_stable_per_voter_and_ballot():
    nk = derive_nullifier_key(SPENDING_KEY)
    assert vote_nullifier(nk, BALLOT_A) == vote_nullifier(derive_nullifier_key(SPENDING_KEY), BALLOT_A)
    assert vote_nullifier(nk, BALLOT_A) != vote_nullifier(nk, BALLOT_B)
    assert vote_nullifier(nk, BALLOT_A) != vote_nullifier(derive_nullifier_key(b"\x08" * 32), BALLOT_A)


def test_nullifier_key_hides_spending_key():
    assert derive_nullifier_key(SPENDING_KEY) != int.from_bytes(SPENDING_KEY, 'big')


def test_vote_commitment_binds_every_field():
    nk = derive_nullifier_key(SPENDING_KEY)
    vn = vote_nullifier(nk, BALLOT_A)
    pubkey = spending_key_pubkey(SPENDING_KEY)
    base = vote_commitment(BALLOT_A, vn, pubkey, 1, 50, RANDOMNESS)

    assert base == vote_commitment(BALLOT_A, vn, pubkey, 1, 50, RANDOMNESS)
    assert base != vote_commitment(BALLOT_A, vn, pubkey, 2, 50, RANDOMNESS)
    assert base != vote_commitment(BALLOT_A, vn, pubkey, 1, 51, RANDOMNESS)
    assert base != vote_commitment(BALLOT_A, vn, pubkey, 1, 50, b"\x12" * 32)
    assert base != vote_commitment(BALLOT_B, vn, pubkey, 1, 50, RANDOMNESS)


def test_nullifier_families_are_domain_separated():
    nk = derive_nullifier_key(SPENDING_KEY)
    commitment = 123456789
    assert vote_commitment_nullifier(nk, commitment) != position_nullifier(nk, commitment)
    assert spending_nullifier(nk, commitment, 0) != spending_nullifier(nk, commitment, 1)


def test_position_commitment_binds_amount():
    pubkey = spending_key_pubkey(SPENDING_KEY)
    assert position_commitment(BALLOT_A, pubkey, 0, 100, 100, RANDOMNESS) != \
        position_commitment(BALLOT_A, pubkey, 0, 101, 100, RANDOMNESS)


def test_payout_is_a_token_note():
    pubkey = spending_key_pubkey(SPENDING_KEY)
    mint = b"\x01" * 32
    assert payout_commitment(pubkey, mint, 500, RANDOMNESS) == \
        token_commitment(pubkey, mint, 500, RANDOMNESS)


def test_addresses_are_scoped_and_fit_248_bits():
    value = 987654321
    vote = derive_address(ADDRESS_VOTE_COMMITMENT, BALLOT_A, value)

    assert vote < 2 ** 248
    assert vote == derive_address(ADDRESS_VOTE_COMMITMENT, BALLOT_A, value)
    assert vote != derive_address(ADDRESS_VOTE_COMMITMENT, BALLOT_B, value)
    assert vote != derive_address(ADDRESS_POSITION, BALLOT_A, value)
    assert vote != derive_address(ADDRESS_VOTE_NULLIFIER, BALLOT_A, value)
