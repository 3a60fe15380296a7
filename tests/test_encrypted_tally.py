"""
Exponential ElGamal tally
"""

import pytest

from voting.encrypted_tally import (
    ZERO_CIPHERTEXT, ElGamalCiphertext, add_contributions, decrypt_option_weights,
    decrypt_to_point, encrypt_credit_delta, encrypt_credits, encrypt_weight,
    matches_public_key, solve_discrete_log, verify_tally,
)
from zk.babyjubjub import GENERATOR, generate_keypair, scalar_mul


@pytest.fixture(scope="module")
def keypair():
    return generate_keypair()


def test_decrypts_to_weight_point(keypair):
    secret, public = keypair
    ciphertext = encrypt_weight(public, 42)
    assert decrypt_to_point(secret, ciphertext) == scalar_mul(GENERATOR, 42)


def test_ciphertexts_add_homomorphically(keypair):
    secret, public = keypair
    total = encrypt_weight(public, 10) + encrypt_weight(public, 32) + encrypt_weight(public, -2)
    assert solve_discrete_log(decrypt_to_point(secret, total), 100) == 40


def test_vote_change_delta(keypair):
    secret, public = keypair
    tally = add_contributions([ZERO_CIPHERTEXT] * 3, encrypt_credits(public, [50, 0, 0]))
    tally = add_contributions(tally, encrypt_credit_delta(public, [50, 0, 0], [0, 0, 50]))
    assert decrypt_option_weights(secret, tally, 50) == [0, 0, 50]


def test_verify_tally_checks_every_option(keypair):
    secret, public = keypair
    tally = encrypt_credits(public, [3, 0, 7])
    assert verify_tally(secret, tally, [3, 0, 7])
    assert not verify_tally(secret, tally, [3, 1, 7])
    assert not verify_tally(secret, tally, [3, 0])
    assert not verify_tally(generate_keypair()[0], tally, [3, 0, 7])


def test_contribution_count_must_match(keypair):
    _, public = keypair
    with pytest.raises(ValueError):
        add_contributions([ZERO_CIPHERTEXT] * 3, encrypt_credits(public, [1, 2]))


def test_search_is_bounded():
    with pytest.raises(ValueError):
        solve_discrete_log(scalar_mul(GENERATOR, 101), 100)
    assert solve_discrete_log(scalar_mul(GENERATOR, 100), 100) == 100
    assert solve_discrete_log(scalar_mul(GENERATOR, 0), 0) == 0


def test_key_matching_and_encoding(keypair):
    secret, public = keypair
    assert matches_public_key(secret, public)
    assert not matches_public_key(secret + 1, public)

    ciphertext = encrypt_weight(public, 5)
    assert ElGamalCiphertext.from_bytes(ciphertext.to_bytes()) == ciphertext
    with pytest.raises(ValueError):
        ElGamalCiphertext.from_bytes(b"\x00" * 127)
