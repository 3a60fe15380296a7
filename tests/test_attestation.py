"""
Indexer balance attestations
"""

import dataclasses

import pytest

from zk.attestation import AttestationSigner, verify_attestation, verify_signature
from zk.babyjubjub import Point, spending_key_pubkey

OWNER = spending_key_pubkey(b"\x03" * 32)
BALLOT_ID = b"\x44" * 32
MINT = b"\x55" * 32


@pytest.fixture(scope="module")
def signer():
    return AttestationSigner(424242)


@pytest.fixture(scope="module")
def attestation(signer):
    return signer.attest(OWNER, BALLOT_ID, MINT, 1_000, 42)


def test_signature_verifies(signer, attestation):
    assert verify_attestation(attestation, signer.public_key, OWNER, BALLOT_ID)


def test_signing_is_deterministic(signer):
    assert signer.sign_message(77) == signer.sign_message(77)
    assert len(signer.sign_message(77)) == 96


def test_tampered_amount_fails(signer, attestation):
    inflated = dataclasses.replace(attestation, total_amount=1_000_000)
    assert not verify_attestation(inflated, signer.public_key, OWNER, BALLOT_ID)


def test_attestation_is_bound_to_owner_and_ballot(signer, attestation):
    assert not verify_attestation(attestation, signer.public_key, OWNER + 1, BALLOT_ID)
    assert not verify_attestation(attestation, signer.public_key, OWNER, b"\x45" * 32)


def test_wrong_indexer_fails(attestation):
    other = AttestationSigner(7)
    assert not verify_attestation(attestation, other.public_key, OWNER, BALLOT_ID)


def test_malformed_inputs_do_not_raise(signer):
    assert not verify_signature(signer.public_key, 1, b"\x00" * 96)
    assert not verify_signature(Point(1, 1), 1, signer.sign_message(1))
