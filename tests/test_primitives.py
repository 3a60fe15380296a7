"""
Field, Poseidon and Baby Jubjub primitives
"""

import pytest

from zk.babyjubjub import (
    GENERATOR, IDENTITY, SUBGROUP_ORDER, Point, check_stealth_ownership, derive_public_key,
    derive_stealth_private_key, ecdh_shared_secret, generate_keypair, generate_stealth_address,
    is_in_subgroup, is_on_curve, point_add, point_negate, scalar_mul,
)
from zk.field import (
    FIELD_MODULUS, bytes_to_field, canonical_values, field_negate, field_sum, field_to_bytes,
    generate_randomness, to_field,
)
from zk.poseidon import poseidon_hash, poseidon_hash_domain


class TestField:

    def test_bytes_reduce_modulo_prime(self):
        assert bytes_to_field(b"\xff" * 32) == int.from_bytes(b"\xff" * 32, 'big') % FIELD_MODULUS
        assert to_field(FIELD_MODULUS + 5) == 5
        assert to_field(b"\x00\x07") == 7

    def test_negative_integer_is_rejected(self):
        with pytest.raises(ValueError):
            to_field(-1)

    def test_field_to_bytes_is_32_bytes(self):
        assert field_to_bytes(1) == b"\x00" * 31 + b"\x01"
        assert len(generate_randomness()) == 32

    def test_field_arithmetic(self):
        assert field_negate(1) == FIELD_MODULUS - 1
        assert field_sum([FIELD_MODULUS - 1, 2]) == 1
        assert field_sum([]) == 0

    def test_canonical_values_rejects_unreduced(self):
        assert canonical_values([1, 2, 3]) == [1, 2, 3]
        with pytest.raises(ValueError):
            canonical_values([FIELD_MODULUS])


class TestPoseidon:

    def test_deterministic(self):
        assert poseidon_hash([1, 2]) == poseidon_hash([1, 2])
        assert 0 <= poseidon_hash([1, 2]) < FIELD_MODULUS

    def test_input_order_matters(self):
        assert poseidon_hash([1, 2]) != poseidon_hash([2, 1])

    def test_arity_and_bounds(self):
        with pytest.raises(ValueError):
            poseidon_hash([1, 2, 3])
        with pytest.raises(ValueError):
            poseidon_hash([FIELD_MODULUS, 0])

    def test_domains_separate(self):
        assert poseidon_hash_domain(0x10, 5, 6) != poseidon_hash_domain(0x11, 5, 6)
        assert poseidon_hash_domain(0x10, 5, 6) == poseidon_hash([poseidon_hash([0x10, 5]), 6])

    def test_domain_reused_at_two_arities(self):
        pair = poseidon_hash_domain(0x11, 5, 6)
        triple = poseidon_hash_domain(0x11, 5, 6, 7)
        assert pair != triple
        # the longer chain extends the shorter one
        assert triple == poseidon_hash([pair, 7])

    def test_domain_hash_needs_an_input(self):
        with pytest.raises(ValueError):
            poseidon_hash_domain(0x10)


class TestBabyJubjub:

    def test_generator_is_in_subgroup(self):
        assert is_on_curve(GENERATOR)
        assert is_in_subgroup(GENERATOR)
        assert scalar_mul(GENERATOR, SUBGROUP_ORDER) == IDENTITY

    def test_identity_and_negation(self):
        assert point_add(GENERATOR, IDENTITY) == GENERATOR
        assert point_add(GENERATOR, point_negate(GENERATOR)) == IDENTITY
        assert scalar_mul(GENERATOR, -3) == point_negate(scalar_mul(GENERATOR, 3))

    def test_scalar_mul_distributes(self):
        assert point_add(scalar_mul(GENERATOR, 5), scalar_mul(GENERATOR, 7)) == \
            scalar_mul(GENERATOR, 12)

    def test_point_encoding(self):
        point = derive_public_key(99)
        assert Point.from_bytes(point.to_bytes()) == point
        with pytest.raises(ValueError):
            Point.from_bytes(b"\x00" * 63)

    def test_ecdh_agrees(self):
        a, a_pub = generate_keypair()
        b, b_pub = generate_keypair()
        assert ecdh_shared_secret(a, b_pub) == ecdh_shared_secret(b, a_pub)

    def test_ecdh_rejects_off_curve_key(self):
        with pytest.raises(ValueError):
            ecdh_shared_secret(5, Point(1, 1))

    def test_stealth_address_ownership(self):
        recipient, recipient_pub = generate_keypair()
        other, _ = generate_keypair()
        stealth, _ = generate_stealth_address(recipient_pub)

        assert check_stealth_ownership(stealth, recipient)
        assert not check_stealth_ownership(stealth, other)
        spending = derive_stealth_private_key(recipient, stealth.ephemeral_pubkey)
        assert derive_public_key(spending) == stealth.stealth_pubkey
