"""
Baby Jubjub twisted Edwards curve and stealth-key derivation
"""

import os
import logging
from dataclasses import dataclass
from typing import Tuple

from .field import FIELD_MODULUS, FIELD_BYTES, bytes_to_field, field_to_bytes
from .poseidon import poseidon_hash_domain

logger = logging.getLogger(__name__)

# Curve: A*x^2 + y^2 = 1 + D*x^2*y^2 over the BN254 scalar field
A = 168700
D = 168696
SUBGROUP_ORDER = 2736030358979909402780800718157159386076813972158567259200215660948447373041

DOMAIN_STEALTH = 0x05


@dataclass(frozen=True)
class Point:
    x: int
    y: int

    def to_bytes(self) -> bytes:
        return field_to_bytes(self.x) + field_to_bytes(self.y)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Point':
        if len(data) != 2 * FIELD_BYTES:
            raise ValueError(f"Point encoding must be {2 * FIELD_BYTES} bytes")
        return cls(int.from_bytes(data[:FIELD_BYTES], 'big'),
                   int.from_bytes(data[FIELD_BYTES:], 'big'))

    def is_identity(self) -> bool:
        return self.x == 0 and self.y == 1


IDENTITY = Point(0, 1)

# Base8 generator of the prime-order subgroup
GENERATOR = Point(
    5299619240641551281634865583518297030282874472190772894086521144482721001553,
    16950150798460657717958625567821834550301663161624707787222815936182638968203,
)


def point_add(p1: Point, p2: Point) -> Point:
    """Complete twisted Edwards addition"""
    p = FIELD_MODULUS
    x1x2 = p1.x * p2.x % p
    y1y2 = p1.y * p2.y % p
    dxy = D * x1x2 * y1y2 % p

    x3 = (p1.x * p2.y + p1.y * p2.x) * pow(1 + dxy, -1, p) % p
    y3 = (y1y2 - A * x1x2) * pow(1 - dxy, -1, p) % p
    return Point(x3, y3)


def point_negate(point: Point) -> Point:
    return Point((-point.x) % FIELD_MODULUS, point.y)


def point_sub(p1: Point, p2: Point) -> Point:
    return point_add(p1, point_negate(p2))


def scalar_mul(point: Point, scalar: int) -> Point:
    """Double-and-add; the scalar is not reduced so subgroup checks stay meaningful"""
    result = IDENTITY
    temp = point
    s = scalar
    if s < 0:
        s = -s
        temp = point_negate(point)
    while s > 0:
        if s & 1:
            result = point_add(result, temp)
        temp = point_add(temp, temp)
        s >>= 1
    return result


def is_on_curve(point: Point) -> bool:
    p = FIELD_MODULUS
    if not (0 <= point.x < p and 0 <= point.y < p):
        return False
    x2 = point.x * point.x % p
    y2 = point.y * point.y % p
    return (A * x2 + y2) % p == (1 + D * x2 * y2) % p


def is_in_subgroup(point: Point) -> bool:
    return is_on_curve(point) and scalar_mul(point, SUBGROUP_ORDER).is_identity()


def derive_public_key(private_key: int) -> Point:
    return scalar_mul(GENERATOR, private_key % SUBGROUP_ORDER)


def random_scalar() -> int:
    """Nonzero scalar in the prime-order subgroup"""
    while True:
        scalar = int.from_bytes(os.urandom(FIELD_BYTES), 'big') % SUBGROUP_ORDER
        if scalar:
            return scalar


def generate_keypair() -> Tuple[int, Point]:
    private_key = random_scalar()
    return private_key, derive_public_key(private_key)

# ============================================================================
# STEALTH ADDRESSES
# ============================================================================


@dataclass(frozen=True)
class StealthAddress:
    stealth_pubkey: Point
    ephemeral_pubkey: Point


def _stealth_factor(shared_secret: Point) -> int:
    return poseidon_hash_domain(DOMAIN_STEALTH, shared_secret.x) % SUBGROUP_ORDER


def generate_stealth_address(recipient_pubkey: Point) -> Tuple[StealthAddress, int]:
    """Derive a one-time address for a recipient.

    Returns the address and the ephemeral private scalar; only the ephemeral
    public point needs to be published alongside the stealth key.
    """
    ephemeral_private = random_scalar()
    ephemeral_pubkey = derive_public_key(ephemeral_private)
    shared_secret = scalar_mul(recipient_pubkey, ephemeral_private)
    factor_point = derive_public_key(_stealth_factor(shared_secret))
    stealth_pubkey = point_add(recipient_pubkey, factor_point)
    return StealthAddress(stealth_pubkey, ephemeral_pubkey), ephemeral_private


def derive_stealth_private_key(recipient_private_key: int, ephemeral_pubkey: Point) -> int:
    shared_secret = scalar_mul(ephemeral_pubkey, recipient_private_key)
    return (recipient_private_key + _stealth_factor(shared_secret)) % SUBGROUP_ORDER


def check_stealth_ownership(stealth: StealthAddress, recipient_private_key: int) -> bool:
    derived = derive_stealth_private_key(recipient_private_key, stealth.ephemeral_pubkey)
    return derive_public_key(derived) == stealth.stealth_pubkey


def spending_key_pubkey(spending_key: bytes) -> int:
    """Public x-coordinate that stands for the voter inside commitments"""
    return derive_public_key(bytes_to_field(spending_key)).x


def ecdh_shared_secret(private_key: int, public_key: Point) -> bytes:
    if not is_on_curve(public_key):
        raise ValueError("Public key is not on Baby Jubjub")
    return field_to_bytes(scalar_mul(public_key, private_key).x)
