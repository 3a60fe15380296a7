"""
Exponential ElGamal tally over Baby Jubjub.

Ballots with a hidden reveal mode accumulate one ciphertext per option.
A vote contributes Enc(w_i) for each option credit w_i; changes and closes
contribute the negated credits. The holder of the time-lock key decrypts
each option to a point w*G. The ledger only checks claimed weights against
those points; the key holder recovers them with a search bounded by the
public total weight.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from zk.babyjubjub import (
    GENERATOR, IDENTITY, Point, derive_public_key, point_add, point_negate,
    point_sub, random_scalar, scalar_mul,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ElGamalCiphertext:
    c1: Point
    c2: Point

    def __add__(self, other: 'ElGamalCiphertext') -> 'ElGamalCiphertext':
        return ElGamalCiphertext(point_add(self.c1, other.c1), point_add(self.c2, other.c2))

    def negate(self) -> 'ElGamalCiphertext':
        return ElGamalCiphertext(point_negate(self.c1), point_negate(self.c2))

    def to_bytes(self) -> bytes:
        return self.c1.to_bytes() + self.c2.to_bytes()

    @classmethod
    def from_bytes(cls, data: bytes) -> 'ElGamalCiphertext':
        if len(data) != 128:
            raise ValueError("ElGamal ciphertext encoding must be 128 bytes")
        return cls(Point.from_bytes(data[:64]), Point.from_bytes(data[64:]))


ZERO_CIPHERTEXT = ElGamalCiphertext(IDENTITY, IDENTITY)


def encrypt_weight(public_key: Point, weight: int,
                   randomness: Optional[int] = None) -> ElGamalCiphertext:
    """Enc(w) = (rG, wG + rPK); negative weights encrypt -|w|G"""
    r = randomness if randomness is not None else random_scalar()
    c1 = scalar_mul(GENERATOR, r)
    c2 = point_add(scalar_mul(GENERATOR, weight), scalar_mul(public_key, r))
    return ElGamalCiphertext(c1, c2)


def encrypt_credits(public_key: Point, credits: Sequence[int]) -> List[ElGamalCiphertext]:
    return [encrypt_weight(public_key, credit) for credit in credits]


def encrypt_credit_delta(public_key: Point, old_credits: Sequence[int],
                         new_credits: Sequence[int]) -> List[ElGamalCiphertext]:
    """Contributions that move credits from one choice to another"""
    return [encrypt_weight(public_key, new - old)
            for old, new in zip(old_credits, new_credits)]


def add_contributions(tally: Sequence[ElGamalCiphertext],
                      contributions: Sequence[ElGamalCiphertext]) -> List[ElGamalCiphertext]:
    if len(tally) != len(contributions):
        raise ValueError(
            f"Expected {len(tally)} contributions, got {len(contributions)}")
    return [current + delta for current, delta in zip(tally, contributions)]


def decrypt_to_point(secret_key: int, ciphertext: ElGamalCiphertext) -> Point:
    """c2 - sk*c1 = wG"""
    return point_sub(ciphertext.c2, scalar_mul(ciphertext.c1, secret_key))


def verify_decryption(secret_key: int, ciphertext: ElGamalCiphertext, weight: int) -> bool:
    return decrypt_to_point(secret_key, ciphertext) == scalar_mul(GENERATOR, weight)


def matches_public_key(secret_key: int, public_key: Point) -> bool:
    return derive_public_key(secret_key) == public_key


def verify_tally(secret_key: int, tally: Sequence[ElGamalCiphertext],
                 weights: Sequence[int]) -> bool:
    """Check every option's claimed weight against its ciphertext"""
    if len(tally) != len(weights):
        return False
    for option, (ciphertext, weight) in enumerate(zip(tally, weights)):
        if weight < 0 or not verify_decryption(secret_key, ciphertext, weight):
            logger.warning(f"Claimed weight {weight} for option {option} does not match tally")
            return False
    return True


def solve_discrete_log(point: Point, max_value: int) -> int:
    """Baby-step giant-step search for w in [0, max_value] with wG == point"""
    step = math.isqrt(max_value) + 1
    table = {}
    current = IDENTITY
    for j in range(step):
        table.setdefault(current, j)
        current = point_add(current, GENERATOR)

    giant = point_negate(scalar_mul(GENERATOR, step))
    gamma = point
    for i in range(step + 1):
        j = table.get(gamma)
        if j is not None and i * step + j <= max_value:
            return i * step + j
        gamma = point_add(gamma, giant)
    raise ValueError(f"No weight in [0, {max_value}] matches the ciphertext")


def decrypt_option_weights(secret_key: int, tally: Sequence[ElGamalCiphertext],
                           max_weight: int) -> List[int]:
    """Recover plaintext option weights; the total weight bounds every option"""
    return [solve_discrete_log(decrypt_to_point(secret_key, ciphertext), max_weight)
            for ciphertext in tally]
