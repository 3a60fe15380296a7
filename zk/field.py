"""
BN254 scalar field helpers shared by the hash, commitment and circuit layers
"""

import os
import logging
from typing import Iterable, List, Union

import galois
import numpy as np

from .poseidon import PoseidonParameters

logger = logging.getLogger(__name__)

FIELD_MODULUS = PoseidonParameters.PRIME
FIELD_BYTES = 32

# 5 generates the multiplicative group of BN254 Fr; supplying it skips
# factoring p - 1 when the field class is built
Fr = galois.GF(FIELD_MODULUS, primitive_element=5, verify=False)

BytesLike = Union[bytes, bytearray]


def bytes_to_field(data: BytesLike) -> int:
    """Big-endian bytes to a field element, reduced modulo the prime"""
    return int.from_bytes(bytes(data), 'big') % FIELD_MODULUS


def field_to_bytes(value: int) -> bytes:
    """Field element to 32 big-endian bytes"""
    return (value % FIELD_MODULUS).to_bytes(FIELD_BYTES, 'big')


def to_field(value: Union[int, BytesLike]) -> int:
    """Accept either an integer or a byte string and return a field element"""
    if isinstance(value, (bytes, bytearray)):
        return bytes_to_field(value)
    if value < 0:
        raise ValueError(f"Negative value {value} is not a field element")
    return value % FIELD_MODULUS


def random_field_element() -> int:
    """Cryptographically secure random field element using OS randomness"""
    return int.from_bytes(os.urandom(FIELD_BYTES), 'big') % FIELD_MODULUS


def generate_randomness() -> bytes:
    """Fresh commitment randomness as canonical 32-byte encoding"""
    return field_to_bytes(random_field_element())


def validate_element(element: int) -> bool:
    return 0 <= element < FIELD_MODULUS


def to_field_array(values: Iterable[int]) -> galois.FieldArray:
    """Build an Fr array, raising ValueError for any non-canonical value"""
    items = [int(v) for v in values]
    if not items:
        raise ValueError("Cannot build an empty field array")
    return Fr(items)


def field_negate(value: int) -> int:
    return int(-Fr(value % FIELD_MODULUS))


def field_sum(values: Iterable[int]) -> int:
    items = list(values)
    if not items:
        return 0
    return int(np.sum(to_field_array(items)))


def canonical_values(values: Iterable[int]) -> List[int]:
    """Validate that every value is already reduced and return plain ints"""
    items = list(values)
    if not items:
        return []
    return [int(v) for v in to_field_array(items)]
