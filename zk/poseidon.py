"""
Poseidon Hash over the BN254 Scalar Field
Width-3 permutation (2 inputs) with parameters derived by the Grain LFSR
"""

import logging
from collections import deque
from functools import lru_cache
from typing import List, Iterator, Sequence

logger = logging.getLogger(__name__)

# ============================================================================
# POSEIDON PARAMETER GENERATION
# ============================================================================


class PoseidonParameters:
    """Round constants and MDS matrix for a Poseidon instance"""

    # BN254 scalar field prime
    PRIME = 21888242871839275222246405745257275088548364400416034343698204186575808495617

    FULL_ROUNDS = 8
    PARTIAL_ROUNDS = 57
    WIDTH = 3  # t=3 for 2 inputs
    ALPHA = 5

    def __init__(self):
        self.field_bits = self.PRIME.bit_length()
        self._bits = self._grain_bits()
        self.round_constants = self._generate_round_constants()
        self.mds_matrix = self._generate_mds_matrix()

        logger.debug(
            f"Generated Poseidon parameters: t={self.WIDTH}, R_F={self.FULL_ROUNDS}, "
            f"R_P={self.PARTIAL_ROUNDS}, {len(self.round_constants)} constants")

    def _initial_state(self) -> List[int]:
        """80-bit Grain seed encoding field type, S-box, n, t, R_F and R_P"""
        def bits(value: int, width: int) -> List[int]:
            return [int(b) for b in bin(value)[2:].zfill(width)]

        return (bits(1, 2)                      # prime field
                + bits(0, 4)                    # x^alpha S-box
                + bits(self.field_bits, 12)
                + bits(self.WIDTH, 12)
                + bits(self.FULL_ROUNDS, 10)
                + bits(self.PARTIAL_ROUNDS, 10)
                + [1] * 30)

    def _grain_bits(self) -> Iterator[int]:
        """Self-shrinking Grain LFSR output"""
        state = deque(self._initial_state())

        def step() -> int:
            new_bit = state[62] ^ state[51] ^ state[38] ^ state[23] ^ state[13] ^ state[0]
            state.popleft()
            state.append(new_bit)
            return new_bit

        # Discard the first 160 bits
        for _ in range(160):
            step()

        while True:
            new_bit = step()
            while new_bit == 0:
                step()
                new_bit = step()
            yield step()

    def _random_bits(self, count: int) -> int:
        value = 0
        for _ in range(count):
            value = (value << 1) | next(self._bits)
        return value

    def _generate_round_constants(self) -> List[int]:
        constants = []
        total = (self.FULL_ROUNDS + self.PARTIAL_ROUNDS) * self.WIDTH
        while len(constants) < total:
            candidate = self._random_bits(self.field_bits)
            # Rejection sampling keeps constants uniform in the field
            if candidate < self.PRIME:
                constants.append(candidate)
        return constants

    def _generate_mds_matrix(self) -> List[List[int]]:
        """Cauchy matrix M[i][j] = 1 / (x_i + y_j)"""
        t = self.WIDTH
        while True:
            samples = [self._random_bits(self.field_bits) % self.PRIME
                       for _ in range(2 * t)]
            if len(set(samples)) != len(samples):
                continue

            xs, ys = samples[:t], samples[t:]
            if any((x + y) % self.PRIME == 0 for x in xs for y in ys):
                continue

            return [[pow(x + y, -1, self.PRIME) for y in ys] for x in xs]


@lru_cache(maxsize=1)
def get_parameters() -> PoseidonParameters:
    return PoseidonParameters()

# ============================================================================
# PERMUTATION
# ============================================================================


class Poseidon:
    """Poseidon 2-to-1 hash with the capacity element in state[0]"""

    PRIME = PoseidonParameters.PRIME

    @staticmethod
    def field_mult(a: int, b: int) -> int:
        """Field multiplication modulo prime"""
        return (a * b) % Poseidon.PRIME

    @staticmethod
    def field_add(a: int, b: int) -> int:
        """Field addition modulo prime"""
        return (a + b) % Poseidon.PRIME

    @staticmethod
    def ark(state: List[int], constants: List[int], constant_idx: int) -> List[int]:
        """Add round constants"""
        return [Poseidon.field_add(state[i], constants[constant_idx + i])
                for i in range(PoseidonParameters.WIDTH)]

    @staticmethod
    def sbox(state: List[int], full_round: bool) -> List[int]:
        """Apply S-box (x^5 mod p)"""
        if full_round:
            return [pow(x, PoseidonParameters.ALPHA, Poseidon.PRIME) for x in state]
        return [pow(state[0], PoseidonParameters.ALPHA, Poseidon.PRIME)] + state[1:]

    @staticmethod
    def mix(state: List[int], mds: List[List[int]]) -> List[int]:
        """Apply MDS matrix multiplication"""
        width = PoseidonParameters.WIDTH
        new_state = [0] * width
        for i in range(width):
            for j in range(width):
                new_state[i] = Poseidon.field_add(
                    new_state[i], Poseidon.field_mult(state[j], mds[i][j]))
        return new_state

    @staticmethod
    def hash(inputs: Sequence[int]) -> int:
        """Poseidon hash of exactly two field elements"""
        if len(inputs) != 2:
            raise ValueError("Poseidon expects 2 inputs for t=3")
        for value in inputs:
            if value < 0 or value >= Poseidon.PRIME:
                raise ValueError(f"Value {value} outside field bounds")

        params = get_parameters()
        constants = params.round_constants
        state = [0, inputs[0], inputs[1]]

        constant_idx = 0
        half_full = PoseidonParameters.FULL_ROUNDS // 2
        rounds = ([True] * half_full
                  + [False] * PoseidonParameters.PARTIAL_ROUNDS
                  + [True] * half_full)

        for full_round in rounds:
            state = Poseidon.ark(state, constants, constant_idx)
            constant_idx += PoseidonParameters.WIDTH
            state = Poseidon.sbox(state, full_round)
            state = Poseidon.mix(state, params.mds_matrix)

        return state[0]


poseidon_hash = Poseidon.hash


def poseidon_hash_domain(domain: int, *inputs: int) -> int:
    """Domain-separated hash of any number of field elements.

    The domain seeds a chain of 2-to-1 permutations, so H(d, a, b, c) is
    P(P(P(d, a), b), c). The arity is not encoded in the digest, and a
    domain may be used at more than one arity: the vote commitment and
    position domains each hash three inputs for a commitment and two for
    its nullifier.
    """
    if not inputs:
        raise ValueError("At least one input is required")

    state = domain % Poseidon.PRIME
    for value in inputs:
        state = poseidon_hash([state, value])
    return state
