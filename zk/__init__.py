"""
Zero-knowledge layer of the ballot protocol: field and hash primitives,
commitment/nullifier derivation, circuit input construction and the proof
backend interface.
"""

from .attestation import AttestationSigner, verify_attestation
from .backend import DevelopmentProofBackend, ProofBackend, SnarkjsProofBackend
from .circuit_inputs import (
    BalanceAttestation,
    MerklePath,
    PreparedInputs,
    ProofInputBundle,
    TokenNote,
    WeightOp,
    evaluate_weight_formula,
    parse_attestation_signature,
)
from .errors import (
    CircuitInputError,
    InvalidAttestationSignature,
    InvalidWeightFormula,
    ProofBackendUnavailable,
    ProofGenerationError,
    ProofRejected,
    ProtocolError,
    ZKError,
)
from .poseidon import poseidon_hash, poseidon_hash_domain

__version__ = "1.0.0"

__all__ = [
    # Attestations
    'AttestationSigner',
    'verify_attestation',

    # Backends
    'ProofBackend',
    'SnarkjsProofBackend',
    'DevelopmentProofBackend',

    # Circuit inputs
    'BalanceAttestation',
    'MerklePath',
    'PreparedInputs',
    'ProofInputBundle',
    'TokenNote',
    'WeightOp',
    'evaluate_weight_formula',
    'parse_attestation_signature',

    # Hashing
    'poseidon_hash',
    'poseidon_hash_domain',

    # Exceptions
    'ProtocolError',
    'ZKError',
    'ProofRejected',
    'InvalidAttestationSignature',
    'InvalidWeightFormula',
    'CircuitInputError',
    'ProofGenerationError',
    'ProofBackendUnavailable',
]
