"""
Exception base shared by the proof layer and the voting protocol
"""

from typing import Optional


class ProtocolError(Exception):
    """Base exception carrying enough context to resume or diagnose an action.

    ``category`` is one of: rejected, conflict, timing, quorum, transient,
    invalid, internal. Only transient errors may be retried in place.
    """
    category = "internal"

    def __init__(self, message: str = "", *, ballot_id: Optional[bytes] = None,
                 operation_id: Optional[bytes] = None, phase: Optional[int] = None):
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)
        self.message = message
        self.ballot_id = ballot_id
        self.operation_id = operation_id
        self.phase = phase

    @property
    def retryable(self) -> bool:
        return self.category == "transient"

    def with_context(self, *, ballot_id: Optional[bytes] = None,
                     operation_id: Optional[bytes] = None,
                     phase: Optional[int] = None) -> 'ProtocolError':
        """Fill in missing context fields and return self for re-raising"""
        if self.ballot_id is None:
            self.ballot_id = ballot_id
        if self.operation_id is None:
            self.operation_id = operation_id
        if self.phase is None:
            self.phase = phase
        return self

    def __str__(self) -> str:
        text = super().__str__()
        context = []
        if self.ballot_id is not None:
            context.append(f"ballot={self.ballot_id.hex()[:16]}")
        if self.operation_id is not None:
            context.append(f"operation={self.operation_id.hex()[:16]}")
        if self.phase is not None:
            context.append(f"phase={self.phase}")
        if context:
            return f"{text} [{', '.join(context)}]"
        return text


class ZKError(ProtocolError):
    """Base exception for ZK operations"""
    pass


class ProofRejected(ZKError):
    """Proof failed verification"""
    category = "rejected"


class InvalidAttestationSignature(ZKError):
    """Attestation signature could not be parsed"""
    category = "rejected"


class InvalidWeightFormula(ZKError):
    """Weight formula evaluation failed"""
    category = "invalid"


class CircuitInputError(ZKError):
    """Circuit inputs are malformed"""
    category = "invalid"


class ProofGenerationError(ZKError):
    """Proof backend process failed"""
    pass


class ProofBackendUnavailable(ZKError):
    """Proof backend could not be reached or timed out"""
    category = "transient"
