"""
Balance attestations for snapshot ballots.

The indexer attests to a voter's token balance at the ballot's snapshot
slot with an EdDSA signature over Baby Jubjub. The signed message is a
Poseidon digest of (voter pubkey, ballot id, token mint, amount, slot), so
the vote_snapshot circuit can check it in-circuit against the public
indexer key.
"""

import hashlib
import logging

from .babyjubjub import (
    GENERATOR, SUBGROUP_ORDER, Point, derive_public_key, is_on_curve, point_add, scalar_mul,
)
from .circuit_inputs import BalanceAttestation, parse_attestation_signature
from .errors import InvalidAttestationSignature
from .field import field_to_bytes, to_field
from .poseidon import poseidon_hash_domain

logger = logging.getLogger(__name__)

DOMAIN_ATTESTATION = 0x20
DOMAIN_EDDSA_CHALLENGE = 0x21


def attestation_message(owner_pubkey: int, ballot_id: bytes, token_mint: bytes,
                        total_amount: int, snapshot_slot: int) -> int:
    return poseidon_hash_domain(DOMAIN_ATTESTATION, to_field(owner_pubkey),
                                to_field(ballot_id), to_field(token_mint),
                                total_amount, snapshot_slot)


def _challenge(r8: Point, public_key: Point, message: int) -> int:
    return poseidon_hash_domain(DOMAIN_EDDSA_CHALLENGE, r8.x, r8.y,
                                public_key.x, public_key.y, message) % SUBGROUP_ORDER


class AttestationSigner:
    """Indexer-side signer; one instance per indexer key"""

    def __init__(self, private_key: int):
        self.private_key = private_key % SUBGROUP_ORDER
        self.public_key = derive_public_key(self.private_key)

    def _nonce(self, message: int) -> int:
        digest = hashlib.sha512(field_to_bytes(self.private_key)
                                + field_to_bytes(message)).digest()
        return int.from_bytes(digest, 'big') % SUBGROUP_ORDER

    def sign_message(self, message: int) -> bytes:
        """96-byte signature R8x | R8y | S"""
        r = self._nonce(message)
        r8 = scalar_mul(GENERATOR, r)
        s = (r + _challenge(r8, self.public_key, message) * self.private_key) % SUBGROUP_ORDER
        return field_to_bytes(r8.x) + field_to_bytes(r8.y) + field_to_bytes(s)

    def attest(self, owner_pubkey: int, ballot_id: bytes, token_mint: bytes,
               total_amount: int, snapshot_slot: int) -> BalanceAttestation:
        message = attestation_message(owner_pubkey, ballot_id, token_mint,
                                      total_amount, snapshot_slot)
        logger.debug(f"Attesting balance {total_amount} at slot {snapshot_slot}")
        return BalanceAttestation(token_mint=token_mint, total_amount=total_amount,
                                  snapshot_slot=snapshot_slot,
                                  signature=self.sign_message(message))


def verify_signature(public_key: Point, message: int, signature) -> bool:
    """S*G == R8 + c*A"""
    if not is_on_curve(public_key):
        return False
    try:
        parsed = parse_attestation_signature(signature)
    except InvalidAttestationSignature:
        return False
    r8 = Point(parsed.r8x, parsed.r8y)
    left = scalar_mul(GENERATOR, parsed.s)
    right = point_add(r8, scalar_mul(public_key, _challenge(r8, public_key, message)))
    return left == right


def verify_attestation(attestation: BalanceAttestation, indexer_pubkey: Point,
                       owner_pubkey: int, ballot_id: bytes) -> bool:
    message = attestation_message(owner_pubkey, ballot_id, attestation.token_mint,
                                  attestation.total_amount, attestation.snapshot_slot)
    return verify_signature(indexer_pubkey, message, attestation.signature)
