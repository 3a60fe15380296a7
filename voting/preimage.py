"""
Encrypted commitment preimages.

Each vote or position commitment is stored with its opening sealed under
ChaCha20-Poly1305, so a voter (or, for time-locked ballots, the holder of
the time-lock key) can later recover choice, weight and randomness.

Plaintext layout::

    vote_choice (8, BE) | weight (8, BE) | [amount (8, BE)] | randomness (32) | ballot_id (32)

The amount is present for spend-to-vote positions only. Sealed bytes are
``nonce (12) | ciphertext | tag (16)``; time-lock ciphertexts are prefixed
with the 64-byte ephemeral point.
"""

import os
import struct
import logging
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from zk.babyjubjub import Point, derive_public_key, ecdh_shared_secret, random_scalar

from .errors import PreimageDecryptionError
from .models import Ciphertext, EncryptionType, RevealMode

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16
POINT_SIZE = 64
SNAPSHOT_PREIMAGE_SIZE = 8 + 8 + 32 + 32
POSITION_PREIMAGE_SIZE = SNAPSHOT_PREIMAGE_SIZE + 8


@dataclass(frozen=True)
class VotePreimage:
    vote_choice: int
    weight: int
    randomness: bytes
    ballot_id: bytes
    amount: Optional[int] = None

    def to_bytes(self) -> bytes:
        data = struct.pack('>QQ', self.vote_choice, self.weight)
        if self.amount is not None:
            data += struct.pack('>Q', self.amount)
        return data + self.randomness + self.ballot_id

    @classmethod
    def from_bytes(cls, data: bytes) -> 'VotePreimage':
        if len(data) == POSITION_PREIMAGE_SIZE:
            vote_choice, weight, amount = struct.unpack('>QQQ', data[:24])
            offset = 24
        elif len(data) == SNAPSHOT_PREIMAGE_SIZE:
            vote_choice, weight = struct.unpack('>QQ', data[:16])
            amount = None
            offset = 16
        else:
            raise PreimageDecryptionError(f"Unexpected preimage length {len(data)}")
        return cls(vote_choice, weight, data[offset:offset + 32],
                   data[offset + 32:offset + 64], amount)


def _derive_key(secret: bytes, salt: bytes, info: bytes) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        info=info,
    )
    return hkdf.derive(secret)


def derive_user_key(spending_key: bytes) -> bytes:
    return _derive_key(spending_key, b"vote_preimage", b"user_key")


def _seal(key: bytes, plaintext: bytes) -> bytes:
    nonce = os.urandom(NONCE_SIZE)
    return nonce + ChaCha20Poly1305(key).encrypt(nonce, plaintext, None)


def _open(key: bytes, sealed: bytes) -> bytes:
    if len(sealed) < NONCE_SIZE + TAG_SIZE:
        raise PreimageDecryptionError("Sealed preimage is truncated")
    try:
        return ChaCha20Poly1305(key).decrypt(sealed[:NONCE_SIZE], sealed[NONCE_SIZE:], None)
    except InvalidTag as e:
        raise PreimageDecryptionError("Preimage authentication failed") from e


def seal_for_user(preimage: VotePreimage, spending_key: bytes) -> Ciphertext:
    return Ciphertext.user_key(_seal(derive_user_key(spending_key), preimage.to_bytes()))


def seal_for_timelock(preimage: VotePreimage, time_lock_pubkey: Point) -> Ciphertext:
    """ECDH against the ballot's time-lock key with a fresh ephemeral point"""
    ephemeral = random_scalar()
    ephemeral_point = derive_public_key(ephemeral).to_bytes()
    shared = ecdh_shared_secret(ephemeral, time_lock_pubkey)
    key = _derive_key(shared, ephemeral_point, b"timelock_key")
    return Ciphertext.timelock_key(ephemeral_point + _seal(key, preimage.to_bytes()))


def seal_preimage(preimage: VotePreimage, reveal_mode: RevealMode, spending_key: bytes,
                  time_lock_pubkey: Optional[Point] = None) -> Ciphertext:
    """Time-locked ballots seal to the time-lock key; all others to the voter"""
    if reveal_mode is RevealMode.TIME_LOCKED:
        if time_lock_pubkey is None:
            raise ValueError("Time-locked ballots need a time-lock key")
        return seal_for_timelock(preimage, time_lock_pubkey)
    return seal_for_user(preimage, spending_key)


def open_preimage(ciphertext: Ciphertext, *, spending_key: Optional[bytes] = None,
                  time_lock_private_key: Optional[int] = None) -> VotePreimage:
    if ciphertext.encryption_type is EncryptionType.USER_KEY:
        if spending_key is None:
            raise PreimageDecryptionError("User-key preimage needs the spending key")
        plaintext = _open(derive_user_key(spending_key), ciphertext.data)
    else:
        if time_lock_private_key is None:
            raise PreimageDecryptionError("Time-lock preimage needs the time-lock key")
        if len(ciphertext.data) < POINT_SIZE:
            raise PreimageDecryptionError("Time-lock preimage is truncated")
        ephemeral_point = ciphertext.data[:POINT_SIZE]
        try:
            shared = ecdh_shared_secret(time_lock_private_key,
                                        Point.from_bytes(ephemeral_point))
        except ValueError as e:
            raise PreimageDecryptionError(f"Invalid ephemeral point: {e}") from e
        key = _derive_key(shared, ephemeral_point, b"timelock_key")
        plaintext = _open(key, ciphertext.data[POINT_SIZE:])
    return VotePreimage.from_bytes(plaintext)
