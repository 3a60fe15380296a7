"""
Vote and position recovery from encrypted preimages.

A voter who lost local state can rebuild a VoteRecord or Position from the
state tree: the sealed preimage stored with the commitment gives back choice,
weight and randomness, and the commitment is recomputed to confirm the
opening is genuine.
"""

import logging
from typing import Dict, Iterable, List, Optional

from zk.babyjubjub import spending_key_pubkey
from zk.commitments import (
    ADDRESS_POSITION, ADDRESS_VOTE_COMMITMENT, derive_address, derive_nullifier_key,
    position_commitment, vote_commitment, vote_nullifier,
)

from .errors import PreimageDecryptionError, TimelockNotExpired
from .models import Ballot, Position, VoteRecord
from .preimage import VotePreimage, open_preimage
from .state_tree import StateTree

logger = logging.getLogger(__name__)


def _load_preimage(state_tree: StateTree, address: int, *,
                   spending_key: Optional[bytes] = None,
                   time_lock_private_key: Optional[int] = None) -> VotePreimage:
    ciphertext = state_tree.get_data(address)
    if ciphertext is None:
        raise PreimageDecryptionError(f"No preimage stored at {address:#x}")
    return open_preimage(ciphertext, spending_key=spending_key,
                         time_lock_private_key=time_lock_private_key)


def recover_vote_record(state_tree: StateTree, ballot_id: bytes, commitment: int,
                        spending_key: bytes,
                        time_lock_private_key: Optional[int] = None) -> VoteRecord:
    """Rebuild a snapshot vote from its commitment"""
    address = derive_address(ADDRESS_VOTE_COMMITMENT, ballot_id, commitment)
    preimage = _load_preimage(state_tree, address, spending_key=spending_key,
                              time_lock_private_key=time_lock_private_key)
    if preimage.ballot_id != ballot_id:
        raise PreimageDecryptionError("Preimage belongs to a different ballot")

    nullifier = vote_nullifier(derive_nullifier_key(spending_key), ballot_id)
    expected = vote_commitment(ballot_id, nullifier, spending_key_pubkey(spending_key),
                               preimage.vote_choice, preimage.weight, preimage.randomness)
    if expected != commitment:
        raise PreimageDecryptionError("Preimage does not open the vote commitment")

    return VoteRecord(ballot_id=ballot_id, vote_nullifier=nullifier,
                      vote_commitment=commitment, vote_choice=preimage.vote_choice,
                      weight=preimage.weight, randomness=preimage.randomness)


def recover_position(state_tree: StateTree, ballot_id: bytes, commitment: int,
                     spending_key: bytes,
                     time_lock_private_key: Optional[int] = None) -> Position:
    """Rebuild a spend-to-vote position from its commitment"""
    address = derive_address(ADDRESS_POSITION, ballot_id, commitment)
    preimage = _load_preimage(state_tree, address, spending_key=spending_key,
                              time_lock_private_key=time_lock_private_key)
    if preimage.ballot_id != ballot_id or preimage.amount is None:
        raise PreimageDecryptionError("Preimage is not a position of this ballot")

    expected = position_commitment(ballot_id, spending_key_pubkey(spending_key),
                                   preimage.vote_choice, preimage.amount,
                                   preimage.weight, preimage.randomness)
    if expected != commitment:
        raise PreimageDecryptionError("Preimage does not open the position commitment")

    return Position(ballot_id=ballot_id, commitment=commitment,
                    vote_choice=preimage.vote_choice, amount=preimage.amount,
                    weight=preimage.weight, randomness=preimage.randomness)


def reveal_time_locked(state_tree: StateTree, ballot: Ballot, addresses: Iterable[int],
                       time_lock_private_key: int, current_slot: int) -> Dict[int, VotePreimage]:
    """Open every time-locked preimage at the given addresses after the unlock slot.

    Addresses whose preimage fails to open are skipped and logged; they were
    sealed to a voter key rather than the time-lock key.
    """
    if current_slot < ballot.config.unlock_slot:
        raise TimelockNotExpired(
            f"Unlock slot {ballot.config.unlock_slot} not reached (current {current_slot})",
            ballot_id=ballot.ballot_id)

    revealed = {}
    skipped: List[int] = []
    for address in addresses:
        try:
            revealed[address] = _load_preimage(
                state_tree, address, time_lock_private_key=time_lock_private_key)
        except PreimageDecryptionError as e:
            logger.warning(f"Could not open preimage at {address:#x}: {e}")
            skipped.append(address)

    logger.info(f"Revealed {len(revealed)} time-locked votes for ballot "
                f"{ballot.ballot_id.hex()[:16]} ({len(skipped)} skipped)")
    return revealed
