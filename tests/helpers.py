"""
Clock constants and builders shared by the test modules
"""

import os
from typing import Tuple

from voting.models import (
    Ballot, BallotConfig, ResolutionMode, RevealMode, VoteBindingMode, VoteType,
)
from voting.errors import StateTreeUnavailable
from voting.state_tree import InMemoryStateTree
from zk.attestation import AttestationSigner
from zk.babyjubjub import derive_public_key, spending_key_pubkey
from zk.circuit_inputs import PreparedInputs, TokenNote, build_vote_snapshot_inputs
from zk.field import generate_randomness

# Logical clock
START_TIME = 1_000
VOTING_TIME = 1_500
END_TIME = 2_000
AFTER_END = 2_500
CLAIM_DEADLINE = 3_000
AFTER_DEADLINE = 3_500

SNAPSHOT_SLOT = 42
UNLOCK_SLOT = 100

TOKEN_MINT = bytes(range(1, 33))
RESOLVER = b"\x0a" * 32
ORACLE = b"\x0b" * 32

INDEXER_KEY = 0x1234567890ABCDEF
TIME_LOCK_KEY = 0xFEDCBA0987654321


def ballot_config(binding: VoteBindingMode = VoteBindingMode.SNAPSHOT,
                  reveal: RevealMode = RevealMode.PUBLIC,
                  vote_type: VoteType = VoteType.SINGLE,
                  resolution: ResolutionMode = ResolutionMode.TALLY_BASED,
                  num_options: int = 3, **overrides) -> BallotConfig:
    """A valid config for any combination of the four mode axes"""
    kwargs = dict(
        binding_mode=binding,
        reveal_mode=reveal,
        vote_type=vote_type,
        resolution_mode=resolution,
        num_options=num_options,
        start_time=START_TIME,
        end_time=END_TIME,
        token_mint=TOKEN_MINT,
    )
    if binding is VoteBindingMode.SNAPSHOT:
        kwargs.update(snapshot_slot=SNAPSHOT_SLOT,
                      indexer_pubkey=AttestationSigner(INDEXER_KEY).public_key)
    else:
        kwargs.update(claim_deadline=CLAIM_DEADLINE)
    if reveal is not RevealMode.PUBLIC:
        kwargs.update(time_lock_pubkey=time_lock_keypair()[1], unlock_slot=UNLOCK_SLOT)
    if resolution is ResolutionMode.AUTHORITY:
        kwargs['resolver'] = RESOLVER
    elif resolution is ResolutionMode.ORACLE:
        kwargs['oracle'] = ORACLE
    kwargs.update(overrides)
    return BallotConfig(**kwargs)


def make_ballot(now: int = START_TIME, **kwargs) -> Ballot:
    """Standalone ballot record for tally and resolution tests"""
    return Ballot.create(os.urandom(32), ballot_config(**kwargs), now)


def time_lock_keypair():
    return TIME_LOCK_KEY, derive_public_key(TIME_LOCK_KEY)


def attest(signer: AttestationSigner, spending_key: bytes, ballot: Ballot, amount: int):
    return signer.attest(spending_key_pubkey(spending_key), ballot.ballot_id,
                         ballot.config.token_mint, amount, ballot.config.snapshot_slot)


def prove_snapshot_vote(backend, signer: AttestationSigner, ballot: Ballot,
                        spending_key: bytes, vote_choice: int,
                        amount: int) -> Tuple[PreparedInputs, bytes]:
    prepared = build_vote_snapshot_inputs(
        ballot_id=ballot.ballot_id, spending_key=spending_key, vote_choice=vote_choice,
        attestation=attest(signer, spending_key, ballot, amount),
        indexer_pubkey=ballot.config.indexer_pubkey,
        public_reveal=ballot.config.public_reveal)
    return prepared, backend.prove_bundle(prepared.bundle)


def unshielded_note(spending_key: bytes, amount: int, token_mint: bytes = TOKEN_MINT) -> TokenNote:
    return TokenNote(stealth_pubkey_x=spending_key_pubkey(spending_key), token_mint=token_mint,
                     amount=amount, randomness=generate_randomness(), leaf_index=0)


class FlakyStateTree(InMemoryStateTree):
    """In-memory tree whose insert times out once after ``inserts_until_failure`` successes"""

    def __post_init__(self):
        super().__post_init__()
        self.inserts_until_failure = None

    def insert(self, address, validity_proof, data=None):
        if self.inserts_until_failure is not None:
            if self.inserts_until_failure == 0:
                self.inserts_until_failure = None
                raise StateTreeUnavailable("state tree request timed out")
            self.inserts_until_failure -= 1
        return super().insert(address, validity_proof, data)
