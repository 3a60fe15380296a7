"""
Shared fixtures: in-memory collaborators, a ledger program and a client
"""

import os

import pytest

from voting.client import VotingClient
from voting.program import BallotProgram
from zk.attestation import AttestationSigner
from zk.backend import DevelopmentProofBackend
from zk.field import generate_randomness

from helpers import INDEXER_KEY, START_TIME, FlakyStateTree, ballot_config

TEST_TREE_DEPTH = 16


@pytest.fixture
def state_tree():
    return FlakyStateTree(depth=TEST_TREE_DEPTH)


@pytest.fixture
def backend():
    return DevelopmentProofBackend(secret=b"\x42" * 32)


@pytest.fixture
def program(backend, state_tree):
    return BallotProgram(backend, state_tree)


@pytest.fixture
def client(program, backend, state_tree):
    voting_client = VotingClient(program, backend, state_tree, proof_workers=2)
    yield voting_client
    voting_client.close()


@pytest.fixture(scope="session")
def indexer():
    return AttestationSigner(INDEXER_KEY)


@pytest.fixture
def voter_keys():
    return [generate_randomness() for _ in range(4)]


@pytest.fixture
def create_ballot(program):
    """Create a ballot on the program from ``ballot_config`` keyword arguments"""
    def _create(**kwargs):
        return program.create_ballot(os.urandom(32), ballot_config(**kwargs), now=START_TIME)
    return _create
