"""Confidential ballot protocol: ballots, phased voting actions, resolution and claims."""

from .client import VotingClient, create_proof_backend, create_state_tree, shield_note
from .errors import (
    BallotNotActive,
    CommitmentNotFound,
    NullifierAlreadyExists,
    PhaseOrderError,
    QuorumNotMet,
    StateTreeUnavailable,
    VotingError,
)
from .models import (
    Ballot,
    BallotConfig,
    BallotStatus,
    Position,
    ResolutionMode,
    RevealMode,
    VoteBindingMode,
    VoteRecord,
    VoteType,
)
from .phases import OperationKind, Phase, PhaseReceipt
from .program import BallotProgram
from .resolution import Resolution, calculate_payout, is_winner
from .state_tree import InMemoryStateTree, JsonRpcStateTree, StateTree

__version__ = "1.0.0"

__all__ = [
    # Ledger program and client
    'BallotProgram',
    'VotingClient',
    'create_proof_backend',
    'create_state_tree',
    'shield_note',

    # Data model
    'Ballot',
    'BallotConfig',
    'BallotStatus',
    'Position',
    'VoteRecord',
    'VoteBindingMode',
    'RevealMode',
    'VoteType',
    'ResolutionMode',

    # Phases
    'OperationKind',
    'Phase',
    'PhaseReceipt',

    # Resolution
    'Resolution',
    'calculate_payout',
    'is_winner',

    # State tree
    'StateTree',
    'InMemoryStateTree',
    'JsonRpcStateTree',

    # Exceptions
    'VotingError',
    'BallotNotActive',
    'CommitmentNotFound',
    'NullifierAlreadyExists',
    'PhaseOrderError',
    'QuorumNotMet',
    'StateTreeUnavailable',
]
