"""
Voting protocol exceptions
"""

from zk.errors import ProtocolError


class VotingError(ProtocolError):
    """Base exception for voting operations"""
    pass

# ============================================================================
# CONFLICTS
# ============================================================================


class AddressAlreadyExists(VotingError):
    """State-tree address is already occupied"""
    category = "conflict"


class NullifierAlreadyExists(VotingError):
    """Nullifier already registered; the action was already taken"""
    category = "conflict"


class CommitmentAlreadyExists(VotingError):
    """Commitment already registered"""
    category = "conflict"


class AddressNotFound(VotingError):
    """State-tree address has no leaf"""
    category = "rejected"


class CommitmentNotFound(VotingError):
    """Prior commitment is not in the state tree"""
    category = "rejected"

# ============================================================================
# TIMING
# ============================================================================


class BallotNotActive(VotingError):
    """Ballot is not accepting votes"""
    category = "timing"


class VotingNotStarted(VotingError):
    """Voting period has not started"""
    category = "timing"


class VotingPeriodNotEnded(VotingError):
    """Voting period has not ended"""
    category = "timing"


class ClaimDeadlinePassed(VotingError):
    """Claim deadline has passed"""
    category = "timing"


class ClaimDeadlineNotPassed(VotingError):
    """Claim deadline has not passed"""
    category = "timing"


class TimelockNotExpired(VotingError):
    """Time-lock unlock slot not reached"""
    category = "timing"

# ============================================================================
# RESOLUTION
# ============================================================================


class QuorumNotMet(VotingError):
    """Total weight is below the quorum threshold"""
    category = "quorum"


class BallotAlreadyResolved(VotingError):
    """Ballot already has an outcome"""
    category = "invalid"


class BallotNotResolved(VotingError):
    """Ballot has no outcome"""
    category = "invalid"


class BallotAlreadyFinalized(VotingError):
    """Ballot is finalized"""
    category = "invalid"


class UnauthorizedResolver(VotingError):
    """Key is not allowed to resolve this ballot"""
    category = "rejected"


class OracleOutcomeNotSubmitted(VotingError):
    """Oracle has not submitted an outcome"""
    category = "invalid"


class InvalidOutcome(VotingError):
    """Outcome is not a valid option index"""
    category = "invalid"


class TallyNotDecrypted(VotingError):
    """Encrypted tally must be decrypted before resolution"""
    category = "invalid"


class InvalidDecryptionKey(VotingError):
    """Key does not open the encrypted tally"""
    category = "rejected"


class ClaimsNotAllowed(VotingError):
    """Only spend-to-vote ballots have claims"""
    category = "invalid"


class NotAWinner(VotingError):
    """Position did not vote for the outcome"""
    category = "invalid"

# ============================================================================
# VALIDATION AND ORCHESTRATION
# ============================================================================


class InvalidBallotConfig(VotingError):
    """Ballot configuration is invalid"""
    category = "invalid"


class InvalidVoteChoice(VotingError):
    """Vote choice is not valid for the ballot's vote type"""
    category = "invalid"


class InvalidBindingMode(VotingError):
    """Action does not match the ballot's binding mode"""
    category = "invalid"


class PhaseOrderError(VotingError):
    """Phase transition out of order"""
    category = "invalid"


class OperationNotFound(VotingError):
    """No pending operation with this id"""
    category = "invalid"


class UnauthorizedSubmitter(VotingError):
    """Caller did not submit this operation"""
    category = "rejected"


class PreimageDecryptionError(VotingError):
    """Encrypted preimage could not be opened"""
    category = "rejected"


class StateTreeUnavailable(VotingError):
    """State-tree service could not be reached"""
    category = "transient"
