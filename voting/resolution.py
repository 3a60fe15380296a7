"""
Resolution and claim engine.

Decides a ballot's outcome once voting ends, computes per-position payouts
for spend-to-vote ballots, and finalizes the vault after the claim window.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .encrypted_tally import matches_public_key, verify_tally
from .errors import (
    BallotAlreadyFinalized, BallotAlreadyResolved, BallotNotResolved,
    ClaimDeadlineNotPassed, ClaimDeadlinePassed, ClaimsNotAllowed, InvalidDecryptionKey,
    InvalidOutcome, OracleOutcomeNotSubmitted, TallyNotDecrypted, TimelockNotExpired,
    UnauthorizedResolver, VotingNotStarted, VotingPeriodNotEnded,
)
from .models import (
    MAX_FEE_BPS, Ballot, BallotStatus, ResolutionMode, VoteType, ranked_slots, tally_credits,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Result of resolving a ballot; a missed quorum is a result, not a failure"""
    quorum_met: bool
    outcome: Optional[int] = None
    winner_weight: int = 0
    total_weight: int = 0


def is_winner(vote_choice: int, outcome: int, vote_type: VoteType) -> bool:
    if vote_type is VoteType.APPROVAL:
        return bool(vote_choice >> outcome & 1)
    if vote_type is VoteType.RANKED:
        return outcome in ranked_slots(vote_choice)
    return vote_choice == outcome


def calculate_payout(weight: int, total_pool: int, winner_weight: int,
                     fee_bps: int, winner: bool = True) -> Tuple[int, int]:
    """(gross, net) with truncating integer division; Python ints never overflow"""
    if not winner or winner_weight == 0:
        return 0, 0
    gross = weight * total_pool // winner_weight
    fee = gross * fee_bps // MAX_FEE_BPS
    return gross, gross - fee


def quorum_met(total_weight: int, quorum_threshold: int) -> bool:
    return quorum_threshold == 0 or total_weight >= quorum_threshold


def _check_can_resolve(ballot: Ballot, now: int):
    ballot.refresh_status(now)
    if ballot.status is BallotStatus.PENDING:
        raise VotingNotStarted(ballot_id=ballot.ballot_id)
    if ballot.status in (BallotStatus.RESOLVED, BallotStatus.FINALIZED):
        raise BallotAlreadyResolved(ballot_id=ballot.ballot_id)
    if not ballot.has_ended(now):
        raise VotingPeriodNotEnded(ballot_id=ballot.ballot_id)


def close_voting(ballot: Ballot, now: int):
    """Active -> Closed once the end time passes"""
    if ballot.status is BallotStatus.ACTIVE and ballot.has_ended(now):
        ballot.status = BallotStatus.CLOSED
        logger.info(f"Ballot {ballot.ballot_id.hex()[:16]} closed with "
                    f"{ballot.vote_count} votes, total weight {ballot.total_weight}")

# ============================================================================
# ENCRYPTED TALLY
# ============================================================================


def decrypt_tally(ballot: Ballot, decryption_key: int, option_weights: Sequence[int],
                  now: int, current_slot: int):
    """Reveal the per-option weights of a hidden-reveal ballot.

    The claimed weights are checked against every ciphertext and must add up
    to the ballot's total weight.
    """
    config = ballot.config
    if config.public_reveal:
        raise TallyNotDecrypted("Public ballots have no encrypted tally",
                                ballot_id=ballot.ballot_id)
    _check_can_resolve(ballot, now)
    if ballot.tally_decrypted:
        raise BallotAlreadyResolved("Tally already decrypted", ballot_id=ballot.ballot_id)
    if current_slot < config.unlock_slot:
        raise TimelockNotExpired(
            f"Unlock slot {config.unlock_slot} not reached (current {current_slot})",
            ballot_id=ballot.ballot_id)
    if not matches_public_key(decryption_key, config.time_lock_pubkey):
        raise InvalidDecryptionKey(ballot_id=ballot.ballot_id)

    weights = [int(w) for w in option_weights]
    if not verify_tally(decryption_key, ballot.encrypted_tally, weights):
        raise InvalidDecryptionKey("Claimed weights do not match the encrypted tally",
                                   ballot_id=ballot.ballot_id)
    if sum(weights) != ballot.total_weight:
        raise InvalidDecryptionKey(
            f"Decrypted weights sum to {sum(weights)}, expected {ballot.total_weight}",
            ballot_id=ballot.ballot_id)

    ballot.option_weights = weights
    ballot.tally_decrypted = True
    close_voting(ballot, now)
    logger.info(f"Decrypted tally of ballot {ballot.ballot_id.hex()[:16]}: {weights}")

# ============================================================================
# RESOLUTION
# ============================================================================


def submit_oracle_outcome(ballot: Ballot, caller: bytes, outcome: int):
    if ballot.config.resolution_mode is not ResolutionMode.ORACLE:
        raise UnauthorizedResolver("Ballot is not oracle-resolved", ballot_id=ballot.ballot_id)
    if caller != ballot.config.oracle:
        raise UnauthorizedResolver(ballot_id=ballot.ballot_id)
    if not 0 <= outcome < ballot.config.num_options:
        raise InvalidOutcome(f"Outcome {outcome} out of range", ballot_id=ballot.ballot_id)
    ballot.oracle_outcome = outcome


def compute_resolution(ballot: Ballot, caller: Optional[bytes] = None,
                       declared_outcome: Optional[int] = None) -> Resolution:
    """Decide the outcome without touching the ballot"""
    config = ballot.config
    if not config.public_reveal and not ballot.tally_decrypted:
        raise TallyNotDecrypted(ballot_id=ballot.ballot_id)

    if not quorum_met(ballot.total_weight, config.quorum_threshold):
        return Resolution(quorum_met=False, total_weight=ballot.total_weight)

    if config.resolution_mode is ResolutionMode.TALLY_BASED:
        # argmax returns the first maximum, so ties go to the lowest index
        outcome = int(np.argmax(np.array(ballot.option_weights)))
    elif config.resolution_mode is ResolutionMode.AUTHORITY:
        if caller != config.resolver:
            raise UnauthorizedResolver(ballot_id=ballot.ballot_id)
        if declared_outcome is None:
            raise InvalidOutcome("Authority must declare an outcome", ballot_id=ballot.ballot_id)
        outcome = declared_outcome
    else:
        if ballot.oracle_outcome is None:
            raise OracleOutcomeNotSubmitted(ballot_id=ballot.ballot_id)
        outcome = ballot.oracle_outcome

    if not 0 <= outcome < config.num_options:
        raise InvalidOutcome(f"Outcome {outcome} out of range", ballot_id=ballot.ballot_id)

    return Resolution(quorum_met=True, outcome=outcome,
                      winner_weight=ballot.option_weights[outcome],
                      total_weight=ballot.total_weight)


def resolve_ballot(ballot: Ballot, now: int, caller: Optional[bytes] = None,
                   declared_outcome: Optional[int] = None) -> Resolution:
    """Close voting and record the outcome.

    When quorum is missed the ballot stays Closed without an outcome and is
    flagged so it can never be finalized.
    """
    _check_can_resolve(ballot, now)
    close_voting(ballot, now)

    resolution = compute_resolution(ballot, caller, declared_outcome)
    if not resolution.quorum_met:
        ballot.quorum_failed = True
        logger.info(f"Ballot {ballot.ballot_id.hex()[:16]} missed quorum: "
                    f"{ballot.total_weight} < {ballot.config.quorum_threshold}")
        return resolution

    ballot.outcome = resolution.outcome
    ballot.winner_weight = resolution.winner_weight
    ballot.status = BallotStatus.RESOLVED
    logger.info(f"Ballot {ballot.ballot_id.hex()[:16]} resolved: outcome={resolution.outcome}, "
                f"winner weight={resolution.winner_weight}")
    return resolution

# ============================================================================
# CLAIMS AND FINALIZATION
# ============================================================================


def check_claim_window(ballot: Ballot, now: Optional[int] = None):
    """Claims need a resolved spend-to-vote ballot; the deadline is checked when ``now`` is given"""
    if not ballot.is_spend_to_vote:
        raise ClaimsNotAllowed(ballot_id=ballot.ballot_id)
    if ballot.status is BallotStatus.FINALIZED:
        raise BallotAlreadyFinalized(ballot_id=ballot.ballot_id)
    if ballot.status is not BallotStatus.RESOLVED:
        raise BallotNotResolved(ballot_id=ballot.ballot_id)
    if now is not None and ballot.config.claim_deadline and now >= ballot.config.claim_deadline:
        raise ClaimDeadlinePassed(ballot_id=ballot.ballot_id)


def payout_share(ballot: Ballot, weight: int, vote_choice: int) -> int:
    """Part of a position's weight that is paid out: its tally credit on the outcome.

    The winner weight is the outcome's tally, which is the sum of these
    shares over all live positions, so the gross payouts never add up to
    more than the pool. An Approval voter is paid on its split share and a
    Ranked voter only when the outcome is its first preference.
    """
    config = ballot.config
    return tally_credits(config.vote_type, vote_choice, weight, config.num_options)[ballot.outcome]


def expected_payout(ballot: Ballot, weight: int, vote_choice: Optional[int]) -> Tuple[int, int]:
    """Payout of a position; ``vote_choice`` is None when the choice is hidden.

    A hidden choice is priced on the full weight, the most any share can be.
    """
    if vote_choice is None:
        share, winner = weight, True
    else:
        share = payout_share(ballot, weight, vote_choice)
        winner = share > 0 and is_winner(vote_choice, ballot.outcome, ballot.config.vote_type)
    return calculate_payout(share, ballot.pool_balance, ballot.winner_weight,
                            ballot.config.protocol_fee_bps, winner)


def record_claim(ballot: Ballot, gross_payout: int, net_payout: int, now: int):
    check_claim_window(ballot, now)
    if gross_payout > ballot.vault_balance:
        raise InvalidOutcome(
            f"Payout {gross_payout} exceeds vault balance {ballot.vault_balance}",
            ballot_id=ballot.ballot_id)
    ballot.total_distributed += gross_payout
    ballot.fees_collected += gross_payout - net_payout
    logger.info(f"Claim on ballot {ballot.ballot_id.hex()[:16]}: gross={gross_payout}, "
                f"net={net_payout}")


def finalize_ballot(ballot: Ballot, now: int) -> int:
    """Resolved -> Finalized; returns the unclaimed amount swept to the treasury"""
    if ballot.status is BallotStatus.FINALIZED:
        raise BallotAlreadyFinalized(ballot_id=ballot.ballot_id)
    if ballot.status is not BallotStatus.RESOLVED:
        raise BallotNotResolved(ballot_id=ballot.ballot_id)

    unclaimed = 0
    if ballot.is_spend_to_vote:
        if ballot.config.claim_deadline and now < ballot.config.claim_deadline:
            raise ClaimDeadlineNotPassed(ballot_id=ballot.ballot_id)
        unclaimed = ballot.vault_balance
        ballot.total_distributed += unclaimed

    ballot.status = BallotStatus.FINALIZED
    logger.info(f"Ballot {ballot.ballot_id.hex()[:16]} finalized; {unclaimed} swept to treasury")
    return unclaimed
