"""
End-to-end voting flows through the client
"""

import asyncio
import dataclasses

import pytest

from voting.client import VotingClient, create_proof_backend, create_state_tree, shield_note
from voting.encrypted_tally import decrypt_option_weights
from voting.errors import (
    BallotNotActive, ClaimDeadlineNotPassed, ClaimDeadlinePassed, InvalidDecryptionKey,
    NotAWinner, NullifierAlreadyExists, StateTreeUnavailable, TallyNotDecrypted,
    TimelockNotExpired, UnauthorizedSubmitter,
)
from voting.models import BallotStatus, RevealMode, VoteBindingMode, VoteType
from voting.phases import Phase
from voting.recovery import reveal_time_locked
from voting.state_tree import InMemoryStateTree, JsonRpcStateTree
from config.config import ProofBackendConfig, StateTreeConfig
from zk.backend import DevelopmentProofBackend, SnarkjsProofBackend
from zk.commitments import (
    ADDRESS_POSITION, ADDRESS_TOKEN_NOTE, ADDRESS_VOTE_COMMITMENT,
    ADDRESS_VOTE_COMMITMENT_NULLIFIER, derive_address, derive_nullifier_key,
    vote_commitment_nullifier,
)
from zk.field import generate_randomness

from helpers import (
    AFTER_DEADLINE, AFTER_END, CLAIM_DEADLINE, END_TIME, UNLOCK_SLOT, VOTING_TIME, attest,
    time_lock_keypair, unshielded_note,
)


def run(coro):
    return asyncio.run(coro)


class TestSnapshotVoting:

    def test_scenario_a_tally_and_outcome(self, client, program, indexer, create_ballot):
        ballot = create_ballot(num_options=4)
        keys = [generate_randomness() for _ in range(3)]
        weights = [10, 30, 5]
        choices = [0, 1, 0]

        async def scenario():
            await asyncio.gather(*[
                client.vote_snapshot(ballot.ballot_id, key, choice,
                                     attest(indexer, key, ballot, weight), VOTING_TIME)
                for key, choice, weight in zip(keys, choices, weights)
            ])

        run(scenario())

        assert ballot.option_weights == [15, 30, 0, 0]
        assert ballot.total_weight == 45
        assert ballot.vote_count == 3
        resolution = program.resolve_ballot(ballot.ballot_id, AFTER_END)
        assert resolution.outcome == 1
        assert ballot.winner_weight == 30
        assert program.finalize_ballot(ballot.ballot_id, AFTER_END) == 0
        assert ballot.status is BallotStatus.FINALIZED

    def test_scenario_c_change_vote(self, client, state_tree, indexer, create_ballot, voter_keys):
        ballot = create_ballot()
        key = voter_keys[0]

        async def scenario():
            record = await client.vote_snapshot(ballot.ballot_id, key, 0,
                                                attest(indexer, key, ballot, 50), VOTING_TIME)
            stale = dataclasses.replace(record, superseded=[])
            await client.change_vote_snapshot(record, key, 2, VOTING_TIME)
            return stale, record

        stale, record = run(scenario())

        assert ballot.option_weights == [0, 0, 50]
        assert ballot.vote_count == 1
        assert record.vote_nullifier == stale.vote_nullifier
        assert record.superseded == [stale.vote_commitment]

        old_nullifier = vote_commitment_nullifier(derive_nullifier_key(key), stale.vote_commitment)
        assert state_tree.contains(derive_address(
            ADDRESS_VOTE_COMMITMENT_NULLIFIER, ballot.ballot_id, old_nullifier))
        assert state_tree.contains(derive_address(
            ADDRESS_VOTE_COMMITMENT, ballot.ballot_id, record.vote_commitment))

    def test_superseded_commitment_cannot_be_changed_again(self, client, indexer, create_ballot,
                                                           voter_keys):
        ballot = create_ballot()
        key = voter_keys[0]

        async def scenario():
            record = await client.vote_snapshot(ballot.ballot_id, key, 0,
                                                attest(indexer, key, ballot, 50), VOTING_TIME)
            stale = dataclasses.replace(record, superseded=[])
            await client.change_vote_snapshot(record, key, 2, VOTING_TIME)
            with pytest.raises(NullifierAlreadyExists) as excinfo:
                await client.change_vote_snapshot(stale, key, 1, VOTING_TIME)
            return excinfo.value

        error = run(scenario())

        assert error.phase == Phase.COMMITMENT_VERIFIED.value
        assert ballot.option_weights == [0, 0, 50]

    def test_double_vote_is_rejected(self, client, program, indexer, create_ballot, voter_keys):
        ballot = create_ballot()
        key = voter_keys[0]

        async def scenario():
            await client.vote_snapshot(ballot.ballot_id, key, 0,
                                       attest(indexer, key, ballot, 10), VOTING_TIME)
            with pytest.raises(NullifierAlreadyExists) as excinfo:
                await client.vote_snapshot(ballot.ballot_id, key, 1,
                                           attest(indexer, key, ballot, 10), VOTING_TIME)
            return excinfo.value

        error = run(scenario())

        assert error.category == "conflict"
        assert not error.retryable
        assert error.ballot_id == ballot.ballot_id
        assert error.phase == Phase.PROOF_VERIFIED.value
        assert ballot.vote_count == 1
        assert ballot.option_weights == [10, 0, 0]
        assert client.abandon(error.operation_id) is Phase.PROOF_VERIFIED
        assert program.pending == {}

    def test_concurrent_double_vote_has_one_winner(self, client, indexer, create_ballot,
                                                   voter_keys):
        ballot = create_ballot()
        key = voter_keys[0]

        async def scenario():
            return await asyncio.gather(*[
                client.vote_snapshot(ballot.ballot_id, key, choice,
                                     attest(indexer, key, ballot, 10), VOTING_TIME)
                for choice in (0, 1)
            ], return_exceptions=True)

        results = run(scenario())

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], NullifierAlreadyExists)
        assert ballot.vote_count == 1
        assert ballot.total_weight == 10

    def test_transient_failure_resumes_from_phase_cursor(self, client, state_tree, indexer,
                                                         create_ballot, voter_keys):
        ballot = create_ballot()
        key = voter_keys[0]
        state_tree.inserts_until_failure = 1

        async def scenario():
            with pytest.raises(StateTreeUnavailable) as excinfo:
                await client.vote_snapshot(ballot.ballot_id, key, 2,
                                           attest(indexer, key, ballot, 10), VOTING_TIME)
            error = excinfo.value
            assert error.retryable
            assert error.phase == Phase.EXECUTED.value
            assert ballot.vote_count == 1
            return error, await client.resume(error.operation_id, VOTING_TIME)

        error, operation = run(scenario())

        assert operation.phase is Phase.CLOSED
        assert ballot.vote_count == 1
        assert ballot.option_weights == [0, 0, 10]
        assert state_tree.contains(operation.addresses.commitment)

    def test_late_execution_can_be_abandoned(self, client, program, indexer, create_ballot,
                                             voter_keys):
        ballot = create_ballot()
        key = voter_keys[0]

        async def scenario():
            with pytest.raises(BallotNotActive) as excinfo:
                await client.vote_snapshot(ballot.ballot_id, key, 0,
                                           attest(indexer, key, ballot, 10), END_TIME)
            return excinfo.value

        error = run(scenario())

        assert error.phase == Phase.NULLIFIER_REGISTERED.value
        assert program.get_operation(error.operation_id).phase is Phase.NULLIFIER_REGISTERED
        assert client.abandon(error.operation_id) is Phase.NULLIFIER_REGISTERED
        assert ballot.total_weight == 0
        assert program.pending == {}

    def test_other_submitters_cannot_take_over(self, client, program, backend, state_tree,
                                               indexer, create_ballot, voter_keys):
        ballot = create_ballot()
        key = voter_keys[0]
        state_tree.inserts_until_failure = 1
        other = VotingClient(program, backend, state_tree, proof_workers=1)

        async def scenario():
            with pytest.raises(StateTreeUnavailable) as excinfo:
                await client.vote_snapshot(ballot.ballot_id, key, 1,
                                           attest(indexer, key, ballot, 10), VOTING_TIME)
            operation_id = excinfo.value.operation_id
            with pytest.raises(UnauthorizedSubmitter):
                await other.resume(operation_id, VOTING_TIME)
            with pytest.raises(UnauthorizedSubmitter):
                other.abandon(operation_id)
            return await client.resume(operation_id, VOTING_TIME)

        try:
            operation = run(scenario())
        finally:
            other.close()

        assert operation.submitter == client.submitter
        assert operation.phase is Phase.CLOSED
        assert ballot.option_weights == [0, 10, 0]


class TestSpendToVote:

    def test_scenario_b_claim_payout(self, client, program, state_tree, create_ballot,
                                     voter_keys):
        ballot = create_ballot(binding=VoteBindingMode.SPEND_TO_VOTE, protocol_fee_bps=100)
        amounts = [100_000, 300_000, 200_000, 400_000]
        choices = [0, 0, 1, 2]
        notes = [shield_note(state_tree, unshielded_note(key, amount))
                 for key, amount in zip(voter_keys, amounts)]

        async def scenario():
            positions = await asyncio.gather(*[
                client.vote_spend(ballot.ballot_id, key, note, choice, VOTING_TIME)
                for key, note, choice in zip(voter_keys, notes, choices)
            ])
            resolution = program.resolve_ballot(ballot.ballot_id, AFTER_END)
            payout = await client.claim(positions[0], voter_keys[0], AFTER_END)
            with pytest.raises(NotAWinner):
                await client.claim(positions[2], voter_keys[2], AFTER_END)
            return positions, resolution, payout

        positions, resolution, payout = run(scenario())

        # 400,000 vs 200,000 vs 400,000: the tie goes to option 0
        assert ballot.option_weights == [400_000, 200_000, 400_000]
        assert ballot.pool_balance == 1_000_000
        assert resolution.outcome == 0
        assert ballot.winner_weight == 400_000

        assert payout.amount == 247_500
        assert ballot.total_distributed == 250_000
        assert ballot.fees_collected == 2_500
        assert positions[0].nullifier is not None
        assert state_tree.contains(derive_address(ADDRESS_TOKEN_NOTE, ballot.config.token_mint,
                                                  payout.commitment()))

        with pytest.raises(ClaimDeadlineNotPassed):
            program.finalize_ballot(ballot.ballot_id, AFTER_END)
        assert program.finalize_ballot(ballot.ballot_id, AFTER_DEADLINE) == 750_000
        assert ballot.vault_balance == 0

    def test_approval_claims_stay_within_the_pool(self, client, program, state_tree,
                                                  create_ballot, voter_keys):
        ballot = create_ballot(binding=VoteBindingMode.SPEND_TO_VOTE,
                               vote_type=VoteType.APPROVAL, num_options=2)
        keys = voter_keys[:2]
        notes = [shield_note(state_tree, unshielded_note(key, 100)) for key in keys]

        async def scenario():
            positions = [
                await client.vote_spend(ballot.ballot_id, key, note, choice, VOTING_TIME)
                for key, note, choice in zip(keys, notes, (0b11, 0b01))
            ]
            program.resolve_ballot(ballot.ballot_id, AFTER_END)
            return [await client.claim(position, key, AFTER_END)
                    for position, key in zip(positions, keys)]

        payouts = run(scenario())

        assert ballot.winner_weight == 150
        assert [p.amount for p in payouts] == [66, 133]
        assert ballot.total_distributed == 199
        assert program.finalize_ballot(ballot.ballot_id, AFTER_DEADLINE) == 1

    def test_ranked_claims_stay_within_the_pool(self, client, program, state_tree,
                                                create_ballot, voter_keys):
        ballot = create_ballot(binding=VoteBindingMode.SPEND_TO_VOTE,
                               vote_type=VoteType.RANKED)
        keys = voter_keys[:2]
        notes = [shield_note(state_tree, unshielded_note(key, amount))
                 for key, amount in zip(keys, (300, 200))]

        async def scenario():
            first = await client.vote_spend(ballot.ballot_id, keys[0], notes[0], 0x210,
                                            VOTING_TIME)
            second = await client.vote_spend(ballot.ballot_id, keys[1], notes[1], 0x021,
                                             VOTING_TIME)
            program.resolve_ballot(ballot.ballot_id, AFTER_END)
            payout = await client.claim(first, keys[0], AFTER_END)
            # ranks the outcome last, so it holds no credit on it
            with pytest.raises(NotAWinner):
                await client.claim(second, keys[1], AFTER_END)
            return payout

        payout = run(scenario())

        assert ballot.outcome == 0
        assert payout.amount == 500
        assert ballot.vault_balance == 0

    def test_claims_are_single_use_and_deadline_bound(self, client, program, state_tree,
                                                      create_ballot, voter_keys):
        ballot = create_ballot(binding=VoteBindingMode.SPEND_TO_VOTE)
        note = shield_note(state_tree, unshielded_note(voter_keys[0], 500))

        async def scenario():
            position = await client.vote_spend(ballot.ballot_id, voter_keys[0], note, 1,
                                               VOTING_TIME)
            program.resolve_ballot(ballot.ballot_id, AFTER_END)
            claimed = dataclasses.replace(position)
            await client.claim(position, voter_keys[0], AFTER_END)
            with pytest.raises(NullifierAlreadyExists):
                await client.claim(claimed, voter_keys[0], AFTER_END)
            with pytest.raises(ClaimDeadlinePassed):
                await client.claim(claimed, voter_keys[0], CLAIM_DEADLINE)

        run(scenario())
        assert ballot.total_distributed == 500

    def test_change_and_close_position(self, client, state_tree, create_ballot, voter_keys):
        ballot = create_ballot(binding=VoteBindingMode.SPEND_TO_VOTE)
        notes = [shield_note(state_tree, unshielded_note(key, amount))
                 for key, amount in zip(voter_keys[:2], (70, 30))]

        async def scenario():
            first, second = await asyncio.gather(*[
                client.vote_spend(ballot.ballot_id, key, note, 0, VOTING_TIME)
                for key, note in zip(voter_keys, notes)
            ])
            changed = await client.change_vote_spend(first, voter_keys[0], 2, VOTING_TIME)
            refund = await client.close_position(second, voter_keys[1], VOTING_TIME)
            with pytest.raises(NullifierAlreadyExists):
                await client.change_vote_spend(dataclasses.replace(first, nullifier=None),
                                               voter_keys[0], 1, VOTING_TIME)
            return first, changed, second, refund

        first, changed, second, refund = run(scenario())

        assert not first.is_live and changed.is_live and not second.is_live
        assert changed.amount == 70 and changed.vote_choice == 2
        assert state_tree.contains(derive_address(ADDRESS_POSITION, ballot.ballot_id,
                                                  changed.commitment))
        assert ballot.option_weights == [0, 0, 70]
        assert ballot.vote_count == 1
        assert ballot.pool_balance == 70
        assert refund.amount == 30
        assert state_tree.contains(derive_address(ADDRESS_TOKEN_NOTE, ballot.config.token_mint,
                                                  refund.commitment()))

    def test_spent_note_cannot_vote_twice(self, client, state_tree, create_ballot, voter_keys):
        ballot = create_ballot(binding=VoteBindingMode.SPEND_TO_VOTE)
        other = create_ballot(binding=VoteBindingMode.SPEND_TO_VOTE)
        note = shield_note(state_tree, unshielded_note(voter_keys[0], 100))

        async def scenario():
            await client.vote_spend(ballot.ballot_id, voter_keys[0], note, 0, VOTING_TIME)
            with pytest.raises(NullifierAlreadyExists):
                await client.vote_spend(other.ballot_id, voter_keys[0], note, 0, VOTING_TIME)

        run(scenario())
        assert other.vote_count == 0


class TestHiddenReveal:

    def test_time_locked_ballot(self, client, program, state_tree, indexer, create_ballot,
                                voter_keys):
        ballot = create_ballot(reveal=RevealMode.TIME_LOCKED)
        private_key, _ = time_lock_keypair()
        keys = voter_keys[:3]

        async def scenario():
            records = await asyncio.gather(*[
                client.vote_snapshot(ballot.ballot_id, key, choice,
                                     attest(indexer, key, ballot, amount), VOTING_TIME)
                for key, choice, amount in zip(keys, (0, 1, 1), (10, 20, 30))
            ])
            await client.change_vote_snapshot(records[0], keys[0], 2, VOTING_TIME)
            return records

        records = run(scenario())

        assert ballot.option_weights == [0, 0, 0]
        assert ballot.total_weight == 60
        with pytest.raises(TallyNotDecrypted):
            program.resolve_ballot(ballot.ballot_id, AFTER_END)

        weights = decrypt_option_weights(private_key, ballot.encrypted_tally, ballot.total_weight)
        assert weights == [0, 50, 10]
        with pytest.raises(TimelockNotExpired):
            program.decrypt_tally(ballot.ballot_id, private_key, weights, AFTER_END,
                                  UNLOCK_SLOT - 1)
        with pytest.raises(InvalidDecryptionKey):
            program.decrypt_tally(ballot.ballot_id, private_key + 1, weights, AFTER_END,
                                  UNLOCK_SLOT)
        with pytest.raises(InvalidDecryptionKey):
            program.decrypt_tally(ballot.ballot_id, private_key, [0, 60, 0], AFTER_END,
                                  UNLOCK_SLOT)

        program.decrypt_tally(ballot.ballot_id, private_key, weights, AFTER_END, UNLOCK_SLOT)
        assert program.resolve_ballot(ballot.ballot_id, AFTER_END).outcome == 1

        addresses = [derive_address(ADDRESS_VOTE_COMMITMENT, ballot.ballot_id,
                                    record.vote_commitment) for record in records]
        revealed = reveal_time_locked(state_tree, ballot, addresses, private_key, UNLOCK_SLOT)
        assert [revealed[a].vote_choice for a in addresses] == [2, 1, 1]
        with pytest.raises(TimelockNotExpired):
            reveal_time_locked(state_tree, ballot, addresses, private_key, UNLOCK_SLOT - 1)

    def test_private_spend_to_vote_close(self, client, state_tree, create_ballot, voter_keys):
        ballot = create_ballot(binding=VoteBindingMode.SPEND_TO_VOTE,
                               reveal=RevealMode.PERMANENT_PRIVATE)
        private_key, _ = time_lock_keypair()
        notes = [shield_note(state_tree, unshielded_note(key, amount))
                 for key, amount in zip(voter_keys[:2], (40, 25))]

        async def scenario():
            positions = await asyncio.gather(*[
                client.vote_spend(ballot.ballot_id, key, note, choice, VOTING_TIME)
                for key, note, choice in zip(voter_keys, notes, (1, 0))
            ])
            await client.close_position(positions[1], voter_keys[1], VOTING_TIME)

        run(scenario())

        assert ballot.total_weight == 40
        assert ballot.pool_balance == 40
        assert decrypt_option_weights(private_key, ballot.encrypted_tally, 40) == [0, 40, 0]


def test_factories_follow_config():
    assert isinstance(create_proof_backend(ProofBackendConfig()), DevelopmentProofBackend)
    assert isinstance(create_proof_backend(ProofBackendConfig(backend="snarkjs")),
                      SnarkjsProofBackend)
    assert isinstance(create_state_tree(StateTreeConfig(depth=4)), InMemoryStateTree)
    assert isinstance(create_state_tree(StateTreeConfig(backend="rpc")), JsonRpcStateTree)
