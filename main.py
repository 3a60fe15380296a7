import argparse
import asyncio
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, List

from config.config import SystemConfig, load_config
from utils.utils import PerformanceMonitor, create_performance_report, save_results, setup_logging
from voting.client import VotingClient, create_proof_backend, create_state_tree, shield_note
from voting.encrypted_tally import decrypt_option_weights
from voting.errors import NotAWinner, QuorumNotMet
from voting.models import (
    BallotConfig, ResolutionMode, RevealMode, VoteBindingMode, VoteType,
)
from voting.program import BallotProgram
from voting.resolution import expected_payout
from zk.attestation import AttestationSigner
from zk.babyjubjub import generate_keypair, spending_key_pubkey
from zk.circuit_inputs import TokenNote
from zk.field import generate_randomness

logger = logging.getLogger(__name__)

# Logical clock for the demonstration
START_TIME = 1_000
VOTING_TIME = 1_500
END_TIME = 2_000
AFTER_END = 2_500
SNAPSHOT_SLOT = 42


class BallotDemo:
    """Runs one ballot end to end against the configured collaborators"""

    def __init__(self, config: SystemConfig):
        self.config = config
        self.voting = config.voting_config
        self.monitor = PerformanceMonitor()
        state_tree = create_state_tree(config.tree_config)
        backend = create_proof_backend(config.proof_config)
        self.program = BallotProgram(backend, state_tree)
        self.client = VotingClient(self.program, backend, state_tree,
                                   monitor=self.monitor,
                                   proof_workers=self.voting.proof_workers)
        self.token_mint = os.urandom(32)
        self.results: Dict[str, Any] = {'claims': []}

    def _voter_keys(self) -> List[bytes]:
        return [generate_randomness() for _ in range(self.voting.num_voters)]

    def _ballot_summary(self, ballot_id: bytes) -> Dict[str, Any]:
        ballot = self.program.get_ballot(ballot_id)
        return {
            'ballot_id': ballot_id,
            'status': ballot.status.value,
            'vote_count': ballot.vote_count,
            'total_weight': ballot.total_weight,
            'option_weights': list(ballot.option_weights),
            'outcome': ballot.outcome,
            'winner_weight': ballot.winner_weight,
            'pool_balance': ballot.pool_balance,
            'total_distributed': ballot.total_distributed,
            'fees_collected': ballot.fees_collected,
        }

    async def run_spend_to_vote(self) -> bytes:
        """Public spend-to-vote ballot: lock, change, close, resolve, claim, finalize"""
        ballot_id = os.urandom(32)
        self.program.create_ballot(ballot_id, BallotConfig(
            binding_mode=VoteBindingMode.SPEND_TO_VOTE,
            reveal_mode=RevealMode.PUBLIC,
            vote_type=VoteType.SINGLE,
            resolution_mode=ResolutionMode.TALLY_BASED,
            num_options=self.voting.num_options,
            start_time=START_TIME,
            end_time=END_TIME,
            token_mint=self.token_mint,
            quorum_threshold=self.voting.quorum_threshold,
            protocol_fee_bps=self.voting.protocol_fee_bps,
            claim_deadline=END_TIME + self.voting.claim_period,
        ), now=START_TIME)

        keys = self._voter_keys()
        notes = [shield_note(self.client.state_tree, TokenNote(
            stealth_pubkey_x=spending_key_pubkey(key), token_mint=self.token_mint,
            amount=100 * (i + 1), randomness=generate_randomness(), leaf_index=0))
            for i, key in enumerate(keys)]

        positions = await asyncio.gather(*[
            self.client.vote_spend(ballot_id, key, note, i % self.voting.num_options, VOTING_TIME)
            for i, (key, note) in enumerate(zip(keys, notes))
        ])
        logger.info(f"{len(positions)} positions locked")

        positions[0] = await self.client.change_vote_spend(
            positions[0], keys[0], (positions[0].vote_choice + 1) % self.voting.num_options,
            VOTING_TIME)
        if len(positions) > 2:
            await self.client.close_position(positions[-1], keys[-1], VOTING_TIME)

        self.program.resolve_ballot(ballot_id, AFTER_END)
        for position, key in zip(positions, keys):
            if not position.is_live:
                continue
            gross, _ = expected_payout(self.program.get_ballot(ballot_id), position.weight,
                                       position.vote_choice)
            try:
                payout = await self.client.claim(position, key, AFTER_END)
            except NotAWinner:
                continue
            self.results['claims'].append({'gross_payout': gross,
                                           'net_payout': payout.amount})

        self.program.finalize_ballot(ballot_id, END_TIME + self.voting.claim_period)
        return ballot_id

    async def run_snapshot(self, reveal_mode: RevealMode) -> bytes:
        """Snapshot ballot with attested balances; hidden modes decrypt the tally first"""
        indexer = AttestationSigner(generate_keypair()[0])
        time_lock_key, time_lock_pubkey = generate_keypair()
        hidden = reveal_mode is not RevealMode.PUBLIC

        ballot_id = os.urandom(32)
        self.program.create_ballot(ballot_id, BallotConfig(
            binding_mode=VoteBindingMode.SNAPSHOT,
            reveal_mode=reveal_mode,
            vote_type=VoteType.SINGLE,
            resolution_mode=ResolutionMode.TALLY_BASED,
            num_options=self.voting.num_options,
            start_time=START_TIME,
            end_time=END_TIME,
            token_mint=self.token_mint,
            quorum_threshold=self.voting.quorum_threshold,
            snapshot_slot=SNAPSHOT_SLOT,
            indexer_pubkey=indexer.public_key,
            time_lock_pubkey=time_lock_pubkey if hidden else None,
            unlock_slot=SNAPSHOT_SLOT + 1 if hidden else 0,
        ), now=START_TIME)

        keys = self._voter_keys()
        records = await asyncio.gather(*[
            self.client.vote_snapshot(
                ballot_id, key, i % self.voting.num_options,
                indexer.attest(spending_key_pubkey(key), ballot_id, self.token_mint,
                               50 * (i + 1), SNAPSHOT_SLOT),
                VOTING_TIME)
            for i, key in enumerate(keys)
        ])
        await self.client.change_vote_snapshot(records[0], keys[0], 1, VOTING_TIME)

        ballot = self.program.get_ballot(ballot_id)
        if hidden:
            weights = decrypt_option_weights(time_lock_key, ballot.encrypted_tally,
                                             ballot.total_weight)
            self.program.decrypt_tally(ballot_id, time_lock_key, weights, AFTER_END,
                                       SNAPSHOT_SLOT + 1)
        self.program.resolve_ballot(ballot_id, AFTER_END)
        self.program.finalize_ballot(ballot_id, AFTER_END)
        return ballot_id

    async def run(self, scenario: str) -> Dict[str, Any]:
        start = time.time()
        try:
            if scenario == 'spend':
                ballot_id = await self.run_spend_to_vote()
            elif scenario == 'timelocked':
                ballot_id = await self.run_snapshot(RevealMode.TIME_LOCKED)
            else:
                ballot_id = await self.run_snapshot(RevealMode.PUBLIC)
        finally:
            self.client.close()

        self.results['ballot'] = self._ballot_summary(ballot_id)
        self.results['performance_metrics'] = {
            'total_time': time.time() - start,
            'proofs_generated': self.monitor.get_summary()['total_operations'],
        }
        return self.results


async def run_demo(config: SystemConfig, scenario: str) -> bool:
    print("=" * 80)
    print("CONFIDENTIAL BALLOT PROTOCOL - DEMONSTRATION")
    print(f"   Scenario: {scenario}, proof backend: {config.proof_config.backend}, "
          f"state tree: {config.tree_config.backend}")
    print("=" * 80)

    demo = BallotDemo(config)
    try:
        results = await demo.run(scenario)
    except QuorumNotMet as e:
        print(f"\nBallot missed quorum: {e}")
        return True

    ballot = results['ballot']
    print("\nFinal Tally:")
    for i, weight in enumerate(ballot['option_weights']):
        print(f"  Option {i}: {weight} weight")
    print(f"  Outcome: {ballot['outcome']} (status {ballot['status']})")
    for claim in results['claims']:
        print(f"  Claim paid {claim['net_payout']}")

    config.ensure_directories()
    report_path = config.results_dir / f"{scenario}_ballot_report.json"
    save_results(results, report_path)

    if config.enable_benchmarking:
        perf_path = config.results_dir / "performance_report.txt"
        with open(perf_path, "w") as f:
            f.write(create_performance_report(demo.monitor))
        print(f"\nPerformance report: {perf_path}")

    print(f"Full results saved to: {report_path}")
    return True


def main():
    parser = argparse.ArgumentParser(description='Confidential Ballot Protocol')
    parser.add_argument('--config', type=str, default='config.yaml', help='Config file path')
    parser.add_argument('--scenario', choices=['spend', 'snapshot', 'timelocked'],
                        default='spend')
    parser.add_argument('--voters', type=int, default=None, help='Number of voters')

    args = parser.parse_args()

    config = load_config(Path(args.config))
    if args.voters is not None:
        config.voting_config.num_voters = args.voters
    setup_logging(config.log_level, config.log_dir / "ballot_demo.log")

    success = asyncio.run(run_demo(config, args.scenario))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
