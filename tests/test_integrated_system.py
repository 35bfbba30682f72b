#!/usr/bin/env python3
"""
Integration Tests for the Verifiable Voting Core
Tests the complete workflow: Ballot Casting -> Tallying -> Audit -> Release
"""

import json

import pytest

from config import SystemConfig
from integrated_voting_system import (
    IntegratedVotingSystem,
    TallyResult,
    VerifiedBallot,
    VotingSystemError,
)
from ledger import StaticEligibilitySource
from tally import TallyErrorCode, TallyStatus
from utils import create_performance_report, create_results_summary, save_results
from zk import ProofErrorCode

ELECTION = 7


def _make_system(**overrides) -> IntegratedVotingSystem:
    config = SystemConfig()
    config.tally_config.precision_threshold = 1
    for key, value in overrides.items():
        setattr(config, key, value)
    return IntegratedVotingSystem(config, eligibility=StaticEligibilitySource(denied=["mallory"]))


def _votes(pattern):
    return [(f"voter_{i:03d}", candidate) for i, candidate in enumerate(pattern)]


class TestSingleVoterWorkflow:
    def test_single_ballot_tallied(self):
        system = _make_system()
        system.open_election(ELECTION, [1])

        ballot = system.cast_ballot("alice", ELECTION, 1)
        assert isinstance(ballot, VerifiedBallot)
        assert ballot.candidate_id == 1
        assert len(ballot.commitment) == 32

        tally = system.compute_tally(ELECTION)
        assert isinstance(tally, TallyResult)
        assert tally.counts == [1]
        assert tally.verified
        assert len(tally.combined_tally) == 32
        assert system.tally_engine.tally_status(ELECTION) == TallyStatus.PUBLISHED

    def test_rejected_ballot_raises(self):
        system = _make_system()
        system.open_election(ELECTION, [1, 2])
        system.cast_ballot("alice", ELECTION, 1)
        with pytest.raises(VotingSystemError) as exc_info:
            system.cast_ballot("alice", ELECTION, 2)
        assert exc_info.value.result.error == ProofErrorCode.VOTER_ALREADY_VOTED
        assert "VOTER_ALREADY_VOTED" in str(exc_info.value)


class TestMultipleVotersWorkflow:
    def test_full_election(self):
        system = _make_system()
        pattern = [1, 2, 3, 2, 1, 2, 2, 3, 1, 2]
        results = system.run_election(ELECTION, [1, 2, 3], _votes(pattern))

        assert results['ballots_cast'] == 10
        assert results['ballots_rejected'] == 0
        assert results['tally'].counts == [3, 5, 2]
        assert results['audit'].final_results == (3, 5, 2)
        assert results['audit'].match_rate == 100
        assert all(results['integrity_checks'].values())

    def test_ineligible_voters_are_counted_as_rejected(self):
        system = _make_system()
        votes = _votes([1, 2]) + [("mallory", 1)]
        results = system.run_election(ELECTION, [1, 2], votes)
        assert results['ballots_rejected'] == 1
        assert results['tally'].counts == [1, 1]

    def test_more_voters_than_audit_sample(self):
        system = _make_system()
        results = system.run_election(ELECTION, [1, 2], _votes([1, 2] * 30))
        assert results['tally'].total_votes == 60
        assert results['audit'].match_rate == 100

    def test_no_valid_ballots(self):
        system = _make_system()
        with pytest.raises(ValueError):
            system.run_election(ELECTION, [1], [("mallory", 1)])


class TestBatchCasting:
    def test_batch_all_admitted(self):
        system = _make_system()
        system.open_election(ELECTION, [1, 2])
        receipts = system.cast_ballot_batch(ELECTION, _votes([1, 2, 2]))
        assert len(receipts) == 3
        assert system.compute_tally(ELECTION).counts == [1, 2]

    def test_batch_rejection_admits_nothing(self):
        system = _make_system()
        system.open_election(ELECTION, [1, 2])
        with pytest.raises(VotingSystemError) as exc_info:
            system.cast_ballot_batch(ELECTION, _votes([1, 2]) + [("mallory", 1)])
        assert exc_info.value.result.error == ProofErrorCode.NOT_ELIGIBLE
        assert exc_info.value.result.value == 2
        assert system.cast_ballots == {}
        assert not system.proof_engine.has_voter_voted("voter_000", ELECTION)


class TestTallyAndAudit:
    def test_tally_requires_threshold(self):
        system = IntegratedVotingSystem(SystemConfig())
        system.open_election(ELECTION, [1, 2])
        system.cast_ballot("alice", ELECTION, 1)
        with pytest.raises(VotingSystemError) as exc_info:
            system.compute_tally(ELECTION)
        assert exc_info.value.result.error == TallyErrorCode.INSUFFICIENT_PROOFS
        assert not system.tally_engine.is_published(ELECTION)

    def test_candidate_without_ballots_blocks_publish(self):
        system = _make_system()
        system.open_election(ELECTION, [1, 2, 3])
        system.cast_ballot("alice", ELECTION, 1)
        system.cast_ballot("bob", ELECTION, 2)
        with pytest.raises(VotingSystemError) as exc_info:
            system.compute_tally(ELECTION)
        assert exc_info.value.result.error == TallyErrorCode.INSUFFICIENT_PROOFS
        assert not system.tally_engine.is_published(ELECTION)
        assert system.tally_engine.get_proof_aggregate(ELECTION, 1).count == 1

    def test_unopened_election(self):
        with pytest.raises(ValueError):
            _make_system().compute_tally(ELECTION)

    def test_dispute_lifecycle(self):
        system = _make_system()
        system.run_election(ELECTION, [1, 2], _votes([1, 2] * 30))
        system.ledger.advance()

        dispute_id = system.raise_dispute("observer", ELECTION, "recount district 4", bytes(32))
        assert dispute_id == 1
        resolved = system.resolve_dispute(ELECTION, dispute_id)
        assert resolved.status.value == "accepted"

    def test_ledger_rollbacks_are_counted(self):
        system = _make_system()
        system.open_election(ELECTION, [1])
        system.cast_ballot("alice", ELECTION, 1)
        with pytest.raises(VotingSystemError):
            system.cast_ballot("alice", ELECTION, 1)
        assert system.ledger.units_rolled_back == 1
        metrics = system.get_system_metrics()
        assert metrics['cast_ballots'] == 1
        assert metrics['performance']['operations']['cast_ballot']['count'] == 2


class TestReporting:
    def test_results_saved(self, tmp_path):
        system = _make_system()
        results = system.run_election(ELECTION, [1, 2, 3], _votes([1, 2, 3, 3]))

        report_path = tmp_path / "report.json"
        save_results(results, report_path)

        saved = json.loads(report_path.read_text())
        assert saved['data']['tally']['counts'] == [1, 1, 2]
        assert saved['data']['audit']['final_results'] == [1, 1, 2]
        summary = (tmp_path / "report_summary.txt").read_text()
        assert "Candidate 3: 2 votes" in summary

    def test_summary_and_performance_report(self):
        system = _make_system()
        results = system.run_election(ELECTION, [1, 2], _votes([1, 2]))
        summary = create_results_summary(results)
        assert "ELECTION TALLY" in summary and "AUDIT" in summary
        report = create_performance_report(system.performance_monitor)
        assert "CAST_BALLOT" in report
