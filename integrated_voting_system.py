#!/usr/bin/env python3
"""
Integrated Verifiable Voting Core
=================================
Wires proof verification, tally aggregation and result audit over one
shared ledger and drives a complete election:

    cast ballots -> aggregate verified counts -> publish -> audit -> release
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from audit import AuditEngine, ElectionAuditRecord
from config import SystemConfig
from ledger import (
    ElectionSource,
    EligibilitySource,
    HeightWindowElectionSource,
    Ledger,
    OperationResult,
    StaticEligibilitySource,
)
from tally import HomomorphicAccumulator, TallyAggregationEngine
from utils import PerformanceMonitor, generate_secure_random
from zk import (
    ProofEntry,
    ProofVerificationEngine,
    ProofVerifier,
    VoteProof,
    make_placeholder_proof,
)

logger = logging.getLogger(__name__)

# ============================================================================
# ERRORS AND RECORDS
# ============================================================================


class VotingSystemError(Exception):
    """A core operation rejected a step of the election workflow"""

    def __init__(self, operation: str, result: OperationResult):
        self.operation = operation
        self.result = result
        code = getattr(result.error, 'name', result.error)
        super().__init__(f"{operation} failed: {code} - {result.message}")


@dataclass
class VerifiedBallot:
    """Receipt for an admitted ballot"""
    voter_id: str
    election_id: int
    candidate_id: int
    commitment: bytes
    fingerprint: bytes
    height: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class TallyResult:
    """Published tally with its integrity check"""
    election_id: int
    candidates: List[int]
    counts: List[int]
    combined_tally: bytes
    total_votes: int
    verified: bool
    height: int


class VerifiedCountOracle:
    """Aggregate verification backed by the proof engine's counters"""

    def __init__(self, proof_engine: ProofVerificationEngine):
        self.proof_engine = proof_engine

    def verify(self, election_id: int, candidate_id: int) -> bool:
        return self.proof_engine.candidate_count(election_id, candidate_id) > 0

# ============================================================================
# INTEGRATED VOTING SYSTEM
# ============================================================================


class IntegratedVotingSystem:
    """
    Complete voting core combining the three engines:
    1. Proof verification: one admitted proof per voter per election
    2. Tally aggregation: homomorphic accumulators, one-shot publish
    3. Audit: fingerprint replay, disputes, final result release
    """

    def __init__(self, config: Optional[SystemConfig] = None,
                 elections: Optional[ElectionSource] = None,
                 eligibility: Optional[EligibilitySource] = None,
                 verifier: Optional[ProofVerifier] = None,
                 accumulator: Optional[HomomorphicAccumulator] = None,
                 start_height: int = 0):
        self.config = config or SystemConfig()
        self.ledger = Ledger(start_height)
        self.elections = elections or HeightWindowElectionSource(self.ledger)
        self.eligibility = eligibility or StaticEligibilitySource()

        logger.info("Initializing integrated voting core...")

        self.proof_engine = ProofVerificationEngine(
            self.ledger, self.elections, self.eligibility,
            verifier=verifier, config=self.config.proof_config)
        self.tally_engine = TallyAggregationEngine(
            self.ledger, self.elections, VerifiedCountOracle(self.proof_engine),
            accumulator=accumulator, config=self.config.tally_config)
        self.audit_engine = AuditEngine(
            self.ledger, self.tally_engine, self.proof_engine, self.eligibility,
            config=self.config.audit_config)

        authority = self.config.authority
        self._expect("configure_authority", self.proof_engine.configure_authority(authority))
        self._expect("set_admin", self.tally_engine.set_admin(authority))
        self._expect("set_audit_admin", self.audit_engine.set_audit_admin(authority))

        self.performance_monitor = PerformanceMonitor()
        self.candidates: Dict[int, List[int]] = {}
        self.cast_ballots: Dict[Tuple[int, str], VerifiedBallot] = {}

        logger.info(f"Integrated voting core initialized (authority: {authority})")

    @property
    def authority(self) -> str:
        return self.config.authority

    @staticmethod
    def _expect(operation: str, result: OperationResult) -> Any:
        if not result.ok:
            raise VotingSystemError(operation, result)
        return result.value

    # ------------------------------------------------------------------
    # Election setup
    # ------------------------------------------------------------------

    def open_election(self, election_id: int, candidates: Sequence[int],
                      duration_blocks: Optional[int] = None):
        """Open a voting window at the current height and initialize its tally"""
        duration = duration_blocks or self.config.election_duration_blocks
        if isinstance(self.elections, HeightWindowElectionSource):
            start = self.ledger.height
            self.elections.open_election(election_id, start, start + duration)

        self._expect("initialize_election_tally", self.tally_engine.initialize_election_tally(
            self.authority, election_id, list(candidates)))
        self.candidates[election_id] = list(candidates)
        logger.info(f"Election {election_id} opened with candidates {list(candidates)}")

    # ------------------------------------------------------------------
    # Ballots
    # ------------------------------------------------------------------

    def _build_proof(self, candidate_id: int, issued_at: Optional[int]) -> VoteProof:
        return VoteProof(
            claimed_candidate=candidate_id,
            proof_bytes=make_placeholder_proof(candidate_id, generate_secure_random(31)),
            issued_at=issued_at
        )

    def cast_ballot(self, voter_id: str, election_id: int, candidate_id: int,
                    commitment: Optional[bytes] = None,
                    issued_at: Optional[int] = None) -> VerifiedBallot:
        """Prove and submit one ballot; raises VotingSystemError when rejected"""
        commitment = commitment or generate_secure_random(self.config.proof_config.commitment_length)

        with self.performance_monitor.start_operation("cast_ballot"):
            result = self.proof_engine.verify_vote_proof(
                voter_id, election_id, self._build_proof(candidate_id, issued_at), commitment)
        admission = self._expect("verify_vote_proof", result)

        ballot = VerifiedBallot(
            voter_id=voter_id,
            election_id=election_id,
            candidate_id=admission.candidate,
            commitment=commitment,
            fingerprint=admission.fingerprint,
            height=admission.height
        )
        self.cast_ballots[(election_id, voter_id)] = ballot
        return ballot

    def cast_ballot_batch(self, election_id: int,
                          ballots: Sequence[Tuple[str, int]]) -> List[VerifiedBallot]:
        """Submit (voter, candidate) pairs as one all-or-nothing batch"""
        entries = [
            ProofEntry(
                voter=voter_id,
                election_id=election_id,
                proof=self._build_proof(candidate_id, None),
                commitment=generate_secure_random(self.config.proof_config.commitment_length)
            )
            for voter_id, candidate_id in ballots
        ]

        with self.performance_monitor.track("cast_ballot_batch", size=len(entries)):
            result = self.proof_engine.batch_verify_proofs(entries)
        admissions = self._expect("batch_verify_proofs", result)

        receipts = []
        for entry, admission in zip(entries, admissions):
            ballot = VerifiedBallot(
                voter_id=entry.voter,
                election_id=election_id,
                candidate_id=admission.candidate,
                commitment=entry.commitment,
                fingerprint=admission.fingerprint,
                height=admission.height
            )
            self.cast_ballots[(election_id, entry.voter)] = ballot
            receipts.append(ballot)
        return receipts

    # ------------------------------------------------------------------
    # Tally
    # ------------------------------------------------------------------

    def compute_tally(self, election_id: int) -> TallyResult:
        """Aggregate newly verified counts, publish, then check integrity.

        Publishing needs a nonzero aggregate for every configured candidate,
        so a candidate without any verified ballot makes this raise
        VotingSystemError with INSUFFICIENT_PROOFS and leaves the tally
        unpublished.
        """
        candidates = self.candidates.get(election_id)
        if candidates is None:
            raise ValueError(f"Election {election_id} was not opened")

        with self.performance_monitor.start_operation("compute_tally"):
            for candidate_id in candidates:
                verified = self.proof_engine.candidate_count(election_id, candidate_id)
                aggregate = self.tally_engine.get_proof_aggregate(election_id, candidate_id)
                pending = verified - (aggregate.count if aggregate else 0)
                if pending > 0:
                    self._expect("aggregate_candidate_proofs",
                                 self.tally_engine.aggregate_candidate_proofs(
                                     self.authority, election_id, candidate_id, pending))

            combined = self._expect("publish_encrypted_tally",
                                    self.tally_engine.publish_encrypted_tally(self.authority, election_id))
            integrity = self.tally_engine.validate_tally_integrity(self.authority, election_id)

        counts = self.tally_engine.published_counts(election_id)
        result = TallyResult(
            election_id=election_id,
            candidates=list(candidates),
            counts=counts,
            combined_tally=combined,
            total_votes=sum(counts),
            verified=integrity.ok,
            height=self.ledger.height
        )
        logger.info(f"Tally for election {election_id}: {counts}")
        return result

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def audit_election(self, election_id: int,
                       fingerprints: Optional[Sequence[bytes]] = None) -> ElectionAuditRecord:
        """Replay a sample of fingerprints against the published tally"""
        if fingerprints is None:
            fingerprints = [ballot.fingerprint for (election, _), ballot in self.cast_ballots.items()
                            if election == election_id]
            fingerprints = fingerprints[:self.config.audit_config.max_fingerprints]

        with self.performance_monitor.track("audit_election", sample=len(fingerprints)):
            result = self.audit_engine.perform_audit(self.authority, election_id, list(fingerprints))
        return self._expect("perform_audit", result)

    def release_results(self, election_id: int,
                        results: Optional[Sequence[int]] = None) -> ElectionAuditRecord:
        if results is None:
            results = self.tally_engine.published_counts(election_id)
        return self._expect("release_final_results", self.audit_engine.release_final_results(
            self.authority, election_id, list(results)))

    def raise_dispute(self, disputer: str, election_id: int, reason: str, evidence: bytes) -> int:
        return self._expect("raise_dispute",
                            self.audit_engine.raise_dispute(disputer, election_id, reason, evidence))

    def resolve_dispute(self, election_id: int, dispute_id: int):
        return self._expect("resolve_dispute", self.audit_engine.resolve_dispute(
            self.authority, election_id, dispute_id, "accepted"))

    # ------------------------------------------------------------------
    # Full election
    # ------------------------------------------------------------------

    def run_election(self, election_id: int, candidates: Sequence[int],
                     votes: Sequence[Tuple[str, int]]) -> Dict[str, Any]:
        """Open, vote, tally, audit and release; returns a results report"""
        logger.info(f"Starting election {election_id} with {len(votes)} voters")
        election_start = time.time()

        self.open_election(election_id, candidates)

        rejected = 0
        for voter_id, candidate_id in votes:
            try:
                self.cast_ballot(voter_id, election_id, candidate_id)
            except VotingSystemError as e:
                logger.error(f"Ballot from {voter_id} rejected: {e}")
                rejected += 1

        cast = len(votes) - rejected
        if cast == 0:
            raise ValueError("No valid ballots to tally")

        tally = self.compute_tally(election_id)
        self.ledger.advance()
        audit = self.audit_election(election_id)
        released = self.release_results(election_id)

        election_time = time.time() - election_start
        results = {
            'election_id': election_id,
            'ballots_cast': cast,
            'ballots_rejected': rejected,
            'tally': tally,
            'audit': released,
            'integrity_checks': self._perform_integrity_checks(election_id, tally, audit),
            'performance_metrics': {
                'total_election_time': election_time,
                'throughput_ballots_per_second': cast / election_time if election_time > 0 else 0.0,
                'ledger_height': self.ledger.height,
                'units_committed': self.ledger.units_committed,
                'units_rolled_back': self.ledger.units_rolled_back
            }
        }

        logger.info(f"Election {election_id} completed in {election_time:.3f}s")
        return results

    def _perform_integrity_checks(self, election_id: int, tally: TallyResult,
                                  audit: ElectionAuditRecord) -> Dict[str, bool]:
        checks = {}

        candidates = self.candidates[election_id]
        counters = [entry.count for entry in self.proof_engine.get_election_tally(election_id, candidates)]
        checks['counters_match_published_tally'] = counters == tally.counts
        checks['counters_match_verified_total'] = (
            sum(counters) == self.proof_engine.get_total_verified_for_election(election_id))

        expected = {candidate: 0 for candidate in candidates}
        for (election, _), ballot in self.cast_ballots.items():
            if election == election_id and ballot.candidate_id in expected:
                expected[ballot.candidate_id] += 1
        checks['tally_matches_receipts'] = [expected[c] for c in candidates] == tally.counts

        checks['tally_integrity_validated'] = tally.verified
        checks['audit_match_rate_sufficient'] = (
            audit.match_rate >= self.config.audit_config.min_match_rate)
        checks['all_checks_passed'] = all(checks.values())
        return checks

    def get_system_metrics(self) -> Dict[str, Any]:
        return {
            'ledger_height': self.ledger.height,
            'elections': sorted(self.candidates),
            'cast_ballots': len(self.cast_ballots),
            'units_committed': self.ledger.units_committed,
            'units_rolled_back': self.ledger.units_rolled_back,
            'performance': self.performance_monitor.get_summary()
        }

# ============================================================================
# DEMONSTRATION
# ============================================================================


def demonstrate_integrated_system():
    """Run a small election end to end"""
    print("\n" + "=" * 80)
    print("INTEGRATED VERIFIABLE VOTING CORE DEMONSTRATION")
    print("=" * 80 + "\n")

    config = SystemConfig()
    config.tally_config.precision_threshold = 1
    system = IntegratedVotingSystem(config)

    votes = [(f"voter_{i:03d}", [1, 2, 3, 2, 1][i]) for i in range(5)]
    results = system.run_election(1, [1, 2, 3], votes)

    tally = results['tally']
    print(f"Final Tally: {tally.counts}")
    for candidate_id, count in zip(tally.candidates, tally.counts):
        print(f"  Candidate {candidate_id}: {count} votes")
    print(f"Combined tally: {tally.combined_tally.hex()}")
    print(f"Audit match rate: {results['audit'].match_rate}%")

    print("\nIntegrity Checks:")
    for check, passed in results['integrity_checks'].items():
        print(f"  {check}: {'PASSED' if passed else 'FAILED'}")
    print("\n" + "=" * 80 + "\n")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    demonstrate_integrated_system()
