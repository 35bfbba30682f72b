"""Shared fixtures: a ledger, fake oracles and the three engines."""

from typing import Dict, List, Set, Tuple

import pytest

from audit import AuditEngine
from config import AuditConfig, ProofVerifierConfig, TallyConfig
from ledger import HeightWindowElectionSource, Ledger, StaticEligibilitySource
from tally import TallyAggregationEngine
from zk import ProofVerificationEngine

AUTHORITY = "authority"
ELECTION = 1


class FakeAggregateVerifier:
    def __init__(self, result: bool = True):
        self.result = result
        self.calls: List[Tuple[int, int]] = []

    def verify(self, election_id: int, candidate_id: int) -> bool:
        self.calls.append((election_id, candidate_id))
        return self.result


class FakeTallySource:
    def __init__(self):
        self.published: Dict[int, List[int]] = {}

    def publish(self, election_id: int, counts: List[int]):
        self.published[election_id] = list(counts)

    def is_published(self, election_id: int) -> bool:
        return election_id in self.published

    def published_counts(self, election_id: int) -> List[int]:
        return list(self.published.get(election_id, []))


class FakeProofLookup:
    def __init__(self):
        self.known: Set[Tuple[int, bytes]] = set()

    def add(self, election_id: int, fingerprint: bytes):
        self.known.add((election_id, fingerprint))

    def replay(self, election_id: int, fingerprint: bytes) -> bool:
        return (election_id, fingerprint) in self.known


@pytest.fixture
def ledger():
    return Ledger()


@pytest.fixture
def elections(ledger):
    source = HeightWindowElectionSource(ledger)
    source.open_election(ELECTION, 0, 100)
    return source


@pytest.fixture
def eligibility():
    return StaticEligibilitySource(denied=["mallory"])


@pytest.fixture
def proof_engine(ledger, elections, eligibility):
    engine = ProofVerificationEngine(ledger, elections, eligibility, config=ProofVerifierConfig())
    assert engine.configure_authority(AUTHORITY).ok
    return engine


@pytest.fixture
def aggregate_verifier():
    return FakeAggregateVerifier()


@pytest.fixture
def tally_engine(ledger, elections, aggregate_verifier):
    engine = TallyAggregationEngine(ledger, elections, aggregate_verifier, config=TallyConfig())
    assert engine.set_admin(AUTHORITY).ok
    return engine


@pytest.fixture
def tally_source():
    return FakeTallySource()


@pytest.fixture
def proof_lookup():
    return FakeProofLookup()


@pytest.fixture
def audit_engine(ledger, tally_source, proof_lookup, eligibility):
    engine = AuditEngine(ledger, tally_source, proof_lookup, eligibility, config=AuditConfig())
    assert engine.set_audit_admin(AUTHORITY).ok
    return engine
