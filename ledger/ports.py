"""
Collaborator ports consumed by the engines, plus reference implementations.

All ports are synchronous, side-effect-free reads executed inside the
caller's atomic unit.
"""

from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

from .ledger import Ledger


class ElectionSource(Protocol):
    """Election lifecycle owned outside the core"""

    def exists(self, election_id: int) -> bool:
        ...

    def is_active(self, election_id: int) -> bool:
        ...


class EligibilitySource(Protocol):
    """Voter registration owned outside the core"""

    def is_eligible(self, voter: str, election_id: int) -> bool:
        ...


class TallySource(Protocol):
    """Read surface of the tally aggregation engine"""

    def is_published(self, election_id: int) -> bool:
        ...

    def published_counts(self, election_id: int) -> List[int]:
        ...


class ProofLookupSource(Protocol):
    """Replay surface over verified proof records"""

    def replay(self, election_id: int, fingerprint: bytes) -> bool:
        ...


class AggregateVerificationSource(Protocol):
    """Confirms a candidate's verified proofs before aggregation"""

    def verify(self, election_id: int, candidate_id: int) -> bool:
        ...


class HeightWindowElectionSource:
    """Elections active while the ledger height is inside [start, end)"""

    def __init__(self, ledger: Ledger, windows: Optional[Dict[int, Tuple[int, int]]] = None):
        self.ledger = ledger
        self.windows: Dict[int, Tuple[int, int]] = dict(windows or {})

    def open_election(self, election_id: int, start: int, end: int):
        if end <= start:
            raise ValueError(f"Election {election_id} window must be non-empty")
        self.windows[election_id] = (start, end)

    def exists(self, election_id: int) -> bool:
        return election_id in self.windows

    def is_active(self, election_id: int) -> bool:
        window = self.windows.get(election_id)
        if window is None:
            return False
        start, end = window
        return start <= self.ledger.height < end


class StaticEligibilitySource:
    """Open eligibility, optionally narrowed by allow and deny lists"""

    def __init__(self, allowed: Optional[Iterable[str]] = None, denied: Optional[Iterable[str]] = None):
        self.allowed: Optional[Set[str]] = set(allowed) if allowed is not None else None
        self.denied: Set[str] = set(denied or ())

    def is_eligible(self, voter: str, election_id: int) -> bool:
        if voter in self.denied:
            return False
        return self.allowed is None or voter in self.allowed
