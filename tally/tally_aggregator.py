"""
Homomorphic Tally Aggregation
Folds verified candidate counts into accumulators and publishes one
combined tally per election
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from typing import List, Optional, Protocol, Sequence, Tuple

import numpy as np
from cryptography.hazmat.primitives import hashes

from config import TallyConfig
from ledger import (
    AggregateVerificationSource,
    AuthoritySlot,
    BoundedEventLog,
    ElectionSource,
    ErrorFamily,
    Ledger,
    LogCapacityError,
    LogEntry,
    VotingCoreError,
    atomic_operation,
)

logger = logging.getLogger(__name__)

MAX_AGGREGATE_COUNT = 1000000
ACCUMULATOR_LENGTH = 32

# ============================================================================
# ERRORS
# ============================================================================


class TallyErrorCode(IntEnum):
    NOT_AUTHORIZED = 2000
    ELECTION_NOT_ACTIVE = 2001
    INVALID_CANDIDATE = 2002
    ALREADY_PUBLISHED = 2003
    INSUFFICIENT_PROOFS = 2004
    HOMOMORPHIC_FAILURE = 2005
    AGGREGATE_OVERFLOW = 2006
    VERIFICATION_FAILED = 2008
    CANDIDATE_LIST_EMPTY = 2009
    INVALID_TALLY_INPUT = 2011
    TALLY_NOT_INITIALIZED = 2012
    TALLY_LOG_FULL = 2013
    ALREADY_CONFIGURED = 2014


class TallyError(VotingCoreError):
    """Base exception for tally aggregation"""

    families = {
        TallyErrorCode.NOT_AUTHORIZED: ErrorFamily.AUTHORIZATION,
        TallyErrorCode.ELECTION_NOT_ACTIVE: ErrorFamily.STATE,
        TallyErrorCode.INVALID_CANDIDATE: ErrorFamily.VALIDATION,
        TallyErrorCode.ALREADY_PUBLISHED: ErrorFamily.CONSISTENCY,
        TallyErrorCode.INSUFFICIENT_PROOFS: ErrorFamily.VALIDATION,
        TallyErrorCode.HOMOMORPHIC_FAILURE: ErrorFamily.CRYPTOGRAPHIC,
        TallyErrorCode.AGGREGATE_OVERFLOW: ErrorFamily.CAPACITY,
        TallyErrorCode.VERIFICATION_FAILED: ErrorFamily.CRYPTOGRAPHIC,
        TallyErrorCode.CANDIDATE_LIST_EMPTY: ErrorFamily.VALIDATION,
        TallyErrorCode.INVALID_TALLY_INPUT: ErrorFamily.VALIDATION,
        TallyErrorCode.TALLY_NOT_INITIALIZED: ErrorFamily.STATE,
        TallyErrorCode.TALLY_LOG_FULL: ErrorFamily.CAPACITY,
        TallyErrorCode.ALREADY_CONFIGURED: ErrorFamily.STATE,
    }


class TallyStatus(Enum):
    """Lifecycle of an election tally"""
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    PUBLISHED = "published"

# ============================================================================
# ACCUMULATORS
# ============================================================================


class HomomorphicAccumulator(Protocol):
    """Pluggable accumulator; combine must be commutative and associative"""

    def zero(self) -> bytes:
        ...

    def absorb(self, candidate_id: int, count: int, previous: bytes) -> bytes:
        ...

    def combine(self, left: bytes, right: bytes) -> bytes:
        ...


class XorAccumulator:
    """Placeholder accumulator: SHA-256 absorption, byte-wise XOR combination"""

    def zero(self) -> bytes:
        return bytes(ACCUMULATOR_LENGTH)

    def absorb(self, candidate_id: int, count: int, previous: bytes) -> bytes:
        digest = hashes.Hash(hashes.SHA256())
        digest.update(count.to_bytes(8, "big"))
        digest.update(candidate_id.to_bytes(8, "big"))
        digest.update(bytes(previous))
        return digest.finalize()

    def combine(self, left: bytes, right: bytes) -> bytes:
        if len(left) != ACCUMULATOR_LENGTH or len(right) != ACCUMULATOR_LENGTH:
            raise ValueError(
                f"Accumulator length mismatch: {len(left)} and {len(right)}, "
                f"expected {ACCUMULATOR_LENGTH}")
        combined = np.bitwise_xor(np.frombuffer(left, dtype=np.uint8),
                                  np.frombuffer(right, dtype=np.uint8))
        return combined.tobytes()

# ============================================================================
# RECORDS
# ============================================================================


@dataclass(frozen=True)
class ProofAggregate:
    count: int
    accumulator: bytes
    verified: bool = True


@dataclass(frozen=True)
class ElectionTally:
    """Candidate list plus an accumulator snapshot in the same order"""
    candidates: Tuple[int, ...]
    accumulators: Tuple[bytes, ...]
    updated_at: int
    combined: Optional[bytes] = None
    published: bool = False

    @property
    def status(self) -> TallyStatus:
        return TallyStatus.PUBLISHED if self.published else TallyStatus.INITIALIZED


@dataclass(frozen=True)
class TallyIntegrityReport:
    election_id: int
    total_count: int
    counts: Tuple[int, ...]
    precision_threshold: int
    published: bool

# ============================================================================
# TALLY AGGREGATION ENGINE
# ============================================================================


class TallyAggregationEngine:
    """One-shot publish state machine over per-candidate aggregates"""

    def __init__(self, ledger: Ledger, elections: ElectionSource,
                 aggregate_verifier: AggregateVerificationSource,
                 accumulator: Optional[HomomorphicAccumulator] = None,
                 config: Optional[TallyConfig] = None):
        self.ledger = ledger
        self.elections = elections
        self.aggregate_verifier = aggregate_verifier
        self.accumulator = accumulator or XorAccumulator()
        self.config = config or TallyConfig()

        self._vars = ledger.table("tally.vars")
        self._tallies = ledger.table("tally.tallies")
        self._aggregates = ledger.table("tally.aggregates")
        self.log = BoundedEventLog(ledger, "tally.log")

        self._vars.setdefault("admin", AuthoritySlot())
        self._vars.setdefault("max_candidates", self.config.max_candidates)
        self._vars.setdefault("precision_threshold", self.config.precision_threshold)

    @property
    def admin(self) -> AuthoritySlot:
        return self._vars["admin"]

    @property
    def max_candidates(self) -> int:
        return self._vars["max_candidates"]

    @property
    def precision_threshold(self) -> int:
        return self._vars["precision_threshold"]

    def _require_admin(self, caller: str):
        if not self.admin.permits(caller):
            raise TallyError(TallyErrorCode.NOT_AUTHORIZED, f"{caller} is not the tally admin")

    def _append_log(self, election_id: int, action: str, details: bytes = b""):
        try:
            self.log.append(election_id, action, details, self.config.max_tally_logs)
        except LogCapacityError as e:
            raise TallyError(TallyErrorCode.TALLY_LOG_FULL, str(e)) from e

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @atomic_operation("set_admin")
    def set_admin(self, identity: str) -> str:
        if self.admin.configured:
            raise TallyError(TallyErrorCode.ALREADY_CONFIGURED,
                             f"Tally admin already set to {self.admin.identity}")
        if not identity:
            raise TallyError(TallyErrorCode.INVALID_TALLY_INPUT, "Admin identity is empty")
        self._vars.put("admin", self.admin.configure(identity))
        logger.info(f"Tally admin configured: {identity}")
        return identity

    @atomic_operation("set_max_candidates")
    def set_max_candidates(self, caller: str, max_candidates: int) -> int:
        self._require_admin(caller)
        if max_candidates <= 0:
            raise TallyError(TallyErrorCode.INVALID_CANDIDATE,
                             f"Max candidates must be positive, got {max_candidates}")
        self._vars.put("max_candidates", max_candidates)
        return max_candidates

    @atomic_operation("set_precision_threshold")
    def set_precision_threshold(self, caller: str, threshold: int) -> int:
        self._require_admin(caller)
        if threshold <= 0:
            raise TallyError(TallyErrorCode.INVALID_TALLY_INPUT,
                             f"Precision threshold must be positive, got {threshold}")
        self._vars.put("precision_threshold", threshold)
        return threshold

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @atomic_operation("initialize_election_tally")
    def initialize_election_tally(self, caller: str, election_id: int,
                                  candidates: Sequence[int]) -> ElectionTally:
        self._require_admin(caller)
        if not self.elections.is_active(election_id):
            raise TallyError(TallyErrorCode.ELECTION_NOT_ACTIVE,
                             f"Election {election_id} is not active")

        candidates = tuple(candidates)
        if not candidates:
            raise TallyError(TallyErrorCode.CANDIDATE_LIST_EMPTY)
        if len(candidates) > self.max_candidates:
            raise TallyError(TallyErrorCode.INVALID_CANDIDATE,
                             f"{len(candidates)} candidates exceed limit {self.max_candidates}")
        if len(set(candidates)) != len(candidates) or any(c <= 0 for c in candidates):
            raise TallyError(TallyErrorCode.INVALID_CANDIDATE,
                             "Candidate ids must be unique and positive")
        if self.is_published(election_id):
            raise TallyError(TallyErrorCode.ALREADY_PUBLISHED)

        # Aggregates recorded before initialization carry into the snapshot
        snapshot = []
        for candidate_id in candidates:
            aggregate = self._aggregates.get((election_id, candidate_id))
            snapshot.append(aggregate.accumulator if aggregate else self.accumulator.zero())

        tally = ElectionTally(
            candidates=candidates,
            accumulators=tuple(snapshot),
            updated_at=self.ledger.height
        )
        self._tallies.put(election_id, tally)
        self._append_log(election_id, "init", len(candidates).to_bytes(8, "big"))
        logger.info(f"Tally initialized for election {election_id} with candidates {list(candidates)}")
        return tally

    @atomic_operation("aggregate_candidate_proofs")
    def aggregate_candidate_proofs(self, caller: str, election_id: int, candidate_id: int,
                                   proof_count: int) -> ProofAggregate:
        self._require_admin(caller)
        if self.is_published(election_id):
            raise TallyError(TallyErrorCode.ALREADY_PUBLISHED)
        if not self.elections.is_active(election_id):
            raise TallyError(TallyErrorCode.ELECTION_NOT_ACTIVE,
                             f"Election {election_id} is not active")
        if candidate_id <= 0:
            raise TallyError(TallyErrorCode.INVALID_CANDIDATE, f"Invalid candidate {candidate_id}")
        if proof_count < self.precision_threshold:
            raise TallyError(TallyErrorCode.INSUFFICIENT_PROOFS,
                             f"{proof_count} proofs below precision threshold "
                             f"{self.precision_threshold}")
        if not self.aggregate_verifier.verify(election_id, candidate_id):
            raise TallyError(TallyErrorCode.VERIFICATION_FAILED,
                             f"Aggregate verification failed for candidate {candidate_id}")

        tally = self._tallies.get(election_id)
        if tally is not None and candidate_id not in tally.candidates:
            raise TallyError(TallyErrorCode.INVALID_CANDIDATE,
                             f"Candidate {candidate_id} not in election {election_id}")

        previous = self._aggregates.get((election_id, candidate_id))
        prev_count = previous.count if previous else 0
        prev_accumulator = previous.accumulator if previous else self.accumulator.zero()

        new_count = prev_count + proof_count
        if new_count > MAX_AGGREGATE_COUNT:
            raise TallyError(TallyErrorCode.AGGREGATE_OVERFLOW,
                             f"Count {new_count} exceeds {MAX_AGGREGATE_COUNT}")

        aggregate = ProofAggregate(
            count=new_count,
            accumulator=self.accumulator.absorb(candidate_id, new_count, prev_accumulator),
            verified=True
        )
        self._aggregates.put((election_id, candidate_id), aggregate)

        if tally is not None:
            snapshot = list(tally.accumulators)
            snapshot[tally.candidates.index(candidate_id)] = aggregate.accumulator
            self._tallies.put(election_id, replace(
                tally, accumulators=tuple(snapshot), updated_at=self.ledger.height))

        self._append_log(election_id, "agg",
                         candidate_id.to_bytes(8, "big") + new_count.to_bytes(8, "big"))
        logger.info(f"Aggregated {proof_count} proofs for candidate {candidate_id} "
                    f"in election {election_id} (total {new_count})")
        return aggregate

    @atomic_operation("publish_encrypted_tally")
    def publish_encrypted_tally(self, caller: str, election_id: int) -> bytes:
        self._require_admin(caller)
        tally = self._tallies.get(election_id)
        if tally is None:
            raise TallyError(TallyErrorCode.TALLY_NOT_INITIALIZED)
        if tally.published:
            raise TallyError(TallyErrorCode.ALREADY_PUBLISHED)

        accumulators = []
        combined = self.accumulator.zero()
        for candidate_id in tally.candidates:
            aggregate = self._aggregates.get((election_id, candidate_id))
            if aggregate is None or aggregate.count == 0:
                raise TallyError(TallyErrorCode.INSUFFICIENT_PROOFS,
                                 f"Candidate {candidate_id} has no aggregated proofs")
            partial = aggregate.accumulator
            try:
                combined = self.accumulator.combine(combined, partial)
            except ValueError as e:
                raise TallyError(TallyErrorCode.HOMOMORPHIC_FAILURE, str(e)) from e
            accumulators.append(partial)

        self._tallies.put(election_id, replace(
            tally,
            accumulators=tuple(accumulators),
            combined=combined,
            published=True,
            updated_at=self.ledger.height
        ))
        self._append_log(election_id, "publish", combined)
        logger.info(f"Published tally for election {election_id}: {combined.hex()[:16]}...")
        return combined

    @atomic_operation("validate_tally_integrity")
    def validate_tally_integrity(self, caller: str, election_id: int) -> TallyIntegrityReport:
        self._require_admin(caller)
        tally = self._tallies.get(election_id)
        if tally is None:
            raise TallyError(TallyErrorCode.TALLY_NOT_INITIALIZED)

        counts = tuple(self._counts(election_id, tally.candidates))
        total = sum(counts)
        if total < self.precision_threshold:
            raise TallyError(TallyErrorCode.INSUFFICIENT_PROOFS,
                             f"Total {total} below precision threshold {self.precision_threshold}")
        return TallyIntegrityReport(
            election_id=election_id,
            total_count=total,
            counts=counts,
            precision_threshold=self.precision_threshold,
            published=tally.published
        )

    @atomic_operation("reset_election_tally")
    def reset_election_tally(self, caller: str, election_id: int) -> int:
        """Return an unpublished tally to Uninitialized; logs are kept"""
        self._require_admin(caller)
        tally = self._tallies.get(election_id)
        if tally is None:
            raise TallyError(TallyErrorCode.TALLY_NOT_INITIALIZED)
        if tally.published:
            raise TallyError(TallyErrorCode.ALREADY_PUBLISHED)

        for candidate_id in tally.candidates:
            self._aggregates.delete((election_id, candidate_id))
        self._tallies.delete(election_id)
        self._append_log(election_id, "reset", len(tally.candidates).to_bytes(8, "big"))
        logger.info(f"Tally reset for election {election_id}")
        return len(tally.candidates)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _counts(self, election_id: int, candidates: Sequence[int]) -> List[int]:
        counts = []
        for candidate_id in candidates:
            aggregate = self._aggregates.get((election_id, candidate_id))
            counts.append(aggregate.count if aggregate else 0)
        return counts

    def get_election_tally(self, election_id: int) -> Optional[ElectionTally]:
        return self._tallies.get(election_id)

    def get_proof_aggregate(self, election_id: int, candidate_id: int) -> Optional[ProofAggregate]:
        return self._aggregates.get((election_id, candidate_id))

    def get_tally_logs(self, election_id: int) -> List[LogEntry]:
        return self.log.entries(election_id)

    def tally_status(self, election_id: int) -> TallyStatus:
        tally = self._tallies.get(election_id)
        return tally.status if tally else TallyStatus.UNINITIALIZED

    def is_published(self, election_id: int) -> bool:
        tally = self._tallies.get(election_id)
        return tally is not None and tally.published

    def published_counts(self, election_id: int) -> List[int]:
        """Per-candidate counts in candidate order, empty until published"""
        tally = self._tallies.get(election_id)
        if tally is None or not tally.published:
            return []
        return self._counts(election_id, tally.candidates)
