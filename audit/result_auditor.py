"""
Result Audit and Dispute Resolution
Replays proof fingerprints against the published tally and adjudicates
disputes raised on audited elections
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from typing import List, Optional, Sequence, Tuple, Union

from config import AuditConfig
from ledger import (
    AuthoritySlot,
    BoundedEventLog,
    EligibilitySource,
    ErrorFamily,
    Ledger,
    LogCapacityError,
    LogEntry,
    ProofLookupSource,
    TallySource,
    VotingCoreError,
    atomic_operation,
)

logger = logging.getLogger(__name__)

# ============================================================================
# ERRORS
# ============================================================================


class AuditErrorCode(IntEnum):
    NOT_AUTHORIZED = 3000
    ELECTION_NOT_FOUND = 3001
    RESULTS_NOT_PUBLISHED = 3002
    INVALID_AUDIT_REQUEST = 3003
    ANOMALY_DETECTED = 3005
    AUDIT_LOG_FULL = 3006
    VERIFICATION_MISMATCH = 3007
    DISPUTE_NOT_ELIGIBLE = 3008
    DISPUTE_ALREADY_RESOLVED = 3009
    INVALID_TIMESTAMP = 3010
    AUDIT_TIMEOUT = 3011
    AUDIT_ALREADY_PERFORMED = 3012
    INVALID_EVIDENCE = 3013
    ALREADY_CONFIGURED = 3014


class AuditError(VotingCoreError):
    """Base exception for audit operations"""

    families = {
        AuditErrorCode.NOT_AUTHORIZED: ErrorFamily.AUTHORIZATION,
        AuditErrorCode.ELECTION_NOT_FOUND: ErrorFamily.STATE,
        AuditErrorCode.RESULTS_NOT_PUBLISHED: ErrorFamily.STATE,
        AuditErrorCode.INVALID_AUDIT_REQUEST: ErrorFamily.VALIDATION,
        AuditErrorCode.ANOMALY_DETECTED: ErrorFamily.TIMING,
        AuditErrorCode.AUDIT_LOG_FULL: ErrorFamily.CAPACITY,
        AuditErrorCode.VERIFICATION_MISMATCH: ErrorFamily.CRYPTOGRAPHIC,
        AuditErrorCode.DISPUTE_NOT_ELIGIBLE: ErrorFamily.STATE,
        AuditErrorCode.DISPUTE_ALREADY_RESOLVED: ErrorFamily.CONSISTENCY,
        AuditErrorCode.INVALID_TIMESTAMP: ErrorFamily.TIMING,
        AuditErrorCode.AUDIT_TIMEOUT: ErrorFamily.TIMING,
        AuditErrorCode.AUDIT_ALREADY_PERFORMED: ErrorFamily.CONSISTENCY,
        AuditErrorCode.INVALID_EVIDENCE: ErrorFamily.VALIDATION,
        AuditErrorCode.ALREADY_CONFIGURED: ErrorFamily.STATE,
    }


class DisputeStatus(Enum):
    """Dispute lifecycle; accepted is terminal"""
    PENDING = "pending"
    ACCEPTED = "accepted"

# ============================================================================
# RECORDS
# ============================================================================


@dataclass(frozen=True)
class ElectionAuditRecord:
    audited: bool
    disputes: int
    final_results: Tuple[int, ...]
    match_rate: int
    timestamp: int


@dataclass(frozen=True)
class DisputeRecord:
    disputer: str
    reason: str
    evidence: bytes
    status: DisputeStatus
    log_slot: int

# ============================================================================
# AUDIT ENGINE
# ============================================================================


class AuditEngine:
    """Audit pass, dispute intake and resolution, bounded audit log.

    An election is audited at most once. Disputes can only be raised once
    the audit record exists and strictly after the block it was written in.
    """

    def __init__(self, ledger: Ledger, tally_source: TallySource,
                 proof_lookup: ProofLookupSource, eligibility: EligibilitySource,
                 config: Optional[AuditConfig] = None):
        self.ledger = ledger
        self.tally_source = tally_source
        self.proof_lookup = proof_lookup
        self.eligibility = eligibility
        self.config = config or AuditConfig()

        self._vars = ledger.table("audit.vars")
        self._records = ledger.table("audit.records")
        self._disputes = ledger.table("audit.disputes")
        self.log = BoundedEventLog(ledger, "audit.log")

        self._vars.setdefault("admin", AuthoritySlot())
        self._vars.setdefault("max_audit_logs", self.config.max_audit_logs)
        self._vars.setdefault("audit_timeout", self.config.audit_timeout_blocks)

    @property
    def admin(self) -> AuthoritySlot:
        return self._vars["admin"]

    @property
    def max_audit_logs(self) -> int:
        return self._vars["max_audit_logs"]

    @property
    def audit_timeout(self) -> int:
        return self._vars["audit_timeout"]

    def _require_admin(self, caller: str):
        if not self.admin.permits(caller):
            raise AuditError(AuditErrorCode.NOT_AUTHORIZED, f"{caller} is not the audit admin")

    def _append_log(self, election_id: int, action: str, details: bytes = b"") -> int:
        try:
            return self.log.append(election_id, action, details, self.max_audit_logs)
        except LogCapacityError as e:
            raise AuditError(AuditErrorCode.AUDIT_LOG_FULL, str(e)) from e

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @atomic_operation("set_audit_admin")
    def set_audit_admin(self, identity: str) -> str:
        if self.admin.configured:
            raise AuditError(AuditErrorCode.ALREADY_CONFIGURED,
                             f"Audit admin already set to {self.admin.identity}")
        if not identity:
            raise AuditError(AuditErrorCode.INVALID_AUDIT_REQUEST, "Admin identity is empty")
        self._vars.put("admin", self.admin.configure(identity))
        logger.info(f"Audit admin configured: {identity}")
        return identity

    @atomic_operation("set_max_audit_logs")
    def set_max_audit_logs(self, caller: str, max_logs: int) -> int:
        """Capacity for elections whose log has not been written yet"""
        self._require_admin(caller)
        if max_logs <= 0:
            raise AuditError(AuditErrorCode.INVALID_AUDIT_REQUEST,
                             f"Audit log capacity must be positive, got {max_logs}")
        self._vars.put("max_audit_logs", max_logs)
        return max_logs

    @atomic_operation("set_audit_timeout")
    def set_audit_timeout(self, caller: str, blocks: int) -> int:
        self._require_admin(caller)
        if blocks <= 0:
            raise AuditError(AuditErrorCode.AUDIT_TIMEOUT,
                             f"Audit timeout must be positive, got {blocks}")
        self._vars.put("audit_timeout", blocks)
        return blocks

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    @atomic_operation("perform_audit")
    def perform_audit(self, caller: str, election_id: int,
                      fingerprints: Sequence[bytes]) -> ElectionAuditRecord:
        self._require_admin(caller)
        if len(fingerprints) > self.config.max_fingerprints:
            raise AuditError(AuditErrorCode.INVALID_AUDIT_REQUEST,
                             f"{len(fingerprints)} fingerprints exceed limit "
                             f"{self.config.max_fingerprints}")
        if not self.tally_source.is_published(election_id):
            raise AuditError(AuditErrorCode.RESULTS_NOT_PUBLISHED)

        existing = self._records.get(election_id)
        if existing is not None and existing.audited:
            raise AuditError(AuditErrorCode.AUDIT_ALREADY_PERFORMED,
                             f"Election {election_id} audited at height {existing.timestamp}")

        replayed = sum(1 for fingerprint in fingerprints
                       if self.proof_lookup.replay(election_id, fingerprint))
        match_rate = replayed * 100 // max(len(fingerprints), 1)
        if match_rate < self.config.min_match_rate:
            raise AuditError(AuditErrorCode.VERIFICATION_MISMATCH,
                             f"Match rate {match_rate}% ({replayed}/{len(fingerprints)}) "
                             f"below {self.config.min_match_rate}%")

        record = ElectionAuditRecord(
            audited=True,
            disputes=0,
            final_results=tuple(self.tally_source.published_counts(election_id)),
            match_rate=match_rate,
            timestamp=self.ledger.height
        )
        self._records.put(election_id, record)
        self._append_log(election_id, "full-audit",
                         match_rate.to_bytes(2, "big") + replayed.to_bytes(2, "big"))
        logger.info(f"Election {election_id} audited: {replayed}/{len(fingerprints)} "
                    f"replayed ({match_rate}%)")
        return record

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    @atomic_operation("raise_dispute")
    def raise_dispute(self, caller: str, election_id: int, reason: str,
                      evidence: bytes) -> int:
        if len(reason) > self.config.max_reason_length:
            raise AuditError(AuditErrorCode.INVALID_AUDIT_REQUEST,
                             f"Reason longer than {self.config.max_reason_length} characters")
        if len(evidence) != self.config.evidence_length:
            raise AuditError(AuditErrorCode.INVALID_EVIDENCE,
                             f"Evidence must be {self.config.evidence_length} bytes, "
                             f"got {len(evidence)}")

        record = self._records.get(election_id)
        if record is None:
            raise AuditError(AuditErrorCode.ELECTION_NOT_FOUND,
                             f"No audit record for election {election_id}")
        if record.timestamp >= self.ledger.height:
            raise AuditError(AuditErrorCode.INVALID_TIMESTAMP,
                             f"Audit timestamp {record.timestamp} is not before "
                             f"height {self.ledger.height}")

        total = sum(record.final_results)
        if not self.config.anomaly_min <= total <= self.config.anomaly_max:
            raise AuditError(AuditErrorCode.ANOMALY_DETECTED,
                             f"Final results total {total} outside "
                             f"[{self.config.anomaly_min}, {self.config.anomaly_max}]")

        dispute_id = record.disputes + 1
        slot = self._append_log(election_id, "dispute", bytes(evidence))
        self._disputes.put((election_id, dispute_id), DisputeRecord(
            disputer=caller,
            reason=reason,
            evidence=bytes(evidence),
            status=DisputeStatus.PENDING,
            log_slot=slot
        ))
        self._records.put(election_id, replace(record, disputes=dispute_id))
        logger.info(f"Dispute {dispute_id} raised on election {election_id} by {caller}")
        return dispute_id

    @atomic_operation("resolve_dispute")
    def resolve_dispute(self, caller: str, election_id: int, dispute_id: int,
                        resolution: Union[str, DisputeStatus]) -> DisputeRecord:
        self._require_admin(caller)
        if getattr(resolution, "value", resolution) != DisputeStatus.ACCEPTED.value:
            raise AuditError(AuditErrorCode.INVALID_AUDIT_REQUEST,
                             f"Unsupported resolution {resolution!r}")

        dispute = self._disputes.get((election_id, dispute_id))
        if dispute is None:
            raise AuditError(AuditErrorCode.DISPUTE_NOT_ELIGIBLE,
                             f"No dispute {dispute_id} on election {election_id}")
        if dispute.status is not DisputeStatus.PENDING:
            raise AuditError(AuditErrorCode.DISPUTE_ALREADY_RESOLVED)

        resolved = replace(dispute, status=DisputeStatus.ACCEPTED)
        self._disputes.put((election_id, dispute_id), resolved)
        self.log.mark_resolved(election_id, dispute.log_slot)
        self._append_log(election_id, "resolve", dispute_id.to_bytes(8, "big"))
        logger.info(f"Dispute {dispute_id} on election {election_id} accepted")
        return resolved

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @atomic_operation("release_final_results")
    def release_final_results(self, caller: str, election_id: int,
                              results: Sequence[int]) -> ElectionAuditRecord:
        self._require_admin(caller)
        if len(results) > self.config.max_final_results:
            raise AuditError(AuditErrorCode.INVALID_AUDIT_REQUEST,
                             f"{len(results)} results exceed limit {self.config.max_final_results}")
        if any(not isinstance(value, int) or value < 0 for value in results):
            raise AuditError(AuditErrorCode.INVALID_AUDIT_REQUEST,
                             "Results must be non-negative integers")
        if not self.tally_source.is_published(election_id):
            raise AuditError(AuditErrorCode.RESULTS_NOT_PUBLISHED)

        record = self._records.get(election_id)
        if record is None:
            raise AuditError(AuditErrorCode.ELECTION_NOT_FOUND,
                             f"No audit record for election {election_id}")

        released = replace(record, final_results=tuple(results), timestamp=self.ledger.height)
        self._records.put(election_id, released)
        self._append_log(election_id, "release", len(results).to_bytes(8, "big"))
        logger.info(f"Final results released for election {election_id}: {list(results)}")
        return released

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def check_audit_eligibility(self, voter: str, election_id: int) -> bool:
        """Inside the window after the last audit write, defer to eligibility"""
        record = self._records.get(election_id)
        timestamp = record.timestamp if record else 0
        if self.ledger.height >= timestamp + self.audit_timeout:
            return False
        return self.eligibility.is_eligible(voter, election_id)

    def get_election_audit(self, election_id: int) -> Optional[ElectionAuditRecord]:
        return self._records.get(election_id)

    def get_dispute_record(self, election_id: int, dispute_id: int) -> Optional[DisputeRecord]:
        return self._disputes.get((election_id, dispute_id))

    def get_audit_logs(self, election_id: int) -> List[LogEntry]:
        return self.log.entries(election_id)
