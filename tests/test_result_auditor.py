"""
Unit tests for AuditEngine.

Tests match-rate audits, the one-audit-per-election rule, dispute intake
and resolution, result release, the eligibility window and the bounded
audit log.
"""

import pytest

from audit import AuditEngine, AuditErrorCode, DisputeStatus
from ledger import ErrorFamily

AUTHORITY = "authority"
ELECTION = 1
EVIDENCE = b"\x07" * 32


def _fingerprints(count: int):
    return [i.to_bytes(32, "big") for i in range(count)]


def _prepare(tally_source, proof_lookup, replayable: int, submitted: int = 50,
             counts=(42, 58, 0)):
    tally_source.publish(ELECTION, list(counts))
    fingerprints = _fingerprints(submitted)
    for fingerprint in fingerprints[:replayable]:
        proof_lookup.add(ELECTION, fingerprint)
    return fingerprints


def _audited(audit_engine, tally_source, proof_lookup, counts=(42, 58, 0)):
    fingerprints = _prepare(tally_source, proof_lookup, 50, counts=counts)
    assert audit_engine.perform_audit(AUTHORITY, ELECTION, fingerprints).ok


# ─── Tests: Audit ─────────────────────────────────────────────────────────────


class TestPerformAudit:
    def test_48_of_50_accepted(self, audit_engine, tally_source, proof_lookup, ledger):
        fingerprints = _prepare(tally_source, proof_lookup, replayable=48)
        result = audit_engine.perform_audit(AUTHORITY, ELECTION, fingerprints)
        assert result.ok
        record = result.value
        assert record.audited
        assert record.match_rate == 96
        assert record.final_results == (42, 58, 0)
        assert record.disputes == 0
        assert record.timestamp == ledger.height
        assert [e.action for e in audit_engine.get_audit_logs(ELECTION)] == ["full-audit"]

    def test_45_of_50_rejected(self, audit_engine, tally_source, proof_lookup):
        fingerprints = _prepare(tally_source, proof_lookup, replayable=45)
        result = audit_engine.perform_audit(AUTHORITY, ELECTION, fingerprints)
        assert result.error == AuditErrorCode.VERIFICATION_MISMATCH
        assert result.family == ErrorFamily.CRYPTOGRAPHIC
        assert audit_engine.get_election_audit(ELECTION) is None
        assert audit_engine.get_audit_logs(ELECTION) == []

    def test_audit_only_once_per_election(self, audit_engine, tally_source, proof_lookup):
        fingerprints = _prepare(tally_source, proof_lookup, replayable=50)
        assert audit_engine.perform_audit(AUTHORITY, ELECTION, fingerprints).ok
        result = audit_engine.perform_audit(AUTHORITY, ELECTION, fingerprints)
        assert result.error == AuditErrorCode.AUDIT_ALREADY_PERFORMED

    def test_too_many_fingerprints(self, audit_engine, tally_source, proof_lookup):
        fingerprints = _prepare(tally_source, proof_lookup, replayable=51, submitted=51)
        result = audit_engine.perform_audit(AUTHORITY, ELECTION, fingerprints)
        assert result.error == AuditErrorCode.INVALID_AUDIT_REQUEST

    def test_requires_published_tally(self, audit_engine):
        result = audit_engine.perform_audit(AUTHORITY, ELECTION, _fingerprints(1))
        assert result.error == AuditErrorCode.RESULTS_NOT_PUBLISHED

    def test_requires_admin(self, audit_engine, tally_source, proof_lookup):
        fingerprints = _prepare(tally_source, proof_lookup, replayable=50)
        result = audit_engine.perform_audit("intruder", ELECTION, fingerprints)
        assert result.error == AuditErrorCode.NOT_AUTHORIZED

    def test_empty_sample_is_mismatch(self, audit_engine, tally_source):
        tally_source.publish(ELECTION, [1])
        result = audit_engine.perform_audit(AUTHORITY, ELECTION, [])
        assert result.error == AuditErrorCode.VERIFICATION_MISMATCH


# ─── Tests: Disputes ──────────────────────────────────────────────────────────


class TestRaiseDispute:
    def test_dispute_requires_later_block(self, audit_engine, tally_source, proof_lookup, ledger):
        _audited(audit_engine, tally_source, proof_lookup)
        result = audit_engine.raise_dispute("bob", ELECTION, "recount", EVIDENCE)
        assert result.error == AuditErrorCode.INVALID_TIMESTAMP
        assert result.family == ErrorFamily.TIMING

        ledger.advance()
        result = audit_engine.raise_dispute("bob", ELECTION, "recount", EVIDENCE)
        assert result.ok and result.value == 1

        dispute = audit_engine.get_dispute_record(ELECTION, 1)
        assert dispute.status == DisputeStatus.PENDING
        assert dispute.disputer == "bob"
        assert dispute.evidence == EVIDENCE
        assert audit_engine.get_audit_logs(ELECTION)[dispute.log_slot].action == "dispute"

    def test_dispute_ids_are_sequential(self, audit_engine, tally_source, proof_lookup, ledger):
        _audited(audit_engine, tally_source, proof_lookup)
        ledger.advance()
        ids = [audit_engine.raise_dispute(f"voter_{i}", ELECTION, "why", EVIDENCE).value
               for i in range(3)]
        assert ids == [1, 2, 3]
        assert audit_engine.get_election_audit(ELECTION).disputes == 3

    @pytest.mark.parametrize("counts", [(10, 5), (100, 51)])
    def test_anomaly_band(self, audit_engine, tally_source, proof_lookup, ledger, counts):
        _audited(audit_engine, tally_source, proof_lookup, counts=counts)
        ledger.advance()
        result = audit_engine.raise_dispute("bob", ELECTION, "odd", EVIDENCE)
        assert result.error == AuditErrorCode.ANOMALY_DETECTED
        assert audit_engine.get_election_audit(ELECTION).disputes == 0

    @pytest.mark.parametrize("counts", [(50,), (100, 50)])
    def test_anomaly_band_is_inclusive(self, audit_engine, tally_source, proof_lookup, ledger, counts):
        _audited(audit_engine, tally_source, proof_lookup, counts=counts)
        ledger.advance()
        assert audit_engine.raise_dispute("bob", ELECTION, "edge", EVIDENCE).ok

    def test_input_validation(self, audit_engine, tally_source, proof_lookup, ledger):
        _audited(audit_engine, tally_source, proof_lookup)
        ledger.advance()
        assert audit_engine.raise_dispute("bob", ELECTION, "x" * 51, EVIDENCE).error == \
            AuditErrorCode.INVALID_AUDIT_REQUEST
        assert audit_engine.raise_dispute("bob", ELECTION, "x" * 50, EVIDENCE).ok
        assert audit_engine.raise_dispute("bob", ELECTION, "short", EVIDENCE[:31]).error == \
            AuditErrorCode.INVALID_EVIDENCE

    def test_requires_audit_record(self, audit_engine):
        result = audit_engine.raise_dispute("bob", ELECTION, "why", EVIDENCE)
        assert result.error == AuditErrorCode.ELECTION_NOT_FOUND


class TestResolveDispute:
    def _raise(self, audit_engine, tally_source, proof_lookup, ledger) -> int:
        _audited(audit_engine, tally_source, proof_lookup)
        ledger.advance()
        return audit_engine.raise_dispute("bob", ELECTION, "recount", EVIDENCE).value

    def test_accept_is_terminal(self, audit_engine, tally_source, proof_lookup, ledger):
        dispute_id = self._raise(audit_engine, tally_source, proof_lookup, ledger)
        result = audit_engine.resolve_dispute(AUTHORITY, ELECTION, dispute_id, "accepted")
        assert result.ok
        assert result.value.status == DisputeStatus.ACCEPTED

        again = audit_engine.resolve_dispute(AUTHORITY, ELECTION, dispute_id, DisputeStatus.ACCEPTED)
        assert again.error == AuditErrorCode.DISPUTE_ALREADY_RESOLVED

    def test_resolution_marks_intake_entry(self, audit_engine, tally_source, proof_lookup, ledger):
        dispute_id = self._raise(audit_engine, tally_source, proof_lookup, ledger)
        audit_engine.resolve_dispute(AUTHORITY, ELECTION, dispute_id, "accepted")
        dispute = audit_engine.get_dispute_record(ELECTION, dispute_id)
        logs = audit_engine.get_audit_logs(ELECTION)
        assert logs[dispute.log_slot].resolved
        assert [e.action for e in logs] == ["full-audit", "dispute", "resolve"]

    def test_only_accepted_resolution(self, audit_engine, tally_source, proof_lookup, ledger):
        dispute_id = self._raise(audit_engine, tally_source, proof_lookup, ledger)
        result = audit_engine.resolve_dispute(AUTHORITY, ELECTION, dispute_id, "rejected")
        assert result.error == AuditErrorCode.INVALID_AUDIT_REQUEST
        assert audit_engine.get_dispute_record(ELECTION, dispute_id).status == DisputeStatus.PENDING

    def test_unknown_dispute(self, audit_engine, tally_source, proof_lookup, ledger):
        self._raise(audit_engine, tally_source, proof_lookup, ledger)
        result = audit_engine.resolve_dispute(AUTHORITY, ELECTION, 9, "accepted")
        assert result.error == AuditErrorCode.DISPUTE_NOT_ELIGIBLE

    def test_requires_admin(self, audit_engine, tally_source, proof_lookup, ledger):
        dispute_id = self._raise(audit_engine, tally_source, proof_lookup, ledger)
        result = audit_engine.resolve_dispute("bob", ELECTION, dispute_id, "accepted")
        assert result.error == AuditErrorCode.NOT_AUTHORIZED


# ─── Tests: Release and Eligibility ───────────────────────────────────────────


class TestReleaseFinalResults:
    def test_release_overwrites_results(self, audit_engine, tally_source, proof_lookup, ledger):
        _audited(audit_engine, tally_source, proof_lookup)
        ledger.advance(5)
        result = audit_engine.release_final_results(AUTHORITY, ELECTION, [40, 60])
        assert result.ok
        record = audit_engine.get_election_audit(ELECTION)
        assert record.final_results == (40, 60)
        assert record.timestamp == 5
        assert audit_engine.get_audit_logs(ELECTION)[-1].action == "release"

    @pytest.mark.parametrize("results", [[1] * 11, [1, -1]])
    def test_invalid_results(self, audit_engine, tally_source, proof_lookup, results):
        _audited(audit_engine, tally_source, proof_lookup)
        result = audit_engine.release_final_results(AUTHORITY, ELECTION, results)
        assert result.error == AuditErrorCode.INVALID_AUDIT_REQUEST

    def test_requires_published(self, audit_engine):
        result = audit_engine.release_final_results(AUTHORITY, ELECTION, [1])
        assert result.error == AuditErrorCode.RESULTS_NOT_PUBLISHED

    def test_requires_audit_record(self, audit_engine, tally_source):
        tally_source.publish(ELECTION, [1])
        result = audit_engine.release_final_results(AUTHORITY, ELECTION, [1])
        assert result.error == AuditErrorCode.ELECTION_NOT_FOUND


class TestAuditEligibility:
    def test_window_without_record(self, audit_engine, ledger):
        assert audit_engine.check_audit_eligibility("alice", ELECTION)
        assert not audit_engine.check_audit_eligibility("mallory", ELECTION)
        ledger.advance(100)
        assert not audit_engine.check_audit_eligibility("alice", ELECTION)

    def test_window_follows_audit_timestamp(self, audit_engine, tally_source, proof_lookup, ledger):
        ledger.advance(150)
        _audited(audit_engine, tally_source, proof_lookup)
        assert audit_engine.check_audit_eligibility("alice", ELECTION)
        ledger.advance(99)
        assert audit_engine.check_audit_eligibility("alice", ELECTION)
        ledger.advance(1)
        assert not audit_engine.check_audit_eligibility("alice", ELECTION)


# ─── Tests: Administration and Log Capacity ───────────────────────────────────


class TestAuditAdministration:
    def test_admin_is_one_shot(self, audit_engine):
        assert audit_engine.set_audit_admin("other").error == AuditErrorCode.ALREADY_CONFIGURED

    def test_setters(self, audit_engine):
        assert audit_engine.set_max_audit_logs(AUTHORITY, 0).error == \
            AuditErrorCode.INVALID_AUDIT_REQUEST
        assert audit_engine.set_audit_timeout(AUTHORITY, 0).error == AuditErrorCode.AUDIT_TIMEOUT
        assert audit_engine.set_audit_timeout("intruder", 5).error == AuditErrorCode.NOT_AUTHORIZED
        assert audit_engine.set_audit_timeout(AUTHORITY, 5).ok
        assert audit_engine.audit_timeout == 5

    def test_second_engine_on_shared_ledger_keeps_settings(self, audit_engine, ledger, tally_source,
                                                            proof_lookup, eligibility):
        audit_engine.set_audit_timeout(AUTHORITY, 9)
        other = AuditEngine(ledger, tally_source, proof_lookup, eligibility)
        assert other.admin.identity == AUTHORITY
        assert other.audit_timeout == 9
        assert other.set_audit_admin("other").error == AuditErrorCode.ALREADY_CONFIGURED

    def test_log_capacity_is_never_reclaimed(self, audit_engine, tally_source, proof_lookup, ledger):
        assert audit_engine.set_max_audit_logs(AUTHORITY, 2).ok
        _audited(audit_engine, tally_source, proof_lookup)
        ledger.advance()
        assert audit_engine.raise_dispute("bob", ELECTION, "one", EVIDENCE).ok

        full = audit_engine.raise_dispute("carol", ELECTION, "two", EVIDENCE)
        assert full.error == AuditErrorCode.AUDIT_LOG_FULL
        assert audit_engine.get_election_audit(ELECTION).disputes == 1

        # Resolution needs a log slot too, so it is refused and the dispute stays pending
        resolved = audit_engine.resolve_dispute(AUTHORITY, ELECTION, 1, "accepted")
        assert resolved.error == AuditErrorCode.AUDIT_LOG_FULL
        assert audit_engine.get_dispute_record(ELECTION, 1).status == DisputeStatus.PENDING
        assert not audit_engine.get_audit_logs(ELECTION)[1].resolved

    def test_capacity_latched_per_election(self, audit_engine, tally_source, proof_lookup, ledger):
        assert audit_engine.set_max_audit_logs(AUTHORITY, 2).ok
        _audited(audit_engine, tally_source, proof_lookup)
        assert audit_engine.set_max_audit_logs(AUTHORITY, 10).ok
        ledger.advance()
        assert audit_engine.raise_dispute("bob", ELECTION, "one", EVIDENCE).ok
        assert audit_engine.raise_dispute("carol", ELECTION, "two", EVIDENCE).error == \
            AuditErrorCode.AUDIT_LOG_FULL
