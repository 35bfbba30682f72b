"""
Zero-Knowledge Vote Proof Verification
Admits one proof per voter per election and keeps per-candidate counters
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Protocol, Sequence

from cryptography.hazmat.primitives import hashes

from config import ProofVerifierConfig
from ledger import (
    AuthoritySlot,
    ElectionSource,
    EligibilitySource,
    ErrorFamily,
    Ledger,
    VotingCoreError,
    atomic_operation,
)

logger = logging.getLogger(__name__)

FINGERPRINT_DOMAIN = b"vote-proof-fingerprint/v1"
DIGEST_LENGTH = 32
DIGEST_MODULUS = 100

# ============================================================================
# ERRORS
# ============================================================================


class ProofErrorCode(IntEnum):
    INVALID_PROOF = 1000
    NOT_ELIGIBLE = 1001
    ELECTION_ENDED = 1002
    ALREADY_VERIFIED = 1003
    INVALID_PUBLIC_INPUT = 1004
    BATCH_SIZE_EXCEEDED = 1005
    PROOF_EXPIRED = 1007
    VERIFIER_NOT_SET = 1008
    INVALID_COMMITMENT = 1009
    VOTER_ALREADY_VOTED = 1010
    ELECTION_NOT_FOUND = 1011
    NOT_AUTHORIZED = 1013
    INVALID_CONFIGURATION = 1014
    ALREADY_CONFIGURED = 1015


class ZKError(VotingCoreError):
    """Base exception for proof verification"""

    families = {
        ProofErrorCode.INVALID_PROOF: ErrorFamily.CRYPTOGRAPHIC,
        ProofErrorCode.NOT_ELIGIBLE: ErrorFamily.AUTHORIZATION,
        ProofErrorCode.ELECTION_ENDED: ErrorFamily.STATE,
        ProofErrorCode.ALREADY_VERIFIED: ErrorFamily.CONSISTENCY,
        ProofErrorCode.INVALID_PUBLIC_INPUT: ErrorFamily.VALIDATION,
        ProofErrorCode.BATCH_SIZE_EXCEEDED: ErrorFamily.CAPACITY,
        ProofErrorCode.PROOF_EXPIRED: ErrorFamily.TIMING,
        ProofErrorCode.VERIFIER_NOT_SET: ErrorFamily.STATE,
        ProofErrorCode.INVALID_COMMITMENT: ErrorFamily.VALIDATION,
        ProofErrorCode.VOTER_ALREADY_VOTED: ErrorFamily.CONSISTENCY,
        ProofErrorCode.ELECTION_NOT_FOUND: ErrorFamily.STATE,
        ProofErrorCode.NOT_AUTHORIZED: ErrorFamily.AUTHORIZATION,
        ProofErrorCode.INVALID_CONFIGURATION: ErrorFamily.VALIDATION,
        ProofErrorCode.ALREADY_CONFIGURED: ErrorFamily.STATE,
    }

# ============================================================================
# PROOF TYPES
# ============================================================================


@dataclass(frozen=True)
class VoteProof:
    """A voter's proof that their commitment encodes claimed_candidate"""
    claimed_candidate: int
    proof_bytes: bytes
    issued_at: Optional[int] = None


@dataclass(frozen=True)
class ProofEntry:
    """One item of a verification batch"""
    voter: str
    election_id: int
    proof: VoteProof
    commitment: bytes


@dataclass(frozen=True)
class VerifiedProofRecord:
    verified: bool
    timestamp: int
    candidate: int
    fingerprint: bytes


@dataclass(frozen=True)
class ProofAdmission:
    accepted: bool
    height: int
    candidate: int
    fingerprint: bytes


@dataclass(frozen=True)
class CandidateTally:
    candidate_id: int
    count: int


def proof_fingerprint(election_id: int, voter: str, commitment: bytes) -> bytes:
    """SHA-256 identifier of one verified proof record"""
    voter_bytes = voter.encode("utf-8")
    digest = hashes.Hash(hashes.SHA256())
    digest.update(FINGERPRINT_DOMAIN)
    digest.update(str(election_id).encode("ascii"))
    digest.update(len(voter_bytes).to_bytes(4, "big"))
    digest.update(voter_bytes)
    digest.update(bytes(commitment))
    return digest.finalize()

# ============================================================================
# VERIFIERS
# ============================================================================


class ProofVerifier(Protocol):
    """Pluggable zero-knowledge verification predicate"""

    def verify(self, proof_bytes: bytes, public_input: int) -> bool:
        ...


class DigestProofVerifier:
    """Deterministic placeholder verifier.

    The proof bytes followed by the 8-byte little-endian public input are
    folded cyclically into a 32-byte digest. The proof is accepted when the
    digest byte sum modulo 100 equals the public input.
    """

    def digest(self, proof_bytes: bytes, public_input: int) -> bytes:
        combined = bytes(proof_bytes) + public_input.to_bytes(8, "little")
        return bytes(combined[i % len(combined)] for i in range(DIGEST_LENGTH))

    def verify(self, proof_bytes: bytes, public_input: int) -> bool:
        if public_input < 0:
            return False
        return sum(self.digest(proof_bytes, public_input)) % DIGEST_MODULUS == public_input


def make_placeholder_proof(claimed_candidate: int, salt: bytes = b"") -> bytes:
    """Build a 32-byte proof accepted by DigestProofVerifier for claimed_candidate"""
    if not 0 <= claimed_candidate < DIGEST_MODULUS:
        raise ValueError(f"Candidate {claimed_candidate} outside digest range")
    body = bytes(salt[:DIGEST_LENGTH - 1]).ljust(DIGEST_LENGTH - 1, b"\x00")
    last = (claimed_candidate - sum(body)) % DIGEST_MODULUS
    return body + bytes([last])

# ============================================================================
# PROOF VERIFICATION ENGINE
# ============================================================================


class ProofVerificationEngine:
    """Replay-safe admission of vote proofs into per-candidate counters"""

    def __init__(self, ledger: Ledger, elections: ElectionSource,
                 eligibility: EligibilitySource,
                 verifier: Optional[ProofVerifier] = None,
                 config: Optional[ProofVerifierConfig] = None):
        self.ledger = ledger
        self.elections = elections
        self.eligibility = eligibility
        self.verifier = verifier or DigestProofVerifier()
        self.config = config or ProofVerifierConfig()

        self._vars = ledger.table("zk.vars")
        self._records = ledger.table("zk.verified_proofs")
        self._votes = ledger.table("zk.voter_votes")
        self._counters = ledger.table("zk.candidate_counters")
        self._totals = ledger.table("zk.election_totals")
        self._fingerprints = ledger.table("zk.fingerprints")

        self._vars.setdefault("authority", AuthoritySlot())
        self._vars.setdefault("batch_limit", self.config.batch_limit)
        self._vars.setdefault("proof_expiry", self.config.proof_expiry_blocks)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @property
    def authority(self) -> AuthoritySlot:
        return self._vars["authority"]

    @property
    def batch_limit(self) -> int:
        return self._vars["batch_limit"]

    @property
    def proof_expiry(self) -> int:
        return self._vars["proof_expiry"]

    @atomic_operation("configure_authority")
    def configure_authority(self, identity: str) -> str:
        if self.authority.configured:
            raise ZKError(ProofErrorCode.ALREADY_CONFIGURED,
                          f"Authority already set to {self.authority.identity}")
        if not identity:
            raise ZKError(ProofErrorCode.INVALID_CONFIGURATION, "Authority identity is empty")
        self._vars.put("authority", self.authority.configure(identity))
        logger.info(f"Proof verifier authority configured: {identity}")
        return identity

    @atomic_operation("configure_batch_limit")
    def configure_batch_limit(self, caller: str, batch_limit: int) -> int:
        self._require_authority(caller)
        if batch_limit <= 0:
            raise ZKError(ProofErrorCode.INVALID_CONFIGURATION,
                          f"Batch limit must be positive, got {batch_limit}")
        self._vars.put("batch_limit", batch_limit)
        return batch_limit

    @atomic_operation("configure_proof_expiry")
    def configure_proof_expiry(self, caller: str, blocks: int) -> int:
        self._require_authority(caller)
        if blocks <= 0:
            raise ZKError(ProofErrorCode.INVALID_CONFIGURATION,
                          f"Proof expiry must be positive, got {blocks}")
        self._vars.put("proof_expiry", blocks)
        return blocks

    def _require_authority(self, caller: str):
        if not self.authority.configured:
            raise ZKError(ProofErrorCode.VERIFIER_NOT_SET)
        if not self.authority.permits(caller):
            raise ZKError(ProofErrorCode.NOT_AUTHORIZED, f"{caller} is not the verifier authority")

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    @atomic_operation("verify_vote_proof")
    def verify_vote_proof(self, voter: str, election_id: int, proof: VoteProof,
                          commitment: bytes) -> ProofAdmission:
        return self._admit(voter, election_id, proof, commitment)

    @atomic_operation("batch_verify_proofs")
    def batch_verify_proofs(self, entries: Sequence[ProofEntry]) -> List[ProofAdmission]:
        """Admit every entry or none of them.

        On the first failing entry the whole batch is discarded and the
        failure carries the number of entries admitted before it.
        """
        if len(entries) > self.batch_limit:
            raise ZKError(ProofErrorCode.BATCH_SIZE_EXCEEDED,
                          f"Batch of {len(entries)} exceeds limit {self.batch_limit}")

        admissions = []
        for index, entry in enumerate(entries):
            try:
                admissions.append(self._admit(entry.voter, entry.election_id,
                                              entry.proof, entry.commitment))
            except ZKError as e:
                raise ZKError(e.code, f"Batch entry {index}: {e.message}",
                              result_value=len(admissions)) from e

        logger.info(f"Batch of {len(admissions)} proofs admitted")
        return admissions

    def _admit(self, voter: str, election_id: int, proof: VoteProof,
               commitment: bytes) -> ProofAdmission:
        if not self.authority.configured:
            raise ZKError(ProofErrorCode.VERIFIER_NOT_SET)
        if not self.elections.exists(election_id):
            raise ZKError(ProofErrorCode.ELECTION_NOT_FOUND, f"Unknown election {election_id}")
        if not self.elections.is_active(election_id):
            raise ZKError(ProofErrorCode.ELECTION_ENDED, f"Election {election_id} is not active")
        if not self.eligibility.is_eligible(voter, election_id):
            raise ZKError(ProofErrorCode.NOT_ELIGIBLE, f"{voter} is not eligible")
        if self._votes.get((voter, election_id), False):
            raise ZKError(ProofErrorCode.VOTER_ALREADY_VOTED,
                          f"{voter} already voted in election {election_id}")

        candidate = proof.claimed_candidate
        if not self.config.min_candidate <= candidate <= self.config.max_candidate:
            raise ZKError(ProofErrorCode.INVALID_PUBLIC_INPUT,
                          f"Candidate {candidate} outside "
                          f"[{self.config.min_candidate}, {self.config.max_candidate}]")
        if len(commitment) != self.config.commitment_length:
            raise ZKError(ProofErrorCode.INVALID_COMMITMENT,
                          f"Commitment must be {self.config.commitment_length} bytes, "
                          f"got {len(commitment)}")

        commitment = bytes(commitment)
        key = (voter, commitment, election_id)
        if key in self._records:
            raise ZKError(ProofErrorCode.ALREADY_VERIFIED)

        height = self.ledger.height
        if proof.issued_at is not None:
            if proof.issued_at > height:
                raise ZKError(ProofErrorCode.PROOF_EXPIRED,
                              f"Proof issued in the future ({proof.issued_at} > {height})")
            if height - proof.issued_at > self.proof_expiry:
                raise ZKError(ProofErrorCode.PROOF_EXPIRED,
                              f"Proof issued at {proof.issued_at} expired at "
                              f"{proof.issued_at + self.proof_expiry}")

        if not self.verifier.verify(proof.proof_bytes, candidate):
            raise ZKError(ProofErrorCode.INVALID_PROOF)

        fingerprint = proof_fingerprint(election_id, voter, commitment)
        self._records.put(key, VerifiedProofRecord(
            verified=True,
            timestamp=height,
            candidate=candidate,
            fingerprint=fingerprint
        ))
        self._votes.put((voter, election_id), True)
        self._counters.put((election_id, candidate),
                           self._counters.get((election_id, candidate), 0) + 1)
        self._totals.put(election_id, self._totals.get(election_id, 0) + 1)
        self._fingerprints.put((election_id, fingerprint), key)

        logger.info(f"Proof admitted for election {election_id}, candidate {candidate}")
        return ProofAdmission(accepted=True, height=height, candidate=candidate,
                              fingerprint=fingerprint)

    @atomic_operation("reset_election_proofs")
    def reset_election_proofs(self, caller: str, election_id: int) -> int:
        """Clear the election's candidate counters and the caller's vote flag"""
        self._require_authority(caller)
        cleared = 0
        for (election, candidate) in list(self._counters.keys()):
            if election == election_id:
                self._counters.delete((election, candidate))
                cleared += 1
        self._totals.delete(election_id)
        self._votes.delete((caller, election_id))
        logger.info(f"Reset {cleared} candidate counters for election {election_id}")
        return cleared

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_verified_proof(self, voter: str, commitment: bytes,
                           election_id: int) -> Optional[VerifiedProofRecord]:
        return self._records.get((voter, bytes(commitment), election_id))

    def has_voter_voted(self, voter: str, election_id: int) -> bool:
        return self._votes.get((voter, election_id), False)

    def candidate_count(self, election_id: int, candidate_id: int) -> int:
        return self._counters.get((election_id, candidate_id), 0)

    def get_election_tally(self, election_id: int,
                           candidates: Optional[Sequence[int]] = None) -> List[CandidateTally]:
        if candidates is None:
            candidates = range(self.config.min_candidate, self.config.max_candidate + 1)
        return [CandidateTally(candidate_id, self.candidate_count(election_id, candidate_id))
                for candidate_id in candidates]

    def get_total_verified_for_election(self, election_id: int) -> int:
        return self._totals.get(election_id, 0)

    def replay(self, election_id: int, fingerprint: bytes) -> bool:
        """True when fingerprint names a stored, verified record of this election"""
        key = self._fingerprints.get((election_id, bytes(fingerprint)))
        if key is None:
            return False
        record = self._records.get(key)
        return record is not None and record.verified and record.fingerprint == bytes(fingerprint)

    def fingerprints(self, election_id: int) -> List[bytes]:
        """Fingerprints of every record admitted for an election"""
        return [fingerprint for (election, fingerprint) in self._fingerprints.keys()
                if election == election_id]
