"""
Zero-Knowledge Proof Module for the Voting Core
Vote proof admission with a pluggable verifier
"""

from .zk_proofs import (
    # Core classes
    ProofVerificationEngine,
    DigestProofVerifier,
    ProofVerifier,

    # Records
    VoteProof,
    ProofEntry,
    VerifiedProofRecord,
    ProofAdmission,
    CandidateTally,

    # Helpers
    make_placeholder_proof,
    proof_fingerprint,

    # Exceptions
    ZKError,
    ProofErrorCode,
)

__all__ = [
    # Classes
    'ProofVerificationEngine',
    'DigestProofVerifier',
    'ProofVerifier',
    'VoteProof',
    'ProofEntry',
    'VerifiedProofRecord',
    'ProofAdmission',
    'CandidateTally',

    # Helpers
    'make_placeholder_proof',
    'proof_fingerprint',

    # Exceptions
    'ZKError',
    'ProofErrorCode',
]
