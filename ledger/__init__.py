"""Shared ledger state, atomic units of work and collaborator ports."""

from .ledger import (
    Ledger,
    LedgerTable,
    AuthoritySlot,
    OperationResult,
    ErrorFamily,
    VotingCoreError,
    LogCapacityError,
    atomic_operation,
)
from .bounded_log import BoundedEventLog, LogEntry
from .ports import (
    ElectionSource,
    EligibilitySource,
    TallySource,
    ProofLookupSource,
    AggregateVerificationSource,
    HeightWindowElectionSource,
    StaticEligibilitySource,
)

__all__ = [
    # State
    'Ledger',
    'LedgerTable',
    'AuthoritySlot',
    'BoundedEventLog',
    'LogEntry',

    # Outcomes
    'OperationResult',
    'ErrorFamily',
    'VotingCoreError',
    'LogCapacityError',
    'atomic_operation',

    # Ports
    'ElectionSource',
    'EligibilitySource',
    'TallySource',
    'ProofLookupSource',
    'AggregateVerificationSource',
    'HeightWindowElectionSource',
    'StaticEligibilitySource',
]
