"""
Tally Aggregation Module
Homomorphic per-candidate accumulators and one-shot tally publication
"""

from .tally_aggregator import (
    # Core classes
    TallyAggregationEngine,
    HomomorphicAccumulator,
    XorAccumulator,

    # Records
    ProofAggregate,
    ElectionTally,
    TallyIntegrityReport,
    TallyStatus,
    MAX_AGGREGATE_COUNT,

    # Exceptions
    TallyError,
    TallyErrorCode,
)

__all__ = [
    # Classes
    'TallyAggregationEngine',
    'HomomorphicAccumulator',
    'XorAccumulator',
    'ProofAggregate',
    'ElectionTally',
    'TallyIntegrityReport',
    'TallyStatus',
    'MAX_AGGREGATE_COUNT',

    # Exceptions
    'TallyError',
    'TallyErrorCode',
]
