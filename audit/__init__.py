"""
Audit Module
Proof replay audits, dispute intake and final result release
"""

from .result_auditor import (
    AuditEngine,
    ElectionAuditRecord,
    DisputeRecord,
    DisputeStatus,
    AuditError,
    AuditErrorCode,
)

__all__ = [
    'AuditEngine',
    'ElectionAuditRecord',
    'DisputeRecord',
    'DisputeStatus',
    'AuditError',
    'AuditErrorCode',
]
