"""Configuration management for the voting core."""

from .config import (
    SystemConfig,
    ProofVerifierConfig,
    TallyConfig,
    AuditConfig,
    config_from_dict,
    load_config,
    save_config,
)

__all__ = ['SystemConfig', 'ProofVerifierConfig', 'TallyConfig', 'AuditConfig',
           'config_from_dict', 'load_config', 'save_config']
