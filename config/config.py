import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any

import yaml

logger = logging.getLogger(__name__)


@dataclass
class ProofVerifierConfig:
    batch_limit: int = 100
    proof_expiry_blocks: int = 1000
    min_candidate: int = 1
    max_candidate: int = 10
    commitment_length: int = 32

    def __post_init__(self):
        if self.min_candidate < 1 or self.max_candidate < self.min_candidate:
            raise ValueError(
                f"Invalid candidate range [{self.min_candidate}, {self.max_candidate}]")


@dataclass
class TallyConfig:
    max_candidates: int = 10
    precision_threshold: int = 1000000
    max_tally_logs: int = 100


@dataclass
class AuditConfig:
    max_audit_logs: int = 50
    audit_timeout_blocks: int = 100
    max_fingerprints: int = 50
    min_match_rate: int = 95
    anomaly_min: int = 50
    anomaly_max: int = 150
    max_reason_length: int = 50
    evidence_length: int = 32
    max_final_results: int = 10


@dataclass
class SystemConfig:
    authority: str = "election_authority"
    election_duration_blocks: int = 100

    proof_config: ProofVerifierConfig = field(default_factory=ProofVerifierConfig)
    tally_config: TallyConfig = field(default_factory=TallyConfig)
    audit_config: AuditConfig = field(default_factory=AuditConfig)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    enable_benchmarking: bool = True
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)

    def ensure_directories(self):
        """Create log and results directories"""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.results_dir.mkdir(parents=True, exist_ok=True)


def config_from_dict(config_data: Dict[str, Any]) -> SystemConfig:
    """Build a SystemConfig from a parsed YAML mapping"""
    proof_data = config_data.get('proof_verification', {}) or {}
    proof_config = ProofVerifierConfig(
        batch_limit=proof_data.get('batch_limit', 100),
        proof_expiry_blocks=proof_data.get('proof_expiry_blocks', 1000),
        min_candidate=proof_data.get('min_candidate', 1),
        max_candidate=proof_data.get('max_candidate', 10),
        commitment_length=proof_data.get('commitment_length', 32)
    )

    tally_data = config_data.get('tally', {}) or {}
    tally_config = TallyConfig(
        max_candidates=tally_data.get('max_candidates', 10),
        precision_threshold=tally_data.get('precision_threshold', 1000000),
        max_tally_logs=tally_data.get('max_tally_logs', 100)
    )

    audit_data = config_data.get('audit', {}) or {}
    audit_config = AuditConfig(
        max_audit_logs=audit_data.get('max_audit_logs', 50),
        audit_timeout_blocks=audit_data.get('audit_timeout_blocks', 100),
        max_fingerprints=audit_data.get('max_fingerprints', 50),
        min_match_rate=audit_data.get('min_match_rate', 95),
        anomaly_min=audit_data.get('anomaly_min', 50),
        anomaly_max=audit_data.get('anomaly_max', 150),
        max_reason_length=audit_data.get('max_reason_length', 50),
        evidence_length=audit_data.get('evidence_length', 32),
        max_final_results=audit_data.get('max_final_results', 10)
    )

    return SystemConfig(
        authority=config_data.get('authority', 'election_authority'),
        election_duration_blocks=config_data.get('election_duration_blocks', 100),
        proof_config=proof_config,
        tally_config=tally_config,
        audit_config=audit_config,
        log_dir=Path(config_data.get('log_dir', 'logs')),
        results_dir=Path(config_data.get('results_dir', 'results')),
        enable_benchmarking=config_data.get('enable_benchmarking', True),
        enable_debug_mode=config_data.get('enable_debug_mode', False)
    )


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
            return config_from_dict(config_data)
        except (OSError, yaml.YAMLError, ValueError, AttributeError) as e:
            logger.warning(f"Could not load config file {config_path}: {e}")
            logger.warning("Using default configuration")

    return SystemConfig()


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")

    config_data = {
        'authority': config.authority,
        'election_duration_blocks': config.election_duration_blocks,
        'proof_verification': {
            'batch_limit': config.proof_config.batch_limit,
            'proof_expiry_blocks': config.proof_config.proof_expiry_blocks,
            'min_candidate': config.proof_config.min_candidate,
            'max_candidate': config.proof_config.max_candidate,
            'commitment_length': config.proof_config.commitment_length
        },
        'tally': {
            'max_candidates': config.tally_config.max_candidates,
            'precision_threshold': config.tally_config.precision_threshold,
            'max_tally_logs': config.tally_config.max_tally_logs
        },
        'audit': {
            'max_audit_logs': config.audit_config.max_audit_logs,
            'audit_timeout_blocks': config.audit_config.audit_timeout_blocks,
            'max_fingerprints': config.audit_config.max_fingerprints,
            'min_match_rate': config.audit_config.min_match_rate,
            'anomaly_min': config.audit_config.anomaly_min,
            'anomaly_max': config.audit_config.anomaly_max,
            'max_reason_length': config.audit_config.max_reason_length,
            'evidence_length': config.audit_config.evidence_length,
            'max_final_results': config.audit_config.max_final_results
        },
        'log_dir': str(config.log_dir),
        'results_dir': str(config.results_dir),
        'enable_benchmarking': config.enable_benchmarking,
        'enable_debug_mode': config.enable_debug_mode
    }

    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)
