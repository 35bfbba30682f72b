"""Unit tests for YAML configuration loading and saving."""

from pathlib import Path

import pytest
import yaml

from config import (
    AuditConfig,
    ProofVerifierConfig,
    SystemConfig,
    TallyConfig,
    config_from_dict,
    load_config,
    save_config,
)


class TestDefaults:
    def test_defaults_match_core_constants(self):
        config = SystemConfig()
        assert config.proof_config.batch_limit == 100
        assert config.proof_config.proof_expiry_blocks == 1000
        assert (config.proof_config.min_candidate, config.proof_config.max_candidate) == (1, 10)
        assert config.tally_config.max_candidates == 10
        assert config.tally_config.precision_threshold == 1000000
        assert config.audit_config.max_audit_logs == 50
        assert config.audit_config.audit_timeout_blocks == 100
        assert (config.audit_config.anomaly_min, config.audit_config.anomaly_max) == (50, 150)

    def test_invalid_candidate_range(self):
        with pytest.raises(ValueError):
            ProofVerifierConfig(min_candidate=5, max_candidate=4)

    def test_paths_are_coerced(self):
        config = SystemConfig(log_dir="x/logs", results_dir="x/results")
        assert isinstance(config.log_dir, Path)
        assert isinstance(config.results_dir, Path)


class TestLoadSave:
    def test_round_trip(self, tmp_path):
        config = SystemConfig(
            authority="board",
            proof_config=ProofVerifierConfig(batch_limit=7),
            tally_config=TallyConfig(precision_threshold=3),
            audit_config=AuditConfig(min_match_rate=90),
            results_dir=tmp_path / "results"
        )
        path = tmp_path / "config.yaml"
        save_config(config, path)

        loaded = load_config(path)
        assert loaded.authority == "board"
        assert loaded.proof_config.batch_limit == 7
        assert loaded.tally_config.precision_threshold == 3
        assert loaded.audit_config.min_match_rate == 90
        assert loaded.results_dir == tmp_path / "results"

    def test_partial_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({'tally': {'max_candidates': 4}}))
        loaded = load_config(path)
        assert loaded.tally_config.max_candidates == 4
        assert loaded.tally_config.precision_threshold == 1000000
        assert loaded.proof_config.batch_limit == 100

    def test_missing_file_returns_defaults(self, tmp_path):
        assert load_config(tmp_path / "absent.yaml") == SystemConfig()

    def test_malformed_file_falls_back(self, tmp_path, caplog):
        path = tmp_path / "config.yaml"
        path.write_text("tally: [unclosed")
        with caplog.at_level("WARNING"):
            loaded = load_config(path)
        assert loaded == SystemConfig()
        assert "Could not load config file" in caplog.text

    def test_config_from_empty_dict(self):
        assert config_from_dict({}) == SystemConfig()

    def test_ensure_directories(self, tmp_path):
        config = SystemConfig(log_dir=tmp_path / "l", results_dir=tmp_path / "r")
        config.ensure_directories()
        assert (tmp_path / "l").is_dir() and (tmp_path / "r").is_dir()
