import argparse
import logging
import random
import sys
from pathlib import Path
from typing import List, Tuple

from config import SystemConfig, load_config, save_config
from integrated_voting_system import IntegratedVotingSystem, VotingSystemError
from utils import setup_logging, save_results, create_performance_report, format_duration

logger = logging.getLogger(__name__)


def create_test_votes(num_voters: int, candidates: List[int], seed: int = 42) -> List[Tuple[str, int]]:
    """Deterministic (voter, candidate) pairs for a demonstration election"""
    rng = random.Random(seed)
    return [(f"voter_{i:04d}", rng.choice(candidates)) for i in range(num_voters)]


def run_demo(config: SystemConfig, num_voters: int = 20, num_candidates: int = 3,
             election_id: int = 1) -> bool:
    print("=" * 80)
    print("VERIFIABLE VOTING CORE - DEMONSTRATION")
    print("   Proof admission + Homomorphic tally + Replay audit")
    print("=" * 80)

    max_candidate = config.proof_config.max_candidate
    if not 1 <= num_candidates <= min(max_candidate, config.tally_config.max_candidates):
        print(f"Candidates must be between 1 and {min(max_candidate, config.tally_config.max_candidates)}")
        return False

    candidates = list(range(1, num_candidates + 1))
    votes = create_test_votes(num_voters, candidates)

    print(f"\nRunning election {election_id}: {num_voters} voters, candidates {candidates}")
    print(f"   Precision threshold: {config.tally_config.precision_threshold}")
    print(f"   Audit sample limit: {config.audit_config.max_fingerprints} fingerprints")

    system = IntegratedVotingSystem(config)
    try:
        results = system.run_election(election_id, candidates, votes)
    except (VotingSystemError, ValueError) as e:
        logger.error(f"Demo failed: {e}")
        print(f"\nDemo failed: {e}")
        return False

    tally = results['tally']
    print("\n" + "=" * 40)
    print("ELECTION RESULTS")
    print("=" * 40)
    for candidate_id, count in zip(tally.candidates, tally.counts):
        print(f"  Candidate {candidate_id}: {count} votes")
    print(f"  Combined tally: {tally.combined_tally.hex()[:32]}...")

    perf = results['performance_metrics']
    print(f"\nElection time: {format_duration(perf['total_election_time'])}")
    print(f"Throughput: {perf['throughput_ballots_per_second']:.1f} ballots/second")
    print(f"Atomic units: {perf['units_committed']} committed, {perf['units_rolled_back']} rolled back")

    print(f"\nAudit match rate: {results['audit'].match_rate}%")
    print("\nIntegrity Checks:")
    for check, passed in results['integrity_checks'].items():
        print(f"  {check}: {'PASSED' if passed else 'FAILED'}")

    config.ensure_directories()
    report_path = config.results_dir / f"election_{election_id}_report.json"
    save_results(results, report_path)

    print(f"\nFull results saved to: {report_path}")

    if config.enable_benchmarking:
        perf_path = config.results_dir / "performance_report.txt"
        with open(perf_path, "w") as f:
            f.write(create_performance_report(system.performance_monitor))
        system.performance_monitor.save_metrics(config.results_dir / "performance_metrics.json")
        print(f"Performance report: {perf_path}")

    return results['integrity_checks']['all_checks_passed']


def main():
    parser = argparse.ArgumentParser(
        description='Verifiable Voting Core')
    parser.add_argument('--voters', type=int, default=20,
                        help='Number of voters')
    parser.add_argument('--candidates', type=int, default=3,
                        help='Number of candidates')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument('--precision-threshold', type=int, default=1,
                        help='Minimum proofs per aggregation batch')
    parser.add_argument('--results-dir', type=str, default=None,
                        help='Override results directory')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    parser.add_argument('--save-config', action='store_true',
                        help='Write the effective configuration back to --config')

    args = parser.parse_args()

    config = load_config(Path(args.config))
    config.tally_config.precision_threshold = args.precision_threshold
    if args.results_dir:
        config.results_dir = Path(args.results_dir)

    log_level = 'DEBUG' if config.enable_debug_mode else args.log_level
    setup_logging(log_level, config.log_dir / "voting_core.log")

    if args.save_config:
        save_config(config, Path(args.config))
        logger.info(f"Configuration saved to {args.config}")

    success = run_demo(config, args.voters, args.candidates)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
