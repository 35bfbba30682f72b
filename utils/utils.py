"""
Utilities for the Voting Core
Logging setup, performance monitoring and result reporting
"""

import json
import logging
import platform
import secrets
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import numpy as np
import psutil

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'


@dataclass
class PerformanceMetrics:
    operation: str
    duration_seconds: float
    cpu_percent: float
    memory_mb: float
    timestamp: float
    additional_data: Dict[str, Any] = field(default_factory=dict)


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """Configure root logging to a file and the console"""
    if log_file is None:
        log_file = Path("logs") / f"voting_core_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    logger.info(f"Logging initialized. Log file: {log_file}")
    return logger

# ============================================================================
# PERFORMANCE MONITORING
# ============================================================================


class PerformanceMonitor:
    """Collects per-phase timings with process CPU and memory readings"""

    def __init__(self):
        self.metrics: List[PerformanceMetrics] = []
        self.process = psutil.Process()

    def start_operation(self, operation_name: str) -> 'OperationContext':
        return OperationContext(self, operation_name)

    @contextmanager
    def track(self, operation_name: str, **additional_data) -> Iterator['OperationContext']:
        """Context manager that also attaches extra data to the metric"""
        context = OperationContext(self, operation_name, additional_data)
        with context:
            yield context

    def record_metric(self, metric: PerformanceMetrics):
        self.metrics.append(metric)

    def get_summary(self) -> Dict[str, Any]:
        """Aggregate statistics per operation name"""
        if not self.metrics:
            return {'total_operations': 0, 'total_duration': 0.0, 'operations': {}}

        operation_groups: Dict[str, List[PerformanceMetrics]] = {}
        for metric in self.metrics:
            operation_groups.setdefault(metric.operation, []).append(metric)

        operations = {}
        for op_name, metrics in operation_groups.items():
            durations = np.array([m.duration_seconds for m in metrics])
            cpu_usages = [m.cpu_percent for m in metrics if m.cpu_percent > 0]
            memory_usages = [m.memory_mb for m in metrics if m.memory_mb > 0]
            total = float(durations.sum())

            operations[op_name] = {
                'count': len(metrics),
                'total_duration': total,
                'avg_duration': float(durations.mean()),
                'min_duration': float(durations.min()),
                'max_duration': float(durations.max()),
                'std_duration': float(durations.std()) if len(durations) > 1 else 0.0,
                'p95_duration': float(np.percentile(durations, 95)),
                'avg_cpu_percent': float(np.mean(cpu_usages)) if cpu_usages else 0.0,
                'avg_memory_mb': float(np.mean(memory_usages)) if memory_usages else 0.0,
                'peak_memory_mb': max(memory_usages) if memory_usages else 0.0,
                'throughput_ops_per_sec': len(metrics) / total if total > 0 else 0.0
            }

        return {
            'total_operations': len(self.metrics),
            'total_duration': sum(op['total_duration'] for op in operations.values()),
            'operations': operations
        }

    def save_metrics(self, filepath: Path):
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        metrics_data = {
            'metrics': [asdict(m) for m in self.metrics],
            'summary': self.get_summary(),
            'system_info': get_system_info(),
            'timestamp': datetime.now().isoformat()
        }

        with open(filepath, 'w') as f:
            json.dump(metrics_data, f, indent=2, default=str)

    def reset(self):
        self.metrics.clear()


class OperationContext:
    """Times a block and records a PerformanceMetrics entry on exit"""

    def __init__(self, monitor: PerformanceMonitor, operation_name: str,
                 additional_data: Optional[Dict[str, Any]] = None):
        self.monitor = monitor
        self.operation_name = operation_name
        self.additional_data = dict(additional_data or {})
        self.start_time = 0.0
        self.start_memory = 0.0

    def _sample(self):
        try:
            return (self.monitor.process.cpu_percent(),
                    self.monitor.process.memory_info().rss / 1024 / 1024)
        except psutil.Error as e:
            logger.debug(f"Performance monitoring error: {e}")
            return 0.0, 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        # First cpu_percent call primes the counter
        _, self.start_memory = self._sample()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.perf_counter() - self.start_time
        cpu, end_memory = self._sample()

        self.additional_data['exception'] = exc_type is not None
        self.monitor.record_metric(PerformanceMetrics(
            operation=self.operation_name,
            duration_seconds=duration,
            cpu_percent=cpu,
            memory_mb=max(self.start_memory, end_memory),
            timestamp=time.time(),
            additional_data=self.additional_data
        ))


def get_system_info() -> Dict[str, Any]:
    """Host platform, CPU and memory facts"""
    info = {
        'platform': platform.platform(),
        'processor': platform.processor(),
        'python_version': platform.python_version(),
        'machine': platform.machine(),
        'system': platform.system(),
        'timestamp': datetime.now().isoformat()
    }

    try:
        vm = psutil.virtual_memory()
        info.update({
            'cpu_count_physical': psutil.cpu_count(logical=False),
            'cpu_count_logical': psutil.cpu_count(logical=True),
            'total_memory_gb': round(vm.total / 1024 / 1024 / 1024, 2),
            'available_memory_gb': round(vm.available / 1024 / 1024 / 1024, 2),
            'memory_percent_used': vm.percent
        })
    except psutil.Error as e:
        logger.debug(f"System info error: {e}")
        info['psutil_error'] = str(e)

    return info

# ============================================================================
# RANDOMNESS
# ============================================================================


def generate_secure_random(num_bytes: int = 32) -> bytes:
    """Cryptographically secure random bytes, e.g. for vote commitments"""
    return secrets.token_bytes(num_bytes)

# ============================================================================
# RESULTS
# ============================================================================


def _to_serializable(obj):
    if is_dataclass(obj) and not isinstance(obj, type):
        return {k: _to_serializable(v) for k, v in asdict(obj).items()}
    if isinstance(obj, dict):
        return {str(k): _to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_serializable(item) for item in obj]
    if isinstance(obj, Enum):
        return obj.name if isinstance(obj.value, int) else obj.value
    if isinstance(obj, (np.integer, np.floating)):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, bytes):
        return obj.hex()
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj


def save_results(results: Dict[str, Any], filepath: Path):
    """Write results as JSON plus a plain-text summary next to it"""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    enhanced_results = {
        'metadata': {
            'generated_at': datetime.now().isoformat(),
            'system_info': get_system_info(),
            'file_path': str(filepath)
        },
        'data': _to_serializable(results)
    }

    with open(filepath, 'w') as f:
        json.dump(enhanced_results, f, indent=2, default=str)

    summary_path = filepath.parent / f"{filepath.stem}_summary.txt"
    with open(summary_path, 'w') as f:
        f.write(create_results_summary(results))

    logger.info(f"Results saved to {filepath}")
    logger.info(f"Summary saved to {summary_path}")


def create_results_summary(results: Dict[str, Any]) -> str:
    """Human-readable summary of an election run"""
    summary = []
    summary.append("=" * 80)
    summary.append("VOTING CORE - ELECTION SUMMARY")
    summary.append("=" * 80)
    summary.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    summary.append("")

    if 'election_id' in results:
        summary.append(f"Election: {results['election_id']}")
        summary.append(f"Ballots cast: {results.get('ballots_cast', 0)}")
        summary.append(f"Ballots rejected: {results.get('ballots_rejected', 0)}")
        summary.append("")

    tally = results.get('tally')
    if tally:
        tally = _to_serializable(tally)
        summary.append("ELECTION TALLY:")
        counts = tally.get('counts', [])
        candidates = tally.get('candidates', list(range(1, len(counts) + 1)))
        total_votes = sum(counts)
        for candidate_id, count in zip(candidates, counts):
            percentage = (count / total_votes * 100) if total_votes > 0 else 0
            summary.append(f"  Candidate {candidate_id}: {count} votes ({percentage:.1f}%)")
        summary.append(f"  Total Votes: {total_votes}")
        if tally.get('combined_tally'):
            summary.append(f"  Combined Tally: {tally['combined_tally']}")
        summary.append("")

    audit = results.get('audit')
    if audit:
        audit = _to_serializable(audit)
        summary.append("AUDIT:")
        summary.append(f"  Match Rate: {audit.get('match_rate', 0)}%")
        summary.append(f"  Final Results: {audit.get('final_results', [])}")
        summary.append(f"  Disputes: {audit.get('disputes', 0)}")
        summary.append("")

    if 'integrity_checks' in results:
        summary.append("INTEGRITY CHECKS:")
        for check, passed in results['integrity_checks'].items():
            summary.append(f"  {check}: {'PASSED' if passed else 'FAILED'}")
        summary.append("")

    if 'performance_metrics' in results:
        summary.append("PERFORMANCE METRICS:")
        for metric, value in results['performance_metrics'].items():
            if isinstance(value, float):
                summary.append(f"  {metric}: {value:.4f}")
            else:
                summary.append(f"  {metric}: {value}")
        summary.append("")

    summary.append("=" * 80)
    return "\n".join(summary)


def create_performance_report(metrics: PerformanceMonitor) -> str:
    summary = metrics.get_summary()

    report = []
    report.append("=" * 80)
    report.append("VOTING CORE - PERFORMANCE REPORT")
    report.append("=" * 80)
    report.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    report.append(f"Total Operations: {summary.get('total_operations', 0)}")
    report.append(f"Total Duration: {format_duration(summary.get('total_duration', 0.0))}")
    report.append("")

    if summary['operations']:
        report.append("OPERATION BREAKDOWN:")
        report.append("-" * 60)

        for op_name, op_data in summary['operations'].items():
            report.append(f"\n{op_name.upper()}:")
            report.append(f"  Executions: {op_data['count']}")
            report.append(f"  Total Time: {format_duration(op_data['total_duration'])}")
            report.append(f"  Average Time: {format_duration(op_data['avg_duration'])}")
            report.append(f"  P95 Time: {format_duration(op_data['p95_duration'])}")
            report.append(f"  Throughput: {op_data['throughput_ops_per_sec']:.2f} ops/sec")
            if op_data['peak_memory_mb'] > 0:
                report.append(f"  Peak Memory: {op_data['peak_memory_mb']:.1f} MB")
    else:
        report.append("No performance data available.")

    report.append("")
    report.append("=" * 80)
    return "\n".join(report)


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format"""
    if seconds < 1:
        return f"{seconds*1000:.1f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.1f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = seconds % 60
        return f"{hours}h {minutes}m {secs:.1f}s"
