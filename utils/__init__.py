"""Utilities for the voting core."""

from .utils import (
    setup_logging,
    save_results,
    create_results_summary,
    PerformanceMonitor,
    PerformanceMetrics,
    create_performance_report,
    get_system_info,
    generate_secure_random,
    format_duration
)

__all__ = [
    'setup_logging',
    'save_results',
    'create_results_summary',
    'PerformanceMonitor',
    'PerformanceMetrics',
    'create_performance_report',
    'get_system_info',
    'generate_secure_random',
    'format_duration'
]
