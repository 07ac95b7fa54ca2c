"""
Pure analytics over pipeline run history.

Pipeline:
    1. Aggregate — windowed statistics over run records
    2. Detect    — severity-ranked bottleneck findings
    3. Compare   — before/after impact around applied optimizations

Components:
    types       — domain records (runs, quality checks, stats, candidates, reports)
    aggregator  — Metrics Aggregator
    bottlenecks — Bottleneck Detector
    impact      — Impact Analyzer

Nothing in this package performs I/O.
"""

from pipeline_analytics.analytics.aggregator import aggregate_runs
from pipeline_analytics.analytics.bottlenecks import BottleneckDetector, detect_bottlenecks
from pipeline_analytics.analytics.impact import analyze_impact, current_cutover, partition_runs

__all__ = [
    "aggregate_runs",
    "BottleneckDetector", "detect_bottlenecks",
    "analyze_impact", "current_cutover", "partition_runs",
]
