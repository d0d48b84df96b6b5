"""
Domain layer for orgmaint.

Contains plain result and record objects with no I/O:
- OperationSummary / OperationDetail: per-repository outcomes of bulk runs
- ProjectInfo, CompatUpdate, VersionCheck, ImportIssue: package-level findings
- InvalidationReport, ImportTimingReport: profiling reports
- TestGroup, TestResult, TestSummary: local CI test runs

These objects provide serialization methods for JSONL output.
"""

from .operation import OperationStatus, OperationDetail, OperationSummary
from .project import (
    ProjectInfo,
    CompatUpdate,
    VersionCheck,
    ImportIssue,
    CleanupResult,
    BloatAnalysis,
)
from .analysis import (
    InvalidationEntry,
    InvalidationReport,
    ImportTiming,
    ImportTimingReport,
)
from .ci import TestGroup, TestResult, TestSummary

__all__ = [
    'OperationStatus',
    'OperationDetail',
    'OperationSummary',
    'ProjectInfo',
    'CompatUpdate',
    'VersionCheck',
    'ImportIssue',
    'CleanupResult',
    'BloatAnalysis',
    'InvalidationEntry',
    'InvalidationReport',
    'ImportTiming',
    'ImportTimingReport',
    'TestGroup',
    'TestResult',
    'TestSummary',
]
