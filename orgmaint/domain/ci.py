"""
Domain objects for running CI test groups locally.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional


@dataclass
class TestGroup:
    """A value of the CI matrix `group` axis."""
    __test__ = False  # not a pytest class

    name: str
    env_vars: Dict[str, str] = field(default_factory=dict)
    continue_on_error: bool = False


@dataclass
class TestResult:
    """Outcome of running one test group."""
    __test__ = False

    group: TestGroup
    success: bool
    duration: float
    log_file: str
    error_message: Optional[str] = None
    start_time: datetime = field(default_factory=datetime.now)
    end_time: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'group': self.group.name,
            'success': self.success,
            'duration': round(self.duration, 2),
            'log_file': self.log_file,
            'error': self.error_message,
            'continue_on_error': self.group.continue_on_error,
        }


@dataclass
class TestSummary:
    """Aggregate of all test group results for one run."""
    __test__ = False

    total_groups: int
    passed_groups: int
    failed_groups: int
    total_duration: float
    results: List[TestResult] = field(default_factory=list)
    start_time: datetime = field(default_factory=datetime.now)
    end_time: datetime = field(default_factory=datetime.now)

    @property
    def success_rate(self) -> float:
        if self.total_groups == 0:
            return 0.0
        return self.passed_groups / self.total_groups * 100

    @property
    def all_passed(self) -> bool:
        return self.failed_groups == 0

    def failed_results(self) -> List[TestResult]:
        return [r for r in self.results if not r.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'summary',
            'total_groups': self.total_groups,
            'passed_groups': self.passed_groups,
            'failed_groups': self.failed_groups,
            'total_duration': round(self.total_duration, 2),
            'success_rate': round(self.success_rate, 1),
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat(),
        }
