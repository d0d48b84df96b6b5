"""
Profiling report objects for invalidation and import-timing analysis.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List


@dataclass
class InvalidationEntry:
    """A method invalidation and the size of the tree it invalidated."""
    method: str
    file: str
    line: int
    package: str
    reason: str
    children_count: int
    depth: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'method': self.method,
            'file': self.file,
            'line': self.line,
            'package': self.package,
            'reason': self.reason,
            'children_count': self.children_count,
            'depth': self.depth,
        }


@dataclass
class InvalidationReport:
    """
    Invalidation analysis for one repository.

    A total of -1 marks an analysis that could not be run.
    """
    repo: str
    total_invalidations: int
    major_invalidators: List[InvalidationEntry] = field(default_factory=list)
    packages_affected: List[str] = field(default_factory=list)
    analysis_time: datetime = field(default_factory=datetime.now)
    summary: str = ""
    recommendations: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.total_invalidations < 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'repository': self.repo,
            'analysis_time': self.analysis_time.isoformat(),
            'total_invalidations': self.total_invalidations,
            'summary': self.summary,
            'packages_affected': self.packages_affected,
            'recommendations': self.recommendations,
            'major_invalidators': [e.to_dict() for e in self.major_invalidators],
        }


@dataclass
class ImportTiming:
    """Aggregated import cost of one package, in seconds."""
    package_name: str
    total_time: float
    precompile_time: float
    load_time: float
    dependencies: List[str] = field(default_factory=list)
    dep_count: int = 0
    is_local: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'package_name': self.package_name,
            'total_time': self.total_time,
            'precompile_time': self.precompile_time,
            'load_time': self.load_time,
            'dependencies': self.dependencies,
            'dep_count': self.dep_count,
            'is_local': self.is_local,
        }


@dataclass
class ImportTimingReport:
    """
    Import timing analysis for one package.

    A total of -1.0 marks an analysis that could not be run.
    """
    repo: str
    package_name: str
    total_import_time: float
    major_contributors: List[ImportTiming] = field(default_factory=list)
    dependency_chain: List[str] = field(default_factory=list)
    analysis_time: datetime = field(default_factory=datetime.now)
    summary: str = ""
    recommendations: List[str] = field(default_factory=list)
    raw_output: str = ""

    @property
    def failed(self) -> bool:
        return self.total_import_time < 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'repository': self.repo,
            'package_name': self.package_name,
            'analysis_time': self.analysis_time.isoformat(),
            'total_import_time': self.total_import_time,
            'summary': self.summary,
            'dependency_chain': self.dependency_chain,
            'recommendations': self.recommendations,
            'major_contributors': [t.to_dict() for t in self.major_contributors],
            'raw_output': self.raw_output,
        }
