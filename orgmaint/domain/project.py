"""
Package-level domain objects: project metadata, compat updates,
version checks and explicit-import issues.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from packaging.version import Version


@dataclass
class ProjectInfo:
    """Metadata read from a Project.toml."""
    name: str
    uuid: Optional[str]
    path: str
    project: Dict[str, Any] = field(default_factory=dict)

    @property
    def version(self) -> Optional[str]:
        return self.project.get("version")

    @property
    def deps(self) -> Dict[str, str]:
        return self.project.get("deps", {})

    @property
    def compat(self) -> Dict[str, str]:
        return self.project.get("compat", {})


@dataclass
class CompatUpdate:
    """A dependency whose latest release lies beyond its compat bound."""
    package_name: str
    current_compat: str
    latest_version: Version
    is_major_update: bool

    @property
    def new_compat(self) -> str:
        """Compat entry admitting the latest major series."""
        return str(self.latest_version.major)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'package': self.package_name,
            'current_compat': self.current_compat,
            'latest_version': str(self.latest_version),
            'is_major_update': self.is_major_update,
        }


@dataclass
class VersionCheck:
    """An obsolete `VERSION` comparison found in Julia source."""
    file_path: str
    line_number: int  # 1-based
    line_content: str
    version: Version
    operator: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'file': self.file_path,
            'line': self.line_number,
            'content': self.line_content,
            'version': str(self.version),
            'operator': self.operator,
        }


ISSUE_MISSING = "missing_import"
ISSUE_UNUSED = "unused_import"
ISSUE_GENERIC = "generic"


@dataclass
class ImportIssue:
    """One finding from the explicit-imports checker."""
    type: str
    symbol: Optional[str] = None
    module_name: Optional[str] = None
    section: Optional[str] = None
    line: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result = {'type': self.type, 'line': self.line}
        if self.symbol:
            result['symbol'] = self.symbol
        if self.module_name:
            result['module'] = self.module_name
        if self.section:
            result['section'] = self.section
        return result


@dataclass
class CleanupResult:
    """Outcome of cleaning a gh-pages branch."""
    files_removed: int = 0
    dirs_removed: int = 0
    size_saved_mb: float = 0.0
    versions_cleaned: List[str] = field(default_factory=list)
    preserved_version: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None
    dry_run: bool = False
    repository: Optional[str] = None
    repo_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'repository': self.repository,
            'repo_url': self.repo_url,
            'files_removed': self.files_removed,
            'dirs_removed': self.dirs_removed,
            'size_saved_mb': round(self.size_saved_mb, 2),
            'versions_cleaned': self.versions_cleaned,
            'preserved_version': self.preserved_version,
            'success': self.success,
            'error': self.error_message,
            'dry_run': self.dry_run,
        }


@dataclass
class BloatAnalysis:
    """Size breakdown of a gh-pages branch."""
    total_size_mb: float = 0.0
    large_files: List[tuple] = field(default_factory=list)  # (path, size_mb)
    versions: List[str] = field(default_factory=list)
    latest_version: Optional[str] = None
    analysis: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_size_mb': round(self.total_size_mb, 2),
            'large_files': [
                {'path': path, 'size_mb': round(size, 2)} for path, size in self.large_files
            ],
            'versions': self.versions,
            'latest_version': self.latest_version,
        }
