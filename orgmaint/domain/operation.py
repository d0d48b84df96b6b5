"""
Operation result domain objects for orgmaint.

Provides standardized result types for organization-wide runs that
clone, modify and open pull requests against many repositories.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional


class OperationStatus(Enum):
    """Status of an individual operation."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    DRY_RUN = "dry_run"


@dataclass
class OperationDetail:
    """
    Details of a single operation on one repository.

    Used to track what happened to each repo during bulk operations.
    """
    repo_name: str
    status: OperationStatus
    action: str  # e.g., "formatted", "compat_bumped", "registered", "no_changes"
    message: Optional[str] = None
    error: Optional[str] = None
    pr_url: Optional[str] = None
    repo_path: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            'name': self.repo_name,
            'status': self.status.value,
            'action': self.action,
        }
        if self.repo_path:
            result['path'] = self.repo_path
        if self.message:
            result['message'] = self.message
        if self.error:
            result['error'] = self.error
        if self.pr_url:
            result['pr_url'] = self.pr_url
        if self.metadata:
            result.update(self.metadata)
        return result


@dataclass
class OperationSummary:
    """
    Summary of a bulk operation across multiple repositories.

    Collects statistics and details from organization-wide runs
    (formatting, compat bumping, minimum version fixing, registration).
    """
    operation: str  # e.g., "format", "compat_bump", "min_versions"
    total: int = 0
    successful: int = 0
    skipped: int = 0
    failed: int = 0
    dry_run: bool = False
    details: List[OperationDetail] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    pr_urls: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True if no failures occurred."""
        return self.failed == 0

    def add_detail(self, detail: OperationDetail) -> None:
        """Add an operation detail and update counts."""
        self.details.append(detail)
        self.total += 1

        if detail.status == OperationStatus.SUCCESS:
            self.successful += 1
        elif detail.status == OperationStatus.SKIPPED:
            self.skipped += 1
        elif detail.status == OperationStatus.FAILED:
            self.failed += 1
            if detail.error:
                self.errors.append(f"{detail.repo_name}: {detail.error}")
        elif detail.status == OperationStatus.DRY_RUN:
            self.successful += 1  # Count dry-run as successful

        if detail.pr_url:
            self.pr_urls.append(detail.pr_url)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'type': 'summary',
            'operation': self.operation,
            'total': self.total,
            'successful': self.successful,
            'skipped': self.skipped,
            'failed': self.failed,
            'dry_run': self.dry_run,
            'errors': self.errors,
            'pr_urls': self.pr_urls,
        }
