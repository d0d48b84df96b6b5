"""
Service layer for orgmaint.

Contains the maintenance features, each built on the git, gh and julia clients:
- FormattingService: JuliaFormatter runs and formatting pull requests
- VersionBumpingService: minor version bumps and LocalRegistry registration
- CompatBumpService: compat bumps for new major releases of dependencies
- MinVersionService: raising compat lower bounds until minimums resolve
- VersionCheckService: obsolete `VERSION` comparisons
- ExplicitImportsService: ExplicitImports.jl checks and fixes
- InvalidationService / ImportTimingService: load-time profiling reports
- DocsCleanupService: pruning old documentation from gh-pages
- CITestingService: running CI test groups locally in parallel

Services are the primary API for commands to use.
"""

from .base import MaintenanceService
from .formatting_service import FormattingService
from .version_bumping_service import VersionBumpingService, RegistrationResult
from .compat_service import CompatBumpService
from .min_version_service import MinVersionService
from .version_check_service import VersionCheckService
from .explicit_imports_service import ExplicitImportsService
from .invalidation_service import InvalidationService
from .import_timing_service import ImportTimingService
from .docs_cleanup_service import DocsCleanupService
from .ci_testing_service import CITestingService

__all__ = [
    'MaintenanceService',
    'FormattingService',
    'VersionBumpingService',
    'RegistrationResult',
    'CompatBumpService',
    'MinVersionService',
    'VersionCheckService',
    'ExplicitImportsService',
    'InvalidationService',
    'ImportTimingService',
    'DocsCleanupService',
    'CITestingService',
]
