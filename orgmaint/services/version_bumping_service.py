"""
Version bumping and registration service for orgmaint.

Bumps the minor version of every package in a repository (root package
and `lib/*` subpackages) and registers them with LocalRegistry. Packages
of a monorepo depend on each other, so registration simply retries every
unregistered package until a full pass makes no progress.
"""

import logging
import os
import shutil
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..domain.operation import OperationDetail, OperationStatus, OperationSummary
from ..project_utils import (
    find_all_project_tomls,
    find_package_dirs,
    get_relative_project_path,
    is_subpackage,
    read_project,
    write_project,
)
from ..utils import workspace
from .base import MaintenanceService

logger = logging.getLogger(__name__)


def bump_minor_version(version: str) -> str:
    """
    Bump the minor component of a MAJOR.MINOR.PATCH version.

    >>> bump_minor_version("1.2.3")
    '1.3.0'

    Raises:
        ValueError: if the version does not have exactly three parts
    """
    parts = version.split(".")
    if len(parts) != 3:
        raise ValueError(f"Invalid version format: {version}")
    try:
        major = int(parts[0])
        minor = int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid version format: {version}") from None
    return f"{major}.{minor + 1}.0"


def update_project_version(project_path: str) -> Optional[Tuple[str, str]]:
    """
    Bump the minor version recorded in a Project.toml.

    Returns:
        (old_version, new_version), or None when the file or its version
        field is missing
    """
    if not os.path.isfile(project_path):
        logger.warning(f"Project.toml not found at {project_path}")
        return None

    project = read_project(project_path)
    if "version" not in project:
        logger.warning(f"No version field in {project_path}")
        return None

    old_version = project["version"]
    new_version = bump_minor_version(old_version)
    project["version"] = new_version
    write_project(project_path, project)

    logger.info(f"Updated version in {project_path}: {old_version} → {new_version}")
    return old_version, new_version


def update_project_versions_all(
    repo_path: str,
    include_subpackages: bool = True
) -> Dict[str, Tuple[str, str]]:
    """Bump every project file in a repository, keyed by relative path."""
    project_files = find_all_project_tomls(repo_path)
    if not project_files:
        logger.warning(f"No Project.toml files found in {repo_path}")
        return {}

    if not include_subpackages:
        project_files = [p for p in project_files if not is_subpackage(p, repo_path)]

    updates = {}
    for project_path in project_files:
        result = update_project_version(project_path)
        if result is not None:
            updates[get_relative_project_path(project_path, repo_path)] = result
    return updates


def update_manifests():
    """Deprecated entry point kept for old scripts."""
    warnings.warn(
        "update_manifests is deprecated. Use bump_and_register_repo or bump_and_register_org instead.",
        DeprecationWarning,
        stacklevel=2,
    )
    logger.warning("update_manifests is deprecated. Use bump_and_register_repo or bump_and_register_org instead.")


def update_project_tomls():
    """Deprecated entry point kept for old scripts."""
    warnings.warn(
        "update_project_tomls is deprecated. Use bump_and_register_repo or bump_and_register_org instead.",
        DeprecationWarning,
        stacklevel=2,
    )
    logger.warning("update_project_tomls is deprecated. Use bump_and_register_repo or bump_and_register_org instead.")


@dataclass
class RegistrationResult:
    """Packages registered and left unregistered by one repository run."""
    registered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    passes: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {'registered': self.registered, 'failed': self.failed, 'passes': self.passes}
        if self.error:
            result['error'] = self.error
        return result


class VersionBumpingService(MaintenanceService):
    """
    Bumps versions and registers packages for a repository or organization.

    Example:
        service = VersionBumpingService()
        result = service.bump_and_register_repo("/path/to/repo")
        print(result.registered, result.failed)
    """

    def register_package(self, package_dir: str, registry: Optional[str] = None, push: bool = False) -> bool:
        """Register one package directory; True on success."""
        registry = registry or self.config["julia"]["registry"]
        success, output = self.julia.register(package_dir, registry=registry, push=push)
        if success:
            logger.info(f"Successfully registered package at {package_dir}")
        else:
            logger.error(f"Failed to register package at {package_dir}: {output.strip()[-500:]}")
        return success

    def register_packages(
        self,
        package_dirs: List[str],
        registry: Optional[str] = None,
        push: bool = False,
        max_passes: Optional[int] = None
    ) -> RegistrationResult:
        """
        Register packages whose mutual dependencies force an unknown order.

        Each pass tries every package not yet registered. The loop ends when
        a pass registers nothing, or after max_passes passes (defaults to
        the number of packages, enough for any acyclic dependency order).
        """
        registry = registry or self.config["julia"]["registry"]
        max_passes = max_passes if max_passes is not None else max(len(package_dirs), 1)
        result = RegistrationResult()
        registered = set()

        while result.passes < max_passes:
            result.passes += 1
            progress = False
            for package_dir in package_dirs:
                package_name = os.path.basename(os.path.normpath(package_dir))
                if package_name in registered:
                    continue

                logger.info(f"Trying to register {package_name}")
                success, output = self.julia.register(package_dir, registry=registry, push=push)
                if success:
                    registered.add(package_name)
                    result.registered.append(package_name)
                    progress = True
                    logger.info(f"Successfully registered {package_name}")
                else:
                    logger.debug(f"Could not register {package_name} yet: {output.strip()[-300:]}")

            if not progress:
                logger.info("Could not register any more packages")
                break

        result.failed = [
            os.path.basename(os.path.normpath(d)) for d in package_dirs
            if os.path.basename(os.path.normpath(d)) not in registered
        ]
        if result.failed:
            logger.error(
                f"Could not register the following packages: {', '.join(result.failed)} "
                "(missing registry access or a dependency cycle between them)"
            )
        return result

    def bump_and_register_repo(
        self,
        repo_path: str,
        registry: Optional[str] = None,
        push: bool = False
    ) -> RegistrationResult:
        """
        Bump minor versions of all packages in a repository and register them.

        Commits the version bumps when any package was processed.

        Raises:
            FileNotFoundError: if repo_path does not exist
        """
        if not os.path.isdir(repo_path):
            raise FileNotFoundError(f"Repository path does not exist: {repo_path}")

        logger.info(f"Bumping versions for all packages in {repo_path}")
        version_updates = update_project_versions_all(repo_path)
        if not version_updates:
            logger.info("No packages found to update")
            return RegistrationResult()

        result = self.register_packages(find_package_dirs(repo_path), registry=registry, push=push)

        if result.registered or result.failed:
            packages = ", ".join(result.registered + result.failed)
            message = f"Bump minor versions for registration\n\nPackages: {packages}"
            self.git.add_all(repo_path)
            if self.git.commit(
                repo_path,
                message,
                author_name=self.config["git"]["registration_author_name"],
                author_email=self.config["git"]["registration_author_email"],
            ):
                logger.info("Committed version bumps")

        return result

    def register_monorepo_packages(
        self,
        repo_path: str,
        registry: Optional[str] = None,
        push: bool = False
    ) -> RegistrationResult:
        """Register every package of a repository at its current version."""
        if not os.path.isdir(repo_path):
            raise FileNotFoundError(f"Repository path does not exist: {repo_path}")

        package_dirs = find_package_dirs(repo_path)
        if not package_dirs:
            logger.info("No packages found to register")
            return RegistrationResult()

        logger.info(f"Found {len(package_dirs)} packages to register")
        result = self.register_packages(package_dirs, registry=registry, push=push)
        logger.info(f"Registered {len(result.registered)} of {len(package_dirs)} packages")
        return result

    def get_org_repos(self, org: str) -> List[str]:
        """All `owner/name` repositories of an organization (REST listing)."""
        return self.github.list_org_repos_api(org)

    def bump_and_register_org(
        self,
        org: str,
        registry: Optional[str] = None,
        push: bool = False,
        work_dir: Optional[str] = None
    ) -> Optional[Dict[str, RegistrationResult]]:
        """
        Bump and register every Julia repository of an organization.

        Repositories are shallow-cloned one at a time; ones without a root
        Project.toml are skipped. Version bumps are pushed to the default
        branch whenever something was registered or attempted.

        Returns:
            {full_name: RegistrationResult}, or None when the org has no repos
        """
        summary = OperationSummary(operation="bump_and_register")
        self.last_result = summary

        logger.info(f"Fetching repositories for organization: {org}")
        repos = self.get_org_repos(org)
        if not repos:
            logger.warning(f"No repositories found for organization: {org}")
            return None

        logger.info(f"Found {len(repos)} repositories")
        results: Dict[str, RegistrationResult] = {}

        with workspace(work_dir) as base_dir:
            for full_name in repos:
                logger.info(f"Processing repository: {full_name}")
                repo_dir = os.path.join(base_dir, os.path.basename(full_name))
                try:
                    if not self.git.clone(f"https://github.com/{full_name}.git", repo_dir, depth=1):
                        raise RuntimeError("git clone failed")

                    if not os.path.isfile(os.path.join(repo_dir, "Project.toml")):
                        logger.info(f"Skipping {full_name} - no Project.toml found")
                        summary.add_detail(OperationDetail(
                            repo_name=full_name, status=OperationStatus.SKIPPED,
                            action="not_a_package", message="no Project.toml found",
                        ))
                        continue

                    result = self.bump_and_register_repo(repo_dir, registry=registry, push=push)
                    results[full_name] = result

                    if result.registered or result.failed:
                        branch = self.git.default_branch(repo_dir)
                        pushed, output = self.git.push(repo_dir, "origin", branch)
                        if not pushed:
                            raise RuntimeError(f"git push failed: {output}")

                    summary.add_detail(OperationDetail(
                        repo_name=full_name,
                        status=OperationStatus.FAILED if result.failed else OperationStatus.SUCCESS,
                        action="registered",
                        message=f"registered: {', '.join(result.registered) or 'none'}",
                        error=f"failed: {', '.join(result.failed)}" if result.failed else None,
                        metadata=result.to_dict(),
                    ))
                except Exception as e:
                    logger.error(f"Failed to process {full_name}: {e}")
                    results[full_name] = RegistrationResult(error=str(e))
                    summary.add_detail(OperationDetail(
                        repo_name=full_name, status=OperationStatus.FAILED,
                        action="error", error=str(e),
                    ))
                finally:
                    if os.path.isdir(repo_dir):
                        shutil.rmtree(repo_dir, ignore_errors=True)

        return results
