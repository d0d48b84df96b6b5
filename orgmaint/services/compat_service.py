"""
Compat bumping service for orgmaint.

Finds dependencies whose latest registered release is a new major
version beyond the `[compat]` bound, widens the bound, re-resolves the
manifest, runs the package tests and opens a pull request from a fork
when the tests pass.
"""

import logging
import os
import shutil
import time
from typing import List, Optional, Tuple

from ..domain.operation import OperationDetail, OperationStatus, OperationSummary
from ..domain.project import CompatUpdate
from ..infra.github_client import parse_repo_url
from ..project_utils import read_project, write_project
from ..registry import get_latest_package_version, parse_version
from ..utils import RunLog, github_clone_url, workspace
from .base import MaintenanceService

logger = logging.getLogger(__name__)

COMPAT_FOOTER = "🤖 Generated by orgmaint"


def parse_compat_upper_bound(compat_spec: str) -> str:
    """
    Upper bound of a compat specifier.

    "1.5, 2" -> "2", "^1.5" -> "1.5", "1.0-2.0" -> "2.0", "0.3" -> "0.3"
    """
    spec = compat_spec.replace(" ", "")
    if "," in spec:
        return spec.split(",")[-1]
    if spec.startswith("^") or spec.startswith("~"):
        return spec[1:]
    if "-" in spec:
        return spec.split("-")[-1]
    return spec


def is_major_version_update(current_compat: str, latest_version: str) -> bool:
    """True if latest_version has a higher major than the compat upper bound."""
    upper = parse_version(parse_compat_upper_bound(current_compat))
    latest = parse_version(latest_version)
    if upper is None or latest is None:
        return False
    return latest.major > upper.major


def bump_compat_entry(project_path: str, package_name: str, new_version: str) -> str:
    """
    Set a compat entry to the major series of new_version.

    Returns:
        The new compat string

    Raises:
        KeyError: if the package has no compat entry
    """
    project = read_project(project_path)
    compat = project.get("compat", {})
    if package_name not in compat:
        raise KeyError(f"Package {package_name} not found in compat section")

    new_compat = str(parse_version(new_version).major)
    compat[package_name] = new_compat
    write_project(project_path, project)

    logger.info(f"Updated {package_name} compat to {new_compat}")
    return new_compat


def compat_commit_message(bumped: List[str]) -> str:
    if len(bumped) == 1:
        return (
            f"CompatHelper: bump compat for {bumped[0]}\n\n"
            f"- Bumped {bumped[0]} to allow latest major version\n"
            "- Tests pass with updated dependency\n\n"
            f"{COMPAT_FOOTER}\n"
        )
    listing = "\n".join(f"- {pkg}" for pkg in bumped)
    return (
        "CompatHelper: bump compat for multiple packages\n\n"
        f"Bumped compat for:\n{listing}\n\n"
        "All tests pass with updated dependencies.\n\n"
        f"{COMPAT_FOOTER}\n"
    )


def compat_pr_title(bumped: List[str]) -> str:
    if len(bumped) == 1:
        return f"CompatHelper: bump compat for {bumped[0]} to latest major version"
    return f"CompatHelper: bump compat for {len(bumped)} packages"


def compat_pr_body(bumped: List[str]) -> str:
    listing = "\n".join(f"- **{pkg}**" for pkg in bumped)
    return (
        "## Summary\n"
        "This PR updates compat entries to allow the latest major versions of dependencies.\n\n"
        f"### Updated packages:\n{listing}\n\n"
        "## Testing\n"
        "✅ All tests pass with the updated dependencies\n\n"
        "## Notes\n"
        "- The compat entries have been updated to allow the latest major versions\n"
        "- The Manifest.toml has been updated accordingly\n\n"
        f"{COMPAT_FOOTER}\n"
    )


class CompatBumpService(MaintenanceService):
    """
    Bumps compat entries to new major releases of dependencies.

    Example:
        service = CompatBumpService()
        ok, message, pr_url, bumped = service.bump_compat_and_test(
            "/path/to/Foo.jl", bump_all=True, fork_user="me")
    """

    def get_latest_package_version(self, package_name: str) -> Optional[str]:
        return get_latest_package_version(package_name, self.general_registry)

    def get_available_compat_updates(self, project_path: str) -> List[CompatUpdate]:
        """
        Compat entries that exclude the latest registered major version.

        Raises:
            FileNotFoundError: if project_path does not exist
        """
        if not os.path.isfile(project_path):
            raise FileNotFoundError(f"Project.toml not found at {project_path}")

        project = read_project(project_path)
        compat = project.get("compat")
        if not compat:
            logger.info(f"No compat section found in {project_path}")
            return []

        if not self.general_registry.is_dir():
            logger.warning(
                f"Registry not found at {self.general_registry}; "
                "clone it or run `Pkg.Registry.update()` first"
            )

        updates = []
        for pkg_name, compat_spec in compat.items():
            if pkg_name == "julia":
                continue
            latest = self.get_latest_package_version(pkg_name)
            if latest is None:
                continue
            if is_major_version_update(compat_spec, latest):
                updates.append(CompatUpdate(
                    package_name=pkg_name,
                    current_compat=compat_spec,
                    latest_version=parse_version(latest),
                    is_major_update=True,
                ))
        return updates

    def run_package_tests(self, repo_path: str, timeout_minutes: Optional[int] = None) -> bool:
        """Instantiate and run the package tests; False on failure or timeout."""
        timeout_minutes = timeout_minutes or self.config["julia"]["test_timeout_minutes"]
        output, code = self.julia.test(repo_path, timeout_minutes=timeout_minutes)
        if code == -1:
            logger.warning(f"Tests timed out after {timeout_minutes} minutes")
        elif code != 0:
            logger.warning(f"Tests failed in {repo_path}")
            logger.debug(output[-2000:])
        return code == 0

    def create_compat_pr(self, repo_path: str, bumped: List[str], fork_user: str) -> Optional[str]:
        """Push the current branch to the fork and open a PR upstream."""
        remote_url = self.git.remote_url(repo_path, "origin")
        org, repo = parse_repo_url(remote_url or "")
        if not org:
            logger.error("Could not parse repository URL")
            return None

        branch = self.git.current_branch(repo_path)
        self.git.add_remote(repo_path, "fork", f"https://github.com/{fork_user}/{repo}.git")
        pushed, output = self.git.push(repo_path, "fork", branch, force=True)
        if not pushed:
            logger.error(f"Failed to push to fork: {output}")
            return None

        pr_url, error = self.github.create_pr(
            compat_pr_title(bumped),
            compat_pr_body(bumped),
            full_name=f"{org}/{repo}",
            head=f"{fork_user}:{branch}",
        )
        if pr_url is None:
            logger.error(f"Failed to create PR: {error.strip()}")
        return pr_url

    def bump_compat_and_test(
        self,
        repo_path: str,
        package_name: Optional[str] = None,
        bump_all: bool = False,
        create_pr: bool = True,
        fork_user: str = ""
    ) -> Tuple[bool, str, Optional[str], List[str]]:
        """
        Bump compat entries for major updates and test the result.

        Only the first available update is applied unless bump_all is set.

        Returns:
            (success, message, pr_url, bumped_packages)
        """
        if create_pr and not fork_user:
            return False, "fork_user must be provided when create_pr=true", None, []

        project_path = os.path.join(repo_path, "Project.toml")
        if not os.path.isfile(project_path):
            return False, "Project.toml not found in repository", None, []

        updates = self.get_available_compat_updates(project_path)
        if not updates:
            return True, "No major version updates available", None, []

        if package_name is not None:
            updates = [u for u in updates if u.package_name == package_name]
            if not updates:
                return False, f"No major version update available for {package_name}", None, []

        to_apply = updates if bump_all else updates[:1]

        if self.git.current_branch(repo_path) in ("main", "master"):
            branch = "compat-bump-" + "-".join(u.package_name for u in to_apply)
            self.git.create_branch(repo_path, branch)

        bumped = []
        for update in to_apply:
            logger.info(
                f"Bumping compat for {update.package_name} from {update.current_compat} "
                f"to allow {update.latest_version}"
            )
            try:
                bump_compat_entry(project_path, update.package_name, str(update.latest_version))
                bumped.append(update.package_name)
            except (KeyError, OSError) as e:
                logger.error(f"Failed to bump {update.package_name}: {e}")

        if not bumped:
            return False, "Failed to bump any packages", None, []

        if not self.julia.update(repo_path):
            logger.warning("Failed to update manifest")

        logger.info("Running tests...")
        if not self.run_package_tests(repo_path):
            logger.warning("Tests failed after bumping compat")
            return False, "Tests failed after bumping compat", None, bumped

        logger.info("Tests passed!")

        files = [f for f in ("Project.toml", "Manifest.toml") if os.path.isfile(os.path.join(repo_path, f))]
        self.git.add(repo_path, files)
        name, email = self.bot_identity
        self.git.set_identity(repo_path, name, email)
        self.git.commit(repo_path, compat_commit_message(bumped), author_name=name, author_email=email)

        pr_url = None
        if create_pr:
            pr_url = self.create_compat_pr(repo_path, bumped, fork_user)

        return True, "Successfully bumped compat and tests passed", pr_url, bumped

    def bump_compat_org_repositories(
        self,
        org: str = "SciML",
        package_name: Optional[str] = None,
        bump_all: bool = False,
        create_pr: bool = True,
        fork_user: str = "",
        limit: int = 100,
        log_file: Optional[str] = None,
        work_dir: Optional[str] = None
    ) -> Tuple[List[str], List[str], List[str]]:
        """
        Bump compat entries across an organization's Julia repositories.

        Returns:
            (successes, failures, pr_urls)
        """
        summary = OperationSummary(operation="compat_bump")
        self.last_result = summary

        if create_pr and not fork_user:
            fork_user = self.github.current_user() or ""
            if not fork_user:
                logger.error("fork_user must be provided when create_pr=true")
                summary.errors.append("fork_user must be provided when create_pr=true")
                return [], [], []

        repos = self.github.list_julia_repos(org, limit=limit)
        logger.info(f"Found {len(repos)} Julia repositories in {org}")

        log_path = log_file or RunLog.default_path(
            self.config["general"]["log_dir"], "compat_bump_logs", "compat_bump", org)
        delay = self.config["general"]["rate_limit_delay"]
        successes, failures = [], []

        with workspace(work_dir) as base_dir, RunLog(log_path, "Compat Bump", org, len(repos)) as run_log:
            run_log.note(f"# Target package: {package_name or 'all'}")
            run_log.note(f"# Bump all: {bump_all}")

            for i, repo in enumerate(repos, 1):
                logger.info(f"Processing repository {repo} ({i}/{len(repos)})")
                detail = self._bump_one(
                    org, repo, base_dir, package_name, bump_all, create_pr, fork_user)
                summary.add_detail(detail)
                run_log.entry(i, detail)

                if detail.status == OperationStatus.SUCCESS:
                    successes.append(repo)
                elif detail.status == OperationStatus.FAILED:
                    failures.append(repo)

                if i < len(repos):
                    time.sleep(delay)

            run_log.summary(summary)

        logger.info(
            f"Organization compat bumping complete: {len(successes)} succeeded, "
            f"{len(failures)} failed, {len(summary.pr_urls)} PRs"
        )
        return successes, failures, list(summary.pr_urls)

    def _bump_one(
        self, org, repo, base_dir, package_name, bump_all, create_pr, fork_user
    ) -> OperationDetail:
        repo_path = os.path.join(base_dir, repo)
        try:
            if not self.git.clone(github_clone_url(org, repo), repo_path):
                return OperationDetail(
                    repo_name=repo, status=OperationStatus.FAILED,
                    action="clone_failed", error="Failed to clone repository")

            if not os.path.isfile(os.path.join(repo_path, "Project.toml")):
                return OperationDetail(
                    repo_name=repo, status=OperationStatus.SKIPPED,
                    action="not_a_package", message="Not a Julia package (no Project.toml)")

            success, message, pr_url, bumped = self.bump_compat_and_test(
                repo_path, package_name=package_name, bump_all=bump_all,
                create_pr=create_pr, fork_user=fork_user)

            if success and bumped:
                return OperationDetail(
                    repo_name=repo, status=OperationStatus.SUCCESS, action="compat_bumped",
                    message=f"{message} (bumped: {', '.join(bumped)})", pr_url=pr_url,
                    metadata={'bumped': bumped})
            if success:
                return OperationDetail(
                    repo_name=repo, status=OperationStatus.SKIPPED,
                    action="no_updates", message=message)
            return OperationDetail(
                repo_name=repo, status=OperationStatus.FAILED,
                action="compat_bump_failed", error=message, metadata={'bumped': bumped})
        except Exception as e:
            logger.error(f"Error processing {repo}: {e}")
            return OperationDetail(
                repo_name=repo, status=OperationStatus.FAILED, action="error", error=str(e))
        finally:
            shutil.rmtree(repo_path, ignore_errors=True)
