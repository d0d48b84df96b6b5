"""
Documentation cleanup service for orgmaint.

Documenter deployments accumulate one directory per release plus `dev/`
and preview builds on the `gh-pages` branch. Plot-heavy tutorials make
these large. This service removes every version directory except the
latest release, commits on `gh-pages` and compacts the repository.

The commit rewrites what the published site serves; publishing it
requires `git push --force origin gh-pages`, which is left to the user.
"""

import logging
import os
import re
import shutil
from typing import List, Optional, Sequence, Tuple

from packaging.version import Version

from ..domain.project import BloatAnalysis, CleanupResult
from ..infra.github_client import repo_name_from_url
from ..utils import workspace
from .base import MaintenanceService

logger = logging.getLogger(__name__)

GH_PAGES = "gh-pages"
VERSION_DIR_RE = re.compile(r"^v\d+\.\d+\.\d+$")
MB = 1024 * 1024

LargeFile = Tuple[str, float]


def find_all_versions(path: str) -> List[str]:
    """`vX.Y.Z` directories under path, newest first."""
    versions = [
        item for item in os.listdir(path)
        if os.path.isdir(os.path.join(path, item)) and VERSION_DIR_RE.match(item)
    ]
    return sorted(versions, key=lambda v: Version(v[1:]), reverse=True)


def find_latest_version(path: str) -> Optional[str]:
    versions = find_all_versions(path)
    return versions[0] if versions else None


def find_old_versions(path: str, preserve_version: Optional[str] = None) -> List[str]:
    """Version directories other than preserve_version, plus dev and preview builds."""
    old = []
    for item in sorted(os.listdir(path)):
        if not os.path.isdir(os.path.join(path, item)) or os.path.islink(os.path.join(path, item)):
            continue
        if VERSION_DIR_RE.match(item):
            if item != preserve_version:
                old.append(item)
        elif item in ("dev", "previews") or item.startswith("preview"):
            old.append(item)
    return old


def directory_stats(path: str) -> Tuple[int, int]:
    """(file count, total bytes) of a directory tree, not following links."""
    files = size = 0
    for root, _, names in os.walk(path):
        for name in names:
            files += 1
            try:
                size += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return files, size


def generate_analysis_report(large_files: Sequence[LargeFile], versions: Sequence[str]) -> str:
    lines = [
        "Documentation Bloat Analysis",
        "=" * 30,
        f"Total versions found: {len(versions)}",
        f"Large files (>1MB): {len(large_files)}",
    ]
    if large_files:
        total = sum(size for _, size in large_files)
        lines += [f"Total size of large files: {total:.1f} MB", "", "Largest files:"]
        for path, size in sorted(large_files, key=lambda f: f[1], reverse=True)[:10]:
            lines.append(f"  {size:.1f} MB - {path}")
    return "\n".join(lines)


class DocsCleanupService(MaintenanceService):
    """
    Shrinks gh-pages branches.

    Example:
        service = DocsCleanupService()
        result = service.cleanup_gh_pages_docs("/path/to/repo", dry_run=True)
        print(f"Would save {result.size_saved_mb:.1f} MB")
    """

    def find_large_files(self, repo_path: str, threshold_mb: float) -> List[LargeFile]:
        """Objects reachable from HEAD larger than threshold_mb, as (path, size_mb)."""
        threshold = threshold_mb * MB
        large = []
        for sha, path in self.git.list_objects(repo_path):
            size = self.git.object_size(repo_path, sha)
            if size > threshold:
                large.append((path, size / MB))
        return large

    def _validate(self, repo_path: str) -> None:
        if not os.path.isdir(repo_path):
            raise ValueError(f"Repository path does not exist: {repo_path}")
        if not self.git.is_git_repo(repo_path):
            raise ValueError(f"Not a Git repository: {repo_path}")

    def cleanup_gh_pages_docs(
        self,
        repo_path: str,
        preserve_latest: bool = True,
        dry_run: bool = False,
        size_threshold_mb: float = 5.0
    ) -> CleanupResult:
        """
        Remove old documentation versions from the gh-pages branch.

        Args:
            repo_path: Local clone
            preserve_latest: Keep the newest `vX.Y.Z` directory
            dry_run: Report what would be removed without touching anything
            size_threshold_mb: Large files above this size are listed in the log

        Returns:
            CleanupResult; a repository without gh-pages gives an empty success

        Raises:
            ValueError: missing path or not a git repository
        """
        self._validate(repo_path)

        if not self.git.branch_exists(repo_path, GH_PAGES):
            logger.warning("No gh-pages branch found in repository")
            return CleanupResult(dry_run=dry_run)

        original_branch = self.git.current_branch(repo_path)
        try:
            if not self.git.checkout(repo_path, GH_PAGES):
                raise RuntimeError("Could not check out gh-pages")

            latest = find_latest_version(repo_path) if preserve_latest else None
            if latest:
                logger.info(f"Preserving latest version: {latest}")

            old_versions = find_old_versions(repo_path, latest)
            large_files = self.find_large_files(repo_path, size_threshold_mb)

            files_removed = size = 0
            for version in old_versions:
                count, nbytes = directory_stats(os.path.join(repo_path, version))
                files_removed += count
                size += nbytes

            in_old = [f for f in large_files if any(f[0].startswith(v + "/") for v in old_versions)]
            for path, size_mb in in_old:
                logger.info(f"  large file: {path} ({size_mb:.1f} MB)")

            result = CleanupResult(
                files_removed=files_removed,
                dirs_removed=len(old_versions),
                size_saved_mb=size / MB,
                versions_cleaned=old_versions,
                preserved_version=latest,
                dry_run=dry_run,
            )

            if dry_run:
                logger.info("DRY RUN - Would remove:")
                logger.info(f"  {files_removed} files ({result.size_saved_mb:.1f} MB)")
                logger.info(f"  {len(old_versions)} old version directories")
                for version in old_versions:
                    logger.info(f"    - {version}/")
                return result

            for version in old_versions:
                shutil.rmtree(os.path.join(repo_path, version))
                logger.info(f"Removed directory: {version}")

            if files_removed > 0:
                preserved = f"Preserved: {latest}" if preserve_latest else "Removed all versions"
                message = (
                    "Clean up old documentation versions and large files\n\n"
                    f"Removed {files_removed} files ({result.size_saved_mb:.1f} MB)\n"
                    f"{preserved}\n\n"
                    "Auto-generated cleanup to reduce repository size."
                )
                name, email = self.bot_identity
                self.git.add_all(repo_path)
                if not self.git.commit(repo_path, message, author_name=name, author_email=email):
                    raise RuntimeError("git commit failed")
                self.git.gc_aggressive(repo_path)
                logger.warning("Run `git push --force origin gh-pages` to publish the cleanup")

            return result

        except Exception as e:
            logger.error(f"Cleanup failed: {e}")
            return CleanupResult(success=False, error_message=str(e), dry_run=dry_run)

        finally:
            if original_branch and not self.git.checkout(repo_path, original_branch):
                logger.warning(f"Could not restore original branch: {original_branch}")

    def analyze_gh_pages_bloat(self, repo_path: str) -> BloatAnalysis:
        """Large files (>1 MB) and version directories on gh-pages, without changes."""
        self._validate(repo_path)
        if not self.git.branch_exists(repo_path, GH_PAGES):
            return BloatAnalysis(analysis="No gh-pages branch")

        original_branch = self.git.current_branch(repo_path)
        try:
            if not self.git.checkout(repo_path, GH_PAGES):
                raise RuntimeError("Could not check out gh-pages")
            large_files = self.find_large_files(repo_path, 1.0)
            versions = find_all_versions(repo_path)
            return BloatAnalysis(
                total_size_mb=sum(size for _, size in large_files),
                large_files=large_files,
                versions=versions,
                latest_version=versions[0] if versions else None,
                analysis=generate_analysis_report(large_files, versions),
            )
        finally:
            if original_branch:
                self.git.checkout(repo_path, original_branch)

    def cleanup_org_gh_pages_docs(
        self,
        repo_urls: Sequence[str],
        preserve_latest: bool = True,
        dry_run: bool = False,
        size_threshold_mb: float = 5.0,
        working_dir: Optional[str] = None
    ) -> List[CleanupResult]:
        """Clone (if needed) and clean each repository in turn."""
        results = []
        with workspace(working_dir) as base_dir:
            for url in repo_urls:
                name = repo_name_from_url(url)
                repo_path = os.path.join(base_dir, name)
                logger.info(f"Processing repository: {name}")
                try:
                    if not os.path.isdir(repo_path) and not self.git.clone(url, repo_path):
                        raise RuntimeError(f"Failed to clone {url}")
                    result = self.cleanup_gh_pages_docs(
                        repo_path, preserve_latest=preserve_latest,
                        dry_run=dry_run, size_threshold_mb=size_threshold_mb)
                except Exception as e:
                    logger.error(f"Failed to process repository {name}: {e}")
                    result = CleanupResult(success=False, error_message=str(e), dry_run=dry_run)

                result.repository = name
                result.repo_url = url
                results.append(result)
                if result.success and result.size_saved_mb > 0:
                    verb = "would be saved" if dry_run else "saved"
                    logger.info(f"Repository {name}: {result.size_saved_mb:.1f} MB {verb}")
        return results
