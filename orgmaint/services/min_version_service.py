"""
Minimum version fixing service for orgmaint.

Downgrade CI resolves every dependency at the lowest version its
`[compat]` entry admits. When that resolution fails this service raises
the lower bounds of the dependencies implicated by the resolver output,
keeping any upper bound, and retries until resolution succeeds.
"""

import logging
import os
import re
import shutil
import tempfile
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..domain.operation import OperationDetail, OperationStatus, OperationSummary
from ..infra.julia_client import JuliaClient, julia_string
from ..project_utils import read_project, write_project
from ..registry import get_latest_package_version, parse_version
from ..utils import timestamp, workspace
from .base import MaintenanceService

logger = logging.getLogger(__name__)

OUTDATED_COMPAT_RE = re.compile(r"^[\^~]?(\d+)\.(\d+)")
MAJOR_MINOR_RE = re.compile(r"(\d+)\.(\d+)")

# Resolves every dependency of ARGS[1] at its compat minimum in a scratch
# environment. Exits non-zero and prints the resolver error on failure.
MIN_VERSION_RESOLVE_SCRIPT = """
using Pkg, TOML

project_file = ARGS[1]
project = TOML.parsefile(project_file)
deps = get(project, "deps", Dict())
mins = Dict{String,String}({mins})

env = mktempdir()
try
    Pkg.activate(env; io=devnull)
    for (name, _) in deps
        if haskey(mins, name)
            try
                Pkg.add(Pkg.PackageSpec(name=name, version=mins[name]))
            catch
                Pkg.add(Pkg.PackageSpec(name=name, version=">=" * mins[name]))
            end
        else
            Pkg.add(name)
        end
    end
    Pkg.resolve()
    Pkg.instantiate()
    println("Successfully resolved minimum versions")
catch e
    showerror(stdout, e)
    println()
    exit(1)
end
"""


def extract_min_version_from_compat(compat_spec: str) -> Optional[str]:
    """
    Lowest version a compat entry admits, padded to MAJOR.MINOR.PATCH.

    "^1.2" -> "1.2.0", "1.2, 2" -> "1.2.0", "1.2-1.5" -> "1.2.0", "" -> None
    """
    if not compat_spec:
        return None

    spec = compat_spec.strip().lstrip("^~")
    if "," in spec:
        spec = spec.split(",")[0].strip()
    if "-" in spec:
        spec = spec.split("-")[0].strip()

    parts = spec.split(".")
    if len(parts) == 1:
        spec += ".0.0"
    elif len(parts) == 2:
        spec += ".0"

    version = parse_version(spec)
    if version is None:
        return None
    return str(version)


def is_outdated_compat(compat_spec: str, package_name: str = "") -> bool:
    """True for missing entries and very old 0.x lower bounds (below 0.5)."""
    if not compat_spec:
        return True
    match = OUTDATED_COMPAT_RE.match(compat_spec.strip())
    if match:
        major, minor = int(match.group(1)), int(match.group(2))
        if major == 0 and minor < 5:
            return True
    return False


def bump_compat_version(compat_spec: str, package_name: str = "") -> str:
    """
    Conservative bump of a compat lower bound.

    0.x moves to the next minor, stable series keep their major at .0.
    Unparsable entries are returned unchanged.
    """
    match = MAJOR_MINOR_RE.search(compat_spec)
    if match is None:
        return compat_spec
    major, minor = int(match.group(1)), int(match.group(2))
    if major == 0:
        return f"0.{minor + 1}"
    return f"{major}.0"


def update_compat(project: Dict, updates: Dict[str, str]) -> None:
    """
    Apply new lower bounds to a parsed project in place.

    Comma lists and dash ranges keep their upper bounds; everything else
    is replaced outright.
    """
    compat = project.setdefault("compat", {})
    for pkg, new_min in updates.items():
        current = compat.get(pkg, "")
        if "," in current:
            parts = current.split(",")
            parts[0] = f" {new_min}"
            compat[pkg] = ",".join(parts)
        elif "-" in current:
            upper = current.split("-")[1]
            compat[pkg] = f"{new_min}-{upper}"
        else:
            compat[pkg] = new_min
        logger.info(f"Updated {pkg}: {current} → {compat[pkg]}")


def parse_resolution_errors(output: str, project: Dict) -> List[str]:
    """
    Dependencies implicated by a failed resolution.

    Any declared dependency named in the output counts. If none is named,
    every outdated compat entry (other than julia) is blamed instead.
    """
    problematic = [name for name in project.get("deps", {}) if name in output]
    if problematic:
        return sorted(problematic)

    return sorted(
        name for name, spec in project.get("compat", {}).items()
        if name != "julia" and is_outdated_compat(spec, name)
    )


def min_versions_pr_body(updates: Dict[str, str]) -> str:
    rows = "\n".join(f"| {pkg} | {ver} |" for pkg, ver in sorted(updates.items()))
    return (
        "## Summary\n\n"
        "This PR fixes the minimum version bounds in the `[compat]` section to ensure "
        "all minimum versions can be successfully resolved by Pkg.\n\n"
        "## Changes\n\n"
        "The following minimum versions were updated:\n\n"
        "| Package | New Minimum Version |\n"
        "|---------|-------------------|\n"
        f"{rows}\n\n"
        "## Testing\n\n"
        "These changes were determined by:\n"
        "1. Resolving every dependency at its minimum compat version\n"
        "2. Identifying packages that failed to resolve at their minimum versions\n"
        "3. Bumping those packages to known-working minimum versions\n"
        "4. Repeating until all packages resolve successfully\n\n"
        "This ensures the package will pass the Downgrade CI tests.\n"
    )


class MinVersionService(MaintenanceService):
    """
    Raises compat lower bounds until minimum versions resolve.

    Example:
        service = MinVersionService()
        changed, updates = service.fix_package_min_versions("/path/to/Foo.jl")
    """

    def get_smart_min_version(self, package_name: str, current_compat: str) -> str:
        """
        New lower bound for a dependency.

        Uses the latest registered release: the exact version for 0.x,
        `major.0` otherwise. Falls back to bump_compat_version when the
        package is not in the local registry.
        """
        latest = parse_version(
            get_latest_package_version(package_name, self.general_registry) or "")
        if latest is not None:
            if latest.major == 0:
                return str(latest)
            return f"{latest.major}.0"
        return bump_compat_version(current_compat, package_name)

    def _julia_for(self, julia_version: Optional[str]) -> JuliaClient:
        if julia_version and self.config["julia"].get("juliaup"):
            return JuliaClient(executable=self.julia.executable, channel=julia_version)
        return self.julia

    def test_min_versions(self, project_dir: str, julia_version: Optional[str] = None) -> Tuple[bool, str]:
        """
        Try to resolve all dependencies at their compat minimums.

        Returns:
            (success, resolver output)
        """
        project_file = os.path.join(project_dir, "Project.toml")
        if not os.path.isfile(project_file):
            return False, f"No Project.toml found in {project_dir}"

        project = read_project(project_file)
        mins = {}
        for name in project.get("deps", {}):
            min_version = extract_min_version_from_compat(project.get("compat", {}).get(name, ""))
            if min_version:
                mins[name] = min_version

        pairs = ", ".join(f"{julia_string(k)} => {julia_string(v)}" for k, v in sorted(mins.items()))
        script = MIN_VERSION_RESOLVE_SCRIPT.replace("{mins}", pairs)

        with tempfile.TemporaryDirectory(prefix="orgmaint_minver_") as tmp:
            script_path = Path(tmp) / "resolve_min_versions.jl"
            script_path.write_text(script)
            output, code = self._julia_for(julia_version).run_script(
                str(script_path), flags=("--startup-file=no",), cwd=tmp,
                args=(os.path.abspath(project_file),))
        return code == 0, output

    def fix_package_min_versions(
        self,
        repo_path: str,
        max_iterations: int = 10,
        julia_version: Optional[str] = None
    ) -> Tuple[bool, Dict[str, str]]:
        """
        Iteratively raise lower bounds until minimum versions resolve.

        Returns:
            (changed, {package: new_lower_bound})
        """
        project_file = os.path.join(repo_path, "Project.toml")
        if not os.path.isfile(project_file):
            logger.warning(f"No Project.toml found in {repo_path}")
            return False, {}

        project = read_project(project_file)
        package_name = project.get("name", os.path.basename(repo_path))
        julia_version = julia_version or self.config["julia"]["julia_version"]
        logger.info(f"Fixing minimum versions for {package_name}")

        total_updates: Dict[str, str] = {}
        for iteration in range(1, max_iterations + 1):
            logger.info(f"Iteration {iteration}/{max_iterations}")

            success, output = self.test_min_versions(repo_path, julia_version)
            if success:
                logger.info("✓ Minimum versions resolved successfully!")
                break

            logger.info("Resolution failed, analyzing...")
            problematic = parse_resolution_errors(output, project)
            if not problematic:
                logger.warning("Could not identify problematic packages")
                break

            logger.info(f"Found problematic packages: {', '.join(problematic)}")
            compat = project.get("compat", {})
            updates = {}
            for pkg in problematic:
                if pkg in total_updates:
                    continue
                current = compat.get(pkg, "")
                new_min = self.get_smart_min_version(pkg, current)
                if new_min != current:
                    updates[pkg] = new_min
                    total_updates[pkg] = new_min

            if not updates:
                logger.info("No more updates to apply")
                break

            update_compat(project, updates)
            write_project(project_file, project)

        return bool(total_updates), total_updates

    def fix_repo_min_versions(
        self,
        repo_name: str,
        work_dir: Optional[str] = None,
        max_iterations: int = 10,
        create_pr: bool = True,
        julia_version: Optional[str] = None
    ) -> bool:
        """
        Clone `owner/name`, fix its minimum versions and open a PR.

        Returns:
            True when bounds were changed and committed
        """
        with workspace(work_dir) as base_dir:
            repo_dir = os.path.join(base_dir, repo_name.replace("/", "_"))
            logger.info(f"Cloning {repo_name}...")
            if not self.git.clone(f"https://github.com/{repo_name}.git", repo_dir):
                raise RuntimeError(f"Failed to clone {repo_name}")

            try:
                default_branch = self.git.default_branch(repo_dir)
                self.git.checkout(repo_dir, default_branch)
                self.git.create_branch(repo_dir, f"fix-min-versions-{timestamp('%Y%m%d-%H%M%S')}")

                changed, updates = self.fix_package_min_versions(
                    repo_dir, max_iterations=max_iterations, julia_version=julia_version)
                if not changed:
                    logger.info(f"No changes needed for {repo_name}")
                    return False

                listing = "\n".join(f"- {pkg}: → {ver}" for pkg, ver in sorted(updates.items()))
                message = (
                    "Fix minimum version compatibility bounds\n\n"
                    "This commit updates the minimum version bounds in [compat] to ensure\n"
                    "they can be resolved by the package manager. The following packages\n"
                    f"were updated:\n\n{listing}\n"
                )
                self.git.add(repo_dir, ["Project.toml"])
                name, email = self.bot_identity
                if not self.git.commit(repo_dir, message, author_name=name, author_email=email):
                    raise RuntimeError("git commit failed")

                if create_pr:
                    logger.info("Creating pull request...")
                    pushed, output = self.git.push(repo_dir, "origin", "HEAD", set_upstream=True)
                    if not pushed:
                        raise RuntimeError(f"git push failed: {output}")
                    pr_url, error = self.github.create_pr(
                        "Fix minimum version compatibility bounds",
                        min_versions_pr_body(updates),
                        cwd=repo_dir,
                    )
                    if pr_url:
                        logger.info(f"✓ Pull request created successfully! {pr_url}")
                    else:
                        logger.warning(f"Failed to create PR automatically: {error.strip()}")
                        logger.info("You can create it manually with the branch that was pushed")

                return True
            finally:
                if work_dir:
                    shutil.rmtree(repo_dir, ignore_errors=True)

    def fix_org_min_versions(
        self,
        org: str,
        work_dir: Optional[str] = None,
        max_iterations: int = 10,
        create_prs: bool = True,
        skip_repos: Optional[List[str]] = None,
        only_repos: Optional[List[str]] = None,
        julia_version: Optional[str] = None
    ) -> Dict[str, bool]:
        """
        Fix minimum versions across an organization's Julia packages.

        Args:
            skip_repos: Substrings; repositories containing any are skipped
            only_repos: Process exactly these repository names instead of listing

        Returns:
            {owner/name: fixed}
        """
        summary = OperationSummary(operation="min_versions")
        self.last_result = summary

        if only_repos is not None:
            repos = [f"{org}/{repo}" for repo in only_repos]
        else:
            logger.info(f"Fetching repositories for organization: {org}")
            repos = [f"{org}/{name}" for name in self.github.list_julia_repos_detailed(org, limit=1000)]

        skip_repos = skip_repos or []
        repos = [r for r in repos if not any(skip in r for skip in skip_repos)]
        logger.info(f"Found {len(repos)} Julia repositories to process")

        delay = self.config["general"]["rate_limit_delay"]
        results: Dict[str, bool] = {}
        for i, repo in enumerate(repos, 1):
            logger.info("=" * 60)
            logger.info(f"Processing repository {i}/{len(repos)}: {repo}")
            logger.info("=" * 60)
            try:
                results[repo] = self.fix_repo_min_versions(
                    repo, work_dir=work_dir, max_iterations=max_iterations,
                    create_pr=create_prs, julia_version=julia_version)
                summary.add_detail(OperationDetail(
                    repo_name=repo,
                    status=OperationStatus.SUCCESS if results[repo] else OperationStatus.SKIPPED,
                    action="min_versions_fixed" if results[repo] else "no_changes",
                ))
            except Exception as e:
                logger.error(f"Failed to process {repo}: {e}")
                results[repo] = False
                summary.add_detail(OperationDetail(
                    repo_name=repo, status=OperationStatus.FAILED, action="error", error=str(e)))

            if i < len(repos):
                time.sleep(delay)

        logger.info("=" * 60)
        logger.info("SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Successfully processed: {sum(results.values())}/{len(results)}")
        fixed = [repo for repo, ok in results.items() if ok]
        if fixed:
            logger.info("Repositories with fixes:")
            for repo in fixed:
                logger.info(f"  ✓ {repo}")
        unfixed = [repo for repo, ok in results.items() if not ok]
        if unfixed:
            logger.info("Repositories that failed or needed no changes:")
            for repo in unfixed:
                logger.info(f"  ✗ {repo}")

        return results
