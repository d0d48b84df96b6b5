"""
Version check finder service for orgmaint.

Scans Julia sources for `VERSION` comparisons against releases older
than the minimum supported Julia version. Such checks are always true
(or always false) on every supported Julia and can be deleted. Findings
can be printed, written out as a Julia script, or handed to an external
coding agent that removes them and opens pull requests.
"""

import logging
import os
import re
import shlex
import shutil
import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from packaging.version import InvalidVersion, Version

from ..domain.operation import OperationDetail, OperationStatus, OperationSummary
from ..domain.project import VersionCheck
from ..project_utils import is_subpackage
from ..utils import timestamp, workspace
from .base import MaintenanceService

logger = logging.getLogger(__name__)

VERSION_PATTERNS = [
    re.compile(r'VERSION\s*([><=]+)\s*v"([0-9]+(?:\.[0-9]+)*)"', re.IGNORECASE),
    re.compile(r'VERSION\s*([><=]+)\s*v([0-9]+(?:\.[0-9]+)*)', re.IGNORECASE),
    re.compile(r'VERSION\s*([><=]+)\s*VersionNumber\("([0-9]+(?:\.[0-9]+)*)"\)', re.IGNORECASE),
]

# Comparisons that are constant on every Julia at or above the minimum
OBSOLETE_OPERATORS = (">=", ">", "==")

SKIP_DIRS = {"node_modules", "vendor", "build", "dist"}

RepoChecks = Dict[str, List[VersionCheck]]

AGENT_PROMPT = """\
This Julia repository supports Julia {min_version} and newer. The following \
VERSION checks compare against older Julia releases, so their outcome is fixed \
on every supported version:

{listing}

Remove each obsolete check. Keep the branch that runs on Julia {min_version}+ \
and delete the other branch, then clean up anything that becomes unused. Do \
not change unrelated code. Commit the result on the current branch with the \
message "Remove obsolete VERSION checks", push it to origin and open a pull \
request with `gh pr create` titled "Remove obsolete VERSION checks (Julia < {min_version})".
"""


def _as_version(value: Union[str, Version]) -> Version:
    return value if isinstance(value, Version) else Version(str(value))


def parse_version_check(line: str) -> Optional[Tuple[Version, str]]:
    """
    Extract a VERSION comparison from a line of Julia.

    Recognizes `VERSION >= v"1.6"`, `VERSION > v1.6` and
    `VERSION <= VersionNumber("1.6")` forms, in any case.

    Returns:
        (version, operator), or None when the line has no comparison
    """
    for pattern in VERSION_PATTERNS:
        match = pattern.search(line)
        if match is None:
            continue
        try:
            return Version(match.group(2)), match.group(1)
        except InvalidVersion:
            continue
    return None


def find_version_checks_in_file(file_path: str, min_version: Union[str, Version] = "1.10") -> List[VersionCheck]:
    """Obsolete VERSION checks in a single `.jl` file (1-based line numbers)."""
    checks: List[VersionCheck] = []
    if not os.path.isfile(file_path) or not file_path.endswith(".jl"):
        return checks

    minimum = _as_version(min_version)
    try:
        with open(file_path, "r", encoding="utf-8", errors="replace") as f:
            for line_number, line in enumerate(f, 1):
                result = parse_version_check(line)
                if result is None:
                    continue
                version, operator = result
                if operator in OBSOLETE_OPERATORS and version < minimum:
                    checks.append(VersionCheck(
                        file_path=file_path,
                        line_number=line_number,
                        line_content=line.strip(),
                        version=version,
                        operator=operator,
                    ))
    except OSError as e:
        logger.warning(f"Error reading file {file_path}: {e}")

    return checks


def find_version_checks_in_repo(
    repo_path: str,
    min_version: Union[str, Version] = "1.10",
    include_subpackages: bool = True
) -> RepoChecks:
    """
    Obsolete VERSION checks across a repository.

    Hidden directories and vendored/build output are skipped, as is
    `lib/` when include_subpackages is False.

    Returns:
        {relative file path: [VersionCheck, ...]}
    """
    all_checks: RepoChecks = {}
    if not os.path.isdir(repo_path):
        logger.error(f"Repository path does not exist: {repo_path}")
        return all_checks

    for root, dirs, files in os.walk(repo_path):
        dirs[:] = sorted(
            d for d in dirs
            if not d.startswith(".") and d not in SKIP_DIRS
            and (include_subpackages or not (d == "lib" and os.path.samefile(root, repo_path)))
        )
        for filename in sorted(files):
            if not filename.endswith(".jl"):
                continue
            file_path = os.path.join(root, filename)
            if not include_subpackages and is_subpackage(file_path, repo_path):
                continue
            checks = find_version_checks_in_file(file_path, min_version)
            if checks:
                all_checks[os.path.relpath(file_path, repo_path)] = checks

    return all_checks


def print_version_check_summary(results: Dict[str, Any], file=None) -> None:
    """
    Print findings for one or more repositories.

    results maps repository names to either their RepoChecks or an
    `{"error": message}` dict.
    """
    out = file or sys.stdout
    if not results:
        print("No old version checks found.", file=out)
        return

    print("\n=== Old Version Checks Summary ===\n", file=out)
    total_repos = total_files = total_checks = 0

    for repo_name in sorted(results):
        repo_results = results[repo_name]
        if isinstance(repo_results, dict) and "error" in repo_results:
            print(f"❌ {repo_name}: {repo_results['error']}", file=out)
            continue

        repo_checks = sum(len(v) for v in repo_results.values())
        if repo_checks == 0:
            continue

        total_repos += 1
        total_files += len(repo_results)
        total_checks += repo_checks
        print(f"📦 {repo_name} ({repo_checks} checks in {len(repo_results)} files)", file=out)
        for path in sorted(repo_results):
            print(f"  📄 {path}", file=out)
            for check in repo_results[path]:
                print(f"    Line {check.line_number}: {check.line_content}", file=out)
                print(f"      → Checking for VERSION {check.operator} v\"{check.version}\"", file=out)
        print(file=out)

    print("\n=== Summary Statistics ===", file=out)
    print(f"Total repositories with old checks: {total_repos}", file=out)
    print(f"Total files with old checks: {total_files}", file=out)
    print(f"Total old version checks: {total_checks}", file=out)


def _flatten(checks: Union[RepoChecks, List[VersionCheck]]) -> List[Tuple[str, VersionCheck]]:
    if isinstance(checks, dict):
        return [(path, check) for path in sorted(checks) for check in checks[path]]
    return [(check.file_path, check) for check in checks]


def _julia_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("$", "\\$")


def write_version_checks_to_script(
    checks: Union[RepoChecks, List[VersionCheck]],
    output_path: str,
    min_version: Union[str, Version] = "1.10"
) -> str:
    """
    Write findings as a Julia script listing every obsolete check.

    Running the script prints one `file:line  code` line per check.

    Returns:
        output_path
    """
    entries = _flatten(checks)
    lines = [
        "#!/usr/bin/env julia",
        f"# Obsolete VERSION checks (minimum supported Julia: {min_version})",
        f"# Generated: {datetime.now().isoformat(timespec='seconds')}",
        f"# Total: {len(entries)}",
        "",
        "const OBSOLETE_VERSION_CHECKS = [",
    ]
    for path, check in entries:
        lines.append(
            f'    (file = "{_julia_escape(path)}", line = {check.line_number}, '
            f'operator = "{check.operator}", version = v"{check.version}", '
            f'code = "{_julia_escape(check.line_content)}"),'
        )
    lines += [
        "]",
        "",
        "for check in OBSOLETE_VERSION_CHECKS",
        '    println(check.file, ":", check.line, "  ", check.code)',
        "end",
        "",
    ]

    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    with open(output_path, "w") as f:
        f.write("\n".join(lines))
    logger.info(f"Wrote {len(entries)} version checks to {output_path}")
    return output_path


def agent_prompt(checks: RepoChecks, min_version: Union[str, Version]) -> str:
    listing = "\n".join(
        f"- {path}:{check.line_number}: {check.line_content}"
        for path, check in _flatten(checks)
    )
    return AGENT_PROMPT.format(min_version=min_version, listing=listing)


class VersionCheckService(MaintenanceService):
    """
    Finds obsolete VERSION checks across an organization.

    Example:
        service = VersionCheckService()
        results = service.find_version_checks_in_org("SciML", max_repos=5)
        print_version_check_summary(results)
    """

    def _min_version(self, min_version) -> str:
        return str(min_version or self.config["version_checks"]["min_version"])

    def find_version_checks_in_org(
        self,
        org: str,
        min_version: Optional[Union[str, Version]] = None,
        work_dir: Optional[str] = None,
        max_repos: Optional[int] = None,
        include_subpackages: bool = True
    ) -> Dict[str, Any]:
        """
        Scan every repository of an organization.

        Returns:
            {owner/name: RepoChecks or {"error": message}}, only repositories
            with findings or errors are included
        """
        min_version = self._min_version(min_version)
        logger.info(f"Fetching repositories for organization: {org}")
        repos = self.github.list_org_repos_api(org)
        if not repos:
            logger.warning(f"No repositories found for organization: {org}")
            return {}

        if max_repos is not None and len(repos) > max_repos:
            repos = repos[:max_repos]
            logger.info(f"Processing first {max_repos} repositories")
        else:
            logger.info(f"Found {len(repos)} repositories")

        results: Dict[str, Any] = {}
        with workspace(work_dir) as base_dir:
            for idx, full_name in enumerate(repos, 1):
                logger.info(f"Processing repository {idx}/{len(repos)}: {full_name}")
                repo_dir = os.path.join(base_dir, os.path.basename(full_name))
                try:
                    if not self.git.clone(f"https://github.com/{full_name}.git", repo_dir, depth=1, quiet=True):
                        raise RuntimeError("git clone failed")
                    if not os.path.isfile(os.path.join(repo_dir, "Project.toml")):
                        logger.debug(f"Skipping {full_name} - no Project.toml found")
                        continue
                    checks = find_version_checks_in_repo(repo_dir, min_version, include_subpackages)
                    if checks:
                        results[full_name] = checks
                        total = sum(len(v) for v in checks.values())
                        logger.info(f"Found {total} version checks in {full_name}")
                except Exception as e:
                    logger.error(f"Failed to process {full_name}: {e}")
                    results[full_name] = {"error": str(e)}
                finally:
                    shutil.rmtree(repo_dir, ignore_errors=True)

        return results

    def run_agent(self, prompt: str, cwd: str, timeout: Optional[int] = None) -> Tuple[bool, str]:
        """Run the configured coding agent command with the prompt appended."""
        cmd = shlex.split(self.config["version_checks"]["agent_command"]) + [prompt]
        try:
            result = subprocess.run(
                cmd, cwd=cwd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            return False, f"Agent timed out after {timeout} seconds"
        except FileNotFoundError as e:
            return False, f"Agent command not found: {e}"
        output = (result.stdout or "") + (result.stderr or "")
        return result.returncode == 0, output

    def _fix_repo(self, full_name: str, base_dir: str, min_version: str) -> OperationDetail:
        repo_dir = os.path.join(base_dir, os.path.basename(full_name))
        try:
            if not self.git.clone(f"https://github.com/{full_name}.git", repo_dir, quiet=True):
                return OperationDetail(repo_name=full_name, status=OperationStatus.FAILED,
                                       action="clone_failed", error="git clone failed")

            checks = find_version_checks_in_repo(repo_dir, min_version)
            if not checks:
                return OperationDetail(repo_name=full_name, status=OperationStatus.SKIPPED,
                                       action="no_checks", message="No obsolete version checks")

            self.git.create_branch(repo_dir, f"remove-old-version-checks-{timestamp('%Y%m%d-%H%M%S')}")
            timeout = self.config["version_checks"]["agent_timeout_minutes"] * 60
            success, output = self.run_agent(agent_prompt(checks, min_version), cwd=repo_dir, timeout=timeout)
            count = sum(len(v) for v in checks.values())
            return OperationDetail(
                repo_name=full_name,
                status=OperationStatus.SUCCESS if success else OperationStatus.FAILED,
                action="agent_fixed" if success else "agent_failed",
                message=output[-2000:] if success else None,
                error=None if success else output[-2000:] or "agent failed",
                metadata={'checks': count},
            )
        except Exception as e:
            logger.error(f"Failed to process {full_name}: {e}")
            return OperationDetail(repo_name=full_name, status=OperationStatus.FAILED,
                                   action="error", error=str(e))
        finally:
            shutil.rmtree(repo_dir, ignore_errors=True)

    def fix_org_version_checks_parallel(
        self,
        org: str,
        n_workers: int = 4,
        github_token: Optional[str] = None,
        min_version: Optional[Union[str, Version]] = None,
        max_repos: Optional[int] = None,
        work_dir: Optional[str] = None
    ) -> Dict[str, Tuple[bool, str]]:
        """
        Have a coding agent remove obsolete checks, one repository per worker.

        Each worker clones its own repository, so workers share nothing but
        the result collection.

        Repositories are listed with github_token when given, otherwise with
        github.token from the configuration or the environment. Each agent
        run is killed after version_checks.agent_timeout_minutes.

        Returns:
            {owner/name: (success, agent output or error)}
        """
        min_version = self._min_version(min_version)
        if github_token:
            self._github = self._github_client(github_token)
        summary = OperationSummary(operation="fix_version_checks")
        self.last_result = summary

        repos = self.github.list_org_repos_api(org)
        if max_repos is not None:
            repos = repos[:max_repos]
        logger.info(f"Fixing version checks in {len(repos)} repositories with {n_workers} workers")

        results: Dict[str, Tuple[bool, str]] = {}
        with workspace(work_dir) as base_dir:
            with ThreadPoolExecutor(max_workers=n_workers) as executor:
                futures = {
                    executor.submit(self._fix_repo, full_name, base_dir, min_version): full_name
                    for full_name in repos
                }
                for future in as_completed(futures):
                    detail = future.result()
                    summary.add_detail(detail)
                    if detail.status == OperationStatus.SKIPPED:
                        continue
                    ok = detail.status == OperationStatus.SUCCESS
                    results[detail.repo_name] = (ok, detail.message if ok else detail.error)
                    logger.info(f"{'✓' if ok else '✗'} {detail.repo_name}")

        return results
