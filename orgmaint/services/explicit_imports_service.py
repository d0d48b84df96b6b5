"""
Explicit imports service for orgmaint.

Runs ExplicitImports.jl against a package in a child Julia process,
parses its report into ImportIssue records and rewrites `using` lines
until the checks pass or no further fix applies.

ExplicitImports must be installed in the default (`@v#.#`) Julia
environment so it can be loaded next to the package under test.
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
from ..domain.project import ISSUE_GENERIC, ISSUE_MISSING, ISSUE_UNUSED, ImportIssue
from ..project_utils import (
    find_all_project_tomls,
    get_relative_project_path,
    is_subpackage,
    read_project,
)
from ..utils import timestamp, workspace
from .base import MaintenanceService

logger = logging.getLogger(__name__)

SECTION_MISSING = "=== CHECKING MISSING EXPLICIT IMPORTS ==="
SECTION_STALE = "=== CHECKING UNNECESSARY EXPLICIT IMPORTS ==="
SECTION_QUALIFIED = "=== CHECKING QUALIFIED ACCESSES ==="
SECTION_PUBLIC = "=== CHECKING PUBLIC EXPORTS ==="

SECTIONS = [
    ("CHECKING MISSING EXPLICIT IMPORTS", "missing_imports"),
    ("CHECKING UNNECESSARY EXPLICIT IMPORTS", "unnecessary_imports"),
    ("CHECKING QUALIFIED ACCESSES", "qualified_access"),
    ("CHECKING PUBLIC EXPORTS", "public_exports"),
]

MISSING_RE = re.compile(r"([\w.]+)\.(@?[\w!]+) is not explicitly imported")
UNUSED_RE = re.compile(r"(@?[\w!]+) is explicitly imported but not used")

# Exit code of the check script when the package itself fails to load
LOAD_FAILED = 2

CHECK_SCRIPT = f"""\
using Pkg
Pkg.instantiate()
using ExplicitImports

const PKG_NAME = ARGS[1]

mod = try
    Base.eval(Main, :(using $(Symbol(PKG_NAME))))
    getfield(Main, Symbol(PKG_NAME))
catch e
    println("Failed to load package ", PKG_NAME, ": ", sprint(showerror, e))
    exit({LOAD_FAILED})
end

println("{SECTION_MISSING}")
try
    found = false
    for (submodule, imports) in explicit_imports(mod)
        for imp in imports
            println(imp.source, ".", imp.name, " is not explicitly imported")
            found = true
        end
    end
    found || println("✓ No implicit imports found")
catch e
    println("ERROR: ", sprint(showerror, e))
end

println("\\n{SECTION_STALE}")
try
    found = false
    for (submodule, imports) in stale_explicit_imports(mod)
        for imp in imports
            println(imp.name, " is explicitly imported but not used")
            found = true
        end
    end
    found || println("✓ No stale explicit imports found")
catch e
    println("ERROR: ", sprint(showerror, e))
end

println("\\n{SECTION_QUALIFIED}")
try
    check_all_qualified_accesses_via_owners(mod)
    println("✓ All qualified accesses via owners")
catch e
    println("WARN: ", sprint(showerror, e))
end

println("\\n{SECTION_PUBLIC}")
try
    check_all_explicit_imports_are_public(mod)
    println("✓ All explicit imports are public")
catch e
    println("WARN: ", sprint(showerror, e))
end
"""

CheckResult = Tuple[bool, str, List[ImportIssue]]


def parse_explicit_imports_output(output: str) -> List[ImportIssue]:
    """
    Extract actionable issues from a check report.

    Missing and unused imports are recognized in their sections; any other
    line mentioning FAIL or WARN becomes a generic issue tagged with the
    section it appeared in.
    """
    issues: List[ImportIssue] = []
    section = ""

    for line in output.splitlines():
        for marker, name in SECTIONS:
            if marker in line:
                section = name

        if section == "missing_imports" and "is not explicitly imported" in line:
            match = MISSING_RE.search(line)
            if match:
                issues.append(ImportIssue(
                    type=ISSUE_MISSING, module_name=match.group(1),
                    symbol=match.group(2), line=line))
        elif section == "unnecessary_imports" and "is explicitly imported but not used" in line:
            match = UNUSED_RE.search(line)
            if match:
                issues.append(ImportIssue(type=ISSUE_UNUSED, symbol=match.group(1), line=line))
        elif "FAIL" in line or "WARN" in line:
            issues.append(ImportIssue(type=ISSUE_GENERIC, section=section, line=line))

    return issues


def fix_missing_import(file_path: str, module_name: str, symbol: str) -> bool:
    """
    Add `using Module: symbol` to a file.

    Extends an existing `using Module: ...` list, turns a bare
    `using Module` into an explicit one, or inserts a new line after the
    `module` declaration (or at the top).
    """
    if not os.path.isfile(file_path):
        logger.warning(f"File not found: {file_path}")
        return False

    with open(file_path, "r") as f:
        lines = f.read().split("\n")

    using_re = re.compile(rf"^\s*using {re.escape(module_name)}(?::|\s|$)")
    idx = next((i for i, line in enumerate(lines) if using_re.search(line)), None)

    if idx is not None:
        line = lines[idx]
        if f"using {module_name}:" in line:
            current = [s.strip() for s in line.split(":", 1)[1].split(",")]
            if symbol in current:
                return False
            lines[idx] = line.rstrip() + f", {symbol}"
        else:
            indent = line[:len(line) - len(line.lstrip())]
            lines[idx] = f"{indent}using {module_name}: {symbol}"
    else:
        module_idx = next((i for i, line in enumerate(lines) if re.match(r"^module\s+", line)), None)
        insert_at = module_idx + 1 if module_idx is not None else 0
        if insert_at < len(lines) and lines[insert_at].strip():
            lines.insert(insert_at, "")
            insert_at += 1
        lines.insert(insert_at, f"using {module_name}: {symbol}")

    with open(file_path, "w") as f:
        f.write("\n".join(lines))
    logger.info(f"Added import: using {module_name}: {symbol} to {file_path}")
    return True


def fix_unused_import(file_path: str, symbol: str) -> bool:
    """
    Remove a symbol from `using/import Module: ...` lists.

    Lists that become empty are dropped, as are `import Module.symbol`
    lines. Returns False when nothing changed.
    """
    if not os.path.isfile(file_path):
        logger.warning(f"File not found: {file_path}")
        return False

    with open(file_path, "r") as f:
        content = f.read()

    list_re = re.compile(r"^(\s*)(using|import)\s+([\w.]+)\s*:\s*(.*)$")
    dotted_re = re.compile(rf"^\s*import\s+[\w.]+\.{re.escape(symbol)}\s*$")

    kept = []
    for line in content.split("\n"):
        if not re.match(r"^\s*(using|import)\s+", line) or symbol not in line:
            kept.append(line)
            continue

        match = list_re.match(line)
        if match:
            indent, keyword, module_name, imports = match.groups()
            remaining = [s.strip() for s in imports.split(",") if s.strip() != symbol]
            if remaining:
                kept.append(f"{indent}{keyword} {module_name}: " + ", ".join(remaining))
        elif dotted_re.match(line):
            continue
        else:
            kept.append(line)

    modified = re.sub(r"\n\n\n+", "\n\n", "\n".join(kept))
    if modified == content:
        logger.warning(f"Could not find import to remove: {symbol} in {file_path}")
        return False

    with open(file_path, "w") as f:
        f.write(modified)
    logger.info(f"Removed unused import: {symbol} from {file_path}")
    return True


def _entry_file(package_path: str) -> Optional[str]:
    """`src/<Name>.jl`, or the first source file declaring a module."""
    project_file = os.path.join(package_path, "Project.toml")
    if os.path.isfile(project_file):
        name = read_project(project_file).get("name")
        if name:
            candidate = os.path.join(package_path, "src", f"{name}.jl")
            if os.path.isfile(candidate):
                return candidate

    for path in sorted(Path(package_path, "src").rglob("*.jl")):
        if re.search(r"^module\s+", path.read_text(errors="replace"), re.MULTILINE):
            return str(path)
    return None


def find_files_to_fix(package_path: str, issues: List[ImportIssue]) -> Dict[str, List[ImportIssue]]:
    """
    Decide which source file each issue is applied to.

    Missing imports go to the package entry file. Unused imports go to
    every file under `src/` that has an import line naming the symbol.
    """
    files: Dict[str, List[ImportIssue]] = {}
    src_dir = Path(package_path, "src")
    if not src_dir.is_dir():
        return files

    sources = {str(p): p.read_text(errors="replace") for p in sorted(src_dir.rglob("*.jl"))}
    entry = _entry_file(package_path)

    for issue in issues:
        if issue.type == ISSUE_MISSING and entry:
            files.setdefault(entry, []).append(issue)
        elif issue.type == ISSUE_UNUSED:
            for path, text in sources.items():
                if any(
                    re.match(r"^\s*(using|import)\s+", line) and issue.symbol in line
                    for line in text.splitlines()
                ):
                    files.setdefault(path, []).append(issue)
    return files


def explicit_imports_pr_body(iterations: int, success: bool) -> str:
    status = "All checks passing ✓" if success else "Some checks may still need manual review"
    return (
        "## Summary\n\n"
        "This PR fixes explicit import issues identified by ExplicitImports.jl.\n\n"
        "## Changes\n\n"
        "- Added missing explicit imports where symbols were being used implicitly\n"
        "- Removed imports that were explicitly imported but never used\n\n"
        "## Testing\n\n"
        f"The changes were applied iteratively ({iterations} iterations):\n"
        "1. Run ExplicitImports.jl checks\n"
        "2. Apply fixes for identified issues\n"
        "3. Verify the package still loads\n"
        "4. Repeat until all checks pass or no more fixes can be applied\n\n"
        f"Final status: **{status}**\n"
    )


class ExplicitImportsService(MaintenanceService):
    """
    Checks and fixes explicit imports of Julia packages.

    Example:
        service = ExplicitImportsService()
        ok, iterations, report = service.fix_explicit_imports("/path/to/Foo.jl")
    """

    def run_explicit_imports_check(self, package_path: str) -> CheckResult:
        """
        Run the ExplicitImports checks on a copy of the package.

        Returns:
            (success, report, issues); success means no missing or unused
            imports were reported

        Raises:
            FileNotFoundError: if package_path does not exist
        """
        if not os.path.isdir(package_path):
            raise FileNotFoundError(f"Package path does not exist: {package_path}")

        pkg_name = read_project(os.path.join(package_path, "Project.toml"))["name"]

        with tempfile.TemporaryDirectory(prefix="orgmaint_ei_") as tmp:
            test_path = os.path.join(tmp, "test_package")
            shutil.copytree(package_path, test_path, ignore=shutil.ignore_patterns(".git"))
            script = os.path.join(tmp, "check_explicit_imports.jl")
            with open(script, "w") as f:
                f.write(CHECK_SCRIPT)

            output, code = self.julia.run_script(
                script, project=test_path, cwd=test_path, args=(pkg_name,))

        if code == LOAD_FAILED or SECTION_MISSING not in output:
            message = output.strip() or f"Failed to load package {pkg_name}"
            logger.error(message[-1000:])
            return False, message, []

        issues = parse_explicit_imports_output(output)
        logger.debug(f"ExplicitImports check output:\n{output}")
        success = not any(i.type in (ISSUE_MISSING, ISSUE_UNUSED) for i in issues)
        return success, output, issues

    def run_explicit_imports_check_all(
        self,
        repo_path: str,
        include_subpackages: bool = True
    ) -> Dict[str, CheckResult]:
        """Check every package of a repository, keyed by relative project path."""
        project_files = find_all_project_tomls(repo_path)
        if not project_files:
            logger.warning(f"No Project.toml files found in {repo_path}")
            return {}

        if not include_subpackages:
            project_files = [p for p in project_files if not is_subpackage(p, repo_path)]

        results = {}
        for project_file in project_files:
            rel_path = get_relative_project_path(project_file, repo_path)
            logger.info(f"Checking explicit imports for {rel_path}")
            results[rel_path] = self.run_explicit_imports_check(os.path.dirname(project_file))
        return results

    def fix_explicit_imports(self, package_path: str, max_iterations: int = 10) -> Tuple[bool, int, str]:
        """
        Alternate checks and fixes until the package is clean.

        Stops early when no fix applies or the package stops loading.

        Returns:
            (success, iterations, final_report)
        """
        if not os.path.isdir(package_path):
            raise FileNotFoundError(f"Package path does not exist: {package_path}")

        logger.info(f"Starting explicit imports fixing for {package_path}")
        pkg_name = read_project(os.path.join(package_path, "Project.toml"))["name"]

        for iteration in range(1, max_iterations + 1):
            logger.info(f"Iteration {iteration}/{max_iterations}")
            success, report, issues = self.run_explicit_imports_check(package_path)

            if success:
                logger.info("✓ All explicit import checks passed!")
                return True, iteration, report
            if not issues:
                logger.warning("No specific issues found but checks still failing")
                return False, iteration, report

            logger.info(f"Found {len(issues)} issues to fix")
            applied = 0
            for file_path, file_issues in find_files_to_fix(package_path, issues).items():
                for issue in file_issues:
                    if issue.type == ISSUE_MISSING:
                        applied += fix_missing_import(file_path, issue.module_name, issue.symbol)
                    elif issue.type == ISSUE_UNUSED:
                        applied += fix_unused_import(file_path, issue.symbol)

            if applied == 0:
                logger.warning("No fixes could be applied, stopping")
                return False, iteration, report

            logger.info(f"Applied {applied} fixes")
            loads, output = self.julia.load_package(package_path, pkg_name)
            if not loads:
                logger.error("Package no longer loads after fixes")
                return False, iteration, f"Package broken after fixes: {output[-1000:]}"

        logger.warning("Reached maximum iterations without resolving all issues")
        _, report, _ = self.run_explicit_imports_check(package_path)
        return False, max_iterations, report

    def fix_repo_explicit_imports(
        self,
        repo_name: str,
        work_dir: Optional[str] = None,
        max_iterations: int = 10,
        create_pr: bool = True
    ) -> bool:
        """
        Clone `owner/name`, fix its explicit imports and open a PR.

        A PR is opened even when some checks still fail, as long as files
        changed.

        Returns:
            True when changes were committed
        """
        with workspace(work_dir) as base_dir:
            repo_dir = os.path.join(base_dir, repo_name.replace("/", "_"))
            logger.info(f"Cloning {repo_name}...")
            if not self.git.clone(f"https://github.com/{repo_name}.git", repo_dir):
                raise RuntimeError(f"Failed to clone {repo_name}")

            try:
                self.git.checkout(repo_dir, self.git.default_branch(repo_dir))
                self.git.create_branch(repo_dir, f"fix-explicit-imports-{timestamp('%Y%m%d-%H%M%S')}")

                success, iterations, _ = self.fix_explicit_imports(repo_dir, max_iterations=max_iterations)
                if not success:
                    logger.warning(f"Could not fully fix explicit imports for {repo_name}")

                if not self.git.diff_name_only(repo_dir):
                    logger.info(f"No changes needed for {repo_name}")
                    return False

                status = "All checks passing ✓" if success else "Some checks may still need manual review"
                message = (
                    "Fix explicit imports using ExplicitImports.jl\n\n"
                    "- Added missing explicit imports\n"
                    "- Removed unused imports\n\n"
                    f"Applied over {iterations} iteration(s).\n\n"
                    f"Final status: {status}\n"
                )
                self.git.add_all(repo_dir)
                name, email = self.bot_identity
                if not self.git.commit(repo_dir, message, author_name=name, author_email=email):
                    raise RuntimeError("git commit failed")

                if create_pr:
                    logger.info("Creating pull request...")
                    pushed, output = self.git.push(repo_dir, "origin", "HEAD", set_upstream=True)
                    if not pushed:
                        raise RuntimeError(f"git push failed: {output}")
                    pr_url, error = self.github.create_pr(
                        "Fix explicit imports", explicit_imports_pr_body(iterations, success), cwd=repo_dir)
                    if pr_url:
                        logger.info(f"✓ Pull request created successfully! {pr_url}")
                    else:
                        logger.warning(f"Failed to create PR automatically: {error.strip()}")
                        logger.info("You can create it manually with the branch that was pushed")
                return True
            finally:
                if work_dir:
                    shutil.rmtree(repo_dir, ignore_errors=True)

    def fix_org_explicit_imports(
        self,
        org: str,
        work_dir: Optional[str] = None,
        max_iterations: int = 10,
        create_prs: bool = True,
        skip_repos: Optional[List[str]] = None,
        only_repos: Optional[List[str]] = None
    ) -> Dict[str, bool]:
        """
        Fix explicit imports across an organization's Julia packages.

        Returns:
            {owner/name: fixed}
        """
        summary = OperationSummary(operation="explicit_imports")
        self.last_result = summary

        if only_repos is not None:
            repos = [f"{org}/{repo}" for repo in only_repos]
        else:
            logger.info(f"Fetching repositories for organization: {org}")
            repos = [f"{org}/{name}" for name in self.github.list_julia_repos(org, limit=1000)]

        skip_repos = skip_repos or []
        repos = [r for r in repos if not any(skip in r for skip in skip_repos)]
        logger.info(f"Found {len(repos)} Julia repositories to process")

        delay = self.config["general"]["rate_limit_delay"]
        results: Dict[str, bool] = {}
        for i, repo in enumerate(repos, 1):
            logger.info(f"Processing repository {i}/{len(repos)}: {repo}")
            try:
                results[repo] = self.fix_repo_explicit_imports(
                    repo, work_dir=work_dir, max_iterations=max_iterations, create_pr=create_prs)
                summary.add_detail(OperationDetail(
                    repo_name=repo,
                    status=OperationStatus.SUCCESS if results[repo] else OperationStatus.SKIPPED,
                    action="imports_fixed" if results[repo] else "no_changes",
                ))
            except Exception as e:
                logger.error(f"Failed to process {repo}: {e}")
                results[repo] = False
                summary.add_detail(OperationDetail(
                    repo_name=repo, status=OperationStatus.FAILED, action="error", error=str(e)))

            if i < len(repos):
                time.sleep(delay)

        logger.info(f"Successfully processed: {sum(results.values())}/{len(results)}")
        for repo, ok in sorted(results.items()):
            logger.info(f"  {'✓' if ok else '✗'} {repo}")
        return results
