"""
Formatting service for orgmaint.

Clones a repository, runs JuliaFormatter with the organization style,
optionally runs the tests, and either pushes the result to the default
branch or opens a pull request from a fork.
"""

import logging
import os
import shutil
import time
from typing import List, Optional, Tuple

from ..domain.operation import OperationDetail, OperationStatus, OperationSummary
from ..infra.github_client import parse_repo_url, repo_name_from_url
from ..utils import RunLog, github_clone_url, workspace
from .base import MaintenanceService

logger = logging.getLogger(__name__)

FORMATTER_CONFIG = ".JuliaFormatter.toml"
PR_TITLE = "Apply JuliaFormatter to fix code formatting"

FormatResult = Tuple[bool, str, Optional[str]]


def formatter_config(style: str = "sciml") -> str:
    return (
        f'style = "{style}"\n'
        "format_markdown = true\n"
        "format_docstrings = true\n"
    )


def count_stat_files(stats: str) -> int:
    """Number of files in `git diff --stat` output (last line is the total)."""
    lines = [line for line in stats.splitlines() if line.strip()]
    return max(len(lines) - 1, 0)


def _test_line(test: bool, passed: bool, ok: str, bad: str) -> str:
    if not test:
        return ""
    return f"{ok if passed else bad}\n"


def format_commit_message(num_files: int, test: bool, test_passed: bool, style: str = "sciml") -> str:
    return (
        f"{PR_TITLE}\n\n"
        f"- Applied JuliaFormatter with {style} style guide\n"
        f"- Formatted {num_files} files\n"
        + _test_line(test, test_passed, "- Tests: ✓ Passed", "- Tests: ✗ Failed")
        + "\n🤖 Generated by orgmaint\n"
    )


def format_pr_body(num_files: int, stats: str, test: bool, test_passed: bool) -> str:
    return (
        "## Summary\n"
        "- Applied JuliaFormatter to ensure consistent code formatting\n"
        f"- Formatted {num_files} files to comply with the style guide\n"
        + _test_line(test, test_passed, "- Test status: ✅ All tests passed",
                     "- Test status: ⚠️ Some tests failed")
        + "\n## Changes\n"
        f"```\n{stats.strip()}\n```\n\n"
        "This PR was automatically generated by orgmaint\n"
    )


class FormattingService(MaintenanceService):
    """
    Applies JuliaFormatter to repositories.

    Example:
        service = FormattingService()
        ok, message, pr_url = service.format_repository(
            "https://github.com/SciML/Example.jl.git", fork_user="me")
    """

    def _resolve_fork_user(self, create_pr: bool, push_to_master: bool, fork_user: str) -> Tuple[Optional[str], Optional[str]]:
        if create_pr and not fork_user:
            fork_user = self.github.current_user() or ""
            if not fork_user:
                return None, "fork_user must be provided when create_pr=true (or configure gh CLI)"
            logger.info(f"Using GitHub username from gh CLI: {fork_user}")
        if create_pr and push_to_master:
            return None, "Cannot both push_to_master and create_pr"
        return fork_user, None

    def run_tests(self, repo_path: str, timeout_minutes: int = 10) -> bool:
        """Instantiate and test the package; False on failure or timeout."""
        output, code = self.julia.test(repo_path, timeout_minutes=timeout_minutes)
        if code == 0:
            logger.info("Tests passed!")
        elif code == -1:
            logger.warning(f"Tests timed out after {timeout_minutes} minutes")
        else:
            logger.warning("Tests failed")
            logger.debug(output[-2000:])
        return code == 0

    def format_repository(
        self,
        repo_url: str,
        test: bool = True,
        push_to_master: bool = False,
        create_pr: bool = True,
        fork_user: str = "",
        working_dir: Optional[str] = None
    ) -> FormatResult:
        """
        Format a single repository.

        Args:
            repo_url: Repository URL, e.g. https://github.com/SciML/Example.jl.git
            test: Run the tests after formatting
            push_to_master: Push straight to the default branch if tests pass
            create_pr: Open a pull request from fork_user's fork
            fork_user: GitHub account holding the fork (asked from gh if empty)
            working_dir: Where to clone; a temporary directory otherwise

        Returns:
            (success, message, pr_url)
        """
        fork_user, error = self._resolve_fork_user(create_pr, push_to_master, fork_user)
        if error:
            logger.error(f"{error} (repo: {repo_url})")
            return False, error, None

        repo_name = repo_name_from_url(repo_url)
        with workspace(working_dir) as base_dir:
            repo_path = os.path.join(base_dir, repo_name)
            try:
                return self._format_clone(repo_url, repo_path, test, push_to_master, create_pr, fork_user)
            except Exception as e:
                logger.error(f"Error formatting {repo_name}: {e}")
                return False, f"Error: {e}", None
            finally:
                shutil.rmtree(repo_path, ignore_errors=True)

    def _format_clone(self, repo_url, repo_path, test, push_to_master, create_pr, fork_user) -> FormatResult:
        logger.info(f"Cloning {os.path.basename(repo_path)}...")
        if not self.git.clone(repo_url, repo_path):
            return False, "Failed to clone repository", None

        default_branch = self.git.default_branch(repo_path)
        branch = self.config["formatting"]["branch"]
        if not push_to_master:
            logger.info("Creating formatting branch...")
            self.git.create_branch(repo_path, branch)

        config_created = False
        if not os.path.isfile(os.path.join(repo_path, FORMATTER_CONFIG)):
            style = self.config["formatting"]["style"]
            logger.info(f"Creating {FORMATTER_CONFIG} with {style} style...")
            with open(os.path.join(repo_path, FORMATTER_CONFIG), "w") as f:
                f.write(formatter_config(style))
            config_created = True

        logger.info("Running JuliaFormatter...")
        ok, output = self.julia.format(repo_path)
        if not ok:
            logger.warning(f"Formatter encountered errors: {output[-500:]}")

        changed = self.git.status_porcelain(repo_path)
        if not changed or (len(changed) == 1 and config_created and FORMATTER_CONFIG in changed[0]):
            logger.info("No formatting changes needed")
            return True, "No formatting changes needed", None

        self.git.add_all(repo_path)
        stats = self.git.diff_cached_stat(repo_path)
        num_files = count_stat_files(stats)
        logger.info(f"Formatting complete: {num_files} files changed")

        test_passed = True
        if test:
            logger.info("Running tests...")
            test_passed = self.run_tests(repo_path)

        if not test_passed and push_to_master:
            return False, "Tests failed, not pushing to master", None

        logger.info("Committing changes...")
        name, email = self.bot_identity
        self.git.set_identity(repo_path, name, email)
        message = format_commit_message(num_files, test, test_passed, self.config["formatting"]["style"])
        if not self.git.commit(repo_path, message, author_name=name, author_email=email):
            return False, "Failed to commit formatting changes", None

        if push_to_master:
            logger.info(f"Pushing to {default_branch}...")
            pushed, output = self.git.push(repo_path, "origin", default_branch)
            if not pushed:
                return False, f"Failed to push to {default_branch}: {output}", None
            return True, f"Successfully pushed formatting changes to {default_branch}", None

        if not create_pr:
            return True, f"Formatting committed on branch {branch}", None

        return self._open_pr(repo_url, repo_path, fork_user, branch, default_branch,
                             format_pr_body(num_files, stats, test, test_passed))

    def _open_pr(self, repo_url, repo_path, fork_user, branch, default_branch, body) -> FormatResult:
        org, repo = parse_repo_url(repo_url)
        if not org:
            return False, "Could not parse repository URL", None

        logger.info("Ensuring fork exists...")
        if not self.github.repo_exists(f"{fork_user}/{repo}"):
            logger.info("Creating fork...")
            if not self.github.fork(f"{org}/{repo}"):
                return False, "Failed to create fork", None
            time.sleep(2)

        self.git.add_remote(repo_path, "fork", f"https://github.com/{fork_user}/{repo}.git")
        pushed, output = self.git.push(repo_path, "fork", branch, force=True)
        if not pushed:
            logger.error(f"Failed to push to fork: {output}")
            return False, f"Failed to push to fork: {output}", None

        head = f"{fork_user}:{branch}"
        existing = self.github.find_pr(f"{org}/{repo}", head)
        if existing:
            logger.info(f"Pull request already exists, updated it: {existing}")
            return True, "Updated existing pull request", existing

        logger.info("Creating pull request...")
        pr_url, error = self.github.create_pr(
            PR_TITLE, body, full_name=f"{org}/{repo}", head=head, base=default_branch)
        if pr_url:
            return True, "Successfully created pull request", pr_url

        if "already exists" in error:
            existing = self.github.find_pr(f"{org}/{repo}", head)
            if existing:
                return True, "Updated existing pull request", existing

        logger.error(f"Failed to create PR: {error.strip()}")
        return False, f"Failed to create PR: {error.strip()}", None

    def get_org_repositories(self, org: str, limit: int = 100) -> List[str]:
        """Non-archived `*.jl` repositories of an organization."""
        return self.github.list_julia_repos(org, limit=limit)

    def has_failing_formatter_ci(self, org: str, repo: str) -> bool:
        """True if a formatter workflow recently failed on master or main."""
        for workflow in self.config["formatting"]["workflows"]:
            runs = self.github.workflow_runs(f"{org}/{repo}", workflow, limit=10)
            for branch in ("master", "main"):
                if any(run.head_branch == branch and run.failed for run in runs):
                    return True
        return False

    def format_org_repositories(
        self,
        org: str = "SciML",
        test: bool = True,
        push_to_master: bool = False,
        create_pr: bool = True,
        fork_user: str = "",
        limit: int = 100,
        only_failing_ci: bool = True,
        log_file: Optional[str] = None
    ) -> Tuple[List[str], List[str], List[str]]:
        """
        Format every Julia repository of an organization.

        Returns:
            (successes, failures, pr_urls)
        """
        summary = OperationSummary(operation="format")
        self.last_result = summary

        fork_user, error = self._resolve_fork_user(create_pr, push_to_master, fork_user)
        if error:
            logger.error(error)
            summary.errors.append(error)
            return [], [], []

        log_path = log_file or RunLog.default_path(
            self.config["general"]["log_dir"], "formatting_logs", "formatting", org)
        logger.info(f"Starting organization-wide formatting of {org} (log: {log_path})")

        logger.info(f"Fetching repositories from {org}...")
        repos = self.get_org_repositories(org, limit)
        if only_failing_ci:
            logger.info("Filtering repositories with failing formatter CI...")
            repos = [repo for repo in repos if self.has_failing_formatter_ci(org, repo)]
        logger.info(f"Found {len(repos)} repositories to process")

        successes, failures = [], []
        delay = self.config["general"]["rate_limit_delay"]

        with workspace() as base_dir, RunLog(log_path, "Formatting", org, len(repos)) as run_log:
            for i, repo in enumerate(repos, 1):
                logger.info(f"Processing repository {repo} ({i}/{len(repos)})")
                ok, message, pr_url = self.format_repository(
                    github_clone_url(org, repo),
                    test=test,
                    push_to_master=push_to_master,
                    create_pr=create_pr,
                    fork_user=fork_user,
                    working_dir=base_dir,
                )
                detail = OperationDetail(
                    repo_name=repo,
                    status=OperationStatus.SUCCESS if ok else OperationStatus.FAILED,
                    action="formatted" if ok else "format_failed",
                    message=message if ok else None,
                    error=None if ok else message,
                    pr_url=pr_url,
                )
                summary.add_detail(detail)
                run_log.entry(i, detail)

                if ok:
                    successes.append(repo)
                    logger.info(f"✓ SUCCESS: {repo} - {message}")
                else:
                    failures.append(repo)
                    logger.error(f"✗ FAILED: {repo} - {message}")

                if i < len(repos):
                    time.sleep(delay)

            run_log.summary(summary)

        logger.info(
            f"Organization formatting complete: {len(successes)} succeeded, "
            f"{len(failures)} failed, {len(summary.pr_urls)} PRs"
        )
        return successes, failures, list(summary.pr_urls)
