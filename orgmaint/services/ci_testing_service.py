"""
Multiprocess CI testing service for orgmaint.

Reads the `group` axis of a GitHub Actions test matrix and runs each
group's `Pkg.test()` in its own Julia process with `GROUP` set, several
at a time, writing one log per group.
"""

import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import List, Optional, Tuple

import yaml
from rich.console import Console

from ..domain.ci import TestGroup, TestResult, TestSummary
from ..infra.github_client import repo_name_from_url
from ..utils import timestamp
from .base import MaintenanceService

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW = os.path.join(".github", "workflows", "CI.yml")


def parse_ci_workflow(workflow_file: str) -> List[TestGroup]:
    """
    Test groups from `jobs.test.strategy.matrix.group`.

    A `continue-on-error` expression mentioning `matrix.group` marks the
    groups quoted in it, e.g. `${{ matrix.group == 'Downstream' }}`.

    Raises:
        FileNotFoundError: if the workflow file does not exist
    """
    if not os.path.isfile(workflow_file):
        raise FileNotFoundError(f"Workflow file not found: {workflow_file}")

    with open(workflow_file, "r") as f:
        workflow = yaml.safe_load(f) or {}

    test_job = (workflow.get("jobs") or {}).get("test") or {}
    matrix = (test_job.get("strategy") or {}).get("matrix") or {}
    continue_expr = test_job.get("continue-on-error", False)

    groups = []
    for name in matrix.get("group") or []:
        name = str(name)
        continue_on_error = (
            isinstance(continue_expr, str)
            and "matrix.group" in continue_expr
            and f"'{name}'" in continue_expr
        )
        groups.append(TestGroup(name=name, env_vars={"GROUP": name}, continue_on_error=continue_on_error))
    return groups


def generate_test_summary_report(summary: TestSummary, output_file: Optional[str] = None) -> str:
    """Plain-text report, slowest groups first; written to output_file when given."""
    lines = [
        "=" * 80,
        "MULTIPROCESS TEST SUMMARY REPORT",
        "=" * 80,
        "",
        f"Start Time: {summary.start_time.isoformat(timespec='seconds')}",
        f"End Time: {summary.end_time.isoformat(timespec='seconds')}",
        f"Total Duration: {summary.total_duration:.2f} seconds",
        "",
        "Test Results:",
        f"  Total Groups: {summary.total_groups}",
        f"  Passed: {summary.passed_groups}",
        f"  Failed: {summary.failed_groups}",
        f"  Success Rate: {summary.success_rate:.1f}%",
        "",
        "Individual Test Group Results:",
        "-" * 80,
    ]

    for result in sorted(summary.results, key=lambda r: r.duration, reverse=True):
        status = "✓ PASS" if result.success else "✗ FAIL"
        lines.append(f"{status} {result.duration:8.2f}s {result.group.name}")
        if not result.success and result.error_message:
            preview = result.error_message
            if len(preview) > 100:
                preview = preview[:100] + "..."
            lines.append(f"    Error: {preview}")
        lines.append(f"    Log: {result.log_file}")
        lines.append("")

    failed = summary.failed_results()
    if failed:
        lines += ["FAILED GROUPS SUMMARY:", "-" * 40]
        for result in failed:
            lines.append(f"• {result.group.name}")
            lines.append(f"  Log: {result.log_file}")
            if result.error_message:
                lines.append(f"  Error: {result.error_message}")
            lines.append("")

    report = "\n".join(lines) + "\n"
    if output_file:
        with open(output_file, "w") as f:
            f.write(report)
        logger.info(f"Test summary report written to: {output_file}")
    return report


def print_test_summary(summary: TestSummary, file=None) -> None:
    """Short colored summary."""
    console = Console(file=file or sys.stdout)
    rate_style = "green" if summary.all_passed else "red"

    console.print()
    console.print("=" * 60)
    console.print("TEST SUMMARY")
    console.print("=" * 60)
    console.print(
        f"[blue]Total: {summary.total_groups} | [/blue]"
        f"[green]Passed: {summary.passed_groups} | [/green]"
        f"[red]Failed: {summary.failed_groups} | [/red]"
        f"[{rate_style}]Success: {summary.success_rate:.1f}%[/{rate_style}]"
    )
    console.print(f"[blue]Duration: {summary.total_duration:.2f} seconds[/blue]")

    failed = summary.failed_results()
    if failed:
        console.print("\nFailed Groups:")
        for result in failed:
            console.print(f"[red]  • {result.group.name}[/red] ({result.log_file})")
    console.print("=" * 60)


class CITestingService(MaintenanceService):
    """
    Runs a package's CI test groups locally in parallel.

    Example:
        service = CITestingService()
        summary = service.run_multiprocess_tests(".github/workflows/CI.yml", ".")
        print_test_summary(summary)
    """

    def setup_test_environment(self, project_path: str) -> None:
        """
        Resolve the project environment before tests start.

        Raises:
            FileNotFoundError: if project_path does not exist
            RuntimeError: if `Pkg.resolve()` fails
        """
        if not os.path.isdir(project_path):
            raise FileNotFoundError(f"Project path not found: {project_path}")
        output, code = self.julia.resolve(project_path)
        if code != 0:
            logger.warning(f"Failed to resolve project environment: {output[-500:]}")
            raise RuntimeError(f"Pkg.resolve() failed for {project_path}")
        logger.info(f"Project environment activated and resolved: {project_path}")

    def run_single_test_group(self, group: TestGroup, project_path: str, log_dir: str) -> TestResult:
        """Run `Pkg.test()` for one group, output going to `<log_dir>/<group>.log`."""
        start = datetime.now()
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"{group.name}.log")
        timeout_minutes = self.config["julia"]["test_timeout_minutes"]

        logger.info(f"Starting test group: {group.name}")
        _, code = self.julia.test(
            project_path, timeout_minutes=timeout_minutes, env=group.env_vars, log_file=log_file)

        error_message = None
        if code == -1:
            error_message = f"Timed out after {timeout_minutes} minutes"
        elif code != 0:
            error_message = f"Pkg.test() failed with exit code {code}"
        if error_message and group.continue_on_error:
            logger.info(f"Test group {group.name} failed but is allowed to fail")

        end = datetime.now()
        return TestResult(
            group=group,
            success=code == 0,
            duration=(end - start).total_seconds(),
            log_file=log_file,
            error_message=error_message,
            start_time=start,
            end_time=end,
        )

    def run_multiprocess_tests(
        self,
        workflow_file: str,
        project_path: str,
        log_dir: str = "test_logs",
        max_workers: int = 4
    ) -> TestSummary:
        """
        Run every test group of a workflow, max_workers Julia processes at a time.

        Results keep the order of the groups in the workflow.
        """
        start = datetime.now()

        logger.info(f"Parsing CI workflow file: {workflow_file}")
        groups = parse_ci_workflow(workflow_file)
        logger.info(f"Found {len(groups)} test groups")

        project_path = os.path.abspath(project_path)
        logger.info("Setting up test environment")
        self.setup_test_environment(project_path)

        log_dir = os.path.abspath(log_dir)
        os.makedirs(log_dir, exist_ok=True)
        logger.info(f"Logs will be written to: {log_dir}")

        workers = max(1, min(max_workers, len(groups) or 1))
        logger.info(f"Running tests with {workers} worker processes")
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(
                lambda group: self.run_single_test_group(group, project_path, log_dir), groups))

        end = datetime.now()
        passed = sum(1 for r in results if r.success)
        return TestSummary(
            total_groups=len(groups),
            passed_groups=passed,
            failed_groups=len(results) - passed,
            total_duration=(end - start).total_seconds(),
            results=results,
            start_time=start,
            end_time=end,
        )

    def run_tests_from_repo(
        self,
        repo_url: str,
        branch: str = "master",
        workflow_path: str = DEFAULT_WORKFLOW,
        log_dir: str = "test_logs",
        work_dir: Optional[str] = None,
        max_workers: int = 4
    ) -> TestSummary:
        """Clone (or update) a repository into work_dir and run its CI groups."""
        work_dir = work_dir or os.getcwd()
        repo_path = os.path.join(work_dir, repo_name_from_url(repo_url))

        if os.path.isdir(repo_path):
            logger.info(f"Repository already exists: {repo_path}")
            if not self.git.pull(repo_path, "origin", branch):
                logger.warning(f"git pull failed in {repo_path}")
        else:
            logger.info(f"Cloning repository: {repo_url}")
            if not self.git.clone(repo_url, repo_path, branch=branch):
                raise RuntimeError(f"Failed to clone {repo_url}")

        return self.run_multiprocess_tests(
            os.path.join(repo_path, workflow_path), repo_path,
            log_dir=log_dir, max_workers=max_workers)

    def run_tests_quick(
        self,
        repo_url_or_path: str,
        max_parallel: int = 4,
        log_dir: str = "quick_test_logs",
        report_dir: str = "."
    ) -> Tuple[bool, Optional[TestSummary], List[str]]:
        """
        One-call test run for a URL or local checkout.

        Prints the summary and writes `test_report_<timestamp>.txt` into
        report_dir.

        Returns:
            (all_passed, summary or None, failed group names or error messages)
        """
        try:
            if repo_url_or_path.startswith("http"):
                summary = self.run_tests_from_repo(
                    repo_url_or_path, log_dir=log_dir, max_workers=max_parallel)
            else:
                workflow_file = os.path.join(repo_url_or_path, DEFAULT_WORKFLOW)
                if not os.path.isfile(workflow_file):
                    logger.error(f"No CI workflow file found at: {workflow_file}")
                    return False, None, ["No CI workflow file"]
                summary = self.run_multiprocess_tests(
                    workflow_file, repo_url_or_path, log_dir=log_dir, max_workers=max_parallel)
        except Exception as e:
            logger.error(f"Error running tests: {e}")
            return False, None, [str(e)]

        print_test_summary(summary)
        os.makedirs(report_dir, exist_ok=True)
        generate_test_summary_report(
            summary, os.path.join(report_dir, f"test_report_{timestamp('%Y-%m-%d_%H-%M-%S')}.txt"))

        failed = [r.group.name for r in summary.failed_results()]
        return summary.all_passed, summary, failed
