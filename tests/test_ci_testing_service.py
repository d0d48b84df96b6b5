"""
Tests for running CI test groups locally.
"""
import io
import os
import threading
from unittest.mock import MagicMock

import pytest

from orgmaint.domain import TestGroup, TestResult, TestSummary
from orgmaint.services.ci_testing_service import (
    DEFAULT_WORKFLOW,
    CITestingService,
    generate_test_summary_report,
    parse_ci_workflow,
    print_test_summary,
)

WORKFLOW = """\
name: CI
on:
  pull_request:
  push:
    branches: [master]
jobs:
  test:
    runs-on: ubuntu-latest
    continue-on-error: ${{ matrix.group == 'Downstream' || matrix.group == 'GPU' }}
    strategy:
      fail-fast: false
      matrix:
        group:
          - Core
          - Interface
          - Downstream
          - GPU
        version:
          - '1'
    steps:
      - uses: actions/checkout@v4
      - uses: julia-actions/julia-runtest@v1
        env:
          GROUP: ${{ matrix.group }}
"""


@pytest.fixture
def service(config, git, github, julia):
    return CITestingService(config, git_client=git, github_client=github, julia_client=julia)


@pytest.fixture
def project(tmp_path, make_package):
    pkg = make_package(tmp_path / "Foo.jl")
    workflow = pkg / DEFAULT_WORKFLOW
    workflow.parent.mkdir(parents=True)
    workflow.write_text(WORKFLOW)
    return pkg


def fake_test(failing=(), timeouts=()):
    """JuliaClient.test stand-in writing the log and failing for the named groups."""
    def run(project, timeout_minutes=None, env=None, log_file=None):
        group = env["GROUP"]
        with open(log_file, "w") as f:
            f.write(f"Testing {group}\n")
        if group in timeouts:
            return "", -1
        return "", 1 if group in failing else 0
    return run


def _summary():
    results = [
        TestResult(TestGroup("Core", {"GROUP": "Core"}), True, 12.5, "logs/Core.log"),
        TestResult(TestGroup("GPU", {"GROUP": "GPU"}), False, 40.0, "logs/GPU.log",
                   error_message="Pkg.test() failed with exit code 1 " + "x" * 120),
    ]
    return TestSummary(2, 1, 1, 52.5, results)


# ============================================================================
# Workflow parsing
# ============================================================================

class TestParseWorkflow:
    def test_groups(self, project):
        groups = parse_ci_workflow(str(project / DEFAULT_WORKFLOW))
        assert [g.name for g in groups] == ["Core", "Interface", "Downstream", "GPU"]
        assert groups[0].env_vars == {"GROUP": "Core"}
        assert [g.continue_on_error for g in groups] == [False, False, True, True]

    def test_no_matrix(self, tmp_path):
        workflow = tmp_path / "CI.yml"
        workflow.write_text("jobs:\n  test:\n    runs-on: ubuntu-latest\n")
        assert parse_ci_workflow(str(workflow)) == []

    def test_empty_file(self, tmp_path):
        workflow = tmp_path / "CI.yml"
        workflow.write_text("")
        assert parse_ci_workflow(str(workflow)) == []

    def test_boolean_continue_on_error(self, tmp_path):
        workflow = tmp_path / "CI.yml"
        workflow.write_text("jobs:\n  test:\n    continue-on-error: true\n"
                            "    strategy:\n      matrix:\n        group: [All]\n")
        assert not parse_ci_workflow(str(workflow))[0].continue_on_error

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            parse_ci_workflow(str(tmp_path / "CI.yml"))


# ============================================================================
# Reports
# ============================================================================

class TestReports:
    def test_report_text(self, tmp_path):
        out = tmp_path / "report.txt"
        report = generate_test_summary_report(_summary(), str(out))

        assert out.read_text() == report
        assert "  Success Rate: 50.0%" in report
        assert report.index("GPU") < report.index("Core")
        assert "✗ FAIL    40.00s GPU" in report
        assert "    Error: Pkg.test() failed with exit code 1 " in report
        assert "...\n    Log: logs/GPU.log" in report
        assert "FAILED GROUPS SUMMARY:" in report
        assert "• GPU" in report

    def test_all_passed_report(self):
        summary = TestSummary(1, 1, 0, 1.0, [TestResult(TestGroup("Core"), True, 1.0, "Core.log")])
        assert "FAILED GROUPS SUMMARY" not in generate_test_summary_report(summary)

    def test_print_summary(self):
        out = io.StringIO()
        print_test_summary(_summary(), file=out)
        text = out.getvalue()
        assert "Total: 2 | Passed: 1 | Failed: 1 | Success: 50.0%" in text
        assert "• GPU (logs/GPU.log)" in text


# ============================================================================
# Running groups
# ============================================================================

class TestRunGroups:
    """Each group runs Pkg.test() in its own Julia process."""

    def test_single_group(self, service, julia, config, tmp_path):
        julia.test.side_effect = fake_test()
        group = TestGroup("Core", {"GROUP": "Core"})

        result = service.run_single_test_group(group, "/work/Foo.jl", str(tmp_path / "logs"))

        assert result.success
        assert result.error_message is None
        assert result.log_file == str(tmp_path / "logs" / "Core.log")
        julia.test.assert_called_once_with(
            "/work/Foo.jl", timeout_minutes=config["julia"]["test_timeout_minutes"],
            env={"GROUP": "Core"}, log_file=result.log_file)

    def test_failure_and_timeout(self, service, julia, config, tmp_path):
        julia.test.side_effect = fake_test(failing={"Core"}, timeouts={"GPU"})
        failed = service.run_single_test_group(TestGroup("Core", {"GROUP": "Core"}), ".", str(tmp_path))
        timed_out = service.run_single_test_group(TestGroup("GPU", {"GROUP": "GPU"}), ".", str(tmp_path))

        assert failed.error_message == "Pkg.test() failed with exit code 1"
        minutes = config["julia"]["test_timeout_minutes"]
        assert timed_out.error_message == f"Timed out after {minutes} minutes"

    def test_multiprocess(self, service, julia, project, tmp_path):
        threads = set()

        def run(project, **kwargs):
            threads.add(threading.current_thread().name)
            return fake_test(failing={"GPU"})(project, **kwargs)

        julia.test.side_effect = run
        log_dir = tmp_path / "logs"

        summary = service.run_multiprocess_tests(
            str(project / DEFAULT_WORKFLOW), str(project), log_dir=str(log_dir), max_workers=2)

        julia.resolve.assert_called_once_with(str(project))
        assert [r.group.name for r in summary.results] == ["Core", "Interface", "Downstream", "GPU"]
        assert (summary.total_groups, summary.passed_groups, summary.failed_groups) == (4, 3, 1)
        assert sorted(os.listdir(log_dir)) == ["Core.log", "Downstream.log", "GPU.log", "Interface.log"]
        assert (log_dir / "GPU.log").read_text() == "Testing GPU\n"
        assert len(threads) <= 2

    def test_resolve_failure(self, service, julia, project):
        julia.resolve.return_value = ("ERROR: Unsatisfiable requirements", 1)
        with pytest.raises(RuntimeError, match="Pkg.resolve\\(\\) failed"):
            service.run_multiprocess_tests(str(project / DEFAULT_WORKFLOW), str(project))

    def test_missing_project(self, service, tmp_path):
        with pytest.raises(FileNotFoundError):
            service.setup_test_environment(str(tmp_path / "missing"))


class TestFromRepo:
    def test_clone(self, service, git, tmp_path):
        service.run_multiprocess_tests = MagicMock(return_value=_summary())

        service.run_tests_from_repo("https://github.com/SciML/Foo.jl.git", branch="main",
                                    work_dir=str(tmp_path), max_workers=3)

        repo_path = str(tmp_path / "Foo.jl")
        git.clone.assert_called_once_with("https://github.com/SciML/Foo.jl.git", repo_path, branch="main")
        service.run_multiprocess_tests.assert_called_once_with(
            os.path.join(repo_path, DEFAULT_WORKFLOW), repo_path, log_dir="test_logs", max_workers=3)

    def test_existing_checkout_pulled(self, service, git, tmp_path):
        (tmp_path / "Foo.jl").mkdir()
        service.run_multiprocess_tests = MagicMock(return_value=_summary())
        service.run_tests_from_repo("https://github.com/SciML/Foo.jl", work_dir=str(tmp_path))
        git.pull.assert_called_once_with(str(tmp_path / "Foo.jl"), "origin", "master")
        git.clone.assert_not_called()

    def test_clone_failure(self, service, git, tmp_path):
        git.clone.return_value = False
        with pytest.raises(RuntimeError, match="Failed to clone"):
            service.run_tests_from_repo("https://github.com/SciML/Foo.jl", work_dir=str(tmp_path))


class TestQuick:
    """One-call runs with a printed summary and a report file."""

    def test_local_path(self, service, julia, project, tmp_path, capsys):
        julia.test.side_effect = fake_test(failing={"Downstream"})
        reports = tmp_path / "reports"

        ok, summary, failed = service.run_tests_quick(
            str(project), log_dir=str(tmp_path / "logs"), report_dir=str(reports))

        assert not ok
        assert failed == ["Downstream"]
        assert summary.total_groups == 4
        [report] = os.listdir(reports)
        assert report.startswith("test_report_")
        assert "TEST SUMMARY" in capsys.readouterr().out

    def test_missing_workflow(self, service, tmp_path):
        assert service.run_tests_quick(str(tmp_path)) == (False, None, ["No CI workflow file"])

    def test_url_errors_reported(self, service, git, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        git.clone.return_value = False
        ok, summary, errors = service.run_tests_quick("https://github.com/SciML/Foo.jl")
        assert (ok, summary) == (False, None)
        assert errors == ["Failed to clone https://github.com/SciML/Foo.jl"]
