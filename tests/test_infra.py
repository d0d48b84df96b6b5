"""
Tests for the git, gh and julia client wrappers.

Subprocesses and HTTP calls are mocked; nothing here needs the real tools.
The process group test runs a small sh script in place of julia.
"""
import os
import signal
import subprocess
import sys
import time
from unittest.mock import MagicMock, patch

import pytest
import requests

from orgmaint.infra.git_client import GitClient
from orgmaint.infra.github_client import (
    GitHubClient,
    WorkflowRun,
    parse_repo_url,
    repo_name_from_url,
)
from orgmaint.infra.julia_client import JuliaClient, julia_string


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def spawned(output="", returncode=0):
    proc = MagicMock()
    proc.communicate.return_value = (output, None)
    proc.returncode = returncode
    return proc


# ============================================================================
# GitClient
# ============================================================================

class TestGitClient:
    """GitClient builds git command lines and never raises on failure."""

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_clone_arguments(self, mock_run):
        mock_run.return_value = completed()
        assert GitClient().clone("https://github.com/SciML/Foo.jl.git", "/tmp/Foo", depth=1, quiet=True)
        cmd = mock_run.call_args[0][0]
        assert cmd == ["git", "clone", "--depth", "1", "--quiet",
                       "https://github.com/SciML/Foo.jl.git", "/tmp/Foo"]

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_clone_failure(self, mock_run):
        mock_run.return_value = completed(returncode=128, stderr="not found")
        assert not GitClient().clone("https://github.com/SciML/Nope.jl.git", "/tmp/Nope")

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_timeout_returns_minus_one(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="git", timeout=1)
        output, code = GitClient(timeout=1)._run(["status"])
        assert output is None
        assert code == -1

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_default_branch_from_origin_head(self, mock_run):
        mock_run.return_value = completed("refs/remotes/origin/main\n")
        assert GitClient().default_branch("/repo") == "main"

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_default_branch_falls_back_to_master(self, mock_run):
        mock_run.return_value = completed(returncode=1)
        assert GitClient().default_branch("/repo") == "master"

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_branch_exists_checks_remote(self, mock_run):
        mock_run.side_effect = [completed(returncode=1), completed(returncode=0)]
        assert GitClient().branch_exists("/repo", "gh-pages")
        refs = [c[0][0][-1] for c in mock_run.call_args_list]
        assert refs == ["refs/heads/gh-pages", "refs/remotes/origin/gh-pages"]

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_create_branch(self, mock_run):
        mock_run.return_value = completed()
        assert GitClient().create_branch("/repo", "fix-formatting")
        assert mock_run.call_args[0][0] == ["git", "checkout", "-b", "fix-formatting"]

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_commit_with_author_sets_committer(self, mock_run):
        mock_run.return_value = completed()
        GitClient().commit("/repo", "msg", author_name="Bot", author_email="bot@example.com")
        cmd = mock_run.call_args[0][0]
        assert cmd[:5] == ["git", "-c", "user.name=Bot", "-c", "user.email=bot@example.com"]
        assert cmd[-2:] == ["--author", "Bot <bot@example.com>"]

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_push_flags(self, mock_run):
        mock_run.return_value = completed("done")
        ok, output = GitClient().push("/repo", "fork", "fix-formatting", force=True, set_upstream=True)
        assert ok
        assert mock_run.call_args[0][0] == ["git", "push", "-u", "--force", "fork", "fix-formatting"]

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_changed_files(self, mock_run):
        mock_run.return_value = completed(" M src/Foo.jl\n?? .JuliaFormatter.toml\n")
        assert GitClient().changed_files("/repo") == ["src/Foo.jl", ".JuliaFormatter.toml"]

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_list_objects_skips_pathless(self, mock_run):
        mock_run.return_value = completed("abc123\ndef456 v1.0.0/index.html\n")
        assert GitClient().list_objects("/repo") == [("def456", "v1.0.0/index.html")]

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_object_size(self, mock_run):
        mock_run.return_value = completed("2048\n")
        assert GitClient().object_size("/repo", "abc") == 2048

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_last_commit_subject(self, mock_run):
        mock_run.return_value = completed("Bump minor versions for registration\n")
        assert GitClient().last_commit_subject("/repo") == "Bump minor versions for registration"
        assert mock_run.call_args[0][0] == ["git", "log", "-1", "--pretty=%s"]

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_missing_git_binary(self, mock_run):
        mock_run.side_effect = FileNotFoundError("git")
        assert GitClient()._run(["status"]) == (None, -1)

    @patch("orgmaint.infra.git_client.subprocess.run")
    def test_add_remote_repoints_existing(self, mock_run):
        mock_run.side_effect = [completed("https://old"), completed()]
        assert GitClient().add_remote("/repo", "fork", "https://new")
        assert mock_run.call_args[0][0] == ["git", "remote", "set-url", "fork", "https://new"]


# ============================================================================
# GitHubClient
# ============================================================================

class TestRepoUrls:
    @pytest.mark.parametrize("url,expected", [
        ("https://github.com/SciML/Foo.jl.git", ("SciML", "Foo.jl")),
        ("https://github.com/SciML/Foo.jl", ("SciML", "Foo.jl")),
        ("git@github.com:SciML/Foo.jl.git", ("SciML", "Foo.jl")),
        ("https://gitlab.com/SciML/Foo.jl", (None, None)),
        ("", (None, None)),
    ])
    def test_parse_repo_url(self, url, expected):
        assert parse_repo_url(url) == expected

    def test_repo_name_from_url(self):
        assert repo_name_from_url("https://github.com/SciML/Foo.jl.git") == "Foo.jl"
        assert repo_name_from_url("/tmp/work/Bar.jl/") == "Bar.jl"


class TestGitHubClient:
    """gh CLI calls and the REST fallback."""

    def test_token_from_environment(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "abc")
        assert GitHubClient().token == "abc"

    def test_list_julia_repos_filters(self):
        client = GitHubClient(token="t")
        client._gh_json = MagicMock(return_value=[
            {"name": "Foo.jl", "isArchived": False},
            {"name": "Old.jl", "isArchived": True},
            {"name": "docs", "isArchived": False},
        ])
        assert client.list_julia_repos("SciML", limit=10) == ["Foo.jl"]
        args = client._gh_json.call_args[0][0]
        assert args[:5] == ["repo", "list", "SciML", "--limit", "10"]

    def test_list_julia_repos_detailed_uses_description(self):
        client = GitHubClient(token="t")
        client._gh_json = MagicMock(return_value=[
            {"name": "Foo.jl", "description": None, "isArchived": False},
            {"name": "Bench", "description": "Benchmarks for Julia solvers", "isArchived": False},
            {"name": "Site", "description": "website", "isArchived": False},
        ])
        assert client.list_julia_repos_detailed("SciML") == ["Foo.jl", "Bench"]
        assert client.list_julia_repos_detailed("SciML", include_description=False) == ["Foo.jl"]

    def test_list_julia_repos_gh_failure(self):
        client = GitHubClient(token="t")
        client._gh_json = MagicMock(return_value=None)
        assert client.list_julia_repos("SciML") == []

    def test_list_org_repos_api_pages(self):
        client = GitHubClient(token="t")
        client._api = MagicMock(side_effect=[
            [{"full_name": "SciML/A.jl"}, {"full_name": "SciML/B.jl"}],
            [{"full_name": "SciML/C.jl"}],
            [],
        ])
        assert client.list_org_repos_api("SciML") == ["SciML/A.jl", "SciML/B.jl", "SciML/C.jl"]
        assert "page=3" in client._api.call_args[0][0]

    def test_find_pr_null(self):
        client = GitHubClient(token="t")
        client._gh = MagicMock(return_value=("null", 0, ""))
        assert client.find_pr("SciML/Foo.jl", "me:branch") is None

    def test_find_pr_url(self):
        client = GitHubClient(token="t")
        client._gh = MagicMock(return_value=("https://github.com/SciML/Foo.jl/pull/3", 0, ""))
        assert client.find_pr("SciML/Foo.jl", "me:branch").endswith("/pull/3")

    def test_create_pr_success_takes_last_line(self):
        client = GitHubClient(token="t")
        client._gh = MagicMock(return_value=("Creating pull request\nhttps://github.com/SciML/Foo.jl/pull/9", 0, ""))
        url, error = client.create_pr("title", "body", full_name="SciML/Foo.jl", head="me:b", base="main")
        assert url == "https://github.com/SciML/Foo.jl/pull/9"
        assert error == ""
        args = client._gh.call_args[0][0]
        assert ["--repo", "SciML/Foo.jl"] == args[args.index("--repo"):args.index("--repo") + 2]
        assert "--base" in args

    def test_create_pr_failure_returns_stderr(self):
        client = GitHubClient(token="t")
        client._gh = MagicMock(return_value=(None, 1, "a pull request already exists"))
        assert client.create_pr("t", "b") == (None, "a pull request already exists")

    def test_workflow_runs(self):
        client = GitHubClient(token="t")
        client._gh_json = MagicMock(return_value=[
            {"status": "completed", "conclusion": "failure", "headBranch": "master"},
            {"status": "in_progress", "conclusion": "", "headBranch": "main"},
        ])
        runs = client.workflow_runs("SciML/Foo.jl", "FormatCheck")
        assert runs[0].failed
        assert runs[1].conclusion is None
        assert not runs[1].failed

    @patch("orgmaint.infra.github_client.subprocess.run")
    def test_gh_missing(self, mock_run):
        mock_run.side_effect = FileNotFoundError("gh")
        output, code, _ = GitHubClient(token="t")._gh(["api", "user"])
        assert output is None
        assert code == -1

    @patch("orgmaint.infra.github_client.subprocess.run")
    def test_current_user(self, mock_run):
        mock_run.return_value = completed("octocat\n")
        assert GitHubClient(token="t").current_user() == "octocat"


class TestRestFallback:
    """requests-based API access with backoff."""

    @patch("orgmaint.infra.github_client.requests.get")
    def test_token_header(self, mock_get):
        mock_get.return_value = MagicMock(status_code=200, json=MagicMock(return_value=[1]))
        assert GitHubClient(token="secret")._requests_api("orgs/SciML/repos") == [1]
        headers = mock_get.call_args[1]["headers"]
        assert headers["Authorization"] == "token secret"

    @patch("orgmaint.infra.github_client.time.sleep")
    @patch("orgmaint.infra.github_client.requests.get")
    def test_rate_limit_retry(self, mock_get, mock_sleep):
        limited = MagicMock(status_code=403, headers={})
        ok = MagicMock(status_code=200, json=MagicMock(return_value={"ok": True}))
        mock_get.side_effect = [limited, ok]
        assert GitHubClient(token="t", base_delay=0.5)._requests_api("user") == {"ok": True}
        mock_sleep.assert_called_once_with(0.5)

    @patch("orgmaint.infra.github_client.requests.get")
    def test_not_found(self, mock_get):
        mock_get.return_value = MagicMock(status_code=404)
        assert GitHubClient(token="t")._requests_api("repos/x/y") is None

    @patch("orgmaint.infra.github_client.time.sleep")
    @patch("orgmaint.infra.github_client.requests.get")
    def test_request_exception_exhausts_retries(self, mock_get, mock_sleep):
        mock_get.side_effect = requests.ConnectionError("down")
        assert GitHubClient(token="t", max_retries=2)._requests_api("user") is None
        assert mock_get.call_count == 2

    def test_api_prefers_requests_with_token(self):
        client = GitHubClient(token="t")
        client._requests_api = MagicMock(return_value={"x": 1})
        client._gh_json = MagicMock()
        assert client._api("user") == {"x": 1}
        client._gh_json.assert_not_called()


class TestWorkflowRun:
    def test_from_api_response(self):
        run = WorkflowRun.from_api_response({"status": "completed", "conclusion": "success", "headBranch": "main"})
        assert run.head_branch == "main"
        assert not run.failed


# ============================================================================
# JuliaClient
# ============================================================================

class TestJuliaString:
    def test_escapes(self):
        assert julia_string('a"b') == '"a\\"b"'
        assert julia_string("C:\\path") == '"C:\\\\path"'
        assert julia_string("$HOME") == '"\\$HOME"'


class TestJuliaClient:
    """Command construction and failure handling."""

    def test_base_cmd_with_channel_and_project(self):
        client = JuliaClient(executable="julia", channel="1.10")
        assert client._base_cmd("/pkg", ["--startup-file=no"]) == [
            "julia", "+1.10", "--startup-file=no", "--project=/pkg"]

    def test_base_cmd_plain(self):
        assert JuliaClient()._base_cmd(None, ()) == ["julia"]

    @patch("orgmaint.infra.julia_client.subprocess.Popen")
    def test_run_code(self, mock_popen):
        mock_popen.return_value = spawned("hello\n", 0)
        output, code = JuliaClient().run_code('println("hello")', project="/pkg")
        assert (output, code) == ("hello\n", 0)
        assert mock_popen.call_args[0][0] == ["julia", "--project=/pkg", "-e", 'println("hello")']
        assert mock_popen.call_args[1]["stderr"] == subprocess.STDOUT
        assert mock_popen.call_args[1]["start_new_session"] is True

    @patch("orgmaint.infra.julia_client.subprocess.Popen")
    def test_env_merged(self, mock_popen):
        mock_popen.return_value = spawned()
        JuliaClient().run_code("1", env={"GROUP": "Core"})
        env = mock_popen.call_args[1]["env"]
        assert env["GROUP"] == "Core"
        assert "PATH" in env

    @patch("orgmaint.infra.julia_client.subprocess.Popen")
    def test_missing_executable(self, mock_popen):
        mock_popen.side_effect = FileNotFoundError("julia")
        _, code = JuliaClient().run_code("1")
        assert code == -1

    @patch("orgmaint.infra.julia_client.os.killpg")
    @patch("orgmaint.infra.julia_client.subprocess.Popen")
    def test_timeout_kills_process_group(self, mock_popen, mock_killpg):
        proc = spawned()
        proc.pid = 4242
        proc.communicate.side_effect = [
            subprocess.TimeoutExpired(cmd="julia", timeout=5),
            ("partial", None),
        ]
        mock_popen.return_value = proc
        output, code = JuliaClient().run_code("sleep(100)", timeout=5)
        assert (output, code) == ("partial", -1)
        assert proc.communicate.call_args_list[0][1]["timeout"] == 5
        mock_killpg.assert_called_once_with(4242, signal.SIGKILL)
        proc.wait.assert_called_once()

    @patch("orgmaint.infra.julia_client.subprocess.Popen")
    def test_test_uses_minutes(self, mock_popen):
        proc = spawned()
        mock_popen.return_value = proc
        JuliaClient().test("/pkg", timeout_minutes=2)
        assert proc.communicate.call_args[1]["timeout"] == 120
        assert "Pkg.test()" in mock_popen.call_args[0][0][-1]

    @patch("orgmaint.infra.julia_client.subprocess.Popen")
    def test_register_code(self, mock_popen):
        mock_popen.return_value = spawned()
        ok, _ = JuliaClient().register("/work/Foo", registry="General", push=True)
        assert ok
        code = mock_popen.call_args[0][0][-1]
        assert code == 'using LocalRegistry; register("/work/Foo"; registry="General", push=true)'
        assert mock_popen.call_args[1]["cwd"] == "/work/Foo"

    @patch("orgmaint.infra.julia_client.subprocess.Popen")
    def test_time_imports_flags(self, mock_popen):
        mock_popen.return_value = spawned()
        JuliaClient().time_imports("/pkg", "Foo")
        cmd = mock_popen.call_args[0][0]
        assert "--time-imports" in cmd
        assert "--startup-file=no" in cmd
        assert cmd[-1].endswith("using Foo")

    @patch("orgmaint.infra.julia_client.subprocess.Popen")
    def test_instantiate_failure(self, mock_popen):
        mock_popen.return_value = spawned("ERROR", 1)
        assert not JuliaClient().instantiate("/pkg")

    @patch("orgmaint.infra.julia_client.subprocess.Popen")
    def test_log_file_streaming(self, mock_popen, tmp_path):
        log_file = tmp_path / "logs" / "Core.log"

        def fake_popen(cmd, stdout=None, **kwargs):
            stdout.write("Test Summary: Pass\n")
            proc = MagicMock()
            proc.wait.return_value = 0
            return proc

        mock_popen.side_effect = fake_popen
        output, code = JuliaClient().run_code("1", log_file=str(log_file))
        assert code == 0
        assert "Test Summary" in output
        assert mock_popen.call_args[1]["start_new_session"] is True


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX process groups")
class TestJuliaProcessGroup:
    """A timed-out run must not leave julia's children behind."""

    def test_timeout_kills_grandchildren(self, tmp_path):
        marker = tmp_path / "survived"
        fake_julia = tmp_path / "julia"
        fake_julia.write_text('#!/bin/sh\n(sleep 2; touch "$MARKER") &\nwait\n')
        os.chmod(fake_julia, 0o755)

        _, code = JuliaClient(executable=str(fake_julia)).run_code(
            "1", env={"MARKER": str(marker)}, timeout=1)

        assert code == -1
        time.sleep(2.5)
        assert not marker.exists()
