"""
Tests for gh-pages documentation cleanup.

The service tests build real repositories with git and are skipped when
git is not installed.
"""
import os
from pathlib import Path

import pytest

from orgmaint.infra.git_client import GitClient
from orgmaint.services.docs_cleanup_service import (
    DocsCleanupService,
    directory_stats,
    find_all_versions,
    find_latest_version,
    find_old_versions,
    generate_analysis_report,
)

BIG = 1_600_000


def _write(path, content="<html></html>"):
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content)


def build_site(root):
    """A Documenter deployment: three releases, dev, previews and a stable link."""
    for version in ("v1.0.0", "v1.2.0", "v1.10.0", "dev"):
        _write(root / version / "index.html")
    _write(root / "v1.2.0" / "tutorial.gif", bytes(BIG))
    _write(root / "previews" / "PR12" / "index.html")
    _write(root / "index.html", '<meta http-equiv="refresh" content="0; url=./stable/"/>')
    os.symlink("v1.10.0", root / "stable")


@pytest.fixture
def site(tmp_path):
    root = tmp_path / "site"
    root.mkdir()
    build_site(root)
    return root


@pytest.fixture
def repo(tmp_path, run_git):
    """A repository on `main` with a gh-pages branch holding a built site."""
    path = tmp_path / "Foo.jl"
    path.mkdir()
    run_git(path, "init", "-q")
    (path / "README.md").write_text("# Foo\n")
    run_git(path, "add", "-A")
    run_git(path, "commit", "-q", "-m", "Initial commit")
    run_git(path, "branch", "-M", "main")

    run_git(path, "checkout", "-q", "--orphan", "gh-pages")
    run_git(path, "rm", "-q", "-rf", ".")
    build_site(path)
    run_git(path, "add", "-A")
    run_git(path, "commit", "-q", "-m", "build based on abc123")
    run_git(path, "checkout", "-q", "main")
    return path


@pytest.fixture
def service(config, github, julia):
    return DocsCleanupService(config, git_client=GitClient(), github_client=github, julia_client=julia)


# ============================================================================
# Directory helpers
# ============================================================================

class TestVersionDirectories:
    def test_all_versions_semantic_order(self, site):
        assert find_all_versions(str(site)) == ["v1.10.0", "v1.2.0", "v1.0.0"]
        assert find_latest_version(str(site)) == "v1.10.0"

    def test_old_versions(self, site):
        assert find_old_versions(str(site), "v1.10.0") == ["dev", "previews", "v1.0.0", "v1.2.0"]

    def test_old_versions_without_preserve(self, site):
        assert "v1.10.0" in find_old_versions(str(site))

    def test_preview_prefix(self, tmp_path):
        (tmp_path / "preview-42").mkdir()
        (tmp_path / "assets").mkdir()
        assert find_old_versions(str(tmp_path)) == ["preview-42"]

    def test_no_versions(self, tmp_path):
        assert find_latest_version(str(tmp_path)) is None

    def test_directory_stats(self, site):
        files, size = directory_stats(str(site / "v1.2.0"))
        assert files == 2
        assert size == BIG + len("<html></html>")

    def test_analysis_report(self):
        text = generate_analysis_report([("a.gif", 2.0), ("b.gif", 7.5)], ["v1.0.0"])
        assert "Total versions found: 1" in text
        assert "Total size of large files: 9.5 MB" in text
        assert text.index("7.5 MB - b.gif") < text.index("2.0 MB - a.gif")


# ============================================================================
# Cleaning a repository
# ============================================================================

@pytest.mark.requires_git
class TestCleanup:
    """Cleaning gh-pages in a real repository."""

    def test_dry_run_changes_nothing(self, service, repo, run_git):
        head = run_git(repo, "rev-parse", "gh-pages")

        result = service.cleanup_gh_pages_docs(str(repo), dry_run=True, size_threshold_mb=1.0)

        assert result.success
        assert result.dry_run
        assert result.preserved_version == "v1.10.0"
        assert result.versions_cleaned == ["dev", "previews", "v1.0.0", "v1.2.0"]
        assert result.dirs_removed == 4
        assert result.files_removed == 5
        assert result.size_saved_mb > 1.5
        assert run_git(repo, "rev-parse", "gh-pages") == head
        assert run_git(repo, "rev-parse", "--abbrev-ref", "HEAD").strip() == "main"

    def test_cleanup_commits_on_gh_pages(self, service, repo, run_git):
        result = service.cleanup_gh_pages_docs(str(repo))

        assert result.success
        assert not result.dry_run
        files = run_git(repo, "ls-tree", "--name-only", "gh-pages").split()
        assert sorted(files) == ["index.html", "stable", "v1.10.0"]
        assert run_git(repo, "log", "-1", "--pretty=%s", "gh-pages").strip() == (
            "Clean up old documentation versions and large files")
        body = run_git(repo, "log", "-1", "--pretty=%b", "gh-pages")
        assert "Preserved: v1.10.0" in body
        assert run_git(repo, "rev-parse", "--abbrev-ref", "HEAD").strip() == "main"
        assert (repo / "README.md").exists()

    def test_remove_all_versions(self, service, repo, run_git):
        result = service.cleanup_gh_pages_docs(str(repo), preserve_latest=False)

        assert result.preserved_version is None
        assert "v1.10.0" in result.versions_cleaned
        assert "Removed all versions" in run_git(repo, "log", "-1", "--pretty=%b", "gh-pages")

    def test_no_gh_pages_branch(self, service, tmp_path, run_git):
        run_git(tmp_path, "init", "-q")
        result = service.cleanup_gh_pages_docs(str(tmp_path))
        assert result.success
        assert result.files_removed == 0

    def test_not_a_repository(self, service, tmp_path):
        with pytest.raises(ValueError, match="Not a Git repository"):
            service.cleanup_gh_pages_docs(str(tmp_path))

    def test_missing_path(self, service, tmp_path):
        with pytest.raises(ValueError, match="does not exist"):
            service.cleanup_gh_pages_docs(str(tmp_path / "missing"))

    def test_bloat_analysis(self, service, repo, run_git):
        analysis = service.analyze_gh_pages_bloat(str(repo))

        assert analysis.versions == ["v1.10.0", "v1.2.0", "v1.0.0"]
        assert analysis.latest_version == "v1.10.0"
        assert [path for path, _ in analysis.large_files] == ["v1.2.0/tutorial.gif"]
        assert analysis.total_size_mb == pytest.approx(BIG / (1024 * 1024))
        assert "Large files (>1MB): 1" in analysis.analysis
        assert run_git(repo, "rev-parse", "--abbrev-ref", "HEAD").strip() == "main"


@pytest.mark.requires_git
class TestCleanupOrg:
    def test_clone_and_clean(self, service, repo, tmp_path):
        work = tmp_path / "work"
        results = service.cleanup_org_gh_pages_docs(
            [str(repo), str(tmp_path / "Missing.jl")], dry_run=True, working_dir=str(work))

        cleaned, missing = results
        assert cleaned.repository == "Foo.jl"
        assert cleaned.repo_url == str(repo)
        assert cleaned.success
        assert cleaned.dirs_removed == 4
        assert Path(work, "Foo.jl", ".git").is_dir()

        assert missing.repository == "Missing.jl"
        assert not missing.success
        assert missing.error_message.startswith("Failed to clone")
