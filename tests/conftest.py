"""
Shared fixtures for orgmaint tests.
"""
import os
import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import toml

from orgmaint.config import get_default_config
from orgmaint.infra.git_client import GitClient
from orgmaint.infra.github_client import GitHubClient
from orgmaint.infra.julia_client import JuliaClient


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the config file at an empty temp location for every test."""
    monkeypatch.setenv("ORGMAINT_CONFIG", str(tmp_path / "orgmaint_config" / "config.json"))
    for key in list(os.environ):
        if key.startswith("ORGMAINT_") and key != "ORGMAINT_CONFIG":
            monkeypatch.delenv(key)


@pytest.fixture
def config(tmp_path):
    """Default configuration writing logs and registries under tmp_path."""
    cfg = get_default_config()
    cfg["general"]["log_dir"] = str(tmp_path / "logs")
    cfg["general"]["rate_limit_delay"] = 0
    cfg["julia"]["registries_dir"] = str(tmp_path / "registries")
    return cfg


@pytest.fixture
def git():
    client = MagicMock(spec=GitClient)
    client.clone.return_value = True
    client.default_branch.return_value = "master"
    client.checkout.return_value = True
    client.create_branch.return_value = True
    client.commit.return_value = True
    client.push.return_value = (True, "")
    client.status_porcelain.return_value = []
    client.changed_files.return_value = []
    client.diff_cached_stat.return_value = ""
    client.pull.return_value = True
    client.add_remote.return_value = True
    return client


@pytest.fixture
def github():
    client = MagicMock(spec=GitHubClient)
    client.current_user.return_value = "bot-user"
    client.repo_exists.return_value = True
    client.fork.return_value = True
    client.find_pr.return_value = None
    client.create_pr.return_value = ("https://github.com/SciML/Foo.jl/pull/1", "")
    client.list_julia_repos.return_value = []
    client.workflow_runs.return_value = []
    return client


@pytest.fixture
def julia():
    client = MagicMock(spec=JuliaClient)
    client.executable = "julia"
    client.run_code.return_value = ("", 0)
    client.run_script.return_value = ("", 0)
    client.test.return_value = ("", 0)
    client.instantiate.return_value = True
    client.update.return_value = True
    client.resolve.return_value = ("", 0)
    client.load_package.return_value = (True, "")
    client.register.return_value = (True, "")
    client.format.return_value = (True, "")
    client.time_imports.return_value = ("", 0)
    return client


def _make_package(root, name="Foo", version="1.2.3", deps=None, compat=None, uuid=None):
    """Create a minimal Julia package directory and return its path."""
    root = Path(root)
    root.mkdir(parents=True, exist_ok=True)
    project = {
        "name": name,
        "uuid": uuid or "7876af07-990d-54b4-ab0e-23690620f79a",
        "version": version,
    }
    if deps:
        project["deps"] = deps
    if compat:
        project["compat"] = compat
    with open(root / "Project.toml", "w") as f:
        toml.dump(project, f)
    (root / "src").mkdir(exist_ok=True)
    (root / "src" / f"{name}.jl").write_text(f"module {name}\n\nend\n")
    return root


def _make_registry(root, packages):
    """
    Create a registry tree: {name: [versions]} -> <root>/<I>/<Name>/Versions.toml.
    """
    root = Path(root)
    for name, versions in packages.items():
        pkg_dir = root / name[0].upper() / name
        pkg_dir.mkdir(parents=True, exist_ok=True)
        with open(pkg_dir / "Versions.toml", "w") as f:
            for version in versions:
                f.write(f'["{version}"]\ngit-tree-sha1 = "{"0" * 40}"\n\n')
    return root


@pytest.fixture
def make_package():
    return _make_package


@pytest.fixture
def make_registry():
    return _make_registry


def _run_git(cwd, *args):
    """Run git with a fixed identity, raising on failure."""
    return subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=cwd, check=True, capture_output=True, text=True,
    ).stdout


@pytest.fixture
def run_git():
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    return _run_git
