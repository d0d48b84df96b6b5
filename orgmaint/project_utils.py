"""
Helpers for locating and reading Julia Project.toml files, including the
subpackages of monorepos kept under `lib/`.
"""
import os
from pathlib import Path
from typing import Any, Dict, List

import toml

from .domain.project import ProjectInfo

PROJECT_FILENAMES = ("Project.toml", "JuliaProject.toml")


def read_project(project_path) -> Dict[str, Any]:
    """Parse a Project.toml into a dict."""
    with open(project_path, "r") as f:
        return toml.load(f)


def write_project(project_path, project: Dict[str, Any]) -> None:
    """Write a Project.toml back to disk."""
    with open(project_path, "w") as f:
        toml.dump(project, f)


def find_all_project_tomls(repo_path) -> List[str]:
    """
    Find every project file in a repository.

    Looks at the root `Project.toml` / `JuliaProject.toml` and at
    `lib/*/Project.toml` for monorepo subpackages.

    Args:
        repo_path: Repository root

    Returns:
        List of paths, root files first, subpackages sorted by name
    """
    repo = Path(repo_path)
    found = []

    for filename in PROJECT_FILENAMES:
        candidate = repo / filename
        if candidate.is_file():
            found.append(str(candidate))

    lib_dir = repo / "lib"
    if lib_dir.is_dir():
        for sub in sorted(lib_dir.iterdir()):
            candidate = sub / "Project.toml"
            if sub.is_dir() and candidate.is_file():
                found.append(str(candidate))

    return found


def get_project_info(project_path) -> ProjectInfo:
    """Read name, uuid and contents of a project file.

    The name falls back to the containing directory's name.
    """
    project = read_project(project_path)
    parent = Path(project_path).resolve().parent.name
    return ProjectInfo(
        name=project.get("name", parent),
        uuid=project.get("uuid"),
        path=str(project_path),
        project=project,
    )


def is_subpackage(project_path, repo_path) -> bool:
    """True if the project file lives under the repository's `lib/` directory."""
    project = os.path.abspath(project_path)
    lib_dir = os.path.join(os.path.abspath(repo_path), "lib")
    return project.startswith(lib_dir + os.sep)


def get_relative_project_path(project_path, repo_path) -> str:
    return os.path.relpath(project_path, repo_path)


def find_package_dirs(repo_path) -> List[str]:
    """Directories holding a registrable package: the root plus `lib/*`."""
    repo = Path(repo_path)
    dirs = []
    if (repo / "Project.toml").is_file():
        dirs.append(str(repo))
    lib_dir = repo / "lib"
    if lib_dir.is_dir():
        for sub in sorted(lib_dir.iterdir()):
            if sub.is_dir() and (sub / "Project.toml").is_file():
                dirs.append(str(sub))
    return dirs
