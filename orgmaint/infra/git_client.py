"""
Git client infrastructure for orgmaint.

Provides a clean abstraction over git command execution.
All git operations go through this client, making them:
- Easy to mock for testing
- Consistent in error handling
- Isolated from business logic
"""

import subprocess
from typing import Optional, List, Tuple
from pathlib import Path
import logging

logger = logging.getLogger(__name__)


class GitClient:
    """
    Abstraction over git commands.

    Provides methods for the clone / branch / commit / push cycle used by
    every maintenance feature, with consistent error handling.

    Example:
        client = GitClient()
        if client.clone("https://github.com/SciML/Foo.jl.git", "/tmp/Foo"):
            client.create_branch("/tmp/Foo", "fix-formatting")
    """

    def __init__(self, timeout: int = 300):
        """
        Initialize GitClient.

        Args:
            timeout: Command timeout in seconds (default: 300, clones can be slow)
        """
        self.timeout = timeout

    def _run(
        self,
        args: List[str],
        cwd: Optional[str] = None,
        capture_stderr: bool = False
    ) -> Tuple[Optional[str], int]:
        """
        Run a git command.

        Args:
            args: Arguments after `git`
            cwd: Working directory
            capture_stderr: Include stderr in output

        Returns:
            Tuple of (stdout, returncode)
        """
        cmd = ["git", *args]
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )

            output = result.stdout
            if capture_stderr and result.stderr:
                output += result.stderr

            if result.returncode != 0:
                logger.debug(f"git {' '.join(args)} exited {result.returncode}: {result.stderr.strip()}")

            return output.strip() if output else None, result.returncode

        except subprocess.TimeoutExpired:
            logger.warning(f"Git command timed out: {' '.join(cmd)}")
            return None, -1
        except OSError as e:
            logger.error(f"Git command failed: {' '.join(cmd)} - {e}")
            return None, -1

    def is_git_repo(self, path: str) -> bool:
        """Check if path is a git repository."""
        return (Path(path) / ".git").exists()

    def clone(
        self,
        url: str,
        dest: str,
        depth: Optional[int] = None,
        branch: Optional[str] = None,
        quiet: bool = False
    ) -> bool:
        """
        Clone a repository.

        Returns:
            True if successful
        """
        args = ["clone"]
        if depth:
            args += ["--depth", str(depth)]
        if branch:
            args += ["--branch", branch]
        if quiet:
            args.append("--quiet")
        args += [url, str(dest)]
        output, code = self._run(args, capture_stderr=True)
        if code != 0:
            logger.error(f"Failed to clone {url}: {output or 'unknown error'}")
        return code == 0

    def current_branch(self, path: str) -> Optional[str]:
        """Get current branch name."""
        output, code = self._run(["rev-parse", "--abbrev-ref", "HEAD"], cwd=path)
        if code == 0 and output:
            return output.strip()
        return None

    def default_branch(self, path: str) -> str:
        """
        Get the remote's default branch.

        Reads `refs/remotes/origin/HEAD`; falls back to `main` or `master`
        depending on which exists.
        """
        output, code = self._run(["symbolic-ref", "refs/remotes/origin/HEAD"], cwd=path)
        if code == 0 and output:
            return output.strip().split("/")[-1]
        if self.branch_exists(path, "main"):
            return "main"
        return "master"

    def branch_exists(self, path: str, branch: str) -> bool:
        """True if the branch exists locally or on origin."""
        for ref in (f"refs/heads/{branch}", f"refs/remotes/origin/{branch}"):
            _, code = self._run(["show-ref", "--verify", "--quiet", ref], cwd=path)
            if code == 0:
                return True
        return False

    def checkout(self, path: str, branch: str, create: bool = False) -> bool:
        """Check out a branch, optionally creating it."""
        args = ["checkout", "-b", branch] if create else ["checkout", branch]
        output, code = self._run(args, cwd=path, capture_stderr=True)
        if code != 0:
            logger.error(f"Failed to checkout {branch}: {output}")
        return code == 0

    def create_branch(self, path: str, branch: str) -> bool:
        """Create a branch from HEAD and switch to it."""
        return self.checkout(path, branch, create=True)

    def status_porcelain(self, path: str) -> List[str]:
        """Return `git status --porcelain` lines (empty when clean)."""
        output, code = self._run(["status", "--porcelain"], cwd=path)
        if code != 0 or not output:
            return []
        return [line for line in output.splitlines() if line.strip()]

    def changed_files(self, path: str) -> List[str]:
        """Paths reported by `git status --porcelain`."""
        files = []
        for line in self.status_porcelain(path):
            parts = line.split(maxsplit=1)
            if len(parts) == 2:
                files.append(parts[1].strip())
        return files

    def add(self, path: str, files: List[str]) -> bool:
        _, code = self._run(["add", "--", *files], cwd=path)
        return code == 0

    def add_all(self, path: str) -> bool:
        _, code = self._run(["add", "-A"], cwd=path)
        return code == 0

    def diff_cached_stat(self, path: str) -> str:
        output, _ = self._run(["diff", "--cached", "--stat"], cwd=path)
        return output or ""

    def diff_name_only(self, path: str, cached: bool = False) -> List[str]:
        args = ["diff", "--name-only"]
        if cached:
            args.append("--cached")
        output, code = self._run(args, cwd=path)
        if code != 0 or not output:
            return []
        return output.splitlines()

    def commit(
        self,
        path: str,
        message: str,
        author_name: Optional[str] = None,
        author_email: Optional[str] = None
    ) -> bool:
        """
        Commit staged changes.

        When an author is given it is also used as committer, so commits
        succeed on machines without a global git identity.
        """
        args = []
        if author_name and author_email:
            args += ["-c", f"user.name={author_name}", "-c", f"user.email={author_email}"]
        args += ["commit", "-m", message]
        if author_name and author_email:
            args += ["--author", f"{author_name} <{author_email}>"]
        output, code = self._run(args, cwd=path, capture_stderr=True)
        if code != 0:
            logger.error(f"Commit failed in {path}: {output}")
        return code == 0

    def set_identity(self, path: str, name: str, email: str) -> None:
        """Set the repository-local user name and email."""
        self._run(["config", "user.name", name], cwd=path)
        self._run(["config", "user.email", email], cwd=path)

    def push(
        self,
        path: str,
        remote: str = "origin",
        branch: Optional[str] = None,
        force: bool = False,
        set_upstream: bool = False
    ) -> Tuple[bool, str]:
        """
        Push to remote.

        Returns:
            Tuple of (success, output message)
        """
        args = ["push"]
        if set_upstream:
            args.append("-u")
        if force:
            args.append("--force")
        args.append(remote)
        if branch:
            args.append(branch)
        output, code = self._run(args, cwd=path, capture_stderr=True)
        return code == 0, output or ""

    def remote_url(self, path: str, remote: str = "origin") -> Optional[str]:
        """
        Get remote URL.

        Args:
            path: Path to git repository
            remote: Remote name (default: "origin")

        Returns:
            Remote URL or None if not found
        """
        output, code = self._run(["config", "--get", f"remote.{remote}.url"], cwd=path)
        if code == 0 and output:
            return output.strip()
        return None

    def add_remote(self, path: str, name: str, url: str) -> bool:
        """Add a remote, or repoint it if it already exists."""
        if self.remote_url(path, name):
            _, code = self._run(["remote", "set-url", name, url], cwd=path)
        else:
            _, code = self._run(["remote", "add", name, url], cwd=path)
        return code == 0

    def list_objects(self, path: str) -> List[Tuple[str, str]]:
        """(sha, path) pairs for every blob/tree reachable from HEAD that has a path."""
        output, code = self._run(["rev-list", "--objects", "HEAD"], cwd=path)
        if code != 0 or not output:
            return []
        objects = []
        for line in output.splitlines():
            parts = line.split(maxsplit=1)
            if len(parts) == 2:
                objects.append((parts[0], parts[1]))
        return objects

    def object_size(self, path: str, sha: str) -> int:
        """Size in bytes of a git object (0 when unknown)."""
        output, code = self._run(["cat-file", "-s", sha], cwd=path)
        if code == 0 and output and output.isdigit():
            return int(output)
        return 0

    def pull(self, path: str, remote: str = "origin", branch: Optional[str] = None) -> bool:
        """
        Pull from remote.

        Returns:
            True if successful
        """
        args = ["pull", remote]
        if branch:
            args.append(branch)
        _, code = self._run(args, cwd=path)
        return code == 0

    def gc_aggressive(self, path: str) -> bool:
        _, code = self._run(["gc", "--prune=now", "--aggressive"], cwd=path)
        return code == 0

    def last_commit_subject(self, path: str) -> Optional[str]:
        output, code = self._run(["log", "-1", "--pretty=%s"], cwd=path)
        return output if code == 0 else None
