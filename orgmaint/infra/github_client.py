"""
GitHub client infrastructure for orgmaint.

Provides a clean abstraction over GitHub access:
- Uses `gh` CLI for repository listing, forks, workflow runs and pull requests
- Falls back to requests with token for REST listing
- Handles rate limiting with exponential backoff
"""

import subprocess
import json
import os
import re
import time
import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Tuple

import requests

logger = logging.getLogger(__name__)


@dataclass
class WorkflowRun:
    """A GitHub Actions workflow run as reported by `gh run list`."""
    status: str
    conclusion: Optional[str]
    head_branch: str

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> 'WorkflowRun':
        return cls(
            status=data.get('status', ''),
            conclusion=data.get('conclusion') or None,
            head_branch=data.get('headBranch', ''),
        )

    @property
    def failed(self) -> bool:
        return self.conclusion == "failure"


def parse_repo_url(url: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Parse a GitHub URL into (owner, repo).

    Handles HTTPS and SSH formats, with or without a trailing `.git`.
    """
    if not url:
        return None, None
    match = re.search(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?/?$", url.strip())
    if match:
        return match.group(1), match.group(2)
    return None, None


def repo_name_from_url(url: str) -> str:
    """Repository name (without `.git`) from a URL or local path."""
    name = url.rstrip("/").split("/")[-1]
    return name[:-4] if name.endswith(".git") else name


class GitHubClient:
    """
    GitHub client with rate limiting.

    Uses `gh` CLI when available and authenticated,
    with fallback to direct REST calls with token.

    Example:
        client = GitHubClient()
        for name in client.list_julia_repos("SciML", limit=50):
            print(name)
    """

    def __init__(
        self,
        token: Optional[str] = None,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: int = 60
    ):
        """
        Initialize GitHubClient.

        Args:
            token: GitHub token (defaults to ORGMAINT_GITHUB_TOKEN or GITHUB_TOKEN env var)
            max_retries: Maximum retry attempts for rate-limited requests
            base_delay: Base delay for exponential backoff
            max_delay: Maximum delay between retries
            timeout: Timeout in seconds for `gh` invocations
        """
        self.token = token or os.environ.get('ORGMAINT_GITHUB_TOKEN') or os.environ.get('GITHUB_TOKEN')
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._use_gh_cli: Optional[bool] = None

    @property
    def use_gh_cli(self) -> bool:
        if self._use_gh_cli is None:
            self._use_gh_cli = self._check_gh_cli()
        return self._use_gh_cli

    def _check_gh_cli(self) -> bool:
        """Check if gh CLI is available and authenticated."""
        try:
            result = subprocess.run(
                ['gh', 'auth', 'status'],
                capture_output=True,
                text=True,
                timeout=10
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return False

    def _gh(self, args: List[str], cwd: Optional[str] = None) -> Tuple[Optional[str], int, str]:
        """
        Run a gh CLI command.

        Returns:
            Tuple of (stdout, returncode, stderr)
        """
        try:
            result = subprocess.run(
                ['gh', *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
            stdout = result.stdout.strip() if result.stdout else None
            return stdout, result.returncode, result.stderr or ""
        except subprocess.TimeoutExpired:
            logger.warning(f"gh command timed out: gh {' '.join(args)}")
            return None, -1, "timed out"
        except FileNotFoundError as e:
            logger.error(f"gh CLI not found: {e}")
            return None, -1, str(e)

    def _gh_json(self, args: List[str], cwd: Optional[str] = None) -> Optional[Any]:
        output, code, stderr = self._gh(args, cwd=cwd)
        if code != 0 or not output:
            logger.debug(f"gh {' '.join(args)} failed: {stderr.strip()}")
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            logger.debug(f"Could not parse gh output for {' '.join(args)}: {e}")
            return None

    def _requests_api(self, endpoint: str) -> Optional[Any]:
        """Call GitHub API using requests library."""
        url = f"https://api.github.com/{endpoint}"
        headers = {
            'Accept': 'application/vnd.github.v3+json',
            'User-Agent': 'orgmaint'
        }

        if self.token:
            headers['Authorization'] = f'token {self.token}'

        for attempt in range(self.max_retries):
            try:
                response = requests.get(url, headers=headers, timeout=30)

                if response.status_code == 200:
                    return response.json()

                if response.status_code == 403:
                    reset_time = response.headers.get('X-RateLimit-Reset')
                    if reset_time:
                        wait_time = int(reset_time) - int(time.time())
                        if 0 < wait_time < self.max_delay:
                            logger.info(f"Rate limited, waiting {wait_time}s")
                            time.sleep(wait_time)
                            continue

                    delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                    logger.info(f"Rate limited, waiting {delay}s (attempt {attempt + 1})")
                    time.sleep(delay)
                    continue

                if response.status_code == 404:
                    return None

                logger.warning(f"GitHub API error {response.status_code} for {endpoint}")
                return None

            except requests.RequestException as e:
                logger.warning(f"GitHub API request failed: {e}")
                if attempt < self.max_retries - 1:
                    delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                    time.sleep(delay)
                continue

        return None

    def _api(self, endpoint: str) -> Optional[Any]:
        """Call GitHub API using best available method."""
        if self.token is None and self.use_gh_cli:
            result = self._gh_json(['api', endpoint])
            if result is not None:
                return result

        return self._requests_api(endpoint)

    # ------------------------------------------------------------------
    # Repository listing
    # ------------------------------------------------------------------

    def list_org_repos_api(self, org: str) -> List[str]:
        """
        List every repository of an organization via the REST API.

        Pages through `orgs/{org}/repos` 100 at a time until an empty page.

        Returns:
            List of `owner/name` strings
        """
        repos = []
        page = 1
        while True:
            data = self._api(f"orgs/{org}/repos?page={page}&per_page=100")
            if not data or not isinstance(data, list):
                break
            repos.extend(item['full_name'] for item in data if 'full_name' in item)
            page += 1
        return repos

    def list_julia_repos(self, org: str, limit: int = 100) -> List[str]:
        """Names of non-archived `*.jl` repositories of an organization."""
        data = self._gh_json([
            'repo', 'list', org, '--limit', str(limit), '--json', 'name,isArchived'
        ])
        if data is None:
            logger.error(f"Failed to list repositories for {org}")
            return []
        return [
            repo['name'] for repo in data
            if not repo.get('isArchived', False) and repo.get('name', '').endswith('.jl')
        ]

    def list_julia_repos_detailed(
        self,
        org: str,
        limit: int = 1000,
        include_description: bool = True
    ) -> List[str]:
        """
        Julia package repositories of an organization.

        Matches `*.jl` names, or descriptions mentioning Julia when
        include_description is set. Archived repositories are dropped.
        """
        data = self._gh_json([
            'repo', 'list', org, '--limit', str(limit),
            '--json', 'name,description,isArchived'
        ])
        if data is None:
            logger.error(f"Failed to list repositories for {org}")
            return []
        repos = []
        for repo in data:
            if repo.get('isArchived', False):
                continue
            name = repo.get('name', '')
            description = (repo.get('description') or '').lower()
            if name.endswith('.jl') or (include_description and 'julia' in description):
                repos.append(name)
        return repos

    # ------------------------------------------------------------------
    # Forks and pull requests
    # ------------------------------------------------------------------

    def current_user(self) -> Optional[str]:
        """Login of the account gh is authenticated as."""
        output, code, _ = self._gh(['api', 'user', '--jq', '.login'])
        if code == 0 and output:
            return output
        return None

    def repo_exists(self, full_name: str) -> bool:
        _, code, _ = self._gh(['repo', 'view', full_name, '--json', 'name'])
        return code == 0

    def fork(self, full_name: str) -> bool:
        """Fork a repository into the authenticated account without cloning."""
        _, code, stderr = self._gh(['repo', 'fork', full_name, '--clone=false'])
        if code != 0:
            logger.error(f"Failed to fork {full_name}: {stderr.strip()}")
        return code == 0

    def find_pr(self, full_name: str, head: str) -> Optional[str]:
        """URL of an open pull request from `head`, if one exists."""
        output, code, _ = self._gh([
            'pr', 'list', '--repo', full_name, '--head', head,
            '--json', 'url', '--jq', '.[0].url'
        ])
        if code == 0 and output and output != "null":
            return output
        return None

    def create_pr(
        self,
        title: str,
        body: str,
        full_name: Optional[str] = None,
        head: Optional[str] = None,
        base: Optional[str] = None,
        cwd: Optional[str] = None
    ) -> Tuple[Optional[str], str]:
        """
        Open a pull request.

        Returns:
            Tuple of (PR URL or None, error output)
        """
        args = ['pr', 'create', '--title', title, '--body', body]
        if full_name:
            args += ['--repo', full_name]
        if head:
            args += ['--head', head]
        if base:
            args += ['--base', base]
        output, code, stderr = self._gh(args, cwd=cwd)
        if code == 0 and output:
            return output.splitlines()[-1].strip(), ""
        return None, stderr or output or "unknown error"

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def workflow_runs(self, full_name: str, workflow: str, limit: int = 10) -> List[WorkflowRun]:
        """Recent runs of a workflow; empty when the workflow does not exist."""
        data = self._gh_json([
            'run', 'list', '--repo', full_name, '--workflow', workflow,
            '--limit', str(limit), '--json', 'status,conclusion,headBranch'
        ])
        if not data:
            return []
        return [WorkflowRun.from_api_response(item) for item in data]
