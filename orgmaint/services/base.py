"""
Common wiring for maintenance services.
"""

import logging
from typing import Any, Dict, Optional

from ..config import load_config, get_registries_dir
from ..domain.operation import OperationSummary
from ..infra.git_client import GitClient
from ..infra.github_client import GitHubClient
from ..infra.julia_client import JuliaClient

logger = logging.getLogger(__name__)


class MaintenanceService:
    """
    Base class holding configuration and the external clients.

    Clients are created from configuration unless injected, which is how
    tests substitute mocks for git, gh and julia.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        git_client: Optional[GitClient] = None,
        github_client: Optional[GitHubClient] = None,
        julia_client: Optional[JuliaClient] = None
    ):
        """
        Initialize the service.

        Args:
            config: Configuration dict (loads default if None)
            git_client: GitClient instance (creates new if None)
            github_client: GitHubClient instance (creates new if None)
            julia_client: JuliaClient instance (creates new if None)
        """
        self.config = config or load_config()
        self.git = git_client or GitClient(timeout=self.config["git"]["timeout"])
        self._github = github_client
        self.julia = julia_client or JuliaClient(executable=self.config["julia"]["executable"])
        self.last_result: Optional[OperationSummary] = None

    @property
    def github(self) -> GitHubClient:
        # gh auth status is only probed once something needs GitHub
        if self._github is None:
            self._github = self._github_client(self.config["github"].get("token") or None)
        return self._github

    def _github_client(self, token: Optional[str]) -> GitHubClient:
        rate_limit = self.config["github"].get("rate_limit", {})
        return GitHubClient(
            token=token,
            max_retries=rate_limit.get("max_retries", 3),
            max_delay=rate_limit.get("max_delay_seconds", 60),
        )

    @property
    def bot_identity(self):
        """(name, email) used for automated commits."""
        return self.config["git"]["bot_name"], self.config["git"]["bot_email"]

    @property
    def registries_dir(self):
        return get_registries_dir(self.config)

    @property
    def general_registry(self):
        return self.registries_dir / self.config["julia"]["registry"]
