"""
Shared utility functions for orgmaint.
"""
import os
import shutil
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from .config import logger
from .domain.operation import OperationDetail, OperationStatus, OperationSummary


def timestamp(fmt: str = "%Y-%m-%d_%H%M%S") -> str:
    return datetime.now().strftime(fmt)


@contextmanager
def workspace(work_dir: Optional[str] = None, prefix: str = "orgmaint_") -> Iterator[str]:
    """
    Yield a directory to clone repositories into.

    A given work_dir is created if needed and left in place; otherwise a
    temporary directory is created and removed on exit.
    """
    if work_dir:
        os.makedirs(work_dir, exist_ok=True)
        yield work_dir
        return

    path = tempfile.mkdtemp(prefix=prefix)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


def github_clone_url(org: str, repo: str) -> str:
    """HTTPS clone URL for an organization repository."""
    return f"https://github.com/{org}/{repo}.git"


class RunLog:
    """
    Plain-text log of an organization-wide run.

    Writes a header, one entry per repository and a closing summary, and
    flushes after each entry so progress can be followed with `tail -f`.

    Example:
        with RunLog(path, "Formatting", org, total=len(repos)) as run_log:
            run_log.entry(1, detail)
            run_log.summary(result)
    """

    def __init__(self, path, title: str, org: str, total: int):
        self.path = Path(path)
        self.title = title
        self.org = org
        self.total = total
        self._fh = None

    @staticmethod
    def default_path(log_dir, subdir: str, prefix: str, org: str) -> Path:
        """`<log_dir>/<subdir>/<prefix>_<org>_<timestamp>.log`, creating the dir."""
        directory = Path(log_dir) / subdir
        directory.mkdir(parents=True, exist_ok=True)
        return directory / f"{prefix}_{org}_{timestamp()}.log"

    def __enter__(self) -> "RunLog":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.path, "w")
        self._write(f"# {self.org} Organization {self.title} Log")
        self._write(f"# Generated: {datetime.now().isoformat(timespec='seconds')}")
        self._write(f"# Organization: {self.org}")
        self._write(f"# Total repositories: {self.total}")
        self._write("#" + "=" * 60)
        self._write("")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._fh:
            self._fh.close()
            self._fh = None

    def _write(self, line: str) -> None:
        self._fh.write(line + "\n")

    def note(self, line: str) -> None:
        """Add a free-form header or comment line."""
        self._write(line)

    def entry(self, index: int, detail: OperationDetail) -> None:
        """Record the outcome for one repository."""
        self._write(f"\n[{index}/{self.total}] Processing {detail.repo_name}...")
        if detail.status == OperationStatus.SUCCESS:
            self._write(f"✓ SUCCESS: {detail.message or ''}")
            if detail.pr_url:
                self._write(f"  PR: {detail.pr_url}")
        elif detail.status == OperationStatus.SKIPPED:
            self._write(f"⚠️  SKIPPED: {detail.message or ''}")
        elif detail.action == "error":
            self._write(f"✗ ERROR: {detail.error or ''}")
        else:
            self._write(f"✗ FAILED: {detail.error or detail.message or ''}")
        self._fh.flush()

    def summary(self, result: OperationSummary) -> None:
        self._write("\n" + "=" * 60)
        self._write("SUMMARY")
        self._write("=" * 60)
        self._write(f"Total processed: {result.total}")
        self._write(f"Successful: {result.successful}")
        if result.skipped:
            self._write(f"Skipped: {result.skipped}")
        self._write(f"Failed: {result.failed}")
        self._write(f"PRs created: {len(result.pr_urls)}")
        if result.pr_urls:
            self._write("\nPull Requests:")
            for url in result.pr_urls:
                self._write(f"  - {url}")
        self._fh.flush()
        logger.info(f"Run log written to {self.path}")
