"""
Common CLI utilities and decorators for consistent command behavior.
"""

import json
import logging
import sys
from functools import wraps
from typing import Any, List, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from .config import set_log_level
from .exit_codes import (
    GENERAL_ERROR, INTERRUPTED,
    get_exit_code_for_exception, CommandError, ConfigError
)

logger = logging.getLogger(__name__)


def handle_errors(func):
    """
    Decorator giving every command the same failure behavior.

    - `--debug` switches the root logger to DEBUG before the command runs
    - CommandError exits with its own code
    - other exceptions exit with the code mapped from their type
    - with `--json` the error is also written to stdout as one JSON object
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        output_json = kwargs.get('output_json', False)
        if kwargs.get('debug'):
            set_log_level(logging.DEBUG)

        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            print("Interrupted by user", file=sys.stderr)
            sys.exit(INTERRUPTED)
        except click.ClickException:
            raise
        except CommandError as e:
            _report_error(e, output_json)
            sys.exit(e.exit_code)
        except Exception as e:
            logger.debug("Command failed", exc_info=True)
            _report_error(e, output_json)
            sys.exit(get_exit_code_for_exception(e))

    return wrapper


def _report_error(exc: Exception, output_json: bool) -> None:
    if output_json:
        error_obj = {"error": str(exc), "type": type(exc).__name__}
        if isinstance(exc, CommandError):
            error_obj["exit_code"] = exc.exit_code
        if hasattr(exc, 'succeeded'):
            error_obj['succeeded'] = exc.succeeded
            error_obj['failed'] = exc.failed
        print(json.dumps(error_obj, ensure_ascii=False), flush=True)
    print(f"Error: {exc}", file=sys.stderr)


def resolve_org(org: Optional[str], config) -> str:
    """The --org value, else github.org from config."""
    org = org or config["github"]["org"]
    if not org:
        raise ConfigError("No organization given: pass --org or set github.org in the config")
    return org


def emit_json(obj: Any) -> None:
    """Write one JSONL record to stdout."""
    print(json.dumps(obj, ensure_ascii=False, default=str), flush=True)


# ============================================================================
# Output for bulk runs that leave an OperationSummary in service.last_result
# ============================================================================

def summary_output_simple(service, op_label="Complete", success_label="Successful", dry_run=False):
    """Plain text summary on stderr; exits 1 when anything failed."""
    mode = "[dry run] " if dry_run else ""
    result = service.last_result
    if not result:
        return

    print(f"\n{mode}{op_label}:", file=sys.stderr)
    print(f"  {success_label}: {result.successful}", file=sys.stderr)
    if result.skipped > 0:
        print(f"  Skipped: {result.skipped}", file=sys.stderr)
    for url in result.pr_urls:
        print(f"  PR: {url}", file=sys.stderr)
    if result.failed > 0:
        print(f"  Failed: {result.failed}", file=sys.stderr)
    for error in result.errors:
        print(f"    - {error}", file=sys.stderr)
    if result.errors or result.failed > 0:
        sys.exit(GENERAL_ERROR)


def summary_output_json(service):
    """One JSONL line per repository, then the summary line."""
    result = service.last_result
    if not result:
        return
    for detail in result.details:
        emit_json(detail.to_dict())
    emit_json(result.to_dict())
    if result.errors or result.failed > 0:
        sys.exit(GENERAL_ERROR)


def summary_output_pretty(service, title, success_label="Successful",
                          extra_headers: Optional[List[Tuple[str, Any]]] = None,
                          dry_run=False):
    """
    Rich table of per-repository outcomes followed by the totals.

    Args:
        service: Service with .last_result attribute
        title: Display title (e.g. "Format Repositories")
        success_label: Label for the success metric row
        extra_headers: List of (label, value) tuples printed above the table
        dry_run: Mark the output as a preview
    """
    console = Console()
    mode = "[bold yellow]DRY RUN[/bold yellow] " if dry_run else ""

    console.print(f"\n{mode}[bold]{title}[/bold]")
    for label, value in extra_headers or []:
        console.print(f"[bold]{label}:[/bold] {value}")

    result = service.last_result
    if not result:
        console.print(f"[red]{title} failed - no result[/red]")
        sys.exit(GENERAL_ERROR)

    if result.details:
        details = Table(show_header=True)
        details.add_column("Repository", style="cyan")
        details.add_column("Status")
        details.add_column("Action")
        details.add_column("Info")
        styles = {"success": "green", "skipped": "yellow", "failed": "red", "dry_run": "blue"}
        for detail in result.details:
            status = detail.status.value
            info = detail.pr_url or detail.error or detail.message or ""
            details.add_row(detail.repo_name, f"[{styles[status]}]{status}[/{styles[status]}]",
                            detail.action, info)
        console.print(details)

    table = Table(title=f"{mode}{title} Summary", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Repositories", str(result.total))
    table.add_row(success_label, f"[green]{result.successful}[/green]")
    if result.skipped > 0:
        table.add_row("Skipped", f"[yellow]{result.skipped}[/yellow]")
    if result.failed > 0:
        table.add_row("Failed", f"[red]{result.failed}[/red]")
    if result.pr_urls:
        table.add_row("Pull requests", str(len(result.pr_urls)))
    console.print(table)

    if result.errors:
        console.print(f"\n[red]Errors ({len(result.errors)}):[/red]")
        for error in result.errors:
            console.print(f"  [red]•[/red] {error}")
        sys.exit(GENERAL_ERROR)


def summary_output(service, output_json: bool, pretty: bool, title: str, **kwargs):
    """Dispatch to the JSONL, rich or plain summary."""
    if output_json:
        summary_output_json(service)
    elif pretty:
        summary_output_pretty(service, title, **kwargs)
    else:
        summary_output_simple(service, op_label=f"{title} complete", dry_run=kwargs.get('dry_run', False))


# Standard options that many commands share
common_options = {
    'json': click.option('--json', 'output_json', is_flag=True, help='Output as JSONL'),
    'pretty': click.option('--pretty', is_flag=True, help='Display with rich formatting'),
    'debug': click.option('--debug', is_flag=True, help='Enable debug logging'),
    'dry_run': click.option('--dry-run', is_flag=True, help='Preview changes without making them'),
    'work_dir': click.option('--work-dir', type=click.Path(file_okay=False),
                             help='Directory for clones (default: a temporary directory)'),
    'org': click.option('--org', help='GitHub organization (default: github.org from config)'),
}


def add_common_options(*option_names):
    """
    Decorator to add common options to a command.

    Example:
        @add_common_options('json', 'pretty', 'debug')
        def my_command(output_json, pretty, debug):
            ...
    """
    def decorator(func):
        for name in reversed(option_names):
            if name in common_options:
                func = common_options[name](func)
        return func
    return decorator
