"""
gh-pages documentation cleanup commands for orgmaint.
"""

import sys

import click
from rich.console import Console
from rich.table import Table

from ..cli_utils import add_common_options, emit_json, handle_errors, resolve_org
from ..config import load_config
from ..exit_codes import CommandError, GENERAL_ERROR
from ..services.docs_cleanup_service import DocsCleanupService

preserve_option = click.option(
    '--preserve-latest/--remove-all', default=True, help='Keep the newest vX.Y.Z directory (default)')
threshold_option = click.option(
    '--threshold', 'size_threshold_mb', type=float, default=5.0, show_default=True,
    help='Log files in removed directories above this size (MB)')


def _print_cleanup(result):
    verb = "Would remove" if result.dry_run else "Removed"
    name = f"{result.repository}: " if result.repository else ""
    if not result.success:
        print(f"✗ {name}{result.error_message}", file=sys.stderr)
        return
    print(f"{name}{verb} {len(result.versions_cleaned)} directories, "
          f"{result.files_removed} files ({result.size_saved_mb:.1f} MB)")
    if result.preserved_version:
        print(f"  preserved: {result.preserved_version}")
    for version in result.versions_cleaned:
        print(f"  - {version}/")


@click.group('docs')
def docs_cmd():
    """Shrink gh-pages branches by removing old documentation builds.

    Cleanup commits on gh-pages locally; publishing it takes
    `git push --force origin gh-pages`.

    \b
    Examples:
        orgmaint docs analyze ./Foo.jl
        orgmaint docs cleanup ./Foo.jl --dry-run
        orgmaint docs org --org SciML --dry-run --pretty
    """
    pass


@docs_cmd.command('analyze')
@click.argument('repo_path', type=click.Path(exists=True, file_okay=False), default='.')
@add_common_options('json', 'debug')
@handle_errors
def docs_analyze_handler(repo_path, output_json, debug):
    """Report large files and version directories on gh-pages without changes."""
    service = DocsCleanupService(load_config())
    analysis = service.analyze_gh_pages_bloat(repo_path)

    if output_json:
        emit_json(analysis.to_dict())
    else:
        print(analysis.analysis)


@docs_cmd.command('cleanup')
@click.argument('repo_path', type=click.Path(exists=True, file_okay=False), default='.')
@preserve_option
@threshold_option
@add_common_options('dry_run', 'json', 'debug')
@handle_errors
def docs_cleanup_handler(repo_path, preserve_latest, size_threshold_mb, dry_run, output_json, debug):
    """Remove old documentation versions from a local clone's gh-pages."""
    service = DocsCleanupService(load_config())
    result = service.cleanup_gh_pages_docs(
        repo_path, preserve_latest=preserve_latest, dry_run=dry_run, size_threshold_mb=size_threshold_mb)

    if output_json:
        emit_json(result.to_dict())
    else:
        _print_cleanup(result)
    if not result.success:
        raise CommandError(result.error_message or "Cleanup failed")


@docs_cmd.command('org')
@add_common_options('org')
@click.option('--repo', 'repo_urls', multiple=True, help='Repository URL to clean (repeatable; default: all Julia repos)')
@click.option('--limit', type=int, default=None, help='Maximum number of repositories to list')
@preserve_option
@threshold_option
@add_common_options('dry_run', 'work_dir', 'json', 'pretty', 'debug')
@handle_errors
def docs_org_handler(org, repo_urls, limit, preserve_latest, size_threshold_mb, dry_run, work_dir,
                     output_json, pretty, debug):
    """Clean gh-pages across several repositories."""
    config = load_config()
    org = resolve_org(org, config)

    service = DocsCleanupService(config)
    if not repo_urls:
        names = service.github.list_julia_repos(org, limit=limit or config["github"]["repo_limit"])
        repo_urls = [f"https://github.com/{org}/{name}.git" for name in names]

    results = service.cleanup_org_gh_pages_docs(
        list(repo_urls), preserve_latest=preserve_latest, dry_run=dry_run,
        size_threshold_mb=size_threshold_mb, working_dir=work_dir)

    if output_json:
        for result in results:
            emit_json(result.to_dict())
    elif pretty:
        mode = "DRY RUN " if dry_run else ""
        table = Table(title=f"{mode}gh-pages cleanup", show_header=True)
        table.add_column("Repository", style="cyan")
        table.add_column("Dirs", justify="right")
        table.add_column("Files", justify="right")
        table.add_column("MB", justify="right")
        table.add_column("Preserved")
        for result in results:
            if not result.success:
                table.add_row(result.repository, "[red]failed[/red]", "", "", result.error_message or "")
                continue
            table.add_row(result.repository, str(result.dirs_removed), str(result.files_removed),
                          f"{result.size_saved_mb:.1f}", result.preserved_version or "")
        Console().print(table)
        total = sum(r.size_saved_mb for r in results if r.success)
        Console().print(f"[bold]Total:[/bold] {total:.1f} MB")
    else:
        for result in results:
            _print_cleanup(result)

    if any(not r.success for r in results):
        sys.exit(GENERAL_ERROR)
