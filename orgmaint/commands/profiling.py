"""
Load-time profiling commands for orgmaint.

`invalidations` records method invalidations with SnoopCompile;
`import-timing` runs `using Package` under `--time-imports`.
"""

import click
from rich.console import Console
from rich.table import Table

from ..cli_utils import add_common_options, emit_json, handle_errors, resolve_org
from ..config import load_config
from ..exit_codes import CommandError, NoReposFoundError
from ..services.import_timing_service import ImportTimingService, format_import_timing_report
from ..services.invalidation_service import InvalidationService, format_invalidation_report


def _read_workload(test_script_file):
    if not test_script_file:
        return ""
    with open(test_script_file, "r") as f:
        return f.read()


def _print_org_table(title, results, value_column, value_of):
    table = Table(title=title, show_header=True)
    table.add_column("Repository", style="cyan")
    table.add_column(value_column, justify="right")
    table.add_column("Summary")
    for repo, report in sorted(results.items()):
        table.add_row(repo, "[red]failed[/red]" if report.failed else value_of(report), report.summary)
    Console().print(table)


# ============================================================================
# Invalidations
# ============================================================================

@click.group('invalidations')
def invalidations_cmd():
    """Analyze method invalidations (needs SnoopCompileCore, SnoopCompile, JSON3).

    \b
    Examples:
        orgmaint invalidations repo ./Foo.jl -o foo_invalidations.json
        orgmaint invalidations repo ./Foo.jl --test-script workload.jl
        orgmaint invalidations org --org SciML --output-dir reports --max-repos 10
    """
    pass


@invalidations_cmd.command('repo')
@click.argument('repo_path', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--test-script', 'test_script_file', type=click.Path(exists=True, dir_okay=False),
              help='Julia workload to run while recording (default: load the package)')
@click.option('-o', '--output', 'output_file', type=click.Path(dir_okay=False), help='Write the JSON report here')
@add_common_options('json', 'debug')
@handle_errors
def invalidations_repo_handler(repo_path, test_script_file, output_file, output_json, debug):
    """Analyze invalidations of one local package."""
    service = InvalidationService(load_config())
    report = service.analyze_repo_invalidations(
        repo_path, test_script=_read_workload(test_script_file), output_file=output_file)

    if output_json:
        emit_json(report.to_dict())
    else:
        print(format_invalidation_report(report))
    if report.failed:
        raise CommandError(report.summary)


@invalidations_cmd.command('org')
@add_common_options('org')
@click.option('--test-script', 'test_script_file', type=click.Path(exists=True, dir_okay=False),
              help='Julia workload to run in every repository')
@click.option('--output-dir', type=click.Path(file_okay=False), help='Per-repo JSON reports and the org summary')
@click.option('--max-repos', type=int, default=0, help='Only analyze the first N repositories')
@add_common_options('work_dir', 'json', 'pretty', 'debug')
@handle_errors
def invalidations_org_handler(org, test_script_file, output_dir, max_repos, work_dir, output_json, pretty, debug):
    """Analyze every package repository of an organization."""
    config = load_config()
    org = resolve_org(org, config)

    service = InvalidationService(config)
    results = service.analyze_org_invalidations(
        org, work_dir=work_dir, test_script=_read_workload(test_script_file),
        output_dir=output_dir, max_repos=max_repos)
    if not results:
        raise NoReposFoundError(f"No repositories analyzed for organization: {org}")

    if output_json:
        for report in results.values():
            emit_json(report.to_dict())
    elif pretty:
        _print_org_table(f"Invalidations in {org}", results, "Invalidations",
                         lambda r: str(r.total_invalidations))
    else:
        for repo, report in sorted(results.items()):
            print(f"{repo}: {report.summary}")


# ============================================================================
# Import timing
# ============================================================================

@click.group('import-timing')
def import_timing_cmd():
    """Measure package load times with `--time-imports`.

    \b
    Examples:
        orgmaint import-timing repo ./Foo.jl
        orgmaint import-timing repo ./Foo.jl --package Foo -o foo_timing.json
        orgmaint import-timing org --org SciML --output-dir reports
    """
    pass


@import_timing_cmd.command('repo')
@click.argument('repo_path', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--package', 'package_name', default='', help='Package to import (default: name in Project.toml)')
@click.option('-o', '--output', 'output_file', type=click.Path(dir_okay=False), help='Write the JSON report here')
@add_common_options('json', 'debug')
@handle_errors
def import_timing_repo_handler(repo_path, package_name, output_file, output_json, debug):
    """Time the import of one local package."""
    service = ImportTimingService(load_config())
    report = service.analyze_repo_import_timing(repo_path, package_name=package_name, output_file=output_file)

    if output_json:
        record = report.to_dict()
        record.pop('raw_output', None)
        emit_json(record)
    else:
        print(format_import_timing_report(report))
    if report.failed:
        raise CommandError(report.summary)


@import_timing_cmd.command('org')
@add_common_options('org')
@click.option('--output-dir', type=click.Path(file_okay=False), help='Per-repo JSON reports and the org summary')
@click.option('--max-repos', type=int, default=0, help='Only analyze the first N repositories')
@add_common_options('work_dir', 'json', 'pretty', 'debug')
@handle_errors
def import_timing_org_handler(org, output_dir, max_repos, work_dir, output_json, pretty, debug):
    """Time the imports of every package repository of an organization."""
    config = load_config()
    org = resolve_org(org, config)

    service = ImportTimingService(config)
    results = service.analyze_org_import_timing(org, work_dir=work_dir, output_dir=output_dir, max_repos=max_repos)
    if not results:
        raise NoReposFoundError(f"No repositories analyzed for organization: {org}")

    if output_json:
        for report in results.values():
            record = report.to_dict()
            record.pop('raw_output', None)
            emit_json(record)
    elif pretty:
        _print_org_table(f"Import times in {org}", results, "Seconds",
                         lambda r: f"{r.total_import_time:.2f}")
    else:
        for repo, report in sorted(results.items()):
            print(f"{repo}: {report.summary}")
