"""
Local CI test commands for orgmaint.
"""

import os

import click

from ..cli_utils import add_common_options, emit_json, handle_errors
from ..config import load_config
from ..exit_codes import CommandError
from ..services.ci_testing_service import (
    DEFAULT_WORKFLOW,
    CITestingService,
    generate_test_summary_report,
    print_test_summary,
)


def _finish(summary, report_file, output_json):
    if output_json:
        for result in summary.results:
            emit_json(result.to_dict())
        emit_json(summary.to_dict())
    else:
        print_test_summary(summary)
    if report_file:
        generate_test_summary_report(summary, report_file)
    if not summary.all_passed:
        failed = ", ".join(r.group.name for r in summary.failed_results())
        raise CommandError(f"Failed test groups: {failed}")


workers_option = click.option(
    '-j', '--workers', 'max_workers', type=int, default=None,
    help='Julia processes at a time (default: general.max_workers)')
log_dir_option = click.option(
    '--log-dir', default='test_logs', show_default=True, type=click.Path(file_okay=False),
    help='One <group>.log per test group')
report_option = click.option(
    '--report', 'report_file', type=click.Path(dir_okay=False), help='Write the text summary report here')


@click.group('ci')
def ci_cmd():
    """Run a package's CI test groups locally, in parallel.

    Groups come from `jobs.test.strategy.matrix.group` of the workflow;
    each runs `Pkg.test()` in its own Julia process with GROUP set.

    \b
    Examples:
        orgmaint ci run . -j 8
        orgmaint ci repo https://github.com/SciML/OrdinaryDiffEq.jl.git --branch master
        orgmaint ci quick ./OrdinaryDiffEq.jl
    """
    pass


@ci_cmd.command('run')
@click.argument('project_path', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--workflow', 'workflow_file', type=click.Path(dir_okay=False),
              help=f'Workflow file (default: <project>/{DEFAULT_WORKFLOW})')
@workers_option
@log_dir_option
@report_option
@add_common_options('json', 'debug')
@handle_errors
def ci_run_handler(project_path, workflow_file, max_workers, log_dir, report_file, output_json, debug):
    """Run the test groups of a local checkout."""
    config = load_config()
    service = CITestingService(config)
    summary = service.run_multiprocess_tests(
        workflow_file or os.path.join(project_path, DEFAULT_WORKFLOW),
        project_path,
        log_dir=log_dir,
        max_workers=max_workers or config["general"]["max_workers"],
    )
    _finish(summary, report_file, output_json)


@ci_cmd.command('repo')
@click.argument('repo_url')
@click.option('--branch', default='master', show_default=True, help='Branch to clone or pull')
@click.option('--workflow', 'workflow_path', default=DEFAULT_WORKFLOW, show_default=True,
              help='Workflow path inside the repository')
@workers_option
@log_dir_option
@report_option
@add_common_options('work_dir', 'json', 'debug')
@handle_errors
def ci_repo_handler(repo_url, branch, workflow_path, max_workers, log_dir, report_file, work_dir,
                    output_json, debug):
    """Clone (or update) a repository and run its test groups."""
    config = load_config()
    service = CITestingService(config)
    summary = service.run_tests_from_repo(
        repo_url,
        branch=branch,
        workflow_path=workflow_path,
        log_dir=log_dir,
        work_dir=work_dir,
        max_workers=max_workers or config["general"]["max_workers"],
    )
    _finish(summary, report_file, output_json)


@ci_cmd.command('quick')
@click.argument('repo_url_or_path')
@workers_option
@click.option('--log-dir', default='quick_test_logs', show_default=True, type=click.Path(file_okay=False),
              help='One <group>.log per test group')
@click.option('--report-dir', default='.', show_default=True, type=click.Path(file_okay=False),
              help='Where test_report_<timestamp>.txt is written')
@add_common_options('debug')
@handle_errors
def ci_quick_handler(repo_url_or_path, max_workers, log_dir, report_dir, debug):
    """Run everything for a URL or local path and write a timestamped report."""
    config = load_config()
    service = CITestingService(config)
    ok, _, failed = service.run_tests_quick(
        repo_url_or_path,
        max_parallel=max_workers or config["general"]["max_workers"],
        log_dir=log_dir,
        report_dir=report_dir,
    )
    if not ok:
        raise CommandError(f"Failed: {', '.join(failed)}")
