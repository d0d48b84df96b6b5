"""
Obsolete VERSION check commands for orgmaint.
"""

import os
import sys

import click

from ..cli_utils import add_common_options, emit_json, handle_errors, summary_output, resolve_org
from ..config import load_config
from ..services.version_check_service import (
    VersionCheckService,
    find_version_checks_in_file,
    find_version_checks_in_repo,
    print_version_check_summary,
    write_version_checks_to_script,
)

min_version_option = click.option(
    '--min-version', help='Minimum supported Julia version (default: version_checks.min_version)')


def _min_version(config, min_version):
    return min_version or config["version_checks"]["min_version"]


def _emit_checks(repo, checks):
    for path in sorted(checks):
        for check in checks[path]:
            record = check.to_dict()
            record['file'] = path
            if repo:
                record['repo'] = repo
            emit_json(record)


@click.group('version-checks')
def version_checks_cmd():
    """Find VERSION comparisons against unsupported Julia releases.

    A check such as `VERSION >= v"1.6"` is always true when the package
    requires Julia 1.10, so the guarded fallback is dead code.

    \b
    Examples:
        orgmaint version-checks file src/Foo.jl
        orgmaint version-checks repo ./Foo.jl --min-version 1.10
        orgmaint version-checks org --org SciML --max-repos 20
        orgmaint version-checks script ./Foo.jl -o obsolete_checks.jl
        orgmaint version-checks fix --org SciML --workers 4
    """
    pass


@version_checks_cmd.command('file')
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@min_version_option
@add_common_options('json', 'debug')
@handle_errors
def version_checks_file_handler(file_path, min_version, output_json, debug):
    """Scan a single .jl file."""
    min_version = _min_version(load_config(), min_version)
    checks = find_version_checks_in_file(file_path, min_version)

    if output_json:
        _emit_checks(None, {file_path: checks} if checks else {})
    else:
        print_version_check_summary({file_path: {file_path: checks}} if checks else {})


@version_checks_cmd.command('repo')
@click.argument('repo_path', type=click.Path(exists=True, file_okay=False), default='.')
@min_version_option
@click.option('--no-subpackages', is_flag=True, help='Skip lib/ subpackages')
@add_common_options('json', 'debug')
@handle_errors
def version_checks_repo_handler(repo_path, min_version, no_subpackages, output_json, debug):
    """Scan every .jl file of a local repository."""
    min_version = _min_version(load_config(), min_version)
    checks = find_version_checks_in_repo(repo_path, min_version, include_subpackages=not no_subpackages)

    if output_json:
        _emit_checks(None, checks)
    else:
        name = os.path.basename(os.path.abspath(repo_path))
        print_version_check_summary({name: checks} if checks else {})


@version_checks_cmd.command('org')
@add_common_options('org')
@min_version_option
@click.option('--max-repos', type=int, help='Only scan the first N repositories')
@click.option('--no-subpackages', is_flag=True, help='Skip lib/ subpackages')
@click.option('--script', 'script_path', type=click.Path(dir_okay=False),
              help='Also write the findings as a Julia script')
@add_common_options('work_dir', 'json', 'debug')
@handle_errors
def version_checks_org_handler(org, min_version, max_repos, no_subpackages, script_path, work_dir,
                               output_json, debug):
    """Shallow-clone and scan every repository of an organization."""
    config = load_config()
    org = resolve_org(org, config)
    min_version = _min_version(config, min_version)

    service = VersionCheckService(config)
    results = service.find_version_checks_in_org(
        org, min_version=min_version, work_dir=work_dir, max_repos=max_repos,
        include_subpackages=not no_subpackages)

    if output_json:
        for repo, checks in sorted(results.items()):
            if "error" in checks:
                emit_json({'repo': repo, 'error': checks['error']})
            else:
                _emit_checks(repo, checks)
    else:
        print_version_check_summary(results)

    if script_path:
        found = {
            f"{repo}/{path}": file_checks
            for repo, checks in results.items() if "error" not in checks
            for path, file_checks in checks.items()
        }
        write_version_checks_to_script(found, script_path, min_version)
        print(f"Script written to {script_path}", file=sys.stderr)


@version_checks_cmd.command('script')
@click.argument('repo_path', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('-o', '--output', 'output_path', type=click.Path(dir_okay=False),
              default='obsolete_version_checks.jl', show_default=True, help='Script to write')
@min_version_option
@add_common_options('debug')
@handle_errors
def version_checks_script_handler(repo_path, output_path, min_version, debug):
    """Write the findings of a local repository as a Julia script."""
    min_version = _min_version(load_config(), min_version)
    checks = find_version_checks_in_repo(repo_path, min_version)
    write_version_checks_to_script(checks, output_path, min_version)
    total = sum(len(v) for v in checks.values())
    print(f"Wrote {total} checks to {output_path}", file=sys.stderr)


@version_checks_cmd.command('fix')
@add_common_options('org')
@min_version_option
@click.option('--workers', 'n_workers', type=int, default=None, help='Parallel agents (default: general.max_workers)')
@click.option('--max-repos', type=int, help='Only process the first N repositories')
@add_common_options('work_dir', 'json', 'pretty', 'debug')
@handle_errors
def version_checks_fix_handler(org, min_version, n_workers, max_repos, work_dir, output_json, pretty, debug):
    """
    Hand each repository's obsolete checks to a coding agent.

    The agent command comes from version_checks.agent_command; it runs in
    a fresh clone on a new branch and is expected to commit, push and open
    the pull request itself. Each run is killed after
    version_checks.agent_timeout_minutes.
    """
    config = load_config()
    org = resolve_org(org, config)

    service = VersionCheckService(config)
    service.fix_org_version_checks_parallel(
        org,
        n_workers=n_workers or config["general"]["max_workers"],
        min_version=_min_version(config, min_version),
        max_repos=max_repos,
        work_dir=work_dir,
    )
    summary_output(service, output_json, pretty, "Remove Version Checks",
                   success_label="Fixed", extra_headers=[("Organization", org)])
