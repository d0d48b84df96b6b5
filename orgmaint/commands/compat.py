"""
Compat bump commands for orgmaint.
"""

import os
import sys

import click
from rich.console import Console
from rich.table import Table

from ..cli_utils import add_common_options, emit_json, handle_errors, summary_output, resolve_org
from ..config import load_config
from ..exit_codes import APIError, CommandError
from ..services.compat_service import CompatBumpService


@click.group('compat')
def compat_cmd():
    """Bump [compat] entries to allow new major releases.

    Latest versions are read from the local checkout of the General
    registry (julia.registries_dir in config).

    \b
    Examples:
        # Show which compat entries exclude a newer major release
        orgmaint compat check ./Foo.jl
        # Bump all of them, test, commit, and open a PR from your fork
        orgmaint compat bump ./Foo.jl --all
        # Only bump DiffEqBase across the organization
        orgmaint compat org --org SciML --package DiffEqBase
    """
    pass


@compat_cmd.command('check')
@click.argument('repo_path', type=click.Path(exists=True, file_okay=False), default='.')
@add_common_options('json', 'pretty', 'debug')
@handle_errors
def compat_check_handler(repo_path, output_json, pretty, debug):
    """List the major compat updates available for a package."""
    service = CompatBumpService(load_config())
    updates = service.get_available_compat_updates(os.path.join(repo_path, "Project.toml"))

    if output_json:
        for update in updates:
            emit_json(update.to_dict())
    elif pretty:
        table = Table(title="Available major compat updates", show_header=True)
        table.add_column("Package", style="cyan")
        table.add_column("Current compat")
        table.add_column("Latest", justify="right")
        table.add_column("New compat", style="green")
        for update in updates:
            table.add_row(update.package_name, update.current_compat,
                          str(update.latest_version), update.new_compat)
        Console().print(table)
    elif not updates:
        print("No major version updates available", file=sys.stderr)
    else:
        for update in updates:
            print(f"{update.package_name}: {update.current_compat} -> {update.new_compat} "
                  f"(latest {update.latest_version})")


@compat_cmd.command('bump')
@click.argument('repo_path', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--package', 'package_name', help='Only bump this dependency')
@click.option('--all', 'bump_all', is_flag=True, help='Bump every available update, not just the first')
@click.option('--pr/--no-pr', 'create_pr', default=True, help='Open a pull request (default)')
@click.option('--fork-user', default='', help='GitHub account holding the fork (default: gh login)')
@add_common_options('json', 'debug')
@handle_errors
def compat_bump_handler(repo_path, package_name, bump_all, create_pr, fork_user, output_json, debug):
    """
    Bump compat entries of a local checkout and run its tests.

    The change is committed only when the tests pass.
    """
    config = load_config()
    service = CompatBumpService(config)

    fork_user = fork_user or config["github"]["fork_user"]
    if create_pr and not fork_user:
        fork_user = service.github.current_user() or ""
        if not fork_user:
            raise APIError("Could not determine the GitHub user from gh; pass --fork-user")

    ok, message, pr_url, bumped = service.bump_compat_and_test(
        repo_path, package_name=package_name, bump_all=bump_all,
        create_pr=create_pr, fork_user=fork_user)

    if output_json:
        emit_json({'repo': os.path.abspath(repo_path), 'success': ok, 'message': message,
                   'pr_url': pr_url, 'bumped': bumped})
    else:
        print(message, file=sys.stderr)
        if bumped:
            print(f"Bumped: {', '.join(bumped)}", file=sys.stderr)
        if pr_url:
            print(f"PR: {pr_url}")
    if not ok:
        raise CommandError(message)


@compat_cmd.command('org')
@add_common_options('org')
@click.option('--package', 'package_name', help='Only bump this dependency')
@click.option('--all', 'bump_all', is_flag=True, help='Bump every available update per repository')
@click.option('--pr/--no-pr', 'create_pr', default=True, help='Open pull requests (default)')
@click.option('--fork-user', default='', help='GitHub account holding the forks (default: gh login)')
@click.option('--limit', type=int, default=None, help='Maximum number of repositories to list')
@click.option('--log-file', type=click.Path(dir_okay=False), help='Run log path')
@add_common_options('work_dir', 'json', 'pretty', 'debug')
@handle_errors
def compat_org_handler(org, package_name, bump_all, create_pr, fork_user, limit, log_file, work_dir,
                       output_json, pretty, debug):
    """
    Bump compat entries across an organization.

    A run log is written under compat_bump_logs/.
    """
    config = load_config()
    org = resolve_org(org, config)

    service = CompatBumpService(config)
    service.bump_compat_org_repositories(
        org=org,
        package_name=package_name,
        bump_all=bump_all,
        create_pr=create_pr,
        fork_user=fork_user or config["github"]["fork_user"],
        limit=limit or config["github"]["repo_limit"],
        log_file=log_file,
        work_dir=work_dir,
    )
    summary_output(service, output_json, pretty, "Compat Bump",
                   success_label="Bumped", extra_headers=[("Organization", org),
                                                          ("Package", package_name or "all")])
