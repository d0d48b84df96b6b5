"""
Minimum-version fixing commands for orgmaint.
"""

import sys

import click

from ..cli_utils import add_common_options, emit_json, handle_errors, summary_output, resolve_org
from ..config import load_config
from ..exit_codes import CommandError
from ..services.min_version_service import MinVersionService

julia_version_option = click.option(
    '--julia-version', help='Julia version to resolve with (default: julia.julia_version from config)')
max_iterations_option = click.option(
    '--max-iterations', type=int, default=10, show_default=True, help='Resolve/fix rounds per package')


@click.group('min-versions')
def min_versions_cmd():
    """Raise [compat] lower bounds until the minimum versions resolve.

    Each round resolves every dependency at its lowest compatible version
    in a throwaway environment; packages named by the resolver get a new
    lower bound based on their latest registered release.

    \b
    Examples:
        # Fix a local checkout in place
        orgmaint min-versions fix ./Foo.jl
        # Clone, fix and open a PR
        orgmaint min-versions repo SciML/Foo.jl
        # Whole organization, skipping some repos
        orgmaint min-versions org --org SciML --skip DiffEqDocs --skip SciMLBenchmarks
    """
    pass


@min_versions_cmd.command('fix')
@click.argument('repo_path', type=click.Path(exists=True, file_okay=False), default='.')
@max_iterations_option
@julia_version_option
@add_common_options('json', 'debug')
@handle_errors
def min_versions_fix_handler(repo_path, max_iterations, julia_version, output_json, debug):
    """Fix the minimum versions of a local package (Project.toml is edited in place)."""
    service = MinVersionService(load_config())
    changed, updates = service.fix_package_min_versions(
        repo_path, max_iterations=max_iterations, julia_version=julia_version)

    if output_json:
        emit_json({'changed': changed, 'updates': updates})
    elif not changed:
        print("No compat lower bounds were changed", file=sys.stderr)
    else:
        for package, bound in sorted(updates.items()):
            print(f"{package}: → {bound}")


@min_versions_cmd.command('repo')
@click.argument('repo_name')
@max_iterations_option
@julia_version_option
@click.option('--pr/--no-pr', 'create_pr', default=True, help='Push the branch and open a PR (default)')
@add_common_options('work_dir', 'json', 'debug')
@handle_errors
def min_versions_repo_handler(repo_name, max_iterations, julia_version, create_pr, work_dir, output_json, debug):
    """
    Clone a repository, fix its minimum versions and open a PR.

    REPO_NAME: owner/name, e.g. SciML/Foo.jl
    """
    if "/" not in repo_name:
        raise click.BadParameter("expected owner/name", param_hint="REPO_NAME")

    service = MinVersionService(load_config())
    try:
        fixed = service.fix_repo_min_versions(
            repo_name, work_dir=work_dir, max_iterations=max_iterations,
            create_pr=create_pr, julia_version=julia_version)
    except RuntimeError as e:
        raise CommandError(str(e))

    if output_json:
        emit_json({'repo': repo_name, 'fixed': fixed})
    else:
        print(f"{repo_name}: {'fixed' if fixed else 'no changes needed'}", file=sys.stderr)


@min_versions_cmd.command('org')
@add_common_options('org')
@max_iterations_option
@julia_version_option
@click.option('--pr/--no-pr', 'create_prs', default=True, help='Push branches and open PRs (default)')
@click.option('--skip', 'skip_repos', multiple=True, help='Skip repositories containing this text (repeatable)')
@click.option('--only', 'only_repos', multiple=True, help='Process only this repository name (repeatable)')
@add_common_options('work_dir', 'json', 'pretty', 'debug')
@handle_errors
def min_versions_org_handler(org, max_iterations, julia_version, create_prs, skip_repos, only_repos,
                             work_dir, output_json, pretty, debug):
    """Fix minimum versions across an organization's Julia packages."""
    config = load_config()
    org = resolve_org(org, config)

    service = MinVersionService(config)
    service.fix_org_min_versions(
        org,
        work_dir=work_dir,
        max_iterations=max_iterations,
        create_prs=create_prs,
        skip_repos=list(skip_repos),
        only_repos=list(only_repos) or None,
        julia_version=julia_version,
    )
    summary_output(service, output_json, pretty, "Minimum Versions",
                   success_label="Fixed", extra_headers=[("Organization", org)])
