"""
Version bump and registration commands for orgmaint.
"""

import sys

import click

from ..cli_utils import add_common_options, emit_json, handle_errors, summary_output, resolve_org
from ..config import load_config
from ..exit_codes import CommandError, NoReposFoundError, PartialSuccessError
from ..services.version_bumping_service import VersionBumpingService, update_project_versions_all


@click.group('version')
def version_cmd():
    """Bump package versions and register them with LocalRegistry.

    \b
    Examples:
        # Bump the minor version of every package in a checkout
        orgmaint version bump ./OrdinaryDiffEq.jl
        # Register all lib/* subpackages at their current versions
        orgmaint version register ./OrdinaryDiffEq.jl --registry General
        # Bump and register everything in an organization
        orgmaint version bump-org --org SciML --push
    """
    pass


def _print_registration(result, output_json):
    if output_json:
        emit_json(result.to_dict())
        return
    print(f"Registered ({len(result.registered)}): {', '.join(result.registered) or 'none'}", file=sys.stderr)
    if result.failed:
        print(f"Failed ({len(result.failed)}): {', '.join(result.failed)}", file=sys.stderr)
    print(f"Passes: {result.passes}", file=sys.stderr)


def _check_registration(result):
    if not result.failed:
        return
    message = f"Could not register: {', '.join(result.failed)}"
    if result.registered:
        raise PartialSuccessError(message, succeeded=len(result.registered), failed=len(result.failed))
    raise CommandError(message)


@version_cmd.command('bump')
@click.argument('repo_path', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--register', 'do_register', is_flag=True, help='Register the bumped packages and commit')
@click.option('--registry', help='Registry name (default: julia.registry from config)')
@click.option('--push', is_flag=True, help='Let LocalRegistry push the registry')
@click.option('--no-subpackages', is_flag=True, help='Only bump the root Project.toml')
@add_common_options('json', 'debug')
@handle_errors
def version_bump_handler(repo_path, do_register, registry, push, no_subpackages, output_json, debug):
    """
    Bump the minor version of every package in a repository.

    With --register the packages are also registered (retrying until no
    more can be registered) and the bumps are committed.
    """
    config = load_config()

    if do_register:
        service = VersionBumpingService(config)
        result = service.bump_and_register_repo(repo_path, registry=registry, push=push)
        _print_registration(result, output_json)
        _check_registration(result)
        return

    updates = update_project_versions_all(repo_path, include_subpackages=not no_subpackages)
    if output_json:
        for path, (old, new) in updates.items():
            emit_json({'project': path, 'old_version': old, 'new_version': new})
    elif not updates:
        print("No Project.toml with a version field found", file=sys.stderr)
    else:
        for path, (old, new) in updates.items():
            print(f"{path}: {old} -> {new}")


@version_cmd.command('register')
@click.argument('repo_path', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--registry', help='Registry name (default: julia.registry from config)')
@click.option('--push', is_flag=True, help='Let LocalRegistry push the registry')
@add_common_options('json', 'debug')
@handle_errors
def version_register_handler(repo_path, registry, push, output_json, debug):
    """Register every package of a (mono)repository at its current version."""
    service = VersionBumpingService(load_config())
    result = service.register_monorepo_packages(repo_path, registry=registry, push=push)
    _print_registration(result, output_json)
    _check_registration(result)


@version_cmd.command('bump-org')
@add_common_options('org')
@click.option('--registry', help='Registry name (default: julia.registry from config)')
@click.option('--push', is_flag=True, help='Let LocalRegistry push the registry')
@add_common_options('work_dir', 'json', 'pretty', 'debug')
@handle_errors
def version_bump_org_handler(org, registry, push, work_dir, output_json, pretty, debug):
    """
    Bump and register every Julia repository of an organization.

    Version bumps are committed and pushed to each repository's default
    branch.
    """
    config = load_config()
    org = resolve_org(org, config)

    service = VersionBumpingService(config)
    results = service.bump_and_register_org(org, registry=registry, push=push, work_dir=work_dir)
    if results is None:
        raise NoReposFoundError(f"No repositories found for organization: {org}")

    summary_output(service, output_json, pretty, "Bump and Register",
                   success_label="Registered", extra_headers=[("Organization", org)])
