"""
Formatting commands for orgmaint.

Runs JuliaFormatter over a repository (or every Julia repository of an
organization) and lands the result as a pull request or a direct push.
"""

import sys

import click

from ..cli_utils import add_common_options, emit_json, handle_errors, summary_output, resolve_org
from ..config import load_config
from ..exit_codes import CommandError
from ..services.formatting_service import FormattingService


@click.group('format')
def format_cmd():
    """Format Julia repositories with JuliaFormatter.

    \b
    Examples:
        # Format one repository and open a PR from your fork
        orgmaint format repo https://github.com/SciML/Example.jl.git
        # Push straight to master when the tests pass
        orgmaint format repo https://github.com/SciML/Example.jl.git --push-to-master --no-pr
        # Every repo of an org whose format check is failing
        orgmaint format org --org SciML
    """
    pass


@format_cmd.command('repo')
@click.argument('repo_url')
@click.option('--test/--no-test', default=True, help='Run the tests after formatting')
@click.option('--push-to-master', is_flag=True, help='Push to the default branch if tests pass')
@click.option('--pr/--no-pr', 'create_pr', default=None, help='Open a pull request (default unless --push-to-master)')
@click.option('--fork-user', default='', help='GitHub account holding the fork (default: gh login)')
@add_common_options('work_dir', 'json', 'debug')
@handle_errors
def format_repo_handler(repo_url, test, push_to_master, create_pr, fork_user, work_dir, output_json, debug):
    """
    Format a single repository.

    REPO_URL: Clone URL, e.g. https://github.com/SciML/Example.jl.git
    """
    config = load_config()
    if create_pr is None:
        create_pr = not push_to_master

    service = FormattingService(config)
    ok, message, pr_url = service.format_repository(
        repo_url,
        test=test,
        push_to_master=push_to_master,
        create_pr=create_pr,
        fork_user=fork_user or config["github"]["fork_user"],
        working_dir=work_dir,
    )

    if output_json:
        emit_json({'repo': repo_url, 'success': ok, 'message': message, 'pr_url': pr_url})
    else:
        print(message, file=sys.stderr)
        if pr_url:
            print(f"PR: {pr_url}")
    if not ok:
        raise CommandError(message)


@format_cmd.command('org')
@add_common_options('org')
@click.option('--test/--no-test', default=True, help='Run the tests after formatting')
@click.option('--push-to-master', is_flag=True, help='Push to the default branch if tests pass')
@click.option('--pr/--no-pr', 'create_pr', default=None, help='Open pull requests (default unless --push-to-master)')
@click.option('--fork-user', default='', help='GitHub account holding the forks (default: gh login)')
@click.option('--limit', type=int, default=None, help='Maximum number of repositories to list')
@click.option('--all-repos', is_flag=True, help='Process every repo, not only those with failing format CI')
@click.option('--log-file', type=click.Path(dir_okay=False), help='Run log path')
@add_common_options('json', 'pretty', 'debug')
@handle_errors
def format_org_handler(org, test, push_to_master, create_pr, fork_user, limit, all_repos, log_file,
                       output_json, pretty, debug):
    """
    Format every Julia repository of an organization.

    By default only repositories whose formatter workflow is failing on
    master/main are processed. A run log is written under formatting_logs/.
    """
    config = load_config()
    org = resolve_org(org, config)
    if create_pr is None:
        create_pr = not push_to_master

    service = FormattingService(config)
    service.format_org_repositories(
        org=org,
        test=test,
        push_to_master=push_to_master,
        create_pr=create_pr,
        fork_user=fork_user or config["github"]["fork_user"],
        limit=limit or config["github"]["repo_limit"],
        only_failing_ci=not all_repos,
        log_file=log_file,
    )
    summary_output(service, output_json, pretty, "Format Repositories",
                   success_label="Formatted", extra_headers=[("Organization", org)])
