"""
Explicit imports commands for orgmaint.

The checks run ExplicitImports.jl in a child Julia process, so it must be
installed in the default Julia environment.
"""

import sys

import click
from rich.console import Console
from rich.table import Table

from ..cli_utils import add_common_options, emit_json, handle_errors, summary_output, resolve_org
from ..config import load_config
from ..exit_codes import CommandError
from ..services.explicit_imports_service import ExplicitImportsService

max_iterations_option = click.option(
    '--max-iterations', type=int, default=10, show_default=True, help='Check/fix rounds per package')


@click.group('explicit-imports')
def explicit_imports_cmd():
    """Check and fix implicit and unused imports with ExplicitImports.jl.

    \b
    Examples:
        # Report for the root package and every lib/* subpackage
        orgmaint explicit-imports check ./Foo.jl
        # Apply fixes in place until the checks pass
        orgmaint explicit-imports fix ./Foo.jl
        # Clone, fix and open a PR
        orgmaint explicit-imports repo SciML/Foo.jl
        orgmaint explicit-imports org --org SciML --only Foo.jl --only Bar.jl
    """
    pass


@explicit_imports_cmd.command('check')
@click.argument('repo_path', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--no-subpackages', is_flag=True, help='Only check the root package')
@click.option('--report', 'show_report', is_flag=True, help='Print the full checker output')
@add_common_options('json', 'pretty', 'debug')
@handle_errors
def explicit_imports_check_handler(repo_path, no_subpackages, show_report, output_json, pretty, debug):
    """Run the checks without changing anything; exits 1 when issues are found."""
    service = ExplicitImportsService(load_config())
    results = service.run_explicit_imports_check_all(repo_path, include_subpackages=not no_subpackages)

    if output_json:
        for project, (success, _, issues) in results.items():
            emit_json({'project': project, 'success': success,
                       'issues': [issue.to_dict() for issue in issues]})
    elif pretty:
        table = Table(title="Explicit imports", show_header=True)
        table.add_column("Project", style="cyan")
        table.add_column("Status")
        table.add_column("Missing", justify="right")
        table.add_column("Unused", justify="right")
        for project, (success, _, issues) in results.items():
            missing = sum(1 for i in issues if i.type == "missing_import")
            unused = sum(1 for i in issues if i.type == "unused_import")
            status = "[green]pass[/green]" if success else "[red]fail[/red]"
            table.add_row(project, status, str(missing), str(unused))
        Console().print(table)
    else:
        for project, (success, report, issues) in results.items():
            print(f"{'✓' if success else '✗'} {project}: {len(issues)} issues")
            for issue in issues:
                print(f"    {issue.line}")
            if show_report:
                print(report)

    failed = [project for project, (success, _, _) in results.items() if not success]
    if failed:
        raise CommandError(f"Explicit import issues in: {', '.join(failed)}")


@explicit_imports_cmd.command('fix')
@click.argument('package_path', type=click.Path(exists=True, file_okay=False), default='.')
@max_iterations_option
@add_common_options('json', 'debug')
@handle_errors
def explicit_imports_fix_handler(package_path, max_iterations, output_json, debug):
    """Fix a local package in place, re-checking after every round."""
    service = ExplicitImportsService(load_config())
    success, iterations, report = service.fix_explicit_imports(package_path, max_iterations=max_iterations)

    if output_json:
        emit_json({'package': package_path, 'success': success, 'iterations': iterations})
    else:
        state = "all checks passing" if success else "some issues remain"
        print(f"{state} after {iterations} iteration(s)", file=sys.stderr)
        if not success:
            print(report)
    if not success:
        raise CommandError("Explicit import issues remain")


@explicit_imports_cmd.command('repo')
@click.argument('repo_name')
@max_iterations_option
@click.option('--pr/--no-pr', 'create_pr', default=True, help='Push the branch and open a PR (default)')
@add_common_options('work_dir', 'json', 'debug')
@handle_errors
def explicit_imports_repo_handler(repo_name, max_iterations, create_pr, work_dir, output_json, debug):
    """
    Clone a repository, fix its explicit imports and open a PR.

    REPO_NAME: owner/name, e.g. SciML/Foo.jl
    """
    if "/" not in repo_name:
        raise click.BadParameter("expected owner/name", param_hint="REPO_NAME")

    service = ExplicitImportsService(load_config())
    try:
        fixed = service.fix_repo_explicit_imports(
            repo_name, work_dir=work_dir, max_iterations=max_iterations, create_pr=create_pr)
    except RuntimeError as e:
        raise CommandError(str(e))

    if output_json:
        emit_json({'repo': repo_name, 'fixed': fixed})
    else:
        print(f"{repo_name}: {'fixed' if fixed else 'no changes needed'}", file=sys.stderr)


@explicit_imports_cmd.command('org')
@add_common_options('org')
@max_iterations_option
@click.option('--pr/--no-pr', 'create_prs', default=True, help='Push branches and open PRs (default)')
@click.option('--skip', 'skip_repos', multiple=True, help='Skip repositories containing this text (repeatable)')
@click.option('--only', 'only_repos', multiple=True, help='Process only this repository name (repeatable)')
@add_common_options('work_dir', 'json', 'pretty', 'debug')
@handle_errors
def explicit_imports_org_handler(org, max_iterations, create_prs, skip_repos, only_repos, work_dir,
                                 output_json, pretty, debug):
    """Fix explicit imports across an organization's Julia packages."""
    config = load_config()
    org = resolve_org(org, config)

    service = ExplicitImportsService(config)
    service.fix_org_explicit_imports(
        org,
        work_dir=work_dir,
        max_iterations=max_iterations,
        create_prs=create_prs,
        skip_repos=list(skip_repos),
        only_repos=list(only_repos) or None,
    )
    summary_output(service, output_json, pretty, "Explicit Imports",
                   success_label="Fixed", extra_headers=[("Organization", org)])
