#!/usr/bin/env python3

import click

from orgmaint.commands.format import format_cmd
from orgmaint.commands.version import version_cmd
from orgmaint.commands.compat import compat_cmd
from orgmaint.commands.min_versions import min_versions_cmd
from orgmaint.commands.version_checks import version_checks_cmd
from orgmaint.commands.explicit_imports import explicit_imports_cmd
from orgmaint.commands.profiling import invalidations_cmd, import_timing_cmd
from orgmaint.commands.docs import docs_cmd
from orgmaint.commands.ci import ci_cmd
from orgmaint.commands.config import config_cmd


@click.group()
@click.version_option(package_name="orgmaint")
def cli():
    """orgmaint - Maintenance automation for Julia package organizations.

    Clones repositories, runs Julia tooling against them, and lands the
    results as commits or pull requests. Most commands act on one local
    checkout, one repository, or a whole GitHub organization.

    Requires git, julia and (for pull requests) an authenticated gh CLI.
    """
    pass


# Repository changes
cli.add_command(format_cmd)
cli.add_command(version_cmd)
cli.add_command(compat_cmd)
cli.add_command(min_versions_cmd)
cli.add_command(version_checks_cmd)
cli.add_command(explicit_imports_cmd)
cli.add_command(docs_cmd)

# Analysis
cli.add_command(invalidations_cmd)
cli.add_command(import_timing_cmd)
cli.add_command(ci_cmd)

cli.add_command(config_cmd)


def main():
    cli()

if __name__ == "__main__":
    main()
