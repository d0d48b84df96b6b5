"""
orgmaint - Maintenance automation for Julia package organizations on GitHub.

Runs the chores that otherwise take a person an afternoon per repository,
across every package of an organization: formatting, version bumps and
registration, compat bumps, minimum-version fixes, obsolete version checks,
explicit imports, load-time profiling, gh-pages cleanup and local CI runs.

Quick Start:
    from orgmaint.services import CompatBumpService

    service = CompatBumpService()
    for update in service.get_available_compat_updates("Project.toml"):
        print(update.package_name, update.current_compat, "->", update.new_compat)

Command line:
    orgmaint format org --org SciML
    orgmaint compat bump /path/to/Foo.jl --all --no-pr
"""

__version__ = "0.4.0"
