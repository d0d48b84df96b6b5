"""
Invalidation analysis service for orgmaint.

Loads a package (and optionally runs a workload) under SnoopCompile's
invalidation recorder in a child Julia process, then ranks the methods
whose invalidation triggered the largest trees.

SnoopCompileCore, SnoopCompile and JSON3 must be available in the
default Julia environment.
"""

import json
import logging
import os
import re
import shutil
import tempfile
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..domain.analysis import InvalidationEntry, InvalidationReport
from ..infra.julia_client import julia_string
from ..utils import workspace
from .base import MaintenanceService

logger = logging.getLogger(__name__)

JSON_START = "===JSON_START==="
JSON_END = "===JSON_END==="

TOP_INVALIDATORS = 20

DEFAULT_WORKLOAD = """\
using Pkg
Pkg.activate(".")
Pkg.instantiate()

project = Pkg.TOML.parsefile("Project.toml")
if haskey(project, "name")
    pkg_name = project["name"]
    try
        @eval using $(Symbol(pkg_name))
        println("Successfully loaded $pkg_name")
    catch e
        println("Failed to load $pkg_name: $e")
    end
end

if isfile("test/runtests.jl")
    try
        include("test/runtests.jl")
    catch e
        println("Test execution failed: $e")
    end
end
"""

ANALYSIS_SCRIPT = """\
using SnoopCompileCore

cd({repo_path})
println("Starting invalidation analysis for: ", pwd())

invalidations = @snoop_invalidations begin
{workload}
end

using SnoopCompile, JSON3

println("Captured $(length(invalidations)) invalidations")
trees = invalidation_trees(invalidations)

details = Dict{{String,Any}}[]

function record(node, depth)
    mi = node.mi
    m = mi.def
    file, line = m isa Method ? (string(m.file), m.line) : ("unknown", 0)
    push!(details, Dict(
        "method" => string(mi),
        "file" => file,
        "line" => line,
        "children_count" => countchildren(node),
        "depth" => depth,
    ))
    for child in node.children
        record(child, depth + 1)
    end
end

for tree in trees
    for root in tree.backedges
        record(root isa Pair ? root.second : root, 0)
    end
end

println("{start}")
JSON3.pretty(stdout, Dict(
    "total_invalidations" => length(invalidations),
    "tree_count" => length(trees),
    "invalidation_details" => details,
))
println("\\n{end}")
"""

PACKAGE_RE = re.compile(r"\.julia/packages/([^/]+)")


def package_from_file(file: str) -> str:
    """Owning package of a source file: a registry package name, "local" or "unknown"."""
    match = PACKAGE_RE.search(file)
    if match:
        return match.group(1)
    if "src/" in file:
        return "local"
    return "unknown"


def extract_json_block(output: str) -> Dict[str, Any]:
    """
    Parse the JSON printed between the start and end markers.

    Raises:
        RuntimeError: if the markers are missing
    """
    start = output.find(JSON_START)
    end = output.find(JSON_END, start + 1)
    if start < 0 or end < 0:
        raise RuntimeError("Could not find JSON output markers in result")
    return json.loads(output[start + len(JSON_START):end])


def analyze_major_invalidators(data: Dict[str, Any]) -> Tuple[List[InvalidationEntry], List[Tuple[str, int, int]]]:
    """
    Rank invalidations by the size of the tree they caused.

    Returns:
        (top entries by children_count, [(package, total_children, count)]
        sorted by total_children descending)
    """
    details = data.get("invalidation_details", [])
    stats: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
    for inv in details:
        package = inv.get("package") or package_from_file(inv.get("file", ""))
        inv["package"] = package
        stats[package][0] += inv.get("children_count", 0)
        stats[package][1] += 1

    package_impact = sorted(
        ((pkg, total, count) for pkg, (total, count) in stats.items()),
        key=lambda item: item[1],
        reverse=True,
    )

    ranked = sorted(details, key=lambda inv: inv.get("children_count", 0), reverse=True)
    entries = [
        InvalidationEntry(
            method=inv.get("method", ""),
            file=inv.get("file", "unknown"),
            line=inv.get("line", 0),
            package=inv["package"],
            reason=f"High-impact invalidation ({inv.get('children_count', 0)} children)",
            children_count=inv.get("children_count", 0),
            depth=inv.get("depth", 0),
        )
        for inv in ranked[:TOP_INVALIDATORS]
    ]
    return entries, package_impact


def invalidation_summary(total: int) -> str:
    if total == 0:
        return "✅ No invalidations detected - excellent!"
    if total < 10:
        return f"✅ Low invalidation count ({total}) - good performance"
    if total < 50:
        return f"⚠️  Moderate invalidation count ({total}) - room for improvement"
    return f"❌ High invalidation count ({total}) - significant performance impact"


def invalidation_recommendations(
    total: int,
    major: List[InvalidationEntry],
    package_impact: List[Tuple[str, int, int]]
) -> List[str]:
    if total <= 0:
        return ["Great job! No invalidations detected. Your package is well-optimized."]

    recommendations = []
    if package_impact:
        top_pkg, top_impact, top_count = package_impact[0]
        if top_impact > 10:
            recommendations.append(
                f"Focus on package '{top_pkg}' - it causes {top_impact} invalidations ({top_count} instances)")
    if any(entry.children_count > 5 for entry in major):
        recommendations.append("Consider improving type stability in methods with high invalidation counts")
    if len(package_impact) > 5:
        recommendations.append(
            f"Review dependencies - {len(package_impact)} packages are involved in invalidations")
    recommendations += [
        "Run `@time_imports using YourPackage` to identify slow-loading dependencies",
        "Consider using `@nospecialize` for arguments that don't need to be specialized",
        "Profile with `@profile` to identify performance bottlenecks",
    ]
    return recommendations


def format_invalidation_report(report: InvalidationReport) -> str:
    """Human-readable rendering of a report."""
    lines = [
        "=" * 60,
        "INVALIDATION ANALYSIS REPORT",
        f"Repository: {report.repo}",
        f"Analysis Time: {report.analysis_time.isoformat(timespec='seconds')}",
        "=" * 60,
        report.summary,
        "",
        f"Total Invalidations: {report.total_invalidations}",
    ]

    if report.total_invalidations > 0:
        lines += ["", f"Packages Affected: {len(report.packages_affected)}"]
        for i, pkg in enumerate(report.packages_affected[:10], 1):
            lines.append(f"  {i}. {pkg}")
        lines += ["", "Top Invalidators:"]
        for i, entry in enumerate(report.major_invalidators[:10], 1):
            lines += [
                f"  {i}. {entry.method}",
                f"     File: {entry.file}:{entry.line}",
                f"     Package: {entry.package}",
                f"     Impact: {entry.children_count} children",
                "",
            ]

    lines += ["", "Recommendations:"]
    lines += [f"  {i}. {rec}" for i, rec in enumerate(report.recommendations, 1)]
    lines.append("=" * 60)
    return "\n".join(lines)


def write_invalidation_report(report: InvalidationReport, output_file: str) -> None:
    """Write a report as pretty-printed JSON."""
    Path(output_file).parent.mkdir(parents=True, exist_ok=True)
    with open(output_file, "w") as f:
        json.dump(report.to_dict(), f, indent=2)


def generate_org_summary_report(org: str, results: Dict[str, InvalidationReport], output_dir: Optional[str] = None) -> str:
    """
    Write `{org}_invalidation_summary.md` and return its path.

    Failed analyses are counted but excluded from the totals.
    """
    output_dir = output_dir or tempfile.gettempdir()
    os.makedirs(output_dir, exist_ok=True)

    succeeded = [r for r in results.values() if not r.failed]
    total_repos = len(results)
    total = sum(r.total_invalidations for r in succeeded)
    average = total / len(succeeded) if succeeded else 0
    worst = sorted(
        ((name, r.total_invalidations) for name, r in results.items() if r.total_invalidations > 0),
        key=lambda item: item[1], reverse=True)
    packages = sorted({pkg for r in succeeded for pkg in r.packages_affected})

    lines = [
        f"# Invalidation Analysis Report for {org}",
        f"Generated on: {datetime.now().isoformat(timespec='seconds')}",
        "",
        "## Summary",
        f"- **Total Repositories Analyzed**: {total_repos}",
        f"- **Successful Analyses**: {len(succeeded)}",
        f"- **Failed Analyses**: {total_repos - len(succeeded)}",
        f"- **Total Invalidations Found**: {total}",
        f"- **Average Invalidations per Repo**: {average:.1f}",
        f"- **Unique Packages Involved**: {len(packages)}",
        "",
    ]

    if worst:
        lines.append("## Repositories with Most Invalidations")
        lines += [f"{i}. **{repo}**: {count} invalidations" for i, (repo, count) in enumerate(worst[:10], 1)]
        lines.append("")

    lines.append(f"## Recommendations for {org}")
    if total == 0:
        lines.append("🎉 Excellent! No invalidations detected across the organization.")
    elif average < 5:
        lines.append("✅ Good performance overall. Focus on the worst repositories for further improvements.")
    elif average < 20:
        lines.append("⚠️ Moderate invalidation levels. Consider organization-wide performance initiatives.")
    else:
        lines.append("❌ High invalidation levels detected. Immediate attention recommended.")

    lines += [
        "",
        "### Action Items",
        "1. Focus on repositories with >20 invalidations",
        f"2. Review common problematic packages: {', '.join(packages[:10])}",
        "3. Consider creating organization-wide coding guidelines for type stability",
        "4. Set up CI checks for invalidation regression testing",
        "",
        "## Detailed Results",
    ]
    for repo, report in sorted(results.items(), key=lambda item: item[1].total_invalidations, reverse=True):
        lines.append(f"### {repo}")
        lines.append(f"- **Status**: {'❌ Failed' if report.failed else '✅ Success'}")
        if not report.failed:
            lines.append(f"- **Invalidations**: {report.total_invalidations}")
            lines.append(f"- **Packages Affected**: {len(report.packages_affected)}")
        lines.append(f"- **Summary**: {report.summary}")
        lines.append("")

    summary_file = os.path.join(output_dir, f"{org}_invalidation_summary.md")
    with open(summary_file, "w") as f:
        f.write("\n".join(lines))
    logger.info(f"Organization summary report saved to: {summary_file}")
    return summary_file


class InvalidationService(MaintenanceService):
    """
    Runs invalidation analysis on repositories.

    Example:
        service = InvalidationService()
        report = service.analyze_repo_invalidations("/path/to/Foo.jl")
        print(format_invalidation_report(report))
    """

    def analyze_invalidations_in_process(self, repo_path: str, test_script: str = "") -> Dict[str, Any]:
        """
        Record invalidations in a child Julia process.

        Raises:
            FileNotFoundError: if repo_path does not exist
            RuntimeError: if the child produced no JSON result
        """
        if not os.path.isdir(repo_path):
            raise FileNotFoundError(f"Repository path does not exist: {repo_path}")

        script = ANALYSIS_SCRIPT.format(
            repo_path=julia_string(os.path.abspath(repo_path)),
            workload=test_script or DEFAULT_WORKLOAD,
            start=JSON_START,
            end=JSON_END,
        )
        timeout = self.config["julia"]["test_timeout_minutes"] * 60

        with tempfile.TemporaryDirectory(prefix="orgmaint_inval_") as tmp:
            script_path = os.path.join(tmp, "invalidation_analysis.jl")
            with open(script_path, "w") as f:
                f.write(script)
            logger.info("Running invalidation analysis in separate process...")
            output, code = self.julia.run_script(script_path, project=repo_path, timeout=timeout)

        if code != 0:
            logger.debug(output[-2000:])
        return extract_json_block(output)

    def generate_invalidation_report(self, repo_path: str, test_script: str = "") -> InvalidationReport:
        """Analyze a repository; failures yield a report with total -1."""
        logger.info(f"Analyzing invalidations for: {repo_path}")
        started = datetime.now()
        name = os.path.basename(os.path.normpath(repo_path))

        try:
            data = self.analyze_invalidations_in_process(repo_path, test_script)
        except Exception as e:
            logger.error(f"Failed to analyze invalidations for {repo_path}: {e}")
            return InvalidationReport(
                repo=name,
                total_invalidations=-1,
                analysis_time=started,
                summary=f"❌ Analysis failed: {e}",
                recommendations=["Check that the repository has a valid Project.toml and can be loaded successfully"],
            )

        major, package_impact = analyze_major_invalidators(data)
        total = data.get("total_invalidations", 0)
        return InvalidationReport(
            repo=name,
            total_invalidations=total,
            major_invalidators=major,
            packages_affected=[pkg for pkg, _, _ in package_impact],
            analysis_time=started,
            summary=invalidation_summary(total),
            recommendations=invalidation_recommendations(total, major, package_impact),
        )

    def analyze_repo_invalidations(
        self,
        repo_path: str,
        test_script: str = "",
        output_file: Optional[str] = None
    ) -> InvalidationReport:
        report = self.generate_invalidation_report(repo_path, test_script)
        if output_file:
            write_invalidation_report(report, output_file)
            logger.info(f"Detailed report saved to: {output_file}")
        return report

    def analyze_org_invalidations(
        self,
        org: str,
        work_dir: Optional[str] = None,
        test_script: str = "",
        output_dir: Optional[str] = None,
        max_repos: int = 0
    ) -> Dict[str, InvalidationReport]:
        """
        Analyze every package repository of an organization.

        Writes per-repository JSON reports into output_dir (when given) and
        an organization summary.
        """
        logger.info(f"Analyzing invalidations for organization: {org}")
        repos = self.github.list_org_repos_api(org)
        if not repos:
            logger.warning(f"No repositories found for organization: {org}")
            return {}
        if max_repos > 0:
            repos = repos[:max_repos]
        logger.info(f"Found {len(repos)} repositories to analyze")

        results: Dict[str, InvalidationReport] = {}
        with workspace(work_dir) as base_dir:
            for i, full_name in enumerate(repos, 1):
                logger.info(f"Processing repository {i}/{len(repos)}: {full_name}")
                repo_dir = os.path.join(base_dir, os.path.basename(full_name))
                try:
                    if not self.git.clone(f"https://github.com/{full_name}.git", repo_dir, depth=1):
                        raise RuntimeError("git clone failed")
                    if not os.path.isfile(os.path.join(repo_dir, "Project.toml")):
                        logger.info(f"Skipping {full_name} - no Project.toml found")
                        continue

                    report = self.generate_invalidation_report(repo_dir, test_script)
                    results[full_name] = report
                    if output_dir:
                        write_invalidation_report(
                            report, os.path.join(output_dir, f"{os.path.basename(full_name)}_invalidations.json"))
                except Exception as e:
                    logger.error(f"Failed to process {full_name}: {e}")
                    results[full_name] = InvalidationReport(
                        repo=full_name,
                        total_invalidations=-1,
                        summary=f"❌ Analysis failed: {e}",
                        recommendations=["Repository could not be cloned or analyzed"],
                    )
                finally:
                    shutil.rmtree(repo_dir, ignore_errors=True)

        generate_org_summary_report(org, results, output_dir)
        return results
