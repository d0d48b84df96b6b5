"""
Import timing analysis service for orgmaint.

Loads a package under `julia --time-imports` in a child process and
aggregates the per-package load and precompile times it prints.
"""

import json
import logging
import os
import re
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from statistics import mean
from typing import Any, Dict, List, Optional

from ..domain.analysis import ImportTiming, ImportTimingReport
from ..project_utils import read_project
from ..utils import workspace
from .base import MaintenanceService

logger = logging.getLogger(__name__)

# "  123.4 ms  Name" or "  123.4 ms  ✓ Name 12.3% compilation time"
TIMING_RE = re.compile(r"^\s*(\d+\.?\d*)\s*ms\s*(✓?)\s*(.+)$")


def parse_time_imports_output(output: str, package_name: str) -> List[Dict[str, Any]]:
    """
    Timing entries from `--time-imports` output, in load order.

    Entries without the check mark are counted as precompilation.
    """
    entries = []
    for raw in output.splitlines():
        line = raw.strip()
        if not line or "ms" not in line:
            continue
        match = TIMING_RE.match(line)
        if not match:
            continue
        time_ms = float(match.group(1))
        name = match.group(3).split()[0]
        entries.append({
            'package': name,
            'time_ms': time_ms,
            'time_seconds': time_ms / 1000.0,
            'is_precompile': not match.group(2),
            'is_local': name == package_name,
            'line': line,
        })
    return entries


def parse_import_timings(data: Dict[str, Any]) -> List[ImportTiming]:
    """Aggregate timing entries per package, slowest first."""
    timings: Dict[str, ImportTiming] = {}
    for entry in data.get("timing_entries", []):
        name = entry["package"]
        timing = timings.get(name)
        if timing is None:
            timing = timings[name] = ImportTiming(
                package_name=name, total_time=0.0, precompile_time=0.0,
                load_time=0.0, is_local=entry["is_local"])
        timing.total_time += entry["time_seconds"]
        if entry["is_precompile"]:
            timing.precompile_time += entry["time_seconds"]
        else:
            timing.load_time += entry["time_seconds"]
    return sorted(timings.values(), key=lambda t: t.total_time, reverse=True)


def import_summary(total: float) -> str:
    if total < 1.0:
        return f"✅ Fast import ({total:.2f}s) - excellent performance"
    if total < 3.0:
        return f"✅ Good import time ({total:.2f}s) - acceptable performance"
    if total < 10.0:
        return f"⚠️  Moderate import time ({total:.2f}s) - room for improvement"
    return f"❌ Slow import time ({total:.2f}s) - significant impact on user experience"


def import_recommendations(total: float, timings: List[ImportTiming]) -> List[str]:
    if total <= 1.0:
        return ["Excellent import performance! No action needed."]

    recommendations = []
    slow_deps = [t for t in timings if not t.is_local and t.total_time > 0.5]
    if slow_deps:
        recommendations.append(
            f"Consider reducing dependency on '{slow_deps[0].package_name}' ({slow_deps[0].total_time:.2f}s)")
    if any(t.precompile_time > 1.0 for t in timings):
        recommendations.append(
            "High precompilation times detected - consider using PackageCompiler.jl for system images")
    if len(timings) > 10:
        recommendations.append(
            f"Large number of dependencies ({len(timings)}) - consider reducing if possible")
    if total > 5.0:
        recommendations.append("Consider lazy loading with Requires.jl or package extensions")
        recommendations.append("Profile individual dependencies to identify specific bottlenecks")
    recommendations.append("Use `@time_imports` locally to identify regression sources")
    return recommendations


def major_contributors(timings: List[ImportTiming]) -> List[ImportTiming]:
    """Packages over 100 ms (all of them when there are at most ten), capped at ten."""
    if len(timings) <= 10:
        return list(timings)
    contributors = [t for t in timings if t.total_time > 0.1]
    return contributors if len(contributors) <= 10 else timings[:10]


def format_import_timing_report(report: ImportTimingReport) -> str:
    lines = [
        "=" * 60,
        "IMPORT TIMING ANALYSIS REPORT",
        f"Repository: {report.repo}",
        f"Package: {report.package_name}",
        f"Analysis Time: {report.analysis_time.isoformat(timespec='seconds')}",
        "=" * 60,
        report.summary,
        "",
        f"Total Import Time: {report.total_import_time:.2f} seconds",
    ]

    if report.total_import_time > 0:
        lines += ["", "Major Contributors:"]
        for i, timing in enumerate(report.major_contributors, 1):
            lines.append(f"  {i}. {timing.package_name}{' (LOCAL)' if timing.is_local else ''}")
            lines.append(f"     Total: {timing.total_time:.2f}s")
            if timing.precompile_time > 0.01:
                lines.append(
                    f"     Precompile: {timing.precompile_time:.2f}s, Load: {timing.load_time:.2f}s")
            lines.append("")

        if report.dependency_chain:
            lines += ["", "Dependency Load Order:"]
            lines += [f"  {i}. {dep}" for i, dep in enumerate(report.dependency_chain[:10], 1)]
            if len(report.dependency_chain) > 10:
                lines.append(f"  ... and {len(report.dependency_chain) - 10} more")

    lines += ["", "Recommendations:"]
    lines += [f"  {i}. {rec}" for i, rec in enumerate(report.recommendations, 1)]
    lines.append("=" * 60)
    return "\n".join(lines)


def write_import_timing_report(report: ImportTimingReport, output_file: str) -> None:
    Path(output_file).parent.mkdir(parents=True, exist_ok=True)
    with open(output_file, "w") as f:
        json.dump(report.to_dict(), f, indent=2)


def _status_icon(seconds: float) -> str:
    if seconds < 1.0:
        return "✅"
    if seconds < 3.0:
        return "⚠️"
    return "❌"


def generate_org_import_summary_report(
    org: str,
    results: Dict[str, ImportTimingReport],
    output_dir: Optional[str] = None
) -> str:
    """Write `{org}_import_timing_summary.md` and return its path."""
    output_dir = output_dir or tempfile.gettempdir()
    os.makedirs(output_dir, exist_ok=True)

    succeeded = [r for r in results.values() if not r.failed]
    total = sum(r.total_import_time for r in succeeded)
    average = total / len(succeeded) if succeeded else 0.0
    slowest = sorted(
        ((name, r.total_import_time) for name, r in results.items() if r.total_import_time > 0),
        key=lambda item: item[1], reverse=True)

    dep_times: Dict[str, List[float]] = {}
    for report in succeeded:
        for timing in report.major_contributors:
            if not timing.is_local and timing.total_time > 0.1:
                dep_times.setdefault(timing.package_name, []).append(timing.total_time)
    dependency_stats = sorted(
        ((dep, mean(times), len(times)) for dep, times in dep_times.items()),
        key=lambda item: item[1], reverse=True)

    lines = [
        f"# Import Timing Analysis Report for {org}",
        f"Generated on: {datetime.now().isoformat(timespec='seconds')}",
        "",
        "## Summary",
        f"- **Total Repositories Analyzed**: {len(results)}",
        f"- **Successful Analyses**: {len(succeeded)}",
        f"- **Failed Analyses**: {len(results) - len(succeeded)}",
        f"- **Average Import Time**: {average:.2f} seconds",
        f"- **Total Import Time Across Org**: {total:.2f} seconds",
        "",
    ]

    if slowest:
        lines.append("## Slowest Loading Packages")
        lines += [
            f"{i}. {_status_icon(seconds)} **{repo}**: {seconds:.2f}s"
            for i, (repo, seconds) in enumerate(slowest[:15], 1)
        ]
        lines.append("")

    if dependency_stats:
        lines += [
            "## Most Problematic Dependencies",
            "Dependencies that consistently slow down imports across multiple repositories:",
            "",
        ]
        for i, (dep, avg, count) in enumerate(dependency_stats[:10], 1):
            lines += [f"{i}. **{dep}**", f"   - Average impact: {avg:.2f}s", f"   - Affects {count} repositories", ""]

    lines.append(f"## Recommendations for {org}")
    if average < 1.0:
        lines.append("🎉 Excellent! Average import times are very good across the organization.")
    elif average < 3.0:
        lines.append("✅ Good import performance overall. Focus on the slowest packages for improvements.")
    elif average < 8.0:
        lines.append("⚠️ Moderate import times. Consider organization-wide optimization initiatives.")
    else:
        lines.append("❌ Slow import times detected. Immediate attention recommended for user experience.")

    lines += ["", "### Action Items", "1. **Priority**: Focus on packages with >5s import time"]
    if dependency_stats:
        lines.append(
            f"2. **Dependency Review**: Investigate organization's usage of '{dependency_stats[0][0]}' "
            "and similar slow dependencies")
    lines += [
        "3. **Best Practices**: Share optimization techniques from fast-loading packages",
        "4. **Monitoring**: Set up CI checks to prevent import time regressions",
        "5. **User Experience**: Consider lazy loading for packages with >3s import time",
        "",
        "## Detailed Results",
    ]

    for repo, report in sorted(results.items(), key=lambda item: item[1].total_import_time, reverse=True):
        lines.append(f"### {repo}")
        lines.append(f"- **Status**: {'❌ Failed' if report.failed else '✅ Success'}")
        if not report.failed:
            lines.append(f"- **Import Time**: {report.total_import_time:.2f}s")
            lines.append(f"- **Package**: {report.package_name}")
            if report.major_contributors and not report.major_contributors[0].is_local:
                slow = report.major_contributors[0]
                lines.append(f"- **Slowest Dependency**: {slow.package_name} ({slow.total_time:.2f}s)")
        lines.append(f"- **Summary**: {report.summary}")
        lines.append("")

    summary_file = os.path.join(output_dir, f"{org}_import_timing_summary.md")
    with open(summary_file, "w") as f:
        f.write("\n".join(lines))
    logger.info(f"Organization import timing summary saved to: {summary_file}")
    return summary_file


class ImportTimingService(MaintenanceService):
    """
    Measures how long packages take to load.

    Example:
        service = ImportTimingService()
        report = service.analyze_repo_import_timing("/path/to/Foo.jl")
        print(format_import_timing_report(report))
    """

    def analyze_import_timing_in_process(self, repo_path: str, package_name: str = "") -> Dict[str, Any]:
        """
        Run `using <package>` under `--time-imports`.

        The package name is read from Project.toml when not given.

        Raises:
            FileNotFoundError: missing repository or Project.toml
            ValueError: Project.toml has no name
            RuntimeError: julia exited with an error
        """
        if not os.path.isdir(repo_path):
            raise FileNotFoundError(f"Repository path does not exist: {repo_path}")

        if not package_name:
            project_file = os.path.join(repo_path, "Project.toml")
            if not os.path.isfile(project_file):
                raise FileNotFoundError("No Project.toml found in repository")
            package_name = read_project(project_file).get("name", "")
            if not package_name:
                raise ValueError("Could not determine package name from Project.toml")

        logger.info("Running import timing analysis in separate process...")
        timeout = self.config["julia"]["test_timeout_minutes"] * 60
        output, code = self.julia.time_imports(repo_path, package_name, timeout=timeout)
        if code != 0:
            raise RuntimeError(f"Failed to run import timing analysis: {output.strip()[-500:]}")

        entries = parse_time_imports_output(output, package_name)
        return {
            'package_name': package_name,
            'timing_entries': entries,
            'raw_output': output,
            'total_entries': len(entries),
        }

    def generate_import_timing_report(self, repo_path: str, package_name: str = "") -> ImportTimingReport:
        """Analyze a repository; failures yield a report with total -1.0."""
        logger.info(f"Analyzing import timing for: {repo_path}")
        started = datetime.now()
        name = os.path.basename(os.path.normpath(repo_path))

        try:
            data = self.analyze_import_timing_in_process(repo_path, package_name)
        except Exception as e:
            logger.error(f"Failed to analyze import timing for {repo_path}: {e}")
            return ImportTimingReport(
                repo=name,
                package_name=package_name,
                total_import_time=-1.0,
                analysis_time=started,
                summary=f"❌ Analysis failed: {e}",
                recommendations=[
                    "Check that the repository has a valid Project.toml and the package can be imported successfully"],
            )

        timings = parse_import_timings(data)
        total = sum(t.total_time for t in timings)

        chain: List[str] = []
        for entry in data["timing_entries"]:
            if not entry["is_local"] and entry["package"] not in chain:
                chain.append(entry["package"])

        return ImportTimingReport(
            repo=name,
            package_name=data["package_name"],
            total_import_time=total,
            major_contributors=major_contributors(timings),
            dependency_chain=chain,
            analysis_time=started,
            summary=import_summary(total),
            recommendations=import_recommendations(total, timings),
            raw_output=data["raw_output"],
        )

    def analyze_repo_import_timing(
        self,
        repo_path: str,
        package_name: str = "",
        output_file: Optional[str] = None
    ) -> ImportTimingReport:
        report = self.generate_import_timing_report(repo_path, package_name)
        if output_file:
            write_import_timing_report(report, output_file)
            logger.info(f"Detailed report saved to: {output_file}")
        return report

    def analyze_org_import_timing(
        self,
        org: str,
        work_dir: Optional[str] = None,
        output_dir: Optional[str] = None,
        max_repos: int = 0
    ) -> Dict[str, ImportTimingReport]:
        logger.info(f"Analyzing import timing for organization: {org}")
        repos = self.github.list_org_repos_api(org)
        if not repos:
            logger.warning(f"No repositories found for organization: {org}")
            return {}
        if max_repos > 0:
            repos = repos[:max_repos]
        logger.info(f"Found {len(repos)} repositories to analyze")

        results: Dict[str, ImportTimingReport] = {}
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

                    report = self.generate_import_timing_report(repo_dir)
                    results[full_name] = report
                    if output_dir:
                        write_import_timing_report(
                            report, os.path.join(output_dir, f"{os.path.basename(full_name)}_import_timing.json"))
                except Exception as e:
                    logger.error(f"Failed to process {full_name}: {e}")
                    results[full_name] = ImportTimingReport(
                        repo=full_name,
                        package_name="",
                        total_import_time=-1.0,
                        summary=f"❌ Analysis failed: {e}",
                        recommendations=["Repository could not be cloned or analyzed"],
                    )
                finally:
                    shutil.rmtree(repo_dir, ignore_errors=True)

        generate_org_import_summary_report(org, results, output_dir)
        return results
