"""
Tests for import timing analysis.
"""
import json
import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from orgmaint.domain import ImportTimingReport
from orgmaint.domain.analysis import ImportTiming
from orgmaint.services.import_timing_service import (
    ImportTimingService,
    format_import_timing_report,
    generate_org_import_summary_report,
    import_recommendations,
    import_summary,
    major_contributors,
    parse_import_timings,
    parse_time_imports_output,
    write_import_timing_report,
)

TIME_IMPORTS = """\
  Activating project at `/work/Foo.jl`
Loading times in ms follow
    712.3 ms  StaticArraysCore
   1500.0 ms  StaticArrays 12.50% compilation time
      2.1 ms  ✓ Adapt
    250.0 ms  Foo
"""


@pytest.fixture
def service(config, git, github, julia):
    return ImportTimingService(config, git_client=git, github_client=github, julia_client=julia)


def timing(name, total, precompile=0.0, is_local=False):
    return ImportTiming(name, total, precompile, total - precompile, is_local=is_local)


# ============================================================================
# Parsing
# ============================================================================

class TestParsing:
    """Reading `--time-imports` lines."""

    def test_entries_in_load_order(self):
        entries = parse_time_imports_output(TIME_IMPORTS, "Foo")
        assert [e["package"] for e in entries] == ["StaticArraysCore", "StaticArrays", "Adapt", "Foo"]
        assert entries[1]["time_seconds"] == pytest.approx(1.5)
        assert entries[1]["is_precompile"]
        assert not entries[2]["is_precompile"]
        assert entries[3]["is_local"]
        assert entries[0]["line"] == "712.3 ms  StaticArraysCore"

    def test_noise_ignored(self):
        assert parse_time_imports_output("Precompiling Foo...\nDone in 3 seconds\n", "Foo") == []

    def test_aggregation(self):
        entries = parse_time_imports_output(TIME_IMPORTS + "    100.0 ms  ✓ StaticArrays\n", "Foo")
        timings = parse_import_timings({"timing_entries": entries})

        assert [t.package_name for t in timings] == ["StaticArrays", "StaticArraysCore", "Foo", "Adapt"]
        static = timings[0]
        assert static.total_time == pytest.approx(1.6)
        assert static.precompile_time == pytest.approx(1.5)
        assert static.load_time == pytest.approx(0.1)
        assert timings[2].is_local


class TestSummaries:
    @pytest.mark.parametrize("total,prefix", [
        (0.5, "✅ Fast import (0.50s)"),
        (2.0, "✅ Good import time (2.00s)"),
        (5.0, "⚠️  Moderate import time (5.00s)"),
        (12.0, "❌ Slow import time (12.00s)"),
    ])
    def test_summary(self, total, prefix):
        assert import_summary(total).startswith(prefix)

    def test_recommendations(self):
        timings = [timing("StaticArrays", 1.5, precompile=1.5), timing("Foo", 0.25, is_local=True)]
        recs = import_recommendations(2.0, timings)
        assert recs == [
            "Consider reducing dependency on 'StaticArrays' (1.50s)",
            "High precompilation times detected - consider using PackageCompiler.jl for system images",
            "Use `@time_imports` locally to identify regression sources",
        ]

    def test_slow_package_recommendations(self):
        timings = [timing(f"Dep{i}", 0.6) for i in range(11)]
        recs = import_recommendations(6.6, timings)
        assert "Large number of dependencies (11) - consider reducing if possible" in recs
        assert "Consider lazy loading with Requires.jl or package extensions" in recs

    def test_fast_package(self):
        assert import_recommendations(0.8, []) == ["Excellent import performance! No action needed."]

    def test_major_contributors(self):
        few = [timing("A", 0.01)]
        assert major_contributors(few) == few

        many = [timing("A", 2.0), timing("B", 0.5)] + [timing(f"S{i}", 0.05) for i in range(10)]
        assert [t.package_name for t in major_contributors(many)] == ["A", "B"]

        slow = [timing(f"D{i}", 1.0) for i in range(12)]
        assert len(major_contributors(slow)) == 10


# ============================================================================
# Reports
# ============================================================================

def _report(repo, total, contributors=(), chain=()):
    return ImportTimingReport(
        repo=repo, package_name=repo[:-3], total_import_time=total,
        major_contributors=list(contributors), dependency_chain=list(chain),
        summary=import_summary(max(total, 0.0)))


class TestReports:
    def test_format(self):
        report = _report("Foo.jl", 2.0,
                         [timing("StaticArrays", 1.5, precompile=1.5), timing("Foo", 0.25, is_local=True)],
                         [f"Dep{i}" for i in range(12)])
        text = format_import_timing_report(report)
        assert "Total Import Time: 2.00 seconds" in text
        assert "  1. StaticArrays\n     Total: 1.50s\n     Precompile: 1.50s, Load: 0.00s" in text
        assert "  2. Foo (LOCAL)" in text
        assert "  10. Dep9" in text
        assert "  ... and 2 more" in text

    def test_write_json(self, tmp_path):
        path = tmp_path / "timing" / "foo.json"
        write_import_timing_report(_report("Foo.jl", 1.0, [timing("A", 1.0)]), str(path))
        data = json.loads(path.read_text())
        assert data["package_name"] == "Foo"
        assert data["major_contributors"][0]["package_name"] == "A"

    def test_org_summary(self, tmp_path):
        results = {
            "SciML/A.jl": _report("A.jl", 4.0, [timing("StaticArrays", 1.5)]),
            "SciML/B.jl": _report("B.jl", 0.5, [timing("StaticArrays", 0.5)]),
            "SciML/C.jl": ImportTimingReport(repo="SciML/C.jl", package_name="", total_import_time=-1.0,
                                             summary="❌ Analysis failed: x"),
        }
        path = generate_org_import_summary_report("SciML", results, str(tmp_path))

        assert path == str(tmp_path / "SciML_import_timing_summary.md")
        text = Path(path).read_text()
        assert "- **Average Import Time**: 2.25 seconds" in text
        assert "1. ❌ **SciML/A.jl**: 4.00s" in text
        assert "2. ✅ **SciML/B.jl**: 0.50s" in text
        assert "1. **StaticArrays**\n   - Average impact: 1.00s\n   - Affects 2 repositories" in text
        assert "✅ Good import performance overall" in text
        assert "Investigate organization's usage of 'StaticArrays'" in text
        assert "- **Slowest Dependency**: StaticArrays (1.50s)" in text
        assert "### SciML/C.jl\n- **Status**: ❌ Failed" in text


# ============================================================================
# Service
# ============================================================================

class TestAnalyze:
    """The `--time-imports` child process."""

    def test_package_name_from_project(self, service, julia, config, tmp_path, make_package):
        pkg = make_package(tmp_path / "Foo.jl")
        julia.time_imports.return_value = (TIME_IMPORTS, 0)

        data = service.analyze_import_timing_in_process(str(pkg))

        julia.time_imports.assert_called_once_with(
            str(pkg), "Foo", timeout=config["julia"]["test_timeout_minutes"] * 60)
        assert data["package_name"] == "Foo"
        assert data["total_entries"] == 4
        assert data["raw_output"] == TIME_IMPORTS

    def test_explicit_package_name(self, service, julia, tmp_path):
        service.analyze_import_timing_in_process(str(tmp_path), "Bar")
        assert julia.time_imports.call_args[0][1] == "Bar"

    def test_missing_repo(self, service, tmp_path):
        with pytest.raises(FileNotFoundError, match="does not exist"):
            service.analyze_import_timing_in_process(str(tmp_path / "missing"))

    def test_missing_project(self, service, tmp_path):
        with pytest.raises(FileNotFoundError, match="No Project.toml"):
            service.analyze_import_timing_in_process(str(tmp_path))

    def test_unnamed_project(self, service, tmp_path):
        (tmp_path / "Project.toml").write_text("[deps]\n")
        with pytest.raises(ValueError):
            service.analyze_import_timing_in_process(str(tmp_path))

    def test_julia_error(self, service, julia, tmp_path, make_package):
        pkg = make_package(tmp_path / "Foo.jl")
        julia.time_imports.return_value = ("ERROR: ArgumentError: Package Foo not found\n", 1)
        with pytest.raises(RuntimeError, match="Package Foo not found"):
            service.analyze_import_timing_in_process(str(pkg))

    def test_report(self, service, julia, tmp_path, make_package):
        pkg = make_package(tmp_path / "Foo.jl")
        julia.time_imports.return_value = (TIME_IMPORTS, 0)

        report = service.generate_import_timing_report(str(pkg))

        assert report.repo == "Foo.jl"
        assert report.package_name == "Foo"
        assert report.total_import_time == pytest.approx(2.4644)
        assert report.dependency_chain == ["StaticArraysCore", "StaticArrays", "Adapt"]
        assert report.major_contributors[0].package_name == "StaticArrays"
        assert report.summary.startswith("✅ Good import time")
        assert report.raw_output == TIME_IMPORTS

    def test_failed_report(self, service, tmp_path):
        report = service.generate_import_timing_report(str(tmp_path))
        assert report.failed
        assert report.summary == "❌ Analysis failed: No Project.toml found in repository"

    def test_repo_output_file(self, service, julia, tmp_path, make_package):
        pkg = make_package(tmp_path / "Foo.jl")
        julia.time_imports.return_value = (TIME_IMPORTS, 0)
        out = tmp_path / "out.json"
        service.analyze_repo_import_timing(str(pkg), output_file=str(out))
        assert json.loads(out.read_text())["dependency_chain"][0] == "StaticArraysCore"


class TestAnalyzeOrg:
    def test_org(self, service, git, github, tmp_path, make_package):
        github.list_org_repos_api.return_value = ["SciML/A.jl", "SciML/Docs", "SciML/Gone.jl"]

        def clone(url, dest, **kwargs):
            if "Gone" in url:
                return False
            if "Docs" in url:
                os.makedirs(dest)
            else:
                make_package(dest, name="A")
            return True

        git.clone.side_effect = clone
        service.generate_import_timing_report = MagicMock(return_value=_report("A.jl", 0.4))
        out = tmp_path / "reports"

        results = service.analyze_org_import_timing("SciML", work_dir=str(tmp_path / "work"), output_dir=str(out))

        assert list(results) == ["SciML/A.jl", "SciML/Gone.jl"]
        assert results["SciML/Gone.jl"].summary == "❌ Analysis failed: git clone failed"
        assert (out / "A.jl_import_timing.json").is_file()
        assert (out / "SciML_import_timing_summary.md").is_file()
        service.generate_import_timing_report.assert_called_once_with(str(tmp_path / "work" / "A.jl"))

    def test_max_repos(self, service, git, github, tmp_path):
        github.list_org_repos_api.return_value = ["SciML/A.jl", "SciML/B.jl"]
        git.clone.return_value = False
        assert list(service.analyze_org_import_timing("SciML", output_dir=str(tmp_path), max_repos=1)) == ["SciML/A.jl"]
