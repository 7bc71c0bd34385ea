# test_orchestrator.py
import json
import os
import tempfile
import threading
import time
import unittest
from datetime import datetime, timezone
from unittest import mock

import report_builder
from config import GlobalConfig
from context import RunContext
from data_sources.base import DiffSource, RevisionLogSource
from errors import ParseError, RenderError, SourceUnavailableError, ValidationError
from hooks.base import BasePlugin
from hooks.manager import PluginManager
from models import RevisionDescriptor
from orchestrator import ChurnOrchestrator

SEP = "=" * 67


def svn_section(path, added, removed):
    lines = [
        f"Index: {path}",
        SEP,
        f"--- {path}\t(revision 1)",
        f"+++ {path}\t(revision 2)",
        f"@@ -1,{removed} +1,{added} @@",
    ]
    lines += ["-x"] * removed
    lines += ["+y"] * added
    return "\n".join(lines) + "\n"


def svn_property_change(path):
    return (
        "\n"
        f"Property changes on: {path}\n"
        "___________________________________________________________________\n"
        "Modified: svn:ignore\n"
        "## -1 +1 ##\n"
        "-a\n"
        "+b\n"
    )


class FakeRepository(RevisionLogSource, DiffSource):
    """内存版本库: {revision: (author, diff 文本或异常)}"""

    def __init__(self, revisions, delays=None):
        self.revisions = revisions
        self.delays = delays or {}
        self.log_calls = 0
        self.diff_calls = []
        self.diff_flags = []
        self._lock = threading.Lock()

    def get_revisions(self, repository, from_revision, to_revision, author=None):
        self.log_calls += 1
        return [
            RevisionDescriptor(
                revision=rev,
                author=author_name,
                timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
                message="",
            )
            for rev, (author_name, _) in self.revisions.items()
            if from_revision <= rev <= to_revision
        ]

    def get_diff(self, repository, old_revision, new_revision, ignore_whitespace=False, ignore_eol=False):
        with self._lock:
            self.diff_calls.append(new_revision)
            self.diff_flags.append((ignore_whitespace, ignore_eol))
        time.sleep(self.delays.get(new_revision, 0))
        payload = self.revisions[new_revision][1]
        if isinstance(payload, Exception):
            raise payload
        return payload


class RecordingPlugin(BasePlugin):
    name = "Recording"

    def __init__(self):
        self.events = []

    def on_start(self, context):
        self.events.append("start")

    def on_revision_folded(self, context, stat):
        self.events.append(stat.revision)

    def on_report_rendered(self, context, content, fmt):
        return content + f"<!-- {fmt} -->\n" if fmt == "markdown" else content

    def on_finish(self, context, result):
        self.events.append("finish")


def scenario_repository():
    return FakeRepository(
        {
            100: ("carol", svn_property_change("trunk")),
            101: ("alice", svn_section("trunk/a.ts", 10, 2)),
            102: ("bob", svn_section("trunk/b.md", 0, 5)),
        }
    )


class OrchestratorTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def make_context(self, **overrides):
        values = dict(
            repository="svn://example/repo",
            project_data_path=self.tmp.name,
            from_revision=100,
            to_revision=102,
            global_config=GlobalConfig(),
            formats=["json"],
            output_dir=self.tmp.name,
            no_plugins=True,
        )
        values.update(overrides)
        return RunContext(**values)

    def make_orchestrator(self, repo, plugin=None, **overrides):
        context = self.make_context(**overrides)
        manager = PluginManager(context)
        if plugin is not None:
            manager.register(plugin)
        return ChurnOrchestrator(
            context, log_source=repo, diff_source=repo, plugin_manager=manager
        )


class TestAggregation(OrchestratorTestCase):

    def test_extension_filter_scenario(self):
        print("\n>>> 测试 r100:r102 只统计 ts 文件...")
        result = self.make_orchestrator(
            scenario_repository(), include_extensions=["ts"], per_revision=True
        ).aggregate()

        self.assertEqual(result.total_lines_added, 10)
        self.assertEqual(result.total_lines_removed, 2)
        self.assertEqual(result.total_files_changed, 1)
        self.assertEqual([s.revision for s in result.revisions], [101])
        self.assertEqual(result.revisions[0].author, "alice")
        self.assertEqual(result.revisions_scanned, 3)
        print("✅ 扩展名过滤场景通过")

    def test_no_filters_counts_everything(self):
        result = self.make_orchestrator(scenario_repository()).aggregate()
        self.assertEqual(result.total_lines_added, 10)
        self.assertEqual(result.total_lines_removed, 7)
        # r100 的目录属性变更算一个文件，但不计行数
        self.assertEqual(result.total_files_changed, 3)
        self.assertEqual(result.total_non_countable_files, 1)
        self.assertEqual([s.revision for s in result.revisions], [100, 101, 102])

    def test_exclusion_matching_everything_drops_revisions(self):
        result = self.make_orchestrator(
            scenario_repository(), exclude_patterns=["trunk/**", "trunk"]
        ).aggregate()
        self.assertEqual(result.revisions, ())
        self.assertEqual(result.total_files_changed, 0)

    def test_author_filter_happens_before_diff_retrieval(self):
        repo = scenario_repository()
        result = self.make_orchestrator(repo, author="bob").aggregate()
        self.assertEqual(repo.diff_calls, [102], "❌ 其他作者的修订不应获取 diff")
        self.assertEqual(result.total_lines_removed, 5)

    def test_single_revision_range(self):
        repo = FakeRepository({7: ("alice", "")})
        result = self.make_orchestrator(repo, from_revision=7, to_revision=7).aggregate()
        self.assertEqual(result.revisions, ())
        self.assertEqual(result.revisions_scanned, 1)

    def test_binary_file_counts_as_changed(self):
        diff = (
            "Index: logo.png\n"
            f"{SEP}\n"
            "Cannot display: file marked as a binary type.\n"
            "svn:mime-type = image/png\n"
        )
        repo = FakeRepository({5: ("alice", diff)})
        result = self.make_orchestrator(repo, from_revision=5, to_revision=5).aggregate()
        self.assertEqual(result.total_files_changed, 1)
        self.assertEqual(result.total_lines_added, 0)
        self.assertEqual(result.total_non_countable_files, 1)

    def test_ignore_flags_reach_diff_source(self):
        repo = scenario_repository()
        self.make_orchestrator(repo, ignore_whitespace=True, ignore_eol=True).aggregate()
        self.assertEqual(set(repo.diff_flags), {(True, True)})

    def test_runs_are_deterministic(self):
        first = self.make_orchestrator(scenario_repository()).aggregate()
        second = self.make_orchestrator(scenario_repository()).aggregate()
        self.assertEqual(first, second)

    def test_parallel_matches_sequential_order(self):
        revisions = {rev: ("dev", svn_section(f"f{rev}.c", rev - 10, 0)) for rev in range(11, 19)}
        # 前面的修订故意更慢，迫使完成顺序与修订顺序不同
        delays = {rev: (19 - rev) * 0.01 for rev in revisions}
        plugin = RecordingPlugin()

        parallel = self.make_orchestrator(
            FakeRepository(revisions, delays),
            plugin=plugin,
            from_revision=11,
            to_revision=18,
            workers=4,
        ).aggregate()
        sequential = self.make_orchestrator(
            FakeRepository(revisions), from_revision=11, to_revision=18
        ).aggregate()

        self.assertEqual(parallel, sequential)
        self.assertEqual(plugin.events, list(range(11, 19)), "❌ 聚合顺序必须与修订顺序一致")


class TestFailurePolicy(OrchestratorTestCase):

    def broken_repository(self):
        return FakeRepository(
            {
                100: ("carol", svn_section("a.c", 1, 0)),
                101: ("alice", "@@ -1 +1 @@\n-a\n+b\n"),
                102: ("bob", SourceUnavailableError("connection reset", reason="unreachable")),
            }
        )

    def test_abort_on_parse_error(self):
        with self.assertRaises(ParseError) as ctx:
            self.make_orchestrator(self.broken_repository()).aggregate()
        self.assertEqual(ctx.exception.revision, 101)

    def test_abort_on_source_error_reports_revision(self):
        repo = FakeRepository(
            {
                100: ("carol", svn_section("a.c", 1, 0)),
                101: ("bob", SourceUnavailableError("gone", reason="not-found")),
            }
        )
        with self.assertRaises(SourceUnavailableError) as ctx:
            self.make_orchestrator(repo, to_revision=101).aggregate()
        self.assertEqual(ctx.exception.revision, 101)
        self.assertEqual(ctx.exception.reason, "not-found")

    def test_parallel_abort_reports_earliest_failure(self):
        repo = self.broken_repository()
        repo.delays = {101: 0.05}
        with self.assertRaises(ParseError) as ctx:
            self.make_orchestrator(repo, workers=3).aggregate()
        self.assertEqual(ctx.exception.revision, 101)

    def test_skip_records_each_failure(self):
        result = self.make_orchestrator(
            self.broken_repository(), failure_policy="skip", per_revision=True
        ).aggregate()
        self.assertEqual([s.revision for s in result.revisions], [100])
        self.assertEqual([s.revision for s in result.skipped], [101, 102])
        self.assertIn("解析失败", result.skipped[0].reason)
        self.assertIn("unreachable", result.skipped[1].reason)
        self.assertEqual(result.total_lines_added, 1)
        self.assertEqual(result.revisions_scanned, 3)

    def test_log_source_failure_is_fatal_under_skip(self):
        repo = scenario_repository()
        with mock.patch.object(
            repo, "get_revisions", side_effect=SourceUnavailableError("down", reason="timeout")
        ):
            with self.assertRaises(SourceUnavailableError):
                self.make_orchestrator(repo, failure_policy="skip").aggregate()


class TestValidation(OrchestratorTestCase):

    def assertInvalidBeforeAnyCall(self, **overrides):
        repo = scenario_repository()
        with self.assertRaises(ValidationError):
            self.make_orchestrator(repo, **overrides).run()
        self.assertEqual(repo.log_calls, 0)
        self.assertEqual(repo.diff_calls, [])

    def test_invalid_inputs(self):
        cases = [
            dict(from_revision=5, to_revision=4),
            dict(from_revision=0),
            dict(formats=["pdf"]),
            dict(formats=[]),
            dict(failure_policy="retry"),
            dict(workers=0),
            dict(timeout=-1),
            dict(include_extensions=[""]),
            dict(author=""),
        ]
        for overrides in cases:
            with self.subTest(**{k: repr(v) for k, v in overrides.items()}):
                self.assertInvalidBeforeAnyCall(**overrides)


class TestPublish(OrchestratorTestCase):

    def test_run_writes_each_format_and_triggers_hooks(self):
        plugin = RecordingPlugin()
        summary = self.make_orchestrator(
            scenario_repository(),
            plugin=plugin,
            formats=["json", "markdown", "json"],
            per_revision=True,
        ).run()

        self.assertEqual([o.fmt for o in summary.outcomes], ["json", "markdown"])
        self.assertEqual(summary.failed_formats, [])
        self.assertEqual(plugin.events, ["start", 100, 101, 102, "finish"])

        with open(os.path.join(self.tmp.name, "ChurnReport_r100-r102.json"), encoding="utf-8") as f:
            payload = json.load(f)
        self.assertEqual(payload["totalLinesAdded"], 10)
        with open(os.path.join(self.tmp.name, "ChurnReport_r100-r102.md"), encoding="utf-8") as f:
            self.assertTrue(f.read().endswith("<!-- markdown -->\n"))

    def test_one_failing_format_does_not_block_others(self):
        real_save = report_builder.save_report

        def flaky_save(content, destination, fmt):
            if fmt == "csv":
                raise RenderError("disk full", fmt)
            return real_save(content, destination, fmt)

        with mock.patch("report_builder.save_report", side_effect=flaky_save):
            summary = self.make_orchestrator(
                scenario_repository(), formats=["csv", "json"]
            ).run()

        self.assertEqual(summary.failed_formats, ["csv"])
        self.assertTrue(
            os.path.exists(os.path.join(self.tmp.name, "ChurnReport_r100-r102.json"))
        )


if __name__ == "__main__":
    unittest.main()
