# test_report_builder.py
import csv
import io
import json
import os
import tempfile
import unittest

import report_builder
from config import GlobalConfig
from context import RunContext
from errors import RenderError
from models import AggregationResult, RevisionStat, SkippedRevision

RESULT = AggregationResult(
    total_lines_added=15,
    total_lines_removed=7,
    total_files_changed=3,
    total_non_countable_files=1,
    revisions=(
        RevisionStat(101, "alice", 1, 10, 2, 0),
        RevisionStat(102, "bob, jr", 2, 5, 5, 1),
    ),
    skipped=(SkippedRevision(103, "diff 获取失败 (timeout): 超时"),),
    revisions_scanned=3,
    failure_policy="skip",
)


class TestRenderReport(unittest.TestCase):

    def setUp(self):
        self.config = GlobalConfig()

    def render(self, fmt, per_revision=True):
        return report_builder.render_report(
            RESULT, fmt, per_revision=per_revision, global_config=self.config
        )

    def test_json_fields(self):
        payload = json.loads(self.render("json"))
        self.assertEqual(
            list(payload.keys()),
            [
                "totalLinesAdded",
                "totalLinesRemoved",
                "totalFilesChanged",
                "totalNonCountableFiles",
                "revisionsScanned",
                "revisions",
                "skippedRevisions",
                "failurePolicy",
            ],
        )
        self.assertEqual(payload["totalLinesAdded"], 15)
        self.assertEqual(
            payload["revisions"][0],
            {
                "revision": 101,
                "author": "alice",
                "filesChanged": 1,
                "linesAdded": 10,
                "linesRemoved": 2,
                "nonCountableFiles": 0,
            },
        )
        self.assertEqual(payload["skippedRevisions"][0]["revision"], 103)

    def test_json_without_breakdown(self):
        payload = json.loads(self.render("json", per_revision=False))
        self.assertEqual(payload["revisions"], [])
        self.assertEqual(payload["totalLinesRemoved"], 7)

    def test_csv_round_trip(self):
        rows = list(csv.DictReader(io.StringIO(self.render("csv"))))
        self.assertEqual([int(r["revision"]) for r in rows], [101, 102])
        self.assertEqual(rows[1]["author"], "bob, jr")
        self.assertEqual(sum(int(r["lines_added"]) for r in rows), RESULT.total_lines_added)
        self.assertEqual(
            sum(int(r["lines_removed"]) for r in rows), RESULT.total_lines_removed
        )

    def test_csv_totals_only(self):
        text = self.render("csv", per_revision=False)
        self.assertEqual(
            text,
            "total_files_changed,total_lines_added,total_lines_removed,"
            "total_non_countable_files\n3,15,7,1\n",
        )

    def test_csv_header_with_no_revisions(self):
        text = report_builder.render_report(AggregationResult(), "csv", per_revision=True)
        self.assertEqual(text, ",".join(report_builder.CSV_REVISION_COLUMNS) + "\n")

    def test_markdown_table(self):
        text = self.render("markdown")
        self.assertIn("| " + " | ".join(report_builder.CSV_REVISION_COLUMNS) + " |", text)
        self.assertIn("| r101 | alice | 1 | 10 | 2 | 0 |", text)
        self.assertIn("**15**", text)
        self.assertIn("r103", text, "❌ 被跳过的修订应出现在报告中")

    def test_markdown_summary(self):
        text = self.render("markdown", per_revision=False)
        self.assertIn("- **lines_added**: 15", text)
        self.assertNotIn("| r101", text)

    def test_html_contains_table(self):
        text = self.render("html")
        self.assertIn("<table>", text)
        self.assertIn("<td>alice</td>", text)
        self.assertTrue(text.lstrip().startswith("<!DOCTYPE html>"))

    def test_console_lists_skips(self):
        text = self.render("console")
        self.assertIn("+15 -7", text)
        self.assertIn("r103", text)

    def test_rendering_is_deterministic(self):
        for fmt in GlobalConfig.REPORT_FORMATS:
            with self.subTest(fmt=fmt):
                self.assertEqual(self.render(fmt), self.render(fmt))

    def test_unknown_format(self):
        with self.assertRaises(RenderError) as ctx:
            self.render("pdf")
        self.assertEqual(ctx.exception.fmt, "pdf")


class TestReportSink(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def make_context(self, output_dir):
        return RunContext(
            repository="svn://example/repo",
            project_data_path=self.tmp.name,
            from_revision=100,
            to_revision=102,
            global_config=GlobalConfig(),
            output_dir=output_dir,
        )

    def test_destination(self):
        ctx = self.make_context(self.tmp.name)
        self.assertIsNone(report_builder.get_report_destination(ctx, "console"))
        self.assertEqual(
            report_builder.get_report_destination(ctx, "markdown"),
            os.path.join(self.tmp.name, "ChurnReport_r100-r102.md"),
        )
        self.assertIsNone(
            report_builder.get_report_destination(self.make_context(None), "json")
        )

    def test_save_writes_file(self):
        destination = os.path.join(self.tmp.name, "out", "report.csv")
        report_builder.save_report("a,b\n1,2\n", destination, "csv")
        with open(destination, encoding="utf-8") as f:
            self.assertEqual(f.read(), "a,b\n1,2\n")
        self.assertEqual(os.listdir(os.path.dirname(destination)), ["report.csv"])

    def test_save_failure_raises_render_error(self):
        blocker = os.path.join(self.tmp.name, "not_a_dir")
        with open(blocker, "w") as f:
            f.write("x")
        with self.assertRaises(RenderError):
            report_builder.save_report("x", os.path.join(blocker, "r.json"), "json")


if __name__ == "__main__":
    unittest.main()
