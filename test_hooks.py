# test_hooks.py
import os
import tempfile
import textwrap
import unittest

from config import GlobalConfig
from context import RunContext
from hooks.base import BasePlugin
from hooks.manager import PluginManager
from models import AggregationResult, RevisionStat
from plugins.top_churn_logger import TopChurnLoggerPlugin

FOOTER_PLUGIN = textwrap.dedent(
    """
    from hooks.base import BasePlugin


    class FooterPlugin(BasePlugin):
        name = "Footer"

        def on_report_rendered(self, context, content, fmt):
            return content + "-- footer --\\n"
    """
)


class ExplodingPlugin(BasePlugin):
    name = "Exploding"

    def on_start(self, context):
        raise RuntimeError("boom")

    def on_report_rendered(self, context, content, fmt):
        raise RuntimeError("boom")


class UpperPlugin(BasePlugin):
    name = "Upper"

    def __init__(self):
        self.started = False

    def on_start(self, context):
        self.started = True

    def on_report_rendered(self, context, content, fmt):
        return content.upper()


class TestPluginManager(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.context = RunContext(
            repository="svn://example/repo",
            project_data_path=self.tmp.name,
            from_revision=1,
            to_revision=2,
            global_config=GlobalConfig(),
        )
        self.manager = PluginManager(self.context)

    def write_plugin(self, filename, source):
        with open(os.path.join(self.tmp.name, filename), "w", encoding="utf-8") as f:
            f.write(source)

    def test_dynamic_discovery(self):
        """测试是否能从目录中自动发现插件"""
        print("\n>>> 测试插件动态发现机制...")
        self.write_plugin("footer.py", FOOTER_PLUGIN)
        self.write_plugin("broken.py", "raise ImportError('missing dependency')\n")
        self.write_plugin("helpers.py", "VALUE = 1\n")
        self.write_plugin("__init__.py", "")

        loaded = self.manager.load_plugins(self.tmp.name)

        self.assertEqual(loaded, 1, "❌ 只有 footer.py 中定义了插件")
        self.assertEqual([p.name for p in self.manager.plugins], ["Footer"])
        self.assertEqual(
            self.manager.filter("on_report_rendered", "body\n", "markdown"),
            "body\n-- footer --\n",
        )
        print("✅ 动态发现测试通过")

    def test_missing_directory_is_not_an_error(self):
        self.assertEqual(self.manager.load_plugins(os.path.join(self.tmp.name, "nope")), 0)

    def test_bundled_plugins_are_found(self):
        self.manager.load_plugins()
        self.assertIn("TopChurnLogger", [p.name for p in self.manager.plugins])

    def test_failing_plugin_does_not_break_chain(self):
        upper = UpperPlugin()
        self.manager.register(ExplodingPlugin())
        self.manager.register(upper)

        self.manager.trigger("on_start")
        result = self.manager.filter("on_report_rendered", "abc", "console")

        self.assertTrue(upper.started)
        self.assertEqual(result, "ABC")
        self.assertEqual(self.manager.failures, {"Exploding": 2})


class TestTopChurnLogger(unittest.TestCase):

    def test_logs_largest_revisions(self):
        result = AggregationResult(
            total_lines_added=18,
            total_lines_removed=4,
            total_files_changed=4,
            revisions=(
                RevisionStat(1, "a", 1, 1, 0),
                RevisionStat(2, "b", 1, 10, 0),
                RevisionStat(3, "c", 1, 2, 4),
                RevisionStat(4, "d", 1, 5, 0),
            ),
            revisions_scanned=4,
        )
        with self.assertLogs("plugins.top_churn_logger", level="INFO") as logs:
            TopChurnLoggerPlugin().on_finish(None, result)
        self.assertEqual(len(logs.records), 3)
        self.assertIn("r2", logs.output[0])
        self.assertIn("r3", logs.output[1])
        self.assertIn("r4", logs.output[2])


if __name__ == "__main__":
    unittest.main()
