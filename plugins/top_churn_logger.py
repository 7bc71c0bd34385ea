import logging

from hooks.base import BasePlugin
from context import RunContext
from models import AggregationResult

logger = logging.getLogger(__name__)


class TopChurnLoggerPlugin(BasePlugin):
    """
    示例插件：运行结束时在日志中列出变更量最大的几个修订
    """

    name = "TopChurnLogger"

    TOP_N = 3

    def on_finish(self, context: RunContext, result: AggregationResult):
        if not result.revisions:
            return

        ranked = sorted(
            result.revisions,
            key=lambda s: (-(s.lines_added + s.lines_removed), s.revision),
        )
        for stat in ranked[: self.TOP_N]:
            logger.info(
                f"🔥 [TopChurn] r{stat.revision} ({stat.author}): "
                f"+{stat.lines_added} -{stat.lines_removed}"
            )
