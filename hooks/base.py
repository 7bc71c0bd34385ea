from abc import ABC
from typing import List

from context import RunContext
from models import AggregationResult, RevisionDescriptor, RevisionStat


class BasePlugin(ABC):
    """
    [V5.0] 插件基类
    定义所有生命周期钩子。用户自定义插件应继承此类。
    """

    # 插件名称 (建议子类覆盖)
    name: str = "BasePlugin"

    def on_start(self, context: RunContext):
        """
        [钩子] 流程开始时调用 (参数校验已通过)。
        """
        pass

    def on_revisions_enumerated(
        self, context: RunContext, revisions: List[RevisionDescriptor]
    ):
        """
        [钩子] 修订枚举完成后、获取 diff 之前调用。
        """
        pass

    def on_revision_folded(self, context: RunContext, stat: RevisionStat):
        """
        [钩子] 一个修订产生了统计并被计入聚合结果后调用。
        没有可统计变更的修订不会触发此钩子。
        """
        pass

    def on_report_rendered(self, context: RunContext, content: str, fmt: str) -> str:
        """
        [Filter 钩子] 报告渲染后、写出前调用。
        **必须返回字符串**。可用于追加页脚等。
        """
        return content

    def on_finish(self, context: RunContext, result: AggregationResult):
        """
        [钩子] 聚合与输出都完成后调用。
        """
        pass
