"""
[V5.0] 统一异常体系
所有可预期的失败都从 ChurnError 派生，CLI 层据此决定退出码。
"""
from typing import Optional


class ChurnError(Exception):
    """代码变更统计流程中所有可预期错误的基类。"""

    pass


class ValidationError(ChurnError):
    """修订范围或过滤配置非法。总是在任何外部调用之前抛出。"""

    pass


class SourceUnavailableError(ChurnError):
    """
    日志源 / Diff 源无法访问、超时，或返回了无法解析的数据。

    reason 取值: unreachable, timeout, not-found, authentication, malformed
    """

    def __init__(
        self, message: str, reason: str = "unreachable", revision: Optional[int] = None
    ):
        super().__init__(message)
        self.reason = reason
        self.revision = revision


class ParseError(ChurnError):
    """某个修订的 diff 文本结构非法。携带修订号和出错位置的文本片段。"""

    def __init__(self, message: str, revision: int, excerpt: str = ""):
        super().__init__(f"r{revision}: {message}")
        self.revision = revision
        self.excerpt = excerpt


class RenderError(ChurnError):
    """某个输出格式无法生成或写入。只影响该格式本身。"""

    def __init__(self, message: str, fmt: str):
        super().__init__(f"[{fmt}] {message}")
        self.fmt = fmt
