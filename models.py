from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional, Tuple


@dataclass(frozen=True)
class RevisionDescriptor:
    """版本库日志中的一条修订记录"""

    revision: int
    author: str
    timestamp: Optional[datetime]
    message: str


@dataclass(frozen=True)
class RawDiff:
    """单个修订相对其前一修订的原始 diff 文本"""

    revision: int
    text: str


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    BINARY = "binary"
    PROPERTY_ONLY = "property-only"


@dataclass(frozen=True)
class ChangeRecord:
    """单个修订中单个文件的变更统计"""

    path: str
    added: int
    removed: int
    kind: ChangeKind

    @property
    def is_countable(self) -> bool:
        # 二进制与纯属性变更只计入文件数，不计入行数
        return self.kind not in (ChangeKind.BINARY, ChangeKind.PROPERTY_ONLY)


@dataclass(frozen=True)
class FilterCriteria:
    """一次运行的过滤条件 (构造后不可变)"""

    author: Optional[str] = None
    included_extensions: FrozenSet[str] = frozenset()
    excluded_extensions: FrozenSet[str] = frozenset()
    exclude_patterns: Tuple[str, ...] = ()
    ignore_whitespace: bool = False
    ignore_eol: bool = False
    case_sensitive: bool = True


@dataclass(frozen=True)
class RevisionStat:
    revision: int
    author: str
    files_changed: int
    lines_added: int
    lines_removed: int
    non_countable_files: int = 0


@dataclass(frozen=True)
class SkippedRevision:
    """skip 策略下被跳过的修订及原因"""

    revision: int
    reason: str


@dataclass(frozen=True)
class AggregationResult:
    """
    聚合结果。totals 永远等于 revisions 中各项之和。
    revisions / skipped 均按修订号升序排列。
    """

    total_lines_added: int = 0
    total_lines_removed: int = 0
    total_files_changed: int = 0
    total_non_countable_files: int = 0
    revisions: Tuple[RevisionStat, ...] = ()
    skipped: Tuple[SkippedRevision, ...] = ()
    revisions_scanned: int = 0
    failure_policy: str = "abort"

    @property
    def has_skips(self) -> bool:
        return bool(self.skipped)


@dataclass
class RenderOutcome:
    """单个输出格式的渲染/写入结果"""

    fmt: str
    destination: Optional[str]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunSummary:
    """一次完整运行的结果：聚合数据 + 每个格式的输出情况"""

    result: AggregationResult
    outcomes: list = field(default_factory=list)

    @property
    def failed_formats(self) -> list:
        return [o.fmt for o in self.outcomes if not o.ok]
