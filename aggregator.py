"""
[V5.0] 聚合器
把已经解析、已经过滤的变更记录折叠为逐修订统计与总计。
自身不做任何解析或过滤；修订可以乱序到达，输出永远按修订号升序。
"""
import bisect
import logging
from typing import Iterable, List

from models import AggregationResult, ChangeRecord, RevisionStat, SkippedRevision

logger = logging.getLogger(__name__)


class Aggregator:
    def __init__(self, failure_policy: str = "abort"):
        self.failure_policy = failure_policy
        self._keys: List[int] = []
        self._stats: List[RevisionStat] = []
        self._skip_keys: List[int] = []
        self._skipped: List[SkippedRevision] = []
        self._consumed = set()
        self._added = 0
        self._removed = 0
        self._files = 0
        self._non_countable = 0
        self._result = AggregationResult(failure_policy=failure_policy)

    def _consume(self, revision: int):
        if revision in self._consumed:
            # 同一修订计入两次会破坏 "总计 = 明细之和"
            raise ValueError(f"r{revision} 已经被聚合过")
        self._consumed.add(revision)

    def fold_revision(
        self, revision: int, author: str, accepted_records: Iterable[ChangeRecord]
    ) -> AggregationResult:
        """折叠一个修订。没有任何记录的修订不产生 RevisionStat，但仍算作已处理。"""
        records = list(accepted_records)
        self._consume(revision)

        if records:
            stat = RevisionStat(
                revision=revision,
                author=author,
                files_changed=len(records),
                lines_added=sum(r.added for r in records),
                lines_removed=sum(r.removed for r in records),
                non_countable_files=sum(1 for r in records if not r.is_countable),
            )
            index = bisect.bisect_left(self._keys, revision)
            self._keys.insert(index, revision)
            self._stats.insert(index, stat)
            self._added += stat.lines_added
            self._removed += stat.lines_removed
            self._files += stat.files_changed
            self._non_countable += stat.non_countable_files

        self._result = self._snapshot()
        return self._result

    def record_skip(self, revision: int, reason: str) -> AggregationResult:
        """skip 策略下登记一个被跳过的修订 (它对统计没有任何贡献)"""
        self._consume(revision)
        index = bisect.bisect_left(self._skip_keys, revision)
        self._skip_keys.insert(index, revision)
        self._skipped.insert(index, SkippedRevision(revision=revision, reason=reason))
        logger.warning(f"⚠️ 已跳过 r{revision}: {reason}")
        self._result = self._snapshot()
        return self._result

    def _snapshot(self) -> AggregationResult:
        return AggregationResult(
            total_lines_added=self._added,
            total_lines_removed=self._removed,
            total_files_changed=self._files,
            total_non_countable_files=self._non_countable,
            revisions=tuple(self._stats),
            skipped=tuple(self._skipped),
            revisions_scanned=len(self._consumed),
            failure_policy=self.failure_policy,
        )

    @property
    def result(self) -> AggregationResult:
        return self._result
