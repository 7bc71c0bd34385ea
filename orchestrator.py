"""
[V5.0] 业务逻辑编排器
枚举修订 -> 获取 diff -> 解析 -> 过滤 -> 聚合 -> 渲染/输出
- 默认顺序处理；--workers > 1 时用线程池并行获取 diff，结果仍按修订号升序交给聚合器
- 失败策略 abort / skip 对 diff 获取失败和解析失败统一生效
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import closing
from typing import Dict, Iterator, List, Optional, Tuple

from context import RunContext
from data_sources.base import DiffSource, RevisionLogSource
from data_sources.factory import get_data_source
from errors import ChurnError, ParseError, RenderError, SourceUnavailableError, ValidationError
from hooks.manager import PluginManager
from models import (
    AggregationResult,
    FilterCriteria,
    RawDiff,
    RenderOutcome,
    RevisionDescriptor,
    RunSummary,
)
from aggregator import Aggregator
from diff_parser import parse_diff
from revision_enumerator import RevisionEnumerator, validate_range
import filter_engine
import report_builder

logger = logging.getLogger(__name__)

# (描述符, 原始 diff, 获取失败时的异常)
Retrieved = Tuple[RevisionDescriptor, Optional[RawDiff], Optional[SourceUnavailableError]]


def describe_failure(error: ChurnError) -> str:
    """生成写进报告的跳过原因"""
    if isinstance(error, ParseError):
        detail = f" [{error.excerpt}]" if error.excerpt else ""
        return f"diff 解析失败: {error}{detail}"
    if isinstance(error, SourceUnavailableError):
        return f"diff 获取失败 ({error.reason}): {error}"
    return str(error)


class ChurnOrchestrator:
    """
    (V5.0) 负责执行代码变更统计的核心业务流程。
    数据源可以注入 (测试中使用内存实现)，否则由工厂按上下文创建。
    """

    def __init__(
        self,
        context: RunContext,
        log_source: Optional[RevisionLogSource] = None,
        diff_source: Optional[DiffSource] = None,
        plugin_manager: Optional[PluginManager] = None,
    ):
        self.context = context
        self.global_config = context.global_config

        if log_source is None or diff_source is None:
            source = get_data_source(context)
            log_source = log_source or source
            diff_source = diff_source or source
        self.log_source = log_source
        self.diff_source = diff_source

        if plugin_manager is None:
            plugin_manager = PluginManager(context)
            if not context.no_plugins:
                plugin_manager.load_plugins()
        self.plugin_manager = plugin_manager

        self.criteria: Optional[FilterCriteria] = None

    # --- 0. 校验 (任何外部调用之前) ---

    def validate(self) -> FilterCriteria:
        ctx = self.context
        cfg = self.global_config

        validate_range(ctx.from_revision, ctx.to_revision, self.log_source.first_revision)

        if not ctx.repository:
            raise ValidationError("未指定版本库")
        if not ctx.formats:
            raise ValidationError("至少需要一种输出格式")
        unknown = [f for f in ctx.formats if f not in cfg.REPORT_FORMATS]
        if unknown:
            raise ValidationError(
                f"未知的输出格式: {unknown} (可用: {list(cfg.REPORT_FORMATS)})"
            )
        if ctx.failure_policy not in cfg.FAILURE_POLICIES:
            raise ValidationError(
                f"未知的失败策略: '{ctx.failure_policy}' (可用: {list(cfg.FAILURE_POLICIES)})"
            )
        if isinstance(ctx.workers, bool) or not isinstance(ctx.workers, int) or ctx.workers < 1:
            raise ValidationError(f"并发数必须是正整数: {ctx.workers!r}")
        if ctx.timeout is not None and ctx.timeout <= 0:
            raise ValidationError(f"超时必须大于 0 秒: {ctx.timeout!r}")

        self.criteria = ctx.build_criteria()
        return self.criteria

    # --- 1. 获取 diff ---

    def _fetch(self, descriptor: RevisionDescriptor) -> RawDiff:
        rev = descriptor.revision
        text = self.diff_source.get_diff(
            self.context.repository,
            rev - 1,
            rev,
            ignore_whitespace=self.criteria.ignore_whitespace,
            ignore_eol=self.criteria.ignore_eol,
        )
        if text is None:
            raise SourceUnavailableError(
                f"Diff 源没有返回 r{rev} 的内容", reason="malformed", revision=rev
            )
        return RawDiff(revision=rev, text=text)

    def _retrieve_sequential(
        self, descriptors: List[RevisionDescriptor]
    ) -> Iterator[Retrieved]:
        for descriptor in descriptors:
            try:
                yield descriptor, self._fetch(descriptor), None
            except SourceUnavailableError as e:
                yield descriptor, None, e

    def _retrieve_parallel(
        self, descriptors: List[RevisionDescriptor]
    ) -> Iterator[Retrieved]:
        """
        线程池并行获取；先完成但前面还有未完成修订的结果暂存在 buffered 中，
        直到前驱全部交出后才按顺序释放。
        """
        order = [d.revision for d in descriptors]
        by_revision = {d.revision: d for d in descriptors}
        buffered: Dict[int, Tuple[Optional[RawDiff], Optional[SourceUnavailableError]]] = {}
        next_index = 0

        with ThreadPoolExecutor(max_workers=self.context.workers) as executor:
            futures = {executor.submit(self._fetch, d): d.revision for d in descriptors}
            try:
                for future in as_completed(futures):
                    rev = futures[future]
                    try:
                        buffered[rev] = (future.result(), None)
                    except SourceUnavailableError as e:
                        buffered[rev] = (None, e)

                    while next_index < len(order) and order[next_index] in buffered:
                        ready = order[next_index]
                        raw_diff, error = buffered.pop(ready)
                        next_index += 1
                        yield by_revision[ready], raw_diff, error
            finally:
                # 中途放弃 (abort) 时不再启动排队中的任务
                for future in futures:
                    future.cancel()

    def _retrieve(self, descriptors: List[RevisionDescriptor]) -> Iterator[Retrieved]:
        if self.context.workers > 1 and len(descriptors) > 1:
            logger.info(f"⚡ 使用 {self.context.workers} 个线程并行获取 diff")
            return self._retrieve_parallel(descriptors)
        return self._retrieve_sequential(descriptors)

    # --- 2. 解析 / 过滤 / 聚合 ---

    def _fold(
        self,
        aggregator: Aggregator,
        descriptor: RevisionDescriptor,
        raw_diff: Optional[RawDiff],
        error: Optional[ChurnError],
    ):
        rev = descriptor.revision
        records = []
        if error is None:
            try:
                records = parse_diff(raw_diff.text, rev)
            except ParseError as e:
                error = e

        if error is not None:
            if isinstance(error, SourceUnavailableError) and error.revision is None:
                error.revision = rev
            if self.context.failure_policy == "skip":
                aggregator.record_skip(rev, describe_failure(error))
                return
            raise error

        accepted = filter_engine.filter_records(records, self.criteria)
        logger.debug(f"r{rev}: {len(records)} 个文件变更，{len(accepted)} 个通过过滤")
        result = aggregator.fold_revision(rev, descriptor.author, accepted)
        if accepted:
            stat = next(s for s in result.revisions if s.revision == rev)
            self.plugin_manager.trigger("on_revision_folded", stat)

    def aggregate(self) -> AggregationResult:
        """枚举并聚合整个范围。abort 策略下第一个 (按修订号) 失败会直接抛出。"""
        if self.criteria is None:
            self.validate()
        ctx = self.context

        enumerator = RevisionEnumerator(self.log_source)
        descriptors = enumerator.enumerate(
            ctx.repository, ctx.from_revision, ctx.to_revision, self.criteria.author
        )
        self.plugin_manager.trigger("on_revisions_enumerated", descriptors)

        aggregator = Aggregator(failure_policy=ctx.failure_policy)
        with closing(self._retrieve(descriptors)) as retrieved:
            for descriptor, raw_diff, error in retrieved:
                self._fold(aggregator, descriptor, raw_diff, error)

        return aggregator.result

    # --- 3. 渲染与输出 ---

    def publish(self, result: AggregationResult) -> List[RenderOutcome]:
        """逐个格式渲染并写出；某个格式失败不影响其它格式"""
        ctx = self.context
        title = f"代码变更统计 {ctx.repository} {ctx.range_desc}"
        outcomes: List[RenderOutcome] = []

        for fmt in dict.fromkeys(ctx.formats):
            destination = report_builder.get_report_destination(ctx, fmt)
            try:
                content = report_builder.render_report(
                    result,
                    fmt,
                    per_revision=ctx.per_revision,
                    global_config=self.global_config,
                    title=title,
                )
                content = self.plugin_manager.filter("on_report_rendered", content, fmt)
                report_builder.save_report(content, destination, fmt)
                outcomes.append(RenderOutcome(fmt=fmt, destination=destination))
            except RenderError as e:
                logger.error(f"❌ 输出 {fmt} 报告失败: {e}")
                outcomes.append(RenderOutcome(fmt=fmt, destination=destination, error=str(e)))
        return outcomes

    def run(self) -> RunSummary:
        """
        (V5.0) 执行完整流程。
        ValidationError / SourceUnavailableError / ParseError (abort 策略) 直接向上抛出。
        """
        self.validate()
        self.plugin_manager.trigger("on_start")

        result = self.aggregate()
        logger.info(
            f"📊 {self.context.range_desc}: +{result.total_lines_added} "
            f"-{result.total_lines_removed} (文件: {result.total_files_changed}, "
            f"修订: {len(result.revisions)}/{result.revisions_scanned}, "
            f"跳过: {len(result.skipped)})"
        )

        outcomes = self.publish(result)
        self.plugin_manager.trigger("on_finish", result)
        return RunSummary(result=result, outcomes=outcomes)
