"""
[V5.0] 修订枚举器
把 (仓库, 起始修订, 结束修订, 作者) 请求转换为按修订号升序排列的 RevisionDescriptor 序列。
作者过滤在这里完成，被排除的修订不会再去获取 diff。
"""
import logging
from typing import List, Optional

from data_sources.base import RevisionLogSource
from errors import SourceUnavailableError, ValidationError
from models import RevisionDescriptor

logger = logging.getLogger(__name__)


def validate_range(from_revision: int, to_revision: int, first_revision: int = 1):
    """范围非法时抛出 ValidationError (在任何外部调用之前)"""
    for name, value in (("起始修订", from_revision), ("结束修订", to_revision)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{name}必须是整数: {value!r}")
        if value < first_revision:
            raise ValidationError(
                f"{name} r{value} 非法: 版本库修订号从 {first_revision} 开始"
            )
    if from_revision > to_revision:
        raise ValidationError(
            f"修订范围非法: 起始 r{from_revision} 大于结束 r{to_revision}"
        )


class RevisionEnumerator:
    def __init__(self, log_source: RevisionLogSource):
        self.log_source = log_source

    def enumerate(
        self,
        repository: str,
        from_revision: int,
        to_revision: int,
        author: Optional[str] = None,
    ) -> List[RevisionDescriptor]:
        """
        返回范围内 (并且作者精确匹配) 的修订，按修订号升序。
        没有匹配的修订时返回空列表；日志源失败时抛出 SourceUnavailableError。
        """
        validate_range(from_revision, to_revision, self.log_source.first_revision)

        descriptors = self.log_source.get_revisions(
            repository, from_revision, to_revision, author
        )
        if descriptors is None:
            raise SourceUnavailableError(
                f"修订日志源没有返回 r{from_revision}:r{to_revision} 的数据",
                reason="malformed",
            )

        by_revision = {}
        for descriptor in descriptors:
            if not isinstance(descriptor, RevisionDescriptor):
                raise SourceUnavailableError(
                    f"修订日志源返回了无法识别的记录: {descriptor!r}", reason="malformed"
                )
            rev = descriptor.revision
            if not from_revision <= rev <= to_revision:
                raise SourceUnavailableError(
                    f"修订日志源返回了范围 r{from_revision}:r{to_revision} 之外的 r{rev}",
                    reason="malformed",
                )
            if rev in by_revision and by_revision[rev] != descriptor:
                raise SourceUnavailableError(
                    f"修订日志源对 r{rev} 返回了互相矛盾的记录", reason="malformed"
                )
            by_revision[rev] = descriptor

        ordered = [by_revision[rev] for rev in sorted(by_revision)]
        if author is not None:
            ordered = [d for d in ordered if d.author == author]

        logger.info(
            f"📋 r{from_revision}:r{to_revision} 共枚举到 {len(ordered)} 个修订"
            + (f" (作者: {author})" if author is not None else "")
        )
        return ordered
