from abc import ABC, abstractmethod
from typing import List, Optional

from models import RevisionDescriptor


class RevisionLogSource(ABC):
    """
    [V5.0] 修订日志源抽象基类
    给定仓库与修订范围，返回结构化的提交元数据。
    """

    # 版本库修订号的起始值 (Subversion 为 1)
    first_revision: int = 1

    @abstractmethod
    def get_revisions(
        self,
        repository: str,
        from_revision: int,
        to_revision: int,
        author: Optional[str] = None,
    ) -> List[RevisionDescriptor]:
        """
        获取范围内的修订列表。
        无法访问或数据格式异常时抛出 SourceUnavailableError。
        实现可以忽略 author (由调用方再次精确过滤)。
        """
        pass


class DiffSource(ABC):
    """
    [V5.0] Diff 源抽象基类
    返回某个修订相对其前一修订的原始 unified diff 文本。
    """

    @abstractmethod
    def get_diff(
        self,
        repository: str,
        old_revision: int,
        new_revision: int,
        ignore_whitespace: bool = False,
        ignore_eol: bool = False,
    ) -> str:
        """
        空白 / 行尾差异的忽略由 diff 源本身完成，解析器只看到结果文本。
        失败时抛出 SourceUnavailableError (not-found / unreachable / authentication ...)。
        """
        pass
