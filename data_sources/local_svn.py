import logging
from typing import List, Optional

from .base import DiffSource, RevisionLogSource
from config import GlobalConfig
from models import RevisionDescriptor
import svn_utils

logger = logging.getLogger(__name__)


class SvnDataSource(RevisionLogSource, DiffSource):
    """
    [V5.0] Subversion 数据源实现。
    通过调用 svn 命令行工具读取日志与 diff，不需要工作副本。
    """

    def __init__(self, global_config: GlobalConfig, timeout: Optional[int] = None):
        self.global_config = global_config
        self.timeout = timeout
        self.first_revision = global_config.FIRST_REVISION

    def get_revisions(
        self,
        repository: str,
        from_revision: int,
        to_revision: int,
        author: Optional[str] = None,
    ) -> List[RevisionDescriptor]:
        # svn log 没有精确的作者过滤，交给 RevisionEnumerator 处理
        args = [
            a.format(from_rev=from_revision, to_rev=to_revision, repository=repository)
            for a in self.global_config.SVN_LOG_ARGS
        ]
        output = svn_utils.run_svn_command(
            args,
            self.global_config,
            context=f"获取 r{from_revision}:r{to_revision} 的修订日志",
            timeout=self.timeout,
        )
        return svn_utils.parse_svn_log(output)

    def get_diff(
        self,
        repository: str,
        old_revision: int,
        new_revision: int,
        ignore_whitespace: bool = False,
        ignore_eol: bool = False,
    ) -> str:
        if old_revision == new_revision - 1:
            args = [
                a.format(revision=new_revision, repository=repository)
                for a in self.global_config.SVN_DIFF_ARGS
            ]
        else:
            args = [
                "diff",
                "--non-interactive",
                "--internal-diff",
                "-r",
                f"{old_revision}:{new_revision}",
                repository,
            ]

        extensions = []
        if ignore_whitespace:
            extensions.append("-w")
        if ignore_eol:
            extensions.append("--ignore-eol-style")
        if extensions:
            args += ["-x", " ".join(extensions)]

        return svn_utils.run_svn_command(
            args,
            self.global_config,
            context=f"获取 r{new_revision} 的Diff",
            timeout=self.timeout,
            revision=new_revision,
        )
