import logging
from context import RunContext
from .local_svn import SvnDataSource

logger = logging.getLogger(__name__)


def get_data_source(context: RunContext) -> SvnDataSource:
    """
    [V5.0] 数据源工厂
    同一个 SvnDataSource 同时充当修订日志源和 Diff 源。
    """
    logger.info(f"🔌 [Factory] 初始化数据源: Subversion ({context.repository})")
    return SvnDataSource(context.global_config, timeout=context.timeout)
