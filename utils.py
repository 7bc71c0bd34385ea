import logging
import sys
from typing import Iterable, List


def setup_logging(verbose: bool = False):
    """配置全局日志 (输出到 stderr，保证 stdout 上的报告内容干净)"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def split_csv_arg(values: Iterable[str]) -> List[str]:
    """把 'ts,js' 或多次出现的参数展开成去空白后的列表"""
    items: List[str] = []
    for value in values or []:
        items.extend(part.strip() for part in value.split(",") if part.strip())
    return items
