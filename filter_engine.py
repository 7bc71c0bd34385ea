"""
[V5.0] 文件过滤引擎
- 扩展名 include / exclude (exclude 优先)
- 路径排除 glob (支持 * / ** / ? / [seq])
所有函数均为纯函数：相同输入永远得到相同判定。
"""
import logging
from functools import lru_cache
from typing import Iterable, List, Optional

import pathspec

from errors import ValidationError
from models import ChangeRecord, FilterCriteria

logger = logging.getLogger(__name__)


def get_extension(path: str) -> str:
    """取路径最后一段中最后一个点之后的文本；没有点则为空串。"""
    name = path.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1]


def _normalize_extension(ext: str) -> str:
    value = ext.strip()
    while value.startswith("."):
        value = value[1:]
    if not value or "/" in value or "\\" in value:
        raise ValidationError(f"非法的扩展名过滤项: '{ext}'")
    return value


def _normalize_path(path: str) -> str:
    return path.replace("\\", "/").strip().lstrip("/")


@lru_cache(maxsize=256)
def _compile_pattern(pattern: str) -> pathspec.PathSpec:
    """按 gitignore (gitwildmatch) 语义编译单个模式"""
    if pattern.startswith(("#", "!")):
        # 排除模式里没有注释和取反，按字面匹配
        pattern = "\\" + pattern
    return pathspec.PathSpec.from_lines("gitwildmatch", [pattern])


def matches_pattern(path: str, pattern: str, case_sensitive: bool = True) -> bool:
    """
    判断路径是否匹配一个排除模式 (gitignore 风格)。
    - '*' / '?' 不跨越 '/'，'**' 可以匹配零层或多层目录
    - 不含 '/' 的模式 (如 '*.lock') 在任意层级匹配文件名
    - 含 '/' 的模式相对版本库根目录匹配
    """
    norm_path = _normalize_path(path)
    norm_pattern = pattern.replace("\\", "/").strip()
    if not case_sensitive:
        norm_path = norm_path.lower()
        norm_pattern = norm_pattern.lower()
    return _compile_pattern(norm_pattern).match_file(norm_path)


def build_criteria(
    author: Optional[str] = None,
    included_extensions: Iterable[str] = (),
    excluded_extensions: Iterable[str] = (),
    exclude_patterns: Iterable[str] = (),
    ignore_whitespace: bool = False,
    ignore_eol: bool = False,
    case_sensitive: bool = True,
) -> FilterCriteria:
    """校验并构造 FilterCriteria。任何非法配置都抛出 ValidationError。"""
    if author is not None and author == "":
        raise ValidationError("作者过滤不能为空字符串")

    def _ext_set(values: Iterable[str]) -> frozenset:
        exts = {_normalize_extension(v) for v in values}
        if not case_sensitive:
            exts = {e.lower() for e in exts}
        return frozenset(exts)

    patterns = []
    for pattern in exclude_patterns:
        if not pattern or not pattern.strip():
            raise ValidationError("路径排除模式不能为空")
        patterns.append(pattern.strip())

    included = _ext_set(included_extensions)
    excluded = _ext_set(excluded_extensions)
    overlap = included & excluded
    if overlap:
        logger.warning(
            f"⚠️ 扩展名同时出现在 include 与 exclude 中，以 exclude 为准: {sorted(overlap)}"
        )

    return FilterCriteria(
        author=author,
        included_extensions=included,
        excluded_extensions=excluded,
        exclude_patterns=tuple(patterns),
        ignore_whitespace=ignore_whitespace,
        ignore_eol=ignore_eol,
        case_sensitive=case_sensitive,
    )


def accept(record: ChangeRecord, criteria: FilterCriteria) -> bool:
    """判定一条变更记录是否计入聚合。二进制 / 纯属性变更同样要过滤。"""
    ext = get_extension(record.path)
    if not criteria.case_sensitive:
        ext = ext.lower()

    if ext in criteria.excluded_extensions:
        return False
    if criteria.included_extensions and ext not in criteria.included_extensions:
        return False

    for pattern in criteria.exclude_patterns:
        if matches_pattern(record.path, pattern, criteria.case_sensitive):
            return False
    return True


def filter_records(
    records: Iterable[ChangeRecord], criteria: FilterCriteria
) -> List[ChangeRecord]:
    """保留通过过滤的记录，保持原顺序"""
    accepted = []
    for record in records:
        if accept(record, criteria):
            accepted.append(record)
        else:
            logger.debug(f"过滤: 已跳过文件 {record.path}")
    return accepted
