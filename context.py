"""
[V5.0] 运行时配置的数据模型
"""
from dataclasses import dataclass, field
from typing import List, Optional

from config import GlobalConfig
from models import FilterCriteria
import filter_engine


@dataclass
class RunContext:
    """
    (V5.0) 封装一次运行所需的所有配置和状态。
    这是从 CLI 传递到 Orchestrator 的唯一对象。
    """

    # --- 核心路径 ---
    repository: str
    project_data_path: str

    # --- 范围参数 ---
    from_revision: int
    to_revision: int

    # --- 全局配置 ---
    global_config: GlobalConfig

    # --- 过滤参数 ---
    author: Optional[str] = None
    include_extensions: List[str] = field(default_factory=list)
    exclude_extensions: List[str] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)
    ignore_whitespace: bool = False
    ignore_eol: bool = False
    case_sensitive_paths: bool = True

    # --- 报告参数 ---
    formats: List[str] = field(default_factory=lambda: ["console"])
    output_dir: Optional[str] = None
    per_revision: bool = False

    # --- 执行参数 ---
    failure_policy: str = "abort"
    workers: int = 1
    timeout: Optional[int] = None

    # --- 标志 ---
    no_plugins: bool = False

    @property
    def range_desc(self) -> str:
        return f"r{self.from_revision}:r{self.to_revision}"

    def build_criteria(self) -> FilterCriteria:
        """由命令行参数构造 (并校验) 不可变的过滤条件"""
        return filter_engine.build_criteria(
            author=self.author,
            included_extensions=self.include_extensions,
            excluded_extensions=self.exclude_extensions,
            exclude_patterns=self.exclude_patterns,
            ignore_whitespace=self.ignore_whitespace,
            ignore_eol=self.ignore_eol,
            case_sensitive=self.case_sensitive_paths,
        )
