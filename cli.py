"""
[V5.0] 命令行界面 (Interface) 层
负责参数定义、别名与项目配置合并、组装 RunContext，并把异常映射为退出码。
"""
import argparse
import logging
import os
from typing import Any, Dict, List, Optional

import config_manager
import utils
from config import GlobalConfig
from context import RunContext
from errors import ParseError, SourceUnavailableError, ValidationError
from orchestrator import ChurnOrchestrator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID = 2
EXIT_RENDER_FAILED = 3


def setup_parser() -> argparse.ArgumentParser:
    """
    (V5.0) 负责所有 argparse 的定义。
    """
    parser = argparse.ArgumentParser(
        description="Subversion 代码变更 (churn) 统计 (V5.0)",
        formatter_class=argparse.RawTextHelpFormatter,
    )

    # --- 版本库 ---
    parser.add_argument(
        "-p",
        "--project",
        type=str,
        help="使用已保存的版本库别名。\n   (与 -r 互斥)",
    )
    parser.add_argument(
        "-r",
        "--repo",
        type=str,
        default=None,
        help="版本库 URL 或工作副本路径 (例如 svn://host/repo/trunk)。",
    )
    parser.add_argument(
        "--save-alias",
        type=str,
        default=None,
        metavar="NAME",
        help="把 -r 指定的版本库保存为别名，之后可用 -p NAME 引用。",
    )

    # --- 修订范围 ---
    parser.add_argument("-f", "--from-rev", type=int, required=True, help="起始修订号 (含)")
    parser.add_argument("-t", "--to-rev", type=int, required=True, help="结束修订号 (含)")

    # --- 过滤 ---
    parser.add_argument("-a", "--author", type=str, default=None, help="只统计该作者 (精确匹配)")
    parser.add_argument(
        "--include-ext",
        action="append",
        default=None,
        help="只统计这些扩展名 (逗号分隔，可重复)，例如 'ts,js'",
    )
    parser.add_argument(
        "--exclude-ext",
        action="append",
        default=None,
        help="排除这些扩展名 (与 --include-ext 冲突时以排除为准)",
    )
    parser.add_argument(
        "--exclude-path",
        action="append",
        default=None,
        help="排除匹配该 glob 的路径 (可重复)，支持 * / ** / ?",
    )
    parser.add_argument(
        "--smart-filter",
        action="store_true",
        help="额外排除锁文件、压缩产物、构建目录等 (见 config.py)",
    )
    parser.add_argument(
        "--ignore-case",
        action="store_true",
        help="扩展名与路径模式匹配时忽略大小写",
    )
    parser.add_argument(
        "-w",
        "--ignore-whitespace",
        action="store_true",
        default=None,
        help="忽略空白差异 (由 svn diff -x -w 处理)",
    )
    parser.add_argument(
        "--ignore-eol",
        action="store_true",
        default=None,
        help="忽略行尾差异 (由 svn diff -x --ignore-eol-style 处理)",
    )

    # --- 报告 ---
    parser.add_argument(
        "--format",
        action="append",
        default=None,
        help="输出格式: console, csv, json, markdown, html (逗号分隔，可重复)\n"
        "(默认: 项目 config.json 中的设置，否则 console)",
    )
    parser.add_argument(
        "--per-revision",
        action="store_true",
        default=None,
        help="输出逐修订明细",
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        type=str,
        default=None,
        help="报告输出目录 (console 以外的格式写文件；不指定时全部写 stdout)",
    )
    parser.add_argument(
        "--save-defaults",
        action="store_true",
        help="把本次的过滤与格式参数保存为该项目的默认值",
    )

    # --- 执行 ---
    parser.add_argument(
        "--on-error",
        choices=["abort", "skip"],
        default=None,
        help="单个修订获取或解析失败时: abort 终止 (默认) / skip 跳过并在报告中注明",
    )
    parser.add_argument(
        "-j",
        "--workers",
        type=int,
        default=None,
        help="并行获取 diff 的线程数 (默认 1，即顺序处理)",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        help="每次调用 svn 的超时秒数",
    )
    parser.add_argument("--no-plugins", action="store_true", help="不加载 plugins/ 中的插件")
    parser.add_argument("-v", "--verbose", action="store_true", help="输出 DEBUG 日志")

    return parser


def _pick(cli_value: Any, project_config: Dict[str, Any], key: str, default: Any) -> Any:
    """优先级: 命令行 > 项目 config.json > 全局默认值"""
    if cli_value is not None:
        return cli_value
    if key in project_config:
        return project_config[key]
    return default


def resolve_repository(args, data_root_path: str) -> str:
    if args.project and args.repo:
        raise ValidationError("不能同时使用 -p (别名) 和 -r (版本库)。请只选其一。")
    if args.project:
        repository = config_manager.get_path_from_alias(data_root_path, args.project)
        if not repository:
            raise ValidationError(
                f"别名 '{args.project}' 未在 {config_manager.PROJECTS_JSON_FILE} 中找到，"
                "请先使用 -r ... --save-alias NAME 保存它。"
            )
        logger.info(f"ℹ️ 使用别名 '{args.project}' ({repository})")
        return repository
    if args.repo:
        if config_manager.is_remote_repository(args.repo):
            return args.repo
        return os.path.abspath(args.repo)
    raise ValidationError("必须提供 -p (项目别名) 或 -r (版本库) 之一。")


def build_context(
    args, global_config: GlobalConfig, data_root_path: str
) -> RunContext:
    """(V5.0) 合并命令行、项目配置与全局配置，组装 RunContext"""
    repository = resolve_repository(args, data_root_path)
    project_data_path = config_manager.get_project_data_path(data_root_path, repository)
    project_config = config_manager.load_project_config(project_data_path)

    exclude_patterns: List[str] = list(
        _pick(args.exclude_path, project_config, "default_exclude_paths", [])
    )
    if args.smart_filter:
        exclude_patterns += global_config.SMART_FILTER_PATTERNS

    formats = _pick(
        utils.split_csv_arg(args.format) or None,
        project_config,
        "default_formats",
        global_config.DEFAULT_FORMATS,
    )

    return RunContext(
        repository=repository,
        project_data_path=project_data_path,
        from_revision=args.from_rev,
        to_revision=args.to_rev,
        global_config=global_config,
        author=args.author,
        include_extensions=_pick(
            utils.split_csv_arg(args.include_ext) or None,
            project_config,
            "default_include_ext",
            [],
        ),
        exclude_extensions=_pick(
            utils.split_csv_arg(args.exclude_ext) or None,
            project_config,
            "default_exclude_ext",
            [],
        ),
        exclude_patterns=exclude_patterns,
        ignore_whitespace=bool(
            _pick(args.ignore_whitespace, project_config, "default_ignore_whitespace", False)
        ),
        ignore_eol=bool(_pick(args.ignore_eol, project_config, "default_ignore_eol", False)),
        case_sensitive_paths=not args.ignore_case,
        formats=list(formats),
        output_dir=args.output_dir,
        per_revision=bool(
            _pick(args.per_revision, project_config, "default_per_revision", False)
        ),
        failure_policy=_pick(
            args.on_error,
            project_config,
            "default_failure_policy",
            global_config.DEFAULT_FAILURE_POLICY,
        ),
        workers=_pick(args.workers, project_config, "default_workers", global_config.DEFAULT_WORKERS),
        timeout=args.timeout,
        no_plugins=args.no_plugins,
    )


def _save_defaults(context: RunContext, args):
    smart = set(context.global_config.SMART_FILTER_PATTERNS) if args.smart_filter else set()
    config_manager.save_project_config(
        context.project_data_path,
        {
            "default_formats": context.formats,
            "default_include_ext": context.include_extensions,
            "default_exclude_ext": context.exclude_extensions,
            "default_exclude_paths": [p for p in context.exclude_patterns if p not in smart],
            "default_failure_policy": context.failure_policy,
            "default_workers": context.workers,
            "default_per_revision": context.per_revision,
            "default_ignore_whitespace": context.ignore_whitespace,
            "default_ignore_eol": context.ignore_eol,
        },
    )


def run_cli(argv: Optional[List[str]] = None) -> int:
    """
    (V5.0) 主入口点。返回进程退出码。
    """
    parser = setup_parser()
    args = parser.parse_args(argv)
    utils.setup_logging(args.verbose)

    global_config = GlobalConfig()
    data_root_path = os.path.join(
        global_config.SCRIPT_BASE_PATH, global_config.DATA_ROOT_DIR_NAME
    )

    try:
        context = build_context(args, global_config, data_root_path)
        if args.save_alias:
            config_manager.save_project_alias(data_root_path, args.save_alias, context.repository)
        if args.save_defaults:
            _save_defaults(context, args)

        logger.info("=" * 50)
        logger.info("🚀 (V5.0) churn 统计启动...")
        logger.info(f"   [版本库]: {context.repository}")
        logger.info(f"   [范围]: {context.range_desc}")
        logger.info(f"   [作者]: {context.author or '全部'}")
        logger.info(f"   [输出格式]: {', '.join(context.formats)}")
        logger.info(f"   [失败策略]: {context.failure_policy}")
        logger.info("=" * 50)

        summary = ChurnOrchestrator(context).run()
    except ValidationError as e:
        logger.error(f"❌ 参数无效: {e}")
        return EXIT_INVALID
    except SourceUnavailableError as e:
        where = f"r{e.revision}" if e.revision is not None else f"r{args.from_rev}:r{args.to_rev}"
        logger.error(f"❌ 数据源不可用 ({where}, {e.reason}): {e}")
        return EXIT_FAILURE
    except ParseError as e:
        logger.error(f"❌ r{e.revision} 的 diff 无法解析: {e}")
        if e.excerpt:
            logger.error(f"   {e.excerpt}")
        return EXIT_FAILURE

    if summary.failed_formats:
        logger.error(f"❌ 以下格式输出失败: {', '.join(summary.failed_formats)}")
        return EXIT_RENDER_FAILED
    logger.info("✅ (V5.0) 统计完成。")
    return EXIT_OK
