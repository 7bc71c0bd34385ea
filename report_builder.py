"""
[V5.0] 报告生成器
- console / csv / json: 直接在 Python 中拼装
- markdown / html: Jinja2 模板渲染 (html 由 markdown 库把 Markdown 转换而来)
渲染是纯函数：相同的 AggregationResult + 格式永远得到逐字节相同的输出。
"""
import csv
import io
import json
import logging
import os
import sys
import tempfile
from typing import Any, Dict, Optional

import markdown
from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from config import GlobalConfig
from context import RunContext
from errors import RenderError
from models import AggregationResult

logger = logging.getLogger(__name__)

CSV_REVISION_COLUMNS = [
    "revision",
    "author",
    "files_changed",
    "lines_added",
    "lines_removed",
    "non_countable_files",
]
CSV_TOTAL_COLUMNS = [
    "total_files_changed",
    "total_lines_added",
    "total_lines_removed",
    "total_non_countable_files",
]
DEFAULT_TITLE = "代码变更统计"


def _md_cell(value: Any) -> str:
    """表格单元格转义: 竖线、反斜杠、换行、尖括号"""
    text = str(value)
    text = text.replace("\\", "\\\\").replace("|", "\\|")
    text = text.replace("<", "&lt;").replace(">", "&gt;")
    return " ".join(text.split())


def _get_environment(global_config: GlobalConfig) -> Environment:
    templates_dir = os.path.join(
        global_config.SCRIPT_BASE_PATH, global_config.TEMPLATES_DIR_NAME
    )
    env = Environment(
        loader=FileSystemLoader(templates_dir),
        autoescape=select_autoescape(["html", "html.j2"]),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["md_cell"] = _md_cell
    return env


def generate_console_summary(
    result: AggregationResult, per_revision: bool, title: str = DEFAULT_TITLE
) -> str:
    """生成纯文本格式的汇总 (终端输出)"""
    lines = [
        "=" * 72,
        f"  {title}",
        "=" * 72,
        f"已扫描修订: {result.revisions_scanned}",
        f"有效修订:   {len(result.revisions)}",
        f"代码变更:   +{result.total_lines_added} -{result.total_lines_removed}"
        f" (修改文件: {result.total_files_changed},"
        f" 其中不计行数: {result.total_non_countable_files})",
        f"失败策略:   {result.failure_policy}",
    ]
    if per_revision:
        lines.append("-" * 72)
        if not result.revisions:
            lines.append("⚠️  没有任何修订产生可统计的变更")
        else:
            lines.append(f" {'修订':<10} | {'新增':<8} | {'删除':<8} | {'文件':<6} | 作者")
            lines.append("-" * 72)
            for stat in result.revisions:
                lines.append(
                    f" r{stat.revision:<9} | +{stat.lines_added:<7} | -{stat.lines_removed:<7}"
                    f" | {stat.files_changed:<6} | {stat.author}"
                )
    if result.skipped:
        lines.append("-" * 72)
        lines.append(f"已跳过的修订 ({len(result.skipped)}):")
        for skipped in result.skipped:
            lines.append(f"  r{skipped.revision}: {skipped.reason}")
    lines.append("=" * 72)
    return "\n".join(lines) + "\n"


def generate_csv_report(result: AggregationResult, per_revision: bool) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    if per_revision:
        writer.writerow(CSV_REVISION_COLUMNS)
        for stat in result.revisions:
            writer.writerow(
                [
                    stat.revision,
                    stat.author,
                    stat.files_changed,
                    stat.lines_added,
                    stat.lines_removed,
                    stat.non_countable_files,
                ]
            )
    else:
        writer.writerow(CSV_TOTAL_COLUMNS)
        writer.writerow(
            [
                result.total_files_changed,
                result.total_lines_added,
                result.total_lines_removed,
                result.total_non_countable_files,
            ]
        )
    return buffer.getvalue()


def build_json_payload(result: AggregationResult, per_revision: bool) -> Dict[str, Any]:
    # 键顺序固定，保证输出稳定
    revisions = []
    if per_revision:
        revisions = [
            {
                "revision": stat.revision,
                "author": stat.author,
                "filesChanged": stat.files_changed,
                "linesAdded": stat.lines_added,
                "linesRemoved": stat.lines_removed,
                "nonCountableFiles": stat.non_countable_files,
            }
            for stat in result.revisions
        ]
    return {
        "totalLinesAdded": result.total_lines_added,
        "totalLinesRemoved": result.total_lines_removed,
        "totalFilesChanged": result.total_files_changed,
        "totalNonCountableFiles": result.total_non_countable_files,
        "revisionsScanned": result.revisions_scanned,
        "revisions": revisions,
        "skippedRevisions": [
            {"revision": s.revision, "reason": s.reason} for s in result.skipped
        ],
        "failurePolicy": result.failure_policy,
    }


def generate_json_report(result: AggregationResult, per_revision: bool) -> str:
    payload = build_json_payload(result, per_revision)
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def generate_markdown_report(
    result: AggregationResult,
    per_revision: bool,
    global_config: GlobalConfig,
    title: str = DEFAULT_TITLE,
) -> str:
    env = _get_environment(global_config)
    template = env.get_template("report.md.j2")
    return template.render(
        title=title,
        result=result,
        per_revision=per_revision,
        columns=CSV_REVISION_COLUMNS,
    )


def generate_html_report(
    result: AggregationResult,
    per_revision: bool,
    global_config: GlobalConfig,
    title: str = DEFAULT_TITLE,
) -> str:
    """Markdown -> HTML 片段，再套入 Jinja2 页面模板"""
    md_text = generate_markdown_report(result, per_revision, global_config, title)
    body_html = markdown.markdown(md_text, extensions=["tables", "sane_lists"])
    env = _get_environment(global_config)
    template = env.get_template("report.html.j2")
    return template.render(title=title, body_html=body_html)


def render_report(
    result: AggregationResult,
    fmt: str,
    per_revision: bool = False,
    global_config: Optional[GlobalConfig] = None,
    title: str = DEFAULT_TITLE,
) -> str:
    """
    (V5.0) 把聚合结果渲染为指定格式的文本。
    未知格式或模板失败时抛出 RenderError。
    """
    global_config = global_config or GlobalConfig()
    try:
        if fmt == "console":
            return generate_console_summary(result, per_revision, title)
        if fmt == "csv":
            return generate_csv_report(result, per_revision)
        if fmt == "json":
            return generate_json_report(result, per_revision)
        if fmt == "markdown":
            return generate_markdown_report(result, per_revision, global_config, title)
        if fmt == "html":
            return generate_html_report(result, per_revision, global_config, title)
    except TemplateError as e:
        raise RenderError(f"模板渲染失败: {e}", fmt)
    raise RenderError("未知的报告格式", fmt)


def get_report_destination(context: RunContext, fmt: str) -> Optional[str]:
    """console 永远写 stdout；其它格式在指定了 --output-dir 时写文件，否则写 stdout"""
    if fmt == "console" or not context.output_dir:
        return None
    cfg = context.global_config
    ext = cfg.FORMAT_EXTENSIONS.get(fmt, fmt)
    filename = (
        f"{cfg.OUTPUT_FILENAME_PREFIX}_r{context.from_revision}-r{context.to_revision}.{ext}"
    )
    return os.path.join(context.output_dir, filename)


def save_report(content: str, destination: Optional[str], fmt: str) -> Optional[str]:
    """
    (V5.0) 报告输出 (Report Sink)
    - destination 为 None 时写 stdout
    - 写文件是原子的：先写同目录临时文件，再 os.replace，失败不会留下半个文件
    """
    if destination is None:
        try:
            sys.stdout.write(content)
            sys.stdout.flush()
        except OSError as e:
            raise RenderError(f"写入 stdout 失败: {e}", fmt)
        return None

    directory = os.path.dirname(os.path.abspath(destination))
    tmp_path = None
    try:
        os.makedirs(directory, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=directory, delete=False, suffix=".tmp", newline=""
        ) as f:
            tmp_path = f.name
            f.write(content)
        os.replace(tmp_path, destination)
    except OSError as e:
        if tmp_path and os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise RenderError(f"保存报告失败 ({destination}): {e}", fmt)

    logger.info(f"✅ {fmt} 报告已保存: {destination}")
    return destination
