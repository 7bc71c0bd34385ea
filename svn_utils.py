import logging
import re
import subprocess
from datetime import datetime
from typing import List, Optional

from config import GlobalConfig
from errors import SourceUnavailableError
from models import RevisionDescriptor

logger = logging.getLogger(__name__)

LOG_SEPARATOR = "-" * 72
# 日期和行数字段格式固定，作者名里可以出现 "|"
RE_LOG_HEADER = re.compile(
    r"^r(?P<revision>[0-9]+) "
    r"\| (?P<author>.*) "
    r"\| (?P<date>[0-9]{4}-[0-9]{2}-[0-9]{2} [0-9]{2}:[0-9]{2}:[0-9]{2} [^|]*|\(no date\)) "
    r"\| (?P<lines>[0-9]+) lines?$"
)

# svn 错误码 / 关键字 -> SourceUnavailableError.reason
_ERROR_REASONS = [
    (("E160006", "E195012", "No such revision"), "not-found"),
    (("E170001", "E215004", "Authentication", "authorization failed"), "authentication"),
    (("E170000", "E170013", "E175002", "E731001", "Unable to connect"), "unreachable"),
]


def classify_svn_error(stderr: str) -> str:
    """根据 svn 的 stderr 判断失败原因"""
    for needles, reason in _ERROR_REASONS:
        if any(needle in stderr for needle in needles):
            return reason
    return "unreachable"


def run_svn_command(
    args: List[str],
    global_config: GlobalConfig,
    context: str = "执行svn命令",
    timeout: Optional[int] = None,
    revision: Optional[int] = None,
) -> str:
    """
    (V5.0) 统一的 svn 命令执行函数
    - 以 argv 列表调用，不经过 shell
    - 任何失败 (超时、非零退出、找不到可执行文件) 都转换为 SourceUnavailableError
    """
    cmd = [global_config.SVN_BINARY] + args + global_config.svn_auth_args()
    timeout = timeout or global_config.SOURCE_TIMEOUT
    # 日志里不输出密码
    shown = " ".join("***" if a == global_config.SVN_PASSWORD and a else a for a in cmd)
    logger.debug(f"执行命令: {shown}")
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise SourceUnavailableError(
            f"{context}超时 ({timeout}s)", reason="timeout", revision=revision
        )
    except OSError as e:
        raise SourceUnavailableError(
            f"{context}失败: 无法执行 '{global_config.SVN_BINARY}': {e}",
            reason="unreachable",
            revision=revision,
        )

    if result.returncode != 0:
        stderr = result.stderr.strip()
        raise SourceUnavailableError(
            f"{context}失败: {stderr or f'exit code {result.returncode}'}",
            reason=classify_svn_error(stderr),
            revision=revision,
        )
    logger.debug(f"{context}成功，输出 {len(result.stdout.splitlines())} 行")
    return result.stdout


def _parse_log_date(value: str) -> Optional[datetime]:
    """'2024-01-02 03:04:05 +0000 (Tue, 02 Jan 2024)' -> datetime"""
    value = value.strip()
    if value == "(no date)":
        return None
    try:
        return datetime.strptime(value[:25], "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        raise SourceUnavailableError(f"无法解析日志时间: '{value}'", reason="malformed")


def parse_svn_log(log_output: str) -> List[RevisionDescriptor]:
    """
    解析 `svn log` 的纯文本输出。

    每条记录形如:
        ------------------------------------------------------------------------
        r101 | alice | 2024-01-02 03:04:05 +0000 (Tue, 02 Jan 2024) | 2 lines

        消息正文 (共 N 行)
    格式不符时抛出 SourceUnavailableError(reason="malformed")。
    """
    lines = log_output.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    lines = [line.rstrip("\r") for line in lines]

    descriptors: List[RevisionDescriptor] = []
    if not any(line.strip() for line in lines):
        return descriptors

    i = 0
    if lines[0] != LOG_SEPARATOR:
        raise SourceUnavailableError(
            f"svn log 输出缺少分隔线: '{lines[0][:80]}'", reason="malformed"
        )
    i += 1
    while i < len(lines):
        match = RE_LOG_HEADER.match(lines[i])
        if not match:
            raise SourceUnavailableError(
                f"无法识别的 svn log 记录头: '{lines[i][:80]}'", reason="malformed"
            )
        num_lines = int(match.group("lines"))
        author = match.group("author")
        if author == "(no author)":
            author = ""

        # 记录头之后是一个空行，然后是 num_lines 行消息
        body_start = i + 2
        body_end = body_start + num_lines
        if body_end >= len(lines) or lines[body_end] != LOG_SEPARATOR:
            raise SourceUnavailableError(
                f"r{match.group('revision')} 的日志消息不完整", reason="malformed"
            )
        descriptors.append(
            RevisionDescriptor(
                revision=int(match.group("revision")),
                author=author,
                timestamp=_parse_log_date(match.group("date")),
                message="\n".join(lines[body_start:body_end]),
            )
        )
        i = body_end + 1

    logger.debug(f"成功解析 {len(descriptors)} 条修订记录")
    return descriptors
