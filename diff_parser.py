"""
[V5.0] 统一 diff 解析器
把单个修订的原始 diff 文本解析为逐文件的 ChangeRecord 列表。

支持两种方言:
- Subversion: 'Index:' + '=====' 分隔, '(nonexistent)' 标签,
  'Cannot display: file marked as a binary type.', 'Property changes on:' 属性块
- git 风格: 'diff --git', '/dev/null', 'Binary files ... differ',
  'GIT binary patch', 'rename from/to', 'old mode/new mode'

hunk 体按 hunk 头声明的行数消费，因此内容恰好以 '+++ ' / '--- ' 开头的行
也能被正确计数，而文件头本身永远不会被计入。
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from errors import ParseError
from models import ChangeKind, ChangeRecord

logger = logging.getLogger(__name__)

HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
GIT_HEADER_RE = re.compile(r"^diff --git a/(.+?) b/(.+)$")
BINARY_FILES_RE = re.compile(r"^Binary files (.+?) and (.+?) differ$")

NULL_PATH = "/dev/null"
# 旧版 svn 用 (revision 0) 表示新增文件的旧侧
NONEXISTENT_LABELS = ("(nonexistent)", "(revision 0)")
SVN_BINARY_MARKER = "Cannot display: file marked as a binary type."

EXCERPT_LIMIT = 120


@dataclass
class _FileSection:
    """解析过程中的单个文件段 (可变的中间状态)"""

    header_path: Optional[str] = None
    git_style: bool = False
    old_path: Optional[str] = None
    new_path: Optional[str] = None
    old_missing: bool = False
    new_missing: bool = False
    has_file_headers: bool = False
    has_hunks: bool = False
    binary: bool = False
    renamed: bool = False
    copied: bool = False
    added: int = 0
    removed: int = 0

    @property
    def path(self) -> str:
        # 重命名时以新路径为准；删除时只有旧路径可用
        if self.new_missing:
            return self.old_path or self.header_path or ""
        return self.new_path or self.old_path or self.header_path or ""

    def to_record(self) -> ChangeRecord:
        path = self.path
        if self.binary:
            return ChangeRecord(path, 0, 0, ChangeKind.BINARY)
        if self.has_hunks:
            if self.old_missing or self.copied:
                kind = ChangeKind.ADDED
            elif self.new_missing:
                kind = ChangeKind.DELETED
            else:
                kind = ChangeKind.MODIFIED
            return ChangeRecord(path, self.added, self.removed, kind)
        # 以下均为没有任何 hunk 的段
        if self.renamed:
            return ChangeRecord(path, 0, 0, ChangeKind.MODIFIED)
        if self.old_missing or self.copied:
            return ChangeRecord(path, 0, 0, ChangeKind.ADDED)
        if self.new_missing:
            return ChangeRecord(path, 0, 0, ChangeKind.DELETED)
        return ChangeRecord(path, 0, 0, ChangeKind.PROPERTY_ONLY)


def _split_header_path(value: str) -> Tuple[str, str]:
    """'trunk/a.ts\t(revision 100)' -> ('trunk/a.ts', '(revision 100)')"""
    if "\t" in value:
        path, label = value.split("\t", 1)
        return path.strip(), label.strip()
    return value.strip(), ""


def _is_missing(path: str, label: str) -> bool:
    return path == NULL_PATH or label in NONEXISTENT_LABELS


def _strip_git_prefix(path: Optional[str], prefix: str) -> Optional[str]:
    if path and path.startswith(prefix):
        return path[len(prefix):]
    return path


def _excerpt(line: str, lineno: int) -> str:
    text = line if len(line) <= EXCERPT_LIMIT else line[:EXCERPT_LIMIT] + "..."
    return f"line {lineno}: {text}"


def _is_separator(line: str) -> bool:
    return len(line) >= 3 and (set(line) == {"="} or set(line) == {"_"})


def _merge_records(first: ChangeRecord, second: ChangeRecord) -> ChangeRecord:
    """合并同一路径的两条记录：二进制优先，纯属性变更不覆盖内容变更，行数相加"""
    if ChangeKind.BINARY in (first.kind, second.kind):
        return ChangeRecord(first.path, 0, 0, ChangeKind.BINARY)
    if second.kind == ChangeKind.PROPERTY_ONLY:
        return first
    if first.kind == ChangeKind.PROPERTY_ONLY:
        return second

    if not (second.added or second.removed):
        kind = first.kind
    elif not (first.added or first.removed):
        kind = second.kind
    elif first.kind == second.kind:
        kind = first.kind
    else:
        # 删除后重新添加 (replace) 视为修改
        kind = ChangeKind.MODIFIED
    return ChangeRecord(
        first.path, first.added + second.added, first.removed + second.removed, kind
    )


class _DiffParser:
    """单次解析的状态机。每次 parse_diff 调用都会新建一个实例。"""

    def __init__(self, text: str, revision: int):
        self.revision = revision
        lines = text.split("\n")
        if lines and lines[-1] == "":
            lines.pop()
        self.lines = [line[:-1] if line.endswith("\r") else line for line in lines]
        self.records: List[ChangeRecord] = []
        # 路径 -> 在 records 中的下标
        self.emitted: Dict[str, int] = {}
        self.section: Optional[_FileSection] = None
        self.in_property_block = False
        self.in_binary_patch = False

    def fail(self, message: str, line: str, lineno: int):
        raise ParseError(message, self.revision, _excerpt(line, lineno))

    # --- 段管理 ---

    def finish_section(self):
        section = self.section
        self.section = None
        self.in_property_block = False
        self.in_binary_patch = False
        if section is None:
            return
        record = section.to_record()
        if not record.path:
            return
        index = self.emitted.get(record.path)
        if index is not None:
            # 同一文件在一个修订里只计一次 (例如新增二进制文件会出现两个 Index 段)
            self.records[index] = _merge_records(self.records[index], record)
            return
        self.emitted[record.path] = len(self.records)
        self.records.append(record)

    def start_section(self, **kwargs) -> _FileSection:
        self.finish_section()
        self.section = _FileSection(**kwargs)
        return self.section

    # --- 主循环 ---

    def run(self) -> List[ChangeRecord]:
        i = 0
        total = len(self.lines)
        while i < total:
            line = self.lines[i]
            lineno = i + 1

            if line.startswith("Index: "):
                self.start_section(header_path=line[len("Index: "):].strip())
                i += 1
                continue

            match = GIT_HEADER_RE.match(line)
            if match:
                self.start_section(
                    header_path=match.group(2),
                    git_style=True,
                    old_path=match.group(1),
                    new_path=match.group(2),
                )
                i += 1
                continue

            if line.startswith("Property changes on: "):
                self._enter_property_block(line[len("Property changes on: "):].strip())
                i += 1
                continue

            if self.in_property_block or self.in_binary_patch:
                # 属性值与二进制补丁内容不参与计数
                i += 1
                continue

            if line.startswith("--- "):
                i = self._read_file_headers(i)
                continue

            if line.startswith("+++ "):
                self.fail("'+++' 文件头缺少对应的 '---'", line, lineno)

            if line.startswith("@@"):
                i = self._read_hunk(i)
                continue

            if not line.strip() or _is_separator(line) or line.startswith("\\"):
                i += 1
                continue

            self._read_extended_header(line, lineno)
            i += 1

        self.finish_section()
        return self.records

    # --- 各类行的处理 ---

    def _enter_property_block(self, path: str):
        section = self.section
        if section is None or path not in (section.header_path, section.path):
            section = self.start_section(header_path=path)
        self.in_property_block = True

    def _read_file_headers(self, i: int) -> int:
        line = self.lines[i]
        if i + 1 >= len(self.lines) or not self.lines[i + 1].startswith("+++ "):
            self.fail("'---' 文件头缺少对应的 '+++'", line, i + 1)

        old_path, old_label = _split_header_path(line[4:])
        new_path, new_label = _split_header_path(self.lines[i + 1][4:])

        section = self.section
        if section is None or section.has_file_headers:
            section = self.start_section(header_path=new_path)

        old_missing = _is_missing(old_path, old_label)
        new_missing = _is_missing(new_path, new_label)
        if old_missing and new_missing:
            self.fail("文件头的新旧两侧都不存在", line, i + 1)

        strip = section.git_style or (
            (old_missing or old_path.startswith("a/"))
            and (new_missing or new_path.startswith("b/"))
        )
        if strip:
            old_path = _strip_git_prefix(old_path, "a/")
            new_path = _strip_git_prefix(new_path, "b/")

        if not old_missing:
            section.old_path = old_path
        if not new_missing:
            section.new_path = new_path
        section.old_missing = section.old_missing or old_missing
        section.new_missing = section.new_missing or new_missing
        section.has_file_headers = True
        return i + 2

    def _read_hunk(self, i: int) -> int:
        line = self.lines[i]
        section = self.section
        if section is None or not section.has_file_headers:
            self.fail("hunk 出现在文件头之前", line, i + 1)
        match = HUNK_HEADER_RE.match(line)
        if not match:
            self.fail("无法解析的 hunk 头", line, i + 1)

        old_left = int(match.group(2)) if match.group(2) is not None else 1
        new_left = int(match.group(4)) if match.group(4) is not None else 1
        section.has_hunks = True
        i += 1

        while old_left > 0 or new_left > 0:
            if i >= len(self.lines):
                self.fail(
                    f"hunk 未结束 (还缺 -{old_left} +{new_left} 行)", line, i
                )
            body = self.lines[i]
            lineno = i + 1
            marker = body[:1]
            if marker == "\\":
                pass
            elif marker == "+":
                if new_left == 0:
                    self.fail("hunk 新增行超出声明的行数", body, lineno)
                section.added += 1
                new_left -= 1
            elif marker == "-":
                if old_left == 0:
                    self.fail("hunk 删除行超出声明的行数", body, lineno)
                section.removed += 1
                old_left -= 1
            elif marker in (" ", ""):
                # 部分工具会去掉空上下文行的前导空格
                if old_left == 0 or new_left == 0:
                    self.fail("hunk 上下文行超出声明的行数", body, lineno)
                old_left -= 1
                new_left -= 1
            else:
                self.fail("hunk 未结束", body, lineno)
            i += 1
        return i

    def _read_extended_header(self, line: str, lineno: int):
        binary_match = BINARY_FILES_RE.match(line)
        if binary_match:
            section = self.section
            if section is None or section.has_file_headers:
                old_path = _strip_git_prefix(binary_match.group(1), "a/")
                new_path = _strip_git_prefix(binary_match.group(2), "b/")
                section = self.start_section(
                    header_path=new_path, old_path=old_path, new_path=new_path
                )
            section.binary = True
            return

        section = self.section
        if section is None:
            self.fail("无法识别的行 (不属于任何文件段)", line, lineno)

        if line == SVN_BINARY_MARKER:
            section.binary = True
        elif line.startswith("svn:mime-type = "):
            pass
        elif line == "GIT binary patch":
            section.binary = True
            self.in_binary_patch = True
        elif line.startswith("new file mode "):
            section.old_missing = True
        elif line.startswith("deleted file mode "):
            section.new_missing = True
        elif line.startswith("rename from "):
            section.renamed = True
            section.old_path = line[len("rename from "):].strip()
        elif line.startswith("rename to "):
            section.renamed = True
            section.new_path = line[len("rename to "):].strip()
        elif line.startswith("copy from "):
            section.copied = True
            section.old_path = line[len("copy from "):].strip()
        elif line.startswith("copy to "):
            section.copied = True
            section.new_path = line[len("copy to "):].strip()
        elif line.startswith(
            ("index ", "old mode ", "new mode ", "similarity index ", "dissimilarity index ")
        ):
            pass
        else:
            self.fail("无法识别的行", line, lineno)


def parse_diff(raw_diff_text: str, revision: int) -> List[ChangeRecord]:
    """
    (V5.0) 解析单个修订的 diff 文本，按出现顺序返回 ChangeRecord。
    结构非法 (hunk 未结束、文件头不成对等) 时抛出 ParseError。
    """
    if not raw_diff_text or not raw_diff_text.strip():
        return []
    records = _DiffParser(raw_diff_text, revision).run()
    logger.debug(f"r{revision}: 解析出 {len(records)} 个文件变更")
    return records
