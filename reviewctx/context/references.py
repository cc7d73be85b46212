"""
符号引用查找。

两条来源：
- 文本引用：`git grep -w -n`（任何 git 仓库都能用）
- 调用图引用：`CodeAnalyzer.impact` 的 callers

两者都排除符号自己的定义文件；出错返回空列表，不向上抛。
"""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel

from reviewctx.analysis.models import CodeAnalyzer
from reviewctx.git.diff import run_git

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
_GREP_LINE = re.compile(r"^([^:]+):(\d+):(.*)$")


class Reference(BaseModel):
    file: str
    line: int
    context: str = ""


def parse_grep_line(line: str) -> Reference | None:
    """`git grep -n` 的一行：`file:line:context`。"""
    match = _GREP_LINE.match(line)
    if match is None:
        return None
    file, line_str, context = match.groups()
    return Reference(file=file, line=int(line_str), context=context.strip())


def normalize_path(path: str) -> str:
    normalized = path.replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def is_same_file(a: str, b: str) -> bool:
    """相对路径/绝对路径混用时也能认出是同一个文件。"""
    left = normalize_path(a)
    right = normalize_path(b)
    return left == right or left.endswith(f"/{right}") or right.endswith(f"/{left}")


async def find_references(
    symbol: str,
    definition_file: str | None = None,
    cwd: str | None = None,
    limit: int = DEFAULT_LIMIT,
    file_patterns: list[str] | None = None,
) -> list[Reference]:
    """用 `git grep -w -n` 找整词匹配；exit 1 表示没匹配，不是错误。"""
    if limit <= 0:
        raise ValueError("limit must be > 0")
    args = ["grep", "-w", "-n", "-e", symbol]
    if file_patterns:
        args += ["--"] + file_patterns
    stdout, code = await run_git(args, cwd)
    if code not in (0, 1):
        return []

    references: list[Reference] = []
    for line in stdout.splitlines():
        if not line.strip():
            continue
        ref = parse_grep_line(line)
        if ref is None:
            continue
        if definition_file and is_same_file(ref.file, definition_file):
            continue
        references.append(ref)
        if len(references) >= limit:
            break
    return references


async def find_impact_references(
    symbol: str,
    definition_file: str,
    analyzer: CodeAnalyzer,
    project_root: str,
    limit: int = 5,
) -> list[Reference]:
    """调用图版本：取 impact 的 callers，排除定义文件，最多 `limit` 条。"""
    try:
        impact = await analyzer.impact(symbol, project_root)
    except Exception as exc:  # 外部分析失败 -> 该符号没有引用
        logger.warning(f"impact lookup failed for {symbol}: {exc}")
        return []
    references: list[Reference] = []
    for caller in impact.callers:
        if is_same_file(caller.file, definition_file):
            continue
        references.append(Reference(file=caller.file, line=caller.line, context=caller.name))
        if len(references) >= limit:
            break
    return references


def format_references(references: list[Reference]) -> list[str]:
    return [f"{ref.file}:{ref.line}:{ref.context}" for ref in references]


async def is_git_repository(cwd: str | None = None) -> bool:
    _, code = await run_git(["rev-parse", "--git-dir"], cwd)
    return code == 0
