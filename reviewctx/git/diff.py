"""
Git diff 上下文（外部系统连接器，只读）。

约定：
- 所有查询都返回空值/默认值而不是抛错：非法 ref、非 git 目录都属于“降级结果”
- 多个查询并发执行（`anyio` task group），彼此之间没有共享状态
"""

from __future__ import annotations

import logging

import anyio
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class DiffStats(BaseModel):
    """diff 统计：变更文件 + 增删行数（每次现算，不持久化）。"""

    files: list[str] = Field(default_factory=list)
    additions: int = 0
    deletions: int = 0


class GitDiffContext(BaseModel):
    """review 用的 git 上下文。"""

    diff_stat: str = ""
    commits: list[str] = Field(default_factory=list)
    changed_files: list[str] = Field(default_factory=list)
    branch: str = ""


async def run_git(args: list[str], cwd: str | None) -> tuple[str, int]:
    """执行 git 命令，返回 (stdout, returncode)；启动失败按非 0 处理。"""
    cmd = ["git"] + args
    try:
        result = await anyio.run_process(cmd, cwd=cwd, check=False)
    except OSError as exc:
        logger.warning(f"git failed to start: {' '.join(cmd)}: {exc}")
        return "", 1
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace") if result.stderr else ""
        logger.debug(f"git exited {result.returncode}: {' '.join(cmd)}: {stderr.strip()}")
    return result.stdout.decode("utf-8", errors="replace"), result.returncode


def _split_lines(text: str) -> list[str]:
    return [line for line in text.strip().splitlines() if line.strip()]


def parse_numstat(text: str) -> tuple[int, int]:
    """
    解析 `git diff --numstat` 输出，返回 (additions, deletions)。

    二进制文件的增删列是 `-`，按 0 计。
    """
    additions = 0
    deletions = 0
    for line in _split_lines(text):
        parts = line.split("\t")
        if len(parts) < 2:
            continue
        add, delete = parts[0], parts[1]
        if add.isdigit():
            additions += int(add)
        if delete.isdigit():
            deletions += int(delete)
    return additions, deletions


async def get_diff_stats(base: str = "HEAD~1", cwd: str | None = None) -> DiffStats:
    """工作区相对 `base` 的变更文件列表与增删行数。"""
    names_out, names_code = await run_git(["diff", "--name-only", base], cwd)
    if names_code != 0:
        return DiffStats()
    stat_out, stat_code = await run_git(["diff", "--numstat", base], cwd)
    additions, deletions = parse_numstat(stat_out) if stat_code == 0 else (0, 0)
    return DiffStats(files=_split_lines(names_out), additions=additions, deletions=deletions)


async def get_diff_stat_text(base: str = "main", head: str = "HEAD", cwd: str | None = None) -> str:
    stdout, code = await run_git(["diff", "--stat", f"{base}...{head}"], cwd)
    if code != 0:
        return ""
    return stdout.strip()


async def get_commits(base: str = "main", head: str = "HEAD", cwd: str | None = None) -> list[str]:
    stdout, code = await run_git(["log", "--oneline", f"{base}..{head}"], cwd)
    if code != 0:
        return []
    return _split_lines(stdout)


async def get_changed_files(base: str = "main", head: str = "HEAD", cwd: str | None = None) -> list[str]:
    """
    `base...head` 之间变更的文件。

    merge-base 算不出来（例如 base 是个普通 commit 且历史不相交）时，退化为直接 diff base。
    """
    stdout, code = await run_git(["diff", "--name-only", f"{base}...{head}"], cwd)
    if code == 0:
        return _split_lines(stdout)
    stdout, code = await run_git(["diff", "--name-only", base], cwd)
    if code != 0:
        return []
    return _split_lines(stdout)


async def get_branch_name(cwd: str | None = None) -> str:
    stdout, code = await run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd)
    if code != 0:
        return ""
    return stdout.strip()


async def get_diff_text(base: str = "HEAD~1", cwd: str | None = None) -> str:
    """完整的 unified diff 文本（给 context builder 的 git_diff 段）。"""
    stdout, code = await run_git(["diff", base], cwd)
    if code != 0:
        return ""
    return stdout.strip()


async def get_git_diff_context(base: str = "main", head: str = "HEAD", cwd: str | None = None) -> GitDiffContext:
    """并发跑 4 个 git 查询，拼成 `GitDiffContext`。"""
    results: dict[str, object] = {}

    async def _collect(key: str, coro) -> None:
        results[key] = await coro

    async with anyio.create_task_group() as tg:
        tg.start_soon(_collect, "diff_stat", get_diff_stat_text(base, head, cwd))
        tg.start_soon(_collect, "commits", get_commits(base, head, cwd))
        tg.start_soon(_collect, "changed_files", get_changed_files(base, head, cwd))
        tg.start_soon(_collect, "branch", get_branch_name(cwd))

    return GitDiffContext.model_validate(results)


def format_diff_context_xml(context: GitDiffContext) -> str:
    """渲染为 `<diff_summary>/<commits>/<changed_files>` 块，空的段落直接省略。"""
    sections: list[str] = []
    if context.diff_stat:
        sections.append(f"<diff_summary>\n{context.diff_stat}\n</diff_summary>")
    if context.commits:
        sections.append("<commits>\n" + "\n".join(context.commits) + "\n</commits>")
    if context.changed_files:
        sections.append("<changed_files>\n" + "\n".join(context.changed_files) + "\n</changed_files>")
    return "\n\n".join(sections)
