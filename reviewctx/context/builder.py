"""
Context Builder（Token 预算规划，非 AI）。

职责：
- 给文件打分（变更文件、入口文件、配置文件、测试文件、文件大小）
- 按分数从高到低贪心装箱：全文 -> code map -> 排除（不会截断半个文件）
- 渲染成 XML context（file tree / codemaps / files / git diff / prompt）

排序只看分数；装箱循环里不对“变更文件”做任何特殊处理。
"""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable, Sequence

from pydantic import BaseModel

from reviewctx.analysis.models import CodeAnalyzer
from reviewctx.context.codemap import estimate_code_map_tokens
from reviewctx.context.codemap import estimate_tokens
from reviewctx.context.codemap import extract_code_map
from reviewctx.context.codemap import format_code_map
from reviewctx.context.models import CodeMap
from reviewctx.context.models import CodeMappedFile
from reviewctx.context.models import ContextPlan
from reviewctx.context.models import RankedFile
from reviewctx.context.models import SourceFile
from reviewctx.context.models import TokenBudget
from reviewctx.git import diff as git_diff

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 50_000
BASE_PRIORITY = 50
CHANGED_BONUS = 100
ENTRY_POINT_BONUS = 30
CONFIG_BONUS = 20
TEST_PENALTY = 10
SMALL_FILE_TOKENS = 500
LARGE_FILE_TOKENS = 2000

ENTRY_POINT_NAMES = frozenset(
    {
        "index.ts",
        "index.js",
        "main.ts",
        "main.js",
        "+page.svelte",
        "+layout.svelte",
        "+page.server.ts",
        "+server.ts",
        "main.py",
        "__main__.py",
        "main.go",
        "main.rs",
        "lib.rs",
    }
)
CONFIG_NAMES = frozenset(
    {
        "package.json",
        "tsconfig.json",
        "svelte.config.js",
        "pyproject.toml",
        "setup.cfg",
        "go.mod",
        "Cargo.toml",
    }
)

CodeMapper = Callable[[RankedFile], Awaitable[CodeMap]]


class ContextBuildOptions(BaseModel):
    """
    - changed_files / git_diff：调用方已经有就直接给，不给才去问 git
    - include_git_diff：是否把 diff 正文放进 context
    - include_code_maps：关掉后放不下全文的文件直接排除
    """

    max_tokens: int = DEFAULT_MAX_TOKENS
    base_branch: str = "HEAD~1"
    root_path: str | None = None
    include_git_diff: bool = False
    include_code_maps: bool = True
    changed_files: list[str] | None = None
    git_diff: str | None = None


class BuiltContext(BaseModel):
    xml: str
    plan: ContextPlan


def escape_xml(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def _relative(path: str, root_path: str) -> str:
    if os.path.isabs(path):
        return os.path.relpath(path, root_path)
    return path


def _is_entry_point(name: str) -> bool:
    return name in ENTRY_POINT_NAMES


def _is_config(name: str) -> bool:
    return name in CONFIG_NAMES or name.endswith(".config.ts") or name.endswith(".config.js")


def score_file(path: str, tokens: int, is_changed: bool) -> int:
    """单个文件的优先级（越大越重要）。"""
    priority = BASE_PRIORITY
    if is_changed:
        priority += CHANGED_BONUS
    name = os.path.basename(path)
    if _is_entry_point(name):
        priority += ENTRY_POINT_BONUS
    if _is_config(name):
        priority += CONFIG_BONUS
    if "test" in path or "spec" in path:
        priority -= TEST_PENALTY
    if tokens < SMALL_FILE_TOKENS:
        priority += 10
    if tokens > LARGE_FILE_TOKENS:
        priority -= 10
    return priority


def rank_files(files: Sequence[SourceFile], changed_files: set[str], root_path: str) -> list[RankedFile]:
    """打分；输出顺序与输入一致（排序留给 planner）。"""
    ranked: list[RankedFile] = []
    for f in files:
        is_changed = f.path in changed_files or _relative(f.path, root_path) in changed_files
        tokens = estimate_tokens(f.content)
        ranked.append(
            RankedFile(
                path=f.path,
                content=f.content,
                priority=score_file(path=f.path, tokens=tokens, is_changed=is_changed),
                full_tokens=tokens,
                is_changed=is_changed,
            )
        )
    return ranked


def compute_budget(max_tokens: int, skill_prompt: str, prompt: str) -> TokenBudget:
    """预留 skill prompt / user prompt 之后剩下的才给文件；不够就是 0。"""
    if max_tokens < 0:
        raise ValueError("max_tokens must be >= 0")
    skill_tokens = estimate_tokens(skill_prompt)
    user_prompt_tokens = estimate_tokens(prompt)
    return TokenBudget(
        max_tokens=max_tokens,
        skill_tokens=skill_tokens,
        user_prompt_tokens=user_prompt_tokens,
        available_tokens=max(0, max_tokens - skill_tokens - user_prompt_tokens),
    )


async def build_context_plan(
    ranked_files: Sequence[RankedFile],
    budget: TokenBudget,
    code_mapper: CodeMapper | None,
    git_diff_text: str | None = None,
) -> ContextPlan:
    """
    贪心装箱（单趟）。

    - git diff 先占预算；diff 自己就超预算时丢弃 diff，文件预算记为 0（全部排除）
    - 文件按 priority 降序（稳定排序，同分保持输入顺序）
    - 每个文件：全文放得下就全文；否则试 code map；再放不下就排除
    - code_mapper 为 None 时不做压缩，放不下全文就直接排除
    """
    ordered = sorted(ranked_files, key=lambda f: -f.priority)

    full_files: list[RankedFile] = []
    code_mapped: list[CodeMappedFile] = []
    excluded: list[RankedFile] = []

    diff_tokens = estimate_tokens(git_diff_text) if git_diff_text else 0
    diff_dropped = False
    if diff_tokens > budget.available_tokens:
        logger.warning(f"git diff (~{diff_tokens} tokens) exceeds budget ({budget.available_tokens}), dropping it")
        git_diff_text = None
        diff_dropped = True
        remaining = 0
        used = 0
    else:
        remaining = budget.available_tokens - diff_tokens
        used = diff_tokens

    for f in ordered:
        if f.full_tokens <= remaining:
            full_files.append(f)
            used += f.full_tokens
            remaining -= f.full_tokens
            continue

        if code_mapper is None:
            excluded.append(f)
            continue

        code_map = await code_mapper(f)
        map_tokens = estimate_code_map_tokens(code_map)
        if map_tokens <= remaining:
            code_mapped.append(CodeMappedFile(file=f, code_map=code_map))
            used += map_tokens
            remaining -= map_tokens
            continue

        excluded.append(f)

    return ContextPlan(
        full_files=full_files,
        code_mapped_files=code_mapped,
        excluded_files=excluded,
        total_tokens=used + budget.skill_tokens + budget.user_prompt_tokens,
        budget=budget,
        git_diff=git_diff_text or None,
        diff_dropped=diff_dropped,
    )


def build_file_tree(paths: Sequence[str], root_path: str) -> str:
    """按目录分组的简单文件树（目录、文件都排序）。"""
    dirs: dict[str, list[str]] = {}
    for path in paths:
        rel = _relative(path, root_path)
        dirs.setdefault(os.path.dirname(rel) or ".", []).append(os.path.basename(rel))

    lines: list[str] = []
    for d in sorted(dirs):
        if d != ".":
            lines.append(f"{d}/")
        for name in sorted(dirs[d]):
            lines.append(name if d == "." else f"  {name}")
    return "\n".join(lines)


def _indent(text: str, prefix: str) -> str:
    return prefix + text.replace("\n", "\n" + prefix)


def build_context_xml(plan: ContextPlan, prompt: str, root_path: str) -> str:
    """
    渲染 context：

    <context>
      <file_tree>...</file_tree>
      <codemaps><codemap path="...">...</codemap></codemaps>
      <files><file path="..." changed="true">...</file></files>
      <git_diff>...</git_diff>
      <prompt>...</prompt>
    </context>
    """
    lines: list[str] = ['<?xml version="1.0" encoding="UTF-8"?>', "<context>"]

    all_paths = [f.path for f in plan.full_files] + [m.file.path for m in plan.code_mapped_files]
    if all_paths:
        lines.append("  <file_tree>")
        lines.append(_indent(escape_xml(build_file_tree(all_paths, root_path)), "    "))
        lines.append("  </file_tree>")

    if plan.code_mapped_files:
        lines.append("  <codemaps>")
        for m in plan.code_mapped_files:
            rel = _relative(m.file.path, root_path)
            lines.append(f'    <codemap path="{escape_xml(rel)}">')
            lines.append(_indent(escape_xml(format_code_map(m.code_map)), "      "))
            lines.append("    </codemap>")
        lines.append("  </codemaps>")

    if plan.full_files:
        lines.append("  <files>")
        for f in plan.full_files:
            rel = _relative(f.path, root_path)
            changed = ' changed="true"' if f.is_changed else ""
            lines.append(f'    <file path="{escape_xml(rel)}"{changed}>')
            lines.append(escape_xml(f.content))
            lines.append("    </file>")
        lines.append("  </files>")

    if plan.git_diff:
        lines.append("  <git_diff>")
        lines.append(_indent(escape_xml(plan.git_diff), "    "))
        lines.append("  </git_diff>")

    lines.append("  <prompt>")
    lines.append(_indent(escape_xml(prompt), "    "))
    lines.append("  </prompt>")
    lines.append("</context>")
    return "\n".join(lines)


async def build_optimized_context(
    files: Sequence[SourceFile],
    prompt: str,
    skill_prompt: str,
    options: ContextBuildOptions,
    analyzer: CodeAnalyzer,
) -> BuiltContext:
    """
    一站式：算预算 -> 取变更文件/diff -> 打分 -> 规划 -> 渲染。

    变更文件、diff 没给就问 git（失败时是空集合/空 diff）。
    """
    root_path = options.root_path or os.getcwd()
    budget = compute_budget(max_tokens=options.max_tokens, skill_prompt=skill_prompt, prompt=prompt)

    if options.changed_files is not None:
        changed = set(options.changed_files)
    else:
        stats = await git_diff.get_diff_stats(base=options.base_branch, cwd=root_path)
        changed = set(stats.files)

    diff_text: str | None = None
    if options.include_git_diff:
        if options.git_diff is not None:
            diff_text = options.git_diff
        else:
            diff_text = await git_diff.get_diff_text(base=options.base_branch, cwd=root_path)

    async def _code_mapper(f: RankedFile) -> CodeMap:
        return await extract_code_map(path=f.path, content=f.content, analyzer=analyzer, project_root=root_path)

    ranked = rank_files(files=files, changed_files=changed, root_path=root_path)
    mapper = _code_mapper if options.include_code_maps else None
    plan = await build_context_plan(ranked, budget, mapper, diff_text or None)
    xml = build_context_xml(plan=plan, prompt=prompt, root_path=root_path)
    logger.info(
        f"Context plan: full={len(plan.full_files)}, codemaps={len(plan.code_mapped_files)}, "
        f"excluded={len(plan.excluded_files)}, tokens~{plan.total_tokens}"
    )
    return BuiltContext(xml=xml, plan=plan)


def format_context_plan_summary(plan: ContextPlan) -> str:
    lines: list[str] = [
        "Context Plan:",
        f"  Total tokens: ~{round(plan.total_tokens / 1000)}k / {round(plan.budget.max_tokens / 1000)}k",
        f"  Full files: {len(plan.full_files)}",
        f"  Code maps: {len(plan.code_mapped_files)}",
        f"  Excluded: {len(plan.excluded_files)}",
    ]
    if plan.excluded_files:
        lines.append("")
        lines.append("  Excluded files:")
        for f in plan.excluded_files[:5]:
            lines.append(f"    - {os.path.basename(f.path)} (~{f.full_tokens} tokens)")
        if len(plan.excluded_files) > 5:
            lines.append(f"    ... and {len(plan.excluded_files) - 5} more")
    return "\n".join(lines)
