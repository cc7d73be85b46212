"""
Context Hints（相关文件提示）。

流水线：
1. 变更文件 -> 声明的符号（不支持的文件类型跳过）
2. 每个符号 -> 调用图引用（排除定义文件）
3. 可选：用变更文件开头的内容做语义搜索（排除变更文件本身）
4. 合并、按 (file, line) 去重、按引用数降序、截断到 15 条

各个查询并发执行（最多 MAX_CONCURRENT_LOOKUPS 个同时在跑）；合并时按输入顺序遍历，所以结果和完成顺序无关。
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

import anyio
from pydantic import BaseModel, Field

from reviewctx.analysis.languages import is_supported
from reviewctx.analysis.models import CodeAnalyzer
from reviewctx.context.models import ContextHint
from reviewctx.context.references import Reference
from reviewctx.context.references import find_impact_references
from reviewctx.context.symbols import Symbol
from reviewctx.context.symbols import extract_symbols

logger = logging.getLogger(__name__)

MAX_HINTS = 15
REFS_PER_SYMBOL = 5
SEMANTIC_FILES = 5
SEMANTIC_SNIPPET_CHARS = 200
# 每次查询都会起子进程（git grep / 解析），同时在跑的查询数有上限
MAX_CONCURRENT_LOOKUPS = 8


class HintOptions(BaseModel):
    changed_files: list[str]
    file_contents: dict[str, str] = Field(default_factory=dict)
    max_hints: int = MAX_HINTS
    include_semantic: bool = True


async def _extract_symbols_by_file(
    changed_files: list[str],
    file_contents: Mapping[str, str],
    analyzer: CodeAnalyzer,
    project_root: str,
) -> list[tuple[str, list[Symbol]]]:
    candidates = [f for f in changed_files if is_supported(f) and file_contents.get(f)]
    found: dict[str, list[Symbol]] = {}
    limiter = anyio.CapacityLimiter(MAX_CONCURRENT_LOOKUPS)

    async def _extract(path: str) -> None:
        async with limiter:
            found[path] = await extract_symbols(path, analyzer, project_root)

    async with anyio.create_task_group() as tg:
        for path in candidates:
            tg.start_soon(_extract, path)
    return [(path, found[path]) for path in candidates if found.get(path)]


async def _find_all_references(
    symbols_by_file: list[tuple[str, list[Symbol]]],
    analyzer: CodeAnalyzer,
    project_root: str,
) -> list[tuple[str, list[Reference]]]:
    """返回 [(symbol, refs)]，同名符号（多个文件都定义了）合并在一起。"""
    jobs: list[tuple[str, str]] = [(path, s.name) for path, symbols in symbols_by_file for s in symbols]
    results: dict[int, list[Reference]] = {}
    limiter = anyio.CapacityLimiter(MAX_CONCURRENT_LOOKUPS)

    async def _lookup(index: int, path: str, symbol: str) -> None:
        async with limiter:
            results[index] = await find_impact_references(
                symbol=symbol,
                definition_file=path,
                analyzer=analyzer,
                project_root=project_root,
                limit=REFS_PER_SYMBOL,
            )

    async with anyio.create_task_group() as tg:
        for index, (path, symbol) in enumerate(jobs):
            tg.start_soon(_lookup, index, path, symbol)

    merged: dict[str, list[Reference]] = {}
    for index, (_, symbol) in enumerate(jobs):
        merged.setdefault(symbol, []).extend(results.get(index, []))
    return list(merged.items())


async def _semantic_hints(
    changed_files: list[str],
    file_contents: Mapping[str, str],
    analyzer: CodeAnalyzer,
    project_root: str,
    limit: int,
) -> list[ContextHint]:
    snippets = [
        file_contents[f][:SEMANTIC_SNIPPET_CHARS] for f in changed_files[:SEMANTIC_FILES] if file_contents.get(f)
    ]
    if not snippets:
        return []
    try:
        results = await analyzer.semantic(" ".join(snippets), project_root)
    except Exception as exc:  # 语义搜索是锦上添花，失败就不要
        logger.warning(f"semantic search failed: {exc}")
        return []

    changed = set(changed_files)
    hints = [
        ContextHint(file=r.file, line=r.line, symbol=r.function, ref_count=round(r.score * 10))
        for r in results
        if r.file not in changed
    ]
    return hints[:limit]


def curate_hints(
    impact_refs: list[tuple[str, list[Reference]]],
    semantic_hints: list[ContextHint],
    max_hints: int,
) -> list[ContextHint]:
    """合并两路结果：(file, line) 去重（先到先得），按 ref_count 降序稳定排序，截断。"""
    seen: set[tuple[str, int]] = set()
    hints: list[ContextHint] = []
    for symbol, refs in impact_refs:
        for ref in refs:
            key = (ref.file, ref.line)
            if key in seen:
                continue
            seen.add(key)
            hints.append(ContextHint(file=ref.file, line=ref.line, symbol=symbol, ref_count=len(refs)))
    for hint in semantic_hints:
        key = (hint.file, hint.line)
        if key in seen:
            continue
        seen.add(key)
        hints.append(hint)

    hints.sort(key=lambda h: -h.ref_count)
    return hints[:max_hints]


async def generate_context_hints(options: HintOptions, analyzer: CodeAnalyzer, project_root: str) -> list[ContextHint]:
    """没有变更文件 / 全是不支持的类型时返回空列表，不报错。"""
    if not options.changed_files:
        return []

    symbols_by_file = await _extract_symbols_by_file(
        options.changed_files, options.file_contents, analyzer, project_root
    )
    impact_refs = await _find_all_references(symbols_by_file, analyzer, project_root) if symbols_by_file else []
    semantic: list[ContextHint] = []
    if options.include_semantic:
        semantic = await _semantic_hints(
            options.changed_files, options.file_contents, analyzer, project_root, options.max_hints
        )
    hints = curate_hints(impact_refs, semantic, options.max_hints)
    logger.info(f"Context hints: {len(hints)} (symbols from {len(symbols_by_file)} file(s))")
    return hints


def format_hints(hints: list[ContextHint]) -> str:
    """没有 hint 返回空串；否则 1 行标题 + 每条 1 行。"""
    if not hints:
        return ""
    lines = ["Consider these related files:"]
    for hint in hints:
        lines.append(f"- {hint.file}:{hint.line} - references {hint.symbol}")
    return "\n".join(lines)


async def get_formatted_context_hints(options: HintOptions, analyzer: CodeAnalyzer, project_root: str) -> str:
    return format_hints(await generate_context_hints(options, analyzer, project_root))

