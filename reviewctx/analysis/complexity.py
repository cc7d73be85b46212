"""
变更函数的平均圈复杂度（strategy selector 的 `avg_complexity` 输入）。

只有实现了 `ComplexityAnalyzer` 的分析器才算；算不出来返回 None，
selector 会跳过“高复杂度”这条规则。
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import anyio

from reviewctx.analysis.models import CodeAnalyzer
from reviewctx.analysis.models import ComplexityAnalyzer
from reviewctx.context.symbols import extract_symbols

logger = logging.getLogger(__name__)

MAX_FUNCTIONS = 20


async def average_complexity(
    changed_files: Sequence[str],
    analyzer: CodeAnalyzer,
    project_root: str,
    max_functions: int = MAX_FUNCTIONS,
) -> float | None:
    if not isinstance(analyzer, ComplexityAnalyzer):
        return None

    targets: list[tuple[str, str]] = []
    for path in changed_files:
        for symbol in await extract_symbols(path, analyzer, project_root):
            if symbol.type == "function":
                targets.append((path, symbol.name))
    targets = targets[:max_functions]
    if not targets:
        return None

    scores: list[int | None] = [None] * len(targets)

    async def _score(index: int, path: str, name: str) -> None:
        try:
            scores[index] = await analyzer.complexity(path, name, project_root)
        except Exception as exc:  # 单个函数失败不影响平均值
            logger.warning(f"complexity lookup failed for {path}:{name}: {exc}")

    async with anyio.create_task_group() as tg:
        for index, (path, name) in enumerate(targets):
            tg.start_soon(_score, index, path, name)

    known = [s for s in scores if s is not None]
    if not known:
        return None
    avg = sum(known) / len(known)
    logger.info(f"Average complexity over {len(known)} function(s): {avg:.1f}")
    return avg
