"""
进程内 `CodeAnalyzer`：没有装 llm-tldr 时的默认实现。

- structure：tree-sitter 声明提取（在 worker thread 里解析，不阻塞事件循环）
- impact：`git grep` 文本引用当作 callers（近似，不是真正的调用图）
- semantic：不支持，返回空列表
"""

from __future__ import annotations

import os

import anyio

from reviewctx.analysis.models import CallSite
from reviewctx.analysis.models import ImpactResult
from reviewctx.analysis.models import SemanticResult
from reviewctx.analysis.models import StructureEntry
from reviewctx.analysis.treesitter import extract_declarations
from reviewctx.context.references import find_references

IMPACT_LIMIT = 20


class LocalCodeAnalyzer:
    """实现 `CodeAnalyzer` 协议。"""

    async def structure(self, file_path: str, project_root: str) -> list[StructureEntry]:
        full_path = file_path if os.path.isabs(file_path) else os.path.join(project_root, file_path)
        content = await anyio.Path(full_path).read_text(encoding="utf-8", errors="replace")
        return await anyio.to_thread.run_sync(extract_declarations, file_path, content)

    async def impact(self, function_name: str, project_root: str) -> ImpactResult:
        refs = await find_references(symbol=function_name, cwd=project_root, limit=IMPACT_LIMIT)
        callers = [CallSite(name=function_name, file=ref.file, line=ref.line) for ref in refs]
        return ImpactResult(function=function_name, callers=callers)

    async def semantic(self, query: str, project_root: str) -> list[SemanticResult]:
        return []
