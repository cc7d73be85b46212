"""
符号提取：变更文件里声明了哪些函数/类/类型，供 context hints 去查引用。
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel

from reviewctx.analysis.languages import is_supported
from reviewctx.analysis.models import CodeAnalyzer

logger = logging.getLogger(__name__)

SymbolType = Literal["function", "class", "type", "interface", "const"]

_KIND_TO_SYMBOL: dict[str, SymbolType] = {
    "function": "function",
    "method": "function",
    "class": "class",
    "interface": "interface",
    "type": "type",
    "const": "const",
}
# 导入/导出不是“本文件声明的符号”
_SKIPPED_KINDS = {"import", "export", "property"}


class Symbol(BaseModel):
    name: str
    type: SymbolType
    line: int


async def extract_symbols(file_path: str, analyzer: CodeAnalyzer, project_root: str) -> list[Symbol]:
    """不支持的文件类型、分析失败都返回空列表。结果按行号排序。"""
    if not is_supported(file_path):
        return []
    try:
        entries = await analyzer.structure(file_path, project_root)
    except Exception as exc:  # 外部分析失败 -> 没有符号
        logger.warning(f"symbol extraction failed for {file_path}: {exc}")
        return []

    symbols = [
        Symbol(name=entry.name, type=_KIND_TO_SYMBOL.get(entry.kind, "function"), line=entry.line)
        for entry in entries
        if entry.kind not in _SKIPPED_KINDS
    ]
    symbols.sort(key=lambda s: s.line)
    return symbols
