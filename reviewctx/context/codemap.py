"""
Code Map（签名摘要）。

把一个文件压缩成“只有声明、没有函数体”的文本，用来在 token 预算紧张时代替全文。
结构分析失败不抛错：返回 0 条目的 code map，让 planner 继续往下走。
"""

from __future__ import annotations

import logging
import math

from reviewctx.analysis.languages import infer_language_from_path
from reviewctx.analysis.models import CodeAnalyzer
from reviewctx.context.models import CodeMap
from reviewctx.context.models import CodeMapEntry
from reviewctx.context.models import CodeMapEntryType

logger = logging.getLogger(__name__)

_ENTRY_TYPES: frozenset[str] = frozenset(
    {"import", "export", "function", "class", "interface", "type", "const", "method", "property"}
)


def estimate_tokens(text: str) -> int:
    """约 4 个字符 1 个 token。"""
    return math.ceil(len(text) / 4)


def _entry_type(kind: str) -> CodeMapEntryType:
    if kind in _ENTRY_TYPES:
        return kind  # type: ignore[return-value]
    return "function"


def build_code_map(path: str, content: str, entries: list[CodeMapEntry]) -> CodeMap:
    """根据条目算大小与压缩率。"""
    original_size = len(content)
    map_size = len("\n".join(e.signature for e in entries))
    compression_ratio = 1 - map_size / original_size if original_size > 0 else 0.0
    return CodeMap(
        path=path,
        language=infer_language_from_path(path),
        entries=entries,
        original_size=original_size,
        map_size=map_size,
        compression_ratio=compression_ratio,
    )


async def extract_code_map(path: str, content: str, analyzer: CodeAnalyzer, project_root: str) -> CodeMap:
    """调用结构分析拿声明；任何失败都退化为空条目。"""
    entries: list[CodeMapEntry] = []
    if content:
        try:
            structure = await analyzer.structure(path, project_root)
            entries = [
                CodeMapEntry(type=_entry_type(s.kind), signature=s.signature or s.name, line=s.line)
                for s in structure
            ]
        except Exception as exc:  # 不支持的语言、二进制文件、解析器报错...
            logger.warning(f"code map extraction failed for {path}: {exc}")
            entries = []
    return build_code_map(path=path, content=content, entries=entries)


def format_code_map(code_map: CodeMap) -> str:
    """渲染进 context 的文本形式。"""
    if not code_map.entries:
        return f"// {code_map.path} (no extractable signatures)"
    lines = [f"// {code_map.path} ({round(code_map.compression_ratio * 100)}% smaller)"]
    lines.extend(entry.signature for entry in code_map.entries)
    return "\n".join(lines)


def estimate_code_map_tokens(code_map: CodeMap) -> int:
    """按渲染后的文本估算（含头部注释行）。"""
    return estimate_tokens(format_code_map(code_map))
