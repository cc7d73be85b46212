from __future__ import annotations

"""
只读文件系统工具（exploration agent 使用）。

约束：
- 所有路径相对 `ToolContext.root` 解析，解析后必须仍在 root 之内
- 只读：没有任何写/执行操作
- 结果有上限（max_results / limit），避免把整个仓库塞回给模型
"""

import re
from pathlib import Path

from reviewctx.agent.schemas import GlobFilesArgs
from reviewctx.agent.schemas import GrepArgs
from reviewctx.agent.schemas import ListDirArgs
from reviewctx.agent.schemas import ReadFileArgs
from reviewctx.agent.schemas import ToolContext

SKIP_DIRS: frozenset[str] = frozenset({".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"})


class ToolError(ValueError):
    """工具调用参数非法（越界路径、不存在的文件、不允许的工具等）。会作为 observation 回给模型。"""


def resolve_in_root(ctx: ToolContext, path: str) -> Path:
    root = Path(ctx.root).resolve()
    target = (root / path).resolve()
    if not target.is_relative_to(root):
        raise ToolError(f"path escapes project root: {path}")
    return target


def _relative(ctx: ToolContext, path: Path) -> str:
    return path.relative_to(Path(ctx.root).resolve()).as_posix()


def _is_skipped(ctx: ToolContext, path: Path) -> bool:
    parts = Path(_relative(ctx, path)).parts
    return any(part in SKIP_DIRS for part in parts)


def glob_files(args: GlobFilesArgs, ctx: ToolContext) -> dict[str, list[str]]:
    """按 glob 模式列出文件（只返回文件，按路径排序）。"""
    if args.max_results <= 0:
        raise ToolError("max_results must be > 0")
    pattern = Path(args.pattern)
    if not args.pattern or pattern.is_absolute() or ".." in pattern.parts:
        raise ToolError(f"pattern must be relative to project root: {args.pattern}")
    root = resolve_in_root(ctx, ".")
    try:
        candidates = sorted(root.glob(args.pattern))
    except ValueError as exc:
        # 例如 "src**/x.py"：旧版本 pathlib 要求 ** 独占一段
        raise ToolError(f"invalid glob pattern: {args.pattern}: {exc}") from exc
    matches: list[str] = []
    for path in candidates:
        if not path.is_file() or _is_skipped(ctx, path):
            continue
        matches.append(_relative(ctx, path))
        if len(matches) >= args.max_results:
            break
    return {"files": matches}


def _iter_files(base: Path):
    if base.is_file():
        yield base
        return
    for path in sorted(base.rglob("*")):
        if path.is_file():
            yield path


def grep(args: GrepArgs, ctx: ToolContext) -> dict[str, list[str]]:
    """正则搜索文件内容，返回 `file:line: text`。二进制/非 UTF-8 文件跳过。"""
    if args.max_results <= 0:
        raise ToolError("max_results must be > 0")
    try:
        regex = re.compile(args.pattern)
    except re.error as exc:
        raise ToolError(f"invalid regex: {exc}") from exc
    base = resolve_in_root(ctx, args.path)
    if not base.exists():
        raise ToolError(f"path not found: {args.path}")

    matches: list[str] = []
    for path in _iter_files(base):
        if _is_skipped(ctx, path):
            continue
        try:
            text = path.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError):
            continue
        for line_no, line in enumerate(text.splitlines(), start=1):
            if regex.search(line):
                matches.append(f"{_relative(ctx, path)}:{line_no}: {line.strip()[:200]}")
                if len(matches) >= args.max_results:
                    return {"matches": matches}
    return {"matches": matches}


def read_file(args: ReadFileArgs, ctx: ToolContext) -> str:
    """读文件的 [offset, offset+limit) 行，带行号前缀。"""
    if args.offset < 0 or args.limit <= 0:
        raise ToolError("offset must be >= 0 and limit must be > 0")
    path = resolve_in_root(ctx, args.path)
    if not path.is_file():
        raise ToolError(f"file not found: {args.path}")
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except UnicodeDecodeError as exc:
        raise ToolError(f"not a text file: {args.path}") from exc
    selected = lines[args.offset : args.offset + args.limit]
    numbered = [f"{args.offset + i + 1}\t{line}" for i, line in enumerate(selected)]
    if args.offset + args.limit < len(lines):
        numbered.append(f"... ({len(lines) - args.offset - args.limit} more lines)")
    return "\n".join(numbered)


def list_dir(args: ListDirArgs, ctx: ToolContext) -> dict[str, list[str]]:
    """列目录；子目录带 `/` 后缀。"""
    path = resolve_in_root(ctx, args.path)
    if not path.is_dir():
        raise ToolError(f"directory not found: {args.path}")
    entries = [f"{p.name}/" if p.is_dir() else p.name for p in sorted(path.iterdir()) if p.name not in SKIP_DIRS]
    return {"entries": entries}
