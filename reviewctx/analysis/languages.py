from __future__ import annotations

import os

# 扩展名 -> 语言名（语言名同时也是 tree_sitter_language_pack 的 parser 名）
EXTENSION_LANGUAGES: dict[str, str] = {
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
    ".pyw": "python",
    ".svelte": "svelte",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".java": "java",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".swift": "swift",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cxx": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".php": "php",
    ".scala": "scala",
    ".zig": "zig",
    ".lua": "lua",
}


def get_extension(path: str) -> str:
    return os.path.splitext(path)[1].lower()


def infer_language_from_path(path: str) -> str:
    """通过文件扩展名推断语言；不认识的返回 `unknown`。"""
    return EXTENSION_LANGUAGES.get(get_extension(path), "unknown")


def is_supported(path: str) -> bool:
    """能否做符号提取。"""
    return get_extension(path) in EXTENSION_LANGUAGES