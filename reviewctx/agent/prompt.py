from __future__ import annotations

TOOL_USAGE: dict[str, str] = {
    "glob_files": '{"pattern": "**/*.py", "max_results": 200}',
    "grep": '{"pattern": "regex", "path": ".", "max_results": 100}',
    "read_file": '{"path": "relative/path", "offset": 0, "limit": 400}',
    "list_dir": '{"path": "."}',
}


def build_react_instructions(allowed_tools: frozenset[str]) -> str:
    usage = "".join(f"- {name}: {TOOL_USAGE[name]}\n" for name in sorted(allowed_tools) if name in TOOL_USAGE)
    return (
        "You are a code review agent. You may call tools, but you must follow these rules:\n"
        "- Every reply must be pure JSON\n"
        '- To call a tool: {"kind":"action","call":{"name":"...","args":{...}}}\n'
        '- To finish: {"kind":"final","answer":"..."}\n'
        "- No markdown and no explanatory text outside the JSON.\n"
        "Available tools (paths are relative to the project root, all tools are read-only):\n"
        f"{usage}"
    )
