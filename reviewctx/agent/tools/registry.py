from __future__ import annotations

"""
工具注册/路由。

为什么需要 registry：
- 把“模型输出的 tool name”映射到具体的确定性函数
- 在这里统一做 allow-list 检查：不在 `ToolContext.allowed_tools` 里的工具一律拒绝
"""

from reviewctx.agent.schemas import AgentAction
from reviewctx.agent.schemas import ToolContext
from reviewctx.agent.tools.filesystem import ToolError
from reviewctx.agent.tools.filesystem import glob_files
from reviewctx.agent.tools.filesystem import grep
from reviewctx.agent.tools.filesystem import list_dir
from reviewctx.agent.tools.filesystem import read_file


def execute_tool(action: AgentAction, ctx: ToolContext) -> object:
    """执行一个工具调用，并返回 observation（必须可 JSON 序列化）。"""
    call = action.call
    if call.name not in ctx.allowed_tools:
        raise ToolError(f"Tool not allowed: {call.name}")
    if call.name == "glob_files":
        return glob_files(args=call.args, ctx=ctx)
    if call.name == "grep":
        return grep(args=call.args, ctx=ctx)
    if call.name == "read_file":
        return read_file(args=call.args, ctx=ctx)
    if call.name == "list_dir":
        return list_dir(args=call.args, ctx=ctx)
    raise ToolError(f"Unknown tool: {call.name}")
