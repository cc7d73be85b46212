from __future__ import annotations

"""
最小 ReAct runtime（受控）。

设计目标：
- **你写流程**：外部决定 max_steps、提供 tool_executor、控制预算
- **模型只输出结构化指令**：JSON-only（action 或 final）
- **工具必须确定性**：可测试、可复现；参数非法时把错误作为 observation 回给模型
"""

import json
import logging
from collections.abc import Callable

import anyio
from pydantic import TypeAdapter

from reviewctx.agent.prompt import build_react_instructions
from reviewctx.agent.schemas import AgentAction
from reviewctx.agent.schemas import AgentFinal
from reviewctx.agent.schemas import AgentStep
from reviewctx.agent.schemas import ToolContext
from reviewctx.agent.tools.filesystem import ToolError
from reviewctx.llm.client import ChatMessage
from reviewctx.llm.client import LLMBackend

logger = logging.getLogger(__name__)

STEP_LIMIT_ANSWER = "Review incomplete (step limit reached)"

ToolExecutor = Callable[[AgentAction, ToolContext], object]

_STEP_ADAPTER: TypeAdapter[AgentStep] = TypeAdapter(AgentStep)


async def run_react_agent(
    llm_client: LLMBackend,
    user_prompt: str,
    tool_ctx: ToolContext,
    tool_executor: ToolExecutor,
    max_steps: int,
    model: str | None = None,
) -> str:
    """
    运行受控 ReAct loop。

    - 输入：用户提示、工具上下文、工具执行器、最大步数（= 最多调用 LLM 的次数）
    - 输出：最终的自然语言审查结论（由模型在 final.answer 给出）
    - 失败：模型输出非 JSON/不符合 schema 会直接抛错（不要继续执行）
    """
    if max_steps <= 0:
        raise ValueError("max_steps must be > 0")

    messages: list[ChatMessage] = [
        ChatMessage(role="system", content=build_react_instructions(tool_ctx.allowed_tools)),
        ChatMessage(role="user", content=user_prompt),
    ]

    for step_no in range(max_steps):
        # 1) 让模型给出下一步：action 或 final（必须 JSON-only）
        raw = await llm_client.complete_text(messages=messages, model=model)
        step = _parse_agent_step(raw=raw)

        if isinstance(step, AgentFinal):
            logger.info(f"Agent finished after {step_no} tool call(s)")
            return step.answer

        # 2) 执行工具（确定性；文件 I/O 放到线程里）
        logger.info(f"Agent step {step_no + 1}: {step.call.name}")
        observation = await _execute(tool_executor, step, tool_ctx)

        # 3) 把模型的 action 原文和 observation 回填给模型，进入下一轮
        messages.append(ChatMessage(role="assistant", content=raw))
        messages.append(
            ChatMessage(
                role="user",
                content=f'{{"observation": {json.dumps(observation, ensure_ascii=False)}}}',
            )
        )

    logger.warning(f"Agent stopped at step limit ({max_steps})")
    return STEP_LIMIT_ANSWER


async def _execute(tool_executor: ToolExecutor, action: AgentAction, ctx: ToolContext) -> object:
    try:
        return await anyio.to_thread.run_sync(tool_executor, action, ctx)
    except (ToolError, OSError) as exc:
        logger.info(f"Tool {action.call.name} rejected: {exc}")
        return {"error": str(exc)}


def _strip_fence(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```") and text.endswith("```"):
        text = text[3:-3]
        if text.startswith("json"):
            text = text[4:]
    return text.strip()


def _parse_agent_step(raw: str) -> AgentStep:
    """将模型输出的 JSON 解析为 `AgentStep`（action/final）。"""
    try:
        parsed = json.loads(_strip_fence(raw))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Agent output is not valid JSON. Raw: {raw}") from exc
    return _STEP_ADAPTER.validate_python(parsed)
