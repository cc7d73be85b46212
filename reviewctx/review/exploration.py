"""
Exploration Orchestrator（范围未知的 audit）。

不预先打包上下文：把只读工具交给模型，由受控 ReAct loop 自己探索仓库。
运行期失败（后端报错、输出不是合法 JSON）降级为 `Exploration failed: ...` + NEEDS_WORK；
模型名非法属于配置错误，直接抛 `InvalidModelError`。
"""

from __future__ import annotations

import logging

from reviewctx.agent.runtime import run_react_agent
from reviewctx.agent.schemas import READ_ONLY_TOOLS
from reviewctx.agent.schemas import ToolContext
from reviewctx.agent.tools.registry import execute_tool
from reviewctx.llm.claude_cli import InvalidModelError
from reviewctx.llm.claude_cli import validate_model
from reviewctx.llm.client import LLMBackend
from reviewctx.review.models import ExplorationConfig
from reviewctx.review.models import ExplorationResult
from reviewctx.review.parsing import ensure_single_verdict
from reviewctx.review.parsing import parse_files_examined
from reviewctx.review.parsing import parse_verdict
from reviewctx.review.prompts import build_exploration_prompt

logger = logging.getLogger(__name__)

DEFAULT_VERDICT = "NEEDS_WORK"


async def run_exploration_review(config: ExplorationConfig, llm: LLMBackend) -> ExplorationResult:
    logger.info(f"Starting exploration review in {config.root_path} (focus: {config.focus})")
    if config.model is not None:
        validate_model(config.model)
    tool_ctx = ToolContext(root=config.root_path, allowed_tools=READ_ONLY_TOOLS)

    try:
        # 最多 max_iterations 次工具调用，再留一步给 final answer
        output = await run_react_agent(
            llm_client=llm,
            user_prompt=build_exploration_prompt(config),
            tool_ctx=tool_ctx,
            tool_executor=execute_tool,
            max_steps=config.max_iterations + 1,
            model=config.model,
        )
    except InvalidModelError:
        raise
    except Exception as exc:
        logger.warning(f"Exploration failed: {exc}")
        return ExplorationResult(
            review=ensure_single_verdict(f"Exploration failed: {exc}", DEFAULT_VERDICT),
            files_examined=[],
            verdict=DEFAULT_VERDICT,
        )

    verdict = parse_verdict(output) or DEFAULT_VERDICT
    return ExplorationResult(
        review=ensure_single_verdict(output, verdict),
        files_examined=parse_files_examined(output),
        verdict=verdict,
    )
