"""
Strategy Selector（纯函数，不做 I/O）。

按 diff 特征选 review 策略：
- single-pass：小/中等变更，一次 LLM 调用
- multi-pass：大变更、安全审查、高复杂度，多个视角并行 + 置信度打分
- exploration：audit 这类范围未知的任务，让模型自己用只读工具去找

规则是**有序**的，第一个命中的生效。
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

StrategyType = Literal["single-pass", "multi-pass", "exploration"]
ReviewType = Literal["implementation", "plan", "security", "audit"]

DEFAULT_FOCUSES: tuple[str, ...] = ("correctness", "security", "simplicity")
SECURITY_FOCUSES: tuple[str, ...] = ("security", "auth", "injection")
COMPLEXITY_FOCUSES: tuple[str, ...] = ("correctness", "edge-cases", "simplicity")
DEFAULT_CONFIDENCE_THRESHOLD = 80
SECURITY_CONFIDENCE_THRESHOLD = 90
EXPLORATION_MAX_ITERATIONS = 50
LARGE_CHANGE_FILES = 10
SMALL_CHANGE_FILES = 3
SMALL_CHANGE_LINES = 500
HIGH_COMPLEXITY = 15


class StrategyFlags(BaseModel):
    thorough: bool = False
    quick: bool = False


class StrategyContext(BaseModel):
    files_changed: list[str] = Field(default_factory=list)
    lines_added: int = 0
    lines_removed: int = 0
    has_task_spec: bool = False
    task_spec_path: str | None = None
    review_type: ReviewType | None = None
    flags: StrategyFlags | None = None
    avg_complexity: float | None = None


class StrategyConfig(BaseModel):
    include_spec: bool
    include_guidelines: bool
    include_code_maps: bool
    parallel_agents: int | None = None
    focuses: list[str] | None = None
    confidence_threshold: int | None = None
    use_tools: bool = False
    max_iterations: int | None = None


class ReviewStrategy(BaseModel):
    type: StrategyType
    reason: str
    config: StrategyConfig


def _multi_pass(reason: str, include_spec: bool, focuses: tuple[str, ...], threshold: int) -> ReviewStrategy:
    return ReviewStrategy(
        type="multi-pass",
        reason=reason,
        config=StrategyConfig(
            include_spec=include_spec,
            include_guidelines=True,
            include_code_maps=True,
            parallel_agents=len(focuses),
            focuses=list(focuses),
            confidence_threshold=threshold,
        ),
    )


def _single_pass(reason: str, include_spec: bool, include_code_maps: bool) -> ReviewStrategy:
    return ReviewStrategy(
        type="single-pass",
        reason=reason,
        config=StrategyConfig(
            include_spec=include_spec,
            include_guidelines=True,
            include_code_maps=include_code_maps,
        ),
    )


def select_strategy(ctx: StrategyContext) -> ReviewStrategy:
    """
    决策顺序（先命中先返回）：
    1. --thorough -> multi-pass
    2. --quick -> single-pass（不要 code map）
    3. audit -> exploration
    4. 变更文件 > 10 -> multi-pass
    5. security review -> multi-pass（更高置信度阈值）
    6. 平均复杂度 > 15 -> multi-pass
    7. <= 3 个文件且 < 500 行 -> single-pass（不要 code map）
    8. 其他 -> single-pass（带 code map）
    """
    file_count = len(ctx.files_changed)
    total_lines = ctx.lines_added + ctx.lines_removed
    flags = ctx.flags or StrategyFlags()

    if flags.thorough:
        return _multi_pass("--thorough flag", True, DEFAULT_FOCUSES, DEFAULT_CONFIDENCE_THRESHOLD)

    if flags.quick:
        return _single_pass("--quick flag", ctx.has_task_spec, include_code_maps=False)

    if ctx.review_type == "audit":
        return ReviewStrategy(
            type="exploration",
            reason="Audit requires discovery",
            config=StrategyConfig(
                include_spec=False,
                include_guidelines=True,
                include_code_maps=False,
                use_tools=True,
                max_iterations=EXPLORATION_MAX_ITERATIONS,
            ),
        )

    if file_count > LARGE_CHANGE_FILES:
        return _multi_pass(
            f"{file_count} files changed", ctx.has_task_spec, DEFAULT_FOCUSES, DEFAULT_CONFIDENCE_THRESHOLD
        )

    if ctx.review_type == "security":
        return _multi_pass("Security review", ctx.has_task_spec, SECURITY_FOCUSES, SECURITY_CONFIDENCE_THRESHOLD)

    if ctx.avg_complexity is not None and ctx.avg_complexity > HIGH_COMPLEXITY:
        return _multi_pass(
            f"High complexity (avg {round(ctx.avg_complexity)})",
            ctx.has_task_spec,
            COMPLEXITY_FOCUSES,
            DEFAULT_CONFIDENCE_THRESHOLD,
        )

    if file_count <= SMALL_CHANGE_FILES and total_lines < SMALL_CHANGE_LINES:
        return _single_pass(
            f"Small change ({file_count} files, {total_lines} lines)", ctx.has_task_spec, include_code_maps=False
        )

    return _single_pass(f"Medium change ({file_count} files)", ctx.has_task_spec, include_code_maps=True)


def format_strategy(strategy: ReviewStrategy) -> str:
    """日志用的一行摘要。"""
    parts = [f"Strategy: {strategy.type}", f"({strategy.reason})"]
    if strategy.config.parallel_agents:
        parts.append(f"[{strategy.config.parallel_agents} agents]")
    if strategy.config.confidence_threshold:
        parts.append(f"[confidence >= {strategy.config.confidence_threshold}]")
    return " ".join(parts)
