"""
Review Orchestrator（核心流程编排）。

关键思想：
- **流程由工程代码控制**：detect -> diff stats -> select strategy -> build context -> review -> record
- **LLM 只负责生成文本**：finding / score / verdict 都从 tag 里解析，解析失败有兜底

三种策略：
- single-pass：一次调用
- multi-pass：多个 focus 并行 + 置信度打分
- exploration：不打包上下文，交给带只读工具的 agent
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Sequence
from dataclasses import dataclass

import anyio
from pydantic import BaseModel, Field

from reviewctx.analysis.complexity import average_complexity
from reviewctx.analysis.models import CodeAnalyzer
from reviewctx.config import ReviewSettings
from reviewctx.context.builder import ContextBuildOptions
from reviewctx.context.builder import build_optimized_context
from reviewctx.context.builder import format_context_plan_summary
from reviewctx.context.hints import HintOptions
from reviewctx.context.hints import get_formatted_context_hints
from reviewctx.context.models import ContextPlan
from reviewctx.context.models import SourceFile
from reviewctx.context.rereview import ReReviewOptions
from reviewctx.context.rereview import process_rereview
from reviewctx.context.rereview import record_review
from reviewctx.git import diff as git_diff
from reviewctx.infra.state import ReviewStateStore
from reviewctx.llm.client import LLMBackend
from reviewctx.review.exploration import run_exploration_review
from reviewctx.review.models import ExplorationConfig
from reviewctx.review.models import ExplorationFocus
from reviewctx.review.models import MultiPassConfig
from reviewctx.review.models import Verdict
from reviewctx.review.multipass import run_multi_pass_review
from reviewctx.review.prompts import SINGLE_PASS_SKILL_PROMPT
from reviewctx.review.prompts import build_focused_prompt
from reviewctx.review.single_pass import run_single_pass_review
from reviewctx.review.strategy import ReviewStrategy
from reviewctx.review.strategy import ReviewType
from reviewctx.review.strategy import StrategyContext
from reviewctx.review.strategy import StrategyFlags
from reviewctx.review.strategy import format_strategy
from reviewctx.review.strategy import select_strategy
from reviewctx.review.task_spec import format_guidelines_xml
from reviewctx.review.task_spec import format_spec_xml
from reviewctx.review.task_spec import get_spec_path
from reviewctx.review.task_spec import load_guidelines
from reviewctx.review.task_spec import load_task_spec

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = "Review the changes on this branch."


class ReviewRequest(BaseModel):
    """一次 review 请求（HTTP body 直接映射成这个模型）。"""

    prompt: str = DEFAULT_PROMPT
    files: list[str] | None = None
    chat_id: str | None = None
    is_rereview: bool | None = None
    review_type: ReviewType | None = None
    task_id: str | None = None
    flags: StrategyFlags = Field(default_factory=StrategyFlags)
    base_branch: str | None = None
    include_git_diff: bool = True
    avg_complexity: float | None = None
    focus: ExplorationFocus = "general"


class ContextPlanSummary(BaseModel):
    full_files: int
    code_mapped_files: int
    excluded_files: int
    total_tokens: int
    diff_dropped: bool


class ReviewOutcome(BaseModel):
    chat_id: str
    review: str
    verdict: Verdict
    strategy: ReviewStrategy
    plan: ContextPlanSummary | None = None
    is_rereview: bool = False
    rereview_files: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class ReviewOrchestrator:
    """Orchestrator 运行时依赖集合：LLM 后端、结构分析、re-review 状态、review 参数。"""

    llm: LLMBackend
    analyzer: CodeAnalyzer
    store: ReviewStateStore
    settings: ReviewSettings
    review_model: str | None = None
    scoring_model: str | None = None

    async def run_review(self, request: ReviewRequest) -> ReviewOutcome:
        """
        跑一次完整 review。

        - 降级路径（git 失败、分析失败、单个 agent 失败）都在下层处理掉
        - 配置类错误（非法 task id、非法模型）直接抛给调用方
        """
        root = self.settings.project_root
        base = request.base_branch or self.settings.base_branch
        chat_id = request.chat_id or str(uuid.uuid4())

        rereview = await process_rereview(
            ReReviewOptions(
                chat_id=request.chat_id,
                is_rereview=request.is_rereview,
                base_branch=base,
                review_type=request.review_type,
                cwd=root,
            ),
            self.store,
        )

        stats = await git_diff.get_diff_stats(base=base, cwd=root)
        spec = await load_task_spec(request.task_id, root) if request.task_id else None
        avg_complexity = request.avg_complexity
        if avg_complexity is None:
            avg_complexity = await average_complexity(stats.files, self.analyzer, root)

        strategy = select_strategy(
            StrategyContext(
                files_changed=stats.files,
                lines_added=stats.additions,
                lines_removed=stats.deletions,
                has_task_spec=spec is not None,
                task_spec_path=str(get_spec_path(spec.task_id, root)) if spec else None,
                review_type=request.review_type,
                flags=request.flags,
                avg_complexity=avg_complexity,
            )
        )
        logger.info(format_strategy(strategy))

        guidelines = await load_guidelines(root) if strategy.config.include_guidelines else None

        if strategy.type == "exploration":
            result = await run_exploration_review(
                ExplorationConfig(
                    root_path=root,
                    base_branch=base,
                    max_iterations=strategy.config.max_iterations or 50,
                    focus=request.focus,
                    guidelines=guidelines,
                    model=self.review_model,
                ),
                self.llm,
            )
            record_review(self.store, chat_id, result.files_examined)
            return ReviewOutcome(
                chat_id=chat_id,
                review=result.review,
                verdict=result.verdict,
                strategy=strategy,
                is_rereview=rereview.is_rereview,
                rereview_files=rereview.changed_files or [],
            )

        paths = request.files if request.files is not None else stats.files
        sources = await _load_source_files(paths, root)
        contents = {f.path: f.content for f in sources}

        hints = await get_formatted_context_hints(
            HintOptions(changed_files=stats.files, file_contents=contents), self.analyzer, root
        )
        prompt = _compose_prompt(
            request.prompt,
            preamble=rereview.preamble,
            spec_xml=format_spec_xml(spec) if strategy.config.include_spec else "",
            guidelines_xml=format_guidelines_xml(guidelines),
            hints=hints,
        )

        focuses = strategy.config.focuses or []
        skill_prompt = build_focused_prompt(focuses[0], "") if strategy.type == "multi-pass" else SINGLE_PASS_SKILL_PROMPT
        built = await build_optimized_context(
            files=sources,
            prompt=prompt,
            skill_prompt=skill_prompt,
            options=ContextBuildOptions(
                max_tokens=self.settings.max_tokens,
                base_branch=base,
                root_path=root,
                include_git_diff=request.include_git_diff,
                include_code_maps=strategy.config.include_code_maps,
                changed_files=stats.files,
            ),
            analyzer=self.analyzer,
        )
        logger.info(format_context_plan_summary(built.plan))

        if strategy.type == "multi-pass":
            result = await run_multi_pass_review(
                context_xml=built.xml,
                config=MultiPassConfig(
                    parallel_agents=strategy.config.parallel_agents or max(len(focuses), 1),
                    focuses=focuses,
                    confidence_threshold=strategy.config.confidence_threshold or 80,
                    review_model=self.review_model,
                    scoring_model=self.scoring_model,
                ),
                llm=self.llm,
            )
            review, verdict = result.raw_output, result.verdict
        else:
            single = await run_single_pass_review(
                llm=self.llm,
                skill_prompt=SINGLE_PASS_SKILL_PROMPT,
                # 请求和 re-review preamble 已经在 context 的 <prompt> 里
                user_prompt="",
                context_xml=built.xml,
                model=self.review_model,
            )
            review, verdict = single.review, single.verdict

        record_review(self.store, chat_id, [f.path for f in sources])
        return ReviewOutcome(
            chat_id=chat_id,
            review=review,
            verdict=verdict,
            strategy=strategy,
            plan=summarize_plan(built.plan),
            is_rereview=rereview.is_rereview,
            rereview_files=rereview.changed_files or [],
        )


def summarize_plan(plan: ContextPlan) -> ContextPlanSummary:
    return ContextPlanSummary(
        full_files=len(plan.full_files),
        code_mapped_files=len(plan.code_mapped_files),
        excluded_files=len(plan.excluded_files),
        total_tokens=plan.total_tokens,
        diff_dropped=plan.diff_dropped,
    )


def _user_request(prompt: str, preamble: str | None) -> str:
    return f"{preamble}{prompt}" if preamble else prompt


def _compose_prompt(prompt: str, preamble: str | None, spec_xml: str, guidelines_xml: str, hints: str) -> str:
    parts = [_user_request(prompt, preamble)]
    parts.extend(p for p in (spec_xml, guidelines_xml, hints) if p)
    return "\n\n".join(parts)


async def _load_source_files(paths: Sequence[str], root: str) -> list[SourceFile]:
    """读不到（被删除、二进制）的文件直接跳过。"""
    sources: list[SourceFile] = []
    for path in paths:
        full_path = path if os.path.isabs(path) else os.path.join(root, path)
        try:
            content = await anyio.Path(full_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.info(f"Skipping unreadable file {path}: {exc}")
            continue
        sources.append(SourceFile(path=path, content=content))
    return sources
