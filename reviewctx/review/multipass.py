"""
Multi-Pass Orchestrator。

流程（严格顺序，只有第 1 步内部并发）：
1. 每个 focus 一个 review agent，并发调用 LLM；单个 agent 失败 = 0 条 finding
2. 跨 agent 去重：key = (file, line, issue 前 50 字符小写)，冲突保留严重程度更高的
3. 没有 finding 直接 SHIP（不调打分）；否则一次批量打分，打分失败统一给 75
4. 按阈值过滤
5. 由过滤后的 finding 推导 risk level 和 verdict（两张独立的表）
"""

from __future__ import annotations

import logging

import anyio

from reviewctx.llm.claude_cli import InvalidModelError
from reviewctx.llm.claude_cli import validate_model
from reviewctx.llm.client import ChatMessage
from reviewctx.llm.client import LLMBackend
from reviewctx.review.models import SEVERITY_RANK
from reviewctx.review.models import Finding
from reviewctx.review.models import MultiPassConfig
from reviewctx.review.models import MultiPassResult
from reviewctx.review.models import MultiPassSummary
from reviewctx.review.models import RiskLevel
from reviewctx.review.models import Verdict
from reviewctx.review.parsing import parse_findings
from reviewctx.review.parsing import parse_scores
from reviewctx.review.prompts import build_focused_prompt
from reviewctx.review.prompts import build_scoring_prompt
from reviewctx.review.synthesis import NO_FINDINGS_OUTPUT
from reviewctx.review.synthesis import synthesize_multipass_report

logger = logging.getLogger(__name__)

DEFAULT_FOCUSES: tuple[str, ...] = ("correctness", "security", "simplicity")
DEDUP_ISSUE_PREFIX = 50
SCORING_FALLBACK_CONFIDENCE = 75
MISSING_SCORE_CONFIDENCE = 50

DEFAULT_MULTIPASS_CONFIG = MultiPassConfig()


def dedup_key(finding: Finding) -> tuple[str, str, str]:
    line = str(finding.line) if finding.line is not None else ""
    return (finding.file, line, finding.issue.lower()[:DEDUP_ISSUE_PREFIX])


def deduplicate_findings(findings: list[Finding]) -> list[Finding]:
    """同 key 只留一条：严重程度高的胜出，相同严重程度保留先出现的。输出保持首次出现的顺序。"""
    seen: dict[tuple[str, str, str], Finding] = {}
    for finding in findings:
        key = dedup_key(finding)
        existing = seen.get(key)
        if existing is None or SEVERITY_RANK[finding.severity] > SEVERITY_RANK[existing.severity]:
            seen[key] = finding
    return list(seen.values())


def _counts(findings: list[Finding]) -> tuple[int, int]:
    critical = sum(1 for f in findings if f.severity == "critical")
    major = sum(1 for f in findings if f.severity == "major")
    return critical, major


def determine_risk_level(findings: list[Finding]) -> RiskLevel:
    critical, major = _counts(findings)
    if critical > 0:
        return "high"
    if major > 2:
        return "high"
    if major > 0:
        return "medium"
    return "low"


def determine_verdict(findings: list[Finding]) -> Verdict:
    critical, major = _counts(findings)
    if critical > 0:
        return "MAJOR_RETHINK"
    if major > 2:
        return "NEEDS_WORK"
    if major > 0:
        return "NEEDS_WORK"
    return "SHIP"


def count_files_reviewed(context_xml: str) -> int:
    return context_xml.count('<file path="')


async def _run_focus_agent(llm: LLMBackend, focus: str, context_xml: str, model: str | None) -> list[Finding]:
    prompt = build_focused_prompt(focus=focus, context_xml=context_xml)
    try:
        output = await llm.complete_text(messages=[ChatMessage(role="user", content=prompt)], model=model)
    except InvalidModelError:
        raise
    except Exception as exc:
        logger.warning(f"Review agent ({focus}) failed: {exc}")
        return []
    findings = parse_findings(output, focus=focus)
    logger.info(f"Review agent ({focus}) returned {len(findings)} finding(s)")
    return findings


async def _run_review_agents(
    llm: LLMBackend, focuses: list[str], context_xml: str, model: str | None, parallel_agents: int
) -> list[Finding]:
    # 按 focus 下标收集，合并顺序与完成顺序无关；同时在跑的 agent 不超过 parallel_agents
    results: list[list[Finding]] = [[] for _ in focuses]
    limiter = anyio.CapacityLimiter(parallel_agents)

    async def _agent(index: int, focus: str) -> None:
        async with limiter:
            results[index] = await _run_focus_agent(llm, focus, context_xml, model)

    async with anyio.create_task_group() as tg:
        for index, focus in enumerate(focuses):
            tg.start_soon(_agent, index, focus)

    return [finding for agent_findings in results for finding in agent_findings]


async def score_findings(llm: LLMBackend, findings: list[Finding], model: str | None) -> list[Finding]:
    """
    一次批量打分。

    - 打分调用失败：全部 finding 给 75
    - 某条 finding 没拿到分数：给 50
    """
    try:
        output = await llm.complete_text(
            messages=[ChatMessage(role="user", content=build_scoring_prompt(findings))],
            model=model,
        )
    except InvalidModelError:
        raise
    except Exception as exc:
        logger.warning(f"Confidence scoring failed, using fallback {SCORING_FALLBACK_CONFIDENCE}: {exc}")
        return [f.model_copy(update={"confidence": SCORING_FALLBACK_CONFIDENCE}) for f in findings]

    scores = parse_scores(output)
    return [
        f.model_copy(update={"confidence": scores.get(i, MISSING_SCORE_CONFIDENCE)}) for i, f in enumerate(findings)
    ]


async def run_multi_pass_review(
    context_xml: str,
    config: MultiPassConfig,
    llm: LLMBackend,
) -> MultiPassResult:
    """
    跑一次 multi-pass review。

    - context_xml：已经组装好的上下文文档（builder 输出）
    - config：focus 列表、置信度阈值、各阶段模型
    - llm：后端；单次调用失败在本函数内部降级，不向外抛
    - 模型名非法属于配置错误：在发出任何调用之前抛 `InvalidModelError`
    """
    for model in (config.review_model, config.scoring_model):
        if model is not None:
            validate_model(model)

    focuses = list(config.focuses) or list(DEFAULT_FOCUSES)
    files_reviewed = count_files_reviewed(context_xml)

    logger.info(f"Running {len(focuses)} parallel review agents: {', '.join(focuses)}")
    all_findings = deduplicate_findings(await _run_review_agents(
        llm, focuses, context_xml, config.review_model, config.parallel_agents
    ))
    logger.info(f"Found {len(all_findings)} unique finding(s)")

    if not all_findings:
        return MultiPassResult(
            findings=[],
            summary=MultiPassSummary(
                files_reviewed=files_reviewed,
                total_findings=0,
                filtered_findings=0,
                risk_level="low",
            ),
            verdict="SHIP",
            raw_output=NO_FINDINGS_OUTPUT,
        )

    logger.info("Scoring confidence on findings")
    scored = await score_findings(llm, all_findings, config.scoring_model)

    filtered = [f for f in scored if (f.confidence or 0) >= config.confidence_threshold]
    logger.info(f"Filtered to {len(filtered)} finding(s) (confidence >= {config.confidence_threshold})")

    risk_level = determine_risk_level(filtered)
    verdict = determine_verdict(filtered)
    raw_output = synthesize_multipass_report(
        findings=filtered,
        total_findings=len(scored),
        risk_level=risk_level,
        verdict=verdict,
    )

    return MultiPassResult(
        findings=filtered,
        summary=MultiPassSummary(
            files_reviewed=files_reviewed,
            total_findings=len(scored),
            filtered_findings=len(filtered),
            risk_level=risk_level,
        ),
        verdict=verdict,
        raw_output=raw_output,
    )
