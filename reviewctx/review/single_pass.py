"""Single-pass review：一次 LLM 调用，结果保证以一个 `<verdict>` 结尾。"""

from __future__ import annotations

import logging

from reviewctx.llm.client import ChatMessage
from reviewctx.llm.client import LLMBackend
from reviewctx.review.models import SinglePassResult
from reviewctx.review.parsing import ensure_single_verdict
from reviewctx.review.parsing import parse_verdict
from reviewctx.review.prompts import build_single_pass_prompt

logger = logging.getLogger(__name__)

MISSING_VERDICT = "NEEDS_WORK"


async def run_single_pass_review(
    llm: LLMBackend,
    skill_prompt: str,
    user_prompt: str,
    context_xml: str,
    model: str | None = None,
) -> SinglePassResult:
    """后端失败直接抛（single-pass 没有可以降级的“其他 agent”）。"""
    prompt = build_single_pass_prompt(skill_prompt=skill_prompt, user_prompt=user_prompt, context_xml=context_xml)
    response = await llm.complete_text(messages=[ChatMessage(role="user", content=prompt)], model=model)

    verdict = parse_verdict(response)
    if verdict is None:
        logger.warning(f"Single-pass response carried no verdict, defaulting to {MISSING_VERDICT}")
        verdict = MISSING_VERDICT
    return SinglePassResult(review=ensure_single_verdict(response, verdict), verdict=verdict)
