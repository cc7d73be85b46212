"""
Review HTTP 接入层。

职责：
- 解析请求 -> Pydantic schema（类型安全）
- 调用业务 runner（真正的 review 流程在 orchestrator 里）
- 配置类错误（非法 task id / 模型名）转成 400
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import APIRouter
from fastapi import HTTPException

from reviewctx.review.orchestrator import ReviewOutcome
from reviewctx.review.orchestrator import ReviewRequest
from reviewctx.review.strategy import ReviewStrategy
from reviewctx.review.strategy import StrategyContext
from reviewctx.review.strategy import select_strategy

logger = logging.getLogger(__name__)

ReviewRunner = Callable[[ReviewRequest], Awaitable[ReviewOutcome]]


def build_review_router(runner: ReviewRunner) -> APIRouter:
    """创建 review 路由。"""
    router = APIRouter()

    @router.post("/review")
    async def review(request: ReviewRequest) -> ReviewOutcome:
        try:
            return await runner(request)
        except ValueError as exc:
            logger.warning(f"Rejected review request: {exc}")
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @router.post("/strategy")
    async def strategy(ctx: StrategyContext) -> ReviewStrategy:
        # 纯函数，不碰 git/LLM
        return select_strategy(ctx)

    return router
