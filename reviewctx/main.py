"""
FastAPI 服务入口。

这里做三件事：
- 加载配置（严格校验环境变量）
- 组装外部依赖（HTTP Client / LLM 后端 / 结构分析 / re-review 状态）
- 装配路由（health + review + strategy）

注意：
- 业务流程不写在这里（由 `review/orchestrator.py` 负责）
- `httpx.AsyncClient` 会被复用（避免每个请求新建连接）
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

import httpx
import uvicorn
from fastapi import FastAPI

from reviewctx.analysis.local import LocalCodeAnalyzer
from reviewctx.analysis.models import CodeAnalyzer
from reviewctx.analysis.tldr import TldrClient
from reviewctx.api.router import build_review_router
from reviewctx.config import AppConfig
from reviewctx.config import load_config_from_env
from reviewctx.infra.state import InMemoryReviewStateStore
from reviewctx.llm.claude_cli import ClaudeCliClient
from reviewctx.llm.client import LLMBackend
from reviewctx.llm.client import OpenAICompatLLMClient
from reviewctx.review.orchestrator import ReviewOrchestrator

logger = logging.getLogger(__name__)


def build_llm_backend(config: AppConfig, http_client: httpx.AsyncClient) -> LLMBackend:
    """配了 OpenAI-compatible 网关就走 HTTP，否则走本机 Claude CLI。"""
    if config.llm is not None:
        return OpenAICompatLLMClient(
            api_key=config.llm.api_key,
            base_url=str(config.llm.base_url).rstrip("/"),
            http_client=http_client,
            model=config.llm.model,
        )
    return ClaudeCliClient(
        binary=config.claude.binary,
        default_model=config.claude.review_model,
        timeout_seconds=config.claude.timeout_seconds,
    )


def build_analyzer(config: AppConfig) -> CodeAnalyzer:
    if config.review.tldr_enabled:
        client = TldrClient()
        if client.is_available():
            return client
        logger.warning("TLDR_ENABLED is set but uvx is not on PATH, using tree-sitter analyzer")
    return LocalCodeAnalyzer()


def build_app(environ: Mapping[str, str] | None = None) -> FastAPI:
    """创建并返回 FastAPI app（便于测试/复用）。"""

    # 1) 配置：缺失/非法会直接抛错，启动失败（这是期望行为）
    config = load_config_from_env(os.environ if environ is None else environ)
    logging.basicConfig(level=config.log_level.upper())

    # 2) 可复用的 HTTP client：供 LLM 调用使用
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(float(config.claude.timeout_seconds)))

    # 3) 组装 orchestrator：流程由代码控制，LLM 只负责生成文本
    # REVIEW_MODEL / SCORING_MODEL 是 Claude CLI 的模型名，只对 CLI 后端生效
    use_cli = config.llm is None
    orchestrator = ReviewOrchestrator(
        llm=build_llm_backend(config, http_client),
        analyzer=build_analyzer(config),
        store=InMemoryReviewStateStore(),
        settings=config.review,
        review_model=config.claude.review_model if use_cli else None,
        scoring_model=config.claude.scoring_model if use_cli else None,
    )

    app = FastAPI(title="Review Context Engine", version="0.1.0")

    @app.get("/health")
    async def health() -> dict[str, str]:
        """健康检查：用于 k8s / LB 探活。"""
        return {"status": "ok"}

    app.include_router(build_review_router(runner=orchestrator.run_review))
    return app


# Uvicorn 默认会从模块级变量 `app` 读取 ASGI 应用
app = build_app()


def main() -> None:
    uvicorn.run(app, host="127.0.0.1", port=8000)


if __name__ == "__main__":
    main()
