"""
LLM Client（基于 OpenAI SDK，对接任意 OpenAI-compatible 网关）。

目标：
- **尽量薄**：只做协议适配与错误处理
- **统一接口**：`LLMBackend` 协议让 orchestrator 不关心后端是 HTTP 还是 CLI 子进程
- **失败直接抛**：是否降级由上游（multi-pass / exploration）决定
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

import httpx
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    """OpenAI chat message 的最小结构。"""

    role: str
    content: str


class LLMBackend(Protocol):
    """review 流程依赖的唯一 LLM 能力：给消息列表，返回文本。"""

    async def complete_text(self, messages: Sequence[ChatMessage], model: str | None = None) -> str: ...


def _normalize_base_url(base_url: str) -> str:
    normalized = base_url.rstrip("/")
    if normalized.endswith("/v1"):
        return normalized
    return f"{normalized}/v1"


class OpenAICompatLLMClient:
    """通过 OpenAI-compatible API（LiteLLM Proxy / vLLM / OpenAI）调用模型。"""

    def __init__(self, api_key: str, base_url: str, http_client: httpx.AsyncClient, model: str) -> None:
        """
        - api_key: LLM API key
        - base_url: OpenAI-compatible base URL
        - http_client: 复用 httpx.AsyncClient 连接池
        - model: 默认模型名（单次调用可以用 `model` 参数覆盖）
        """
        self._base_url = _normalize_base_url(base_url=base_url)
        self._model = model
        self._client = AsyncOpenAI(api_key=api_key, base_url=self._base_url, http_client=http_client)

    async def complete_text(self, messages: Sequence[ChatMessage], model: str | None = None) -> str:
        """
        调用 chat completion 并返回纯文本 content。

        注意：
        - 重试由网关负责，这里不做
        - 出错直接抛异常，便于上游统一处理/降级
        """
        target_model = model or self._model
        try:
            logger.info(f"LLM request: model={target_model}, messages={len(messages)} msg(s)")
            response = await self._client.chat.completions.create(
                model=target_model,
                messages=[m.model_dump() for m in messages],
            )
        except OpenAIError as exc:
            logger.error(f"LLM API error: {exc}")
            raise
        except httpx.HTTPError as exc:
            logger.error(f"LLM HTTP error: {exc}")
            raise

        content = response.choices[0].message.content
        if content is None:
            logger.error("LLM returned None content")
            raise RuntimeError("LLM returned None content")

        logger.info(f"LLM response: {len(content)} chars")
        return str(content)
