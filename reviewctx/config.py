"""
应用配置加载。

设计目标：
- **严格**：配置不完整/非法就直接报错（避免“看起来跑了其实没配置好”）
- **类型安全**：使用 Pydantic 校验 URL/字符串等，减少运行时踩坑
- **可测试**：核心加载函数接收 `environ` 显式输入，便于单元测试
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, HttpUrl

from reviewctx.llm.claude_cli import validate_model

DEFAULT_MAX_TOKENS = 50_000
DEFAULT_BASE_BRANCH = "main"
DEFAULT_LLM_TIMEOUT_SECONDS = 600


class LLMConfig(BaseModel):
    """OpenAI-compatible LLM 配置（三项要么全填，要么全不填）。"""

    base_url: HttpUrl
    api_key: str
    model: str


class ClaudeCliConfig(BaseModel):
    """Claude CLI 后端配置。"""

    binary: str = "claude"
    review_model: str | None = None
    scoring_model: str | None = None
    timeout_seconds: int = DEFAULT_LLM_TIMEOUT_SECONDS


class ReviewSettings(BaseModel):
    """review 流程本身的参数。"""

    max_tokens: int = DEFAULT_MAX_TOKENS
    base_branch: str = DEFAULT_BASE_BRANCH
    project_root: str
    tldr_enabled: bool = False


class AppConfig(BaseModel):
    """应用运行配置：LLM 后端 + review 参数。"""

    llm: LLMConfig | None
    claude: ClaudeCliConfig
    review: ReviewSettings
    log_level: str = "INFO"


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """
    从环境变量加载并校验配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`AppConfig`
    - **失败**：LLM 配置不完整、数字非法、模型名非法都抛 `ValueError`
    """
    return AppConfig(
        llm=_load_llm_config(environ),
        claude=_load_claude_config(environ),
        review=_load_review_settings(environ),
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
    )


def _load_llm_config(environ: Mapping[str, str]) -> LLMConfig | None:
    keys: tuple[str, ...] = ("LLM_BASE_URL", "LLM_API_KEY", "LLM_MODEL")
    present = [key for key in keys if environ.get(key)]
    if not present:
        return None
    missing = [key for key in keys if key not in present]
    if missing:
        raise ValueError(f"Missing required env vars: {', '.join(missing)}")
    # 交给 Pydantic 做类型校验（例如 URL 合法性）
    return LLMConfig(
        base_url=environ["LLM_BASE_URL"],
        api_key=environ["LLM_API_KEY"],
        model=environ["LLM_MODEL"],
    )


def _load_claude_config(environ: Mapping[str, str]) -> ClaudeCliConfig:
    review_model = environ.get("REVIEW_MODEL") or None
    scoring_model = environ.get("SCORING_MODEL") or None
    # 模型名属于配置错误：启动时就失败，而不是等到 review 时
    for model in (review_model, scoring_model):
        if model is not None:
            validate_model(model)
    return ClaudeCliConfig(
        binary=environ.get("CLAUDE_BIN") or "claude",
        review_model=review_model,
        scoring_model=scoring_model,
        timeout_seconds=_int_env(environ, "LLM_TIMEOUT_SECONDS", DEFAULT_LLM_TIMEOUT_SECONDS),
    )


def _load_review_settings(environ: Mapping[str, str]) -> ReviewSettings:
    max_tokens = _int_env(environ, "REVIEW_MAX_TOKENS", DEFAULT_MAX_TOKENS)
    if max_tokens <= 0:
        raise ValueError("REVIEW_MAX_TOKENS must be > 0")
    return ReviewSettings(
        max_tokens=max_tokens,
        base_branch=environ.get("REVIEW_BASE_BRANCH") or DEFAULT_BASE_BRANCH,
        project_root=environ.get("REVIEW_PROJECT_ROOT") or os.getcwd(),
        tldr_enabled=environ.get("TLDR_ENABLED", "").lower() in ("1", "true", "yes"),
    )


def _int_env(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from exc
