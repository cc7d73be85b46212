"""
Claude CLI 后端（子进程）。

约定：
- prompt 走 stdin，不拼进命令行（避免转义/注入问题）
- 模型名先做白名单校验：非法模型属于配置错误，直接抛 `InvalidModelError`
- 超时在这里强制（`anyio.fail_after`），上层 orchestrator 不做 deadline
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import anyio

from reviewctx.llm.client import ChatMessage

logger = logging.getLogger(__name__)

VALID_MODELS = frozenset(
    {
        "haiku",
        "sonnet",
        "opus",
        "claude-3-haiku-20240307",
        "claude-3-sonnet-20240229",
        "claude-3-opus-20240229",
    }
)


class InvalidModelError(ValueError):
    """模型名不在白名单里。"""

    pass


class ClaudeCliError(RuntimeError):
    """claude 子进程失败（非 0 退出、超时、无法启动）。"""

    pass


def validate_model(model: str) -> str:
    """校验模型名，合法则原样返回。"""
    if model not in VALID_MODELS:
        raise InvalidModelError(f"Invalid model: {model}. Valid models: {', '.join(sorted(VALID_MODELS))}")
    return model


def render_transcript(messages: Sequence[ChatMessage]) -> str:
    """CLI 只接受单段 prompt：多轮消息按角色拼成一段 transcript。"""
    if len(messages) == 1:
        return messages[0].content
    parts: list[str] = []
    for m in messages:
        parts.append(f"[{m.role}]\n{m.content}")
    return "\n\n".join(parts)


class ClaudeCliClient:
    """`claude -p` 的最小封装，实现 `LLMBackend` 协议。"""

    def __init__(self, binary: str = "claude", default_model: str | None = None, timeout_seconds: float = 600) -> None:
        if default_model is not None:
            validate_model(default_model)
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._binary = binary
        self._default_model = default_model
        self._timeout_seconds = timeout_seconds

    def build_command(self, model: str | None) -> list[str]:
        cmd = [self._binary, "-p", "--no-session-persistence"]
        target = model or self._default_model
        if target is not None:
            cmd += ["--model", validate_model(target)]
        return cmd

    async def complete_text(self, messages: Sequence[ChatMessage], model: str | None = None) -> str:
        cmd = self.build_command(model)
        prompt = render_transcript(messages)
        logger.info(f"claude request: model={model or self._default_model or 'default'}, {len(prompt)} chars")
        try:
            with anyio.fail_after(self._timeout_seconds):
                result = await anyio.run_process(cmd, input=prompt.encode("utf-8"), check=False)
        except TimeoutError as exc:
            raise ClaudeCliError(f"claude timed out after {self._timeout_seconds}s") from exc
        except OSError as exc:
            raise ClaudeCliError(f"failed to start {self._binary}: {exc}") from exc

        stdout = result.stdout.decode("utf-8", errors="replace")
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace") if result.stderr else ""
            logger.error(f"claude failed (exit {result.returncode}): {stderr.strip()}")
            raise ClaudeCliError(f"claude exited with {result.returncode}: {stderr.strip() or stdout.strip()}")

        logger.info(f"claude response: {len(stdout)} chars")
        return stdout.strip()
