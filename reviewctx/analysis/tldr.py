"""
llm-tldr 子进程封装（外部结构分析工具）。

所有命令走 `uvx --from llm-tldr tldr <cmd> ... --json`，输出用 Pydantic 校验。
这里失败就抛 `TldrError`；“降级为空结果”是调用方（codemap/symbols/hints）的职责。
"""

from __future__ import annotations

import json
import logging
import os
import shutil

import anyio
from pydantic import TypeAdapter, ValidationError

from reviewctx.analysis.models import ImpactResult
from reviewctx.analysis.models import SemanticResult
from reviewctx.analysis.models import StructureEntry

logger = logging.getLogger(__name__)

RUNNER: tuple[str, ...] = ("uvx", "--from", "llm-tldr", "tldr")
INSTALL_MESSAGE = (
    "llm-tldr requires uv (Python package runner).\n"
    "Install: curl -LsSf https://astral.sh/uv/install.sh | sh\n"
    "Then retry; llm-tldr is fetched automatically via uvx."
)

_structure_adapter = TypeAdapter(list[StructureEntry])
_semantic_adapter = TypeAdapter(list[SemanticResult])


class TldrError(RuntimeError):
    """tldr 不可用、非 0 退出或输出不是合法 JSON。"""

    pass


class TldrClient:
    """实现 `CodeAnalyzer` 协议，外加 warm/complexity。"""

    def __init__(self, timeout_seconds: float = 120) -> None:
        self._timeout_seconds = timeout_seconds

    def is_available(self) -> bool:
        return shutil.which(RUNNER[0]) is not None

    def is_warmed(self, project_root: str) -> bool:
        return os.path.exists(os.path.join(project_root, ".tldr", "index.json"))

    async def _run_raw(self, args: list[str], cwd: str | None) -> str:
        if not self.is_available():
            raise TldrError(INSTALL_MESSAGE)
        cmd = list(RUNNER) + args
        try:
            with anyio.fail_after(self._timeout_seconds):
                result = await anyio.run_process(cmd, cwd=cwd, check=False)
        except TimeoutError as exc:
            raise TldrError(f"tldr {args[0]} timed out after {self._timeout_seconds}s") from exc
        except OSError as exc:
            raise TldrError(f"tldr {args[0]} failed to start: {exc}") from exc

        stdout = result.stdout.decode("utf-8", errors="replace").strip()
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip() if result.stderr else ""
            raise TldrError(f"tldr {args[0]} failed (exit {result.returncode}): {stderr or stdout}")
        return stdout

    async def _run_json(self, args: list[str], cwd: str | None) -> object:
        stdout = await self._run_raw(args, cwd)
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise TldrError(f"tldr {args[0]} returned invalid JSON") from exc

    async def warm(self, project_root: str) -> None:
        """首次使用时建索引（`.tldr/index.json` 已存在就跳过）。"""
        if self.is_warmed(project_root):
            return
        logger.info("Warming llm-tldr index (first run)...")
        await self._run_raw(["warm", project_root], project_root)
        logger.info("llm-tldr index ready.")

    async def structure(self, file_path: str, project_root: str) -> list[StructureEntry]:
        raw = await self._run_json(["structure", file_path, "--json"], project_root)
        try:
            return _structure_adapter.validate_python(raw)
        except ValidationError as exc:
            raise TldrError(f"tldr structure output does not match schema: {exc}") from exc

    async def impact(self, function_name: str, project_root: str) -> ImpactResult:
        await self.warm(project_root)
        raw = await self._run_json(["impact", function_name, project_root, "--json"], project_root)
        try:
            return ImpactResult.model_validate(raw)
        except ValidationError as exc:
            raise TldrError(f"tldr impact output does not match schema: {exc}") from exc

    async def semantic(self, query: str, project_root: str) -> list[SemanticResult]:
        # 调用图和语义搜索都依赖索引
        await self.warm(project_root)
        raw = await self._run_json(["semantic", query, project_root, "--json"], project_root)
        try:
            return _semantic_adapter.validate_python(raw)
        except ValidationError as exc:
            raise TldrError(f"tldr semantic output does not match schema: {exc}") from exc

    async def complexity(self, file_path: str, function_name: str, project_root: str) -> int:
        """函数圈复杂度（`tldr cfg`），供 strategy selector 的 avg_complexity 使用。"""
        raw = await self._run_json(["cfg", file_path, function_name, "--json"], project_root)
        if not isinstance(raw, dict) or not isinstance(raw.get("complexity"), int):
            raise TldrError("tldr cfg output has no integer complexity")
        return raw["complexity"]
