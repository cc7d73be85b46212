"""
结构分析（AST / 调用图 / 语义搜索）的数据模型与协议。

`CodeAnalyzer` 有两个实现：
- `TldrClient`：外部 llm-tldr 子进程
- `LocalCodeAnalyzer`：进程内 tree-sitter + git grep
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field


class StructureEntry(BaseModel):
    """文件里的一个声明（函数/类/方法/接口/类型/导入...）。"""

    name: str
    kind: str = Field(alias="type")
    file: str
    line: int
    signature: str | None = None

    model_config = {"populate_by_name": True}


class CallSite(BaseModel):
    name: str
    file: str
    line: int


class ImpactResult(BaseModel):
    """某个函数的调用方/被调用方。"""

    function: str
    callers: list[CallSite] = Field(default_factory=list)
    callees: list[CallSite] = Field(default_factory=list)


class SemanticResult(BaseModel):
    function: str
    file: str
    line: int
    score: float


class CodeAnalyzer(Protocol):
    """context builder / hints 依赖的结构分析能力。失败可以抛错，由调用方降级。"""

    async def structure(self, file_path: str, project_root: str) -> list[StructureEntry]: ...

    async def impact(self, function_name: str, project_root: str) -> ImpactResult: ...

    async def semantic(self, query: str, project_root: str) -> list[SemanticResult]: ...


@runtime_checkable
class ComplexityAnalyzer(Protocol):
    """能算函数圈复杂度的分析器（目前只有 llm-tldr）。"""

    async def complexity(self, file_path: str, function_name: str, project_root: str) -> int: ...
