from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

READ_ONLY_TOOLS: frozenset[str] = frozenset({"glob_files", "grep", "read_file", "list_dir"})


class ToolContext(BaseModel):
    """工具执行环境：所有路径都被限制在 root 之内；只有 allowed_tools 里的工具能被调用。"""

    root: str
    allowed_tools: frozenset[str] = READ_ONLY_TOOLS


class GlobFilesArgs(BaseModel):
    pattern: str
    max_results: int = 200


class GrepArgs(BaseModel):
    pattern: str
    path: str = "."
    max_results: int = 100


class ReadFileArgs(BaseModel):
    path: str
    offset: int = 0
    limit: int = 400


class ListDirArgs(BaseModel):
    path: str = "."


class GlobFilesCall(BaseModel):
    name: Literal["glob_files"]
    args: GlobFilesArgs


class GrepCall(BaseModel):
    name: Literal["grep"]
    args: GrepArgs


class ReadFileCall(BaseModel):
    name: Literal["read_file"]
    args: ReadFileArgs


class ListDirCall(BaseModel):
    name: Literal["list_dir"]
    args: ListDirArgs


ToolCall = Annotated[
    Union[GlobFilesCall, GrepCall, ReadFileCall, ListDirCall],
    Field(discriminator="name"),
]


class AgentAction(BaseModel):
    kind: Literal["action"]
    call: ToolCall


class AgentFinal(BaseModel):
    kind: Literal["final"]
    answer: str


AgentStep = Annotated[Union[AgentAction, AgentFinal], Field(discriminator="kind")]
