"""
Context 领域模型（Pydantic）。

这些对象每次 review 请求现建现丢，不持久化。
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

CodeMapEntryType = Literal[
    "import",
    "export",
    "function",
    "class",
    "interface",
    "type",
    "const",
    "method",
    "property",
]


class SourceFile(BaseModel):
    """调用方给进来的文件：路径 + 全文。"""

    path: str
    content: str


class RankedFile(BaseModel):
    """打过分的文件。priority 每次 plan 只算一次。"""

    path: str
    content: str
    priority: int
    full_tokens: int
    is_changed: bool


class TokenBudget(BaseModel):
    """available_tokens = max_tokens - skill_tokens - user_prompt_tokens，下限 0。"""

    max_tokens: int = Field(ge=0)
    skill_tokens: int = Field(ge=0)
    user_prompt_tokens: int = Field(ge=0)
    available_tokens: int = Field(ge=0)


class CodeMapEntry(BaseModel):
    type: CodeMapEntryType
    signature: str
    line: int


class CodeMap(BaseModel):
    """单个文件的签名摘要。compression_ratio = 1 - map_size/original_size（original_size 为 0 时是 0）。"""

    path: str
    language: str
    entries: list[CodeMapEntry] = Field(default_factory=list)
    original_size: int
    map_size: int
    compression_ratio: float


class CodeMappedFile(BaseModel):
    file: RankedFile
    code_map: CodeMap


class ContextPlan(BaseModel):
    """
    规划结果：每个文件要么 full、要么 code map、要么 excluded（三者互斥）。

    full + code map + git_diff 的 token 总和不超过 budget.available_tokens。
    """

    full_files: list[RankedFile] = Field(default_factory=list)
    code_mapped_files: list[CodeMappedFile] = Field(default_factory=list)
    excluded_files: list[RankedFile] = Field(default_factory=list)
    total_tokens: int
    budget: TokenBudget
    git_diff: str | None = None
    diff_dropped: bool = False


class ContextHint(BaseModel):
    """一个“值得顺便看一眼”的相关位置。"""

    file: str
    line: int
    symbol: str
    ref_count: int
