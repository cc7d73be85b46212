"""
Review 领域模型（Pydantic）。

用途：
- 明确各阶段输入/输出的数据结构
- finding / score / verdict 都是从模型的 tag 输出里解析出来的
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

Severity = Literal["critical", "major", "minor"]
Verdict = Literal["SHIP", "NEEDS_WORK", "MAJOR_RETHINK"]
RiskLevel = Literal["low", "medium", "high"]
ExplorationFocus = Literal["security", "performance", "general"]

SEVERITY_RANK: dict[str, int] = {"critical": 3, "major": 2, "minor": 1}


class Finding(BaseModel):
    """单个 review agent 给出的一条问题。confidence 由打分阶段填。"""

    severity: Severity
    file: str
    line: int | None = None
    issue: str
    evidence: str | None = None
    fix: str | None = None
    focus: str
    confidence: int | None = None


class MultiPassConfig(BaseModel):
    parallel_agents: int = Field(default=3, ge=1)
    focuses: list[str] = Field(default_factory=lambda: ["correctness", "security", "simplicity"])
    confidence_threshold: int = 80
    review_model: str | None = None
    scoring_model: str | None = None


class MultiPassSummary(BaseModel):
    files_reviewed: int
    total_findings: int
    filtered_findings: int
    risk_level: RiskLevel


class MultiPassResult(BaseModel):
    findings: list[Finding]
    summary: MultiPassSummary
    verdict: Verdict
    raw_output: str


class ExplorationConfig(BaseModel):
    root_path: str
    base_branch: str | None = None
    max_iterations: int = 50
    focus: ExplorationFocus = "general"
    guidelines: str | None = None
    model: str | None = None


class ExplorationResult(BaseModel):
    review: str
    files_examined: list[str]
    verdict: Verdict


class SinglePassResult(BaseModel):
    review: str
    verdict: Verdict
