from __future__ import annotations

"""
Synthesis（汇总输出）。

注意：
- 这里是**确定性输出**（不依赖 LLM），同样的 findings 总是得到同样的报告
- 报告末尾的 `<verdict>` 是调用方解析的协议，必须且只能有一个
"""

from reviewctx.review.models import Finding
from reviewctx.review.models import RiskLevel
from reviewctx.review.models import Verdict

NO_FINDINGS_OUTPUT = "No issues found by any review agent.\n\n<verdict>SHIP</verdict>"


def _location(f: Finding) -> str:
    return f"{f.file}:{f.line if f.line is not None else '?'}"


def _confidence(f: Finding) -> str:
    return f"{f.confidence if f.confidence is not None else '?'}%"


def format_findings(findings: list[Finding]) -> str:
    """按严重程度分组输出；critical 带 evidence/fix，major 带 fix，minor 只有一行。"""
    lines: list[str] = []

    critical = [f for f in findings if f.severity == "critical"]
    major = [f for f in findings if f.severity == "major"]
    minor = [f for f in findings if f.severity == "minor"]

    if critical:
        lines.append("### Critical (MUST fix)")
        for f in critical:
            lines.append(f"- **{_location(f)}** - {f.issue}")
            if f.evidence:
                lines.append(f"  - Evidence: {f.evidence}")
            if f.fix:
                lines.append(f"  - Fix: {f.fix}")
            lines.append(f"  - Confidence: {_confidence(f)}")
        lines.append("")

    if major:
        lines.append("### Major (Should fix)")
        for f in major:
            lines.append(f"- **{_location(f)}** - {f.issue}")
            if f.fix:
                lines.append(f"  - Fix: {f.fix}")
            lines.append(f"  - Confidence: {_confidence(f)}")
        lines.append("")

    if minor:
        lines.append("### Minor (Consider fixing)")
        for f in minor:
            lines.append(f"- **{_location(f)}** - {f.issue}")
        lines.append("")

    return "\n".join(lines)


def synthesize_multipass_report(
    findings: list[Finding],
    total_findings: int,
    risk_level: RiskLevel,
    verdict: Verdict,
) -> str:
    """
    拼 multi-pass 的最终报告。

    - findings：过滤后的 finding
    - total_findings：过滤前（去重后）的数量，用于展示过滤效果
    """
    lines: list[str] = []
    lines.append("## Multi-Pass Code Review")
    lines.append("")
    lines.append("### Summary")
    lines.append(f"- Findings: {len(findings)} ({total_findings} before confidence filter)")
    lines.append(f"- Risk level: {risk_level}")
    lines.append("")
    if findings:
        lines.append(format_findings(findings))
    else:
        lines.append("No findings passed the confidence threshold.")
        lines.append("")
    lines.append(f"<verdict>{verdict}</verdict>")
    return "\n".join(lines)
