"""
模型输出的 tag 解析（弱协议）。

`<finding>`、`<score id="N" confidence="X" />`、`<verdict>` 都是从自由文本里抠出来的，
模型随时可能漏写/写错；这里每个函数都有兜底值，不抛错。
"""

from __future__ import annotations

import logging
import re

from reviewctx.review.models import SEVERITY_RANK
from reviewctx.review.models import Finding
from reviewctx.review.models import Verdict

logger = logging.getLogger(__name__)

_FINDING = re.compile(r"<finding(?:\s[^>]*)?>(.*?)</finding>", re.DOTALL)
_SCORE = re.compile(r'<score\s+id="(\d+)"\s+confidence="(\d+)"\s*/>')
_VERDICT = re.compile(r"<verdict>\s*(SHIP|NEEDS_WORK|MAJOR_RETHINK)\s*</verdict>", re.IGNORECASE)
_ANY_VERDICT = re.compile(r"<verdict>.*?</verdict>", re.DOTALL | re.IGNORECASE)
_FILE = re.compile(r"<file>([^<]+)</file>")


def _tag(content: str, name: str) -> str | None:
    match = re.search(rf"<{name}>(.*?)</{name}>", content, re.DOTALL)
    if match is None:
        return None
    return match.group(1).strip()


def _parse_line(raw: str | None) -> int | None:
    if raw is None or not raw.isdigit():
        return None
    return int(raw)


def parse_findings(output: str, focus: str) -> list[Finding]:
    """
    解析 `<finding>` 块。

    - 没有 file 或 issue 的块丢弃
    - 不认识的 severity 按 minor 处理
    - line 不是数字（例如 `unknown`）就当没有行号
    """
    findings: list[Finding] = []
    for match in _FINDING.finditer(output):
        content = match.group(1)
        file = _tag(content, "file") or ""
        issue = _tag(content, "issue") or ""
        if not file or not issue:
            continue
        severity = (_tag(content, "severity") or "minor").lower()
        if severity not in SEVERITY_RANK:
            severity = "minor"
        findings.append(
            Finding(
                severity=severity,
                file=file,
                line=_parse_line(_tag(content, "line")),
                issue=issue,
                evidence=_tag(content, "evidence") or None,
                fix=_tag(content, "fix") or None,
                focus=focus,
            )
        )
    return findings


def parse_scores(output: str) -> dict[int, int]:
    """`<score id="N" confidence="X" />` -> {N: X}，分数截到 0~100。"""
    scores: dict[int, int] = {}
    for match in _SCORE.finditer(output):
        scores[int(match.group(1))] = min(100, int(match.group(2)))
    return scores


def parse_verdict(output: str) -> Verdict | None:
    match = _VERDICT.search(output)
    if match is None:
        return None
    return match.group(1).upper()  # type: ignore[return-value]


def parse_files_examined(output: str) -> list[str]:
    """输出里出现过的 `<file>` 路径，去重且保持首次出现顺序。"""
    files: list[str] = []
    for match in _FILE.finditer(output):
        path = match.group(1).strip()
        if path and path not in files:
            files.append(path)
    return files


def ensure_single_verdict(output: str, verdict: Verdict) -> str:
    """去掉正文里所有 verdict tag，在末尾补一个，保证“恰好一个、且在最后”。"""
    body = _ANY_VERDICT.sub("", output).rstrip()
    if body:
        return f"{body}\n\n<verdict>{verdict}</verdict>"
    return f"<verdict>{verdict}</verdict>"
