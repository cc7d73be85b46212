from __future__ import annotations

import anyio
import pytest
from pydantic import ValidationError

from reviewctx.llm.claude_cli import InvalidModelError
from reviewctx.llm.client import ChatMessage
from reviewctx.review.models import Finding
from reviewctx.review.models import MultiPassConfig
from reviewctx.review.multipass import deduplicate_findings
from reviewctx.review.multipass import determine_risk_level
from reviewctx.review.multipass import determine_verdict
from reviewctx.review.multipass import run_multi_pass_review
from reviewctx.review.multipass import score_findings

CONTEXT = '<context><files><file path="a.py">x</file><file path="b.py">y</file></files></context>'


def _finding_xml(severity: str, file: str, line: int, issue: str) -> str:
    return (
        f"<finding><severity>{severity}</severity><file>{file}</file><line>{line}</line>"
        f"<issue>{issue}</issue><fix>fix it</fix></finding>"
    )


class FakeBackend:
    """按 prompt 内容路由：focus agent 回 `by_focus[focus]`，打分回 `scoring`。"""

    def __init__(
        self,
        by_focus: dict[str, str],
        scoring: str | None = None,
        failing_focuses: frozenset[str] = frozenset(),
        scoring_fails: bool = False,
    ) -> None:
        self.by_focus = by_focus
        self.scoring = scoring or ""
        self.failing_focuses = failing_focuses
        self.scoring_fails = scoring_fails
        self.calls: list[tuple[str, str | None]] = []

    async def complete_text(self, messages: list[ChatMessage], model: str | None = None) -> str:
        prompt = messages[-1].content
        if "quality assurance specialist" in prompt:
            self.calls.append(("scoring", model))
            if self.scoring_fails:
                raise RuntimeError("scoring backend down")
            return self.scoring
        for focus, output in self.by_focus.items():
            if f"specialist focused on {focus}." in prompt:
                self.calls.append((focus, model))
                if focus in self.failing_focuses:
                    raise RuntimeError(f"{focus} agent crashed")
                return output
        raise AssertionError("unexpected prompt")


def _f(severity: str, file: str = "a.py", line: int | None = 1, issue: str = "issue") -> Finding:
    return Finding(severity=severity, file=file, line=line, issue=issue, focus="correctness")


def test_dedup_keeps_higher_severity_regardless_of_order() -> None:
    low, high = _f("minor", issue="Null deref"), _f("critical", issue="null DEREF")
    assert deduplicate_findings([low, high]) == [high]
    assert deduplicate_findings([high, low]) == [high]


def test_dedup_tie_keeps_first_seen() -> None:
    first = Finding(severity="major", file="a.py", line=1, issue="same", focus="correctness")
    second = Finding(severity="major", file="a.py", line=1, issue="same", focus="security")
    assert deduplicate_findings([first, second])[0].focus == "correctness"


def test_dedup_distinguishes_line_and_file() -> None:
    findings = [_f("minor", line=1), _f("minor", line=2), _f("minor", file="b.py", line=1), _f("minor", line=None)]
    assert len(deduplicate_findings(findings)) == 4


def test_dedup_key_only_uses_fifty_char_prefix() -> None:
    # 已知限制：前 50 个字符相同的两个不同问题会被合并
    prefix = "x" * 50
    findings = [_f("minor", issue=prefix + " first problem"), _f("minor", issue=prefix + " second problem")]
    assert len(deduplicate_findings(findings)) == 1


@pytest.mark.parametrize(
    ("severities", "risk", "verdict"),
    [
        ([], "low", "SHIP"),
        (["minor", "minor"], "low", "SHIP"),
        (["major"], "medium", "NEEDS_WORK"),
        (["major", "major"], "medium", "NEEDS_WORK"),
        (["major", "major", "major"], "high", "NEEDS_WORK"),
        (["critical"], "high", "MAJOR_RETHINK"),
        (["critical", "major", "minor"], "high", "MAJOR_RETHINK"),
    ],
)
def test_risk_and_verdict_tables(severities: list[str], risk: str, verdict: str) -> None:
    findings = [_f(s, line=i) for i, s in enumerate(severities)]
    assert determine_risk_level(findings) == risk
    assert determine_verdict(findings) == verdict


@pytest.mark.anyio
async def test_no_findings_short_circuits_without_scoring() -> None:
    backend = FakeBackend({f: '<no-issues focus="x" />' for f in ("correctness", "security", "simplicity")})
    result = await run_multi_pass_review(CONTEXT, MultiPassConfig(), backend)

    assert result.verdict == "SHIP"
    assert result.raw_output == "No issues found by any review agent.\n\n<verdict>SHIP</verdict>"
    assert result.summary.files_reviewed == 2
    assert result.summary.risk_level == "low"
    assert all(name != "scoring" for name, _ in backend.calls)


@pytest.mark.anyio
async def test_full_pipeline_scores_filters_and_derives_verdict() -> None:
    backend = FakeBackend(
        {
            "correctness": _finding_xml("critical", "a.py", 1, "Crash on empty input")
            + _finding_xml("major", "a.py", 5, "Wrong operator"),
            "security": _finding_xml("major", "b.py", 2, "Missing auth check")
            + _finding_xml("major", "b.py", 9, "Speculative issue"),
            "simplicity": _finding_xml("minor", "a.py", 7, "Duplicate helper")
            + _finding_xml("minor", "b.py", 3, "Dead code")
            + _finding_xml("minor", "b.py", 4, "Long function"),
        },
        scoring="".join(
            f'<score id="{i}" confidence="{c}" />' for i, c in enumerate([95, 85, 90, 40, 80, 81, 99])
        ),
    )
    config = MultiPassConfig(confidence_threshold=80, review_model="sonnet", scoring_model="haiku")
    result = await run_multi_pass_review(CONTEXT, config, backend)

    severities = sorted(f.severity for f in result.findings)
    assert severities == ["critical", "major", "major", "minor", "minor", "minor"]
    assert result.summary.total_findings == 7
    assert result.summary.filtered_findings == 6
    assert result.verdict == "MAJOR_RETHINK"
    assert result.summary.risk_level == "high"
    assert result.raw_output.startswith("## Multi-Pass Code Review")
    assert result.raw_output.count("<verdict>") == 1
    assert result.raw_output.endswith("<verdict>MAJOR_RETHINK</verdict>")
    assert "**a.py:1** - Crash on empty input" in result.raw_output
    assert "Confidence: 95%" in result.raw_output
    assert ("scoring", "haiku") in backend.calls
    assert ("security", "sonnet") in backend.calls


@pytest.mark.anyio
async def test_two_majors_yield_needs_work_with_medium_risk() -> None:
    backend = FakeBackend(
        {
            "correctness": _finding_xml("major", "a.py", 1, "First"),
            "security": _finding_xml("major", "a.py", 2, "Second"),
            "simplicity": "",
        },
        scoring='<score id="0" confidence="90" /><score id="1" confidence="90" />',
    )
    result = await run_multi_pass_review(CONTEXT, MultiPassConfig(), backend)
    assert result.verdict == "NEEDS_WORK"
    assert result.summary.risk_level == "medium"


@pytest.mark.anyio
async def test_agent_failure_is_tolerated() -> None:
    backend = FakeBackend(
        {
            "correctness": _finding_xml("major", "a.py", 1, "Real bug"),
            "security": "unused",
            "simplicity": "",
        },
        scoring='<score id="0" confidence="90" />',
        failing_focuses=frozenset({"security"}),
    )
    result = await run_multi_pass_review(CONTEXT, MultiPassConfig(), backend)
    assert [f.issue for f in result.findings] == ["Real bug"]
    assert result.verdict == "NEEDS_WORK"


@pytest.mark.anyio
async def test_scoring_failure_uses_fallback_confidence() -> None:
    backend = FakeBackend(
        {"correctness": _finding_xml("major", "a.py", 1, "Bug"), "security": "", "simplicity": ""},
        scoring_fails=True,
    )
    kept = await run_multi_pass_review(CONTEXT, MultiPassConfig(confidence_threshold=70), backend)
    assert [f.confidence for f in kept.findings] == [75]

    dropped = await run_multi_pass_review(CONTEXT, MultiPassConfig(confidence_threshold=80), backend)
    assert dropped.findings == []
    assert dropped.summary.total_findings == 1
    assert dropped.verdict == "SHIP"
    assert dropped.raw_output.endswith("<verdict>SHIP</verdict>")


@pytest.mark.anyio
async def test_missing_score_defaults_to_fifty() -> None:
    backend = FakeBackend(
        {"correctness": _finding_xml("minor", "a.py", 1, "Nit"), "security": "", "simplicity": ""},
        scoring="I could not score these.",
    )
    result = await run_multi_pass_review(CONTEXT, MultiPassConfig(confidence_threshold=50), backend)
    assert [f.confidence for f in result.findings] == [50]


@pytest.mark.anyio
async def test_custom_focuses_get_generic_prompt() -> None:
    backend = FakeBackend({"auth": _finding_xml("minor", "a.py", 1, "Weak check")}, scoring='<score id="0" confidence="99" />')
    result = await run_multi_pass_review(CONTEXT, MultiPassConfig(focuses=["auth"]), backend)
    assert [f.focus for f in result.findings] == ["auth"]


class InvalidModelBackend:
    async def complete_text(self, messages: list[ChatMessage], model: str | None = None) -> str:
        raise InvalidModelError(f"Invalid model: {model}")


@pytest.mark.anyio
@pytest.mark.parametrize("field", ["review_model", "scoring_model"])
async def test_invalid_model_is_rejected_before_any_call(field: str) -> None:
    backend = FakeBackend({"correctness": "", "security": "", "simplicity": ""})
    with pytest.raises(InvalidModelError):
        await run_multi_pass_review(CONTEXT, MultiPassConfig(**{field: "gpt-bogus"}), backend)
    assert backend.calls == []


@pytest.mark.anyio
async def test_invalid_model_from_agent_is_not_a_ship() -> None:
    with pytest.raises(Exception) as info:
        await run_multi_pass_review(CONTEXT, MultiPassConfig(), InvalidModelBackend())
    assert info.group_contains(InvalidModelError)


@pytest.mark.anyio
async def test_scoring_propagates_invalid_model() -> None:
    with pytest.raises(InvalidModelError):
        await score_findings(InvalidModelBackend(), [_f("major")], model="gpt-bogus")


class SlowBackend(FakeBackend):
    def __init__(self, by_focus: dict[str, str]) -> None:
        super().__init__(by_focus)
        self.active = 0
        self.peak = 0

    async def complete_text(self, messages: list[ChatMessage], model: str | None = None) -> str:
        self.active += 1
        self.peak = max(self.peak, self.active)
        await anyio.sleep(0.01)
        self.active -= 1
        return await super().complete_text(messages, model)


@pytest.mark.anyio
@pytest.mark.parametrize("parallel_agents, peak", [(1, 1), (3, 3)])
async def test_parallel_agents_caps_concurrent_agents(parallel_agents: int, peak: int) -> None:
    backend = SlowBackend({"correctness": "", "security": "", "simplicity": ""})
    result = await run_multi_pass_review(CONTEXT, MultiPassConfig(parallel_agents=parallel_agents), backend)
    assert backend.peak == peak
    assert result.verdict == "SHIP"


def test_parallel_agents_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        MultiPassConfig(parallel_agents=0)
