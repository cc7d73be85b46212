from __future__ import annotations

import json
from pathlib import Path

import pytest

from reviewctx.analysis.models import ImpactResult
from reviewctx.analysis.models import SemanticResult
from reviewctx.analysis.models import StructureEntry
from reviewctx.config import ReviewSettings
from reviewctx.git import diff as git_diff
from reviewctx.infra.state import InMemoryReviewStateStore
from reviewctx.review.orchestrator import ReviewOrchestrator
from reviewctx.review.orchestrator import ReviewRequest
from reviewctx.review.synthesis import NO_FINDINGS_OUTPUT


class NullAnalyzer:
    async def structure(self, file_path: str, project_root: str) -> list[StructureEntry]:
        return []

    async def impact(self, function_name: str, project_root: str) -> ImpactResult:
        return ImpactResult(function=function_name)

    async def semantic(self, query: str, project_root: str) -> list[SemanticResult]:
        return []


class RecordingBackend:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.prompts: list[str] = []

    async def complete_text(self, messages, model=None) -> str:
        self.prompts.append("\n".join(m.content for m in messages))
        return self.reply


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "a.py").write_text("def parse(x):\n    return int(x)\n")
    (tmp_path / "CLAUDE.md").write_text("Prefer explicit errors.\n")

    async def fake_stats(base: str = "HEAD~1", cwd: str | None = None) -> git_diff.DiffStats:
        return git_diff.DiffStats(files=["src/a.py"], additions=2, deletions=0)

    async def fake_changed(base: str = "main", head: str = "HEAD", cwd: str | None = None) -> list[str]:
        return ["src/a.py"]

    monkeypatch.setattr(git_diff, "get_diff_stats", fake_stats)
    monkeypatch.setattr(git_diff, "get_changed_files", fake_changed)
    return tmp_path


def _orchestrator(project: Path, backend: RecordingBackend) -> ReviewOrchestrator:
    return ReviewOrchestrator(
        llm=backend,
        analyzer=NullAnalyzer(),
        store=InMemoryReviewStateStore(),
        settings=ReviewSettings(project_root=str(project)),
    )


@pytest.mark.anyio
async def test_small_change_runs_single_pass(project: Path) -> None:
    backend = RecordingBackend("Fine.\n<verdict>SHIP</verdict>")
    orchestrator = _orchestrator(project, backend)

    outcome = await orchestrator.run_review(
        ReviewRequest(prompt="Review the parser.", chat_id="c1", include_git_diff=False)
    )

    assert outcome.strategy.type == "single-pass"
    assert outcome.verdict == "SHIP"
    assert outcome.plan is not None and outcome.plan.full_files == 1
    assert outcome.is_rereview is False
    assert len(backend.prompts) == 1
    assert '<file path="src/a.py" changed="true">' in backend.prompts[0]
    assert "Prefer explicit errors." in backend.prompts[0]
    assert orchestrator.store.get("c1").files == ["src/a.py"]


@pytest.mark.anyio
async def test_single_pass_sends_request_once(project: Path) -> None:
    backend = RecordingBackend("<verdict>SHIP</verdict>")
    orchestrator = _orchestrator(project, backend)

    await orchestrator.run_review(ReviewRequest(chat_id="c1", include_git_diff=False))
    await orchestrator.run_review(
        ReviewRequest(prompt="Review the parser.", chat_id="c1", include_git_diff=False)
    )

    prompt = backend.prompts[1]
    assert prompt.count("Review the parser.") == 1
    assert prompt.count("This is a RE-REVIEW.") == 1
    assert "## User Request" not in prompt


@pytest.mark.anyio
async def test_second_review_in_same_chat_is_rereview(project: Path) -> None:
    backend = RecordingBackend("<verdict>NEEDS_WORK</verdict>")
    orchestrator = _orchestrator(project, backend)

    await orchestrator.run_review(ReviewRequest(chat_id="c1", include_git_diff=False))
    outcome = await orchestrator.run_review(ReviewRequest(chat_id="c1", include_git_diff=False))

    assert outcome.is_rereview is True
    assert outcome.rereview_files == ["src/a.py"]
    assert "This is a RE-REVIEW." in backend.prompts[1]
    assert "- src/a.py" in backend.prompts[1]


@pytest.mark.anyio
async def test_thorough_flag_without_findings_ships(project: Path) -> None:
    backend = RecordingBackend("Nothing to report.")
    outcome = await _orchestrator(project, backend).run_review(
        ReviewRequest(flags={"thorough": True}, include_git_diff=False)
    )

    assert outcome.strategy.type == "multi-pass"
    assert outcome.review == NO_FINDINGS_OUTPUT
    assert outcome.verdict == "SHIP"
    # 三个 focus agent，没有 finding 就不打分
    assert len(backend.prompts) == 3


@pytest.mark.anyio
async def test_audit_runs_exploration(project: Path) -> None:
    answer = "Checked <file>src/a.py</file>.\n<verdict>SHIP</verdict>"
    backend = RecordingBackend(json.dumps({"kind": "final", "answer": answer}))
    orchestrator = _orchestrator(project, backend)

    outcome = await orchestrator.run_review(ReviewRequest(review_type="audit", chat_id="audit-1"))

    assert outcome.strategy.type == "exploration"
    assert outcome.verdict == "SHIP"
    assert outcome.plan is None
    assert orchestrator.store.get("audit-1").files == ["src/a.py"]


@pytest.mark.anyio
async def test_task_spec_is_loaded_into_prompt(project: Path) -> None:
    tasks = project / ".flow" / "tasks"
    tasks.mkdir(parents=True)
    (tasks / "fn-3.1.md").write_text("Parser must reject negative numbers.\n")
    backend = RecordingBackend("<verdict>SHIP</verdict>")

    outcome = await _orchestrator(project, backend).run_review(
        ReviewRequest(task_id="FN-3.1", include_git_diff=False)
    )

    assert outcome.verdict == "SHIP"
    assert "<task_spec>" in backend.prompts[0]
    assert "Parser must reject negative numbers." in backend.prompts[0]


@pytest.mark.anyio
async def test_invalid_task_id_is_rejected(project: Path) -> None:
    with pytest.raises(ValueError, match="Invalid task ID format"):
        await _orchestrator(project, RecordingBackend("")).run_review(ReviewRequest(task_id="../../etc"))


class ComplexAnalyzer(NullAnalyzer):
    async def structure(self, file_path: str, project_root: str) -> list[StructureEntry]:
        return [StructureEntry(name="parse", kind="function", file=file_path, line=1)]

    async def complexity(self, file_path: str, function_name: str, project_root: str) -> int:
        return 22


@pytest.mark.anyio
async def test_measured_complexity_upgrades_to_multi_pass(project: Path) -> None:
    backend = RecordingBackend("Nothing to report.")
    orchestrator = ReviewOrchestrator(
        llm=backend,
        analyzer=ComplexAnalyzer(),
        store=InMemoryReviewStateStore(),
        settings=ReviewSettings(project_root=str(project)),
    )

    outcome = await orchestrator.run_review(ReviewRequest(include_git_diff=False))

    assert outcome.strategy.type == "multi-pass"
    assert outcome.strategy.reason == "High complexity (avg 22)"
    assert outcome.strategy.config.focuses == ["correctness", "edge-cases", "simplicity"]
