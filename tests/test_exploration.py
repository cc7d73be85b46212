from __future__ import annotations

import json
from pathlib import Path

import pytest

from reviewctx.llm.claude_cli import InvalidModelError
from reviewctx.review.exploration import run_exploration_review
from reviewctx.review.models import ExplorationConfig

FINAL_ANSWER = """<finding>
  <severity>critical</severity>
  <file>src/auth.py</file>
  <line>3</line>
  <issue>Hard-coded secret</issue>
</finding>
<finding>
  <severity>minor</severity>
  <file>src/auth.py</file>
  <issue>Unused import</issue>
</finding>
<verdict>MAJOR_RETHINK</verdict>"""


class ScriptedBackend:
    def __init__(self, replies: list[str]) -> None:
        self.replies = list(replies)
        self.prompts: list[str] = []

    async def complete_text(self, messages, model=None) -> str:
        self.prompts.append(messages[-1].content)
        return self.replies.pop(0)


class BrokenBackend:
    async def complete_text(self, messages, model=None) -> str:
        raise RuntimeError("backend down")


def _final(answer: str) -> str:
    return json.dumps({"kind": "final", "answer": answer})


@pytest.mark.anyio
async def test_exploration_parses_verdict_and_files(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "auth.py").write_text("import os\n\nSECRET = 'x'\n")
    backend = ScriptedBackend(
        [
            json.dumps({"kind": "action", "call": {"name": "grep", "args": {"pattern": "SECRET"}}}),
            _final(FINAL_ANSWER),
        ]
    )
    result = await run_exploration_review(
        ExplorationConfig(root_path=str(tmp_path), focus="security", guidelines="No secrets in code."), backend
    )

    assert result.verdict == "MAJOR_RETHINK"
    assert result.files_examined == ["src/auth.py"]
    assert result.review.endswith("<verdict>MAJOR_RETHINK</verdict>")
    assert result.review.count("<verdict>") == 1
    assert "No secrets in code." in backend.prompts[0]
    assert "src/auth.py:3: SECRET = 'x'" in backend.prompts[1]


@pytest.mark.anyio
async def test_exploration_without_verdict_needs_work(tmp_path: Path) -> None:
    result = await run_exploration_review(
        ExplorationConfig(root_path=str(tmp_path)), ScriptedBackend([_final("Looked around, nothing conclusive.")])
    )
    assert result.verdict == "NEEDS_WORK"
    assert result.files_examined == []
    assert result.review == "Looked around, nothing conclusive.\n\n<verdict>NEEDS_WORK</verdict>"


@pytest.mark.anyio
async def test_exploration_failure_degrades(tmp_path: Path) -> None:
    result = await run_exploration_review(ExplorationConfig(root_path=str(tmp_path)), BrokenBackend())
    assert result.verdict == "NEEDS_WORK"
    assert result.files_examined == []
    assert result.review.startswith("Exploration failed: backend down")
    assert result.review.endswith("<verdict>NEEDS_WORK</verdict>")


@pytest.mark.anyio
async def test_exploration_step_budget(tmp_path: Path) -> None:
    action = json.dumps({"kind": "action", "call": {"name": "list_dir", "args": {}}})
    backend = ScriptedBackend([action] * 3)
    result = await run_exploration_review(ExplorationConfig(root_path=str(tmp_path), max_iterations=2), backend)

    # max_iterations 次工具调用 + 1 次 final 机会
    assert len(backend.prompts) == 3
    assert result.verdict == "NEEDS_WORK"
    assert result.review.startswith("Review incomplete")


class InvalidModelBackend:
    async def complete_text(self, messages, model=None) -> str:
        raise InvalidModelError(f"Invalid model: {model}")


@pytest.mark.anyio
async def test_exploration_rejects_invalid_model_before_calling(tmp_path: Path) -> None:
    backend = ScriptedBackend([_final("<verdict>SHIP</verdict>")])
    with pytest.raises(InvalidModelError):
        await run_exploration_review(ExplorationConfig(root_path=str(tmp_path), model="gpt-bogus"), backend)
    assert backend.prompts == []


@pytest.mark.anyio
async def test_exploration_propagates_backend_invalid_model(tmp_path: Path) -> None:
    with pytest.raises(InvalidModelError):
        await run_exploration_review(ExplorationConfig(root_path=str(tmp_path)), InvalidModelBackend())
