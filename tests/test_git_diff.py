from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from reviewctx.context.references import find_references
from reviewctx.context.references import is_git_repository
from reviewctx.git.diff import GitDiffContext
from reviewctx.git.diff import format_diff_context_xml
from reviewctx.git.diff import get_branch_name
from reviewctx.git.diff import get_changed_files
from reviewctx.git.diff import get_commits
from reviewctx.git.diff import get_diff_stats
from reviewctx.git.diff import get_git_diff_context
from reviewctx.git.diff import parse_numstat

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(repo: Path, *args: str) -> None:
    subprocess.run(
        ["git", "-c", "user.email=dev@example.com", "-c", "user.name=dev", *args],
        cwd=repo,
        check=True,
        capture_output=True,
    )


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    _git(tmp_path, "init", "-b", "main")
    (tmp_path / "a.py").write_text("def run():\n    return 1\n")
    _git(tmp_path, "add", ".")
    _git(tmp_path, "commit", "-m", "initial")
    (tmp_path / "a.py").write_text("def run():\n    return 2\n\n\ndef stop():\n    return run()\n")
    (tmp_path / "b.py").write_text("from a import run\n\nrun()\n")
    _git(tmp_path, "add", ".")
    _git(tmp_path, "commit", "-m", "add stop")
    return tmp_path


def test_parse_numstat_ignores_binary_entries() -> None:
    text = "3\t1\tsrc/a.py\n-\t-\tlogo.png\n10\t0\tsrc/b.py\n\nbad line\n"
    assert parse_numstat(text) == (13, 1)


def test_format_diff_context_xml_omits_empty_sections() -> None:
    assert format_diff_context_xml(GitDiffContext()) == ""
    xml = format_diff_context_xml(GitDiffContext(commits=["abc fix"], changed_files=["a.py"]))
    assert "<diff_summary>" not in xml
    assert "<commits>\nabc fix\n</commits>" in xml
    assert "<changed_files>\na.py\n</changed_files>" in xml


@requires_git
@pytest.mark.anyio
async def test_diff_stats_against_previous_commit(repo: Path) -> None:
    stats = await get_diff_stats(base="HEAD~1", cwd=str(repo))
    assert stats.files == ["a.py", "b.py"]
    assert stats.additions == 8
    assert stats.deletions == 1


@requires_git
@pytest.mark.anyio
async def test_git_queries_on_repo(repo: Path) -> None:
    assert await get_branch_name(cwd=str(repo)) == "main"
    commits = await get_commits(base="HEAD~1", cwd=str(repo))
    assert len(commits) == 1 and commits[0].endswith("add stop")
    assert await get_changed_files(base="HEAD~1", cwd=str(repo)) == ["a.py", "b.py"]

    context = await get_git_diff_context(base="HEAD~1", cwd=str(repo))
    assert context.branch == "main"
    assert context.changed_files == ["a.py", "b.py"]
    assert "a.py" in context.diff_stat


@requires_git
@pytest.mark.anyio
async def test_invalid_ref_and_non_repo_degrade(repo: Path, tmp_path_factory: pytest.TempPathFactory) -> None:
    stats = await get_diff_stats(base="no-such-ref", cwd=str(repo))
    assert stats.files == [] and stats.additions == 0

    outside = tmp_path_factory.mktemp("plain")
    assert await get_changed_files(base="main", cwd=str(outside)) == []
    assert await get_branch_name(cwd=str(outside)) == ""
    assert await is_git_repository(cwd=str(outside)) is False
    assert await is_git_repository(cwd=str(repo)) is True


@requires_git
@pytest.mark.anyio
async def test_find_references_excludes_definition_file(repo: Path) -> None:
    refs = await find_references("run", definition_file="a.py", cwd=str(repo))
    assert {(r.file, r.line) for r in refs} == {("b.py", 1), ("b.py", 3)}
    assert await find_references("nothing_matches_this", cwd=str(repo)) == []
