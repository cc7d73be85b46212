from __future__ import annotations

import pytest

from reviewctx.context.rereview import GENERIC_REREVIEW_PREAMBLE
from reviewctx.context.rereview import ReReviewOptions
from reviewctx.context.rereview import build_rereview_preamble
from reviewctx.context.rereview import detect_rereview
from reviewctx.context.rereview import get_previous_review
from reviewctx.context.rereview import process_rereview
from reviewctx.context.rereview import record_review
from reviewctx.infra.state import InMemoryReviewStateStore


def _provider(files: list[str]):
    async def _changed(base_branch: str, cwd: str | None) -> list[str]:
        return files

    return _changed


def test_detect_requires_flag_or_known_chat() -> None:
    store = InMemoryReviewStateStore()
    assert detect_rereview(ReReviewOptions(), store) is False
    assert detect_rereview(ReReviewOptions(chat_id="X"), store) is False
    assert detect_rereview(ReReviewOptions(is_rereview=True), store) is True
    record_review(store, "X", ["a.py"])
    assert detect_rereview(ReReviewOptions(chat_id="X"), store) is True


def test_record_overwrites_and_stores_are_independent() -> None:
    first, second = InMemoryReviewStateStore(), InMemoryReviewStateStore()
    record_review(first, "X", ["a.py"])
    record_review(first, "X", ["b.py"])
    record = get_previous_review(first, "X")
    assert record is not None and record.files == ["b.py"]
    assert record.timestamp > 0
    assert get_previous_review(second, "X") is None
    first.clear()
    assert get_previous_review(first, "X") is None


def test_preamble_caps_at_thirty_files() -> None:
    files = [f"src/f{i}.py" for i in range(35)]
    preamble = build_rereview_preamble(files)
    assert "- src/f29.py" in preamble
    assert "- src/f30.py" not in preamble
    assert "- ... and 5 more files" in preamble
    assert "fresh implementation review" in preamble


@pytest.mark.anyio
async def test_process_not_a_rereview() -> None:
    result = await process_rereview(ReReviewOptions(chat_id="new"), InMemoryReviewStateStore(), _provider(["a.py"]))
    assert result.is_rereview is False
    assert result.preamble is None


@pytest.mark.anyio
async def test_process_after_record_lists_changed_files() -> None:
    store = InMemoryReviewStateStore()
    record_review(store, "X", ["old.py"])
    files = [f"pkg/m{i}.py" for i in range(31)]
    result = await process_rereview(ReReviewOptions(chat_id="X", review_type="security"), store, _provider(files))
    assert result.is_rereview is True
    assert result.changed_files == files
    assert result.preamble is not None
    for name in files[:30]:
        assert name in result.preamble
    assert "and 1 more files" in result.preamble
    assert "fresh security review" in result.preamble


@pytest.mark.anyio
async def test_process_without_changes_uses_generic_notice() -> None:
    result = await process_rereview(ReReviewOptions(is_rereview=True), InMemoryReviewStateStore(), _provider([]))
    assert result.is_rereview is True
    assert result.preamble == GENERIC_REREVIEW_PREAMBLE
    assert result.changed_files == []
