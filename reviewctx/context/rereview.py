"""
Re-review（缓存失效提示）。

同一个 chat 继续 review 时，模型手里的是旧文件内容；这里生成一段 preamble，
要求它先重新读取变更过的文件。状态存储由调用方注入（见 `infra/state.py`）。
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable

from pydantic import BaseModel

from reviewctx.git import diff as git_diff
from reviewctx.infra.state import ReviewRecord
from reviewctx.infra.state import ReviewStateStore

logger = logging.getLogger(__name__)

MAX_PREAMBLE_FILES = 30
DEFAULT_BASE_BRANCH = "main"
DEFAULT_REVIEW_TYPE = "implementation"

GENERIC_REREVIEW_PREAMBLE = """## IMPORTANT: Re-review After Fixes

This is a RE-REVIEW. Please re-read any files you reviewed previously as they may have changed.

---

"""

ChangedFilesProvider = Callable[[str, str | None], Awaitable[list[str]]]


class ReReviewOptions(BaseModel):
    chat_id: str | None = None
    is_rereview: bool | None = None
    base_branch: str | None = None
    review_type: str | None = None
    cwd: str | None = None


class ReReviewResult(BaseModel):
    is_rereview: bool
    preamble: str | None = None
    changed_files: list[str] | None = None


def build_rereview_preamble(changed_files: list[str], review_type: str = DEFAULT_REVIEW_TYPE) -> str:
    """列出最多 30 个文件，超出部分用 `... and N more files` 概括。"""
    files_list = "\n".join(f"- {f}" for f in changed_files[:MAX_PREAMBLE_FILES])
    if len(changed_files) > MAX_PREAMBLE_FILES:
        files_list += f"\n- ... and {len(changed_files) - MAX_PREAMBLE_FILES} more files"

    return f"""## IMPORTANT: Re-review After Fixes

This is a RE-REVIEW. Code has been modified since your last review.

**You MUST re-read these files before reviewing** - your cached view is stale:
{files_list}

Use your file reading tools to get the CURRENT content of these files.
Do NOT rely on what you saw in the previous review - the code has changed.

After re-reading, conduct a fresh {review_type} review on the updated code.

---

"""


def detect_rereview(options: ReReviewOptions, store: ReviewStateStore) -> bool:
    """显式标记优先；否则看 chat_id 有没有 review 记录。"""
    if options.is_rereview is True:
        return True
    if options.chat_id:
        return store.get(options.chat_id) is not None
    return False


def record_review(store: ReviewStateStore, chat_id: str, files: list[str]) -> None:
    """记录一次 review（同一个 chat_id 覆盖旧记录）。"""
    store.set(chat_id, ReviewRecord(timestamp=int(time.time() * 1000), files=list(files)))


def get_previous_review(store: ReviewStateStore, chat_id: str) -> ReviewRecord | None:
    return store.get(chat_id)


async def _git_changed_files(base_branch: str, cwd: str | None) -> list[str]:
    return await git_diff.get_changed_files(base=base_branch, cwd=cwd)


async def process_rereview(
    options: ReReviewOptions,
    store: ReviewStateStore,
    changed_files_provider: ChangedFilesProvider = _git_changed_files,
) -> ReReviewResult:
    """
    re-review 入口：检测 -> 取变更文件 -> 生成 preamble。

    - 不是 re-review：只返回 is_rereview=False
    - 是 re-review 但没有变更文件：返回通用提示
    """
    if not detect_rereview(options, store):
        return ReReviewResult(is_rereview=False)

    base_branch = options.base_branch or DEFAULT_BASE_BRANCH
    changed_files = await changed_files_provider(base_branch, options.cwd)
    logger.info(f"Re-review detected: {len(changed_files)} changed file(s) since {base_branch}")
    if not changed_files:
        return ReReviewResult(is_rereview=True, preamble=GENERIC_REREVIEW_PREAMBLE, changed_files=[])

    preamble = build_rereview_preamble(changed_files, options.review_type or DEFAULT_REVIEW_TYPE)
    return ReReviewResult(is_rereview=True, preamble=preamble, changed_files=changed_files)
