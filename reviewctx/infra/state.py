from __future__ import annotations

"""
Review 状态存储（re-review 检测用）。

当前提供：
- `ReviewStateStore` Protocol：定义 get/set/clear 接口
- `InMemoryReviewStateStore`：进程内 dict，调用方持有并注入

后续扩展点：
- Redis 实现（多副本部署时共享 chat 状态）
"""

from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import BaseModel


class ReviewRecord(BaseModel):
    """某个 chat 上一次 review 的时间（毫秒时间戳）与文件列表。"""

    timestamp: int
    files: list[str]


class ReviewStateStore(Protocol):
    """状态存储接口协议（用于依赖倒置，方便替换 Redis/Memory）。"""

    def get(self, chat_id: str) -> ReviewRecord | None: ...

    def set(self, chat_id: str, record: ReviewRecord) -> None: ...

    def clear(self) -> None: ...


@dataclass
class InMemoryReviewStateStore:
    """内存存储：进程生命周期内有效，没有过期机制，也不做并发写保护。"""

    store: MutableMapping[str, ReviewRecord] = field(default_factory=dict)

    def get(self, chat_id: str) -> ReviewRecord | None:
        return self.store.get(chat_id)

    def set(self, chat_id: str, record: ReviewRecord) -> None:
        self.store[chat_id] = record

    def clear(self) -> None:
        self.store.clear()
