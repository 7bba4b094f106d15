"""Full-text search index interface for removed messages."""

from __future__ import annotations

from typing import Protocol


class SearchIndex(Protocol):
    async def delete_message(self, message_id: str) -> None: ...
