"""Non-persisting store for server-side events."""

from __future__ import annotations

from typing import Any

from pymixpanel.storage.base import StorageBase


class MemoryStorage(StorageBase):
    """Keeps state for the lifetime of the instance only.

    Use for events that are not tied to a browser visitor (cron jobs,
    webhooks, workers), where there is nowhere to persist state to.
    """

    def __init__(self, project_token: str | None = None, **kwargs: Any) -> None:
        super().__init__(project_token, **kwargs)
        self.flush_count = 0

    def _load_state(self) -> dict[str, Any]:
        return {}

    def store_state(self) -> MemoryStorage:
        self.flush_count += 1
        return self
