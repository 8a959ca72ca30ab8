"""State store backed by any external key/value mapping."""

from __future__ import annotations

import json
from collections.abc import MutableMapping
from typing import Any

from pymixpanel._constants import DEFAULT_LIFETIME
from pymixpanel.storage.base import StorageBase


class MappingStorage(StorageBase):
    """Persist state as a JSON string in a ``MutableMapping[str, str]``.

    The backend can be a plain dict, a ``shelve`` or an adapter around a
    cache client. Lifetime enforcement is left to the backend. The key is
    ``mixpanel:<token>:<user key>`` unless overridden; it is re-derived on
    every access, so after :meth:`set_user_key` the next flush lands under
    the identified user's key.
    """

    def __init__(
        self,
        backend: MutableMapping[str, str],
        project_token: str | None = None,
        *,
        lifetime: int = DEFAULT_LIFETIME,
    ) -> None:
        super().__init__(project_token, lifetime=lifetime)
        self._backend = backend

    def _load_state(self) -> dict[str, Any]:
        key = self.storage_key
        return self._decode_state(self._backend.get(key), source=f"mapping key {key!r}")

    def store_state(self) -> MappingStorage:
        self._backend[self.storage_key] = json.dumps(self._raw_state(), separators=(",", ":"))
        return self
