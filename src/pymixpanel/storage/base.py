"""Per-user persistent state.

A store is scoped to one (project token, user key) pair and lives for one
request. State is loaded lazily from the backing medium on first access,
cached on the instance, and written back on every change.
"""

from __future__ import annotations

import abc
import copy
import json
import logging
from typing import Any, Protocol

from pymixpanel._constants import (
    ALIAS_KEY,
    DEFAULT_LIFETIME,
    DISTINCT_ID_KEY,
    REGISTER_ONCE_DEFAULT,
    RESERVED_PREFIX,
)

_logger = logging.getLogger(__name__)


def filter_state(state: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *state* without reserved (``__``-prefixed) keys."""
    return {key: copy.deepcopy(value) for key, value in state.items() if not key.startswith(RESERVED_PREFIX)}


class StateStorage(Protocol):
    """Structural interface the tracker relies on.

    Any object with these members can be injected into
    :class:`pymixpanel.tracker.MixpanelTracker`; subclassing
    :class:`StorageBase` is the easy way to get them.
    """

    project_token: str | None
    storage_key: str
    lifetime: int

    def set_user_key(self, key: str) -> StateStorage:
        ...

    def set(self, key: str, value: Any) -> StateStorage:
        ...

    def add(self, key: str, value: Any, default: Any = REGISTER_ONCE_DEFAULT) -> StateStorage:
        ...

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def delete(self, key: str) -> StateStorage:
        ...

    def get_state(self) -> dict[str, Any]:
        ...

    def store_state(self) -> StateStorage:
        ...


class StorageBase(abc.ABC):
    """Medium-independent state handling.

    Subclasses implement :meth:`_load_state` (read the persisted blob) and
    :meth:`store_state` (write the cached state back). Mutating calls flush
    only when they actually change something.
    """

    def __init__(
        self,
        project_token: str | None = None,
        *,
        lifetime: int = DEFAULT_LIFETIME,
    ) -> None:
        self._project_token = project_token
        self._user_key: str | None = None
        self._storage_key: str | None = None
        self._lifetime = int(lifetime)
        self._state: dict[str, Any] | None = None

    # ------------------------------------------------------------------
    # Scoping
    # ------------------------------------------------------------------

    @property
    def project_token(self) -> str | None:
        return self._project_token

    @project_token.setter
    def project_token(self, token: str | None) -> None:
        self._project_token = token

    @property
    def user_key(self) -> str | None:
        return self._user_key

    def set_user_key(self, key: str) -> StorageBase:
        """Bind the store to *key* and record it as the distinct ID.

        The stored ``distinct_id`` is left alone when *key* already is the
        distinct ID or the alias recorded for it, so re-identifying with an
        alias never replaces the original ID.
        """
        self._user_key = key

        if key != self.get(DISTINCT_ID_KEY) and key != self.get(ALIAS_KEY):
            self.delete(ALIAS_KEY)
            self.set(DISTINCT_ID_KEY, key)

        return self

    @property
    def storage_key(self) -> str:
        if self._storage_key is None:
            return self.generate_storage_key()
        return self._storage_key

    @storage_key.setter
    def storage_key(self, key: str) -> None:
        self._storage_key = key

    def generate_storage_key(self) -> str:
        return f"mixpanel:{self._project_token}:{self._user_key}"

    @property
    def lifetime(self) -> int:
        """Seconds the persisted state remains valid."""
        return self._lifetime

    @lifetime.setter
    def lifetime(self, seconds: int) -> None:
        self._lifetime = int(seconds)

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    def _loaded_state(self) -> dict[str, Any]:
        if self._state is None:
            self._state = self._load_state()
        return self._state

    def set(self, key: str, value: Any) -> StorageBase:
        """Store *value* under *key*, flushing only if it changed."""
        state = self._loaded_state()
        if key not in state or state[key] != value:
            state[key] = value
            self.store_state()
        return self

    def add(self, key: str, value: Any, default: Any = REGISTER_ONCE_DEFAULT) -> StorageBase:
        """Store *value* unless *key* already holds a meaningful value.

        A key counts as free when it is absent or still holds *default*.
        """
        state = self._loaded_state()
        if key in state and state[key] == value:
            return self

        if key not in state or state[key] == default:
            state[key] = value
            self.store_state()
        return self

    def get(self, key: str, default: Any = None) -> Any:
        return self._loaded_state().get(key, default)

    def delete(self, key: str) -> StorageBase:
        state = self._loaded_state()
        if key in state:
            del state[key]
            self.store_state()
        return self

    def get_state(self) -> dict[str, Any]:
        """Public view of the state: reserved keys are never included."""
        return filter_state(self._loaded_state())

    def _raw_state(self) -> dict[str, Any]:
        """Full state including reserved keys, as written to the medium."""
        return copy.deepcopy(self._loaded_state())

    @staticmethod
    def _decode_state(blob: Any, *, source: str) -> dict[str, Any]:
        """Decode a persisted JSON object, treating anything unusable as empty."""
        if blob is None or blob == "":
            return {}
        try:
            decoded = json.loads(blob)
        except (TypeError, ValueError, RecursionError):
            _logger.debug("Discarding unparseable state from %s", source)
            return {}
        if not isinstance(decoded, dict):
            _logger.debug("Discarding non-object state from %s", source)
            return {}
        return decoded

    @abc.abstractmethod
    def _load_state(self) -> dict[str, Any]:
        """Read the persisted state. Must never raise on corrupt data."""

    @abc.abstractmethod
    def store_state(self) -> StorageBase:
        """Commit the cached state to the backing medium."""
