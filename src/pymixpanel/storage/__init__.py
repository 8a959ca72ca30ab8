"""Pluggable per-user state stores.

:class:`StorageBase` holds the medium-independent rules (lazy load,
change-triggered flush, register-once semantics, reserved keys); each
subclass only knows how to read and write its medium.
"""

from pymixpanel.storage.base import StateStorage, StorageBase, filter_state
from pymixpanel.storage.cookie import CookieStorage
from pymixpanel.storage.mapping import MappingStorage
from pymixpanel.storage.memory import MemoryStorage

__all__ = [
    "CookieStorage",
    "MappingStorage",
    "MemoryStorage",
    "StateStorage",
    "StorageBase",
    "filter_state",
]
