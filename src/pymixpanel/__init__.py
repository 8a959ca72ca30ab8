"""pymixpanel - Server-side Mixpanel event tracking."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pymixpanel")
except PackageNotFoundError:
    __version__ = "0+local"
from pymixpanel._transport import AiohttpTransport, CurlCliTransport, Transport
from pymixpanel.config import MixpanelConfig
from pymixpanel.context import RequestContext
from pymixpanel.exceptions import (
    MixpanelConfigError,
    MixpanelError,
    MixpanelTransportError,
)
from pymixpanel.identity import DistinctIdGenerator, IdentityGenerator
from pymixpanel.models import EventPayload
from pymixpanel.storage import (
    CookieStorage,
    MappingStorage,
    MemoryStorage,
    StateStorage,
    StorageBase,
)
from pymixpanel.tracker import MixpanelTracker

__all__ = [
    "__version__",
    "AiohttpTransport",
    "CookieStorage",
    "CurlCliTransport",
    "DistinctIdGenerator",
    "EventPayload",
    "IdentityGenerator",
    "MappingStorage",
    "MemoryStorage",
    "MixpanelConfig",
    "MixpanelConfigError",
    "MixpanelError",
    "MixpanelTracker",
    "MixpanelTransportError",
    "RequestContext",
    "StateStorage",
    "StorageBase",
    "Transport",
]
