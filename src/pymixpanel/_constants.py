"""Internal constants shared across the library."""

API_HOST = "api.mixpanel.com"
API_SCHEME = "https"
TRACK_PATH = "/track/"

#: Value of the ``mp_lib`` property sent with every event.
LIB_NAME = "python"

#: Default lifetime of persisted state, in seconds (one year).
DEFAULT_LIFETIME = 365 * 24 * 60 * 60

#: Sub-second connect/read timeout for dispatching events.
DEFAULT_TIMEOUT = 0.5

# ------------------------------------------------------------------
# Persisted state keys
# ------------------------------------------------------------------

RESERVED_PREFIX = "__"
DISTINCT_ID_KEY = "distinct_id"
ALIAS_KEY = "__alias"
NAME_TAG_KEY = "mp_name_tag"

#: Sentinel that ``register_once`` is allowed to overwrite.
REGISTER_ONCE_DEFAULT = "None"

#: Marks an initial visit without a referrer.
DIRECT_REFERRER = "$direct"

CAMPAIGN_KEYWORDS: tuple[str, ...] = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
)

# ------------------------------------------------------------------
# Event names
# ------------------------------------------------------------------

ALIAS_EVENT = "$create_alias"
PAGE_VIEW_EVENT = "mp_page_view"
