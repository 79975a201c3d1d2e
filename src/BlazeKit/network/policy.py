"""HTTP policy constants and defaults.

Defines timeout budgets, connection pooling parameters, and the wire-level
header names used by the upload protocol.  Timeouts here are fallbacks; the
values in :class:`BlazeKit.settings.ClientSettings` take precedence when a
client is built from settings.
"""

# ============================================================================
# Timeouts (seconds)
# ============================================================================

HTTP_CONNECT_TIMEOUT = 10.0

HTTP_READ_TIMEOUT = 120.0

HTTP_WRITE_TIMEOUT = 120.0

HTTP_POOL_TIMEOUT = 10.0

# ============================================================================
# Connection pooling
# ============================================================================

MAX_CONNECTIONS = 32

MAX_KEEPALIVE_CONNECTIONS = 16

KEEPALIVE_EXPIRY = 30.0

HTTP2_ENABLED = True

FOLLOW_REDIRECTS = False

TLS_VERIFY_ENABLED = True

# ============================================================================
# Retry
# ============================================================================

# Only "service too busy" is retried; every other failure is classified.
RETRYABLE_STATUS = 503

# ============================================================================
# Upload protocol headers
# ============================================================================

HEADER_AUTHORIZATION = "Authorization"
HEADER_CONTENT_TYPE = "Content-Type"
HEADER_CONTENT_LENGTH = "Content-Length"
HEADER_FILE_NAME = "X-Bz-File-Name"
HEADER_CONTENT_SHA1 = "X-Bz-Content-Sha1"
HEADER_PART_NUMBER = "X-Bz-Part-Number"
HEADER_INFO_PREFIX = "X-Bz-Info-"
HEADER_LAST_MODIFIED = HEADER_INFO_PREFIX + "src_last_modified_millis"

DEFAULT_CONTENT_TYPE = "b2/x-auto"

USER_AGENT_TEMPLATE = "blazekit/{version} python-httpx/{httpx_version}"
