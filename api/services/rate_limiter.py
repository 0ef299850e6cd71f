"""
Inbound rate limiting for the API.

One Limiter keyed by client IP is shared by every route module; the
identify route applies API_RATE_LIMIT on top of it. Outbound limits for
price sources live on each adapter's own token bucket instead.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
