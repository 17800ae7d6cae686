"""Rate limiting via slowapi, keyed on the client address."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from rideshare.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit],
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.rate_limit_enabled,
)
