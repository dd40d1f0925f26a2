"""Request throttling for public and credential endpoints."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from redamigos.settings import settings

# Shared by every router; throttling only applies in production
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    storage_uri="memory://",
    enabled=settings.env == "production",
)
