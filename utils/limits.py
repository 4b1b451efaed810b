"""Request rate limiting shared by the app and its routes."""
from slowapi import Limiter
from slowapi.util import get_remote_address

from config import settings

# In-memory storage; one bucket per client address
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit],
    enabled=settings.rate_limit_enabled,
)
