from slowapi import Limiter
from slowapi.util import get_remote_address

from dayplan.core.settings import settings

# Shared by every router; disabled entirely when ENABLE_RATE_LIMITING is false
limiter = Limiter(key_func=get_remote_address, enabled=settings.ENABLE_RATE_LIMITING)
