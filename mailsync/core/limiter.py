"""Rate limiter instance for SlowAPI.

Shared so both main (app.state.limiter) and route modules can use the same
instance without circular imports. Limit strings live here.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)

SYNC_TRIGGER_LIMIT = "30/minute"
SUBSCRIPTION_WRITE_LIMIT = "20/minute"

limit_sync_trigger = limiter.limit(SYNC_TRIGGER_LIMIT)
limit_subscription_writes = limiter.limit(SUBSCRIPTION_WRITE_LIMIT)
