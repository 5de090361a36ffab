# /convoflow/utils/rate_limiter.py

from slowapi import Limiter
from convoflow.utils.request_utils import get_remote_address
from convoflow.config.settings import settings

# Shared limiter instance. main.py registers it on the app and the automation
# routes decorate the inbound message endpoint with it. Counters live in Redis
# when it is configured.

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.redis_url or "memory://",
)
