from contextlib import asynccontextmanager
import logging

from app.core.usage_limit import get_usage_limiter
from app.core.usage_store import load_admin, load_usage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app):
    limiter = get_usage_limiter()
    admin = load_admin(limiter.storage)
    usage = load_usage(limiter.storage)
    if admin.ok and usage.ok:
        config = admin.value
        logger.info(
            "usage_store_ready users=%s rate_limit_enabled=%s allow_list=%s",
            len(usage.value_or({})),
            config.rate_limit_enabled,
            len(config.allow_list),
        )
    else:
        logger.warning("usage_store_unavailable_at_startup: %s", admin.error or usage.error)
    yield
