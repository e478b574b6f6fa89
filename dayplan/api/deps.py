"""
Shared router dependencies: external clients and timing
"""
import time
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional

import structlog

from dayplan.core.nlp.parser import PlanParser
from dayplan.core.settings import settings
from dayplan.services.places import PlacesClient

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def performance_timer(operation: str):
    """Context manager for timing operations"""
    start = time.time()
    try:
        yield
    finally:
        logger.info("operation_timed", operation=operation, duration_s=round(time.time() - start, 3))


@lru_cache(maxsize=1)
def get_plan_parser() -> PlanParser:
    return PlanParser()


@lru_cache(maxsize=1)
def get_places_client() -> Optional[PlacesClient]:
    """None when no Maps key is configured; callers skip enrichment"""
    if not settings.GOOGLE_MAPS_API_KEY:
        logger.warning("maps_api_key_missing")
        return None
    return PlacesClient()
