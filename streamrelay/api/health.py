"""
Health endpoint.
"""
import logging

from fastapi import APIRouter, Depends

from streamrelay.api.deps import get_services
from streamrelay.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health(services: Services = Depends(get_services)) -> dict:
    """Store and bus reachability plus live stream counts."""
    try:
        await services.store.health_check()
        store_ok = True
    except Exception as e:
        logger.warning("Store health check failed: %s", e)
        store_ok = False

    bus_ok = await services.bus.health_check()

    return {
        "status": "ok" if store_ok and bus_ok else "degraded",
        "store": "ok" if store_ok else "unavailable",
        "bus": "ok" if bus_ok else "unavailable",
        "activeStreams": services.orchestrator.active_count,
        "connections": services.connections.total,
    }
