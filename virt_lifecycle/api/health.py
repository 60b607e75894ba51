import logging
from fastapi import APIRouter, status

from ..core.config import APP_NAME, APP_VERSION
from ..deps import get_registry
from ..libvirt.watcher import active_watchers

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])


@router.get("/ping", status_code=status.HTTP_200_OK)
def ping():
    """Basic liveness check."""
    return {"ping": "pong"}


@router.get("/healthz", status_code=status.HTTP_200_OK)
def healthz():
    """Application health: configuration loaded and watchers running."""
    try:
        registry = get_registry()
        summary = {
            "app_name": APP_NAME,
            "version": APP_VERSION,
            "hypervisor_count": len(registry.hypervisors),
            "active_watchers": len(active_watchers()),
        }
        return {"status": "ok", "details": summary}
    except Exception as exc:
        logger.exception("Health check failed: %s", exc)
        return {"status": "error", "error": str(exc)}
