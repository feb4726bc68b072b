"""Health reporting for the proxy and its backend."""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from lmproxy.services.gateway.backend import BackendGateway

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthService:
    """Reports service status based on backend gateway readiness."""

    def __init__(self, gateway: BackendGateway, version: str):
        self.gateway = gateway
        self.version = version
        self._started = time.monotonic()

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started

    def get_health(self) -> Dict[str, Any]:
        """Full health report; ``status`` is "healthy" only when every service is up."""
        sdk_up = self.gateway.is_ready
        # The backend SDK carries its own credentials, so the API shares its status
        services = {
            "claude_code_sdk": "up" if sdk_up else "down",
            "anthropic_api": "up" if sdk_up else "down",
        }
        healthy = all(state == "up" for state in services.values())
        if not healthy:
            logger.warning(f"Health check degraded: {services}")
        return {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": _timestamp(),
            "version": self.version,
            "services": services,
            "uptime": self.uptime,
        }

    def get_simple_health(self) -> Dict[str, Any]:
        """Liveness report; always healthy while the process serves requests."""
        return {
            "status": "healthy",
            "timestamp": _timestamp(),
            "version": self.version,
            "uptime": self.uptime,
        }
