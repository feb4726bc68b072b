"""FastAPI dependencies: services built in ``create_app`` live on ``app.state``."""
from fastapi import Request

from lmproxy.services.gateway.controller import TranslationController
from lmproxy.services.health import HealthService
from lmproxy.services.metrics import MetricsCollector


def get_controller(request: Request) -> TranslationController:
    return request.app.state.controller


def get_health_service(request: Request) -> HealthService:
    return request.app.state.health


def get_metrics(request: Request) -> MetricsCollector:
    return request.app.state.metrics
