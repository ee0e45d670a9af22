from fastapi import APIRouter

from logging_config import get_logger
from schemas.signals import HealthResponse, epoch_millis

logger = get_logger(__name__)

health_router = APIRouter(tags=["health"])


@health_router.get("/", response_model=HealthResponse)
async def health_check():
    # Fixed body so load balancers can check liveness without opening a WebSocket
    return HealthResponse(status="ok", ts=epoch_millis())
