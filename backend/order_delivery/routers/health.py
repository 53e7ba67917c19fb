"""Health check endpoints for load balancers and monitoring."""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from order_delivery.config import settings
from order_delivery.models.mixins import utcnow
from order_delivery.unit_of_work import UnitOfWork, get_unit_of_work

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Liveness only; does not touch the database."""
    return {
        "status": "ok",
        "service": "OrderDelivery",
        "timestamp": utcnow().isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check(uow: UnitOfWork = Depends(get_unit_of_work)):
    """200 only when the database answers; 503 otherwise."""
    database_ok = await uow.can_connect()
    return JSONResponse(
        status_code=status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if database_ok else "unhealthy",
            "service": "OrderDelivery",
            "checks": {"database": "ok" if database_ok else "error"},
            "timestamp": utcnow().isoformat(),
        },
    )
