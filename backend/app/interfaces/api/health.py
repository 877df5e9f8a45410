from time import perf_counter

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.infrastructure.db.session import get_db
from app.infrastructure.observability.metrics import metrics_response

router = APIRouter()


@router.get("/health", status_code=status.HTTP_200_OK)
def health_check(db: Session = Depends(get_db)) -> dict:
    db_status = "up"
    db_latency_ms: float | None = None

    try:
        db_started_at = perf_counter()
        db.execute(text("SELECT 1"))
        db_latency_ms = round((perf_counter() - db_started_at) * 1000, 2)
    except SQLAlchemyError:
        db_status = "down"

    return {
        "status": "ok" if db_status == "up" else "degraded",
        "services": {
            "api": "up",
            "database": db_status,
            "db_latency_ms": db_latency_ms,
        },
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(response: Response, db: Session = Depends(get_db)) -> dict:
    payload = health_check(db)
    if payload["services"]["database"] != "up":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "services": payload["services"]}
    return {"status": "ready", "services": payload["services"]}


@router.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_response()
