from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.infrastructure.db.session import get_db
from main import app


def test_health_ready_and_metrics():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SessionTesting = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override_get_db():
        db = SessionTesting()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as client:
            health = client.get("/health")
            ready = client.get("/ready")
            metrics = client.get("/metrics")
    finally:
        app.dependency_overrides.clear()
        engine.dispose()

    assert health.status_code == 200
    assert health.json()["services"]["database"] == "up"
    assert health.headers["X-Request-ID"]
    assert ready.json()["status"] == "ready"
    assert metrics.status_code == 200
    assert "total_requests" in metrics.text
