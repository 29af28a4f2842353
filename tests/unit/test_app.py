"""Application wiring: middleware headers, metrics endpoint, lifespan."""

import json
import os
from unittest.mock import patch

from fastapi.testclient import TestClient

from usage_engine.config import get_settings
from usage_engine.main import create_app
from usage_engine.routers import usage

PRODUCTS = [
    {"name": "Axe DevTools", "project_id": "1", "api_key": "k1", "secret_key": "s1"},
    {"name": "Axe Monitor", "project_id": "2", "api_key": "k2", "secret_key": "s2"},
]


def test_request_id_echoed_and_version_header():
    client = TestClient(create_app())

    response = client.get("/", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-API-Version"] == response.json()["version"]
    assert float(response.headers["X-Response-Time-Ms"]) >= 0


def test_metrics_endpoint_exposes_prometheus_text():
    client = TestClient(create_app())
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "usage_engine_requests_total" in response.text


def test_lifespan_builds_registry_from_settings():
    env = {"AMPLITUDE_PRODUCTS": json.dumps(PRODUCTS), "CACHE_SWEEP_INTERVAL_S": "0"}
    with patch.dict(os.environ, env, clear=True):
        get_settings.cache_clear()
        app = create_app()

        with TestClient(app) as client:
            response = client.get("/api/usage/products")
            health = client.get("/health").json()

        assert [p["slug"] for p in response.json()["products"]] == [
            "axe-devtools",
            "axe-monitor",
        ]
        assert health["status"] == "ok"
        # Registry released on shutdown
        assert usage._registry is None
    get_settings.cache_clear()


def test_lifespan_without_products_is_degraded():
    with patch.dict(os.environ, {"CACHE_SWEEP_INTERVAL_S": "0"}, clear=True):
        get_settings.cache_clear()

        with TestClient(create_app()) as client:
            health = client.get("/health").json()

        assert health["status"] == "degraded"
        assert health["products"] == []
    get_settings.cache_clear()
