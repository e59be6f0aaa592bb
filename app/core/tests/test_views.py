"""
Tests for the health check endpoint.
"""

from unittest.mock import patch

from django.db import OperationalError
from django.test import Client


class TestHealthCheck:
    def test_healthy(self, db, settings):
        settings.PAYMONGO_SECRET_KEY = "sk_test_123"

        response = Client().get("/health/")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
            "payment_gateway": "configured",
        }

    def test_missing_gateway_key_is_not_fatal(self, db, settings):
        settings.PAYMONGO_SECRET_KEY = ""

        response = Client().get("/health/")

        assert response.status_code == 200
        assert response.json()["payment_gateway"] == "not_configured"

    def test_database_down(self, db):
        with patch("core.views.connection") as mock_connection:
            mock_connection.cursor.side_effect = OperationalError("no database")
            response = Client().get("/health/")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["database"] == "disconnected"

    def test_cache_down_is_not_fatal(self, db):
        with patch("django.core.cache.cache") as mock_cache:
            mock_cache.set.side_effect = ConnectionError("redis down")
            response = Client().get("/health/")

        assert response.status_code == 200
        assert response.json()["cache"] == "disconnected"
