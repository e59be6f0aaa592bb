"""
Root pytest configuration for the Django project.

pytest-django loads config.settings_test (see pyproject.toml). App-specific
fixtures are defined in each app's tests/conftest.py.
"""

import pytest


def pytest_configure():
    """Disable throttling so API tests never hit rate limits."""
    from django.conf import settings

    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full payment/refund journeys)
    - test_views.py, test_tasks.py, orchestrator tests, etc. → integration
    - test_models.py, test_eligibility.py, adapter tests, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_payment_orchestrator.py",
        "test_refund_orchestrator.py",
        "test_retry_coordinator.py",
        "test_ledger.py",
        "test_hooks.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_events.py",
        "test_eligibility.py",
        "test_status_mapping.py",
        "test_paymongo_adapter.py",
        "test_locks.py",
        "test_exceptions.py",
        "test_services.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)
