"""
Root pytest configuration for the Django project.

This module configures pytest-django and provides project-wide hooks.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

import django
import pytest

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # The test client speaks plain HTTP
    settings.SECURE_SSL_REDIRECT = False

    # Lock tests mock the Redis client; a real server is only used when
    # REDIS_URL is exported for the integration run
    if "REDIS_URL" not in os.environ:
        settings.CACHES = {
            "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"}
        }


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_views.py, test_tasks.py, test_handlers.py, etc. → integration
    - test_models.py, test_state_transitions.py, test_locks.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_health_check.py",
        "test_ledger_service.py",
        "test_settlement_coordinator.py",
        "test_settlement_executor.py",
        "test_aggregation.py",
        "test_optimistic_locking.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_services.py",
        "test_state_transitions.py",
        "test_locks.py",
        "test_bucket_calculator.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = os.path.basename(str(item.fspath))

        if filename in integration_patterns:
            item.add_marker(pytest.mark.integration)
        elif filename in unit_patterns:
            item.add_marker(pytest.mark.unit)
        else:
            # Default: integration (safe for Django where most tests hit DB)
            item.add_marker(pytest.mark.integration)
