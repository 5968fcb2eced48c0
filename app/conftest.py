"""
Root pytest configuration for the Django project.

This module configures pytest-django and provides project-wide fixtures.
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

    # The in-memory gateway is refused outside tests
    settings.SETTLEMENT_ALLOW_MOCK_GATEWAY = True
    settings.STRIPE_SECRET_KEY = "sk_test_settlement"
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test_settlement"

    # Use fast password hasher for tests
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (checkout to payout journeys)
    - test_*_service.py, test_tasks.py, etc. → integration
    - test_money.py, test_calculator.py, test_gateways.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    # Filename patterns for each category
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_tasks.py",
        "test_balance_service.py",
        "test_transaction_service.py",
        "test_refund_service.py",
        "test_payout_service.py",
        "test_invoice_service.py",
        "test_report_service.py",
        "test_commission_service.py",
        "test_admin.py",
    ]

    unit_patterns = [
        "test_money.py",
        "test_calculator.py",
        "test_commission_config.py",
        "test_models.py",
        "test_gateways.py",
        "test_retry.py",
        "test_state_transitions.py",
        "test_signals.py",
        "test_locks.py",
        "test_exceptions.py",
        "test_services_base.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filepath = str(item.fspath)
        filename = filepath.split("/")[-1]

        # Check patterns in priority order
        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            # Default: integration (safe for Django where most tests hit DB)
            item.add_marker(pytest.mark.integration)
