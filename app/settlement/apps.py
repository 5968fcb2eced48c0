"""
Settlement app configuration.

This app provides the settlement ledger including:
- Payment transactions and gateway integration
- Seller balance ledger
- Payout engine
- Invoice and report generation
"""

from django.apps import AppConfig


class SettlementConfig(AppConfig):
    """Configuration for the settlement application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "settlement"
    verbose_name = "Settlement"
