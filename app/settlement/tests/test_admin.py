"""
Tests for the settlement admin.
"""

from decimal import Decimal

import pytest
from django.contrib import admin
from django.contrib.auth import get_user_model
from django.test import RequestFactory

from settlement.admin import CommissionConfigAdmin, CommissionOverrideAdmin, PaymentTransactionAdmin
from settlement.models import (
    BalanceMovement,
    CommissionConfig,
    CommissionOverride,
    PaymentTransaction,
    Payout,
    SellerBalance,
    SellerInvoice,
    SubOrderPayment,
    TransactionRefund,
)
from settlement.state_machines import CommissionOverrideScope
from settlement.tests.factories import PaymentTransactionFactory

LEDGER_MODELS = [
    PaymentTransaction,
    TransactionRefund,
    SubOrderPayment,
    SellerBalance,
    BalanceMovement,
    Payout,
    SellerInvoice,
]


@pytest.fixture
def admin_request(db):
    user = get_user_model().objects.create_superuser(
        username="finance", email="finance@example.com", password="pw"
    )
    request = RequestFactory().post("/admin/")
    request.user = user
    return request


class TestRegistration:
    """Every settlement model has an admin."""

    @pytest.mark.parametrize("model", LEDGER_MODELS + [CommissionConfig, CommissionOverride])
    def test_registered(self, model):
        assert admin.site.is_registered(model)


@pytest.mark.django_db
class TestLedgerAdmin:
    """Ledger models are read-only in the admin."""

    @pytest.mark.parametrize("model", LEDGER_MODELS)
    def test_no_add_change_or_delete(self, model, admin_request):
        model_admin = admin.site._registry[model]

        assert not model_admin.has_add_permission(admin_request)
        assert not model_admin.has_change_permission(admin_request)
        assert not model_admin.has_delete_permission(admin_request)

    def test_amount_display(self):
        txn = PaymentTransactionFactory(amount=Decimal("110.00"))
        model_admin = PaymentTransactionAdmin(PaymentTransaction, admin.site)

        assert model_admin.amount_display(txn) == "110.00 USD"


@pytest.mark.django_db
class TestCommissionAdmin:
    """Commission rates saved in the admin go through the commission service."""

    def test_config_save_keeps_history(self, admin_request):
        model_admin = CommissionConfigAdmin(CommissionConfig, admin.site)
        first = CommissionConfig(default_rate=Decimal("0.12"), notes="launch")
        model_admin.save_model(admin_request, first, form=None, change=False)
        second = CommissionConfig(default_rate=Decimal("0.10"))
        model_admin.save_model(admin_request, second, form=None, change=False)

        active = CommissionConfig.objects.get(is_active=True)
        assert active.pk == second.pk
        assert active.default_rate == Decimal("0.10")
        assert active.last_modified_by == "finance"
        assert CommissionConfig.objects.filter(is_active=False).count() == 1

    def test_existing_config_is_not_editable(self, admin_request):
        model_admin = CommissionConfigAdmin(CommissionConfig, admin.site)

        assert model_admin.has_change_permission(admin_request) is True
        assert model_admin.has_change_permission(admin_request, obj=CommissionConfig()) is False

    def test_override_save(self, admin_request, store_id):
        model_admin = CommissionOverrideAdmin(CommissionOverride, admin.site)
        override = CommissionOverride(
            scope=CommissionOverrideScope.STORE, target_id=store_id, rate=Decimal("0.08")
        )

        model_admin.save_model(admin_request, override, form=None, change=False)

        saved = CommissionOverride.objects.get(target_id=store_id, is_active=True)
        assert saved.rate == Decimal("0.08")
        assert override.pk == saved.pk
