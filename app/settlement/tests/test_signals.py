"""
Tests for settlement domain events.
"""

import uuid

import pytest
from django.db import transaction

from settlement.models import PaymentTransaction
from settlement.signals import emit_on_commit, payment_confirmed


@pytest.fixture
def receivers():
    calls = []

    def broken(sender, **kwargs):
        raise RuntimeError("notification service down")

    def working(sender, **kwargs):
        calls.append(kwargs)

    payment_confirmed.connect(broken, weak=False, dispatch_uid="test-broken")
    payment_confirmed.connect(working, weak=False, dispatch_uid="test-working")
    yield calls
    payment_confirmed.disconnect(dispatch_uid="test-broken")
    payment_confirmed.disconnect(dispatch_uid="test-working")


@pytest.mark.django_db
class TestEmitOnCommit:
    """Tests for emit_on_commit."""

    def test_waits_for_commit(self, receivers, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            emit_on_commit(
                payment_confirmed,
                sender=PaymentTransaction,
                order_id=uuid.uuid4(),
                transaction_id=uuid.uuid4(),
            )

        assert receivers == []
        assert len(callbacks) == 1

    def test_failing_receiver_does_not_block_others(
        self, receivers, django_capture_on_commit_callbacks, mocker
    ):
        logger = mocker.patch("settlement.signals.logger")
        order_id = uuid.uuid4()

        with django_capture_on_commit_callbacks(execute=True):
            emit_on_commit(
                payment_confirmed,
                sender=PaymentTransaction,
                order_id=order_id,
                transaction_id=uuid.uuid4(),
            )

        assert receivers[0]["order_id"] == order_id
        logger.error.assert_called_once()
        assert logger.error.call_args[0][0] == "Settlement event receiver failed"

    def test_dropped_on_rollback(self, receivers, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            with pytest.raises(RuntimeError):
                with transaction.atomic():
                    emit_on_commit(
                        payment_confirmed,
                        sender=PaymentTransaction,
                        order_id=uuid.uuid4(),
                        transaction_id=uuid.uuid4(),
                    )
                    raise RuntimeError("rolled back")

        assert callbacks == []
        assert receivers == []
