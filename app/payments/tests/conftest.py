"""
Pytest fixtures for payment tests.

This module provides fixtures for bookings, payments and refunds in the
states the orchestrators act on, plus patched PayMongo calls.

Redis is replaced by a MagicMock for every test in this package so the
refund lock never needs a running server.

Usage:
    def test_refund_paid_booking(paid_gcash_booking, mock_create_refund):
        result = RefundOrchestrator.process_refund(...)
        assert result.success
"""

from unittest.mock import MagicMock, patch

import pytest

from bookings.models import BookingPaymentStatus
from payments.state_machines import PaymentMethod, PaymentProvider, PaymentStatus
from payments.tests.factories import (
    BookingFactory,
    PaymentTransactionFactory,
    UserFactory,
    make_gateway_refund,
)


# =============================================================================
# Redis
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis_lock():
    """Mock Redis for distributed locking."""
    mock_redis = MagicMock()
    mock_redis.set.return_value = True
    mock_redis.get.return_value = None
    mock_redis.eval.return_value = 1

    with patch("payments.locks.get_redis_connection", return_value=mock_redis):
        yield mock_redis


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def customer(db):
    """Pet owner who makes bookings."""
    return UserFactory(username="owner", email="owner@example.com")


@pytest.fixture
def staff_user(db):
    return UserFactory(username="staff", is_staff=True)


@pytest.fixture
def admin_user(db):
    return UserFactory(username="admin", is_staff=True, is_superuser=True)


# =============================================================================
# Booking Fixtures
# =============================================================================


@pytest.fixture
def booking(db, customer):
    """Confirmed, unpaid booking."""
    return BookingFactory(customer=customer)


@pytest.fixture
def gcash_payment(db, customer):
    """Settled GCash payment of PHP 1,500 on a paid booking."""
    booking = BookingFactory(
        customer=customer,
        payment_status=BookingPaymentStatus.PAID,
        payment_method=PaymentMethod.GCASH,
    )
    return PaymentTransactionFactory(
        booking=booking,
        status=PaymentStatus.SUCCEEDED,
        provider_transaction_id="pay_test_settled",
    )


@pytest.fixture
def paid_gcash_booking(gcash_payment):
    return gcash_payment.booking


@pytest.fixture
def cash_payment(db, customer):
    """Confirmed cash payment of PHP 1,500 on a paid booking."""
    booking = BookingFactory(
        customer=customer,
        payment_status=BookingPaymentStatus.PAID,
        payment_method=PaymentMethod.CASH,
    )
    return PaymentTransactionFactory(
        booking=booking,
        payment_method=PaymentMethod.CASH,
        provider=PaymentProvider.MANUAL,
        status=PaymentStatus.SUCCEEDED,
        gateway_source_id=None,
    )


@pytest.fixture
def paid_cash_booking(cash_payment):
    return cash_payment.booking


# =============================================================================
# PayMongo Results
# =============================================================================


@pytest.fixture
def mock_create_refund():
    """PayMongo accepts every refund with id ref_test_123."""
    with patch(
        "payments.services.refund_orchestrator.PayMongoAdapter.create_refund",
        return_value=make_gateway_refund(),
    ) as mock:
        yield mock


@pytest.fixture
def mock_notifier():
    """Record notifier calls without queueing email."""
    with patch("notifications.hooks.send_payment_email") as mock_task:
        yield mock_task
