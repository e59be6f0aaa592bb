"""
Pytest fixtures for webhook tests.

Provides fixtures for testing the webhook view, event parsing and
handlers: transactions the events refer to, with Redis and email mocked.
"""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from bookings.models import BookingPaymentStatus
from payments.state_machines import RefundStatus
from payments.tests.factories import (
    BookingFactory,
    PaymentTransactionFactory,
    RefundTransactionFactory,
)


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis_lock():
    """Mock Redis for distributed locking."""
    mock_redis = MagicMock()
    mock_redis.set.return_value = True
    mock_redis.eval.return_value = 1

    with patch("payments.locks.get_redis_connection", return_value=mock_redis):
        yield mock_redis


@pytest.fixture(autouse=True)
def mock_notifier():
    """Keep handler side effects from queueing email."""
    with patch("notifications.hooks.send_payment_email") as mock_task:
        yield mock_task


# =============================================================================
# Transactions
# =============================================================================


@pytest.fixture
def awaiting_payment(db):
    """GCash payment whose customer has been sent to checkout."""
    booking = BookingFactory(
        payment_status=BookingPaymentStatus.AWAITING_PAYMENT_CONFIRMATION
    )
    return PaymentTransactionFactory(booking=booking, gateway_source_id="src_hook")


@pytest.fixture
def dispatched_refund(db):
    """Full automatic refund accepted by PayMongo, awaiting settlement."""
    return RefundTransactionFactory(
        status=RefundStatus.PROCESSING,
        gateway_refund_id="ref_hook",
        amount=Decimal("1500.00"),
    )
