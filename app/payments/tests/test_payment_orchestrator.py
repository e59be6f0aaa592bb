"""
Tests for PaymentOrchestrator.

Tests cover:
- Payment creation (validation, GCash sources, cash payments)
- Duplicate payment protection
- Lazy status pull from PayMongo
- Idempotent reconciliation and booking side effects
- Cash confirmation and webhook-driven reconciliation
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from bookings.models import Booking, BookingPaymentStatus
from payments.adapters import PaymentIntentResult
from payments.exceptions import GatewayTimeoutError, GatewayUnavailableError
from payments.models import PaymentTransaction
from payments.services import CreatePaymentRequest, PaymentOrchestrator
from payments.state_machines import PaymentMethod, PaymentProvider, PaymentStatus
from payments.tests.factories import (
    BookingFactory,
    PaymentTransactionFactory,
    make_source,
)
from payments.webhooks.events import GatewayEvent, GatewayEventKind

ADAPTER = "payments.services.payment_orchestrator.PayMongoAdapter"


@pytest.fixture(autouse=True)
def notifier():
    with patch("payments.services.payment_orchestrator.PaymentNotifier") as mock:
        yield mock


@pytest.fixture
def mock_schedule_retry():
    with patch("payments.tasks.retry_refunds_for_booking.delay") as mock:
        yield mock


def awaiting_booking(**kwargs):
    return BookingFactory(
        payment_status=BookingPaymentStatus.AWAITING_PAYMENT_CONFIRMATION, **kwargs
    )


# =============================================================================
# Create Payment: Validation
# =============================================================================


class TestCreatePaymentValidation:
    @pytest.mark.parametrize("amount", ["abc", None, "0", "-5.00", "NaN", "0.004"])
    def test_rejects_invalid_amount(self, booking, amount):
        result = PaymentOrchestrator.create_payment(
            CreatePaymentRequest(booking_id=booking.pk, amount=amount, payment_method="gcash")
        )

        assert result.success is False
        assert result.error_code == "INVALID_AMOUNT"
        assert not PaymentTransaction.objects.exists()

    def test_rejects_gcash_above_limit(self, booking):
        result = PaymentOrchestrator.create_payment(
            CreatePaymentRequest(
                booking_id=booking.pk, amount="50000.01", payment_method="gcash"
            )
        )

        assert result.error_code == "INVALID_AMOUNT"
        assert "50000" in result.error

    def test_rejects_amount_below_minimum(self, booking):
        result = PaymentOrchestrator.create_payment(
            CreatePaymentRequest(booking_id=booking.pk, amount="0.50", payment_method="cash")
        )

        assert result.error_code == "INVALID_AMOUNT"

    def test_rejects_unknown_method(self, booking):
        result = PaymentOrchestrator.create_payment(
            CreatePaymentRequest(booking_id=booking.pk, amount="100", payment_method="card")
        )

        assert result.error_code == "INVALID_PAYMENT_METHOD"
        assert "payment_method" in result.errors

    def test_rejects_unknown_booking(self, db):
        result = PaymentOrchestrator.create_payment(
            CreatePaymentRequest(booking_id=999999, amount="100", payment_method="cash")
        )

        assert result.error_code == "BOOKING_NOT_FOUND"

    def test_validation_precedes_gateway_call(self, booking):
        with patch(f"{ADAPTER}.create_source") as mock_create:
            PaymentOrchestrator.create_payment(
                CreatePaymentRequest(booking_id=booking.pk, amount="-1", payment_method="gcash")
            )

        mock_create.assert_not_called()
        assert not PaymentTransaction.objects.exists()


# =============================================================================
# Create Payment: GCash and Cash
# =============================================================================


class TestCreateGcashPayment:
    def test_creates_source_and_pending_transaction(self, booking, settings):
        with patch(f"{ADAPTER}.create_source", return_value=make_source()) as mock_create:
            result = PaymentOrchestrator.create_payment(
                CreatePaymentRequest(
                    booking_id=booking.pk,
                    amount=Decimal("1500.00"),
                    payment_method="GCash",
                )
            )

        assert result.success is True
        txn = result.data.payment_transaction
        assert txn.status == PaymentStatus.PENDING
        assert txn.gateway_source_id == "src_test_new"
        assert txn.provider == PaymentProvider.PAYMONGO
        assert result.data.checkout_url == "https://checkout.paymongo.test/src_test_new"
        assert result.data.requires_redirect is True

        params = mock_create.call_args[0][0]
        assert params.amount_centavos == 150000
        assert params.source_type == "gcash"
        assert params.success_url == settings.PAYMENT_SUCCESS_URL
        assert params.idempotency_key.startswith(f"create_source:{booking.pk}:1:")
        assert params.metadata == {"booking_id": str(booking.pk)}

        booking = Booking.objects.get(pk=booking.pk)
        assert booking.payment_status == BookingPaymentStatus.AWAITING_PAYMENT_CONFIRMATION
        assert booking.payment_method == PaymentMethod.GCASH

    def test_retry_after_failed_attempt_uses_new_key(self, booking):
        PaymentTransactionFactory(booking=booking, status=PaymentStatus.FAILED)

        with patch(f"{ADAPTER}.create_source", return_value=make_source()) as mock_create:
            result = PaymentOrchestrator.create_payment(
                CreatePaymentRequest(booking_id=booking.pk, amount="1500", payment_method="gcash")
            )

        assert result.success is True
        params = mock_create.call_args[0][0]
        assert params.idempotency_key.startswith(f"create_source:{booking.pk}:2:")

    def test_custom_redirect_urls(self, booking):
        with patch(f"{ADAPTER}.create_source", return_value=make_source()) as mock_create:
            PaymentOrchestrator.create_payment(
                CreatePaymentRequest(
                    booking_id=booking.pk,
                    amount="1500",
                    payment_method="gcash",
                    success_url="https://app.example.com/ok",
                    failed_url="https://app.example.com/ko",
                )
            )

        params = mock_create.call_args[0][0]
        assert params.success_url == "https://app.example.com/ok"
        assert params.failed_url == "https://app.example.com/ko"

    def test_gateway_error_records_nothing(self, booking):
        with patch(
            f"{ADAPTER}.create_source",
            side_effect=GatewayUnavailableError("PayMongo is down"),
        ):
            result = PaymentOrchestrator.create_payment(
                CreatePaymentRequest(booking_id=booking.pk, amount="1500", payment_method="gcash")
            )

        assert result.success is False
        assert result.error_code == "PROVIDER_ERROR"
        assert "PayMongo is down" in result.error
        assert not PaymentTransaction.objects.filter(booking=booking).exists()
        assert Booking.objects.get(pk=booking.pk).payment_status == BookingPaymentStatus.NOT_PAID


class TestCreateCashPayment:
    def test_records_manual_pending_payment(self, booking):
        with patch(f"{ADAPTER}.create_source") as mock_create:
            result = PaymentOrchestrator.create_payment(
                CreatePaymentRequest(booking_id=booking.pk, amount="1500", payment_method="cash")
            )

        mock_create.assert_not_called()
        assert result.success is True
        txn = result.data.payment_transaction
        assert txn.provider == PaymentProvider.MANUAL
        assert txn.status == PaymentStatus.PENDING
        assert result.data.requires_redirect is False

        booking = Booking.objects.get(pk=booking.pk)
        assert booking.payment_method == PaymentMethod.CASH
        assert booking.payment_status == BookingPaymentStatus.NOT_PAID

    def test_amount_rounded_half_up_to_centavos(self, booking):
        result = PaymentOrchestrator.create_payment(
            CreatePaymentRequest(
                booking_id=booking.pk, amount="1500.005", payment_method="cash"
            )
        )

        txn = PaymentTransaction.objects.get(pk=result.data.payment_transaction.pk)
        assert txn.amount == Decimal("1500.01")


class TestDuplicatePaymentProtection:
    def test_rejects_paid_booking(self, paid_gcash_booking):
        result = PaymentOrchestrator.create_payment(
            CreatePaymentRequest(
                booking_id=paid_gcash_booking.pk, amount="1500", payment_method="cash"
            )
        )

        assert result.error_code == "PAYMENT_ALREADY_PROCESSED"

    def test_rejects_while_payment_processing(self, booking):
        PaymentTransactionFactory(booking=booking, status=PaymentStatus.PROCESSING)

        result = PaymentOrchestrator.create_payment(
            CreatePaymentRequest(booking_id=booking.pk, amount="1500", payment_method="cash")
        )

        assert result.error_code == "PAYMENT_ALREADY_PROCESSED"

    def test_resets_paid_flag_without_settled_payment(self, db):
        """A paid flag with no succeeded transaction behind it is stale."""
        booking = BookingFactory(payment_status=BookingPaymentStatus.PAID)

        result = PaymentOrchestrator.create_payment(
            CreatePaymentRequest(booking_id=booking.pk, amount="1500", payment_method="cash")
        )

        assert result.success is True
        assert Booking.objects.get(pk=booking.pk).payment_status == BookingPaymentStatus.NOT_PAID


# =============================================================================
# Payment Status
# =============================================================================


class TestGetPaymentStatus:
    def test_unknown_booking(self, db):
        result = PaymentOrchestrator.get_payment_status(999999)

        assert result.error_code == "BOOKING_NOT_FOUND"

    def test_synthesized_without_transactions(self, booking):
        result = PaymentOrchestrator.get_payment_status(booking.pk)

        assert result.success is True
        assert result.data.synthesized is True
        assert result.data.payment_status == BookingPaymentStatus.NOT_PAID
        assert result.data.payment_transaction is None

    def test_pulls_open_source_and_reconciles(self, db, notifier):
        booking = awaiting_booking()
        txn = PaymentTransactionFactory(booking=booking, gateway_source_id="src_pull")

        with patch(
            f"{ADAPTER}.retrieve_source",
            return_value=make_source("src_pull", status="chargeable"),
        ) as mock_retrieve:
            result = PaymentOrchestrator.get_payment_status(booking.pk)

        mock_retrieve.assert_called_once_with("src_pull")
        assert result.data.transaction_status == PaymentStatus.SUCCEEDED
        assert result.data.payment_status == BookingPaymentStatus.PAID
        notifier.payment_status_changed.assert_called_once()
        assert PaymentTransaction.objects.get(pk=txn.pk).status == PaymentStatus.SUCCEEDED

    def test_pulls_intent_and_records_payment_id(self, db):
        booking = awaiting_booking()
        txn = PaymentTransactionFactory(
            booking=booking, gateway_source_id=None, gateway_intent_id="pi_pull"
        )
        intent = PaymentIntentResult(
            id="pi_pull",
            status="succeeded",
            amount_centavos=150000,
            currency="PHP",
            payment_ids=["pay_from_intent"],
        )

        with patch(f"{ADAPTER}.retrieve_payment_intent", return_value=intent):
            PaymentOrchestrator.get_payment_status(booking.pk)

        txn = PaymentTransaction.objects.get(pk=txn.pk)
        assert txn.status == PaymentStatus.SUCCEEDED
        assert txn.provider_transaction_id == "pay_from_intent"

    def test_gateway_error_returns_stored_status(self, db):
        booking = awaiting_booking()
        PaymentTransactionFactory(booking=booking)

        with patch(
            f"{ADAPTER}.retrieve_source", side_effect=GatewayTimeoutError("timed out")
        ):
            result = PaymentOrchestrator.get_payment_status(booking.pk)

        assert result.success is True
        assert result.data.transaction_status == PaymentStatus.PENDING
        assert result.data.payment_status == BookingPaymentStatus.AWAITING_PAYMENT_CONFIRMATION

    def test_terminal_payment_is_not_pulled(self, gcash_payment):
        with patch(f"{ADAPTER}.retrieve_source") as mock_retrieve:
            result = PaymentOrchestrator.get_payment_status(gcash_payment.booking_id)

        mock_retrieve.assert_not_called()
        assert result.data.transaction_status == PaymentStatus.SUCCEEDED

    def test_cash_payment_is_not_pulled(self, db):
        txn = PaymentTransactionFactory(
            payment_method=PaymentMethod.CASH,
            provider=PaymentProvider.MANUAL,
            gateway_source_id=None,
        )

        with patch(f"{ADAPTER}.retrieve_source") as mock_retrieve:
            PaymentOrchestrator.get_payment_status(txn.booking_id)

        mock_retrieve.assert_not_called()


# =============================================================================
# Reconciliation
# =============================================================================


class TestReconcilePayment:
    def test_unknown_transaction(self, db):
        result = PaymentOrchestrator.reconcile_payment(999999, "paid")

        assert result.error_code == "PAYMENT_TRANSACTION_NOT_FOUND"

    def test_success_marks_booking_paid(self, db, notifier):
        booking = awaiting_booking(payment_method=None)
        txn = PaymentTransactionFactory(booking=booking)

        result = PaymentOrchestrator.reconcile_payment(
            txn.pk, "paid", provider_transaction_id="pay_new", origin="webhook"
        )

        outcome = result.data
        assert outcome.changed is True
        assert outcome.booking_marked_paid is True
        assert outcome.previous_status == PaymentStatus.PENDING
        assert outcome.new_status == PaymentStatus.SUCCEEDED
        assert outcome.details["origin"] == "webhook"

        booking = Booking.objects.get(pk=booking.pk)
        assert booking.payment_status == BookingPaymentStatus.PAID
        assert booking.payment_method == PaymentMethod.GCASH
        notifier.payment_status_changed.assert_called_once_with(
            outcome.payment_transaction, PaymentStatus.PENDING
        )

    def test_repeated_status_is_noop(self, gcash_payment, notifier):
        """Should be safe to apply the same webhook twice."""
        result = PaymentOrchestrator.reconcile_payment(gcash_payment.pk, "paid")

        assert result.success is True
        assert result.data.changed is False
        assert result.data.booking_marked_paid is False
        notifier.payment_status_changed.assert_not_called()

    def test_backwards_transition_ignored(self, gcash_payment):
        result = PaymentOrchestrator.reconcile_payment(gcash_payment.pk, "failed")

        assert result.data.changed is False
        assert (
            PaymentTransaction.objects.get(pk=gcash_payment.pk).status
            == PaymentStatus.SUCCEEDED
        )

    def test_failure_marks_awaiting_booking_failed(self, db):
        booking = awaiting_booking()
        txn = PaymentTransactionFactory(booking=booking)

        result = PaymentOrchestrator.reconcile_payment(
            txn.pk, "failed", failure_reason="Insufficient funds"
        )

        assert result.data.new_status == PaymentStatus.FAILED
        assert result.data.payment_transaction.failure_reason == "Insufficient funds"
        assert Booking.objects.get(pk=booking.pk).payment_status == BookingPaymentStatus.FAILED

    def test_expired_source_maps_to_failed(self, db):
        booking = awaiting_booking()
        txn = PaymentTransactionFactory(booking=booking)

        result = PaymentOrchestrator.reconcile_payment(txn.pk, "expired")

        assert result.data.new_status == PaymentStatus.FAILED

    def test_unknown_status_leaves_pending(self, db):
        txn = PaymentTransactionFactory()

        result = PaymentOrchestrator.reconcile_payment(txn.pk, "mystery_status")

        assert result.data.changed is False
        assert result.data.new_status == PaymentStatus.PENDING

    def test_marking_paid_schedules_refund_retry(
        self, db, django_capture_on_commit_callbacks, mock_schedule_retry
    ):
        booking = awaiting_booking()
        txn = PaymentTransactionFactory(booking=booking)

        with django_capture_on_commit_callbacks(execute=True):
            PaymentOrchestrator.reconcile_payment(txn.pk, "paid")

        mock_schedule_retry.assert_called_once_with(booking.pk)

    def test_backfills_payment_id_on_settled_payment(
        self, db, django_capture_on_commit_callbacks, mock_schedule_retry
    ):
        """A late payment.paid supplies the id refunds were waiting for."""
        booking = BookingFactory(payment_status=BookingPaymentStatus.PAID)
        txn = PaymentTransactionFactory(booking=booking, status=PaymentStatus.SUCCEEDED)

        with django_capture_on_commit_callbacks(execute=True):
            result = PaymentOrchestrator.reconcile_payment(
                txn.pk, "paid", provider_transaction_id="pay_late"
            )

        assert result.data.changed is False
        assert result.data.details["provider_transaction_id_backfilled"] is True
        assert (
            PaymentTransaction.objects.get(pk=txn.pk).provider_transaction_id == "pay_late"
        )
        mock_schedule_retry.assert_called_once_with(booking.pk)

    def test_existing_payment_id_not_overwritten(self, gcash_payment):
        PaymentOrchestrator.reconcile_payment(
            gcash_payment.pk, "paid", provider_transaction_id="pay_other"
        )

        assert (
            PaymentTransaction.objects.get(pk=gcash_payment.pk).provider_transaction_id
            == "pay_test_settled"
        )


class TestConfirmCashPayment:
    def test_confirms_pending_cash_payment(self, db):
        booking = BookingFactory(payment_method=PaymentMethod.CASH)
        txn = PaymentTransactionFactory(
            booking=booking,
            payment_method=PaymentMethod.CASH,
            provider=PaymentProvider.MANUAL,
            gateway_source_id=None,
        )

        result = PaymentOrchestrator.confirm_cash_payment(booking.pk, confirmed_by="5")

        assert result.success is True
        assert result.data.new_status == PaymentStatus.SUCCEEDED
        assert PaymentTransaction.objects.get(pk=txn.pk).status == PaymentStatus.SUCCEEDED
        assert Booking.objects.get(pk=booking.pk).payment_status == BookingPaymentStatus.PAID

    def test_no_pending_cash_payment(self, booking):
        PaymentTransactionFactory(booking=booking)

        result = PaymentOrchestrator.confirm_cash_payment(booking.pk)

        assert result.error_code == "PAYMENT_TRANSACTION_NOT_FOUND"


# =============================================================================
# Webhook Events
# =============================================================================


def make_event(kind, resource_id, **attributes):
    return GatewayEvent(
        event_id="evt_unit",
        event_type=kind.value,
        kind=kind,
        resource_id=resource_id,
        attributes=attributes,
    )


class TestApplyGatewayEvent:
    def test_source_chargeable_matches_source(self, db):
        booking = awaiting_booking()
        txn = PaymentTransactionFactory(booking=booking, gateway_source_id="src_evt")

        result = PaymentOrchestrator.apply_gateway_event(
            make_event(GatewayEventKind.SOURCE_CHARGEABLE, "src_evt", status="chargeable")
        )

        assert result.success is True
        assert result.data.payment_transaction.pk == txn.pk
        assert result.data.new_status == PaymentStatus.SUCCEEDED

    def test_payment_paid_matches_originating_source(self, db):
        booking = awaiting_booking()
        txn = PaymentTransactionFactory(booking=booking, gateway_source_id="src_evt")

        PaymentOrchestrator.apply_gateway_event(
            make_event(
                GatewayEventKind.PAYMENT_PAID,
                "pay_evt",
                status="paid",
                source={"id": "src_evt", "type": "gcash"},
            )
        )

        txn = PaymentTransaction.objects.get(pk=txn.pk)
        assert txn.status == PaymentStatus.SUCCEEDED
        assert txn.provider_transaction_id == "pay_evt"

    def test_payment_failed_records_reason(self, db):
        booking = awaiting_booking()
        txn = PaymentTransactionFactory(booking=booking, gateway_intent_id="pi_evt")

        PaymentOrchestrator.apply_gateway_event(
            make_event(
                GatewayEventKind.PAYMENT_FAILED,
                "pay_evt",
                payment_intent_id="pi_evt",
                failed_message="Card declined",
            )
        )

        txn = PaymentTransaction.objects.get(pk=txn.pk)
        assert txn.status == PaymentStatus.FAILED
        assert txn.failure_reason == "Card declined"

    def test_unsupported_event(self, db):
        result = PaymentOrchestrator.apply_gateway_event(
            make_event(GatewayEventKind.REFUND_SUCCEEDED, "ref_evt")
        )

        assert result.error_code == "UNSUPPORTED_EVENT"

    def test_unknown_payment(self, db):
        result = PaymentOrchestrator.apply_gateway_event(
            make_event(GatewayEventKind.PAYMENT_PAID, "pay_unknown")
        )

        assert result.error_code == "PAYMENT_TRANSACTION_NOT_FOUND"
