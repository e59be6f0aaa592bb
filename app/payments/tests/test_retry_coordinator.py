"""
Tests for RetryCoordinator.

Tests cover:
- Re-dispatching refunds in the retry set
- Retry ceiling and permanent failures
- Adoption of gateway refunds created by a timed-out attempt
- Claims when several runners overlap
- One refund's unexpected error not stopping the rest of a pass
- Releasing claims left behind by a crashed runner
- Single refund retries from the staff API
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from payments.exceptions import (
    GatewayPaymentNotRefundableError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)
from payments.ledger import RefundLedger
from payments.models import RefundTransaction
from payments.services import (
    RefundOrchestrator,
    RetryCoordinator,
    RetryOutcome,
    RetrySummary,
)
from payments.state_machines import (
    PaymentStatus,
    RefundAuditAction,
    RefundStatus,
    RefundType,
)
from payments.tests.factories import (
    PaymentTransactionFactory,
    RefundTransactionFactory,
    make_gateway_refund,
)

ADAPTER = "payments.services.refund_orchestrator.PayMongoAdapter"


@pytest.fixture(autouse=True)
def _quiet_notifications(mock_notifier):
    yield mock_notifier


@pytest.fixture
def queued_refund(gcash_payment):
    """Refund that failed once with a transient gateway error."""
    return RefundTransactionFactory(
        booking=gcash_payment.booking,
        payment_transaction=gcash_payment,
        status=RefundStatus.FAILED,
        retryable=True,
        retry_count=1,
        failure_reason="PayMongo returned HTTP 503",
    )


def reload(refund):
    return RefundTransaction.objects.get(pk=refund.pk)


def audit_actions(refund):
    return list(refund.audit_logs.order_by("pk").values_list("action", flat=True))


# =============================================================================
# RetrySummary
# =============================================================================


class TestRetrySummary:
    def test_skipped_refunds_are_not_attempts(self):
        summary = RetrySummary()

        summary.record(RetryOutcome.SUCCEEDED)
        summary.record(RetryOutcome.STILL_FAILED)
        summary.record(RetryOutcome.SKIPPED)

        assert summary.to_dict() == {
            "attempted": 2,
            "succeeded": 1,
            "still_failed": 1,
            "permanently_failed": 0,
            "skipped": 1,
        }


# =============================================================================
# Retry Pass
# =============================================================================


class TestRetryFailedRefunds:
    def test_successful_retry(self, queued_refund, mock_create_refund):
        summary = RetryCoordinator.retry_failed_refunds()

        assert summary.attempted == 1
        assert summary.succeeded == 1

        refund = reload(queued_refund)
        assert refund.status == RefundStatus.PROCESSING
        assert refund.gateway_refund_id == "ref_test_123"
        assert refund.retryable is False
        assert refund.failure_reason is None
        assert refund.retry_count == 1
        assert audit_actions(refund) == [
            RefundAuditAction.RETRIED,
            RefundAuditAction.DISPATCHED,
        ]
        assert "Retry attempt 2 started" in refund.notes

        params = mock_create_refund.call_args[0][0]
        assert params.idempotency_key.startswith(f"create_refund:{refund.pk}:2:")

    def test_transient_failure_stays_queued(self, queued_refund):
        with patch(f"{ADAPTER}.create_refund", side_effect=GatewayUnavailableError("down")):
            summary = RetryCoordinator.retry_failed_refunds()

        assert summary.still_failed == 1
        refund = reload(queued_refund)
        assert refund.status == RefundStatus.FAILED
        assert refund.retryable is True
        assert refund.retry_count == 2

    def test_permanent_failure_leaves_retry_set(self, queued_refund):
        with patch(
            f"{ADAPTER}.create_refund",
            side_effect=GatewayPaymentNotRefundableError("Payment not refundable"),
        ):
            summary = RetryCoordinator.retry_failed_refunds()

        assert summary.permanently_failed == 1
        refund = reload(queued_refund)
        assert refund.retryable is False
        assert refund.requires_manual_processing is True
        assert RetryCoordinator.retry_failed_refunds().attempted == 0

    def test_refund_at_ceiling_is_given_up(self, gcash_payment, settings, mock_create_refund):
        settings.REFUND_MAX_RETRIES = 3
        refund = RefundTransactionFactory(
            booking=gcash_payment.booking,
            payment_transaction=gcash_payment,
            status=RefundStatus.FAILED,
            retryable=True,
            retry_count=3,
        )

        summary = RetryCoordinator.retry_failed_refunds()

        assert summary.permanently_failed == 1
        mock_create_refund.assert_not_called()
        refund = reload(refund)
        assert refund.status == RefundStatus.FAILED
        assert refund.retryable is False
        assert refund.requires_manual_processing is True
        assert "Automatic retries stopped" in refund.notes
        assert audit_actions(refund) == [RefundAuditAction.FAILED]

    def test_filters_by_booking(self, queued_refund, mock_create_refund):
        other = RefundTransactionFactory(status=RefundStatus.FAILED, retryable=True)

        summary = RetryCoordinator.retry_failed_refunds(booking_id=other.booking_id)

        assert summary.attempted == 1
        assert reload(queued_refund).status == RefundStatus.FAILED
        assert reload(other).status == RefundStatus.PROCESSING

    def test_refund_claimed_by_another_runner_is_skipped(
        self, queued_refund, mock_create_refund
    ):
        with patch.object(RefundLedger, "claim_for_retry", return_value=False):
            summary = RetryCoordinator.retry_failed_refunds()

        assert summary.skipped == 1
        assert summary.attempted == 0
        mock_create_refund.assert_not_called()

    def test_pending_refund_waiting_for_payment_id(self, db, mock_create_refund):
        """Refund queued before payment.paid arrived goes out once the id is known."""
        payment = PaymentTransactionFactory(
            status=PaymentStatus.SUCCEEDED, provider_transaction_id="pay_arrived"
        )
        refund = RefundTransactionFactory(
            booking=payment.booking,
            payment_transaction=payment,
            status=RefundStatus.PENDING,
            retryable=True,
        )

        summary = RetryCoordinator.retry_failed_refunds()

        assert summary.succeeded == 1
        assert mock_create_refund.call_args[0][0].payment_id == "pay_arrived"
        assert reload(refund).status == RefundStatus.PROCESSING

    def test_payment_id_still_missing_gives_up(self, db, mock_create_refund):
        payment = PaymentTransactionFactory(status=PaymentStatus.SUCCEEDED)
        refund = RefundTransactionFactory(
            booking=payment.booking,
            payment_transaction=payment,
            status=RefundStatus.FAILED,
            retryable=True,
            retry_count=1,
        )

        with patch(f"{ADAPTER}.find_payment_for_source", return_value=None):
            summary = RetryCoordinator.retry_failed_refunds()

        assert summary.permanently_failed == 1
        assert reload(refund).requires_manual_processing is True
        mock_create_refund.assert_not_called()


# =============================================================================
# Unknown Outcomes
# =============================================================================


class TestUnknownOutcomeRetries:
    @pytest.fixture
    def timed_out_refund(self, gcash_payment):
        return RefundTransactionFactory(
            booking=gcash_payment.booking,
            payment_transaction=gcash_payment,
            status=RefundStatus.FAILED,
            retryable=True,
            outcome_unknown=True,
            retry_count=1,
        )

    def test_adopts_refund_created_by_timed_out_attempt(
        self, timed_out_refund, mock_create_refund
    ):
        adopted = make_gateway_refund(
            "ref_adopted",
            metadata={"refund_transaction_id": str(timed_out_refund.pk)},
        )
        unrelated = make_gateway_refund(
            "ref_unrelated", metadata={"refund_transaction_id": "0"}
        )

        with patch(f"{ADAPTER}.list_refunds", return_value=[unrelated, adopted]) as mock_list:
            summary = RetryCoordinator.retry_failed_refunds()

        mock_list.assert_called_once_with("pay_test_settled")
        mock_create_refund.assert_not_called()
        assert summary.succeeded == 1

        refund = reload(timed_out_refund)
        assert refund.status == RefundStatus.PROCESSING
        assert refund.gateway_refund_id == "ref_adopted"
        assert refund.outcome_unknown is False
        assert "Adopted existing PayMongo refund ref_adopted" in refund.notes
        assert audit_actions(refund)[-1] == RefundAuditAction.RECONCILED

    def test_no_gateway_refund_redispatches_with_same_key(
        self, timed_out_refund, mock_create_refund
    ):
        with patch(f"{ADAPTER}.list_refunds", return_value=[]):
            RetryCoordinator.retry_failed_refunds()

        params = mock_create_refund.call_args[0][0]
        assert params.idempotency_key.startswith(f"create_refund:{timed_out_refund.pk}:1:")

    def test_listing_failure_keeps_outcome_unknown(
        self, timed_out_refund, mock_create_refund
    ):
        with patch(f"{ADAPTER}.list_refunds", side_effect=GatewayTimeoutError("timed out")):
            summary = RetryCoordinator.retry_failed_refunds()

        assert summary.still_failed == 1
        mock_create_refund.assert_not_called()
        refund = reload(timed_out_refund)
        assert refund.outcome_unknown is True
        assert refund.retryable is True
        assert refund.retry_count == 2
        failed = refund.audit_logs.filter(action=RefundAuditAction.FAILED).get()
        assert failed.details["error_code"] == "OUTCOME_UNKNOWN"


# =============================================================================
# Unexpected Errors and Stale Claims
# =============================================================================


class TestRetryIsolation:
    @pytest.fixture
    def second_refund(self, db):
        """Queued refund on another booking."""
        return RefundTransactionFactory(
            status=RefundStatus.FAILED, retryable=True, retry_count=1
        )

    def test_unexpected_dispatch_error_does_not_stop_the_pass(
        self, queued_refund, second_refund
    ):
        with patch(
            f"{ADAPTER}.create_refund",
            side_effect=[RuntimeError("connection reset"), make_gateway_refund()],
        ) as mock_create:
            summary = RetryCoordinator.retry_failed_refunds()

        assert mock_create.call_count == 2
        assert summary.attempted == 2
        assert summary.succeeded == 1
        assert summary.still_failed == 1

        refunds = [reload(queued_refund), reload(second_refund)]
        assert sorted(r.status for r in refunds) == sorted(
            [RefundStatus.FAILED, RefundStatus.PROCESSING]
        )
        failed = next(r for r in refunds if r.status == RefundStatus.FAILED)
        assert failed.retryable is True
        assert failed.outcome_unknown is True
        assert failed.gateway_refund_id is None

    def test_error_after_claim_returns_refund_to_retry_set(
        self, gcash_payment, second_refund, mock_create_refund
    ):
        timed_out = RefundTransactionFactory(
            booking=gcash_payment.booking,
            payment_transaction=gcash_payment,
            status=RefundStatus.FAILED,
            retryable=True,
            outcome_unknown=True,
            retry_count=1,
        )

        with patch(f"{ADAPTER}.list_refunds", side_effect=RuntimeError("bad payload")):
            summary = RetryCoordinator.retry_failed_refunds()

        assert summary.attempted == 2
        assert summary.still_failed == 1
        assert summary.succeeded == 1
        assert reload(second_refund).status == RefundStatus.PROCESSING

        refund = reload(timed_out)
        assert refund.status == RefundStatus.FAILED
        assert refund.retryable is True
        assert refund.outcome_unknown is True
        assert refund.retry_count == 2
        failed = refund.audit_logs.filter(action=RefundAuditAction.FAILED).get()
        assert failed.details["error_code"] == "RETRY_INTERRUPTED"

    def test_error_before_claim_leaves_refund_untouched(self, queued_refund):
        with patch.object(
            RefundLedger, "claim_for_retry", side_effect=RuntimeError("db gone")
        ):
            summary = RetryCoordinator.retry_failed_refunds()

        assert summary.still_failed == 1
        refund = reload(queued_refund)
        assert refund.status == RefundStatus.FAILED
        assert refund.retry_count == 1
        assert refund.audit_logs.count() == 0

    def test_single_retry_reports_interrupted_attempt(self, queued_refund):
        with patch.object(
            RefundOrchestrator,
            "resolve_gateway_payment_id",
            side_effect=RuntimeError("boom"),
        ):
            result = RetryCoordinator.retry_refund(queued_refund.pk)

        assert result.success is True
        assert result.data == RetryOutcome.STILL_FAILED
        refund = reload(queued_refund)
        assert refund.status == RefundStatus.FAILED
        assert refund.retryable is True


class TestReleaseStaleClaims:
    def age(self, refund, minutes):
        RefundTransaction.objects.filter(pk=refund.pk).update(
            updated_at=timezone.now() - timedelta(minutes=minutes)
        )

    def test_releases_old_claim_without_gateway_refund(self, db):
        refund = RefundTransactionFactory(status=RefundStatus.PROCESSING, retry_count=1)
        self.age(refund, 45)

        assert RetryCoordinator.release_stale_claims(older_than_minutes=30) == 1

        refund = reload(refund)
        assert refund.status == RefundStatus.FAILED
        assert refund.retryable is True
        assert refund.outcome_unknown is True
        assert refund.retry_count == 2
        assert refund in RefundLedger.retry_candidates()

    def test_leaves_live_and_dispatched_refunds(self, db):
        recent = RefundTransactionFactory(status=RefundStatus.PROCESSING)
        dispatched = RefundTransactionFactory(
            status=RefundStatus.PROCESSING, gateway_refund_id="ref_sent"
        )
        manual = RefundTransactionFactory(
            status=RefundStatus.PROCESSING, refund_type=RefundType.MANUAL
        )
        self.age(dispatched, 45)
        self.age(manual, 45)

        assert RetryCoordinator.release_stale_claims(older_than_minutes=30) == 0

        for refund in (recent, dispatched, manual):
            assert reload(refund).status == RefundStatus.PROCESSING

    def test_released_refund_checks_paymongo_before_redispatch(
        self, gcash_payment, mock_create_refund
    ):
        refund = RefundTransactionFactory(
            booking=gcash_payment.booking,
            payment_transaction=gcash_payment,
            status=RefundStatus.PROCESSING,
            retry_count=1,
        )
        self.age(refund, 45)
        RetryCoordinator.release_stale_claims(older_than_minutes=30)
        sent = make_gateway_refund(
            "ref_sent", metadata={"refund_transaction_id": str(refund.pk)}
        )

        with patch(f"{ADAPTER}.list_refunds", return_value=[sent]):
            summary = RetryCoordinator.retry_failed_refunds()

        assert summary.succeeded == 1
        mock_create_refund.assert_not_called()
        assert reload(refund).gateway_refund_id == "ref_sent"


# =============================================================================
# Single Retry
# =============================================================================


class TestRetryRefund:
    def test_retries_queued_refund(self, queued_refund, mock_create_refund):
        result = RetryCoordinator.retry_refund(queued_refund.pk)

        assert result.success is True
        assert result.data == RetryOutcome.SUCCEEDED

    def test_unknown_refund(self, db):
        assert RetryCoordinator.retry_refund(999999).error_code == "REFUND_NOT_FOUND"

    def test_permanent_failure_cannot_be_retried(self, db):
        refund = RefundTransactionFactory(status=RefundStatus.FAILED, retryable=False)

        result = RetryCoordinator.retry_refund(refund.pk)

        assert result.error_code == "INVALID_REFUND_STATE"

    def test_processed_refund_cannot_be_retried(self, db):
        refund = RefundTransactionFactory(status=RefundStatus.PROCESSED)

        assert RetryCoordinator.retry_refund(refund.pk).error_code == "INVALID_REFUND_STATE"
