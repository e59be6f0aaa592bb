"""
Retry coordinator for automatic refunds that failed transiently.

Runs from the Celery beat schedule, from the staff API, and right after a
payment is confirmed (refunds queued because the gateway payment id was not
yet known). Several runners may overlap; each refund is claimed with a
conditional UPDATE so only one of them re-dispatches it.

Usage:
    from payments.services import RetryCoordinator

    summary = RetryCoordinator.retry_failed_refunds(limit=100)
    summary.to_dict()
    # {"attempted": 3, "succeeded": 2, "still_failed": 1, ...}
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum

from django.utils import timezone

from core.services import BaseService, ServiceResult
from notifications.hooks import PaymentNotifier
from payments.adapters import PayMongoAdapter
from payments.exceptions import GatewayError
from payments.ledger import RecordTransitionParams, RefundLedger
from payments.models import RefundTransaction
from payments.state_machines import (
    InitiatorType,
    RefundAuditAction,
    RefundStatus,
)

from .refund_orchestrator import RefundOrchestrator

SYSTEM_ACTOR = RecordTransitionParams(performed_by_type=InitiatorType.SYSTEM)


class RetryOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    STILL_FAILED = "still_failed"
    PERMANENTLY_FAILED = "permanently_failed"
    SKIPPED = "skipped"


@dataclass
class RetrySummary:
    """Counts for one retry pass."""

    attempted: int = 0
    succeeded: int = 0
    still_failed: int = 0
    permanently_failed: int = 0
    skipped: int = 0

    def record(self, outcome: RetryOutcome) -> None:
        if outcome != RetryOutcome.SKIPPED:
            self.attempted += 1
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class RetryCoordinator(BaseService):
    """Re-dispatches retryable refunds until they succeed or hit the ceiling."""

    @classmethod
    def retry_failed_refunds(
        cls, booking_id: int | None = None, limit: int | None = None
    ) -> RetrySummary:
        """
        Retry every refund in the retry set.

        Args:
            booking_id: Only retry refunds for this booking
            limit: Maximum number of candidates to look at
        """
        summary = RetrySummary()
        for refund in RefundLedger.retry_candidates(booking_id=booking_id, limit=limit):
            summary.record(cls._attempt(refund))

        cls.get_logger().info(
            "Refund retry pass finished",
            extra={"booking_id": booking_id, **summary.to_dict()},
        )
        return summary

    @classmethod
    def retry_refund(cls, refund_id: int) -> ServiceResult[RetryOutcome]:
        """Retry a single refund on demand."""
        refund = RefundLedger.get(refund_id)
        if refund is None:
            return ServiceResult.failure(
                f"Refund {refund_id} not found", error_code="REFUND_NOT_FOUND"
            )
        if not refund.retryable or refund.status not in (
            RefundStatus.FAILED,
            RefundStatus.PENDING,
        ):
            return ServiceResult.failure(
                "Refund is not waiting for a retry",
                error_code="INVALID_REFUND_STATE",
            )
        return ServiceResult.success(cls._attempt(refund))

    @classmethod
    def release_stale_claims(cls, older_than_minutes: int = 30) -> int:
        """
        Fail refunds left PROCESSING by a retry runner that died mid-attempt.

        A claimed row has no gateway refund id until PayMongo answers, so the
        next retry checks PayMongo for it before dispatching again.
        """
        claimed_before = timezone.now() - timedelta(minutes=older_than_minutes)
        released = 0
        for refund in RefundLedger.stale_claims(claimed_before):
            if cls.release_claim(
                refund.pk,
                "Retry attempt did not finish",
                claimed_before=claimed_before,
            ):
                released += 1

        if released:
            cls.get_logger().warning(
                "Released stale refund retry claims",
                extra={"count": released, "older_than_minutes": older_than_minutes},
            )
        return released

    @classmethod
    def release_claim(
        cls,
        refund_id: int,
        reason: str,
        claimed_before: datetime | None = None,
    ) -> bool:
        """
        Put a claimed refund back in the retry set.

        Only a PROCESSING row without a gateway refund id is touched; once
        PayMongo has answered the row belongs to the normal flow.
        """
        with cls.atomic():
            refund = RefundLedger.get_for_update(refund_id)
            if (
                refund is None
                or refund.status != RefundStatus.PROCESSING
                or refund.gateway_refund_id
                or not refund.is_automatic
            ):
                return False
            if claimed_before is not None and refund.updated_at >= claimed_before:
                return False
            RefundOrchestrator.record_failure(
                refund,
                SYSTEM_ACTOR,
                reason,
                retryable=True,
                outcome_unknown=True,
                error_code="RETRY_INTERRUPTED",
            )
        return True

    @classmethod
    def _attempt(cls, refund: RefundTransaction) -> RetryOutcome:
        """Retry one refund without letting an unexpected error stop the pass."""
        log_context = {
            "refund_id": refund.pk,
            "booking_id": refund.booking_id,
            "retry_count": refund.retry_count,
        }

        claimed = False
        try:
            if refund.retry_count >= RefundOrchestrator.max_retries():
                cls._give_up(
                    refund, f"Retry limit reached after {refund.retry_count} attempts"
                )
                return RetryOutcome.PERMANENTLY_FAILED

            seen_status = refund.status
            if not RefundLedger.claim_for_retry(refund.pk, seen_status):
                cls.get_logger().info(
                    "Refund already claimed by another runner", extra=log_context
                )
                return RetryOutcome.SKIPPED

            claimed = True
            return cls._retry_one(refund.pk, seen_status)
        except Exception:
            cls.get_logger().exception(
                "Refund retry failed unexpectedly", extra=log_context
            )

        # Only release a claim this runner holds
        if claimed:
            cls.release_claim(refund.pk, "Retry attempt stopped by an unexpected error")
        return cls._outcome_for(refund.pk)

    @classmethod
    def _retry_one(cls, refund_id: int, seen_status: str) -> RetryOutcome:
        """Re-dispatch a refund this runner has claimed."""
        # The claim bypassed the model; reload before touching the FSM
        refund = RefundTransaction.objects.select_related("payment_transaction").get(
            pk=refund_id
        )
        log = cls.get_logger()
        log_context = {
            "refund_id": refund.pk,
            "booking_id": refund.booking_id,
            "retry_count": refund.retry_count,
        }
        refund.append_note(f"Retry attempt {refund.retry_count + 1} started")
        RefundLedger.record_transition(
            refund, RefundAuditAction.RETRIED, seen_status, SYSTEM_ACTOR
        )

        payment_id = RefundOrchestrator.resolve_gateway_payment_id(refund)
        if not payment_id:
            cls._give_up(refund, "Gateway payment id is still missing")
            return RetryOutcome.PERMANENTLY_FAILED

        if refund.outcome_unknown:
            try:
                existing = cls._find_gateway_refund(refund, payment_id)
            except GatewayError as e:
                log.warning(
                    "Could not list gateway refunds to resolve unknown outcome",
                    extra={**log_context, "error_code": e.error_code},
                )
                RefundOrchestrator.record_failure(
                    refund,
                    SYSTEM_ACTOR,
                    "Could not confirm the outcome of the previous attempt",
                    retryable=True,
                    outcome_unknown=True,
                    error_code="OUTCOME_UNKNOWN",
                )
                return cls._outcome_for(refund.pk)
            if existing is not None:
                log.info(
                    "Adopting gateway refund from timed-out attempt",
                    extra={**log_context, "gateway_refund_id": existing},
                )
                RefundOrchestrator.record_dispatched(
                    refund, existing, SYSTEM_ACTOR, reconciled=True
                )
                return RetryOutcome.SUCCEEDED

        result = RefundOrchestrator.dispatch(refund, SYSTEM_ACTOR)
        if result.success:
            return RetryOutcome.SUCCEEDED
        return cls._outcome_for(refund.pk)

    @classmethod
    def _find_gateway_refund(
        cls, refund: RefundTransaction, payment_id: str
    ) -> str | None:
        """Id of a PayMongo refund created for this row by an earlier attempt."""
        for gateway_refund in PayMongoAdapter.list_refunds(payment_id):
            if str(gateway_refund.metadata.get("refund_transaction_id")) == str(refund.pk):
                return gateway_refund.id
        return None

    @staticmethod
    def _outcome_for(refund_id: int) -> RetryOutcome:
        refund = RefundLedger.get(refund_id)
        if refund.retryable:
            return RetryOutcome.STILL_FAILED
        if refund.gateway_refund_id and refund.status in (
            RefundStatus.PROCESSING,
            RefundStatus.PROCESSED,
        ):
            return RetryOutcome.SUCCEEDED
        return RetryOutcome.PERMANENTLY_FAILED

    @classmethod
    def _give_up(cls, refund: RefundTransaction, reason: str) -> None:
        """Take a refund out of the retry set; staff must settle it."""
        with cls.atomic():
            refund = RefundLedger.get_for_update(refund.pk)
            previous = refund.status
            refund.fail(reason, retryable=False, outcome_unknown=refund.outcome_unknown)
            refund.append_note(f"Automatic retries stopped: {reason}")
            RefundLedger.record_transition(
                refund,
                RefundAuditAction.FAILED,
                previous,
                RecordTransitionParams(
                    performed_by_type=InitiatorType.SYSTEM,
                    details={"reason": reason, "retry_count": refund.retry_count},
                ),
            )

        cls.get_logger().error(
            "Refund needs manual processing",
            extra={
                "refund_id": refund.pk,
                "booking_id": refund.booking_id,
                "reason": reason,
            },
        )
        PaymentNotifier.refund_failed(refund)
