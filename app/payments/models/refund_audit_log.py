"""
RefundAuditLog model: append-only trail of refund state changes.

One row is written for every refund status transition, inside the same
database transaction as the transition itself (see RefundLedger).
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel

from payments.state_machines import InitiatorType, RefundAuditAction


class RefundAuditLog(BaseModel):
    """
    Records who moved a refund from one status to another, and why.

    Fields:
        refund: Refund the entry belongs to
        action: What happened (created, dispatched, failed, ...)
        previous_status: Status before the action (blank on creation)
        new_status: Status after the action
        performed_by: Id of the acting user, or "system"
        performed_by_type: Kind of actor
        details: Structured context (gateway ids, error codes, amounts)
        ip_address: Client address for API-initiated actions
    """

    refund = models.ForeignKey(
        "payments.RefundTransaction",
        on_delete=models.CASCADE,
        related_name="audit_logs",
    )

    action = models.CharField(
        max_length=20,
        choices=RefundAuditAction.choices,
        db_index=True,
    )

    previous_status = models.CharField(max_length=20, blank=True, default="")

    new_status = models.CharField(max_length=20)

    performed_by = models.CharField(max_length=64, null=True, blank=True)

    performed_by_type = models.CharField(
        max_length=20,
        choices=InitiatorType.choices,
        default=InitiatorType.SYSTEM,
    )

    details = models.JSONField(default=dict, blank=True)

    ip_address = models.GenericIPAddressField(null=True, blank=True)

    class Meta:
        ordering = ["created_at", "id"]
        verbose_name = "Refund Audit Log"
        verbose_name_plural = "Refund Audit Logs"
        indexes = [
            models.Index(
                fields=["refund", "created_at"], name="payments_audit_refund_idx"
            ),
        ]

    def __str__(self) -> str:
        return (
            f"RefundAuditLog({self.refund_id}, {self.action}: "
            f"{self.previous_status or '-'} -> {self.new_status})"
        )
