from decimal import Decimal

import django.db.models.deletion
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PaymentTransaction",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Payment amount in PHP",
                        max_digits=12,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="PHP",
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        choices=[
                            ("gcash", "GCash"),
                            ("card", "Card"),
                            ("paymaya", "PayMaya"),
                            ("cash", "Cash"),
                            ("qr_code", "QR Code"),
                        ],
                        help_text="Method used for this attempt",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current status of the payment (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "provider",
                    models.CharField(
                        choices=[("paymongo", "PayMongo"), ("manual", "Manual")],
                        default="paymongo",
                        max_length=20,
                    ),
                ),
                (
                    "gateway_source_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="PayMongo Source ID (src_xxx)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "gateway_intent_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="PayMongo Payment Intent ID (pi_xxx)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "provider_transaction_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="PayMongo Payment ID (pay_xxx), needed for refunds",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "checkout_url",
                    models.URLField(blank=True, max_length=1024, null=True),
                ),
                ("failure_reason", models.TextField(blank=True, null=True)),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata for extensibility",
                    ),
                ),
                (
                    "booking",
                    models.ForeignKey(
                        help_text="Booking this payment is for",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_transactions",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Transaction",
                "verbose_name_plural": "Payment Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["booking", "status"],
                        name="payments_pt_booking_status_idx",
                    )
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", Decimal("0"))),
                        name="payment_transaction_amount_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="RefundTransaction",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Refund amount in PHP",
                        max_digits=12,
                    ),
                ),
                ("currency", models.CharField(default="PHP", max_length=3)),
                (
                    "reason",
                    models.CharField(
                        choices=[
                            ("customer_requested", "Customer Requested"),
                            ("duplicate", "Duplicate"),
                            ("fraudulent", "Fraudulent"),
                            ("service_not_provided", "Service Not Provided"),
                            ("admin_initiated", "Admin Initiated"),
                            ("other", "Other"),
                        ],
                        default="other",
                        max_length=40,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current status of the refund (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        blank=True,
                        help_text="Method of the original payment",
                        max_length=20,
                        null=True,
                    ),
                ),
                (
                    "provider",
                    models.CharField(
                        choices=[("paymongo", "PayMongo"), ("manual", "Manual")],
                        default="manual",
                        max_length=20,
                    ),
                ),
                (
                    "refund_type",
                    models.CharField(
                        choices=[("automatic", "Automatic"), ("manual", "Manual")],
                        default="manual",
                        max_length=20,
                    ),
                ),
                (
                    "gateway_refund_id",
                    models.CharField(
                        blank=True,
                        help_text="PayMongo Refund ID (ref_xxx)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                ("notes", models.TextField(blank=True, default="")),
                ("failure_reason", models.TextField(blank=True, null=True)),
                (
                    "initiated_by",
                    models.CharField(
                        blank=True,
                        help_text="Id of the actor who initiated the refund",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "initiated_by_type",
                    models.CharField(
                        choices=[
                            ("admin", "Admin"),
                            ("staff", "Staff"),
                            ("customer", "Customer"),
                            ("provider", "Provider"),
                            ("system", "System"),
                        ],
                        default="admin",
                        max_length=20,
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "retryable",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="Picked up by the retry coordinator",
                    ),
                ),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
                ("last_retry_at", models.DateTimeField(blank=True, null=True)),
                (
                    "outcome_unknown",
                    models.BooleanField(
                        default=False,
                        help_text="Last dispatch timed out; reconcile before re-dispatching",
                    ),
                ),
                (
                    "requires_manual_processing",
                    models.BooleanField(default=False),
                ),
                (
                    "booking",
                    models.ForeignKey(
                        help_text="Booking being refunded",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_transactions",
                        to="bookings.booking",
                    ),
                ),
                (
                    "payment_transaction",
                    models.ForeignKey(
                        blank=True,
                        help_text="Succeeded payment this refund is drawn against",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="payments.paymenttransaction",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund Transaction",
                "verbose_name_plural": "Refund Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["booking", "status"],
                        name="payments_rt_booking_status_idx",
                    ),
                    models.Index(
                        fields=["status", "retryable"],
                        name="payments_rt_status_retry_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", Decimal("0"))),
                        name="refund_transaction_amount_positive",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(
                            ("status__in", ["pending", "processing"])
                        ),
                        fields=("booking",),
                        name="unique_active_refund_per_booking",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="RefundAuditLog",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("created", "Created"),
                            ("dispatched", "Dispatched"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                            ("denied", "Denied"),
                            ("completed", "Completed"),
                            ("retried", "Retried"),
                            ("reconciled", "Reconciled"),
                        ],
                        db_index=True,
                        max_length=20,
                    ),
                ),
                (
                    "previous_status",
                    models.CharField(blank=True, default="", max_length=20),
                ),
                ("new_status", models.CharField(max_length=20)),
                (
                    "performed_by",
                    models.CharField(blank=True, max_length=64, null=True),
                ),
                (
                    "performed_by_type",
                    models.CharField(
                        choices=[
                            ("admin", "Admin"),
                            ("staff", "Staff"),
                            ("customer", "Customer"),
                            ("provider", "Provider"),
                            ("system", "System"),
                        ],
                        default="system",
                        max_length=20,
                    ),
                ),
                ("details", models.JSONField(blank=True, default=dict)),
                (
                    "ip_address",
                    models.GenericIPAddressField(blank=True, null=True),
                ),
                (
                    "refund",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="audit_logs",
                        to="payments.refundtransaction",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund Audit Log",
                "verbose_name_plural": "Refund Audit Logs",
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["refund", "created_at"],
                        name="payments_audit_refund_idx",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "gateway_event_id",
                    models.CharField(
                        help_text="PayMongo Event ID (evt_xxx) - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="PayMongo event type (e.g., 'source.chargeable')",
                        max_length=100,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(help_text="Full webhook payload from PayMongo (JSON)"),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0, help_text="Number of processing attempts"
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "retry_count"],
                        name="payments_we_status_retry_idx",
                    )
                ],
            },
        ),
    ]
