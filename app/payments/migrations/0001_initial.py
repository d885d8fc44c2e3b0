import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models

import payments.models.payment
import payments.models.settlement


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="SettlementRequest",
            fields=[
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
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "settlement_id",
                    models.CharField(
                        default=payments.models.settlement.generate_settlement_id,
                        editable=False,
                        help_text="Human-readable settlement id (STL...)",
                        max_length=40,
                        unique=True,
                    ),
                ),
                (
                    "vendor_id",
                    models.UUIDField(db_index=True, help_text="Vendor receiving the payout"),
                ),
                (
                    "transaction_date",
                    models.DateField(
                        db_index=True,
                        help_text="Calendar date of the claimed payments (immutable)",
                    ),
                ),
                (
                    "requested_at",
                    models.DateTimeField(help_text="When the request was filed"),
                ),
                (
                    "request_type",
                    models.CharField(
                        choices=[("normal", "Normal"), ("urgent", "Urgent")],
                        default="urgent",
                        help_text="NORMAL (nightly) or URGENT (merchant initiated)",
                        max_length=10,
                    ),
                ),
                (
                    "claimed_payment_ids",
                    models.JSONField(
                        default=list,
                        help_text="UUIDs of the payments claimed at creation",
                    ),
                ),
                (
                    "claimed_amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Sum of claimed payments' net amounts at claim time",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("settled", "Settled"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the request (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "processing_started_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When an operator or worker picked the request up",
                        null=True,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the payout was confirmed", null=True
                    ),
                ),
                (
                    "failed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the request was failed", null=True
                    ),
                ),
                (
                    "reason",
                    models.TextField(blank=True, default="", help_text="Requester's note"),
                ),
                (
                    "payment_reference",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Bank/transfer reference recorded on completion",
                        max_length=255,
                    ),
                ),
                (
                    "processing_notes",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Operator notes recorded on completion",
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(blank=True, help_text="Why the request failed", null=True),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Request context (requested_date, is_past_date)",
                    ),
                ),
            ],
            options={
                "verbose_name": "Settlement Request",
                "verbose_name_plural": "Settlement Requests",
                "ordering": ["-requested_at", "-created_at"],
                "indexes": [
                    models.Index(
                        fields=["vendor_id", "transaction_date"],
                        name="payments_se_vendor__c1a5e2_idx",
                    ),
                    models.Index(
                        fields=["vendor_id", "status"],
                        name="payments_se_vendor__8d03b7_idx",
                    ),
                    models.Index(
                        fields=["status", "requested_at"],
                        name="payments_se_status_4f9e61_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("claimed_amount_cents__gt", 0)),
                        name="settlement_request_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SettlementCursor",
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
                    "vendor_id",
                    models.UUIDField(help_text="Vendor the cursor belongs to"),
                ),
                (
                    "transaction_date",
                    models.DateField(help_text="Transaction date the cursor guards"),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=0, help_text="Bumped by every successful claim"
                    ),
                ),
                (
                    "last_claimed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the most recent claim committed",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Settlement Cursor",
                "verbose_name_plural": "Settlement Cursors",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("vendor_id", "transaction_date"),
                        name="settlement_cursor_unique_vendor_date",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="GatewayEvent",
            fields=[
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
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "event_id",
                    models.CharField(
                        help_text="Gateway event id - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("authorized", "Authorized"),
                            ("captured", "Captured"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                            ("refund_processed", "Refund Processed"),
                            ("refund_failed", "Refund Failed"),
                        ],
                        db_index=True,
                        help_text="Gateway event type",
                        max_length=32,
                    ),
                ),
                (
                    "payment_id",
                    models.CharField(
                        db_index=True,
                        help_text="External payment id the event refers to",
                        max_length=32,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(help_text="Full event body as delivered"),
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
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When event was successfully processed",
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message if processing failed",
                        null=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0, help_text="Number of processing attempts"
                    ),
                ),
            ],
            options={
                "verbose_name": "Gateway Event",
                "verbose_name_plural": "Gateway Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="payments_ga_status_2b7c40_idx",
                    ),
                    models.Index(
                        fields=["status", "retry_count"],
                        name="payments_ga_status_e91a3d_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
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
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "payment_id",
                    models.CharField(
                        default=payments.models.payment.generate_payment_id,
                        editable=False,
                        help_text="External payment id (PAYXXXXXXXXXXXX), immutable",
                        max_length=32,
                        unique=True,
                    ),
                ),
                (
                    "booking_id",
                    models.UUIDField(
                        blank=True,
                        db_index=True,
                        help_text="Booking this payment belongs to (owned by booking service)",
                        null=True,
                    ),
                ),
                (
                    "user_id",
                    models.UUIDField(
                        db_index=True,
                        help_text="Paying customer (owned by the accounts service)",
                    ),
                ),
                (
                    "vendor_id",
                    models.UUIDField(
                        db_index=True,
                        help_text="Vendor receiving settlement for this payment",
                    ),
                ),
                (
                    "station_id",
                    models.UUIDField(
                        blank=True,
                        help_text="Charging station the booking was made at",
                        null=True,
                    ),
                ),
                (
                    "base_amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Pre-tax, pre-discount amount in smallest currency unit",
                    ),
                ),
                (
                    "tax_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Pre-computed tax in smallest currency unit",
                    ),
                ),
                (
                    "discount_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Pre-computed discount in smallest currency unit",
                    ),
                ),
                (
                    "final_amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Charged amount: base + tax - discount",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default=payments.models.payment.default_currency,
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "method_type",
                    models.CharField(
                        choices=[
                            ("card", "Card"),
                            ("upi", "UPI"),
                            ("netbanking", "Net Banking"),
                            ("wallet", "Wallet"),
                            ("cash", "Cash"),
                        ],
                        default="upi",
                        help_text="Payment instrument",
                        max_length=20,
                    ),
                ),
                (
                    "gateway",
                    models.CharField(
                        choices=[
                            ("razorpay", "Razorpay"),
                            ("payu", "PayU"),
                            ("cashfree", "Cashfree"),
                            ("stripe", "Stripe"),
                            ("manual", "Manual"),
                        ],
                        default="razorpay",
                        help_text="Gateway that processed the charge",
                        max_length=20,
                    ),
                ),
                (
                    "card_type",
                    models.CharField(
                        blank=True,
                        choices=[("credit", "Credit"), ("debit", "Debit")],
                        help_text="Credit or debit (card payments only)",
                        max_length=10,
                        null=True,
                    ),
                ),
                (
                    "bank_name",
                    models.CharField(
                        blank=True,
                        help_text="Issuing bank (card payments only)",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "card_last4",
                    models.CharField(
                        blank=True,
                        help_text="Last four digits of the card (card payments only)",
                        max_length=4,
                        null=True,
                    ),
                ),
                (
                    "transaction_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Gateway transaction reference",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "transaction_details",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Opaque gateway ids (gateway_payment_id, gateway_order_id, ...)",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the payment (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "initiated_at",
                    models.DateTimeField(help_text="When the charge attempt started"),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the gateway authorized the charge",
                        null=True,
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="When the charge was captured; defines the settlement date",
                        null=True,
                    ),
                ),
                (
                    "failed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the charge failed", null=True
                    ),
                ),
                (
                    "cancelled_at",
                    models.DateTimeField(
                        blank=True, help_text="When the charge was cancelled", null=True
                    ),
                ),
                (
                    "refunded_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the first refund was processed (full or partial)",
                        null=True,
                    ),
                ),
                (
                    "total_refunded_cents",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Sum of processed refunds"
                    ),
                ),
                (
                    "net_amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="final_amount_cents - total_refunded_cents",
                    ),
                ),
                (
                    "settlement_status",
                    models.CharField(
                        choices=[
                            ("none", "None"),
                            ("claimed", "Claimed"),
                            ("settled", "Settled"),
                        ],
                        db_index=True,
                        default="none",
                        help_text="Whether a settlement request currently claims this payment",
                        max_length=10,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Client context: ip_address, user_agent, device_info, location",
                    ),
                ),
                (
                    "notes",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Free-form notes keyed by author (admin, vendor, system)",
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Gateway failure or cancellation reason",
                        null=True,
                    ),
                ),
                (
                    "settlement_request",
                    models.ForeignKey(
                        blank=True,
                        help_text="Settlement request holding the claim, if any",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="payments.settlementrequest",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["vendor_id", "completed_at"],
                        name="payments_pa_vendor__5e2d18_idx",
                    ),
                    models.Index(
                        fields=["status", "completed_at"],
                        name="payments_pa_status_a07c3f_idx",
                    ),
                    models.Index(
                        fields=["vendor_id", "settlement_status"],
                        name="payments_pa_vendor__93bb41_idx",
                    ),
                    models.Index(
                        fields=["user_id", "created_at"],
                        name="payments_pa_user_id_6c1f0e_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            (
                                "final_amount_cents",
                                models.F("base_amount_cents")
                                + models.F("tax_amount_cents")
                                - models.F("discount_amount_cents"),
                            )
                        ),
                        name="payment_final_amount_arithmetic",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("total_refunded_cents__lte", models.F("final_amount_cents"))
                        ),
                        name="payment_refunds_within_final",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            (
                                "net_amount_cents",
                                models.F("final_amount_cents")
                                - models.F("total_refunded_cents"),
                            )
                        ),
                        name="payment_net_amount_arithmetic",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(
                                ("settlement_request__isnull", True),
                                ("settlement_status", "none"),
                            ),
                            models.Q(
                                ("settlement_request__isnull", False),
                                ("settlement_status__in", ["claimed", "settled"]),
                            ),
                            _connector="OR",
                        ),
                        name="payment_settlement_tag_consistent",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Refund",
            fields=[
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
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Refund amount in smallest currency unit"
                    ),
                ),
                (
                    "reason",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Reason for the refund",
                        max_length=255,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the refund (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "requested_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="When the refund was requested",
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the gateway confirmed the refund",
                        null=True,
                    ),
                ),
                (
                    "failed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the gateway reported the refund failed",
                        null=True,
                    ),
                ),
                (
                    "refund_reference",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Gateway refund reference",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Detailed reason if refund failed",
                        null=True,
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        help_text="Payment being refunded",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="payments.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund",
                "verbose_name_plural": "Refunds",
                "ordering": ["requested_at", "created_at"],
                "indexes": [
                    models.Index(
                        fields=["payment", "status"],
                        name="payments_re_payment_7d4a92_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="refund_amount_positive",
                    ),
                ],
            },
        ),
    ]
