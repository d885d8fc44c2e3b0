"""
Model mixins providing reusable functionality for Django models.

This module contains abstract mixin classes that can be combined with
BaseModel to add specific functionality. These are generic infrastructure
classes with no domain-specific logic.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    VersionedMixin: Optimistic locking version column

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

    class Payment(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
        payment_id = models.CharField(max_length=32, unique=True)

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Fields:
        id: UUIDField as primary key (auto-generated)

    Usage:
        class SettlementRequest(UUIDPrimaryKeyMixin, BaseModel):
            vendor_id = models.UUIDField()

        request = SettlementRequest.objects.create(vendor_id=vendor_id)
        print(request.id)  # 550e8400-e29b-41d4-a716-446655440000

    Note:
        UUIDs can be generated before the database insert, which lets
        callers reference a record (e.g., in a claim tag) before it exists.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Optimistic locking support.

    The version column is incremented atomically in the database on every
    update made through save(). Bulk ``QuerySet.update()`` calls bypass
    save() and must bump the column themselves with ``F("version") + 1``.

    Fields:
        version: Monotonic counter, starts at 1

    Usage:
        payment = Payment.objects.get(payment_id="PAY0A1B2C3D4E5F")
        seen = payment.version
        payment.notes = {"admin": "checked"}
        payment.save()
        assert payment.version == seen + 1

    Note:
        Use payments.locks.check_version() to reject writes based on a
        stale read.
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.

        On update (not force_insert), atomically increments the version
        field to detect concurrent modifications.
        """
        is_update = (
            not self._state.adding
            and self.pk
            and not kwargs.get("force_insert", False)
        )
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None and "version" not in update_fields:
                kwargs["update_fields"] = [*update_fields, "version"]
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])
