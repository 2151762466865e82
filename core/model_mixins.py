"""
Abstract mixins combined with core.models.BaseModel.

    class IndividualPayment(UUIDPrimaryKeyMixin, VersionedModelMixin, BaseModel):
        ...
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class UUIDPrimaryKeyMixin(models.Model):
    """
    Random UUID primary key.

    Share and split payment ids appear in payment links and gateway
    metadata, so they must not be sequential.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedModelMixin(models.Model):
    """
    Row version bumped in SQL on every update.

    group_payments.locks.check_version compares it under a row lock, so a
    writer holding a stale copy gets ConcurrencyConflict instead of
    overwriting someone else's transition.
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if self._state.adding or kwargs.get("force_insert"):
            return super().save(*args, **kwargs)

        self.version = F("version") + 1
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "version" not in update_fields:
            kwargs["update_fields"] = [*update_fields, "version"]
        super().save(*args, **kwargs)
        # Replace the F() expression with the stored value
        self.refresh_from_db(fields=["version"])
