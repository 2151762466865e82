"""
Abstract base model shared by the bookings and group_payments tables.

    class SplitPayment(UUIDPrimaryKeyMixin, BaseModel):
        ...

Mixins from core.model_mixins are listed before BaseModel so their
fields come first in the table.
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """Creation and modification timestamps; newest rows first."""

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{type(self).__name__}({self.pk})"
