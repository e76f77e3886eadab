from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import utcnow


class SoftDeleteMixin:
    """
    Present/deleted lifecycle state.

    Rows are never physically removed while referenced; the repository layer
    filters deleted rows on every read, so call sites never add the condition.
    """
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_live(self) -> bool:
        return not self.is_deleted

    def mark_deleted(self) -> None:
        self.is_deleted = True
        self.deleted_at = utcnow()


def money_str(value: Decimal | None) -> str | None:
    """Money is serialized as a fixed two-decimal string."""
    if value is None:
        return None
    return f"{Decimal(value):.2f}"
