"""
Change Watermark: which of an owner's records changed since they last looked.

Checking advances the watermark ("check" and "acknowledge" are one action).
The new watermark is the instant captured before the change set is read, so an
update that lands between the read and the write is reported on the next check
rather than lost. Delivery is at-least-once: if advancing fails the change set
is still returned and may be reported again.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from casebook.backends.abstract import StorageBackend
from casebook.domain.errors import ValidationError
from casebook.domain.models import ChangeKind, RecordChange
from casebook.infrastructure.retry import RetryPolicy
from casebook.utils.clock import Clock, utc_now
from casebook.utils.logging import get_logger

log = get_logger(__name__)


class ChangeWatermark:
    def __init__(
        self,
        backend: StorageBackend,
        retry: Optional[RetryPolicy] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._backend = backend
        self._retry = retry or RetryPolicy.no_retry()
        self._clock = clock

    def last_checked_at(self, owner_id: str) -> Optional[datetime]:
        owner = self._retry.call(self._backend.get_owner, owner_id)
        return owner.last_checked_at if owner is not None else None

    def _changes_since(self, owner_id: str, watermark: datetime) -> List[RecordChange]:
        records = self._retry.call(self._backend.list_changed_records, owner_id, watermark)
        return [
            RecordChange(
                record_id=r.id,
                sequence_number=r.sequence_number,
                kind=ChangeKind.NEW if r.created_at > watermark else ChangeKind.UPDATED,
                timestamp=r.updated_at,
            )
            for r in records
        ]

    def peek(self, owner_id: str) -> List[RecordChange]:
        """The current change set, without advancing the watermark."""
        watermark = self.last_checked_at(owner_id)
        if watermark is None:
            return []
        return self._changes_since(owner_id, watermark)

    def compute_changes(self, owner_id: str) -> List[RecordChange]:
        """
        Records created or updated since the owner's watermark, most recently
        updated first, then advance the watermark.

        An owner that has never checked (no watermark, or no owner row) gets an
        empty result and no watermark. Read failures propagate; a failure to
        advance is logged and swallowed.
        """
        checkpoint = self._clock()
        watermark = self.last_checked_at(owner_id)
        if watermark is None:
            log.debug("Owner has no watermark yet", extra={"owner_id": owner_id})
            return []
        changes = self._changes_since(owner_id, watermark)
        self._advance(owner_id, checkpoint)
        log.info(
            "[CHANGES COMPUTED]",
            extra={
                "owner_id": owner_id,
                "changes": len(changes),
                "new": sum(1 for c in changes if c.kind is ChangeKind.NEW),
            },
        )
        return changes

    def _advance(self, owner_id: str, at: datetime) -> None:
        try:
            self._backend.set_watermark(owner_id, at)
        except Exception:  # noqa: BLE001
            log.warning(
                "[WATERMARK ADVANCE FAILED]",
                extra={"owner_id": owner_id, "at": at.isoformat()},
                exc_info=True,
            )

    def acknowledge(self, owner_id: str, at: Optional[datetime] = None) -> datetime:
        """
        Set the watermark explicitly (e.g. at first sign-in to start tracking).
        The watermark never moves backwards.

        Raises
        ------
        ValidationError
            If `at` is a naive datetime.
        """
        at = at or self._clock()
        if at.tzinfo is None or at.utcoffset() is None:
            raise ValidationError("Watermark timestamp must be timezone-aware")
        self._retry.call(self._backend.set_watermark, owner_id, at)
        log.info("[WATERMARK SET]", extra={"owner_id": owner_id, "at": at.isoformat()})
        return at


__all__ = ["ChangeWatermark"]
