"""
Owner Directory: the profile rows the core needs for display names, roles and
notification watermarks. Identity itself comes from the external auth layer.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from casebook.backends.abstract import StorageBackend
from casebook.domain.errors import NotFoundError, ValidationError
from casebook.domain.models import Owner, Role, parse_role
from casebook.infrastructure.retry import RetryPolicy
from casebook.utils.logging import get_logger

log = get_logger(__name__)


class OwnerDirectory:
    def __init__(self, backend: StorageBackend, retry: Optional[RetryPolicy] = None) -> None:
        self._backend = backend
        self._retry = retry or RetryPolicy.no_retry()

    def register(self, owner_id: str, username: Optional[str] = None, role: Role | str = Role.USER) -> Owner:
        """Create or update an owner; an existing watermark is kept."""
        if not owner_id:
            raise ValidationError("Owner id must not be empty")
        owner = self._retry.call(
            self._backend.upsert_owner, owner_id, username or owner_id, parse_role(role)
        )
        log.info("[OWNER REGISTERED]", extra={"owner_id": owner.id, "role": owner.role.value})
        return owner

    def get(self, owner_id: str) -> Owner:
        owner = self._retry.call(self._backend.get_owner, owner_id)
        if owner is None:
            raise NotFoundError("Owner", owner_id)
        return owner

    def list(self) -> List[Owner]:
        return self._retry.call(self._backend.list_owners)

    def usernames(self) -> Dict[str, str]:
        """Owner id -> username, for exports and reports."""
        return {owner.id: owner.username for owner in self.list()}


__all__ = ["OwnerDirectory"]
