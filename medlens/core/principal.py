from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet
import uuid

from medlens.domain.auth.models import User, UserRole


@dataclass(frozen=True)
class Principal:
    """Authenticated identity resolved from a verified access token.

    ``user`` is the stored record re-read on every request, so ``role`` and
    ``is_active`` are never taken from client input. ``consulting_doctor_ids``
    is a snapshot of the senior doctor's team taken at resolution time and is
    empty for every other role.
    """
    user: User
    issued_at: datetime
    expires_at: datetime
    consulting_doctor_ids: FrozenSet[uuid.UUID] = frozenset()

    @property
    def user_id(self) -> uuid.UUID:
        return self.user.id

    @property
    def role(self) -> UserRole:
        return self.user.role

    def is_self(self, user_id: uuid.UUID) -> bool:
        return user_id == self.user.id
