"""User profile entity (target of bulk role and deactivation runs)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from certdesk.core.types import ProfileRole, ProfileStatus

_EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class Profile:
    id: UUID
    email: str
    display_name: str
    role: ProfileRole
    status: ProfileStatus
    created_at: datetime = _EPOCH
    updated_at: datetime = _EPOCH
