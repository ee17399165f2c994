"""Profile repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pypgkit import BaseRepository, Database

from certdesk.core.types import ProfileRole, ProfileStatus
from certdesk.models.profile import Profile

if TYPE_CHECKING:
    from uuid import UUID


class ProfileRepository(BaseRepository[Profile]):
    table_name = "profiles"
    primary_key = "id"

    def _row_to_entity(self, row: dict) -> Profile:
        return Profile(
            id=row["id"],
            email=row["email"],
            display_name=row.get("display_name", ""),
            role=ProfileRole(row["role"]),
            status=ProfileStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _entity_to_row(self, entity: Profile) -> dict:
        return {
            "id": entity.id,
            "email": entity.email,
            "display_name": entity.display_name,
            "role": entity.role.value,
            "status": entity.status.value,
        }

    def change_role(self, profile_id: UUID, role: ProfileRole) -> Profile | None:
        db = Database.get_instance()
        row = db.fetch_one(
            "UPDATE profiles SET role = %s WHERE id = %s RETURNING *",
            (role.value, profile_id),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def deactivate(self, profile_id: UUID) -> Profile | None:
        db = Database.get_instance()
        row = db.fetch_one(
            "UPDATE profiles SET status = %s WHERE id = %s RETURNING *",
            (ProfileStatus.DEACTIVATED.value, profile_id),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None
