"""Profile repository (public.users)."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from saaskit_api.db.models import Profile, TeamRole


class ProfileRepository:
    """Repository for Profile operations.

    Writes flush but never commit; the calling handler owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_active(self, user_id: str) -> Optional[Profile]:
        """Get a profile by id, excluding soft-deleted rows."""
        return (
            self.db.query(Profile)
            .filter(Profile.id == user_id, Profile.deleted_at.is_(None))
            .first()
        )

    def get_any(self, user_id: str) -> Optional[Profile]:
        """Get a profile by id including soft-deleted rows."""
        return self.db.get(Profile, user_id)

    def create(self, user_id: str, role: str = TeamRole.MEMBER.value, name: Optional[str] = None) -> Profile:
        profile = Profile(id=user_id, role=role, name=name)
        self.db.add(profile)
        self.db.flush()
        return profile

    def update_name(self, user_id: str, name: str) -> Optional[Profile]:
        profile = self.get_active(user_id)
        if profile is None:
            return None
        profile.name = name
        self.db.flush()
        return profile

    def mark_deleted(self, user_id: str) -> bool:
        """Set the soft-delete marker. Returns False if no active profile exists."""
        profile = self.get_active(user_id)
        if profile is None:
            return False
        profile.deleted_at = datetime.now(timezone.utc)
        self.db.flush()
        return True

    def restore(self, user_id: str) -> None:
        """Clear the soft-delete marker (compensation after a failed identity delete)."""
        profile = self.get_any(user_id)
        if profile is not None:
            profile.deleted_at = None
            self.db.flush()
