"""Activity log repository. Append-only: there is no update method."""

from typing import Optional

from sqlalchemy.orm import Session

from saaskit_api.db.models import ActivityLog, Profile


class ActivityLogRepository:
    """Repository for ActivityLog operations."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        team_id: int,
        action: str,
        user_id: Optional[str],
        ip_address: Optional[str] = None,
    ) -> ActivityLog:
        entry = ActivityLog(
            team_id=team_id,
            user_id=user_id,
            action=action,
            ip_address=ip_address,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def latest_for_team(self, team_id: int, limit: int = 10) -> list[dict]:
        """Newest entries first, joined to the actor's display name."""
        rows = (
            self.db.query(
                ActivityLog.id,
                ActivityLog.action,
                ActivityLog.timestamp,
                ActivityLog.ip_address,
                Profile.name.label("user_name"),
            )
            .outerjoin(Profile, ActivityLog.user_id == Profile.id)
            .filter(ActivityLog.team_id == team_id)
            .order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "id": row.id,
                "action": row.action,
                "timestamp": row.timestamp,
                "ip_address": row.ip_address,
                "user_name": row.user_name or "Unknown",
            }
            for row in rows
        ]

    def delete_for_team(self, team_id: int) -> int:
        deleted = (
            self.db.query(ActivityLog)
            .filter(ActivityLog.team_id == team_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return deleted
