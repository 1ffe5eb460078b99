"""Invitation repository."""

from typing import Optional

from sqlalchemy.orm import Session

from saaskit_api.db.models import (
    OPEN_INVITATION_STATUSES,
    Invitation,
    InvitationStatus,
    Profile,
    Team,
    TeamRole,
)


class InvitationRepository:
    """Repository for Invitation operations.

    Status changes go through Invitation.transition_to() so a terminal
    invitation can never be reopened from application code.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, invitation_id: int) -> Optional[Invitation]:
        return self.db.get(Invitation, invitation_id)

    def get_in_team(self, invitation_id: int, team_id: int) -> Optional[Invitation]:
        return (
            self.db.query(Invitation)
            .filter(Invitation.id == invitation_id, Invitation.team_id == team_id)
            .first()
        )

    def find_pending_for_email(self, invitation_id: int, email: str) -> Optional[Invitation]:
        """Pending invitation with this id addressed to exactly this email."""
        return (
            self.db.query(Invitation)
            .filter(
                Invitation.id == invitation_id,
                Invitation.email == email,
                Invitation.status == InvitationStatus.PENDING.value,
            )
            .first()
        )

    def has_pending(self, team_id: int, email: str) -> bool:
        return (
            self.db.query(Invitation.id)
            .filter(
                Invitation.team_id == team_id,
                Invitation.email == email,
                Invitation.status == InvitationStatus.PENDING.value,
            )
            .first()
            is not None
        )

    def has_open(self, team_id: int, email: str) -> bool:
        """True if a pending invitation or join request exists."""
        return (
            self.db.query(Invitation.id)
            .filter(
                Invitation.team_id == team_id,
                Invitation.email == email,
                Invitation.status.in_(OPEN_INVITATION_STATUSES),
            )
            .first()
            is not None
        )

    def create(
        self,
        team_id: int,
        email: str,
        invited_by: str,
        role: str = TeamRole.MEMBER.value,
        status: InvitationStatus = InvitationStatus.PENDING,
    ) -> Invitation:
        invitation = Invitation(
            team_id=team_id,
            email=email,
            role=role,
            invited_by=invited_by,
            status=status.value,
        )
        self.db.add(invitation)
        self.db.flush()
        return invitation

    def mark(self, invitation: Invitation, status: InvitationStatus) -> Invitation:
        invitation.transition_to(status)
        self.db.flush()
        return invitation

    def pending_for_email(self, email: str) -> list[dict]:
        """Pending invitations addressed to an email, with team and inviter names."""
        rows = (
            self.db.query(
                Invitation.id,
                Invitation.team_id,
                Team.name.label("team_name"),
                Invitation.role,
                Profile.name.label("invited_by_name"),
                Invitation.invited_at,
            )
            .join(Team, Invitation.team_id == Team.id)
            .join(Profile, Invitation.invited_by == Profile.id)
            .filter(
                Invitation.email == email,
                Invitation.status == InvitationStatus.PENDING.value,
            )
            .order_by(Invitation.invited_at.desc())
            .all()
        )
        return [
            {
                "invitation_id": row.id,
                "team_id": row.team_id,
                "team_name": row.team_name,
                "role": row.role,
                "invited_by_name": row.invited_by_name,
                "invited_at": row.invited_at,
            }
            for row in rows
        ]
