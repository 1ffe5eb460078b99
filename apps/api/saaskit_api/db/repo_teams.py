"""Team and membership repository."""

from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from saaskit_api.db.models import Team, TeamMember, TeamRole


class TeamRepository:
    """Repository for Team and TeamMember operations.

    Every lookup that answers "which team does this caller act on" goes
    through membership_for_user(); callers never pass a team id they got
    from client input.
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    def get_by_id(self, team_id: int) -> Optional[Team]:
        return self.db.get(Team, team_id)

    def get_by_stripe_customer_id(self, customer_id: str) -> Optional[Team]:
        return self.db.query(Team).filter(Team.stripe_customer_id == customer_id).first()

    def get_by_invite_code(self, invite_code: str) -> Optional[Team]:
        return self.db.query(Team).filter(Team.invite_code == invite_code).first()

    def create_with_owner(self, name: str, owner_id: str) -> tuple[Team, TeamMember]:
        """Insert a team and its owner membership in the caller's transaction."""
        team = Team(name=name)
        self.db.add(team)
        self.db.flush()

        owner = TeamMember(user_id=owner_id, team_id=team.id, role=TeamRole.OWNER.value)
        self.db.add(owner)
        self.db.flush()
        return team, owner

    def delete(self, team_id: int) -> bool:
        team = self.get_by_id(team_id)
        if team is None:
            return False
        self.db.delete(team)
        self.db.flush()
        return True

    def set_stripe_customer(self, team: Team, customer_id: str) -> None:
        team.stripe_customer_id = customer_id
        self.db.flush()

    def update_subscription(self, team_id: int, subscription: dict[str, Any]) -> Optional[Team]:
        """Apply subscription fields.

        Keys: stripe_subscription_id, stripe_product_id, plan_name,
        subscription_status (values may be None to clear).
        """
        team = self.get_by_id(team_id)
        if team is None:
            return None
        team.stripe_subscription_id = subscription.get("stripe_subscription_id")
        team.stripe_product_id = subscription.get("stripe_product_id")
        team.plan_name = subscription.get("plan_name")
        team.subscription_status = subscription.get("subscription_status")
        self.db.flush()
        return team

    def member_count(self, team_id: int) -> int:
        return (
            self.db.query(func.count(TeamMember.id))
            .filter(TeamMember.team_id == team_id)
            .scalar()
            or 0
        )

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    def membership_for_user(self, user_id: str) -> Optional[TeamMember]:
        """Caller's membership row; earliest joined wins if there are several."""
        return (
            self.db.query(TeamMember)
            .filter(TeamMember.user_id == user_id)
            .order_by(TeamMember.joined_at.asc(), TeamMember.id.asc())
            .first()
        )

    def get_membership(self, team_id: int, user_id: str) -> Optional[TeamMember]:
        return (
            self.db.query(TeamMember)
            .filter(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
            .first()
        )

    def get_member_in_team(self, member_id: int, team_id: int) -> Optional[TeamMember]:
        return (
            self.db.query(TeamMember)
            .filter(TeamMember.id == member_id, TeamMember.team_id == team_id)
            .first()
        )

    def count_with_role(self, team_id: int, role: str) -> int:
        return (
            self.db.query(func.count(TeamMember.id))
            .filter(TeamMember.team_id == team_id, TeamMember.role == role)
            .scalar()
            or 0
        )

    def add_member(self, team_id: int, user_id: str, role: str) -> TeamMember:
        member = TeamMember(user_id=user_id, team_id=team_id, role=role)
        self.db.add(member)
        self.db.flush()
        return member

    def list_members(self, team_id: int) -> list[TeamMember]:
        return (
            self.db.query(TeamMember)
            .options(joinedload(TeamMember.profile))
            .filter(TeamMember.team_id == team_id)
            .order_by(TeamMember.joined_at.asc(), TeamMember.id.asc())
            .all()
        )

    def remove_member(self, member_id: int, team_id: int) -> int:
        """Delete a membership by id, scoped to team_id. Returns rows deleted."""
        deleted = (
            self.db.query(TeamMember)
            .filter(TeamMember.id == member_id, TeamMember.team_id == team_id)
            .delete(synchronize_session="fetch")
        )
        self.db.flush()
        return deleted
