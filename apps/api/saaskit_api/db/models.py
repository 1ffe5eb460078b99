"""SQLAlchemy ORM models for the SaaS starter schema.

Tables mirror the Supabase `public` schema created by Alembic:
users (profiles), teams, team_members, invitations, activity_logs.
Identity records themselves live in `auth.users` and are owned by
Supabase Auth.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Index,
    Integer,
    String,
    TEXT,
    TIMESTAMP,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# BIGINT identity on Postgres; SQLite only autoincrements INTEGER PRIMARY KEY.
BigIntId = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class TeamRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


MANAGER_ROLES = frozenset({TeamRole.OWNER.value, TeamRole.ADMIN.value})


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


OPEN_INVITATION_STATUSES = frozenset({InvitationStatus.PENDING.value, InvitationStatus.REQUESTED.value})
TERMINAL_INVITATION_STATUSES = frozenset({
    InvitationStatus.ACCEPTED.value,
    InvitationStatus.EXPIRED.value,
    InvitationStatus.CANCELLED.value,
})


class ActivityType(str, enum.Enum):
    SIGN_UP = "SIGN_UP"
    SIGN_IN = "SIGN_IN"
    SIGN_OUT = "SIGN_OUT"
    UPDATE_PASSWORD = "UPDATE_PASSWORD"
    DELETE_ACCOUNT = "DELETE_ACCOUNT"
    UPDATE_ACCOUNT = "UPDATE_ACCOUNT"
    CREATE_TEAM = "CREATE_TEAM"
    REMOVE_TEAM_MEMBER = "REMOVE_TEAM_MEMBER"
    INVITE_TEAM_MEMBER = "INVITE_TEAM_MEMBER"
    ACCEPT_INVITATION = "ACCEPT_INVITATION"
    REQUEST_TO_JOIN = "REQUEST_TO_JOIN"
    CANCEL_INVITATION = "CANCEL_INVITATION"
    APPROVE_JOIN_REQUEST = "APPROVE_JOIN_REQUEST"


class InvalidInvitationTransition(ValueError):
    """Raised when an invitation leaves a terminal status."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invitation cannot move from '{current}' to '{target}'")


class Profile(Base):
    """Application profile, 1:1 with a Supabase auth.users row.

    The FK to auth.users (on delete cascade) is created by the migration only;
    auth.users is not part of this metadata.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=TeamRole.MEMBER.value)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    memberships: Mapped[list["TeamMember"]] = relationship(
        back_populates="profile", cascade="all, delete-orphan", passive_deletes=True
    )


class Team(Base):
    """Tenant root. Deleting a team cascades to members, invitations, logs."""

    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True, unique=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True, unique=True)
    stripe_product_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    plan_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    subscription_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    invite_code: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False), nullable=True, unique=True, default=lambda: str(uuid.uuid4())
    )

    members: Mapped[list["TeamMember"]] = relationship(
        back_populates="team", cascade="all, delete-orphan", passive_deletes=True
    )
    invitations: Mapped[list["Invitation"]] = relationship(
        back_populates="team", cascade="all, delete-orphan", passive_deletes=True
    )
    activity_logs: Mapped[list["ActivityLog"]] = relationship(
        back_populates="team", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (Index("idx_teams_stripe_customer_id", "stripe_customer_id"),)


class TeamMember(Base):
    """Membership: grants a profile a role within a team, at most once."""

    __tablename__ = "team_members"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    team_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    profile: Mapped["Profile"] = relationship(back_populates="memberships")
    team: Mapped["Team"] = relationship(back_populates="members")

    __table_args__ = (
        UniqueConstraint("user_id", "team_id", name="team_members_user_id_team_id_key"),
        Index("idx_team_members_user_id", "user_id"),
        Index("idx_team_members_team_id", "team_id"),
    )


class Invitation(Base):
    """Pending grant of membership, by email (invite) or invite code (join request)."""

    __tablename__ = "invitations"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    team_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    invited_by: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    invited_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvitationStatus.PENDING.value
    )

    team: Mapped["Team"] = relationship(back_populates="invitations")
    inviter: Mapped["Profile"] = relationship()

    __table_args__ = (
        Index("idx_invitations_email", "email"),
        Index("idx_invitations_team_id", "team_id"),
    )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_INVITATION_STATUSES

    def transition_to(self, target: InvitationStatus) -> None:
        """Move to a new status; terminal statuses are final.

        Raises:
            InvalidInvitationTransition: current status is accepted/expired/cancelled,
                or target is not a terminal status.
        """
        if self.status in TERMINAL_INVITATION_STATUSES or target.value not in TERMINAL_INVITATION_STATUSES:
            raise InvalidInvitationTransition(self.status, target.value)
        self.status = target.value


class ActivityLog(Base):
    """Append-only audit entry. user_id goes NULL when the actor is deleted."""

    __tablename__ = "activity_logs"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    team_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(TEXT, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    team: Mapped["Team"] = relationship(back_populates="activity_logs")
    actor: Mapped[Optional["Profile"]] = relationship()

    __table_args__ = (
        Index("idx_activity_logs_team_id", "team_id"),
        Index("idx_activity_logs_user_id", "user_id"),
        Index("idx_activity_logs_timestamp", "timestamp"),
    )
