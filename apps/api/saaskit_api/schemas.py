"""Pydantic schemas: form payloads for mutation handlers and API responses."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"


# ============================================================================
# RFC 9457 Problem Details
# ============================================================================


class ProblemDetail(BaseModel):
    """RFC 9457 Problem Details for HTTP API errors.

    detail can be either a string or a structured object (dict).
    """

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str | dict[str, Any] = Field(..., description="Human-readable explanation or structured error details")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")


# ============================================================================
# Mutation handler forms (field names match the submitted form keys)
# ============================================================================


class _Form(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SignInForm(_Form):
    email: str = Field(..., min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=8, max_length=100)


class SignUpForm(_Form):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=8, max_length=100)
    invite_id: Optional[int] = Field(None, alias="inviteId")


class UpdatePasswordForm(_Form):
    current_password: str = Field(..., alias="currentPassword", min_length=8, max_length=100)
    new_password: str = Field(..., alias="newPassword", min_length=8, max_length=100)
    confirm_password: str = Field(..., alias="confirmPassword", min_length=8, max_length=100)


class DeleteAccountForm(_Form):
    password: str = Field(..., min_length=8, max_length=100)


class UpdateAccountForm(_Form):
    name: str = Field(..., min_length=1, max_length=100)


class RemoveTeamMemberForm(_Form):
    member_id: int = Field(..., alias="memberId")


class InviteTeamMemberForm(_Form):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    role: Literal["member", "admin", "owner"]


class RequestToJoinForm(_Form):
    invite_code: str = Field(..., alias="inviteCode", min_length=1, max_length=64)


class InvitationActionForm(_Form):
    invitation_id: int = Field(..., alias="invitationId")


# ============================================================================
# Read API responses
# ============================================================================


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    role: str
    created_at: datetime
    updated_at: datetime


class TeamMemberUser(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class TeamMemberResponse(BaseModel):
    id: int
    role: str
    joined_at: datetime
    user: TeamMemberUser


class TeamResponse(BaseModel):
    id: int
    name: str
    plan_name: Optional[str] = None
    subscription_status: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    invite_code: Optional[str] = None
    created_at: datetime
    team_members: list[TeamMemberResponse]


class ActivityLogResponse(BaseModel):
    id: int
    action: str
    timestamp: datetime
    ip_address: Optional[str] = None
    user_name: str


class PendingInvitationResponse(BaseModel):
    invitation_id: int
    team_id: int
    team_name: str
    role: str
    invited_by_name: Optional[str] = None
    invited_at: datetime


class InviteCodeTeamResponse(BaseModel):
    team_id: int
    team_name: str
    member_count: int
