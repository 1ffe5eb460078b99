"""Activity log recording.

record() runs after the primary mutation has committed, in its own commit.
A failed write is logged and rolled back; it never undoes or fails the
mutation it describes.
"""

import logging
from typing import Optional

from saaskit_api.auth.team_scope import (
    require_team_membership,
    require_team_role,
    resolve_team_membership,
)
from saaskit_api.context import RequestContext
from saaskit_api.db.models import ActivityType, TeamRole
from saaskit_api.db.repo_activity import ActivityLogRepository

logger = logging.getLogger(__name__)


def record(
    ctx: RequestContext,
    team_id: int,
    action: ActivityType,
    ip_address: Optional[str] = None,
) -> bool:
    """Append one entry attributed to the caller. Returns False if the write failed."""
    try:
        ActivityLogRepository(ctx.db).append(
            team_id=team_id,
            action=action.value,
            user_id=ctx.user_id,
            ip_address=ip_address if ip_address is not None else ctx.ip_address,
        )
        ctx.db.commit()
    except Exception as e:
        ctx.db.rollback()
        logger.warning(
            "activity.record.failed",
            extra={
                "action": action.value,
                "team_id": team_id,
                "error_type": type(e).__name__,
                "error": str(e),
            },
        )
        return False

    logger.info("activity.recorded", extra={"action": action.value, "team_id": team_id})
    return True


def record_for_caller_team(ctx: RequestContext, action: ActivityType) -> bool:
    """Record against the caller's team if they have one; no team is not an error."""
    if ctx.identity is None:
        return False
    membership = resolve_team_membership(ctx)
    if membership is None:
        return False
    return record(ctx, membership.team_id, action)


def delete_team_activity(ctx: RequestContext) -> int:
    """Owner-only bulk delete of the caller's team log. Returns rows removed.

    Raises:
        NotAuthenticated, NoTeam, InsufficientRole
    """
    membership = require_team_membership(ctx)
    require_team_role(
        membership,
        (TeamRole.OWNER.value,),
        message="Only team owners can clear the activity log.",
    )
    deleted = ActivityLogRepository(ctx.db).delete_for_team(membership.team_id)
    ctx.db.commit()
    logger.info(
        "activity.team_log.deleted",
        extra={"team_id": membership.team_id, "rows": deleted},
    )
    return deleted
