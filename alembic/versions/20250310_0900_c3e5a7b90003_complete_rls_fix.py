"""complete_rls_fix

Replace the recursive team-scoped rules with the non-recursive set:
profiles stay identity-scoped, team tables are permissive for
authenticated callers, and team scoping moves to the application.

assert_non_recursive() runs before anything is executed, so a rule set
that could recurse fails the migration instead of the first query.

Revision ID: c3e5a7b90003
Revises: b2d4f6a80002
Create Date: 2025-03-10 09:00:00.000000

"""
from alembic import op

from saaskit_api.auth.policies import (
    POLICIES,
    PROTECTED_TABLES,
    RECURSIVE_POLICIES,
    assert_non_recursive,
    render_create,
    render_drop,
    render_enable_rls,
)


# revision identifiers, used by Alembic.
revision = 'c3e5a7b90003'
down_revision = 'b2d4f6a80002'
branch_labels = None
depends_on = None


def upgrade() -> None:
    assert_non_recursive(POLICIES)

    for policy in RECURSIVE_POLICIES:
        op.execute(render_drop(policy))
    for policy in POLICIES:
        op.execute(render_drop(policy))

    for table in PROTECTED_TABLES:
        op.execute(render_enable_rls(table))
    for policy in POLICIES:
        op.execute(render_create(policy))


def downgrade() -> None:
    for policy in POLICIES:
        op.execute(render_drop(policy))
    for policy in RECURSIVE_POLICIES:
        op.execute(render_create(policy))
