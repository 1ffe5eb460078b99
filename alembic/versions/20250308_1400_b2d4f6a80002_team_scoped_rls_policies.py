"""team_scoped_rls_policies

First RLS iteration: team tables scoped by the caller's membership.

The team_members rules select from team_members, so Postgres fails any read
of the table with "infinite recursion detected in policy". Superseded by
c3e5a7b90003, which drops every rule installed here. Kept so databases that
applied it can still be upgraded.

Revision ID: b2d4f6a80002
Revises: a1c3e5f70001
Create Date: 2025-03-08 14:00:00.000000

"""
from alembic import op

from saaskit_api.auth.policies import PROTECTED_TABLES, RECURSIVE_POLICIES, render_create, render_drop, render_enable_rls


# revision identifiers, used by Alembic.
revision = 'b2d4f6a80002'
down_revision = 'a1c3e5f70001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    for table in PROTECTED_TABLES:
        op.execute(render_enable_rls(table))
    for policy in RECURSIVE_POLICIES:
        op.execute(render_create(policy))


def downgrade() -> None:
    for policy in RECURSIVE_POLICIES:
        op.execute(render_drop(policy))
