"""initial_schema

Profiles (public.users, 1:1 with auth.users), teams, team_members,
activity_logs, invitations; updated_at triggers; log_activity() helper.

Revision ID: a1c3e5f70001
Revises:
Create Date: 2025-03-01 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c3e5f70001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(as_uuid=False), primary_key=True),
        sa.Column('name', sa.String(100), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='member'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True),
    )
    # Deleting the identity removes the profile, which cascades to memberships.
    op.execute(
        "ALTER TABLE public.users ADD CONSTRAINT users_id_fkey "
        "FOREIGN KEY (id) REFERENCES auth.users(id) ON DELETE CASCADE;"
    )

    op.create_table(
        'teams',
        sa.Column('id', sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('stripe_customer_id', sa.Text(), nullable=True, unique=True),
        sa.Column('stripe_subscription_id', sa.Text(), nullable=True, unique=True),
        sa.Column('stripe_product_id', sa.Text(), nullable=True),
        sa.Column('plan_name', sa.String(50), nullable=True),
        sa.Column('subscription_status', sa.String(20), nullable=True),
    )

    op.create_table(
        'team_members',
        sa.Column('id', sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column('user_id', sa.Uuid(as_uuid=False), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('team_id', sa.BigInteger(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('joined_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('user_id', 'team_id', name='team_members_user_id_team_id_key'),
    )

    op.create_table(
        'activity_logs',
        sa.Column('id', sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column('team_id', sa.BigInteger(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(as_uuid=False), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('timestamp', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('ip_address', sa.String(45), nullable=True),
    )

    op.create_table(
        'invitations',
        sa.Column('id', sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column('team_id', sa.BigInteger(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('invited_by', sa.Uuid(as_uuid=False), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('invited_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
    )

    op.create_index('idx_team_members_user_id', 'team_members', ['user_id'])
    op.create_index('idx_team_members_team_id', 'team_members', ['team_id'])
    op.create_index('idx_activity_logs_team_id', 'activity_logs', ['team_id'])
    op.create_index('idx_activity_logs_user_id', 'activity_logs', ['user_id'])
    op.execute("CREATE INDEX idx_activity_logs_timestamp ON public.activity_logs (timestamp DESC);")
    op.create_index('idx_invitations_email', 'invitations', ['email'])
    op.create_index('idx_invitations_team_id', 'invitations', ['team_id'])
    op.create_index('idx_teams_stripe_customer_id', 'teams', ['stripe_customer_id'])

    op.execute(
        """
        CREATE OR REPLACE FUNCTION public.handle_updated_at()
        RETURNS trigger
        LANGUAGE plpgsql
        SET search_path = ''
        AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$;
        """
    )
    op.execute(
        "CREATE TRIGGER users_updated_at BEFORE UPDATE ON public.users "
        "FOR EACH ROW EXECUTE FUNCTION public.handle_updated_at();"
    )
    op.execute(
        "CREATE TRIGGER teams_updated_at BEFORE UPDATE ON public.teams "
        "FOR EACH ROW EXECUTE FUNCTION public.handle_updated_at();"
    )

    # Runs with the caller's rights, so RLS on activity_logs still applies.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION public.log_activity(
            p_team_id bigint,
            p_action text,
            p_ip_address varchar(45) DEFAULT NULL
        )
        RETURNS void
        LANGUAGE plpgsql
        SECURITY INVOKER
        SET search_path = ''
        AS $$
        BEGIN
            INSERT INTO public.activity_logs (team_id, user_id, action, ip_address)
            VALUES (p_team_id, (SELECT auth.uid()), p_action, p_ip_address);
        END;
        $$;
        """
    )


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS public.log_activity(bigint, text, varchar);")
    op.execute("DROP TRIGGER IF EXISTS teams_updated_at ON public.teams;")
    op.execute("DROP TRIGGER IF EXISTS users_updated_at ON public.users;")
    op.execute("DROP FUNCTION IF EXISTS public.handle_updated_at();")
    op.drop_table('invitations')
    op.drop_table('activity_logs')
    op.drop_table('team_members')
    op.drop_table('teams')
    op.drop_table('users')
