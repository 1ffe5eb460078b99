"""invite_codes_and_join_requests

- teams.invite_code: shareable UUID for join links
- invitations.status gains 'requested' (join request via invite code)
- lookup / accept / request-to-join SQL functions
- status guard: open invitations only move to accepted/expired/cancelled,
  and those statuses are final

Revision ID: d4f6b8c00004
Revises: c3e5a7b90003
Create Date: 2025-03-12 11:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'd4f6b8c00004'
down_revision = 'c3e5a7b90003'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        'teams',
        sa.Column('invite_code', sa.Uuid(as_uuid=False), nullable=True, server_default=sa.text('gen_random_uuid()')),
    )
    op.create_unique_constraint('teams_invite_code_key', 'teams', ['invite_code'])
    op.create_index('idx_teams_invite_code', 'teams', ['invite_code'])

    op.create_check_constraint(
        'invitations_status_check',
        'invitations',
        "status in ('pending', 'requested', 'accepted', 'expired', 'cancelled')",
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION public.guard_invitation_status()
        RETURNS trigger
        LANGUAGE plpgsql
        SET search_path = ''
        AS $$
        BEGIN
            IF NEW.status <> OLD.status AND (
                OLD.status IN ('accepted', 'expired', 'cancelled')
                OR NEW.status NOT IN ('accepted', 'expired', 'cancelled')
            ) THEN
                RAISE EXCEPTION 'invitation % cannot move from % to %', OLD.id, OLD.status, NEW.status;
            END IF;
            RETURN NEW;
        END;
        $$;
        """
    )
    op.execute(
        "CREATE TRIGGER invitations_status_guard BEFORE UPDATE OF status ON public.invitations "
        "FOR EACH ROW EXECUTE FUNCTION public.guard_invitation_status();"
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION public.get_pending_invitations(user_email text)
        RETURNS TABLE (
            invitation_id bigint,
            team_id bigint,
            team_name varchar(100),
            role varchar(50),
            invited_by_name varchar(100),
            invited_at timestamp with time zone
        )
        LANGUAGE plpgsql
        SECURITY INVOKER
        SET search_path = ''
        AS $$
        BEGIN
            RETURN QUERY
            SELECT i.id, i.team_id, t.name, i.role, u.name, i.invited_at
            FROM public.invitations i
            JOIN public.teams t ON i.team_id = t.id
            JOIN public.users u ON i.invited_by = u.id
            WHERE i.email = user_email AND i.status = 'pending';
        END;
        $$;
        """
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION public.get_team_by_invite_code(code uuid)
        RETURNS TABLE (team_id bigint, team_name varchar(100), member_count bigint)
        LANGUAGE plpgsql
        SECURITY INVOKER
        SET search_path = ''
        AS $$
        BEGIN
            RETURN QUERY
            SELECT t.id, t.name, count(tm.id)
            FROM public.teams t
            LEFT JOIN public.team_members tm ON t.id = tm.team_id
            WHERE t.invite_code = code
            GROUP BY t.id, t.name;
        END;
        $$;
        """
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION public.accept_invitation(invitation_id bigint, user_id uuid)
        RETURNS boolean
        LANGUAGE plpgsql
        SECURITY INVOKER
        SET search_path = ''
        AS $$
        DECLARE
            invite_record record;
        BEGIN
            SELECT i.team_id, i.role
            INTO invite_record
            FROM public.invitations i
            WHERE i.id = accept_invitation.invitation_id AND i.status = 'pending';

            IF NOT FOUND THEN
                RETURN false;
            END IF;

            INSERT INTO public.team_members (user_id, team_id, role)
            VALUES (accept_invitation.user_id, invite_record.team_id, invite_record.role);

            UPDATE public.invitations SET status = 'accepted'
            WHERE id = accept_invitation.invitation_id;

            PERFORM public.log_activity(invite_record.team_id, 'ACCEPT_INVITATION');
            RETURN true;
        END;
        $$;
        """
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION public.request_to_join_team(
            team_invite_code uuid,
            user_email text,
            requesting_user_id uuid
        )
        RETURNS bigint
        LANGUAGE plpgsql
        SECURITY INVOKER
        SET search_path = ''
        AS $$
        DECLARE
            target_team_id bigint;
            new_invitation_id bigint;
        BEGIN
            SELECT id INTO target_team_id FROM public.teams WHERE invite_code = team_invite_code;
            IF NOT FOUND THEN
                RETURN NULL;
            END IF;

            IF EXISTS (
                SELECT 1 FROM public.team_members
                WHERE team_id = target_team_id AND user_id = requesting_user_id
            ) THEN
                RETURN NULL;
            END IF;

            IF EXISTS (
                SELECT 1 FROM public.invitations
                WHERE team_id = target_team_id AND email = user_email
                  AND status IN ('pending', 'requested')
            ) THEN
                RETURN NULL;
            END IF;

            INSERT INTO public.invitations (team_id, email, role, invited_by, status)
            VALUES (target_team_id, user_email, 'member', requesting_user_id, 'requested')
            RETURNING id INTO new_invitation_id;

            PERFORM public.log_activity(target_team_id, 'REQUEST_TO_JOIN');
            RETURN new_invitation_id;
        END;
        $$;
        """
    )


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS public.request_to_join_team(uuid, text, uuid);")
    op.execute("DROP FUNCTION IF EXISTS public.accept_invitation(bigint, uuid);")
    op.execute("DROP FUNCTION IF EXISTS public.get_team_by_invite_code(uuid);")
    op.execute("DROP FUNCTION IF EXISTS public.get_pending_invitations(text);")
    op.execute("DROP TRIGGER IF EXISTS invitations_status_guard ON public.invitations;")
    op.execute("DROP FUNCTION IF EXISTS public.guard_invitation_status();")
    op.drop_constraint('invitations_status_check', 'invitations', type_='check')
    op.drop_index('idx_teams_invite_code', table_name='teams')
    op.drop_constraint('teams_invite_code_key', 'teams', type_='unique')
    op.drop_column('teams', 'invite_code')
