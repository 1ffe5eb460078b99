"""Row-level security rule set tests.

The installed rule set must never contain a policy that reads the table it
protects; the superseded rule set is the known-bad fixture.
"""

from unittest.mock import patch

import pytest

from saaskit_api.auth import policies
from saaskit_api.auth.policies import (
    POLICIES,
    PROTECTED_TABLES,
    RECURSIVE_POLICIES,
    Policy,
    RecursivePolicyError,
    assert_non_recursive,
    find_cycles,
    find_self_references,
    policies_for,
    referenced_tables,
    render_create,
    render_drop,
    render_enable_rls,
)


class TestRecursionLint:
    def test_adopted_policies_are_non_recursive(self):
        assert_non_recursive(POLICIES)
        assert find_self_references(POLICIES) == []
        assert find_cycles(POLICIES) == []

    def test_first_iteration_is_rejected(self):
        with pytest.raises(RecursivePolicyError) as exc_info:
            assert_non_recursive(RECURSIVE_POLICIES)

        offenders = exc_info.value.offenders
        assert "team_members:team members can view team membership" in offenders
        assert "team_members:team management for member removal" in offenders

    def test_two_table_cycle_is_detected(self):
        rules = [
            Policy("alpha_select", "alpha", "select", using="owner in (select id from public.beta)"),
            Policy("beta_select", "beta", "select", using="exists (select 1 from alpha a where a.id = beta_id)"),
        ]

        assert find_self_references(rules) == []
        assert find_cycles(rules) == [["alpha", "beta", "alpha"]]
        with pytest.raises(RecursivePolicyError, match="alpha -> beta -> alpha"):
            assert_non_recursive(rules)

    def test_view_reads_count_as_base_table_reads(self):
        rule = Policy("members_select", "team_members", "select", using="team_id in (select team_id from my_teams)")

        assert find_self_references([rule]) == []
        with patch.dict(policies.VIEW_DEPENDENCIES, {"my_teams": frozenset({"team_members"})}):
            assert find_self_references([rule]) == [rule]

    def test_other_schemas_are_ignored(self):
        assert referenced_tables("id in (select id from auth.users)") == set()
        assert referenced_tables('x in (select id from public."teams" join team_members on true)') == {
            "teams",
            "team_members",
        }


class TestRuleSets:
    def test_every_protected_table_has_policies(self):
        for table in PROTECTED_TABLES:
            assert policies_for(table), f"no policies for {table}"

    def test_profiles_are_identity_scoped(self):
        by_command = {p.command: p for p in policies_for("users")}

        assert by_command["select"].using == "id = auth.uid()"
        assert by_command["update"].with_check == "id = auth.uid()"
        assert by_command["delete"].using == "false"

    def test_activity_log_is_append_only(self):
        commands = {p.command for p in policies_for("activity_logs")}

        assert commands == {"select", "insert"}

    def test_policy_names_unique_per_table(self):
        keys = [(p.table, p.name) for p in POLICIES]
        assert len(keys) == len(set(keys))

    def test_unknown_command_rejected(self):
        with pytest.raises(ValueError, match="Unknown policy command"):
            Policy("bad", "teams", "truncate", using="true")


class TestRendering:
    def test_render_create_with_both_clauses(self):
        rule = Policy("users_update_own", "users", "update", using="id = auth.uid()", with_check="id = auth.uid()")

        assert render_create(rule) == (
            'create policy "users_update_own" on public.users for update to authenticated '
            "using (id = auth.uid()) with check (id = auth.uid());"
        )

    def test_render_create_anon_role(self):
        rule = Policy("invitations_select_anon", "invitations", "select", roles=("anon",), using="true")

        assert render_create(rule) == (
            'create policy "invitations_select_anon" on public.invitations for select to anon using (true);'
        )

    def test_render_drop_and_enable(self):
        rule = Policy("teams_select_all", "teams", "select", using="true")

        assert render_drop(rule) == 'drop policy if exists "teams_select_all" on public.teams;'
        assert render_enable_rls("teams") == "alter table public.teams enable row level security;"
