"""Row-level security policies, declared as data.

Postgres evaluates a table's policy every time the table is read. A policy
on table T whose predicate selects from T (directly, through a view, or
through another table whose own policy selects from T) re-enters itself and
fails with "infinite recursion detected in policy". The first rule set below
did exactly that; it is kept so the lint has a known-bad fixture and so the
historical migration can drop it by name.

The adopted set keeps only one identity-scoped rule (a profile row is
visible to its own identity). Team scoping happens in application code
(saaskit_api.auth.team_scope), which always derives the acting team from
the caller's own membership row.

The Alembic migration renders POLICIES through render_create() and calls
assert_non_recursive() first, so a recursive rule can never be installed.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

SCHEMA = "public"

PROTECTED_TABLES = ("users", "teams", "team_members", "activity_logs", "invitations")

# View name -> base tables it reads. A predicate that selects from a view is
# treated as selecting from each of these.
VIEW_DEPENDENCIES: dict[str, frozenset[str]] = {}

_COMMANDS = frozenset({"select", "insert", "update", "delete", "all"})

_TABLE_REF = re.compile(r"\b(?:from|join)\s+(?:\"?(\w+)\"?\.)?\"?(\w+)\"?", re.IGNORECASE)


class RecursivePolicyError(ValueError):
    """A policy predicate reads, directly or transitively, the table it protects."""

    def __init__(self, offenders: list[str]):
        self.offenders = offenders
        super().__init__("Recursive row-level security policies: " + ", ".join(offenders))


@dataclass(frozen=True)
class Policy:
    name: str
    table: str
    command: str
    roles: tuple[str, ...] = ("authenticated",)
    using: Optional[str] = None
    with_check: Optional[str] = None

    def __post_init__(self) -> None:
        if self.command not in _COMMANDS:
            raise ValueError(f"Unknown policy command: {self.command}")

    @property
    def predicates(self) -> tuple[str, ...]:
        return tuple(p for p in (self.using, self.with_check) if p)

    @property
    def qualified_table(self) -> str:
        return f"{SCHEMA}.{self.table}"


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_create(policy: Policy) -> str:
    sql = (
        f'create policy "{policy.name}" on {policy.qualified_table} '
        f"for {policy.command} to {', '.join(policy.roles)}"
    )
    if policy.using is not None:
        sql += f" using ({policy.using})"
    if policy.with_check is not None:
        sql += f" with check ({policy.with_check})"
    return sql + ";"


def render_drop(policy: Policy) -> str:
    return f'drop policy if exists "{policy.name}" on {policy.qualified_table};'


def render_enable_rls(table: str) -> str:
    return f"alter table {SCHEMA}.{table} enable row level security;"


# ---------------------------------------------------------------------------
# Recursion lint
# ---------------------------------------------------------------------------


def referenced_tables(predicate: str) -> set[str]:
    """Tables a predicate reads via FROM/JOIN, with views expanded.

    Schema-qualified references outside `public` (auth.users and friends)
    are ignored: they carry no RLS policies of ours.
    """
    tables: set[str] = set()
    for schema, name in _TABLE_REF.findall(predicate):
        if schema and schema.lower() != SCHEMA:
            continue
        name = name.lower()
        tables.add(name)
        tables.update(VIEW_DEPENDENCIES.get(name, ()))
    return tables


def find_self_references(policies: Iterable[Policy]) -> list[Policy]:
    """Policies whose own predicate reads the table they protect."""
    return [
        policy
        for policy in policies
        if any(policy.table in referenced_tables(p) for p in policy.predicates)
    ]


def dependency_graph(policies: Iterable[Policy]) -> dict[str, set[str]]:
    """table -> tables its policies read."""
    graph: dict[str, set[str]] = {}
    for policy in policies:
        edges = graph.setdefault(policy.table, set())
        for predicate in policy.predicates:
            edges.update(referenced_tables(predicate))
    return graph


def find_cycles(policies: Iterable[Policy]) -> list[list[str]]:
    """Cycles in the policy dependency graph, each as [t0, t1, ..., t0].

    Self-references show up as two-element cycles [t, t].
    """
    graph = dependency_graph(policies)
    cycles: list[list[str]] = []
    seen_keys: set[frozenset[str]] = set()

    def visit(node: str, path: list[str]) -> None:
        for nxt in sorted(graph.get(node, ())):
            if nxt == path[0]:
                key = frozenset(path)
                if key not in seen_keys:
                    seen_keys.add(key)
                    cycles.append(path + [nxt])
            elif nxt not in path and nxt > path[0]:
                visit(nxt, path + [nxt])

    for start in sorted(graph):
        visit(start, [start])
    return cycles


def assert_non_recursive(policies: Iterable[Policy]) -> None:
    """Raise RecursivePolicyError if any policy can re-enter itself."""
    policies = list(policies)
    offenders = [f"{p.table}:{p.name}" for p in find_self_references(policies)]
    for cycle in find_cycles(policies):
        if len(cycle) > 2:
            offenders.append(" -> ".join(cycle))
    if offenders:
        raise RecursivePolicyError(offenders)


# ---------------------------------------------------------------------------
# Rule sets
# ---------------------------------------------------------------------------

_UID = "(select auth.uid())"


def _caller_team_ids(roles: Optional[tuple[str, ...]] = None) -> str:
    sql = f"select team_id from public.team_members where user_id = {_UID}"
    if roles:
        quoted = ", ".join(f"'{role}'" for role in roles)
        sql += f" and role in ({quoted})"
    return sql


_MANAGERS = ("owner", "admin")

# First iteration: scoped by team membership. Recursive; never install.
RECURSIVE_POLICIES: tuple[Policy, ...] = (
    Policy("authenticated users can view their own profile", "users", "select", using=f"{_UID} = id"),
    Policy("authenticated users can update their own profile", "users", "update",
           using=f"{_UID} = id", with_check=f"{_UID} = id"),
    Policy("authenticated users can insert their own profile", "users", "insert", with_check=f"{_UID} = id"),
    Policy("users cannot delete profiles directly", "users", "delete", using="false"),
    Policy("team members can view their teams", "teams", "select", using=f"id in ({_caller_team_ids()})"),
    Policy("team owners can update team information", "teams", "update",
           using=f"id in ({_caller_team_ids(('owner',))})",
           with_check=f"id in ({_caller_team_ids(('owner',))})"),
    Policy("authenticated users can create teams", "teams", "insert", with_check="true"),
    Policy("team owners can delete teams", "teams", "delete", using=f"id in ({_caller_team_ids(('owner',))})"),
    Policy("team members can view team membership", "team_members", "select",
           using=f"team_id in ({_caller_team_ids()})"),
    Policy("team owners and admins can add members", "team_members", "insert",
           with_check=f"team_id in ({_caller_team_ids(_MANAGERS)})"),
    Policy("team owners and admins can update member roles", "team_members", "update",
           using=f"team_id in ({_caller_team_ids(_MANAGERS)})",
           with_check=f"team_id in ({_caller_team_ids(_MANAGERS)})"),
    Policy("team management for member removal", "team_members", "delete",
           using=f"team_id in ({_caller_team_ids(_MANAGERS)}) or user_id = {_UID}"),
    Policy("team members can view activity logs", "activity_logs", "select",
           using=f"team_id in ({_caller_team_ids()})"),
    Policy("system can insert activity logs", "activity_logs", "insert", with_check="true"),
    Policy("activity logs are immutable", "activity_logs", "update", using="false"),
    Policy("team owners can delete activity logs", "activity_logs", "delete",
           using=f"team_id in ({_caller_team_ids(('owner',))})"),
    Policy("team members can view team invitations", "invitations", "select",
           using=f"team_id in ({_caller_team_ids()})"),
    Policy("users can view their email invitations", "invitations", "select",
           using="email = (select auth.email())"),
    Policy("anonymous users can view invitations by email", "invitations", "select",
           roles=("anon",), using="true"),
    Policy("team owners and admins can create invitations", "invitations", "insert",
           with_check=f"team_id in ({_caller_team_ids(_MANAGERS)})"),
    Policy("team owners and admins can update invitations", "invitations", "update",
           using=f"team_id in ({_caller_team_ids(_MANAGERS)})",
           with_check=f"team_id in ({_caller_team_ids(_MANAGERS)})"),
    Policy("team owners and admins can delete invitations", "invitations", "delete",
           using=f"team_id in ({_caller_team_ids(_MANAGERS)})"),
)


def _permissive(table: str, commands: tuple[str, ...]) -> tuple[Policy, ...]:
    rules = []
    for command in commands:
        name = f"{table}_{command}_all"
        if command == "insert":
            rules.append(Policy(name, table, command, with_check="true"))
        elif command == "update":
            rules.append(Policy(name, table, command, using="true", with_check="true"))
        else:
            rules.append(Policy(name, table, command, using="true"))
    return tuple(rules)


_CRUD = ("select", "insert", "update", "delete")

# Adopted iteration: identity-scoped on users only, permissive elsewhere.
POLICIES: tuple[Policy, ...] = (
    Policy("users_select_own", "users", "select", using="id = auth.uid()"),
    Policy("users_insert_own", "users", "insert", with_check="id = auth.uid()"),
    Policy("users_update_own", "users", "update", using="id = auth.uid()", with_check="id = auth.uid()"),
    Policy("users_delete_none", "users", "delete", using="false"),
    *_permissive("teams", _CRUD),
    *_permissive("team_members", _CRUD),
    *_permissive("activity_logs", ("select", "insert")),
    *_permissive("invitations", _CRUD),
    Policy("invitations_select_anon", "invitations", "select", roles=("anon",), using="true"),
)


def policies_for(table: str, policies: Iterable[Policy] = POLICIES) -> list[Policy]:
    return [p for p in policies if p.table == table]
